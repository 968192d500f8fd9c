"""Mail provider enums."""

from enum import Enum


class MailProvider(str, Enum):
    GOOGLE = "google"
    MICROSOFT = "microsoft"
