"""Form-related enums."""

from enum import Enum


class FormStatus(str, Enum):
    """Lifecycle of an issued form token.

    ``EXPIRED`` is never written; it is derived on read from ``expires_at``.
    """

    CREATED = "created"
    SENT = "sent"
    OPENED = "opened"
    COMPLETED = "completed"
    EXPIRED = "expired"


class FieldType(str, Enum):
    """Closed set of field types a template may use."""

    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    URL = "url"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    DATE = "date"
    NUMBER = "number"
    FILE = "file"


class SubmissionOrigin(str, Enum):
    """How a response reached the system."""

    WEB = "web"
    EMAIL = "email"


class DeliveryStatus(str, Enum):
    """Delivery outcome reported by the sending service's event webhook."""

    DELIVERED = "delivered"
    FAILED = "failed"
