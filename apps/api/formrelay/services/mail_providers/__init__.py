"""Mail provider gateways (one per provider, same capability)."""

from formrelay.services.mail_providers.base import (
    MailProviderGateway,
    MessageRef,
    PlainMessage,
)
from formrelay.services.mail_providers.registry import get_gateway_class, open_gateway

__all__ = [
    "MailProviderGateway",
    "MessageRef",
    "PlainMessage",
    "get_gateway_class",
    "open_gateway",
]
