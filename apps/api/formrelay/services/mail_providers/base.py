"""Mail provider gateway interface."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

import httpx

from formrelay.core.errors import MessageUnavailableError, ProviderUnavailableError


@dataclass(frozen=True)
class MessageRef:
    """Summary of a mailbox message, enough to decide whether to fetch it."""

    id: str
    subject: str
    sender: str
    received_at: datetime | None


@dataclass(frozen=True)
class PlainMessage:
    """A message reduced to plain text."""

    id: str
    subject: str
    sender: str
    body: str


class MailProviderGateway(Protocol):
    provider: str

    def list_messages_from(self, sender: str, after: datetime) -> list[MessageRef]:
        """Messages from ``sender`` received at or after ``after``."""

    def fetch_body(self, message_id: str) -> PlainMessage:
        """Load one message with a plain-text body."""

    def send_message(self, *, to: str, subject: str, body: str) -> str | None:
        """Send a plain-text message; returns the provider message id when known."""


_BLOCK_TAGS = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h[1-6])[^>]*>", re.IGNORECASE)
_DROP_BLOCKS = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")


def html_to_text(value: str) -> str:
    """Crude HTML to text conversion that keeps line structure."""
    text = _DROP_BLOCKS.sub("", value)
    text = _BLOCK_TAGS.sub("\n", text)
    text = _TAGS.sub("", text)
    return html.unescape(text)


# Statuses that concern the request itself (one message id or one query), not
# the mailbox. Auth, throttling and server errors stay mailbox-wide.
MESSAGE_SCOPED_STATUSES = frozenset({400, 404, 410})


def raise_for_provider_error(response: httpx.Response, provider_label: str) -> None:
    if response.status_code < 400:
        return
    detail = None
    try:
        payload = response.json()
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            detail = error.get("message")
        elif error:
            detail = str(error)
    except ValueError:
        detail = response.text
    message = f"{provider_label} API error {response.status_code}: {detail or 'unknown error'}"
    if response.status_code in MESSAGE_SCOPED_STATUSES:
        raise MessageUnavailableError(message)
    raise ProviderUnavailableError(message)


def send_provider_request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    provider_label: str,
    **kwargs,
) -> httpx.Response:
    """Issue a request, mapping transport failures and error statuses to ProviderUnavailableError."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise ProviderUnavailableError(f"{provider_label} API timed out") from exc
    except httpx.HTTPError as exc:
        raise ProviderUnavailableError(f"{provider_label} API request failed: {exc}") from exc
    raise_for_provider_error(response, provider_label)
    return response
