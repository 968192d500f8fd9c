"""Gmail API gateway."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.utils import parsedate_to_datetime

import httpx

from formrelay.core.errors import MessageUnavailableError
from formrelay.db.enums import MailProvider
from formrelay.services.mail_providers.base import (
    MessageRef,
    PlainMessage,
    html_to_text,
    send_provider_request,
)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
GMAIL_MESSAGES_URL = f"{GMAIL_API_BASE}/messages"
GMAIL_MESSAGE_URL = f"{GMAIL_API_BASE}/messages/{{message_id}}"
GMAIL_SEND_URL = f"{GMAIL_API_BASE}/messages/send"
METADATA_HEADERS = ["Subject", "From", "Date"]


def _parse_gmail_internal_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _header_map(payload: dict) -> dict[str, str]:
    headers = (payload.get("payload") or {}).get("headers") or []
    return {
        str(header.get("name", "")).lower(): str(header.get("value", ""))
        for header in headers
    }


def _decode_body_data(data: str | None) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode()).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _collect_parts(part: dict, found: dict[str, list[str]]) -> None:
    mime_type = (part.get("mimeType") or "").lower()
    body = part.get("body") or {}
    if mime_type in ("text/plain", "text/html") and body.get("data"):
        found.setdefault(mime_type, []).append(_decode_body_data(body.get("data")))
    for child in part.get("parts") or []:
        _collect_parts(child, found)


def extract_plain_text(payload: dict) -> str:
    """Plain-text body of a Gmail ``format=full`` message, falling back to HTML."""
    found: dict[str, list[str]] = {}
    _collect_parts(payload.get("payload") or {}, found)
    if found.get("text/plain"):
        return "\n".join(found["text/plain"])
    if found.get("text/html"):
        return "\n".join(html_to_text(value) for value in found["text/html"])
    return payload.get("snippet") or ""


class GmailGateway:
    provider = MailProvider.GOOGLE.value
    label = "Gmail"

    def __init__(self, client: httpx.Client, access_token: str, *, max_results: int = 25):
        self._client = client
        self._access_token = access_token
        self._max_results = max_results

    def _request(self, method: str, url: str, **kwargs) -> dict:
        response = send_provider_request(
            self._client,
            method,
            url,
            provider_label=self.label,
            headers={"Authorization": f"Bearer {self._access_token}"},
            **kwargs,
        )
        if not response.content:
            return {}
        return response.json()

    def list_messages_from(self, sender: str, after: datetime) -> list[MessageRef]:
        # Gmail's after: operator takes epoch seconds
        query = f"from:{sender} after:{int(after.timestamp())}"
        listing = self._request(
            "GET",
            GMAIL_MESSAGES_URL,
            params={"q": query, "maxResults": self._max_results},
        )
        refs: list[MessageRef] = []
        for item in listing.get("messages") or []:
            message_id = item.get("id")
            if not message_id:
                continue
            try:
                metadata = self._request(
                    "GET",
                    GMAIL_MESSAGE_URL.format(message_id=message_id),
                    params={"format": "metadata", "metadataHeaders": METADATA_HEADERS},
                )
            except MessageUnavailableError:
                # Deleted between the listing and the metadata read.
                continue
            headers = _header_map(metadata)
            received_at = _parse_gmail_internal_date(metadata.get("internalDate"))
            if received_at is None and headers.get("date"):
                try:
                    received_at = parsedate_to_datetime(headers["date"])
                except (TypeError, ValueError):
                    received_at = None
            refs.append(
                MessageRef(
                    id=message_id,
                    subject=headers.get("subject", ""),
                    sender=headers.get("from", ""),
                    received_at=received_at,
                )
            )
        return refs

    def fetch_body(self, message_id: str) -> PlainMessage:
        payload = self._request(
            "GET",
            GMAIL_MESSAGE_URL.format(message_id=message_id),
            params={"format": "full"},
        )
        headers = _header_map(payload)
        return PlainMessage(
            id=message_id,
            subject=headers.get("subject", ""),
            sender=headers.get("from", ""),
            body=extract_plain_text(payload),
        )

    def send_message(self, *, to: str, subject: str, body: str) -> str | None:
        message = MIMEText(body, "plain", "utf-8")
        message["to"] = to
        message["subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode()
        result = self._request("POST", GMAIL_SEND_URL, json={"raw": raw})
        return result.get("id")
