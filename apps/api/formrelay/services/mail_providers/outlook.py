"""Microsoft Graph (Outlook) mail gateway."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from formrelay.db.enums import MailProvider
from formrelay.services.mail_providers.base import (
    MessageRef,
    PlainMessage,
    html_to_text,
    send_provider_request,
)

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0/me"
GRAPH_MESSAGES_URL = f"{GRAPH_API_BASE}/messages"
GRAPH_MESSAGE_URL = f"{GRAPH_API_BASE}/messages/{{message_id}}"
GRAPH_SEND_URL = f"{GRAPH_API_BASE}/sendMail"


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _format_graph_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_graph_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sender_address(message: dict) -> str:
    email_address = (message.get("from") or {}).get("emailAddress") or {}
    address = email_address.get("address") or ""
    name = email_address.get("name")
    if name and address and name != address:
        return f"{name} <{address}>"
    return address


class OutlookGateway:
    provider = MailProvider.MICROSOFT.value
    label = "Microsoft Graph"

    def __init__(self, client: httpx.Client, access_token: str, *, max_results: int = 25):
        self._client = client
        self._access_token = access_token
        self._max_results = max_results

    def _request(self, method: str, url: str, *, headers: dict | None = None, **kwargs) -> dict:
        request_headers = {"Authorization": f"Bearer {self._access_token}"}
        if headers:
            request_headers.update(headers)
        response = send_provider_request(
            self._client,
            method,
            url,
            provider_label=self.label,
            headers=request_headers,
            **kwargs,
        )
        if not response.content:
            return {}
        return response.json()

    def list_messages_from(self, sender: str, after: datetime) -> list[MessageRef]:
        odata_filter = (
            f"from/emailAddress/address eq {_odata_literal(sender)} "
            f"and receivedDateTime ge {_format_graph_datetime(after)}"
        )
        listing = self._request(
            "GET",
            GRAPH_MESSAGES_URL,
            params={
                "$filter": odata_filter,
                "$select": "id,subject,from,receivedDateTime",
                "$top": self._max_results,
            },
        )
        return [
            MessageRef(
                id=item["id"],
                subject=item.get("subject") or "",
                sender=_sender_address(item),
                received_at=_parse_graph_datetime(item.get("receivedDateTime")),
            )
            for item in listing.get("value") or []
            if item.get("id")
        ]

    def fetch_body(self, message_id: str) -> PlainMessage:
        payload = self._request(
            "GET",
            GRAPH_MESSAGE_URL.format(message_id=message_id),
            params={"$select": "id,subject,from,body"},
            headers={"Prefer": 'outlook.body-content-type="text"'},
        )
        body = payload.get("body") or {}
        content = body.get("content") or ""
        if (body.get("contentType") or "").lower() == "html":
            content = html_to_text(content)
        return PlainMessage(
            id=message_id,
            subject=payload.get("subject") or "",
            sender=_sender_address(payload),
            body=content,
        )

    def send_message(self, *, to: str, subject: str, body: str) -> str | None:
        self._request(
            "POST",
            GRAPH_SEND_URL,
            json={
                "message": {
                    "subject": subject,
                    "body": {"contentType": "Text", "content": body},
                    "toRecipients": [{"emailAddress": {"address": to}}],
                },
                "saveToSentItems": True,
            },
        )
        # sendMail answers 202 with no body, so there is no message id to record
        return None
