import base64
import json
from datetime import datetime, timezone

import httpx
import pytest

from formrelay.core.errors import MessageUnavailableError, ProviderUnavailableError
from formrelay.services.mail_providers import open_gateway
from formrelay.services.mail_providers.base import html_to_text
from formrelay.services.mail_providers.gmail import extract_plain_text

AFTER = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def test_gmail_lists_and_fetches_replies():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path.endswith("/messages"):
            return httpx.Response(200, json={"messages": [{"id": "abc"}]})
        if request.url.params.get("format") == "metadata":
            return httpx.Response(
                200,
                json={
                    "id": "abc",
                    "internalDate": str(int(AFTER.timestamp() * 1000) + 60_000),
                    "payload": {
                        "headers": [
                            {"name": "Subject", "value": "RE: Complete Your Information"},
                            {"name": "From", "value": "Jane <jane@example.com>"},
                        ]
                    },
                },
            )
        return httpx.Response(
            200,
            json={
                "id": "abc",
                "payload": {
                    "mimeType": "multipart/alternative",
                    "headers": [{"name": "Subject", "value": "RE: Complete Your Information"}],
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64("Name: Jane")}},
                        {"mimeType": "text/html", "body": {"data": _b64("<p>Name: Jane</p>")}},
                    ],
                },
            },
        )

    with open_gateway("google", "gmail-token", transport=httpx.MockTransport(handler)) as gateway:
        refs = gateway.list_messages_from("jane@example.com", AFTER)
        message = gateway.fetch_body("abc")

    assert [ref.id for ref in refs] == ["abc"]
    assert refs[0].sender == "Jane <jane@example.com>"
    assert refs[0].received_at > AFTER
    assert message.body == "Name: Jane"
    assert seen[0].url.params["q"] == f"from:jane@example.com after:{int(AFTER.timestamp())}"
    assert seen[0].headers["Authorization"] == "Bearer gmail-token"


def test_gmail_send_returns_message_id():
    def handler(request: httpx.Request) -> httpx.Response:
        raw = json.loads(request.content)["raw"]
        padded = raw + "=" * (-len(raw) % 4)
        assert b"jane@example.com" in base64.urlsafe_b64decode(padded)
        return httpx.Response(200, json={"id": "sent-1"})

    with open_gateway("google", "t", transport=httpx.MockTransport(handler)) as gateway:
        assert gateway.send_message(to="jane@example.com", subject="Hi", body="Link") == "sent-1"


def test_outlook_filters_by_sender_and_reads_text_body():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/messages"):
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "id": "m-1",
                            "subject": "RE: Complete Your Information",
                            "from": {"emailAddress": {"address": "o'neil@example.com"}},
                            "receivedDateTime": "2026-03-02T10:00:00Z",
                        }
                    ]
                },
            )
        return httpx.Response(
            200,
            json={
                "id": "m-1",
                "subject": "RE: Complete Your Information",
                "from": {"emailAddress": {"address": "o'neil@example.com", "name": "Pat O'Neil"}},
                "body": {"contentType": "html", "content": "<div>Name: Pat</div><div>Visa: GC</div>"},
            },
        )

    with open_gateway("microsoft", "graph-token", transport=httpx.MockTransport(handler)) as gateway:
        refs = gateway.list_messages_from("o'neil@example.com", AFTER)
        message = gateway.fetch_body("m-1")

    assert refs[0].received_at == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    assert "from/emailAddress/address eq 'o''neil@example.com'" in seen[0].url.params["$filter"]
    assert seen[1].headers["Prefer"] == 'outlook.body-content-type="text"'
    assert message.sender == "Pat O'Neil <o'neil@example.com>"
    assert "Name: Pat" in message.body and "Visa: GC" in message.body


def test_outlook_send_has_no_message_id():
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload["message"]["toRecipients"] == [{"emailAddress": {"address": "jane@example.com"}}]
        return httpx.Response(202)

    with open_gateway("microsoft", "t", transport=httpx.MockTransport(handler)) as gateway:
        assert gateway.send_message(to="jane@example.com", subject="Hi", body="Link") is None


def test_provider_errors_become_provider_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": {"message": "Backend Error"}})

    with open_gateway("google", "t", transport=httpx.MockTransport(handler)) as gateway:
        with pytest.raises(ProviderUnavailableError, match="Backend Error"):
            gateway.list_messages_from("jane@example.com", AFTER)


def test_missing_message_is_message_scoped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "ErrorItemNotFound"}})

    with open_gateway("microsoft", "t", transport=httpx.MockTransport(handler)) as gateway:
        with pytest.raises(MessageUnavailableError, match="404"):
            gateway.fetch_body("gone")


def test_auth_failure_is_mailbox_wide():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "InvalidAuthenticationToken"}})

    with open_gateway("microsoft", "t", transport=httpx.MockTransport(handler)) as gateway:
        with pytest.raises(ProviderUnavailableError) as excinfo:
            gateway.fetch_body("m-1")
    assert not isinstance(excinfo.value, MessageUnavailableError)


def test_gmail_listing_skips_messages_deleted_before_metadata_read():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            return httpx.Response(200, json={"messages": [{"id": "gone"}, {"id": "kept"}]})
        if request.url.path.endswith("/gone"):
            return httpx.Response(404, json={"error": {"message": "Not Found"}})
        return httpx.Response(
            200,
            json={
                "id": "kept",
                "internalDate": "1772366400000",
                "payload": {"headers": [{"name": "Subject", "value": "RE: Hi"}]},
            },
        )

    with open_gateway("google", "t", transport=httpx.MockTransport(handler)) as gateway:
        refs = gateway.list_messages_from("jane@example.com", AFTER)

    assert [ref.id for ref in refs] == ["kept"]


def test_provider_timeouts_become_provider_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with open_gateway("microsoft", "t", transport=httpx.MockTransport(handler)) as gateway:
        with pytest.raises(ProviderUnavailableError, match="timed out"):
            gateway.fetch_body("m-1")


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        with open_gateway("yahoo", "t"):
            pass


def test_html_fallback_when_no_plain_part():
    payload = {"payload": {"mimeType": "text/html", "body": {"data": _b64("<p>Name: Jane</p><br>Email: j@x.com")}}}

    text = extract_plain_text(payload)

    assert "Name: Jane" in text
    assert "Email: j@x.com" in text
    assert html_to_text("<script>x()</script>A &amp; B") == "A & B"
