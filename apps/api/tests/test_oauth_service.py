import threading
from datetime import datetime, timedelta, timezone

import anyio
import httpx
import pytest

from formrelay.core.errors import NotFoundError, TokenRefreshFailedError
from formrelay.db.enums import MailProvider
from formrelay.services import oauth_service
from formrelay.services.oauth_service import CredentialVault

MAILBOX = "recruiter@agency.com"


def _store_expired(db, vault: CredentialVault, refresh_token: str | None = "refresh-1"):
    return vault.store(
        db,
        MAILBOX,
        MailProvider.GOOGLE,
        access_token="stale-access",
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )


def test_tokens_are_encrypted_at_rest(db):
    vault = CredentialVault()
    credential = vault.store(
        db,
        "Recruiter@Agency.com",
        "google",
        access_token="plain-access",
        refresh_token="plain-refresh",
        expires_in=3600,
    )

    assert credential.identity == MAILBOX
    assert "plain-access" not in credential.access_token_encrypted
    assert "plain-refresh" not in credential.refresh_token_encrypted
    assert vault.get_valid_token(db, MAILBOX, "google") == "plain-access"


def test_fresh_token_is_returned_without_refresh(db, monkeypatch):
    async def _fail(refresh_token):
        pytest.fail("refresh should not be called for a fresh token")

    monkeypatch.setattr(oauth_service, "refresh_google_token", _fail)
    vault = CredentialVault()
    vault.store(db, MAILBOX, "google", access_token="fresh", expires_in=3600)

    assert vault.get_valid_token(db, MAILBOX, "google") == "fresh"


def test_expired_token_is_refreshed_and_persisted(db, monkeypatch):
    async def _refresh(refresh_token):
        assert refresh_token == "refresh-1"
        return {"access_token": "new-access", "expires_in": 3600, "refresh_token": "refresh-2"}

    monkeypatch.setattr(oauth_service, "refresh_google_token", _refresh)
    vault = CredentialVault()
    _store_expired(db, vault)

    assert vault.get_valid_token(db, MAILBOX, MailProvider.GOOGLE) == "new-access"

    credential = vault.get_credential(db, MAILBOX, "google")
    assert credential.last_refreshed_at is not None
    assert vault.needs_refresh(credential) is False
    assert vault.get_valid_token(db, MAILBOX, "google") == "new-access"


def test_zero_expires_in_is_stored_as_expired(db, monkeypatch):
    calls = []

    async def _refresh(refresh_token):
        calls.append(refresh_token)
        return {"access_token": "new-access", "expires_in": 3600}

    monkeypatch.setattr(oauth_service, "refresh_google_token", _refresh)
    vault = CredentialVault()
    credential = vault.store(
        db, MAILBOX, "google", access_token="stale", refresh_token="rt", expires_in=0
    )

    assert credential.expires_at is not None
    assert vault.get_valid_token(db, MAILBOX, "google") == "new-access"
    assert calls == ["rt"]


def test_unknown_expiry_with_refresh_token_is_refreshed(db, monkeypatch):
    calls = []

    async def _refresh(refresh_token):
        calls.append(refresh_token)
        return {"access_token": "new-access"}

    monkeypatch.setattr(oauth_service, "refresh_google_token", _refresh)
    vault = CredentialVault()
    vault.store(db, MAILBOX, "google", access_token="unknown", refresh_token="rt")

    assert vault.get_valid_token(db, MAILBOX, "google") == "new-access"
    assert vault.get_valid_token(db, MAILBOX, "google") == "new-access"
    assert calls == ["rt"]

    credential = vault.get_credential(db, MAILBOX, "google")
    assert credential.expires_at is not None
    assert vault.needs_refresh(credential) is False


def test_concurrent_callers_refresh_once(session_factory, monkeypatch):
    calls = []

    async def _slow_refresh(refresh_token):
        calls.append(refresh_token)
        await anyio.sleep(0.2)
        return {"access_token": f"access-{len(calls)}", "expires_in": 3600}

    monkeypatch.setattr(oauth_service, "refresh_google_token", _slow_refresh)
    vault = CredentialVault()
    setup = session_factory()
    try:
        _store_expired(setup, vault)
    finally:
        setup.close()

    results: list[str] = []
    errors: list[BaseException] = []

    def _worker():
        session = session_factory()
        try:
            results.append(vault.get_valid_token(session, MAILBOX, "google"))
        except BaseException as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=_worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(calls) == 1
    assert results == ["access-1"] * 5


def test_rejected_refresh_raises(db, monkeypatch):
    async def _rejected(refresh_token):
        raise TokenRefreshFailedError("invalid_grant")

    monkeypatch.setattr(oauth_service, "refresh_google_token", _rejected)
    vault = CredentialVault()
    _store_expired(db, vault)

    with pytest.raises(TokenRefreshFailedError):
        vault.get_valid_token(db, MAILBOX, "google")


def test_refresh_timeout_is_a_refresh_failure(db, monkeypatch):
    async def _hangs(refresh_token):
        await anyio.sleep(5)
        return {"access_token": "too-late"}

    monkeypatch.setattr(oauth_service, "refresh_google_token", _hangs)
    vault = CredentialVault(refresh_timeout=0.05)
    _store_expired(db, vault)

    with pytest.raises(TokenRefreshFailedError):
        vault.get_valid_token(db, MAILBOX, "google")


def test_missing_refresh_token_fails(db):
    vault = CredentialVault()
    _store_expired(db, vault, refresh_token=None)

    with pytest.raises(TokenRefreshFailedError):
        vault.get_valid_token(db, MAILBOX, "google")


def test_unknown_mailbox_is_not_found(db):
    with pytest.raises(NotFoundError):
        CredentialVault().get_valid_token(db, "nobody@agency.com", "microsoft")


def test_revoke(db):
    vault = CredentialVault()
    vault.store(db, MAILBOX, "microsoft", access_token="a")

    assert vault.revoke(db, MAILBOX, "microsoft") is True
    assert vault.revoke(db, MAILBOX, "microsoft") is False
    assert vault.list_credentials(db) == []


def test_reconnect_keeps_stored_refresh_token(db):
    vault = CredentialVault()
    vault.store(db, MAILBOX, "google", access_token="a", refresh_token="keep-me")
    credential = vault.store(db, MAILBOX, "google", access_token="b")

    assert oauth_service.decrypt_token(credential.refresh_token_encrypted) == "keep-me"
    assert len(vault.list_credentials(db)) == 1


async def test_refresh_google_token_maps_http_errors(monkeypatch):
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    real_client = httpx.AsyncClient

    def _client(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(_handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(oauth_service.httpx, "AsyncClient", _client)

    with pytest.raises(TokenRefreshFailedError):
        await oauth_service.refresh_google_token("bad-refresh")


def test_google_auth_url_carries_state():
    url = oauth_service.get_auth_url("google", "state-123", "http://localhost/callback")

    assert url.startswith(oauth_service.GOOGLE_AUTH_URL)
    assert "state=state-123" in url
    assert "access_type=offline" in url
