"""OAuth credential service.

Stores per-(identity, provider) mailbox credentials encrypted at rest and
hands out access tokens that are guaranteed unexpired, refreshing them on the
way. Refresh for one key is single-flight: concurrent callers wait for the
first refresh and reuse its result instead of racing the token endpoint.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from formrelay.core.async_utils import run_async
from formrelay.core.config import settings
from formrelay.core.encryption import decrypt_token, encrypt_token
from formrelay.core.errors import NotFoundError, TokenRefreshFailedError
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import MailProvider
from formrelay.db.models import OAuthCredential
from formrelay.db.types import as_utc
from formrelay.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

# Both providers issue one-hour access tokens when the response omits expires_in.
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# ============================================================================
# Google OAuth
# ============================================================================

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
]


def get_google_auth_url(state: str, redirect_uri: str | None = None) -> str:
    """Generate Google OAuth authorization URL."""
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": redirect_uri or settings.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_google_code(code: str, redirect_uri: str | None = None) -> dict[str, Any]:
    """Exchange authorization code for tokens."""
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri or settings.GOOGLE_REDIRECT_URI,
            },
        )
        response.raise_for_status()
        return response.json()


async def get_google_account_email(access_token: str) -> str | None:
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        return response.json().get("email")


async def refresh_google_token(refresh_token: str) -> dict[str, Any]:
    """Refresh a Google access token."""
    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as exc:
        raise TokenRefreshFailedError(f"Google token refresh failed: {exc}") from exc


# ============================================================================
# Microsoft OAuth
# ============================================================================

MICROSOFT_GRAPH_ME_URL = "https://graph.microsoft.com/v1.0/me"
MICROSOFT_SCOPES = [
    "offline_access",
    "https://graph.microsoft.com/User.Read",
    "https://graph.microsoft.com/Mail.Read",
    "https://graph.microsoft.com/Mail.Send",
]


def _microsoft_token_url() -> str:
    return f"{settings.microsoft_authority}/oauth2/v2.0/token"


def get_microsoft_auth_url(state: str, redirect_uri: str | None = None) -> str:
    """Generate Microsoft identity platform authorization URL."""
    params = {
        "client_id": settings.MICROSOFT_CLIENT_ID,
        "redirect_uri": redirect_uri or settings.MICROSOFT_REDIRECT_URI,
        "response_type": "code",
        "response_mode": "query",
        "scope": " ".join(MICROSOFT_SCOPES),
        "prompt": "consent",
        "state": state,
    }
    return f"{settings.microsoft_authority}/oauth2/v2.0/authorize?{urlencode(params)}"


async def exchange_microsoft_code(code: str, redirect_uri: str | None = None) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.post(
            _microsoft_token_url(),
            data={
                "client_id": settings.MICROSOFT_CLIENT_ID,
                "client_secret": settings.MICROSOFT_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri or settings.MICROSOFT_REDIRECT_URI,
                "scope": " ".join(MICROSOFT_SCOPES),
            },
        )
        response.raise_for_status()
        return response.json()


async def get_microsoft_account_email(access_token: str) -> str | None:
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.get(
            MICROSOFT_GRAPH_ME_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        payload = response.json()
        return payload.get("mail") or payload.get("userPrincipalName")


async def refresh_microsoft_token(refresh_token: str) -> dict[str, Any]:
    """Refresh a Microsoft access token (Microsoft rotates the refresh token too)."""
    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
            response = await client.post(
                _microsoft_token_url(),
                data={
                    "client_id": settings.MICROSOFT_CLIENT_ID,
                    "client_secret": settings.MICROSOFT_CLIENT_SECRET,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    "scope": " ".join(MICROSOFT_SCOPES),
                },
            )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPError as exc:
        raise TokenRefreshFailedError(f"Microsoft token refresh failed: {exc}") from exc


# ============================================================================
# Provider dispatch
# ============================================================================


def get_auth_url(provider: MailProvider | str, state: str, redirect_uri: str | None = None) -> str:
    if MailProvider(provider) == MailProvider.GOOGLE:
        return get_google_auth_url(state, redirect_uri)
    return get_microsoft_auth_url(state, redirect_uri)


async def exchange_code(
    provider: MailProvider | str, code: str, redirect_uri: str | None = None
) -> tuple[dict[str, Any], str | None]:
    """Exchange an authorization code; returns (token payload, mailbox address)."""
    if MailProvider(provider) == MailProvider.GOOGLE:
        tokens = await exchange_google_code(code, redirect_uri)
        email = await get_google_account_email(tokens["access_token"])
    else:
        tokens = await exchange_microsoft_code(code, redirect_uri)
        email = await get_microsoft_account_email(tokens["access_token"])
    return tokens, email


def _refresher_for(provider: MailProvider | str) -> Callable[[str], Awaitable[dict[str, Any]]]:
    # Resolved at call time so the module-level functions can be swapped out.
    if MailProvider(provider) == MailProvider.GOOGLE:
        return refresh_google_token
    return refresh_microsoft_token


# ============================================================================
# Credential vault
# ============================================================================


class CredentialVault:
    """Issues valid access tokens for connected mailboxes."""

    def __init__(
        self,
        *,
        refresh_skew_seconds: int | None = None,
        refresh_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._skew = timedelta(
            seconds=settings.OAUTH_REFRESH_SKEW_SECONDS
            if refresh_skew_seconds is None
            else refresh_skew_seconds
        )
        self._refresh_timeout = (
            settings.PROVIDER_TIMEOUT_SECONDS if refresh_timeout is None else refresh_timeout
        )
        self._clock = clock or _now_utc
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, identity: str, provider: str) -> threading.Lock:
        key = (identity, provider)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @staticmethod
    def _key(identity: str, provider: MailProvider | str) -> tuple[str, str]:
        return normalize_email(identity) or "", MailProvider(provider).value

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def get_credential(
        self, db: Session, identity: str, provider: MailProvider | str
    ) -> OAuthCredential | None:
        identity_key, provider_key = self._key(identity, provider)
        return (
            db.query(OAuthCredential)
            .filter(
                OAuthCredential.identity == identity_key,
                OAuthCredential.provider == provider_key,
            )
            .one_or_none()
        )

    def list_credentials(self, db: Session) -> list[OAuthCredential]:
        return (
            db.query(OAuthCredential)
            .order_by(OAuthCredential.identity.asc(), OAuthCredential.provider.asc())
            .all()
        )

    def store(
        self,
        db: Session,
        identity: str,
        provider: MailProvider | str,
        *,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        expires_in: int | None = None,
        scopes: str | None = None,
    ) -> OAuthCredential:
        """Save or replace the credential for (identity, provider)."""
        identity_key, provider_key = self._key(identity, provider)
        if not identity_key:
            raise ValueError("identity is required")
        if expires_at is None and expires_in is not None:
            expires_at = self._clock() + timedelta(seconds=int(expires_in))

        with self._lock_for(identity_key, provider_key):
            credential = self.get_credential(db, identity_key, provider_key)
            if credential is None:
                credential = OAuthCredential(identity=identity_key, provider=provider_key)
                db.add(credential)
            credential.access_token_encrypted = encrypt_token(access_token)
            # Providers omit the refresh token on re-consent; keep the stored one.
            if refresh_token:
                credential.refresh_token_encrypted = encrypt_token(refresh_token)
            credential.expires_at = as_utc(expires_at)
            if scopes:
                credential.scopes = scopes
            db.commit()
        db.refresh(credential)
        logger.info(
            "Mailbox credential stored",
            extra=build_log_context(mailbox=identity_key, provider=provider_key),
        )
        return credential

    def revoke(self, db: Session, identity: str, provider: MailProvider | str) -> bool:
        """Delete the stored credential. Returns False when none existed."""
        identity_key, provider_key = self._key(identity, provider)
        with self._lock_for(identity_key, provider_key):
            credential = self.get_credential(db, identity_key, provider_key)
            if credential is None:
                return False
            db.delete(credential)
            db.commit()
        logger.info(
            "Mailbox credential revoked",
            extra=build_log_context(mailbox=identity_key, provider=provider_key),
        )
        return True

    # ------------------------------------------------------------------
    # Token issue
    # ------------------------------------------------------------------

    def needs_refresh(self, credential: OAuthCredential, now: datetime | None = None) -> bool:
        if credential.expires_at is None:
            # Unknown expiry: re-issue whenever the token can be refreshed.
            return bool(credential.refresh_token_encrypted)
        return (now or self._clock()) >= as_utc(credential.expires_at) - self._skew

    def get_valid_token(self, db: Session, identity: str, provider: MailProvider | str) -> str:
        """
        Return an access token that is not expired.

        Raises:
            NotFoundError: no credential stored for the mailbox
            TokenRefreshFailedError: the token had to be refreshed and could not be
        """
        identity_key, provider_key = self._key(identity, provider)
        credential = self.get_credential(db, identity_key, provider_key)
        if credential is None:
            raise NotFoundError("No credential stored for this mailbox")
        if not self.needs_refresh(credential):
            return decrypt_token(credential.access_token_encrypted)

        with self._lock_for(identity_key, provider_key):
            # Re-read under the lock: another caller may have refreshed already.
            credential = (
                db.query(OAuthCredential)
                .filter(
                    OAuthCredential.identity == identity_key,
                    OAuthCredential.provider == provider_key,
                )
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if credential is None:
                db.rollback()
                raise NotFoundError("No credential stored for this mailbox")
            if not self.needs_refresh(credential):
                access_token = decrypt_token(credential.access_token_encrypted)
                db.commit()
                return access_token
            try:
                return self._refresh(db, credential)
            except TokenRefreshFailedError:
                db.rollback()
                raise

    def _refresh(self, db: Session, credential: OAuthCredential) -> str:
        context = build_log_context(mailbox=credential.identity, provider=credential.provider)
        if not credential.refresh_token_encrypted:
            raise TokenRefreshFailedError("No refresh token stored; reconnect the mailbox")

        refresh_token = decrypt_token(credential.refresh_token_encrypted)
        refresher = _refresher_for(credential.provider)
        try:
            payload = run_async(refresher(refresh_token), timeout=self._refresh_timeout)
        except TimeoutError as exc:
            logger.warning("Token refresh timed out", extra=context)
            raise TokenRefreshFailedError("Token refresh timed out") from exc
        except TokenRefreshFailedError:
            logger.warning("Token refresh rejected by provider", extra=context)
            raise

        access_token = (payload or {}).get("access_token")
        if not access_token:
            raise TokenRefreshFailedError("Token refresh did not return an access token")

        now = self._clock()
        expires_in = payload.get("expires_in")
        if expires_in is None:
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS
        expires_at = now + timedelta(seconds=int(expires_in))
        if expires_at <= now:
            raise TokenRefreshFailedError("Token refresh returned an already expired token")

        credential.access_token_encrypted = encrypt_token(access_token)
        if payload.get("refresh_token"):
            credential.refresh_token_encrypted = encrypt_token(payload["refresh_token"])
        credential.expires_at = expires_at
        if payload.get("scope"):
            credential.scopes = payload["scope"]
        credential.last_refreshed_at = now
        db.commit()
        logger.info("Mailbox token refreshed", extra=context)
        return access_token


@lru_cache
def get_credential_vault() -> CredentialVault:
    return CredentialVault()
