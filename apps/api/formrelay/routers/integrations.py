"""Mailbox integration endpoints (OAuth connect, store, revoke)."""

import logging
import secrets

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from formrelay.core.config import settings
from formrelay.core.deps import get_credential_vault, get_db
from formrelay.db.enums import MailProvider
from formrelay.schemas.integrations import (
    CredentialRead,
    CredentialStoreRequest,
    OAuthConnectRead,
)
from formrelay.services import oauth_service
from formrelay.services.oauth_service import CredentialVault

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])

OAUTH_STATE_COOKIE = "formrelay_oauth_state"
OAUTH_STATE_MAX_AGE = 600


@router.get("", response_model=list[CredentialRead])
def list_credentials(
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
):
    return vault.list_credentials(db)


@router.post("", response_model=CredentialRead, status_code=201)
def store_credential(
    body: CredentialStoreRequest,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
):
    """Store a credential obtained out of band (service accounts, migrations)."""
    return vault.store(
        db,
        body.identity,
        body.provider,
        access_token=body.access_token,
        refresh_token=body.refresh_token,
        expires_at=body.expires_at,
        expires_in=body.expires_in,
        scopes=body.scopes,
    )


@router.delete("/{provider}/{identity}", status_code=204)
def revoke_credential(
    provider: MailProvider,
    identity: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
):
    if not vault.revoke(db, identity, provider):
        raise HTTPException(status_code=404, detail="Credential not found")
    return Response(status_code=204)


@router.get("/{provider}/connect", response_model=OAuthConnectRead)
def connect(provider: MailProvider, response: Response):
    """Start the OAuth flow; the state is pinned in a short-lived cookie."""
    state = secrets.token_urlsafe(24)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.ENV != "dev",
    )
    return OAuthConnectRead(auth_url=oauth_service.get_auth_url(provider, state))


@router.get("/{provider}/callback", response_model=CredentialRead)
async def oauth_callback(
    provider: MailProvider,
    request: Request,
    code: str = Query(...),
    state: str = Query(...),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
):
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not expected_state or not secrets.compare_digest(expected_state, state):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    try:
        tokens, account_email = await oauth_service.exchange_code(provider, code)
    except httpx.HTTPError as exc:
        logger.warning("OAuth code exchange failed for %s: %s", provider.value, exc)
        raise HTTPException(status_code=502, detail="OAuth code exchange failed")
    if not account_email:
        raise HTTPException(status_code=502, detail="Could not determine mailbox address")

    # The vault commits and takes a per-mailbox lock; keep both off the event loop.
    return await run_in_threadpool(
        vault.store,
        db,
        account_email,
        provider,
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        expires_in=tokens.get("expires_in"),
        scopes=tokens.get("scope"),
    )
