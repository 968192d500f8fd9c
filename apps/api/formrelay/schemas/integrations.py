"""Schemas for mailbox credentials and reconciliation runs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from formrelay.db.enums import MailProvider


class CredentialStoreRequest(BaseModel):
    identity: str = Field(..., min_length=3, max_length=255)
    provider: MailProvider
    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = Field(None, ge=0)
    expires_at: datetime | None = None
    scopes: str | None = None


class CredentialRead(BaseModel):
    """Credential metadata. Tokens are never returned."""

    model_config = ConfigDict(from_attributes=True)

    identity: str
    provider: str
    expires_at: datetime | None
    scopes: str | None
    last_refreshed_at: datetime | None
    updated_at: datetime


class OAuthConnectRead(BaseModel):
    auth_url: str


class ReconciliationReportRead(BaseModel):
    cycle_id: str
    case_id: UUID | None
    started_at: datetime
    finished_at: datetime | None
    mailboxes: int
    mailbox_failures: int
    forms_checked: int
    completed: int
    pending: int
    form_errors: int
