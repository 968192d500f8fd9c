"""Schemas for form templates, issued forms and responses."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from formrelay.db.enums import MailProvider


class FieldSpecRead(BaseModel):
    id: str
    label: str
    type: str
    required: bool = False
    options: list[str] | None = None
    placeholder: str | None = None


# =============================================================================
# Templates
# =============================================================================


class FormTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = None
    # Raw field dicts: the service validates them and reports every problem.
    fields: list[Any]
    is_default: bool = False


class FormTemplateUpdate(BaseModel):
    name: str | None = Field(None, max_length=150)
    description: str | None = None
    fields: list[Any] | None = None
    is_active: bool | None = None
    is_default: bool | None = None


class FormTemplateClone(BaseModel):
    name: str | None = Field(None, max_length=150)


class FormTemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    fields: list[FieldSpecRead]
    is_active: bool
    is_default: bool
    usage_count: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Issued forms
# =============================================================================


class FormIssueRequest(BaseModel):
    template_id: UUID | None = None  # default template when omitted
    candidate_email: str = Field(..., min_length=3, max_length=255)
    candidate_name: str | None = Field(None, max_length=255)
    issuer_email: str = Field(..., min_length=3, max_length=255)
    case_id: UUID | None = None
    expires_in_days: int | None = Field(None, ge=1, le=60)
    send_via: MailProvider | None = None


class FormSendRequest(BaseModel):
    provider: MailProvider


class FormStatusRead(BaseModel):
    token: str
    status: str
    candidate_email: str
    candidate_name: str | None
    issuer_email: str
    provider: str | None
    case_id: UUID | None
    template_id: UUID | None
    send_count: int
    delivery_status: str | None = None
    created_at: datetime
    sent_at: datetime | None
    opened_at: datetime | None
    completed_at: datetime | None
    expires_at: datetime
    days_since_sent: int | None
    link: str


class FormPublicRead(BaseModel):
    token: str
    candidate_name: str | None
    fields: list[FieldSpecRead]
    expires_at: datetime


class FormSubmitRequest(BaseModel):
    answers: dict[str, Any]


class FormSubmitResponse(BaseModel):
    response_id: UUID
    status: str = "completed"
    submitted_at: datetime


# =============================================================================
# Responses
# =============================================================================


class FormResponseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    form_token: str
    answers: dict[str, Any]
    origin: str
    source_address: str | None
    submitted_at: datetime
    candidate_name: str | None
    candidate_email: str | None
    candidate_profile: dict[str, Any] | None
    processed: bool
    processed_by: str | None
    processed_at: datetime | None
    case_id: UUID | None


class FormResponseDetail(FormResponseRead):
    fields: list[FieldSpecRead]


class ResponseStatsRead(BaseModel):
    total: int
    processed: int
    pending: int
    cases_created: int
    web: int
    email: int
