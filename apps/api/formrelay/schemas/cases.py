"""Schemas for cases, verification, notes and activity."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from formrelay.db.enums import CasePriority, CaseStatus, VerificationCheck


class CaseCreate(BaseModel):
    candidate_name: str = Field(..., min_length=1, max_length=255)
    candidate_email: str | None = Field(None, max_length=255)
    candidate_phone: str | None = Field(None, max_length=50)
    candidate_profile: dict[str, Any] | None = None
    priority: CasePriority = CasePriority.MEDIUM
    assigned_to: str | None = None


class CaseTransitionRequest(BaseModel):
    status: CaseStatus
    reason: str | None = Field(None, max_length=500)


class VerificationUpdateRequest(BaseModel):
    check: VerificationCheck
    verified: bool
    notes: str | None = None


class PriorityUpdateRequest(BaseModel):
    priority: CasePriority


class AssignRequest(BaseModel):
    assigned_to: str | None = None


class NoteCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=10000)


class VerificationCheckRead(BaseModel):
    verified: bool
    verified_at: datetime | None
    verified_by: str | None
    notes: str | None


class SlaRead(BaseModel):
    deadline: datetime
    state: str
    hours_remaining: float
    breached: bool
    breached_at: datetime | None


class CaseRead(BaseModel):
    id: UUID
    case_number: str
    candidate_name: str
    candidate_email: str | None
    candidate_phone: str | None
    candidate_profile: dict[str, Any] | None
    status: str
    allowed_transitions: list[str]
    priority: str
    source: str
    assigned_to: str | None
    verification_status: str
    verification: dict[str, VerificationCheckRead]
    sla: SlaRead
    created_by: str | None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None


class CaseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    case_number: str
    candidate_name: str
    status: str
    priority: str
    assigned_to: str | None
    sla_deadline: datetime
    sla_breached: bool
    created_at: datetime


class CaseActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    activity_type: str
    actor: str | None
    details: dict[str, Any] | None
    created_at: datetime


class CaseNoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    body: str
    author: str | None
    created_at: datetime
