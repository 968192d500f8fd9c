"""Case endpoints: intake, pipeline transitions, verification, notes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from formrelay.core.deps import get_actor, get_db
from formrelay.core.status_rules import allowed_case_transitions
from formrelay.db.enums import CasePriority, CaseStatus
from formrelay.db.models import Case
from formrelay.schemas.cases import (
    AssignRequest,
    CaseActivityRead,
    CaseCreate,
    CaseNoteRead,
    CaseRead,
    CaseSummary,
    CaseTransitionRequest,
    NoteCreate,
    PriorityUpdateRequest,
    VerificationUpdateRequest,
)
from formrelay.services import activity_service, case_service

router = APIRouter(prefix="/cases", tags=["cases"])


def _case_read(db: Session, case: Case) -> CaseRead:
    # Breach is recorded the first time anyone looks at an overdue case.
    case_service.record_sla_breach(db, case)
    return CaseRead(
        id=case.id,
        case_number=case.case_number,
        candidate_name=case.candidate_name,
        candidate_email=case.candidate_email,
        candidate_phone=case.candidate_phone,
        candidate_profile=case.candidate_profile,
        status=case.status,
        allowed_transitions=[
            status.value for status in allowed_case_transitions(CaseStatus(case.status))
        ],
        priority=case.priority,
        source=case.source,
        assigned_to=case.assigned_to,
        verification_status=case.verification_status,
        verification=case_service.verification_summary(case),
        sla=case_service.sla_status(case),
        created_by=case.created_by,
        created_at=case.created_at,
        updated_at=case.updated_at,
        closed_at=case.closed_at,
    )


@router.get("", response_model=list[CaseSummary])
def list_cases(
    status: CaseStatus | None = Query(None),
    priority: CasePriority | None = Query(None),
    assigned_to: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return case_service.list_cases(
        db,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=CaseRead, status_code=201)
def create_case(
    body: CaseCreate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    """Manual intake."""
    case = case_service.create_case(
        db,
        candidate_name=body.candidate_name,
        candidate_email=body.candidate_email,
        candidate_phone=body.candidate_phone,
        candidate_profile=body.candidate_profile,
        priority=body.priority,
        assigned_to=body.assigned_to,
        actor=actor,
    )
    return _case_read(db, case)


@router.get("/{case_id}", response_model=CaseRead)
def get_case(case_id: UUID, db: Session = Depends(get_db)):
    return _case_read(db, case_service.get_case(db, case_id))


@router.post("/{case_id}/transition", response_model=CaseRead)
def transition_case(
    case_id: UUID,
    body: CaseTransitionRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    case = case_service.transition(db, case_id, body.status, actor=actor, reason=body.reason)
    return _case_read(db, case)


@router.post("/{case_id}/verification", response_model=CaseRead)
def update_verification(
    case_id: UUID,
    body: VerificationUpdateRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    case = case_service.update_verification(
        db, case_id, body.check, body.verified, notes=body.notes, actor=actor
    )
    return _case_read(db, case)


@router.patch("/{case_id}/priority", response_model=CaseRead)
def set_priority(
    case_id: UUID,
    body: PriorityUpdateRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return _case_read(db, case_service.set_priority(db, case_id, body.priority, actor=actor))


@router.patch("/{case_id}/assignee", response_model=CaseRead)
def assign_case(
    case_id: UUID,
    body: AssignRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return _case_read(db, case_service.assign_case(db, case_id, body.assigned_to, actor=actor))


@router.get("/{case_id}/notes", response_model=list[CaseNoteRead])
def list_notes(case_id: UUID, db: Session = Depends(get_db)):
    return case_service.list_notes(db, case_id)


@router.post("/{case_id}/notes", response_model=CaseNoteRead, status_code=201)
def add_note(
    case_id: UUID,
    body: NoteCreate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return case_service.add_note(db, case_id, body.body, author=actor)


@router.get("/{case_id}/activities", response_model=list[CaseActivityRead])
def list_activities(case_id: UUID, db: Session = Depends(get_db)):
    case_service.get_case(db, case_id)
    return activity_service.list_activities(db, case_id)
