"""Case service - projects responses into cases and drives the case pipeline.

All status changes go through ``transition`` (or the verification auto-move,
which steps through the same function), so every move is checked against
``core.status_rules.CASE_TRANSITIONS`` and recorded in the activity log.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from formrelay.core.config import settings
from formrelay.core.errors import (
    AlreadyCompletedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from formrelay.core.status_rules import (
    CASE_SLA_EXEMPT_STATUSES,
    VERIFICATION_GATE,
    is_case_transition_allowed,
    remaining_verification_path,
)
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import (
    CaseActivityType,
    CasePriority,
    CaseSource,
    CaseStatus,
    SlaState,
    VerificationCheck,
    VerificationStatus,
)
from formrelay.db.models import Case, CaseNote, CaseVerificationCheck, Form, FormResponse
from formrelay.db.types import as_utc
from formrelay.services import activity_service

logger = logging.getLogger(__name__)

CASE_NUMBER_PREFIX = "CASE-"
CASE_NUMBER_ATTEMPTS = 5


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def generate_case_number() -> str:
    return f"{CASE_NUMBER_PREFIX}{secrets.token_hex(3).upper()}"


# =============================================================================
# Create / read
# =============================================================================


def create_case(
    db: Session,
    *,
    candidate_name: str,
    candidate_email: str | None = None,
    candidate_phone: str | None = None,
    candidate_profile: dict[str, Any] | None = None,
    priority: CasePriority = CasePriority.MEDIUM,
    source: CaseSource = CaseSource.MANUAL,
    assigned_to: str | None = None,
    actor: str | None = None,
    sla_hours: int | None = None,
    now: datetime | None = None,
) -> Case:
    """Open a case in INTAKE with its SLA deadline fixed from ``now``."""
    if not candidate_name or not candidate_name.strip():
        raise ValidationFailedError({"candidate_name": "required"})

    now = now or _now_utc()
    hours = sla_hours if sla_hours is not None else settings.CASE_SLA_HOURS
    for attempt in range(CASE_NUMBER_ATTEMPTS):
        case = Case(
            case_number=generate_case_number(),
            candidate_name=candidate_name.strip(),
            candidate_email=candidate_email,
            candidate_phone=candidate_phone,
            candidate_profile=candidate_profile,
            status=CaseStatus.INTAKE.value,
            priority=CasePriority(priority).value,
            source=CaseSource(source).value,
            assigned_to=assigned_to,
            sla_deadline=now + timedelta(hours=hours),
            verification_status=VerificationStatus.NOT_STARTED.value,
            created_by=actor,
            created_at=now,
            updated_at=now,
        )
        case.verification_checks = [
            CaseVerificationCheck(check_name=check.value, verified=False)
            for check in VerificationCheck
        ]
        db.add(case)
        try:
            db.flush()
            break
        except IntegrityError:
            # case_number collision; retry with a fresh number
            db.rollback()
            if attempt == CASE_NUMBER_ATTEMPTS - 1:
                raise

    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.CASE_CREATED,
        actor=actor,
        details={"source": case.source, "sla_deadline": case.sla_deadline.isoformat()},
        now=now,
    )
    db.commit()
    db.refresh(case)
    logger.info("Case created", extra=build_log_context(case_id=case.id))
    return case


def get_case(db: Session, case_id: UUID) -> Case:
    case = db.get(Case, case_id)
    if case is None:
        raise NotFoundError("Case not found")
    return case


def _get_case_for_update(db: Session, case_id: UUID) -> Case:
    case = (
        db.query(Case)
        .filter(Case.id == case_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if case is None:
        raise NotFoundError("Case not found")
    return case


def list_cases(
    db: Session,
    *,
    status: CaseStatus | None = None,
    priority: CasePriority | None = None,
    assigned_to: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Case]:
    query = db.query(Case)
    if status is not None:
        query = query.filter(Case.status == CaseStatus(status).value)
    if priority is not None:
        query = query.filter(Case.priority == CasePriority(priority).value)
    if assigned_to:
        query = query.filter(Case.assigned_to == assigned_to)
    return query.order_by(Case.created_at.desc()).offset(offset).limit(limit).all()


# =============================================================================
# Transitions
# =============================================================================


def _apply_transition(
    db: Session,
    case: Case,
    target: CaseStatus,
    *,
    actor: str | None,
    reason: str | None,
    now: datetime,
) -> None:
    current = CaseStatus(case.status)
    if not is_case_transition_allowed(current, target):
        raise InvalidTransitionError(
            f"Cannot move case from {current.value} to {target.value}"
        )
    case.status = target.value
    case.updated_at = now
    if target == CaseStatus.CLOSED:
        case.closed_at = now
    details: dict[str, Any] = {"from": current.value, "to": target.value}
    if reason:
        details["reason"] = reason
    activity_service.log_activity(
        db, case.id, CaseActivityType.STATUS_CHANGED, actor=actor, details=details, now=now
    )


def transition(
    db: Session,
    case_id: UUID,
    new_status: CaseStatus | str,
    *,
    actor: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Case:
    """
    Move a case along one edge of the status graph.

    Raises InvalidTransitionError for any edge not in the graph; the case is
    left untouched in that case.
    """
    now = now or _now_utc()
    target = CaseStatus(new_status)
    case = _get_case_for_update(db, case_id)
    try:
        _apply_transition(db, case, target, actor=actor, reason=reason, now=now)
    except InvalidTransitionError:
        db.rollback()
        raise
    db.commit()
    db.refresh(case)
    return case


# =============================================================================
# Verification
# =============================================================================


def verification_summary(case: Case) -> dict[str, dict[str, Any]]:
    checks = {row.check_name: row for row in case.verification_checks}
    summary: dict[str, dict[str, Any]] = {}
    for check in VerificationCheck:
        row = checks.get(check.value)
        summary[check.value] = {
            "verified": bool(row and row.verified),
            "verified_at": row.verified_at if row else None,
            "verified_by": row.verified_by if row else None,
            "notes": row.notes if row else None,
        }
    return summary


def _rollup_verification(case: Case) -> VerificationStatus:
    verified = {row.check_name for row in case.verification_checks if row.verified}
    if not verified:
        return VerificationStatus.NOT_STARTED
    if len(verified) == len(VerificationCheck):
        return VerificationStatus.COMPLETED
    if all(check.value in verified for check in VERIFICATION_GATE):
        return VerificationStatus.PARTIAL
    return VerificationStatus.IN_PROGRESS


def update_verification(
    db: Session,
    case_id: UUID,
    check: VerificationCheck | str,
    verified: bool,
    *,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Case:
    """
    Record one verification check.

    Once LinkedIn, education and experience are all verified, a case still on
    the intake/verification path steps forward to VERIFIED on its own.
    References are informational and do not gate the move.
    """
    now = now or _now_utc()
    check = VerificationCheck(check)
    case = _get_case_for_update(db, case_id)
    if CaseStatus(case.status) == CaseStatus.CLOSED:
        db.rollback()
        raise InvalidTransitionError("Case is closed")

    row = next((item for item in case.verification_checks if item.check_name == check.value), None)
    if row is None:
        row = CaseVerificationCheck(check_name=check.value)
        case.verification_checks.append(row)
    row.verified = verified
    row.verified_at = now if verified else None
    row.verified_by = actor if verified else None
    row.notes = notes
    case.verification_status = _rollup_verification(case).value
    case.updated_at = now

    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.VERIFICATION_UPDATED,
        actor=actor,
        details={"check": check.value, "verified": verified},
        now=now,
    )

    verified_checks = {item.check_name for item in case.verification_checks if item.verified}
    if all(gate.value in verified_checks for gate in VERIFICATION_GATE):
        for step in remaining_verification_path(CaseStatus(case.status)):
            _apply_transition(
                db,
                case,
                step,
                actor=actor,
                reason="verification checks complete",
                now=now,
            )

    db.commit()
    db.refresh(case)
    return case


# =============================================================================
# Notes, priority, assignment
# =============================================================================


def add_note(
    db: Session,
    case_id: UUID,
    body: str,
    *,
    author: str | None = None,
    now: datetime | None = None,
) -> CaseNote:
    if not body or not body.strip():
        raise ValidationFailedError({"body": "required"})
    now = now or _now_utc()
    case = get_case(db, case_id)
    note = CaseNote(case_id=case.id, body=body.strip(), author=author, created_at=now)
    db.add(note)
    db.flush()
    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.NOTE_ADDED,
        actor=author,
        details={"note_id": str(note.id)},
        now=now,
    )
    db.commit()
    db.refresh(note)
    return note


def list_notes(db: Session, case_id: UUID) -> list[CaseNote]:
    get_case(db, case_id)
    return (
        db.query(CaseNote)
        .filter(CaseNote.case_id == case_id)
        .order_by(CaseNote.created_at.asc())
        .all()
    )


def set_priority(
    db: Session,
    case_id: UUID,
    priority: CasePriority | str,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Case:
    now = now or _now_utc()
    priority = CasePriority(priority)
    case = _get_case_for_update(db, case_id)
    previous = case.priority
    if previous != priority.value:
        case.priority = priority.value
        case.updated_at = now
        activity_service.log_activity(
            db,
            case.id,
            CaseActivityType.PRIORITY_CHANGED,
            actor=actor,
            details={"from": previous, "to": priority.value},
            now=now,
        )
    db.commit()
    db.refresh(case)
    return case


def assign_case(
    db: Session,
    case_id: UUID,
    assignee: str | None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Case:
    now = now or _now_utc()
    case = _get_case_for_update(db, case_id)
    case.assigned_to = assignee
    case.updated_at = now
    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.ASSIGNED,
        actor=actor,
        details={"assigned_to": assignee},
        now=now,
    )
    db.commit()
    db.refresh(case)
    return case


# =============================================================================
# SLA
# =============================================================================


def sla_status(case: Case, now: datetime | None = None) -> dict[str, Any]:
    """Computed SLA view; the deadline itself never changes after creation."""
    now = now or _now_utc()
    deadline = as_utc(case.sla_deadline)
    remaining = deadline - now
    if CaseStatus(case.status) in CASE_SLA_EXEMPT_STATUSES:
        state = SlaState.BREACHED if case.sla_breached else SlaState.ON_TRACK
    elif remaining.total_seconds() <= 0:
        state = SlaState.BREACHED
    elif remaining <= timedelta(hours=settings.CASE_SLA_WARNING_HOURS):
        state = SlaState.AT_RISK
    else:
        state = SlaState.ON_TRACK
    return {
        "deadline": deadline,
        "state": state.value,
        "hours_remaining": round(remaining.total_seconds() / 3600, 1),
        "breached": case.sla_breached or state == SlaState.BREACHED,
        "breached_at": case.sla_breached_at,
    }


def record_sla_breach(db: Session, case: Case, now: datetime | None = None) -> bool:
    """Set the one-time breach flag the first time a breach is observed."""
    now = now or _now_utc()
    if case.sla_breached or CaseStatus(case.status) in CASE_SLA_EXEMPT_STATUSES:
        return False
    if now < as_utc(case.sla_deadline):
        return False
    case.sla_breached = True
    case.sla_breached_at = now
    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.SLA_BREACHED,
        details={"sla_deadline": as_utc(case.sla_deadline).isoformat()},
        now=now,
    )
    db.commit()
    db.refresh(case)
    logger.warning("Case SLA breached", extra=build_log_context(case_id=case.id))
    return True


# =============================================================================
# Projection from responses
# =============================================================================


def _candidate_fields(response: FormResponse, form: Form) -> dict[str, Any]:
    profile = response.candidate_profile or {}
    return {
        "candidate_name": response.candidate_name
        or form.candidate_name
        or response.candidate_email
        or form.candidate_email,
        "candidate_email": response.candidate_email or form.candidate_email,
        "candidate_phone": profile.get("phone"),
        "candidate_profile": profile or None,
    }


def create_case_from_response(
    db: Session,
    response: FormResponse,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Case:
    """Open a new INTAKE case for a response that is not linked to one yet."""
    if response.case_id is not None:
        raise AlreadyCompletedError("Response is already linked to a case")
    now = now or _now_utc()
    form = response.form
    case = create_case(
        db,
        source=CaseSource.FORM_RESPONSE,
        actor=actor,
        now=now,
        **_candidate_fields(response, form),
    )
    response.case_id = case.id
    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.RESPONSE_RECEIVED,
        actor=actor,
        details={"response_id": str(response.id), "origin": response.origin},
        now=now,
    )
    db.commit()
    db.refresh(case)
    return case


def project_response(
    db: Session,
    response: FormResponse,
    *,
    actor: str | None = None,
    now: datetime | None = None,
) -> Case:
    """
    Attach a completed response to a case.

    A form issued for an existing case links to it (filling in candidate
    details the case is missing); otherwise a new INTAKE case is opened.
    """
    if response.case_id is not None:
        return get_case(db, response.case_id)

    now = now or _now_utc()
    form = response.form
    if form.case_id is None:
        return create_case_from_response(db, response, actor=actor, now=now)

    case = get_case(db, form.case_id)
    candidate = _candidate_fields(response, form)
    if not case.candidate_email and candidate["candidate_email"]:
        case.candidate_email = candidate["candidate_email"]
    if not case.candidate_phone and candidate["candidate_phone"]:
        case.candidate_phone = candidate["candidate_phone"]
    if candidate["candidate_profile"]:
        case.candidate_profile = {**(case.candidate_profile or {}), **candidate["candidate_profile"]}
    case.updated_at = now
    response.case_id = case.id
    activity_service.log_activity(
        db,
        case.id,
        CaseActivityType.RESPONSE_RECEIVED,
        actor=actor,
        details={"response_id": str(response.id), "origin": response.origin},
        now=now,
    )
    db.commit()
    db.refresh(case)
    return case
