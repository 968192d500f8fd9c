"""Case activity logging - the append-only record of what happened to a case."""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from formrelay.db.enums import CaseActivityType
from formrelay.db.models import CaseActivity


def log_activity(
    db: Session,
    case_id: UUID,
    activity_type: CaseActivityType,
    actor: str | None = None,
    details: dict | None = None,
    now: datetime | None = None,
) -> CaseActivity:
    """
    Append an activity entry for a case.

    Flushes without committing; the caller owns the transaction.
    """
    activity = CaseActivity(
        case_id=case_id,
        activity_type=activity_type.value,
        actor=actor,
        details=details,
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(activity)
    db.flush()
    return activity


def list_activities(db: Session, case_id: UUID) -> list[CaseActivity]:
    return (
        db.query(CaseActivity)
        .filter(CaseActivity.case_id == case_id)
        .order_by(CaseActivity.created_at.asc())
        .all()
    )
