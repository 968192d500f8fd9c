"""Response service - the single entry point for recording form answers.

Both the public web submission and reconciled email replies come through
``submit``; they differ only in ``origin`` and in how the answers were built.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from formrelay.core.errors import (
    AlreadyCompletedError,
    NotFoundError,
    ValidationFailedError,
)
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import FieldType, SubmissionOrigin
from formrelay.db.models import Form, FormResponse
from formrelay.services import case_service, form_service, response_events
from formrelay.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

EMAIL_PATTERN = form_service.EMAIL_PATTERN
PHONE_PATTERN = re.compile(r"^\+?[\d\s().\-/]+$")
MIN_PHONE_DIGITS = 10
ERROR_REQUIRED = "required"
ERROR_FORMAT = "invalid format"
ERROR_OPTION = "invalid option"


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# =============================================================================
# Answer validation
# =============================================================================


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _valid_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _valid_phone(value: str) -> bool:
    if not PHONE_PATTERN.match(value.strip()):
        return False
    return sum(char.isdigit() for char in value) >= MIN_PHONE_DIGITS


def _valid_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return True
    return False


def _valid_date(value: Any) -> bool:
    if isinstance(value, date):
        return True
    if not isinstance(value, str):
        return False
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        return False
    return True


def _validate_field_value(field: dict[str, Any], value: Any) -> str | None:
    """Error message for a non-empty value, or None when it is acceptable."""
    field_type = field.get("type")
    options = field.get("options") or []

    if field_type in (FieldType.SELECT.value, FieldType.RADIO.value):
        return None if isinstance(value, str) and value in options else ERROR_OPTION

    if field_type == FieldType.CHECKBOX.value:
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            return ERROR_FORMAT
        return None if set(value) <= set(options) else ERROR_OPTION

    if field_type == FieldType.NUMBER.value:
        return None if _valid_number(value) else ERROR_FORMAT

    if field_type == FieldType.DATE.value:
        return None if _valid_date(value) else ERROR_FORMAT

    if field_type == FieldType.FILE.value:
        return None if isinstance(value, (str, dict)) else ERROR_FORMAT

    if not isinstance(value, str):
        return ERROR_FORMAT
    if field_type == FieldType.EMAIL.value and not EMAIL_PATTERN.match(value.strip()):
        return ERROR_FORMAT
    if field_type == FieldType.TEL.value and not _valid_phone(value):
        return ERROR_FORMAT
    if field_type == FieldType.URL.value and not _valid_url(value):
        return ERROR_FORMAT
    return None


def validate_answers(fields: list[dict[str, Any]], answers: dict[str, Any]) -> dict[str, str]:
    """Validate answers against a field snapshot, collecting every error."""
    errors: dict[str, str] = {}
    for field in fields:
        field_id = field["id"]
        value = answers.get(field_id)
        if _is_empty(value):
            if field.get("required"):
                errors[field_id] = ERROR_REQUIRED
            continue
        error = _validate_field_value(field, value)
        if error:
            errors[field_id] = error
    return errors


# =============================================================================
# Candidate extraction
# =============================================================================

_PROFILE_KEYS: dict[str, tuple[str, ...]] = {
    "name": ("name", "full_name", "fullName", "candidate_name"),
    "email": ("email", "email_address", "candidate_email"),
    "phone": ("phone", "phone_number", "mobile"),
    "linkedin": ("linkedIn", "linkedin", "linkedin_url", "linkedin_profile"),
    "location": ("location", "current_location", "city"),
    "visa": ("visa", "visa_status", "work_authorization"),
    "experience": ("experience", "years_of_experience"),
    "skills": ("skills", "technical_skills"),
    "education": ("education", "highest_education"),
    "availability": ("availability", "notice_period"),
}


def parse_skills(value: Any) -> list[str]:
    if isinstance(value, list):
        items = value
    elif isinstance(value, str):
        items = re.split(r"[,;\n]", value)
    else:
        return []
    return [str(item).strip() for item in items if str(item).strip()]


def extract_candidate_profile(answers: dict[str, Any]) -> dict[str, Any]:
    """Map answers onto the candidate profile shape cases are built from."""
    profile: dict[str, Any] = {}
    for target, keys in _PROFILE_KEYS.items():
        for key in keys:
            if not _is_empty(answers.get(key)):
                profile[target] = answers[key]
                break
    if "skills" in profile:
        profile["skills"] = parse_skills(profile["skills"])
    return profile


# =============================================================================
# Submit
# =============================================================================


def submit(
    db: Session,
    token: str,
    answers: Any,
    *,
    origin: SubmissionOrigin = SubmissionOrigin.WEB,
    source_address: str | None = None,
    now: datetime | None = None,
    events: response_events.ResponseEvents | None = None,
) -> FormResponse:
    """
    Validate and record a response, completing the form.

    Raises NotFoundError, FormExpiredError or AlreadyCompletedError from the
    form lookup, ValidationFailedError listing every bad field, and
    AlreadyCompletedError when a concurrent submission for the same token won.
    """
    now = now or _now_utc()
    origin = SubmissionOrigin(origin)
    form = form_service.resolve(db, token, now=now)

    if not isinstance(answers, dict):
        raise ValidationFailedError({"answers": "must be an object"})
    errors = validate_answers(form.fields, answers)
    if errors:
        raise ValidationFailedError(errors)

    clean = {
        field["id"]: answers[field["id"]]
        for field in form.fields
        if not _is_empty(answers.get(field["id"]))
    }
    profile = extract_candidate_profile(clean)

    if not form_service.complete_form(db, token, now=now):
        db.rollback()
        raise form_service.completion_conflict(db, token, now=now)

    response = FormResponse(
        form_token=token,
        answers=clean,
        origin=origin.value,
        source_address=source_address,
        submitted_at=now,
        candidate_name=profile.get("name") or form.candidate_name,
        candidate_email=normalize_email(profile.get("email")) or form.candidate_email,
        candidate_profile=profile or None,
    )
    db.add(response)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyCompletedError()
    db.refresh(response)

    logger.info(
        "Form response recorded",
        extra=build_log_context(form_token=token, origin=origin.value),
    )
    (events or response_events.DEFAULT_RESPONSE_EVENTS).publish_response_received(db, response)
    return response


# =============================================================================
# Staff operations
# =============================================================================


def get_response(db: Session, response_id: UUID) -> FormResponse:
    response = db.get(FormResponse, response_id)
    if response is None:
        raise NotFoundError("Response not found")
    return response


def get_response_for_form(db: Session, token: str) -> FormResponse:
    response = db.query(FormResponse).filter(FormResponse.form_token == token).one_or_none()
    if response is None:
        raise NotFoundError("Response not found")
    return response


def list_responses(
    db: Session,
    *,
    processed: bool | None = None,
    case_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[FormResponse]:
    query = db.query(FormResponse)
    if processed is not None:
        query = query.filter(FormResponse.processed.is_(processed))
    if case_id is not None:
        query = query.filter(FormResponse.case_id == case_id)
    return (
        query.order_by(FormResponse.submitted_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def mark_processed(
    db: Session,
    response_id: UUID,
    *,
    processed_by: str | None = None,
    now: datetime | None = None,
) -> FormResponse:
    response = get_response(db, response_id)
    if not response.processed:
        response.processed = True
        response.processed_by = processed_by
        response.processed_at = now or _now_utc()
        db.commit()
        db.refresh(response)
    return response


def create_case_from_response(
    db: Session,
    response_id: UUID,
    *,
    actor: str | None = None,
):
    """Open a case for a response whose automatic projection did not happen."""
    response = get_response(db, response_id)
    return case_service.create_case_from_response(db, response, actor=actor)


def response_stats(db: Session) -> dict[str, int]:
    total = db.query(func.count(FormResponse.id)).scalar() or 0
    processed = (
        db.query(func.count(FormResponse.id)).filter(FormResponse.processed.is_(True)).scalar()
        or 0
    )
    with_case = (
        db.query(func.count(FormResponse.id)).filter(FormResponse.case_id.is_not(None)).scalar()
        or 0
    )
    by_origin = dict(
        db.query(FormResponse.origin, func.count(FormResponse.id))
        .group_by(FormResponse.origin)
        .all()
    )
    return {
        "total": total,
        "processed": processed,
        "pending": total - processed,
        "cases_created": with_case,
        "web": by_origin.get(SubmissionOrigin.WEB.value, 0),
        "email": by_origin.get(SubmissionOrigin.EMAIL.value, 0),
    }


def response_with_form(db: Session, response_id: UUID) -> tuple[FormResponse, Form]:
    response = get_response(db, response_id)
    return response, response.form
