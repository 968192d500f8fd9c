"""Form service - token issuance and the issued-form lifecycle.

A form moves forward only: created -> sent -> opened -> completed. ``expired``
is derived from ``expires_at`` on every read and is final; nothing sweeps
expired rows in the background.
"""

from __future__ import annotations

import copy
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from formrelay.core.config import settings
from formrelay.core.errors import (
    AlreadyCompletedError,
    FormExpiredError,
    FormRelayError,
    InvalidTransitionError,
    NotFoundError,
    TemplateInactiveError,
    ValidationFailedError,
)
from formrelay.core.status_rules import (
    FORM_AWAITING_REPLY_STATUSES,
    FORM_OPEN_STATUSES,
    FORM_TERMINAL_STATUSES,
    is_form_advance,
)
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import CaseActivityType, DeliveryStatus, FormStatus, MailProvider
from formrelay.db.models import Case, Form, FormTemplate
from formrelay.db.types import as_utc
from formrelay.services import activity_service, form_template_service
from formrelay.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

# 32 random bytes -> 43 url-safe characters (256 bits of entropy)
TOKEN_BYTES = 32
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def build_form_link(token: str) -> str:
    return f"{settings.PUBLIC_FORM_BASE_URL.rstrip('/')}/{token}"


# =============================================================================
# Derived status
# =============================================================================


def is_expired(form: Form, now: datetime | None = None) -> bool:
    return (now or _now_utc()) >= as_utc(form.expires_at)


def derive_status(form: Form, now: datetime | None = None) -> FormStatus:
    """Status as observed at ``now``: completed wins, then expiry, then stored status."""
    stored = FormStatus(form.status)
    if stored == FormStatus.COMPLETED:
        return stored
    if is_expired(form, now):
        return FormStatus.EXPIRED
    return stored


# =============================================================================
# Issue
# =============================================================================


def issue_form(
    db: Session,
    *,
    template_id: UUID,
    candidate_email: str,
    issuer_email: str,
    candidate_name: str | None = None,
    case_id: UUID | None = None,
    created_by: str | None = None,
    ttl_days: int | None = None,
    now: datetime | None = None,
) -> Form:
    """
    Issue a new form from an active template.

    The template's fields are frozen onto the form, so later template edits
    never change what an in-flight candidate sees.
    """
    now = now or _now_utc()
    template = db.get(FormTemplate, template_id)
    if template is None:
        raise NotFoundError("Template not found")
    if not template.is_active:
        raise TemplateInactiveError()

    errors: dict[str, str] = {}
    candidate = normalize_email(candidate_email)
    issuer = normalize_email(issuer_email)
    if not candidate or not EMAIL_PATTERN.match(candidate):
        errors["candidate_email"] = "invalid format"
    if not issuer or not EMAIL_PATTERN.match(issuer):
        errors["issuer_email"] = "invalid format"
    if errors:
        raise ValidationFailedError(errors)

    if case_id is not None and db.get(Case, case_id) is None:
        raise NotFoundError("Case not found")

    ttl = ttl_days if ttl_days is not None else settings.FORM_TTL_DAYS
    form = Form(
        token=generate_token(),
        template_id=template.id,
        case_id=case_id,
        fields=copy.deepcopy(template.fields),
        candidate_email=candidate,
        candidate_name=(candidate_name or "").strip() or None,
        issuer_email=issuer,
        status=FormStatus.CREATED.value,
        created_by=created_by,
        created_at=now,
        expires_at=now + timedelta(days=ttl),
    )
    db.add(form)
    db.flush()

    form_template_service.increment_usage(db, template.id)
    if case_id is not None:
        activity_service.log_activity(
            db,
            case_id,
            CaseActivityType.FORM_ISSUED,
            actor=created_by,
            details={"form_id": str(form.id), "template_id": str(template.id)},
            now=now,
        )

    db.commit()
    db.refresh(form)
    logger.info(
        "Form issued",
        extra=build_log_context(form_token=form.token, case_id=case_id),
    )
    return form


# =============================================================================
# Lookup
# =============================================================================


def get_form(db: Session, token: str) -> Form:
    """Load a form by token without any status checks."""
    form = db.query(Form).filter(Form.token == token).one_or_none()
    if form is None:
        raise NotFoundError("Form not found")
    return form


def resolve(db: Session, token: str, now: datetime | None = None) -> Form:
    """
    Load a form that can still be answered.

    Raises:
        NotFoundError: unknown token
        AlreadyCompletedError: the form was already submitted
        FormExpiredError: now >= expires_at
    """
    form = get_form(db, token)
    status = derive_status(form, now)
    if status == FormStatus.COMPLETED:
        raise AlreadyCompletedError()
    if status == FormStatus.EXPIRED:
        raise FormExpiredError()
    return form


def list_by_case(db: Session, case_id: UUID) -> list[Form]:
    return (
        db.query(Form)
        .filter(Form.case_id == case_id)
        .order_by(Form.created_at.desc())
        .all()
    )


def list_pending(db: Session, now: datetime | None = None) -> list[Form]:
    """Forms that can still be answered, oldest first."""
    now = now or _now_utc()
    return (
        db.query(Form)
        .filter(
            Form.status.in_([status.value for status in FORM_OPEN_STATUSES]),
            Form.expires_at > now,
        )
        .order_by(Form.created_at.asc())
        .all()
    )


def list_awaiting_reply(
    db: Session,
    now: datetime | None = None,
    case_id: UUID | None = None,
) -> list[Form]:
    """Sent or opened, unexpired forms with a known mailbox provider."""
    now = now or _now_utc()
    query = db.query(Form).filter(
        Form.status.in_([status.value for status in FORM_AWAITING_REPLY_STATUSES]),
        Form.expires_at > now,
        Form.provider.is_not(None),
    )
    if case_id is not None:
        query = query.filter(Form.case_id == case_id)
    return query.order_by(Form.sent_at.asc()).all()


def days_since_sent(form: Form, now: datetime | None = None) -> int | None:
    if form.sent_at is None:
        return None
    return ((now or _now_utc()) - as_utc(form.sent_at)).days


# =============================================================================
# Forward-only transitions
# =============================================================================


def _ensure_not_terminal(form: Form, now: datetime) -> FormStatus:
    status = derive_status(form, now)
    if status in FORM_TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Form is {status.value}")
    return status


def mark_sent(
    db: Session,
    token: str,
    *,
    provider: MailProvider | str,
    reply_subject: str | None = None,
    message_id: str | None = None,
    now: datetime | None = None,
) -> Form:
    """
    Record that the invitation went out through ``provider``.

    Re-sending keeps the first ``sent_at`` so replies to the original mail
    still match. Flushes; the caller commits.
    """
    now = now or _now_utc()
    form = get_form(db, token)
    current = _ensure_not_terminal(form, now)

    form.provider = MailProvider(provider).value
    form.reply_subject = reply_subject or settings.FORM_REPLY_SUBJECT_FRAGMENT
    if message_id:
        form.email_message_id = message_id
    form.send_count = (form.send_count or 0) + 1
    if form.sent_at is None:
        form.sent_at = now
    if is_form_advance(current, FormStatus.SENT):
        form.status = FormStatus.SENT.value
    db.flush()
    return form


def mark_opened(db: Session, token: str, now: datetime | None = None) -> Form:
    """Record that the candidate opened the form. Idempotent once opened."""
    now = now or _now_utc()
    form = get_form(db, token)
    current = _ensure_not_terminal(form, now)
    if is_form_advance(current, FormStatus.OPENED):
        form.status = FormStatus.OPENED.value
        form.opened_at = now
        db.flush()
    return form


def record_delivery_status(
    db: Session,
    token: str,
    status: DeliveryStatus | str,
    now: datetime | None = None,
) -> bool:
    """
    Record the sending service's delivery outcome for the invitation.

    ``failed`` is sticky: a late ``delivered`` event never hides a bounce.
    Returns True when the stored status changed. Flushes; the caller commits.
    """
    status = DeliveryStatus(status)
    form = get_form(db, token)
    if form.delivery_status == status.value:
        return False
    if form.delivery_status == DeliveryStatus.FAILED.value:
        return False
    form.delivery_status = status.value
    form.delivery_updated_at = now or _now_utc()
    db.flush()
    return True


def complete_form(db: Session, token: str, now: datetime | None = None) -> bool:
    """
    Compare-and-swap the form to completed.

    A single guarded UPDATE: only a still-open, unexpired row matches, so of
    two concurrent completions exactly one sees rowcount == 1. Does not commit.
    """
    now = now or _now_utc()
    result = db.execute(
        update(Form)
        .where(
            Form.token == token,
            Form.status.in_([status.value for status in FORM_OPEN_STATUSES]),
            Form.expires_at > now,
        )
        .values(status=FormStatus.COMPLETED.value, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def completion_conflict(db: Session, token: str, now: datetime | None = None) -> FormRelayError:
    """Error explaining why a completion lost (call after rolling back)."""
    form = db.query(Form).filter(Form.token == token).populate_existing().one_or_none()
    if form is None:
        return NotFoundError("Form not found")
    if derive_status(form, now) == FormStatus.EXPIRED:
        return FormExpiredError()
    return AlreadyCompletedError()


def status_view(form: Form, now: datetime | None = None) -> dict:
    """Tracking view of a form with per-step timestamps."""
    now = now or _now_utc()
    return {
        "token": form.token,
        "status": derive_status(form, now).value,
        "candidate_email": form.candidate_email,
        "candidate_name": form.candidate_name,
        "issuer_email": form.issuer_email,
        "provider": form.provider,
        "case_id": form.case_id,
        "template_id": form.template_id,
        "send_count": form.send_count,
        "delivery_status": form.delivery_status,
        "created_at": form.created_at,
        "sent_at": form.sent_at,
        "opened_at": form.opened_at,
        "completed_at": form.completed_at,
        "expires_at": form.expires_at,
        "days_since_sent": days_since_sent(form, now),
        "link": build_form_link(form.token),
    }
