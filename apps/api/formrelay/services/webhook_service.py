"""Inbound webhooks from the sending service and embedded forms.

Every call is signed with HMAC-SHA256 over the raw request body, hex encoded
in ``X-FormRelay-Signature`` (an optional ``sha256=`` prefix is accepted).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from formrelay.core.config import settings
from formrelay.core.errors import (
    FormRelayError,
    InvalidSignatureError,
    InvalidTransitionError,
    NotFoundError,
)
from formrelay.core.structured_logging import build_log_context
from formrelay.db.enums import CaseActivityType, DeliveryStatus, FormStatus, SubmissionOrigin
from formrelay.db.models import FormResponse
from formrelay.services import activity_service, form_service, response_service

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-FormRelay-Signature"

OPEN_EVENTS = frozenset({"open", "click"})
DELIVERED_EVENTS = frozenset({"delivered"})
FAILED_EVENTS = frozenset({"bounce", "dropped"})


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# =============================================================================
# Signatures
# =============================================================================


def sign_payload(body: bytes, secret: str | None = None) -> str:
    secret = settings.WEBHOOK_SECRET if secret is None else secret
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    secret = settings.WEBHOOK_SECRET if secret is None else secret
    if not secret or not signature:
        return False
    provided = signature.strip().removeprefix("sha256=")
    return hmac.compare_digest(provided, sign_payload(body, secret))


def require_signature(body: bytes, signature: str | None) -> None:
    if not verify_signature(body, signature):
        logger.warning("Webhook signature rejected")
        raise InvalidSignatureError()


# =============================================================================
# Email events
# =============================================================================


@dataclass
class EventBatchResult:
    processed: int = 0
    ignored: int = 0
    errors: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {"processed": self.processed, "ignored": self.ignored, "errors": self.errors}


def _record_open(db: Session, token: str, event_type: str, now: datetime) -> None:
    form = form_service.get_form(db, token)
    first_open = form.opened_at is None
    form_service.mark_opened(db, token, now=now)
    if first_open and form.opened_at is not None and form.case_id is not None:
        activity_service.log_activity(
            db,
            form.case_id,
            CaseActivityType.FORM_OPENED,
            details={"form_token_prefix": token[:8], "event": event_type},
            now=now,
        )


def _record_delivery(
    db: Session,
    token: str,
    status: DeliveryStatus,
    event_type: str,
    now: datetime,
) -> None:
    form = form_service.get_form(db, token)
    changed = form_service.record_delivery_status(db, token, status, now=now)
    if changed and status == DeliveryStatus.FAILED and form.case_id is not None:
        activity_service.log_activity(
            db,
            form.case_id,
            CaseActivityType.FORM_DELIVERY_FAILED,
            details={"form_token_prefix": token[:8], "event": event_type},
            now=now,
        )


def process_email_event(db: Session, event: dict[str, Any], now: datetime | None = None) -> bool:
    """
    Apply one delivery event to the form named by ``form_token``.

    Returns False for event types with no effect on forms. Opens on a form
    that is already completed or expired are dropped. Commits.
    """
    now = now or _now_utc()
    event_type = str(event.get("event") or "").lower()
    token = event.get("form_token")
    if not isinstance(token, str) or not token:
        return False

    if event_type in OPEN_EVENTS:
        try:
            _record_open(db, token, event_type, now)
        except InvalidTransitionError as exc:
            db.rollback()
            logger.info(
                "Open event ignored: %s",
                exc.message,
                extra=build_log_context(form_token=token),
            )
            return False
    elif event_type in DELIVERED_EVENTS:
        _record_delivery(db, token, DeliveryStatus.DELIVERED, event_type, now)
    elif event_type in FAILED_EVENTS:
        _record_delivery(db, token, DeliveryStatus.FAILED, event_type, now)
    else:
        return False

    db.commit()
    logger.info("Email event applied: %s", event_type, extra=build_log_context(form_token=token))
    return True


def process_email_events(
    db: Session,
    payload: Any,
    now: datetime | None = None,
) -> EventBatchResult:
    """Apply a single event or a batch; one bad event never blocks the rest."""
    events = payload if isinstance(payload, list) else [payload]
    result = EventBatchResult()
    for event in events:
        if not isinstance(event, dict):
            result.ignored += 1
            continue
        try:
            applied = process_email_event(db, event, now=now)
        except NotFoundError:
            db.rollback()
            result.ignored += 1
            continue
        except FormRelayError as exc:
            db.rollback()
            result.errors.append(f"{exc.code}: {exc.message}")
            continue
        if applied:
            result.processed += 1
        else:
            result.ignored += 1
    return result


# =============================================================================
# Form submission and status
# =============================================================================


def submit_form(db: Session, token: str, answers: Any) -> FormResponse:
    """Record answers posted by an embedded form; same rules as a web submit."""
    return response_service.submit(db, token, answers, origin=SubmissionOrigin.WEB)


def apply_status(
    db: Session,
    token: str,
    status: str,
    *,
    provider: str | None = None,
    now: datetime | None = None,
):
    """
    Move a form forward from an external status report.

    Only ``sent`` and ``opened`` can be reported; completion goes through a
    submission so the answers are validated.
    """
    now = now or _now_utc()
    form = form_service.get_form(db, token)
    if status == FormStatus.OPENED.value:
        form_service.mark_opened(db, token, now=now)
    elif status == FormStatus.SENT.value:
        chosen = provider or form.provider
        if not chosen:
            raise InvalidTransitionError("A provider is required to mark a form sent")
        form_service.mark_sent(
            db, token, provider=chosen, reply_subject=form.reply_subject, now=now
        )
    else:
        raise InvalidTransitionError(f"Status '{status}' cannot be set by webhook")
    db.commit()
    db.refresh(form)
    logger.info("Form status reported: %s", status, extra=build_log_context(form_token=token))
    return form
