"""Webhooks router - delivery events, embedded form submissions, status reports."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from formrelay.core.deps import get_db
from formrelay.core.errors import ValidationFailedError
from formrelay.schemas.forms import FormSubmitResponse
from formrelay.schemas.webhooks import (
    WebhookEventsResult,
    WebhookFormSubmission,
    WebhookStatusResult,
    WebhookStatusUpdate,
)
from formrelay.services import form_service, webhook_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


async def signed_payload(request: Request) -> Any:
    """Raw body checked against the signature header, then decoded as JSON."""
    body = await request.body()
    webhook_service.require_signature(body, request.headers.get(webhook_service.SIGNATURE_HEADER))
    try:
        return json.loads(body)
    except ValueError:
        raise ValidationFailedError({"body": "invalid JSON"})


def _parse(model: type[BaseModel], payload: Any):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        errors = {
            ".".join(str(part) for part in error["loc"]) or "body": error["msg"]
            for error in exc.errors()
        }
        raise ValidationFailedError(errors)


@router.post("/email-events", response_model=WebhookEventsResult)
def receive_email_events(
    payload: Any = Depends(signed_payload),
    db: Session = Depends(get_db),
):
    """
    Delivery events from the sending service, one object or a list.

    ``open``/``click`` mark the form opened; ``delivered``, ``bounce`` and
    ``dropped`` record the delivery status. Unknown tokens are ignored.
    """
    result = webhook_service.process_email_events(db, payload)
    return result.summary()


@router.post("/form-submission", response_model=FormSubmitResponse)
def receive_form_submission(
    payload: Any = Depends(signed_payload),
    db: Session = Depends(get_db),
):
    body = _parse(WebhookFormSubmission, payload)
    response = webhook_service.submit_form(db, body.token, body.answers)
    return FormSubmitResponse(response_id=response.id, submitted_at=response.submitted_at)


@router.post("/status", response_model=WebhookStatusResult)
def receive_status(
    payload: Any = Depends(signed_payload),
    db: Session = Depends(get_db),
):
    body = _parse(WebhookStatusUpdate, payload)
    form = webhook_service.apply_status(
        db,
        body.token,
        body.status.strip().lower(),
        provider=body.provider.value if body.provider else None,
    )
    return WebhookStatusResult(token=form.token, status=form_service.derive_status(form).value)
