"""Public form endpoints for candidates (token-addressed, no login)."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from formrelay.core.config import settings
from formrelay.core.deps import get_db
from formrelay.core.rate_limit import limiter
from formrelay.db.enums import SubmissionOrigin
from formrelay.schemas.forms import (
    FormPublicRead,
    FormSubmitRequest,
    FormSubmitResponse,
)
from formrelay.services import form_service, response_service

router = APIRouter(prefix="/forms/public", tags=["forms-public"])


@router.get("/{token}", response_model=FormPublicRead)
@limiter.limit(f"{settings.RATE_LIMIT_PUBLIC_READ}/minute")
def get_public_form(request: Request, token: str, db: Session = Depends(get_db)):
    """
    Load a form for the candidate and mark it opened.

    Not found (404), expired (410) and already submitted (409) are distinct
    responses so the page can say which one applies.
    """
    form = form_service.resolve(db, token)
    form_service.mark_opened(db, token)
    db.commit()
    return FormPublicRead(
        token=form.token,
        candidate_name=form.candidate_name,
        fields=form.fields,
        expires_at=form.expires_at,
    )


@router.post("/{token}/submit", response_model=FormSubmitResponse)
@limiter.limit(f"{settings.RATE_LIMIT_PUBLIC_SUBMIT}/minute")
def submit_public_form(
    request: Request,
    token: str,
    body: FormSubmitRequest,
    db: Session = Depends(get_db),
):
    response = response_service.submit(
        db,
        token,
        body.answers,
        origin=SubmissionOrigin.WEB,
        source_address=request.client.host if request.client else None,
    )
    return FormSubmitResponse(response_id=response.id, submitted_at=response.submitted_at)
