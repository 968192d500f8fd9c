"""Staff endpoints for issuing, sending and tracking forms."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from formrelay.core.deps import get_actor, get_credential_vault, get_db
from formrelay.routers.responses import response_detail
from formrelay.schemas.forms import (
    FormIssueRequest,
    FormResponseDetail,
    FormSendRequest,
    FormStatusRead,
)
from formrelay.services import (
    form_delivery_service,
    form_service,
    form_template_service,
    response_service,
)
from formrelay.services.oauth_service import CredentialVault

router = APIRouter(prefix="/forms", tags=["forms"])


@router.post("", response_model=FormStatusRead, status_code=201)
def issue_form(
    body: FormIssueRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
    vault: CredentialVault = Depends(get_credential_vault),
):
    """Issue a form, optionally sending it right away through ``send_via``."""
    template_id = body.template_id
    if template_id is None:
        template_id = form_template_service.ensure_default_template(db).id
    form = form_service.issue_form(
        db,
        template_id=template_id,
        candidate_email=body.candidate_email,
        candidate_name=body.candidate_name,
        issuer_email=body.issuer_email,
        case_id=body.case_id,
        created_by=actor,
        ttl_days=body.expires_in_days,
    )
    if body.send_via is not None:
        form = form_delivery_service.send_form(
            db, form.token, provider=body.send_via, actor=actor, vault=vault
        )
    return form_service.status_view(form)


@router.get("/pending", response_model=list[FormStatusRead])
def list_pending_forms(db: Session = Depends(get_db)):
    return [form_service.status_view(form) for form in form_service.list_pending(db)]


@router.get("/by-case/{case_id}", response_model=list[FormStatusRead])
def list_case_forms(case_id: UUID, db: Session = Depends(get_db)):
    return [form_service.status_view(form) for form in form_service.list_by_case(db, case_id)]


@router.get("/{token}", response_model=FormStatusRead)
def get_form_status(token: str, db: Session = Depends(get_db)):
    return form_service.status_view(form_service.get_form(db, token))


@router.get("/{token}/response", response_model=FormResponseDetail)
def get_form_response(token: str, db: Session = Depends(get_db)):
    return response_detail(response_service.get_response_for_form(db, token))


@router.post("/{token}/send", response_model=FormStatusRead)
def send_form(
    token: str,
    body: FormSendRequest,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
    vault: CredentialVault = Depends(get_credential_vault),
):
    form = form_delivery_service.send_form(
        db, token, provider=body.provider, actor=actor, vault=vault
    )
    return form_service.status_view(form)


@router.post("/{token}/resend", response_model=FormStatusRead)
def resend_form(
    token: str,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
    vault: CredentialVault = Depends(get_credential_vault),
):
    form = form_delivery_service.resend_form(db, token, actor=actor, vault=vault)
    return form_service.status_view(form)
