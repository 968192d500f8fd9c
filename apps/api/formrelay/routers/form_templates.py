"""Form template management endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from formrelay.core.deps import get_actor, get_db
from formrelay.schemas.forms import (
    FormTemplateClone,
    FormTemplateCreate,
    FormTemplateRead,
    FormTemplateUpdate,
)
from formrelay.services import form_template_service

router = APIRouter(prefix="/form-templates", tags=["form-templates"])


@router.get("", response_model=list[FormTemplateRead])
def list_templates(
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
):
    return form_template_service.list_templates(db, include_inactive=include_inactive)


@router.post("", response_model=FormTemplateRead, status_code=201)
def create_template(
    body: FormTemplateCreate,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return form_template_service.create_template(
        db,
        name=body.name,
        description=body.description,
        fields=body.fields,
        is_default=body.is_default,
        created_by=actor,
    )


@router.post("/default", response_model=FormTemplateRead)
def ensure_default_template(db: Session = Depends(get_db)):
    """Return the default candidate template, creating it on first use."""
    return form_template_service.ensure_default_template(db)


@router.get("/{template_id}", response_model=FormTemplateRead)
def get_template(template_id: UUID, db: Session = Depends(get_db)):
    return form_template_service.get_template(db, template_id)


@router.patch("/{template_id}", response_model=FormTemplateRead)
def update_template(
    template_id: UUID,
    body: FormTemplateUpdate,
    db: Session = Depends(get_db),
):
    template = form_template_service.get_template(db, template_id)
    return form_template_service.update_template(
        db,
        template,
        name=body.name,
        description=body.description,
        fields=body.fields,
        is_active=body.is_active,
        is_default=body.is_default,
    )


@router.post("/{template_id}/clone", response_model=FormTemplateRead, status_code=201)
def clone_template(
    template_id: UUID,
    body: FormTemplateClone,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    template = form_template_service.get_template(db, template_id)
    return form_template_service.clone_template(db, template, name=body.name, created_by=actor)


@router.delete("/{template_id}", response_model=FormTemplateRead)
def deactivate_template(template_id: UUID, db: Session = Depends(get_db)):
    """Soft delete: the template stops issuing forms; issued forms are unaffected."""
    template = form_template_service.get_template(db, template_id)
    return form_template_service.deactivate_template(db, template)
