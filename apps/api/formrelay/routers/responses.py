"""Staff endpoints for reviewing form responses."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from formrelay.core.deps import get_actor, get_db
from formrelay.db.models import FormResponse
from formrelay.schemas.cases import CaseSummary
from formrelay.schemas.forms import (
    FormResponseDetail,
    FormResponseRead,
    ResponseStatsRead,
)
from formrelay.services import response_service

router = APIRouter(prefix="/responses", tags=["responses"])


def response_detail(response: FormResponse) -> FormResponseDetail:
    data = FormResponseRead.model_validate(response).model_dump()
    return FormResponseDetail(**data, fields=response.form.fields)


@router.get("", response_model=list[FormResponseRead])
def list_responses(
    processed: bool | None = Query(None),
    case_id: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return response_service.list_responses(
        db, processed=processed, case_id=case_id, limit=limit, offset=offset
    )


@router.get("/stats", response_model=ResponseStatsRead)
def get_response_stats(db: Session = Depends(get_db)):
    return response_service.response_stats(db)


@router.get("/{response_id}", response_model=FormResponseDetail)
def get_response(response_id: UUID, db: Session = Depends(get_db)):
    return response_detail(response_service.get_response(db, response_id))


@router.post("/{response_id}/process", response_model=FormResponseRead)
def mark_processed(
    response_id: UUID,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    return response_service.mark_processed(db, response_id, processed_by=actor)


@router.post("/{response_id}/case", response_model=CaseSummary, status_code=201)
def create_case_from_response(
    response_id: UUID,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    """Open a case for a response that is not linked to one (409 if it already is)."""
    return response_service.create_case_from_response(db, response_id, actor=actor)
