"""Internal endpoints to run reconciliation on demand."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from formrelay.core.deps import get_reconciliation_scheduler
from formrelay.schemas.integrations import ReconciliationReportRead
from formrelay.services.reconciliation_service import ReconciliationScheduler

router = APIRouter(prefix="/internal/reconciliation", tags=["internal"])


@router.post("/run", response_model=ReconciliationReportRead)
def run_cycle(scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler)):
    report = scheduler.run_cycle()
    if report is None:
        raise HTTPException(status_code=409, detail="Reconciliation cycle already running")
    return report.summary()


@router.post("/cases/{case_id}", response_model=ReconciliationReportRead)
def check_case(
    case_id: UUID,
    scheduler: ReconciliationScheduler = Depends(get_reconciliation_scheduler),
):
    """Check the mailboxes for replies to one case's outstanding forms."""
    report = scheduler.reconcile_case(case_id)
    if report is None:
        raise HTTPException(status_code=409, detail="Reconciliation cycle already running")
    return report.summary()
