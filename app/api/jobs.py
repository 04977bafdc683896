# app/api/jobs.py
"""
Admin triggers for the scheduler jobs. Each endpoint runs one tick entry
point immediately; the idempotency markers make this safe alongside the
background runner.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_services, require_admin
from app.models.common import SweepResponse
from app.services.container import InvoicingServices

router = APIRouter(prefix="/invoices", tags=["jobs"], dependencies=[Depends(require_admin)])


@router.post("/check-overdue", response_model=SweepResponse)
def check_overdue(services: InvoicingServices = Depends(get_services)) -> SweepResponse:
    return SweepResponse(**services.scheduler.tick_overdue().as_dict())


@router.post("/process-reminders", response_model=SweepResponse)
def process_reminders(services: InvoicingServices = Depends(get_services)) -> SweepResponse:
    return SweepResponse(**services.scheduler.tick_reminders().as_dict())


@router.post("/process-late-fees", response_model=SweepResponse)
def process_late_fees(services: InvoicingServices = Depends(get_services)) -> SweepResponse:
    return SweepResponse(**services.scheduler.tick_late_fees().as_dict())


@router.post("/generate", response_model=SweepResponse)
def generate_invoices(services: InvoicingServices = Depends(get_services)) -> SweepResponse:
    """Recurring patterns and date-scheduled invoices that have come due."""
    return SweepResponse(**services.scheduler.tick_generation().as_dict())
