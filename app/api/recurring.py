# app/api/recurring.py

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_services, require_admin
from app.models.common import SuccessResponse, SweepResponse
from app.models.recurring import (
    FireResponse,
    RecurringCreate,
    RecurringListResponse,
    RecurringResponse,
    RecurringUpdate,
    ScheduleCreate,
    ScheduledListResponse,
    ScheduledResponse,
)
from app.services.container import InvoicingServices

router = APIRouter(prefix="/invoices", tags=["recurring"], dependencies=[Depends(require_admin)])


# ----------------------------------------------------------------------
# recurring patterns
# ----------------------------------------------------------------------

@router.post("/recurring", response_model=RecurringResponse, status_code=201)
def create_recurring(payload: RecurringCreate, services: InvoicingServices = Depends(get_services)) -> RecurringResponse:
    pattern = services.recurring.create_pattern(**payload.model_dump())
    return RecurringResponse(message="Recurring invoice created", recurring=pattern)


@router.get("/recurring", response_model=RecurringListResponse)
def list_recurring(
    project_id: Optional[int] = Query(default=None),
    active: Optional[bool] = Query(default=None),
    services: InvoicingServices = Depends(get_services),
) -> RecurringListResponse:
    return RecurringListResponse(recurring=services.recurring.list_patterns(project_id, active))


@router.put("/recurring/{pattern_id}", response_model=RecurringResponse)
def update_recurring(
    pattern_id: int,
    payload: RecurringUpdate,
    services: InvoicingServices = Depends(get_services),
) -> RecurringResponse:
    pattern = services.recurring.update_pattern(pattern_id, **payload.model_dump(exclude_unset=True))
    return RecurringResponse(message="Recurring invoice updated", recurring=pattern)


@router.post("/recurring/{pattern_id}/pause", response_model=RecurringResponse)
def pause_recurring(pattern_id: int, services: InvoicingServices = Depends(get_services)) -> RecurringResponse:
    return RecurringResponse(message="Recurring invoice paused", recurring=services.recurring.pause(pattern_id))


@router.post("/recurring/{pattern_id}/resume", response_model=RecurringResponse)
def resume_recurring(pattern_id: int, services: InvoicingServices = Depends(get_services)) -> RecurringResponse:
    """Periods missed while paused are not generated."""
    pattern = services.recurring.resume(pattern_id)
    return RecurringResponse(
        message=f"Recurring invoice resumed; next invoice on {pattern['next_generation_date']}",
        recurring=pattern,
    )


@router.delete("/recurring/{pattern_id}", response_model=SuccessResponse)
def delete_recurring(pattern_id: int, services: InvoicingServices = Depends(get_services)) -> SuccessResponse:
    services.recurring.delete_pattern(pattern_id)
    return SuccessResponse(message="Recurring invoice deleted")


# ----------------------------------------------------------------------
# scheduled invoices
# ----------------------------------------------------------------------

@router.post("/schedule", response_model=ScheduledResponse, status_code=201)
def schedule_invoice(payload: ScheduleCreate, services: InvoicingServices = Depends(get_services)) -> ScheduledResponse:
    scheduled = services.recurring.schedule_invoice(**payload.model_dump())
    return ScheduledResponse(message="Invoice scheduled", scheduled=scheduled)


@router.get("/schedule", response_model=ScheduledListResponse)
def list_scheduled(
    status: Optional[str] = Query(default="pending", description="pending | fired | cancelled; empty for all"),
    project_id: Optional[int] = Query(default=None),
    services: InvoicingServices = Depends(get_services),
) -> ScheduledListResponse:
    return ScheduledListResponse(scheduled=services.recurring.list_scheduled(status or None, project_id))


@router.post("/schedule/{scheduled_id}/fire", response_model=FireResponse)
def fire_scheduled(scheduled_id: int, services: InvoicingServices = Depends(get_services)) -> FireResponse:
    """Generate the invoice now. Firing twice returns the same invoice."""
    return FireResponse(invoice=services.recurring.fire(scheduled_id))


@router.delete("/schedule/{scheduled_id}", response_model=ScheduledResponse)
def cancel_scheduled(scheduled_id: int, services: InvoicingServices = Depends(get_services)) -> ScheduledResponse:
    return ScheduledResponse(message="Scheduled invoice cancelled", scheduled=services.recurring.cancel_scheduled(scheduled_id))


@router.post("/schedule/milestones/{milestone_id}/complete", response_model=SweepResponse)
def complete_milestone(milestone_id: int, services: InvoicingServices = Depends(get_services)) -> SweepResponse:
    return SweepResponse(**services.recurring.complete_milestone(milestone_id).as_dict())
