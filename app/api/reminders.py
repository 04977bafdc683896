# app/api/reminders.py

from fastapi import APIRouter, Depends

from app.api.deps import get_services, require_admin
from app.models.reminders import ReminderListResponse, ReminderResponse, ReminderSentResponse
from app.services.container import InvoicingServices

router = APIRouter(prefix="/invoices", tags=["reminders"], dependencies=[Depends(require_admin)])


@router.get("/{invoice_id}/reminders", response_model=ReminderListResponse)
def list_reminders(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> ReminderListResponse:
    services.invoices.get_invoice(invoice_id, include_deleted=True)
    return ReminderListResponse(reminders=services.reminders.list_for_invoice(invoice_id))


@router.post("/reminders/{reminder_id}/skip", response_model=ReminderResponse)
def skip_reminder(reminder_id: int, services: InvoicingServices = Depends(get_services)) -> ReminderResponse:
    return ReminderResponse(reminder=services.reminders.skip(reminder_id))


@router.post("/{invoice_id}/send-reminder", response_model=ReminderSentResponse)
def send_reminder(invoice_id: int, services: InvoicingServices = Depends(get_services)) -> ReminderSentResponse:
    """Email a payment reminder now; the scheduled cadence is left untouched."""
    result = services.reminders.send_now(invoice_id)
    return ReminderSentResponse(message="Reminder sent", message_id=result.message_id)
