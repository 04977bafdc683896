# app/services/reminders.py
"""
Payment reminder cadence.

Sending an invoice creates six reminders keyed off its due date. The hourly
sweep dispatches the latest tier that has come due for each invoice
(earlier tiers still pending are skipped) and re-checks the invoice at
fire time: settled, cancelled or archived invoices get their reminder
skipped instead of emailed.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from app.clock import Clock, SystemClock
from app.config import Settings, get_settings
from app.db.schema import clients, invoice_reminders, invoices
from app.errors import (
    DeliveryError,
    InvoicingError,
    NotEditableError,
    NotFoundError,
    ValidationError,
)
from app.services.notifications import DeliveryResult, LoggingEmailSender, invoice_email_data
from app.services.status import REMINDER_STOP_STATUSES, InvoiceStatus
from app.services.sweep import SweepResult

logger = logging.getLogger(__name__)

# reminder type, days relative to the due date
REMINDER_SCHEDULE = (
    ("upcoming", -3),
    ("due", 0),
    ("overdue_3", 3),
    ("overdue_7", 7),
    ("overdue_14", 14),
    ("overdue_30", 30),
)

PENDING = "pending"
SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"

MANUAL_REMINDER_STATUSES = {
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
}


def _reminder_invoice_select():
    return select(
        invoices.c.id,
        invoices.c.invoice_number,
        invoices.c.status,
        invoices.c.currency,
        invoices.c.amount_total,
        invoices.c.amount_paid,
        invoices.c.due_date,
        invoices.c.deleted_at,
        clients.c.company_name.label("client_name"),
        clients.c.contact_name.label("client_contact"),
        clients.c.email.label("client_email"),
    ).select_from(invoices.join(clients, clients.c.id == invoices.c.client_id))


class ReminderService:
    def __init__(
        self,
        engine: Engine,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        email_sender=None,
    ):
        self.engine = engine
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.email_sender = email_sender or LoggingEmailSender()

    def create_for_invoice(self, conn: Connection, invoice_id: int, due_date: Optional[date]) -> int:
        """Create the six-tier cadence for an invoice; a second call is a no-op."""
        if due_date is None:
            logger.warning("Invoice %s has no due date; no reminders scheduled", invoice_id)
            return 0
        existing = conn.execute(
            select(func.count()).where(invoice_reminders.c.invoice_id == invoice_id)
        ).scalar_one()
        if existing:
            return 0

        now = self.clock.now()
        rows = [
            {
                "invoice_id": invoice_id,
                "reminder_type": reminder_type,
                "scheduled_date": due_date + timedelta(days=offset),
                "status": PENDING,
                "created_at": now,
            }
            for reminder_type, offset in REMINDER_SCHEDULE
        ]
        conn.execute(invoice_reminders.insert(), rows)
        logger.info("Scheduled %d reminders for invoice %s", len(rows), invoice_id)
        return len(rows)

    def list_for_invoice(self, invoice_id: int) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(invoice_reminders)
                .where(invoice_reminders.c.invoice_id == invoice_id)
                .order_by(invoice_reminders.c.scheduled_date, invoice_reminders.c.id)
            ).mappings().all()
        return [dict(r) for r in rows]

    def get(self, reminder_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(invoice_reminders).where(invoice_reminders.c.id == reminder_id)
            ).mappings().first()
        if row is None:
            raise NotFoundError("Reminder", reminder_id)
        return dict(row)

    def skip(self, reminder_id: int) -> Dict[str, Any]:
        reminder = self.get(reminder_id)
        if not self._finish(reminder_id, SKIPPED):
            raise NotEditableError(f"Reminder {reminder_id} is already {reminder['status']}")
        return self.get(reminder_id)

    def due_reminders(self, as_of: Optional[date] = None) -> List[Dict[str, Any]]:
        as_of = as_of or self.clock.today()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(invoice_reminders)
                .where(
                    invoice_reminders.c.status == PENDING,
                    invoice_reminders.c.sent_at.is_(None),
                    invoice_reminders.c.scheduled_date <= as_of,
                )
                .order_by(invoice_reminders.c.scheduled_date, invoice_reminders.c.id)
            ).mappings().all()
        return [dict(r) for r in rows]

    def process_due(self) -> SweepResult:
        """
        Dispatch due reminders. When several tiers of one invoice are due at
        once only the latest is emailed; the earlier ones are skipped.
        """
        sweep = SweepResult()
        latest: Dict[int, Dict[str, Any]] = {}
        for reminder in self.due_reminders():
            superseded = latest.get(reminder["invoice_id"])
            latest[reminder["invoice_id"]] = reminder
            if superseded is not None:
                self._supersede(superseded, sweep)

        for reminder in latest.values():
            try:
                outcome = self._fire(reminder)
            except (InvoicingError, SQLAlchemyError) as exc:
                logger.exception("Reminder %s could not be processed", reminder["id"])
                sweep.record_failure(reminder["id"], exc)
                continue
            if outcome == SENT:
                sweep.record_success()
            elif outcome == SKIPPED:
                sweep.record_skip()
            elif outcome == FAILED:
                sweep.record_failure(reminder["id"], DeliveryError("Email delivery failed"))
        logger.info("Reminder sweep: %s", sweep.summary())
        return sweep

    def _supersede(self, reminder: Dict[str, Any], sweep: SweepResult) -> None:
        if self._finish(reminder["id"], SKIPPED):
            logger.info(
                "Skipping stale %s reminder for invoice %s",
                reminder["reminder_type"], reminder["invoice_id"],
            )
        sweep.record_skip()

    def _claim(self, reminder_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(invoice_reminders)
                .where(
                    invoice_reminders.c.id == reminder_id,
                    invoice_reminders.c.status == PENDING,
                    invoice_reminders.c.sent_at.is_(None),
                )
                .values(sent_at=self.clock.now())
            )
        return result.rowcount == 1

    def _finish(self, reminder_id: int, status: str, keep_sent_at: bool = False) -> bool:
        values = {"status": status}
        if not keep_sent_at:
            values["sent_at"] = None
        with self.engine.begin() as conn:
            result = conn.execute(
                update(invoice_reminders)
                .where(invoice_reminders.c.id == reminder_id, invoice_reminders.c.status == PENDING)
                .values(**values)
            )
        return result.rowcount == 1

    def _fire(self, reminder: Dict[str, Any]) -> Optional[str]:
        with self.engine.connect() as conn:
            invoice = conn.execute(
                _reminder_invoice_select().where(invoices.c.id == reminder["invoice_id"])
            ).mappings().first()

        if (
            invoice is None
            or invoice["deleted_at"] is not None
            or InvoiceStatus(invoice["status"]) in REMINDER_STOP_STATUSES
        ):
            self._finish(reminder["id"], SKIPPED)
            return SKIPPED
        if not invoice["client_email"]:
            logger.warning("Skipping reminder %s: client has no email address", reminder["id"])
            self._finish(reminder["id"], SKIPPED)
            return SKIPPED

        # another worker got there first
        if not self._claim(reminder["id"]):
            return None

        result = self.email_sender.send(
            invoice["client_email"],
            f"invoice_reminder_{reminder['reminder_type']}",
            invoice_email_data(dict(invoice), self.settings, reminder["reminder_type"]),
        )
        if result.ok:
            self._finish(reminder["id"], SENT, keep_sent_at=True)
            logger.info("Sent %s reminder for invoice %s", reminder["reminder_type"], invoice["invoice_number"])
            return SENT
        self._finish(reminder["id"], FAILED)
        logger.error(
            "Reminder %s for invoice %s failed: %s",
            reminder["reminder_type"], invoice["invoice_number"], result.error,
        )
        return FAILED

    def send_now(self, invoice_id: int) -> DeliveryResult:
        """Email a reminder immediately; scheduled reminders are left alone."""
        with self.engine.connect() as conn:
            invoice = conn.execute(
                _reminder_invoice_select().where(
                    invoices.c.id == invoice_id, invoices.c.deleted_at.is_(None)
                )
            ).mappings().first()
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        if invoice["status"] not in MANUAL_REMINDER_STATUSES:
            raise NotEditableError(f"Cannot send a reminder for a {invoice['status']} invoice")
        if not invoice["client_email"]:
            raise ValidationError("Client has no email address")

        result = self.email_sender.send(
            invoice["client_email"],
            "invoice_reminder_manual",
            invoice_email_data(dict(invoice), self.settings),
        )
        if not result.ok:
            raise DeliveryError(f"Reminder email failed: {result.error}")
        logger.info("Sent manual reminder for invoice %s", invoice["invoice_number"])
        return result
