# app/services/container.py

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from app.clock import Clock, SystemClock
from app.config import Settings, get_settings
from app.services.invoices import InvoiceService
from app.services.late_fees import LateFeeService
from app.services.ledger import LedgerService
from app.services.notifications import EmailSender, build_email_sender
from app.services.pdf import PdfRenderer, WeasyPrintRenderer
from app.services.receipts import ReceiptService
from app.services.recurring import RecurringService
from app.services.reminders import ReminderService
from app.services.reporting import ReportingService
from app.services.scheduler import InvoiceScheduler
from app.services.terms import TermsService


@dataclass
class InvoicingServices:
    """Every service wired to one engine, clock and set of collaborators."""

    engine: Engine
    clock: Clock
    settings: Settings
    email_sender: EmailSender
    pdf_renderer: PdfRenderer
    invoices: InvoiceService
    ledger: LedgerService
    receipts: ReceiptService
    reminders: ReminderService
    recurring: RecurringService
    late_fees: LateFeeService
    terms: TermsService
    reporting: ReportingService
    scheduler: InvoiceScheduler


def build_services(
    engine: Engine,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
    email_sender: Optional[EmailSender] = None,
    pdf_renderer: Optional[PdfRenderer] = None,
) -> InvoicingServices:
    settings = settings or get_settings()
    clock = clock or SystemClock(settings.timezone)
    email_sender = email_sender or build_email_sender(settings)
    pdf_renderer = pdf_renderer or WeasyPrintRenderer(settings)

    reminders = ReminderService(engine, clock, settings, email_sender)
    invoices = InvoiceService(engine, clock, settings, reminders=reminders, email_sender=email_sender)
    recurring = RecurringService(engine, invoices, clock, settings)
    late_fees = LateFeeService(engine, invoices, clock)
    receipts = ReceiptService(engine, clock)
    return InvoicingServices(
        engine=engine,
        clock=clock,
        settings=settings,
        email_sender=email_sender,
        pdf_renderer=pdf_renderer,
        invoices=invoices,
        ledger=LedgerService(engine, invoices, clock, receipts=receipts),
        receipts=receipts,
        reminders=reminders,
        recurring=recurring,
        late_fees=late_fees,
        terms=TermsService(engine, invoices, clock),
        reporting=ReportingService(engine, clock),
        scheduler=InvoiceScheduler(invoices, reminders, recurring, late_fees, clock, settings),
    )
