# app/services/late_fees.py
"""
Late fees.

``compute_late_fee`` is the whole policy and has no side effects. Applying a
fee is a one-shot operation per invoice, guarded by ``late_fee_applied_at``.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.clock import Clock, SystemClock
from app.db.schema import invoices
from app.errors import AlreadyAppliedError, InvoicingError, ValidationError
from app.services.invoices import InvoiceService
from app.services.money import CENT, ZERO
from app.services.status import InvoiceStatus
from app.services.sweep import SweepResult

logger = logging.getLogger(__name__)

NO_FEE_STATUSES = {InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value, InvoiceStatus.DRAFT.value}


def compute_late_fee(
    policy: Optional[str],
    rate,
    outstanding,
    days_overdue: int,
    grace_days: int = 0,
) -> Decimal:
    """
    Fee owed for an invoice ``days_overdue`` past due.

    flat              -> rate
    percentage        -> outstanding * rate / 100
    daily_percentage  -> outstanding * rate / 100 * days_overdue

    Nothing is owed while still inside the grace window.
    """
    if not policy or policy == "none":
        return ZERO
    if days_overdue <= (grace_days or 0):
        return ZERO
    rate = Decimal(str(rate or 0))
    outstanding = Decimal(str(outstanding or 0))
    if rate <= 0 or outstanding <= 0:
        return ZERO

    if policy == "flat":
        fee = rate
    elif policy == "percentage":
        fee = outstanding * rate / 100
    elif policy == "daily_percentage":
        fee = outstanding * rate / 100 * days_overdue
    else:
        raise ValidationError(f"Unknown late fee type: {policy}")
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def days_overdue(due_date: Optional[date], as_of: date) -> int:
    if due_date is None:
        return 0
    return max((as_of - due_date).days, 0)


class LateFeeService:
    def __init__(self, engine: Engine, invoices_service: InvoiceService, clock: Optional[Clock] = None):
        self.engine = engine
        self.invoices = invoices_service
        self.clock = clock or SystemClock()

    def _quote(self, row) -> Dict[str, Any]:
        outstanding = row["amount_total"] - row["amount_paid"]
        overdue_days = days_overdue(row["due_date"], self.clock.today())
        fee = ZERO
        if row["status"] not in NO_FEE_STATUSES:
            fee = compute_late_fee(
                row["late_fee_type"],
                row["late_fee_rate"],
                outstanding,
                overdue_days,
                row["late_fee_grace_days"],
            )
        return {
            "invoice_id": row["id"],
            "invoice_number": row["invoice_number"],
            "late_fee_type": row["late_fee_type"],
            "late_fee_rate": row["late_fee_rate"],
            "grace_days": row["late_fee_grace_days"],
            "days_overdue": overdue_days,
            "outstanding": outstanding,
            "fee": fee,
            "already_applied": row["late_fee_applied_at"] is not None,
            "applied_amount": row["late_fee_amount"],
        }

    def calculate_late_fee(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            return self._quote(self.invoices.load(conn, invoice_id))

    def apply_late_fee(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.invoices.load(conn, invoice_id)
            if row["late_fee_applied_at"] is not None:
                raise AlreadyAppliedError(f"A late fee was already applied to {row['invoice_number']}")
            fee = self._quote(row)["fee"]
            if fee <= 0:
                raise ValidationError(f"No late fee is due on {row['invoice_number']}", code="NO_LATE_FEE")

            now = self.clock.now()
            result = conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id, invoices.c.late_fee_applied_at.is_(None))
                .values(
                    late_fee_amount=fee,
                    late_fee_applied_at=now,
                    amount_total=invoices.c.amount_total + fee,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                raise AlreadyAppliedError(f"A late fee was already applied to {row['invoice_number']}")
            invoice = self.invoices.to_dict(conn, self.invoices.load(conn, invoice_id))

        logger.info("Applied late fee of %s to invoice %s", fee, invoice["invoice_number"])
        return invoice

    def process_late_fees(self) -> SweepResult:
        """Apply fees to every overdue invoice with a policy and no fee yet."""
        with self.engine.connect() as conn:
            ids = conn.execute(
                select(invoices.c.id).where(
                    invoices.c.status == InvoiceStatus.OVERDUE.value,
                    invoices.c.late_fee_type != "none",
                    invoices.c.late_fee_applied_at.is_(None),
                    invoices.c.deleted_at.is_(None),
                )
            ).scalars().all()

        sweep = SweepResult()
        for invoice_id in ids:
            try:
                quote = self.calculate_late_fee(invoice_id)
                if quote["fee"] <= 0:
                    sweep.record_skip()
                    continue
                self.apply_late_fee(invoice_id)
                sweep.record_success()
            except (InvoicingError, SQLAlchemyError) as exc:
                logger.exception("Could not apply late fee to invoice %s", invoice_id)
                sweep.record_failure(invoice_id, exc)
        logger.info("Late fee sweep: %s", sweep.summary())
        return sweep
