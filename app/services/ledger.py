# app/services/ledger.py
"""
Payment and deposit-credit ledger.

Every mutation is one ``engine.begin()`` transaction: all checks run first,
then the payment/credit row is inserted, ``amount_paid`` is raised and the
invoice status is re-evaluated through the state machine. A payment also
gets its receipt in the same transaction.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from app.clock import Clock, SystemClock
from app.db.schema import invoice_credits, invoice_payments, invoices
from app.errors import (
    InsufficientCreditError,
    NotEditableError,
    OverpaymentError,
    ValidationError,
)
from app.services.invoices import InvoiceService
from app.services.money import to_money
from app.services.receipts import ReceiptService
from app.services.status import OPEN_STATUSES, InvoiceStatus, payment_event

logger = logging.getLogger(__name__)

CLOSED_STATUSES = {InvoiceStatus.CANCELLED.value}


class LedgerService:
    def __init__(
        self,
        engine: Engine,
        invoices_service: InvoiceService,
        clock: Optional[Clock] = None,
        receipts: Optional[ReceiptService] = None,
    ):
        self.engine = engine
        self.invoices = invoices_service
        self.clock = clock or SystemClock()
        self.receipts = receipts

    def _credit_paid_amount(self, conn: Connection, row, amount: Decimal) -> None:
        new_paid = row["amount_paid"] + amount
        event = payment_event(new_paid, row["amount_total"])
        values = {"amount_paid": new_paid}
        if new_paid >= row["amount_total"]:
            values["paid_date"] = self.clock.today()
        self.invoices.apply_event(conn, row, event, **values)

    # ------------------------------------------------------------------
    # payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        invoice_id: int,
        amount,
        payment_method: str = "manual",
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        payment_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")

        with self.engine.begin() as conn:
            row = self.invoices.load(conn, invoice_id)
            if row["status"] in CLOSED_STATUSES:
                raise NotEditableError(f"Invoice {row['invoice_number']} is cancelled")
            outstanding = row["amount_total"] - row["amount_paid"]
            if amount > outstanding:
                raise OverpaymentError(amount, outstanding)

            now = self.clock.now()
            result = conn.execute(
                invoice_payments.insert().values(
                    invoice_id=invoice_id,
                    amount=amount,
                    payment_method=payment_method or "manual",
                    payment_reference=payment_reference,
                    payment_date=payment_date or now.date(),
                    notes=notes,
                    created_at=now,
                )
            )
            payment_id = result.inserted_primary_key[0]
            self._credit_paid_amount(conn, row, amount)

            payment = conn.execute(
                select(invoice_payments).where(invoice_payments.c.id == payment_id)
            ).mappings().one()
            receipt = self.receipts.create_for_payment(conn, payment) if self.receipts else None
            invoice = self.invoices.to_dict(conn, self.invoices.load(conn, invoice_id))

        logger.info(
            "Recorded %s payment of %s on invoice %s (now %s)",
            payment_method, amount, invoice["invoice_number"], invoice["status"],
        )
        return {"invoice": invoice, "payment": dict(payment), "receipt": receipt}

    def settle_balance(
        self,
        invoice_id: int,
        payment_method: str = "manual",
        payment_reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a payment of whatever is still outstanding."""
        invoice = self.invoices.get_invoice(invoice_id)
        return self.record_payment(
            invoice_id, invoice["balance_due"], payment_method, payment_reference
        )

    def payment_history(self, invoice_id: int) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            self.invoices.load(conn, invoice_id, include_deleted=True)
            rows = conn.execute(
                select(invoice_payments)
                .where(invoice_payments.c.invoice_id == invoice_id)
                .order_by(invoice_payments.c.payment_date, invoice_payments.c.id)
            ).mappings().all()
        return [dict(r) for r in rows]

    def all_payments(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[Dict[str, Any]]:
        stmt = (
            select(invoice_payments, invoices.c.invoice_number, invoices.c.client_id)
            .join(invoices, invoices.c.id == invoice_payments.c.invoice_id)
            .order_by(invoice_payments.c.payment_date.desc(), invoice_payments.c.id.desc())
        )
        if date_from is not None:
            stmt = stmt.where(invoice_payments.c.payment_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(invoice_payments.c.payment_date <= date_to)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    # ------------------------------------------------------------------
    # deposit credits
    # ------------------------------------------------------------------

    def available_credit(self, conn: Connection, deposit_row) -> Decimal:
        drawn = conn.execute(
            select(func.coalesce(func.sum(invoice_credits.c.amount), 0)).where(
                invoice_credits.c.deposit_invoice_id == deposit_row["id"]
            )
        ).scalar_one()
        return to_money(deposit_row["amount_paid"] - to_money(drawn))

    def apply_credit(
        self,
        deposit_invoice_id: int,
        target_invoice_id: int,
        amount,
        applied_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Credit amount must be positive")
        if deposit_invoice_id == target_invoice_id:
            raise ValidationError("A deposit cannot be credited to itself")

        with self.engine.begin() as conn:
            deposit = self.invoices.load(conn, deposit_invoice_id)
            if deposit["invoice_type"] != "deposit":
                raise ValidationError(f"Invoice {deposit['invoice_number']} is not a deposit invoice")
            if deposit["status"] in CLOSED_STATUSES:
                raise NotEditableError(f"Deposit {deposit['invoice_number']} is cancelled")
            available = self.available_credit(conn, deposit)
            if amount > available:
                raise InsufficientCreditError(amount, available)

            target = self.invoices.load(conn, target_invoice_id)
            if target["invoice_type"] == "deposit":
                raise NotEditableError("Deposit credit cannot be applied to another deposit")
            if InvoiceStatus(target["status"]) not in OPEN_STATUSES:
                raise NotEditableError(
                    f"Invoice {target['invoice_number']} is {target['status']} and cannot take credit"
                )
            outstanding = target["amount_total"] - target["amount_paid"]
            if amount > outstanding:
                raise OverpaymentError(amount, outstanding)

            result = conn.execute(
                invoice_credits.insert().values(
                    invoice_id=target_invoice_id,
                    deposit_invoice_id=deposit_invoice_id,
                    amount=amount,
                    applied_at=self.clock.now(),
                    applied_by=applied_by,
                )
            )
            credit_id = result.inserted_primary_key[0]
            self._credit_paid_amount(conn, target, amount)

            credit = conn.execute(
                select(invoice_credits).where(invoice_credits.c.id == credit_id)
            ).mappings().one()
            invoice = self.invoices.to_dict(conn, self.invoices.load(conn, target_invoice_id))
            remaining = self.available_credit(conn, self.invoices.load(conn, deposit_invoice_id))

        logger.info(
            "Applied %s credit from deposit %s to invoice %s",
            amount, deposit["invoice_number"], invoice["invoice_number"],
        )
        return {"credit": dict(credit), "invoice": invoice, "available_balance": remaining}

    def credits_for(self, invoice_id: int) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            self.invoices.load(conn, invoice_id, include_deleted=True)
            rows = conn.execute(
                select(invoice_credits, invoices.c.invoice_number.label("deposit_invoice_number"))
                .join(invoices, invoices.c.id == invoice_credits.c.deposit_invoice_id)
                .where(invoice_credits.c.invoice_id == invoice_id)
                .order_by(invoice_credits.c.applied_at)
            ).mappings().all()
        return [dict(r) for r in rows]

    def available_deposits(self, project_id: int) -> List[Dict[str, Any]]:
        """Paid deposit invoices on a project that still have credit left."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(invoices).where(
                    invoices.c.invoice_type == "deposit",
                    invoices.c.project_id == project_id,
                    invoices.c.deleted_at.is_(None),
                    invoices.c.status != InvoiceStatus.CANCELLED.value,
                    invoices.c.amount_paid > 0,
                ).order_by(invoices.c.issued_date, invoices.c.id)
            ).mappings().all()
            deposits = []
            for row in rows:
                available = self.available_credit(conn, row)
                if available > 0:
                    deposits.append(
                        {
                            "invoice_id": row["id"],
                            "invoice_number": row["invoice_number"],
                            "amount_paid": row["amount_paid"],
                            "total_applied": row["amount_paid"] - available,
                            "available_amount": available,
                            "paid_date": row["paid_date"],
                        }
                    )
        if not deposits:
            logger.debug("No deposit credit available for project %s", project_id)
        return deposits
