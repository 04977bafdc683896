# app/services/receipts.py
"""
Payment receipts. Every recorded payment gets a receipt numbered
``RCP-<year>-NNNN`` inside the payment's own transaction.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from app.clock import Clock, SystemClock
from app.db.schema import clients, invoice_payments, invoices, projects, receipts
from app.errors import NotFoundError
from app.services.invoices import next_sequence

logger = logging.getLogger(__name__)


def _receipt_select():
    return select(
        receipts,
        invoices.c.invoice_number,
        invoices.c.client_id,
        invoices.c.currency,
        invoice_payments.c.payment_method,
        invoice_payments.c.payment_reference,
        invoice_payments.c.payment_date,
        clients.c.company_name.label("client_name"),
        clients.c.contact_name.label("client_contact"),
        clients.c.email.label("client_email"),
        projects.c.project_name.label("project_name"),
    ).select_from(
        receipts.join(invoices, invoices.c.id == receipts.c.invoice_id)
        .join(clients, clients.c.id == invoices.c.client_id)
        .outerjoin(invoice_payments, invoice_payments.c.id == receipts.c.payment_id)
        .outerjoin(projects, projects.c.id == invoices.c.project_id)
    )


class ReceiptService:
    def __init__(self, engine: Engine, clock: Optional[Clock] = None):
        self.engine = engine
        self.clock = clock or SystemClock()

    def create_for_payment(self, conn: Connection, payment) -> Dict[str, Any]:
        """Issue the receipt for a payment row just inserted on ``conn``."""
        year = self.clock.today().year
        sequence = next_sequence(conn, f"receipt:{year}")
        receipt_number = f"RCP-{year}-{sequence:04d}"
        receipt_id = conn.execute(
            receipts.insert().values(
                receipt_number=receipt_number,
                invoice_id=payment["invoice_id"],
                payment_id=payment["id"],
                amount=payment["amount"],
                created_at=self.clock.now(),
            )
        ).inserted_primary_key[0]
        logger.info("Issued receipt %s for payment %s", receipt_number, payment["id"])
        return dict(conn.execute(_receipt_select().where(receipts.c.id == receipt_id)).mappings().one())

    def get(self, receipt_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(_receipt_select().where(receipts.c.id == receipt_id)).mappings().first()
        if row is None:
            raise NotFoundError("Receipt", receipt_id)
        return dict(row)

    def list_receipts(
        self,
        client_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        stmt = _receipt_select().order_by(receipts.c.created_at.desc(), receipts.c.id.desc())
        if client_id is not None:
            stmt = stmt.where(invoices.c.client_id == client_id)
        if invoice_id is not None:
            stmt = stmt.where(receipts.c.invoice_id == invoice_id)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

