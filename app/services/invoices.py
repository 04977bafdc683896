# app/services/invoices.py
"""
Invoice record store.

Owns the ``invoices`` and ``invoice_line_items`` tables: creation and
numbering, draft edits, status changes driven through the state machine,
delete/void/archive, and the overdue sweep. Money movement lives in
``app.services.ledger``.
"""

import logging
import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from app.clock import Clock, SystemClock
from app.config import Settings, get_settings
from app.db.schema import (
    clients,
    invoice_credits,
    invoice_line_items,
    invoice_reminders,
    invoices,
    number_sequences,
    payment_terms_presets,
    projects,
)
from app.errors import (
    InvoicingError,
    NotEditableError,
    NotFoundError,
    ProtectedStateError,
    ValidationError,
)
from app.services.money import ZERO, percent_of, to_money
from app.services.notifications import invoice_email_data
from app.services.status import (
    DELETABLE_STATUSES,
    OVERDUE_CANDIDATES,
    VOIDABLE_STATUSES,
    InvoiceEvent,
    InvoiceStatus,
    transition,
)
from app.services.sweep import SweepResult

logger = logging.getLogger(__name__)

PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{1,10}$")
LATE_FEE_TYPES = ("none", "flat", "percentage", "daily_percentage")

# Invoice fields a draft edit may change besides the line items.
DRAFT_FIELDS = ("due_date", "notes", "terms", "currency", "project_id")


def normalize_line_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Validate line items and fill in ``amount = quantity * rate`` when absent."""
    normalized = []
    for position, item in enumerate(items or []):
        description = (item.get("description") or "").strip()
        if not description:
            raise ValidationError(f"Line item {position + 1} needs a description")
        quantity = Decimal(str(item.get("quantity", 1)))
        rate = to_money(item.get("rate"))
        if quantity <= 0:
            raise ValidationError(f"Line item {position + 1} quantity must be positive")
        if rate < 0:
            raise ValidationError(f"Line item {position + 1} rate cannot be negative")
        amount = item.get("amount")
        amount = to_money(quantity * rate) if amount is None else to_money(amount)
        normalized.append(
            {
                "position": position,
                "description": description,
                "quantity": quantity,
                "rate": rate,
                "amount": amount,
            }
        )
    if not normalized:
        raise ValidationError("An invoice needs at least one line item")
    return normalized


def calculate_totals(
    line_items: List[Dict[str, Any]],
    tax_rate=0,
    discount_type: Optional[str] = None,
    discount_value=0,
) -> Dict[str, Decimal]:
    """
    Subtotal, discount, tax and total for a set of normalized line items.

    The discount applies to the subtotal first; tax is charged on the
    discounted amount. The total never goes below zero.
    """
    subtotal = to_money(sum((item["amount"] for item in line_items), ZERO))
    tax_rate = to_money(tax_rate)
    discount_value = to_money(discount_value)

    if tax_rate < 0 or tax_rate > 100:
        raise ValidationError("Tax rate must be between 0 and 100")
    if discount_value < 0:
        raise ValidationError("Discount cannot be negative")

    if not discount_type:
        discount = ZERO
    elif discount_type == "percentage":
        if discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")
        discount = percent_of(subtotal, discount_value)
    elif discount_type == "fixed":
        discount = min(discount_value, subtotal)
    else:
        raise ValidationError(f"Unknown discount type: {discount_type}")

    taxable = subtotal - discount
    tax = percent_of(taxable, tax_rate)
    return {
        "subtotal": subtotal,
        "tax_rate": tax_rate,
        "tax_amount": tax,
        "discount_value": discount_value,
        "discount_amount": discount,
        "amount_total": max(taxable + tax, ZERO),
    }


def next_sequence(conn: Connection, name: str, floor: int = 0) -> int:
    """Advance the named counter; ``floor`` seeds a counter seen for the first time."""
    last = conn.execute(
        select(number_sequences.c.last_value).where(number_sequences.c.name == name)
    ).scalar()
    if last is None:
        value = floor + 1
        conn.execute(number_sequences.insert().values(name=name, last_value=value))
    else:
        value = last + 1
        conn.execute(
            update(number_sequences).where(number_sequences.c.name == name).values(last_value=value)
        )
    return value


def _invoice_select():
    return select(
        invoices,
        clients.c.company_name.label("client_name"),
        clients.c.contact_name.label("client_contact"),
        clients.c.email.label("client_email"),
        projects.c.project_name.label("project_name"),
    ).select_from(
        invoices.join(clients, clients.c.id == invoices.c.client_id).outerjoin(
            projects, projects.c.id == invoices.c.project_id
        )
    )


class InvoiceService:
    def __init__(
        self,
        engine: Engine,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        reminders=None,
        email_sender=None,
    ):
        self.engine = engine
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.reminders = reminders
        self.email_sender = email_sender

    # ------------------------------------------------------------------
    # loading
    # ------------------------------------------------------------------

    def load(self, conn: Connection, invoice_id: int, include_deleted: bool = False):
        stmt = _invoice_select().where(invoices.c.id == invoice_id)
        if not include_deleted:
            stmt = stmt.where(invoices.c.deleted_at.is_(None))
        row = conn.execute(stmt).mappings().first()
        if row is None:
            raise NotFoundError("Invoice", invoice_id)
        return row

    def to_dict(self, conn: Connection, row) -> Dict[str, Any]:
        invoice = dict(row)
        items = conn.execute(
            select(invoice_line_items)
            .where(invoice_line_items.c.invoice_id == row["id"])
            .order_by(invoice_line_items.c.position)
        ).mappings().all()
        invoice["line_items"] = [dict(item) for item in items]
        invoice["balance_due"] = row["amount_total"] - row["amount_paid"]
        return invoice

    def get_invoice(self, invoice_id: int, include_deleted: bool = False) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            return self.to_dict(conn, self.load(conn, invoice_id, include_deleted))

    def get_by_number(self, invoice_number: str) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _invoice_select().where(
                    invoices.c.invoice_number == invoice_number,
                    invoices.c.deleted_at.is_(None),
                )
            ).mappings().first()
            if row is None:
                raise NotFoundError("Invoice", invoice_number)
            return self.to_dict(conn, row)

    def list_invoices(
        self,
        status: Optional[str] = None,
        client_id: Optional[int] = None,
        project_id: Optional[int] = None,
        invoice_type: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_drafts: bool = True,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        conditions = []
        if not include_deleted:
            conditions.append(invoices.c.deleted_at.is_(None))
        if status:
            conditions.append(invoices.c.status == InvoiceStatus(status).value)
        if not include_drafts:
            conditions.append(invoices.c.status != InvoiceStatus.DRAFT.value)
        if client_id is not None:
            conditions.append(invoices.c.client_id == client_id)
        if project_id is not None:
            conditions.append(invoices.c.project_id == project_id)
        if invoice_type:
            conditions.append(invoices.c.invoice_type == invoice_type)
        if date_from is not None:
            conditions.append(invoices.c.issued_date >= date_from)
        if date_to is not None:
            conditions.append(invoices.c.issued_date <= date_to)
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    invoices.c.invoice_number.ilike(pattern),
                    invoices.c.notes.ilike(pattern),
                    clients.c.company_name.ilike(pattern),
                    clients.c.contact_name.ilike(pattern),
                )
            )

        where = and_(*conditions) if conditions else None
        stmt = _invoice_select()
        count_stmt = select(func.count()).select_from(
            invoices.join(clients, clients.c.id == invoices.c.client_id)
        )
        if where is not None:
            stmt = stmt.where(where)
            count_stmt = count_stmt.where(where)
        stmt = stmt.order_by(invoices.c.created_at.desc(), invoices.c.id.desc()).limit(limit).offset(offset)

        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar_one()
            rows = conn.execute(stmt).mappings().all()
            items = [self.to_dict(conn, row) for row in rows]
        return items, total

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def require_client(self, conn: Connection, client_id: int, project_id: Optional[int]) -> None:
        if conn.execute(select(clients.c.id).where(clients.c.id == client_id)).first() is None:
            raise NotFoundError("Client", client_id)
        if project_id is None:
            return
        owner = conn.execute(
            select(projects.c.client_id).where(projects.c.id == project_id)
        ).scalar_one_or_none()
        if owner is None:
            raise NotFoundError("Project", project_id)
        if owner != client_id:
            raise ValidationError(f"Project {project_id} does not belong to client {client_id}")

    def _next_number(self, conn: Connection, prefix: str) -> Tuple[str, int]:
        # numbers of deleted drafts are never handed out again
        floor = conn.execute(
            select(func.max(invoices.c.invoice_sequence)).where(invoices.c.invoice_prefix == prefix)
        ).scalar() or 0
        sequence = next_sequence(conn, f"invoice:{prefix}", floor)
        return f"{prefix}-{self.clock.today():%Y%m}-{sequence:04d}", sequence

    def _load_terms(self, conn: Connection, terms_id: int):
        row = conn.execute(
            select(payment_terms_presets).where(payment_terms_presets.c.id == terms_id)
        ).mappings().first()
        if row is None:
            raise NotFoundError("Payment terms", terms_id)
        return row

    def insert_invoice(
        self,
        conn: Connection,
        *,
        client_id: int,
        line_items: Iterable[Dict[str, Any]],
        project_id: Optional[int] = None,
        issued_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        currency: str = "USD",
        tax_rate=0,
        discount_type: Optional[str] = None,
        discount_value=0,
        prefix: Optional[str] = None,
        payment_terms_id: Optional[int] = None,
        late_fee_type: Optional[str] = None,
        late_fee_rate=None,
        late_fee_grace_days: Optional[int] = None,
        invoice_type: str = "standard",
        deposit_for_project_id: Optional[int] = None,
        deposit_percentage=None,
        payment_plan_id: Optional[int] = None,
        milestone_id: Optional[int] = None,
    ) -> int:
        """Insert a draft invoice and its line items; returns the new id."""
        self.require_client(conn, client_id, project_id)
        items = normalize_line_items(line_items)
        totals = calculate_totals(items, tax_rate, discount_type, discount_value)

        prefix = (prefix or self.settings.invoice_prefix).upper()
        if not PREFIX_PATTERN.match(prefix):
            raise ValidationError("Invoice prefix must be 1-10 letters or digits")

        issued_date = issued_date or self.clock.today()
        if payment_terms_id is not None:
            preset = self._load_terms(conn, payment_terms_id)
            if due_date is None:
                due_date = issued_date + timedelta(days=preset["days_until_due"])
            if late_fee_type is None:
                late_fee_type = preset["late_fee_type"]
                late_fee_rate = preset["late_fee_rate"]
                late_fee_grace_days = preset["grace_period_days"]
        if due_date is not None and due_date < issued_date:
            raise ValidationError("Due date cannot be before the issue date")

        late_fee_type = late_fee_type or "none"
        if late_fee_type not in LATE_FEE_TYPES:
            raise ValidationError(f"Unknown late fee type: {late_fee_type}")

        now = self.clock.now()
        number, sequence = self._next_number(conn, prefix)
        result = conn.execute(
            invoices.insert().values(
                invoice_number=number,
                invoice_prefix=prefix,
                invoice_sequence=sequence,
                client_id=client_id,
                project_id=project_id,
                invoice_type=invoice_type,
                deposit_for_project_id=deposit_for_project_id,
                deposit_percentage=deposit_percentage,
                status=InvoiceStatus.DRAFT.value,
                currency=currency,
                discount_type=discount_type or None,
                amount_paid=ZERO,
                issued_date=issued_date,
                due_date=due_date,
                notes=notes,
                terms=terms if terms is not None else self.settings.default_terms,
                payment_terms_id=payment_terms_id,
                late_fee_type=late_fee_type,
                late_fee_rate=to_money(late_fee_rate),
                late_fee_grace_days=late_fee_grace_days or 0,
                payment_plan_id=payment_plan_id,
                milestone_id=milestone_id,
                created_at=now,
                updated_at=now,
                **totals,
            )
        )
        invoice_id = result.inserted_primary_key[0]
        self._save_line_items(conn, invoice_id, items)
        logger.info("Created invoice %s (%s) for client %s", number, invoice_id, client_id)
        return invoice_id

    def _save_line_items(self, conn: Connection, invoice_id: int, items: List[Dict[str, Any]]) -> None:
        conn.execute(delete(invoice_line_items).where(invoice_line_items.c.invoice_id == invoice_id))
        conn.execute(
            invoice_line_items.insert(),
            [dict(item, invoice_id=invoice_id) for item in items],
        )

    def create_invoice(self, **fields) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            invoice_id = self.insert_invoice(conn, **fields)
            return self.to_dict(conn, self.load(conn, invoice_id))

    def create_deposit_invoice(
        self,
        client_id: int,
        project_id: int,
        amount,
        percentage=None,
        description: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")
        if percentage is not None:
            percentage = to_money(percentage)
            if percentage <= 0 or percentage > 100:
                raise ValidationError("Deposit percentage must be between 0 and 100")
        if description is None:
            description = "Project deposit"
            if percentage is not None:
                description = f"Project deposit ({percentage.normalize():f}%)"
        return self.create_invoice(
            client_id=client_id,
            project_id=project_id,
            line_items=[{"description": description, "quantity": 1, "rate": amount}],
            due_date=due_date or self.clock.today() + timedelta(days=self.settings.deposit_due_days),
            invoice_type="deposit",
            deposit_for_project_id=project_id,
            deposit_percentage=percentage,
        )

    def preview_invoice(
        self,
        client_id: int,
        line_items: Iterable[Dict[str, Any]],
        project_id: Optional[int] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        currency: str = "USD",
        tax_rate=0,
        discount_type: Optional[str] = None,
        discount_value=0,
    ) -> Dict[str, Any]:
        """Build an unsaved invoice for rendering; nothing is written and no number is used up."""
        with self.engine.connect() as conn:
            self.require_client(conn, client_id, project_id)
            client = conn.execute(select(clients).where(clients.c.id == client_id)).mappings().one()
            project_name = None
            if project_id is not None:
                project_name = conn.execute(
                    select(projects.c.project_name).where(projects.c.id == project_id)
                ).scalar_one()

        items = normalize_line_items(line_items)
        totals = calculate_totals(items, tax_rate, discount_type, discount_value)
        today = self.clock.today()
        due_date = due_date or today + timedelta(days=self.settings.default_due_days)
        if due_date < today:
            raise ValidationError("Due date cannot be before the issue date")
        return {
            "id": None,
            "invoice_number": f"{self.settings.invoice_prefix}-PREVIEW",
            "invoice_type": "standard",
            "status": InvoiceStatus.DRAFT.value,
            "client_id": client_id,
            "client_name": client["company_name"],
            "client_contact": client["contact_name"],
            "client_email": client["email"],
            "project_id": project_id,
            "project_name": project_name,
            "issued_date": today,
            "due_date": due_date,
            "currency": currency,
            "discount_type": discount_type or None,
            "line_items": items,
            "late_fee_amount": None,
            "amount_paid": ZERO,
            "balance_due": totals["amount_total"],
            "notes": notes,
            "terms": terms if terms is not None else self.settings.default_terms,
            **totals,
        }

    def duplicate_invoice(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            original = self.to_dict(conn, self.load(conn, invoice_id))
            today = self.clock.today()
            if original["due_date"] and original["issued_date"]:
                due_date = today + (original["due_date"] - original["issued_date"])
            else:
                due_date = today + timedelta(days=self.settings.default_due_days)
            notes = f"Copy of {original['invoice_number']}"
            if original["notes"]:
                notes = f"{notes}: {original['notes']}"
            new_id = self.insert_invoice(
                conn,
                client_id=original["client_id"],
                project_id=original["project_id"],
                line_items=original["line_items"],
                due_date=due_date,
                notes=notes,
                terms=original["terms"],
                currency=original["currency"],
                tax_rate=original["tax_rate"],
                discount_type=original["discount_type"],
                discount_value=original["discount_value"],
                prefix=original["invoice_prefix"],
                late_fee_type=original["late_fee_type"],
                late_fee_rate=original["late_fee_rate"],
                late_fee_grace_days=original["late_fee_grace_days"],
            )
            return self.to_dict(conn, self.load(conn, new_id))

    # ------------------------------------------------------------------
    # draft edits
    # ------------------------------------------------------------------

    def _require_draft(self, row) -> None:
        if row["status"] != InvoiceStatus.DRAFT.value:
            raise NotEditableError(
                f"Invoice {row['invoice_number']} is {row['status']}; only drafts can be edited"
            )

    def _retotal(self, conn: Connection, row, items=None, **overrides) -> Dict[str, Decimal]:
        if items is None:
            items = [
                dict(item)
                for item in conn.execute(
                    select(invoice_line_items).where(invoice_line_items.c.invoice_id == row["id"])
                ).mappings()
            ]
        settings = {
            "tax_rate": row["tax_rate"],
            "discount_type": row["discount_type"],
            "discount_value": row["discount_value"],
        }
        settings.update(overrides)
        totals = calculate_totals(items, **settings)
        if totals["amount_total"] < row["amount_paid"]:
            raise ValidationError("The new total would be less than the amount already paid")
        return totals

    def update_invoice(self, invoice_id: int, **changes) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            self._require_draft(row)
            values = {k: changes[k] for k in DRAFT_FIELDS if k in changes}
            if "project_id" in values:
                self.require_client(conn, row["client_id"], values["project_id"])
            due_date = values.get("due_date", row["due_date"])
            if due_date is not None and row["issued_date"] and due_date < row["issued_date"]:
                raise ValidationError("Due date cannot be before the issue date")

            if changes.get("line_items") is not None:
                items = normalize_line_items(changes["line_items"])
                values.update(self._retotal(conn, row, items))
                self._save_line_items(conn, invoice_id, items)

            values["updated_at"] = self.clock.now()
            conn.execute(update(invoices).where(invoices.c.id == invoice_id).values(**values))
            return self.to_dict(conn, self.load(conn, invoice_id))

    def update_tax_discount(
        self,
        invoice_id: int,
        tax_rate=None,
        discount_type: Optional[str] = None,
        discount_value=None,
    ) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            self._require_draft(row)
            overrides = {}
            if tax_rate is not None:
                overrides["tax_rate"] = tax_rate
            if discount_type is not None:
                overrides["discount_type"] = discount_type or None
            if discount_value is not None:
                overrides["discount_value"] = discount_value
            totals = self._retotal(conn, row, **overrides)
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(
                    discount_type=overrides.get("discount_type", row["discount_type"]),
                    updated_at=self.clock.now(),
                    **totals,
                )
            )
            return self.to_dict(conn, self.load(conn, invoice_id))

    def update_internal_notes(self, invoice_id: int, internal_notes: Optional[str]) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            self.load(conn, invoice_id)
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(internal_notes=internal_notes, updated_at=self.clock.now())
            )
            return self.to_dict(conn, self.load(conn, invoice_id))

    def apply_payment_terms(self, invoice_id: int, payment_terms_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            self._require_draft(row)
            preset = self._load_terms(conn, payment_terms_id)
            issued = row["issued_date"] or self.clock.today()
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(
                    payment_terms_id=preset["id"],
                    due_date=issued + timedelta(days=preset["days_until_due"]),
                    late_fee_type=preset["late_fee_type"],
                    late_fee_rate=preset["late_fee_rate"],
                    late_fee_grace_days=preset["grace_period_days"],
                    updated_at=self.clock.now(),
                )
            )
            return self.to_dict(conn, self.load(conn, invoice_id))

    # ------------------------------------------------------------------
    # status changes
    # ------------------------------------------------------------------

    def apply_event(self, conn: Connection, row, event: InvoiceEvent, **values) -> InvoiceStatus:
        """
        Move ``row`` through ``event`` and write the new status together with
        any extra column ``values``. The update is guarded on the status that
        was read, so a concurrent change surfaces as ``NotEditableError``.
        """
        new_status = transition(row["status"], event)
        result = conn.execute(
            update(invoices)
            .where(invoices.c.id == row["id"], invoices.c.status == row["status"])
            .values(status=new_status.value, updated_at=self.clock.now(), **values)
        )
        if result.rowcount != 1:
            raise NotEditableError(f"Invoice {row['id']} changed while it was being updated")
        if new_status.value != row["status"]:
            logger.info(
                "Invoice %s: %s -> %s (%s)",
                row["invoice_number"], row["status"], new_status.value, InvoiceEvent(event).value,
            )
        return new_status

    def send_invoice(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            values = {"sent_at": self.clock.now()}
            if row["issued_date"] is None:
                values["issued_date"] = self.clock.today()
            self.apply_event(conn, row, InvoiceEvent.SEND, **values)
            if self.reminders is not None:
                self.reminders.create_for_invoice(conn, invoice_id, row["due_date"])
            invoice = self.to_dict(conn, self.load(conn, invoice_id))

        self._email_invoice(invoice)
        return invoice

    def _email_invoice(self, invoice: Dict[str, Any]) -> None:
        if self.email_sender is None:
            return
        if not invoice.get("client_email"):
            logger.warning("Invoice %s sent without email: client has no address", invoice["invoice_number"])
            return
        result = self.email_sender.send(
            invoice["client_email"], "invoice_sent", invoice_email_data(invoice, self.settings)
        )
        if not result.ok:
            logger.error("Could not email invoice %s: %s", invoice["invoice_number"], result.error)

    def mark_viewed(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            self.apply_event(conn, row, InvoiceEvent.VIEW)
            return self.to_dict(conn, self.load(conn, invoice_id))

    def mark_overdue(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            self.apply_event(conn, row, InvoiceEvent.MARK_OVERDUE)
            return self.to_dict(conn, self.load(conn, invoice_id))

    def change_status(self, invoice_id: int, status: str) -> Dict[str, Any]:
        """Apply the event behind a requested status (payments excluded)."""
        status = InvoiceStatus(status)
        if status is InvoiceStatus.SENT:
            return self.send_invoice(invoice_id)
        if status is InvoiceStatus.VIEWED:
            return self.mark_viewed(invoice_id)
        if status is InvoiceStatus.OVERDUE:
            return self.mark_overdue(invoice_id)
        if status is InvoiceStatus.CANCELLED:
            return self.void_invoice(invoice_id)
        raise ValidationError(f"Status '{status.value}' cannot be set directly")

    # ------------------------------------------------------------------
    # void / delete / archive
    # ------------------------------------------------------------------

    def _release_credits(self, conn: Connection, row) -> Decimal:
        released = conn.execute(
            select(func.coalesce(func.sum(invoice_credits.c.amount), 0)).where(
                invoice_credits.c.invoice_id == row["id"]
            )
        ).scalar_one()
        released = to_money(released)
        if released > 0:
            conn.execute(delete(invoice_credits).where(invoice_credits.c.invoice_id == row["id"]))
            conn.execute(
                update(invoices)
                .where(invoices.c.id == row["id"])
                .values(amount_paid=invoices.c.amount_paid - released)
            )
            logger.info("Released %s of deposit credit from invoice %s", released, row["invoice_number"])
        return released

    def _void(self, conn: Connection, row) -> None:
        transition(row["status"], InvoiceEvent.VOID)
        self._release_credits(conn, row)
        conn.execute(
            update(invoice_reminders)
            .where(
                invoice_reminders.c.invoice_id == row["id"],
                invoice_reminders.c.status == "pending",
            )
            .values(status="skipped")
        )
        self.apply_event(conn, row, InvoiceEvent.VOID)

    def void_invoice(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            self._void(conn, self.load(conn, invoice_id))
            return self.to_dict(conn, self.load(conn, invoice_id))

    def _hard_delete(self, conn: Connection, row) -> None:
        drawn = conn.execute(
            select(func.count()).where(invoice_credits.c.deposit_invoice_id == row["id"])
        ).scalar_one()
        if drawn:
            raise NotEditableError(
                f"Deposit {row['invoice_number']} has credits applied to other invoices"
            )
        conn.execute(delete(invoices).where(invoices.c.id == row["id"]))
        logger.info("Deleted invoice %s", row["invoice_number"])

    def delete_or_void(self, invoice_id: int) -> Dict[str, str]:
        """Drafts and cancelled invoices are deleted; open ones are voided."""
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            status = InvoiceStatus(row["status"])
            if status is InvoiceStatus.PAID:
                raise ProtectedStateError("Paid invoices cannot be deleted or voided")
            if status in DELETABLE_STATUSES:
                self._hard_delete(conn, row)
                return {"action": "deleted"}
            self._void(conn, row)
            return {"action": "voided"}

    def soft_delete(self, invoice_id: int, deleted_by: Optional[str] = None) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id)
            status = InvoiceStatus(row["status"])
            if status is InvoiceStatus.PAID:
                raise ProtectedStateError("Paid invoices cannot be deleted or voided")
            if status in VOIDABLE_STATUSES:
                self._void(conn, row)
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(deleted_at=self.clock.now(), deleted_by=deleted_by)
            )
            logger.info("Archived invoice %s", row["invoice_number"])
            return self.to_dict(conn, self.load(conn, invoice_id, include_deleted=True))

    def restore(self, invoice_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self.load(conn, invoice_id, include_deleted=True)
            if row["deleted_at"] is None:
                raise NotEditableError(f"Invoice {row['invoice_number']} is not archived")
            conn.execute(
                update(invoices)
                .where(invoices.c.id == invoice_id)
                .values(deleted_at=None, deleted_by=None, updated_at=self.clock.now())
            )
            return self.to_dict(conn, self.load(conn, invoice_id))

    def purge_deleted(self, retention_days: Optional[int] = None) -> SweepResult:
        """Hard-delete archived invoices older than the retention window."""
        if retention_days is None:
            retention_days = self.settings.soft_delete_retention_days
        cutoff = self.clock.now() - timedelta(days=retention_days)
        with self.engine.connect() as conn:
            ids = conn.execute(
                select(invoices.c.id).where(
                    invoices.c.deleted_at.is_not(None), invoices.c.deleted_at < cutoff
                )
            ).scalars().all()

        sweep = SweepResult()
        for invoice_id in ids:
            try:
                with self.engine.begin() as conn:
                    row = self.load(conn, invoice_id, include_deleted=True)
                    self._hard_delete(conn, row)
                sweep.record_success()
            except (InvoicingError, SQLAlchemyError) as exc:
                logger.exception("Could not purge invoice %s", invoice_id)
                sweep.record_failure(invoice_id, exc)
        logger.info("Purge of archived invoices: %s", sweep.summary())
        return sweep

    # ------------------------------------------------------------------
    # overdue sweep
    # ------------------------------------------------------------------

    def check_overdue(self) -> SweepResult:
        """Mark every unpaid sent/viewed/partial invoice past its due date overdue."""
        today = self.clock.today()
        with self.engine.connect() as conn:
            ids = conn.execute(
                select(invoices.c.id).where(
                    invoices.c.status.in_([s.value for s in OVERDUE_CANDIDATES]),
                    invoices.c.due_date.is_not(None),
                    invoices.c.due_date < today,
                    invoices.c.amount_paid < invoices.c.amount_total,
                    invoices.c.deleted_at.is_(None),
                )
            ).scalars().all()

        sweep = SweepResult()
        for invoice_id in ids:
            try:
                with self.engine.begin() as conn:
                    row = self.load(conn, invoice_id)
                    self.apply_event(conn, row, InvoiceEvent.MARK_OVERDUE)
                sweep.record_success()
            except (InvoicingError, SQLAlchemyError) as exc:
                logger.exception("Could not mark invoice %s overdue", invoice_id)
                sweep.record_failure(invoice_id, exc)
        logger.info("Overdue sweep: %s", sweep.summary())
        return sweep
