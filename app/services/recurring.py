# app/services/recurring.py
"""
Recurring patterns and scheduled one-shot invoices.

Cadence arithmetic:

    weekly     +7 days
    monthly    +1 calendar month, pinned to the anchor day
    quarterly  +3 calendar months, pinned to the anchor day

Pinned dates are clamped to the last day of short months, so a pattern
anchored on the 31st runs Jan 31 -> Feb 28 (29) -> Mar 31.

A paused pattern forfeits the periods it missed: resuming moves the next
date to the first cadence date after today, nothing is backfilled.
"""

import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.clock import Clock, SystemClock
from app.config import Settings, get_settings
from app.db.schema import recurring_invoices, scheduled_invoices
from app.errors import InvoicingError, NotEditableError, NotFoundError, ValidationError
from app.services.invoices import InvoiceService, normalize_line_items
from app.services.sweep import SweepResult

logger = logging.getLogger(__name__)

FREQUENCIES = ("weekly", "monthly", "quarterly")
TRIGGER_TYPES = ("date", "milestone")

PENDING = "pending"
FIRED = "fired"
CANCELLED = "cancelled"


# ----------------------------------------------------------------------
# cadence
# ----------------------------------------------------------------------

def add_months(start: date, months: int, anchor_day: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_occurrence(current: date, frequency: str, anchor_day: Optional[int] = None) -> date:
    if frequency == "weekly":
        return current + timedelta(days=7)
    anchor = anchor_day or current.day
    if frequency == "monthly":
        return add_months(current, 1, anchor)
    if frequency == "quarterly":
        return add_months(current, 3, anchor)
    raise ValidationError(f"Unknown frequency: {frequency}")


def first_occurrence_after(current: date, frequency: str, anchor_day: Optional[int], after: date) -> date:
    """Walk forward from ``current`` to the first cadence date strictly after ``after``."""
    while current <= after:
        current = next_occurrence(current, frequency, anchor_day)
    return current


def _template_items(line_items) -> List[Dict[str, Any]]:
    """Line items in a JSON-storable form."""
    return [
        {
            "description": item["description"],
            "quantity": str(item["quantity"]),
            "rate": str(item["rate"]),
        }
        for item in normalize_line_items(line_items)
    ]


def _stored_items(line_items) -> List[Dict[str, Any]]:
    return [
        {
            "description": item["description"],
            "quantity": Decimal(item["quantity"]),
            "rate": Decimal(item["rate"]),
        }
        for item in line_items
    ]


class RecurringService:
    def __init__(
        self,
        engine: Engine,
        invoices_service: InvoiceService,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.engine = engine
        self.invoices = invoices_service
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # recurring patterns
    # ------------------------------------------------------------------

    def _pattern_row(self, conn, pattern_id: int):
        row = conn.execute(
            select(recurring_invoices).where(recurring_invoices.c.id == pattern_id)
        ).mappings().first()
        if row is None:
            raise NotFoundError("Recurring invoice", pattern_id)
        return row

    def get_pattern(self, pattern_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            return dict(self._pattern_row(conn, pattern_id))

    def list_patterns(self, project_id: Optional[int] = None, active: Optional[bool] = None) -> List[Dict[str, Any]]:
        stmt = select(recurring_invoices).order_by(recurring_invoices.c.next_generation_date, recurring_invoices.c.id)
        if project_id is not None:
            stmt = stmt.where(recurring_invoices.c.project_id == project_id)
        if active is not None:
            stmt = stmt.where(recurring_invoices.c.is_active == active)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    def create_pattern(
        self,
        client_id: int,
        frequency: str,
        line_items,
        project_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        anchor_day: Optional[int] = None,
        due_days: Optional[int] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
    ) -> Dict[str, Any]:
        if frequency not in FREQUENCIES:
            raise ValidationError(f"Frequency must be one of {', '.join(FREQUENCIES)}")
        start_date = start_date or self.clock.today()
        if end_date is not None and end_date < start_date:
            raise ValidationError("End date cannot be before the start date")
        if frequency == "weekly":
            anchor_day = None
        else:
            anchor_day = anchor_day or start_date.day
            if not 1 <= anchor_day <= 31:
                raise ValidationError("Anchor day must be between 1 and 31")
        due_days = self.settings.default_due_days if due_days is None else due_days
        if due_days < 0:
            raise ValidationError("Due days cannot be negative")

        with self.engine.begin() as conn:
            self.invoices.require_client(conn, client_id, project_id)
            result = conn.execute(
                recurring_invoices.insert().values(
                    client_id=client_id,
                    project_id=project_id,
                    frequency=frequency,
                    anchor_day=anchor_day,
                    line_items=_template_items(line_items),
                    notes=notes,
                    terms=terms,
                    due_days=due_days,
                    start_date=start_date,
                    end_date=end_date,
                    next_generation_date=start_date,
                    is_active=True,
                    created_at=self.clock.now(),
                )
            )
            pattern = dict(self._pattern_row(conn, result.inserted_primary_key[0]))
        logger.info("Created %s recurring invoice %s starting %s", frequency, pattern["id"], start_date)
        return pattern

    def update_pattern(self, pattern_id: int, **changes) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self._pattern_row(conn, pattern_id)
            values = {}
            for key in ("notes", "terms", "end_date"):
                if key in changes:
                    values[key] = changes[key]
            if changes.get("line_items") is not None:
                values["line_items"] = _template_items(changes["line_items"])
            if changes.get("due_days") is not None:
                if changes["due_days"] < 0:
                    raise ValidationError("Due days cannot be negative")
                values["due_days"] = changes["due_days"]
            if changes.get("frequency") is not None:
                if changes["frequency"] not in FREQUENCIES:
                    raise ValidationError(f"Frequency must be one of {', '.join(FREQUENCIES)}")
                values["frequency"] = changes["frequency"]
            frequency = values.get("frequency", row["frequency"])
            if frequency == "weekly":
                values["anchor_day"] = None
            elif changes.get("anchor_day") is not None or row["anchor_day"] is None:
                anchor_day = changes.get("anchor_day") or row["next_generation_date"].day
                if not 1 <= anchor_day <= 31:
                    raise ValidationError("Anchor day must be between 1 and 31")
                values["anchor_day"] = anchor_day
            end_date = values.get("end_date", row["end_date"])
            if end_date is not None and end_date < row["start_date"]:
                raise ValidationError("End date cannot be before the start date")
            if values:
                conn.execute(
                    update(recurring_invoices).where(recurring_invoices.c.id == pattern_id).values(**values)
                )
            return dict(self._pattern_row(conn, pattern_id))

    def pause(self, pattern_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            self._pattern_row(conn, pattern_id)
            conn.execute(
                update(recurring_invoices).where(recurring_invoices.c.id == pattern_id).values(is_active=False)
            )
            logger.info("Paused recurring invoice %s", pattern_id)
            return dict(self._pattern_row(conn, pattern_id))

    def resume(self, pattern_id: int) -> Dict[str, Any]:
        today = self.clock.today()
        with self.engine.begin() as conn:
            row = self._pattern_row(conn, pattern_id)
            next_date = first_occurrence_after(
                row["next_generation_date"], row["frequency"], row["anchor_day"], today
            )
            if row["end_date"] is not None and next_date > row["end_date"]:
                raise NotEditableError(f"Recurring invoice {pattern_id} has no occurrences left before its end date")
            conn.execute(
                update(recurring_invoices)
                .where(recurring_invoices.c.id == pattern_id)
                .values(is_active=True, next_generation_date=next_date)
            )
            logger.info("Resumed recurring invoice %s; next run %s", pattern_id, next_date)
            return dict(self._pattern_row(conn, pattern_id))

    def delete_pattern(self, pattern_id: int) -> None:
        with self.engine.begin() as conn:
            self._pattern_row(conn, pattern_id)
            conn.execute(delete(recurring_invoices).where(recurring_invoices.c.id == pattern_id))
        logger.info("Deleted recurring invoice %s", pattern_id)

    def _generate_from_pattern(self, pattern_id: int) -> Optional[int]:
        """Generate one invoice and advance the pattern by one period."""
        today = self.clock.today()
        with self.engine.begin() as conn:
            row = self._pattern_row(conn, pattern_id)
            if not row["is_active"] or row["next_generation_date"] > today:
                return None
            if row["end_date"] is not None and row["next_generation_date"] > row["end_date"]:
                conn.execute(
                    update(recurring_invoices)
                    .where(recurring_invoices.c.id == pattern_id)
                    .values(is_active=False)
                )
                logger.info("Recurring invoice %s passed its end date; deactivated", pattern_id)
                return None

            invoice_id = self.invoices.insert_invoice(
                conn,
                client_id=row["client_id"],
                project_id=row["project_id"],
                line_items=_stored_items(row["line_items"]),
                issued_date=today,
                due_date=today + timedelta(days=row["due_days"]),
                notes=row["notes"],
                terms=row["terms"],
            )
            next_date = next_occurrence(row["next_generation_date"], row["frequency"], row["anchor_day"])
            still_active = row["end_date"] is None or next_date <= row["end_date"]
            result = conn.execute(
                update(recurring_invoices)
                .where(
                    recurring_invoices.c.id == pattern_id,
                    recurring_invoices.c.next_generation_date == row["next_generation_date"],
                )
                .values(
                    next_generation_date=next_date,
                    last_generated_at=self.clock.now(),
                    is_active=still_active,
                )
            )
            if result.rowcount != 1:
                raise NotEditableError(f"Recurring invoice {pattern_id} was advanced concurrently")
        logger.info("Recurring invoice %s generated invoice %s; next run %s", pattern_id, invoice_id, next_date)
        return invoice_id

    def process_due(self) -> SweepResult:
        today = self.clock.today()
        with self.engine.connect() as conn:
            ids = conn.execute(
                select(recurring_invoices.c.id).where(
                    recurring_invoices.c.is_active.is_(True),
                    recurring_invoices.c.next_generation_date <= today,
                )
            ).scalars().all()

        sweep = SweepResult()
        for pattern_id in ids:
            try:
                if self._generate_from_pattern(pattern_id) is None:
                    sweep.record_skip()
                else:
                    sweep.record_success()
            except (InvoicingError, SQLAlchemyError) as exc:
                logger.exception("Recurring invoice %s failed to generate", pattern_id)
                sweep.record_failure(pattern_id, exc)
        logger.info("Recurring sweep: %s", sweep.summary())
        return sweep

    # ------------------------------------------------------------------
    # scheduled one-shot invoices
    # ------------------------------------------------------------------

    def _scheduled_row(self, conn, scheduled_id: int):
        row = conn.execute(
            select(scheduled_invoices).where(scheduled_invoices.c.id == scheduled_id)
        ).mappings().first()
        if row is None:
            raise NotFoundError("Scheduled invoice", scheduled_id)
        return row

    def get_scheduled(self, scheduled_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            return dict(self._scheduled_row(conn, scheduled_id))

    def list_scheduled(self, status: Optional[str] = PENDING, project_id: Optional[int] = None) -> List[Dict[str, Any]]:
        stmt = select(scheduled_invoices).order_by(scheduled_invoices.c.scheduled_date, scheduled_invoices.c.id)
        if status:
            stmt = stmt.where(scheduled_invoices.c.status == status)
        if project_id is not None:
            stmt = stmt.where(scheduled_invoices.c.project_id == project_id)
        with self.engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    def schedule_invoice(
        self,
        client_id: int,
        line_items,
        project_id: Optional[int] = None,
        scheduled_date: Optional[date] = None,
        trigger_type: str = "date",
        trigger_milestone_id: Optional[int] = None,
        due_days: Optional[int] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
    ) -> Dict[str, Any]:
        if trigger_type not in TRIGGER_TYPES:
            raise ValidationError(f"Trigger type must be one of {', '.join(TRIGGER_TYPES)}")
        if trigger_type == "date" and scheduled_date is None:
            raise ValidationError("A date-triggered invoice needs a scheduled date")
        if trigger_type == "milestone" and trigger_milestone_id is None:
            raise ValidationError("A milestone-triggered invoice needs a milestone id")
        due_days = self.settings.default_due_days if due_days is None else due_days
        if due_days < 0:
            raise ValidationError("Due days cannot be negative")

        with self.engine.begin() as conn:
            self.invoices.require_client(conn, client_id, project_id)
            result = conn.execute(
                scheduled_invoices.insert().values(
                    client_id=client_id,
                    project_id=project_id,
                    scheduled_date=scheduled_date,
                    trigger_type=trigger_type,
                    trigger_milestone_id=trigger_milestone_id,
                    line_items=_template_items(line_items),
                    notes=notes,
                    terms=terms,
                    due_days=due_days,
                    status=PENDING,
                    created_at=self.clock.now(),
                )
            )
            scheduled = dict(self._scheduled_row(conn, result.inserted_primary_key[0]))
        logger.info("Scheduled invoice %s (%s trigger)", scheduled["id"], trigger_type)
        return scheduled

    def cancel_scheduled(self, scheduled_id: int) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            row = self._scheduled_row(conn, scheduled_id)
            result = conn.execute(
                update(scheduled_invoices)
                .where(scheduled_invoices.c.id == scheduled_id, scheduled_invoices.c.status == PENDING)
                .values(status=CANCELLED)
            )
            if result.rowcount != 1:
                raise NotEditableError(f"Scheduled invoice {scheduled_id} is already {row['status']}")
            return dict(self._scheduled_row(conn, scheduled_id))

    def _record_failure(self, scheduled_id: int, exc: Exception) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(scheduled_invoices)
                .where(scheduled_invoices.c.id == scheduled_id, scheduled_invoices.c.status == PENDING)
                .values(last_error=str(exc)[:500], failed_at=self.clock.now())
            )

    def _generate_scheduled(self, row) -> Dict[str, Any]:
        today = self.clock.today()
        try:
            with self.engine.begin() as conn:
                invoice_id = self.invoices.insert_invoice(
                    conn,
                    client_id=row["client_id"],
                    project_id=row["project_id"],
                    line_items=_stored_items(row["line_items"]),
                    issued_date=today,
                    due_date=today + timedelta(days=row["due_days"]),
                    notes=row["notes"],
                    terms=row["terms"],
                    milestone_id=row["trigger_milestone_id"],
                )
                result = conn.execute(
                    update(scheduled_invoices)
                    .where(scheduled_invoices.c.id == row["id"], scheduled_invoices.c.status == PENDING)
                    .values(
                        status=FIRED,
                        generated_invoice_id=invoice_id,
                        fired_at=self.clock.now(),
                        last_error=None,
                        failed_at=None,
                    )
                )
                if result.rowcount != 1:
                    raise NotEditableError(f"Scheduled invoice {row['id']} is no longer pending")
                invoice = self.invoices.to_dict(conn, self.invoices.load(conn, invoice_id))
        except (InvoicingError, SQLAlchemyError) as exc:
            logger.exception("Scheduled invoice %s failed to fire", row["id"])
            self._record_failure(row["id"], exc)
            raise
        logger.info("Scheduled invoice %s fired as %s", row["id"], invoice["invoice_number"])
        return invoice

    def fire(self, scheduled_id: int) -> Dict[str, Any]:
        """Fire a scheduled invoice now; firing an already fired one returns its invoice."""
        row = self.get_scheduled(scheduled_id)
        if row["status"] == FIRED:
            return self.invoices.get_invoice(row["generated_invoice_id"], include_deleted=True)
        if row["status"] != PENDING:
            raise NotEditableError(f"Scheduled invoice {scheduled_id} is {row['status']}")
        return self._generate_scheduled(row)

    def _fire_all(self, rows, label: str) -> SweepResult:
        sweep = SweepResult()
        for row in rows:
            try:
                self._generate_scheduled(row)
                sweep.record_success()
            except (InvoicingError, SQLAlchemyError) as exc:
                sweep.record_failure(row["id"], exc)
        logger.info("%s: %s", label, sweep.summary())
        return sweep

    def process_scheduled(self) -> SweepResult:
        """Fire pending date-triggered invoices that have come due; failed ones wait for a manual retry."""
        today = self.clock.today()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(scheduled_invoices).where(
                    scheduled_invoices.c.status == PENDING,
                    scheduled_invoices.c.trigger_type == "date",
                    scheduled_invoices.c.scheduled_date <= today,
                    scheduled_invoices.c.failed_at.is_(None),
                )
            ).mappings().all()
        return self._fire_all(rows, "Scheduled invoice sweep")

    def complete_milestone(self, milestone_id: int) -> SweepResult:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(scheduled_invoices).where(
                    scheduled_invoices.c.status == PENDING,
                    scheduled_invoices.c.trigger_type == "milestone",
                    scheduled_invoices.c.trigger_milestone_id == milestone_id,
                )
            ).mappings().all()
        return self._fire_all(rows, f"Milestone {milestone_id} invoices")
