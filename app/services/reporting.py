# app/services/reporting.py

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.engine import Engine

from app.clock import Clock, SystemClock
from app.db.schema import clients, invoices
from app.errors import ValidationError
from app.services.money import ZERO, to_money
from app.services.status import InvoiceStatus


# sent, viewed, partial, overdue: invoices the client has been asked to pay
RECEIVABLE_STATUSES = [
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
]

AGING_BUCKETS = (
    ("current", None, 0),
    ("1-30", 1, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
)


def aging_bucket(days_past_due: int) -> str:
    for label, low, high in AGING_BUCKETS:
        if (low is None or days_past_due >= low) and (high is None or days_past_due <= high):
            return label
    return "current"


def _outstanding():
    return func.coalesce(invoices.c.amount_total, 0) - func.coalesce(invoices.c.amount_paid, 0)


class ReportingService:
    def __init__(self, engine: Engine, clock: Optional[Clock] = None):
        self.engine = engine
        self.clock = clock or SystemClock()

    def stats(self, client_id: Optional[int] = None) -> Dict[str, Any]:
        conditions = [invoices.c.deleted_at.is_(None)]
        if client_id is not None:
            conditions.append(invoices.c.client_id == client_id)
        billable = invoices.c.status != InvoiceStatus.CANCELLED.value
        receivable = invoices.c.status.in_(RECEIVABLE_STATUSES)

        with self.engine.connect() as conn:
            counts = dict(
                conn.execute(
                    select(invoices.c.status, func.count())
                    .where(and_(*conditions))
                    .group_by(invoices.c.status)
                ).all()
            )
            row = conn.execute(
                select(
                    func.coalesce(func.sum(case((billable, invoices.c.amount_total), else_=0)), 0).label("invoiced"),
                    func.coalesce(func.sum(case((billable, invoices.c.amount_paid), else_=0)), 0).label("paid"),
                    func.coalesce(func.sum(case((receivable, _outstanding()), else_=0)), 0).label("outstanding"),
                    func.coalesce(
                        func.sum(
                            case((invoices.c.status == InvoiceStatus.OVERDUE.value, _outstanding()), else_=0)
                        ),
                        0,
                    ).label("overdue"),
                ).where(and_(*conditions))
            ).one()

        by_status = {status.value: counts.get(status.value, 0) for status in InvoiceStatus}
        return {
            "total_invoices": sum(by_status.values()),
            "by_status": by_status,
            "total_invoiced": to_money(row.invoiced),
            "total_paid": to_money(row.paid),
            "total_outstanding": to_money(row.outstanding),
            "total_overdue": to_money(row.overdue),
        }

    def aging_report(self, client_id: Optional[int] = None, as_of: Optional[date] = None) -> Dict[str, Any]:
        as_of = as_of or self.clock.today()
        stmt = select(
            invoices.c.id, invoices.c.due_date, _outstanding().label("outstanding")
        ).where(
            invoices.c.status.in_(RECEIVABLE_STATUSES),
            invoices.c.deleted_at.is_(None),
            _outstanding() > 0,
        )
        if client_id is not None:
            stmt = stmt.where(invoices.c.client_id == client_id)

        buckets = {label: {"count": 0, "amount": ZERO} for label, _, _ in AGING_BUCKETS}
        with self.engine.connect() as conn:
            for row in conn.execute(stmt).mappings():
                days = (as_of - row["due_date"]).days if row["due_date"] else 0
                bucket = buckets[aging_bucket(days)]
                bucket["count"] += 1
                bucket["amount"] += to_money(row["outstanding"])

        return {
            "as_of": as_of,
            "buckets": buckets,
            "total_outstanding": sum((b["amount"] for b in buckets.values()), ZERO),
        }

    def past_due(
        self,
        as_of: Optional[date] = None,
        limit: int = 50,
        offset: int = 0,
        sort: Optional[str] = "due_date.asc",
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Invoices with a positive balance whose due date is before ``as_of``."""
        if as_of is None:
            as_of = self.clock.today()

        if sort == "due_date.desc":
            order_clause = invoices.c.due_date.desc()
        else:
            order_clause = invoices.c.due_date.asc()

        base_where = and_(
            _outstanding() > 0,
            invoices.c.due_date < as_of,
            invoices.c.status.in_(RECEIVABLE_STATUSES),
            invoices.c.deleted_at.is_(None),
        )

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(invoices).where(base_where)).scalar_one()
            rows = conn.execute(
                select(
                    invoices.c.id,
                    invoices.c.invoice_number,
                    clients.c.company_name.label("client_name"),
                    invoices.c.issued_date,
                    invoices.c.due_date,
                    invoices.c.amount_total,
                    invoices.c.amount_paid,
                    invoices.c.currency,
                    invoices.c.status,
                )
                .select_from(invoices.join(clients))
                .where(base_where)
                .order_by(order_clause, invoices.c.id)
                .limit(limit)
                .offset(offset)
            ).mappings().all()

        items = []
        for row in rows:
            outstanding = max(row["amount_total"] - row["amount_paid"], ZERO)
            items.append(
                dict(
                    row,
                    outstanding=outstanding,
                    days_past_due=(as_of - row["due_date"]).days,
                )
            )
        return items, total

    def monthly_summary(self, month: str, client_name: Optional[str] = None) -> Dict[str, Any]:
        """Invoiced total for invoices issued in ``month`` (YYYY-MM)."""
        try:
            dt = datetime.strptime(month, "%Y-%m")
        except ValueError:
            raise ValidationError("month must be in YYYY-MM format")

        year, m = dt.year, dt.month
        first_day = date(year, m, 1)
        next_month = date(year + (m == 12), (m % 12) + 1, 1)

        conditions = [
            invoices.c.issued_date >= first_day,
            invoices.c.issued_date < next_month,
            invoices.c.status != InvoiceStatus.CANCELLED.value,
            invoices.c.deleted_at.is_(None),
        ]
        if client_name is not None:
            conditions.append(func.lower(clients.c.company_name) == func.lower(client_name))

        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    func.coalesce(func.sum(invoices.c.amount_total), 0).label("sum_total"),
                    func.coalesce(func.sum(invoices.c.amount_paid), 0).label("sum_paid"),
                    func.count().label("count_invoices"),
                    func.coalesce(func.min(invoices.c.currency), "USD").label("currency"),
                )
                .select_from(invoices.join(clients))
                .where(and_(*conditions))
            ).first()

        return {
            "month": month,
            "currency": row.currency or "USD",
            "sum_total": to_money(row.sum_total or Decimal("0")),
            "sum_paid": to_money(row.sum_paid or Decimal("0")),
            "count_invoices": row.count_invoices or 0,
        }
