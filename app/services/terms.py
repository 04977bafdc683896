# app/services/terms.py
"""
Payment-terms presets and payment-plan templates.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.clock import Clock, SystemClock
from app.db.schema import payment_plan_templates, payment_terms_presets
from app.errors import NotFoundError, ValidationError
from app.services.invoices import LATE_FEE_TYPES, InvoiceService
from app.services.money import ZERO, percent_of, to_money

logger = logging.getLogger(__name__)

# days after the plan starts that each trigger falls due
TRIGGER_DUE_DAYS = {"upfront": 7, "midpoint": 45, "completion": 90}
DEFAULT_INSTALLMENT_DAYS = 30


def installment_due_days(payment: Dict[str, Any]) -> int:
    if payment.get("trigger") in TRIGGER_DUE_DAYS:
        return TRIGGER_DUE_DAYS[payment["trigger"]]
    if payment.get("days_after_start") is not None:
        return int(payment["days_after_start"])
    return DEFAULT_INSTALLMENT_DAYS


def split_amount(total: Decimal, percentages: List[Decimal]) -> List[Decimal]:
    """Split ``total`` by percentages; the last share absorbs rounding."""
    shares = [percent_of(total, pct) for pct in percentages[:-1]]
    shares.append(to_money(total - sum(shares, ZERO)))
    return shares


class TermsService:
    def __init__(self, engine: Engine, invoices_service: InvoiceService, clock: Optional[Clock] = None):
        self.engine = engine
        self.invoices = invoices_service
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # payment terms presets
    # ------------------------------------------------------------------

    def list_payment_terms(self) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(payment_terms_presets).order_by(
                    payment_terms_presets.c.days_until_due, payment_terms_presets.c.id
                )
            ).mappings().all()
        return [dict(r) for r in rows]

    def get_payment_terms(self, terms_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(payment_terms_presets).where(payment_terms_presets.c.id == terms_id)
            ).mappings().first()
        if row is None:
            raise NotFoundError("Payment terms", terms_id)
        return dict(row)

    def create_payment_terms(
        self,
        name: str,
        days_until_due: int,
        description: Optional[str] = None,
        late_fee_type: str = "none",
        late_fee_rate=0,
        grace_period_days: int = 0,
        is_default: bool = False,
    ) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Payment terms need a name")
        if days_until_due < 0 or grace_period_days < 0:
            raise ValidationError("Days cannot be negative")
        if late_fee_type not in LATE_FEE_TYPES:
            raise ValidationError(f"Unknown late fee type: {late_fee_type}")
        late_fee_rate = to_money(late_fee_rate)
        if late_fee_rate < 0:
            raise ValidationError("Late fee rate cannot be negative")

        try:
            with self.engine.begin() as conn:
                if is_default:
                    conn.execute(update(payment_terms_presets).values(is_default=False))
                result = conn.execute(
                    payment_terms_presets.insert().values(
                        name=name,
                        days_until_due=days_until_due,
                        description=description,
                        late_fee_type=late_fee_type,
                        late_fee_rate=late_fee_rate,
                        grace_period_days=grace_period_days,
                        is_default=is_default,
                        created_at=self.clock.now(),
                    )
                )
                terms_id = result.inserted_primary_key[0]
        except IntegrityError:
            raise ValidationError(f"Payment terms named '{name}' already exist")
        logger.info("Created payment terms '%s'", name)
        return self.get_payment_terms(terms_id)

    # ------------------------------------------------------------------
    # payment plan templates
    # ------------------------------------------------------------------

    def list_plans(self) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(payment_plan_templates).order_by(
                    payment_plan_templates.c.is_default.desc(), payment_plan_templates.c.name
                )
            ).mappings().all()
        return [dict(r) for r in rows]

    def get_plan(self, template_id: int) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(payment_plan_templates).where(payment_plan_templates.c.id == template_id)
            ).mappings().first()
        if row is None:
            raise NotFoundError("Payment plan", template_id)
        return dict(row)

    def create_plan(
        self,
        name: str,
        payments: List[Dict[str, Any]],
        description: Optional[str] = None,
        is_default: bool = False,
    ) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Payment plans need a name")
        if not payments:
            raise ValidationError("A payment plan needs at least one payment")
        cleaned = []
        for payment in payments:
            percentage = Decimal(str(payment.get("percentage", 0)))
            if percentage <= 0:
                raise ValidationError("Each payment percentage must be positive")
            entry = {
                "percentage": float(percentage),
                "trigger": payment.get("trigger") or "date",
                "label": payment.get("label") or "Payment",
            }
            if payment.get("days_after_start") is not None:
                entry["days_after_start"] = int(payment["days_after_start"])
            cleaned.append(entry)
        total = sum((Decimal(str(p["percentage"])) for p in cleaned), Decimal(0))
        if total != 100:
            raise ValidationError(f"Payment percentages must add up to 100 (got {total})")

        with self.engine.begin() as conn:
            if is_default:
                conn.execute(update(payment_plan_templates).values(is_default=False))
            result = conn.execute(
                payment_plan_templates.insert().values(
                    name=name,
                    description=description,
                    payments=cleaned,
                    is_default=is_default,
                    created_at=self.clock.now(),
                )
            )
            template_id = result.inserted_primary_key[0]
        logger.info("Created payment plan '%s'", name)
        return self.get_plan(template_id)

    def delete_plan(self, template_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(payment_plan_templates).where(payment_plan_templates.c.id == template_id)
            )
        if result.rowcount == 0:
            raise NotFoundError("Payment plan", template_id)

    def generate_from_plan(
        self,
        client_id: int,
        project_id: int,
        template_id: int,
        total_amount,
    ) -> List[Dict[str, Any]]:
        """One draft invoice per installment, all created or none."""
        total_amount = to_money(total_amount)
        if total_amount <= 0:
            raise ValidationError("Total amount must be positive")
        plan = self.get_plan(template_id)
        payments = plan["payments"]
        shares = split_amount(total_amount, [Decimal(str(p["percentage"])) for p in payments])
        today = self.clock.today()

        with self.engine.begin() as conn:
            ids = []
            for number, (payment, share) in enumerate(zip(payments, shares), start=1):
                label = payment.get("label") or f"Payment {number}"
                ids.append(
                    self.invoices.insert_invoice(
                        conn,
                        client_id=client_id,
                        project_id=project_id,
                        line_items=[
                            {
                                "description": f"{label} ({payment['percentage']:g}% of {total_amount})",
                                "quantity": 1,
                                "rate": share,
                            }
                        ],
                        issued_date=today,
                        due_date=today + timedelta(days=installment_due_days(payment)),
                        notes=f"Generated from payment plan: {plan['name']} ({number} of {len(payments)})",
                        payment_plan_id=template_id,
                    )
                )
            invoices = [self.invoices.to_dict(conn, self.invoices.load(conn, i)) for i in ids]
        logger.info(
            "Generated %d invoices from plan '%s' for project %s", len(invoices), plan["name"], project_id
        )
        return invoices
