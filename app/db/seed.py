# app/db/seed.py
"""
Reference rows every installation starts with: payment terms presets and
payment plan templates.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.engine import Engine

from app.db.schema import metadata, payment_plan_templates, payment_terms_presets

DEFAULT_PAYMENT_TERMS = [
    {
        "name": "Due on Receipt",
        "days_until_due": 0,
        "description": "Payment due immediately",
        "late_fee_type": "none",
        "late_fee_rate": Decimal("0"),
        "grace_period_days": 0,
        "is_default": False,
    },
    {
        "name": "Net 15",
        "days_until_due": 15,
        "description": "Payment due within 15 days",
        "late_fee_type": "percentage",
        "late_fee_rate": Decimal("1.50"),
        "grace_period_days": 0,
        "is_default": False,
    },
    {
        "name": "Net 30",
        "days_until_due": 30,
        "description": "Payment due within 30 days",
        "late_fee_type": "percentage",
        "late_fee_rate": Decimal("1.50"),
        "grace_period_days": 5,
        "is_default": True,
    },
    {
        "name": "Net 60",
        "days_until_due": 60,
        "description": "Payment due within 60 days",
        "late_fee_type": "flat",
        "late_fee_rate": Decimal("25.00"),
        "grace_period_days": 5,
        "is_default": False,
    },
]

DEFAULT_PAYMENT_PLANS = [
    {
        "name": "50/50 Split",
        "description": "50% upfront deposit, 50% on project completion",
        "payments": [
            {"percentage": 50, "trigger": "upfront", "label": "Deposit"},
            {"percentage": 50, "trigger": "completion", "label": "Final Payment"},
        ],
        "is_default": True,
    },
    {
        "name": "30/30/40 Split",
        "description": "30% upfront, 30% at midpoint, 40% on completion",
        "payments": [
            {"percentage": 30, "trigger": "upfront", "label": "Deposit"},
            {"percentage": 30, "trigger": "midpoint", "label": "Progress Payment"},
            {"percentage": 40, "trigger": "completion", "label": "Final Payment"},
        ],
        "is_default": False,
    },
    {
        "name": "100% Upfront",
        "description": "Full payment before project starts",
        "payments": [{"percentage": 100, "trigger": "upfront", "label": "Full Payment"}],
        "is_default": False,
    },
    {
        "name": "100% On Completion",
        "description": "Full payment after project completion",
        "payments": [{"percentage": 100, "trigger": "completion", "label": "Full Payment"}],
        "is_default": False,
    },
]


def seed_reference_data(engine: Engine) -> None:
    """Insert default presets and plans when their tables are empty."""
    with engine.begin() as conn:
        if conn.execute(select(payment_terms_presets.c.id).limit(1)).first() is None:
            conn.execute(payment_terms_presets.insert(), DEFAULT_PAYMENT_TERMS)
        if conn.execute(select(payment_plan_templates.c.id).limit(1)).first() is None:
            conn.execute(payment_plan_templates.insert(), DEFAULT_PAYMENT_PLANS)


def init_db(engine: Engine, drop: bool = False) -> None:
    if drop:
        metadata.drop_all(engine)
    metadata.create_all(engine)
    seed_reference_data(engine)
