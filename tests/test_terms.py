"""
Payment terms presets and payment plan templates.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.errors import NotFoundError, ValidationError
from app.services.terms import installment_due_days, split_amount


def _plan(services, name):
    return next(p for p in services.terms.list_plans() if p["name"] == name)


class TestPaymentTerms:
    def test_seeded_presets_ordered_by_days(self, services):
        names = [t["name"] for t in services.terms.list_payment_terms()]
        assert names == ["Due on Receipt", "Net 15", "Net 30", "Net 60"]

    def test_create_moves_default(self, services):
        created = services.terms.create_payment_terms(
            "Net 45", 45, late_fee_type="daily_percentage", late_fee_rate="0.05", is_default=True
        )
        assert created["late_fee_rate"] == Decimal("0.05")
        defaults = [t["name"] for t in services.terms.list_payment_terms() if t["is_default"]]
        assert defaults == ["Net 45"]

    def test_duplicate_name(self, services):
        with pytest.raises(ValidationError):
            services.terms.create_payment_terms("Net 30", 30)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": " ", "days_until_due": 10},
            {"name": "Odd", "days_until_due": -1},
            {"name": "Odd", "days_until_due": 10, "late_fee_type": "monthly"},
            {"name": "Odd", "days_until_due": 10, "late_fee_rate": "-1"},
        ],
    )
    def test_invalid(self, services, kwargs):
        with pytest.raises(ValidationError):
            services.terms.create_payment_terms(**kwargs)

    def test_unknown_terms(self, services):
        with pytest.raises(NotFoundError):
            services.terms.get_payment_terms(999)


class TestPaymentPlans:
    def test_percentages_must_total_100(self, services):
        with pytest.raises(ValidationError):
            services.terms.create_plan(
                "Bad", [{"percentage": 50, "trigger": "upfront"}, {"percentage": 40, "trigger": "completion"}]
            )

    def test_create_and_delete(self, services):
        plan = services.terms.create_plan(
            "Thirds",
            [
                {"percentage": "33.33", "days_after_start": 0, "label": "First"},
                {"percentage": "33.33", "days_after_start": 30, "label": "Second"},
                {"percentage": "33.34", "days_after_start": 60, "label": "Third"},
            ],
        )
        assert [p["days_after_start"] for p in plan["payments"]] == [0, 30, 60]
        assert [p["trigger"] for p in plan["payments"]] == ["date", "date", "date"]

        services.terms.delete_plan(plan["id"])
        with pytest.raises(NotFoundError):
            services.terms.delete_plan(plan["id"])

    def test_default_plan_listed_first(self, services):
        assert services.terms.list_plans()[0]["name"] == "50/50 Split"

    def test_split_last_share_absorbs_rounding(self):
        shares = split_amount(Decimal("1000.01"), [Decimal(30), Decimal(30), Decimal(40)])
        assert shares == [Decimal("300.00"), Decimal("300.00"), Decimal("400.01")]
        assert sum(shares) == Decimal("1000.01")

    def test_installment_due_days(self):
        assert installment_due_days({"trigger": "upfront"}) == 7
        assert installment_due_days({"trigger": "completion"}) == 90
        assert installment_due_days({"trigger": "date", "days_after_start": 14}) == 14
        assert installment_due_days({}) == 30


class TestGenerateFromPlan:
    def test_one_draft_per_installment(self, services, acme):
        plan = _plan(services, "50/50 Split")

        invoices = services.terms.generate_from_plan(acme["client_id"], acme["project_id"], plan["id"], "3000")

        assert len(invoices) == 2
        assert [i["amount_total"] for i in invoices] == [Decimal("1500.00"), Decimal("1500.00")]
        assert [i["due_date"] for i in invoices] == [date(2025, 1, 22), date(2025, 4, 15)]
        assert invoices[0]["line_items"][0]["description"] == "Deposit (50% of 3000.00)"
        assert invoices[1]["notes"] == "Generated from payment plan: 50/50 Split (2 of 2)"
        assert {i["payment_plan_id"] for i in invoices} == {plan["id"]}
        assert {i["status"] for i in invoices} == {"draft"}

    def test_all_or_nothing(self, services, acme, globex):
        plan = _plan(services, "30/30/40 Split")
        with pytest.raises(ValidationError):
            services.terms.generate_from_plan(acme["client_id"], globex["project_id"], plan["id"], "1000")
        assert services.invoices.list_invoices()[1] == 0

    def test_total_must_be_positive(self, services, acme):
        plan = _plan(services, "100% Upfront")
        with pytest.raises(ValidationError):
            services.terms.generate_from_plan(acme["client_id"], acme["project_id"], plan["id"], "0")
