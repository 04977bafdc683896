"""
Payments and deposit credits.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.errors import (
    InsufficientCreditError,
    NotEditableError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)


@pytest.fixture
def paid_deposit(services, acme):
    deposit = services.invoices.create_deposit_invoice(acme["client_id"], acme["project_id"], "1000")
    services.invoices.send_invoice(deposit["id"])
    services.ledger.record_payment(deposit["id"], "1000", payment_method="bank_transfer")
    return deposit


class TestPayments:
    def test_partial_then_full(self, make_invoice, services):
        invoice = make_invoice("1000.00")
        services.invoices.send_invoice(invoice["id"])

        first = services.ledger.record_payment(invoice["id"], "400", payment_method="check", payment_reference="#1001")
        assert first["invoice"]["status"] == "partial"
        assert first["invoice"]["amount_paid"] == Decimal("400.00")
        assert first["payment"]["payment_reference"] == "#1001"

        second = services.ledger.record_payment(invoice["id"], "600")
        assert second["invoice"]["status"] == "paid"
        assert second["invoice"]["paid_date"] == date(2025, 1, 15)
        assert second["invoice"]["balance_due"] == Decimal("0.00")

        with pytest.raises(OverpaymentError):
            services.ledger.record_payment(invoice["id"], "1")

    def test_overpayment_rejected_without_side_effects(self, make_invoice, services):
        invoice = make_invoice("100.00")
        with pytest.raises(OverpaymentError) as exc_info:
            services.ledger.record_payment(invoice["id"], "100.01")

        assert exc_info.value.outstanding == Decimal("100.00")
        assert services.ledger.payment_history(invoice["id"]) == []
        assert services.invoices.get_invoice(invoice["id"])["amount_paid"] == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, make_invoice, services, amount):
        invoice = make_invoice()
        with pytest.raises(ValidationError):
            services.ledger.record_payment(invoice["id"], amount)

    def test_cancelled_invoice_takes_no_payment(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])
        services.invoices.void_invoice(invoice["id"])
        with pytest.raises(NotEditableError):
            services.ledger.record_payment(invoice["id"], "10")

    def test_overdue_stays_overdue_until_settled(self, make_invoice, services):
        invoice = make_invoice(issued_date=date(2024, 12, 11), due_date=date(2025, 1, 10))
        services.invoices.send_invoice(invoice["id"])
        services.invoices.check_overdue()

        assert services.ledger.record_payment(invoice["id"], "300")["invoice"]["status"] == "overdue"
        assert services.ledger.record_payment(invoice["id"], "700")["invoice"]["status"] == "paid"

    def test_settle_balance(self, make_invoice, services):
        invoice = make_invoice("250.00")
        services.ledger.record_payment(invoice["id"], "100")

        result = services.ledger.settle_balance(invoice["id"], payment_method="card")

        assert result["payment"]["amount"] == Decimal("150.00")
        assert result["invoice"]["status"] == "paid"

    def test_history_and_listing(self, make_invoice, services):
        invoice = make_invoice("300.00")
        services.ledger.record_payment(invoice["id"], "100", payment_date=date(2025, 1, 10))
        services.ledger.record_payment(invoice["id"], "50", payment_date=date(2025, 1, 12))

        history = services.ledger.payment_history(invoice["id"])
        assert [p["amount"] for p in history] == [Decimal("100.00"), Decimal("50.00")]

        recent = services.ledger.all_payments(date_from=date(2025, 1, 11))
        assert len(recent) == 1
        assert recent[0]["invoice_number"] == invoice["invoice_number"]

    def test_unknown_invoice(self, services):
        with pytest.raises(NotFoundError):
            services.ledger.record_payment(404, "10")


class TestDepositCredits:
    def test_apply_credit_draws_down_deposit(self, make_invoice, services, acme, paid_deposit):
        invoice = make_invoice("2000.00")
        services.invoices.send_invoice(invoice["id"])

        result = services.ledger.apply_credit(paid_deposit["id"], invoice["id"], "600", applied_by="admin:1")

        assert result["available_balance"] == Decimal("400.00")
        assert result["invoice"]["amount_paid"] == Decimal("600.00")
        assert result["invoice"]["status"] == "partial"
        assert result["credit"]["applied_by"] == "admin:1"

        with pytest.raises(InsufficientCreditError) as exc_info:
            services.ledger.apply_credit(paid_deposit["id"], invoice["id"], "500")
        assert exc_info.value.available == Decimal("400.00")

        deposits = services.ledger.available_deposits(acme["project_id"])
        assert deposits == [
            {
                "invoice_id": paid_deposit["id"],
                "invoice_number": paid_deposit["invoice_number"],
                "amount_paid": Decimal("1000.00"),
                "total_applied": Decimal("600.00"),
                "available_amount": Decimal("400.00"),
                "paid_date": date(2025, 1, 15),
            }
        ]

    def test_credit_can_settle_invoice(self, make_invoice, services, paid_deposit):
        invoice = make_invoice("1000.00")
        result = services.ledger.apply_credit(paid_deposit["id"], invoice["id"], "1000")

        assert result["invoice"]["status"] == "paid"
        credits = services.ledger.credits_for(invoice["id"])
        assert credits[0]["deposit_invoice_number"] == paid_deposit["invoice_number"]

    def test_credit_cannot_exceed_target_balance(self, make_invoice, services, paid_deposit):
        invoice = make_invoice("300.00")
        with pytest.raises(OverpaymentError):
            services.ledger.apply_credit(paid_deposit["id"], invoice["id"], "301")

    def test_source_must_be_a_deposit(self, make_invoice, services):
        source = make_invoice("500.00")
        services.ledger.record_payment(source["id"], "500")
        target = make_invoice("500.00")
        with pytest.raises(ValidationError):
            services.ledger.apply_credit(source["id"], target["id"], "100")

    def test_unpaid_deposit_has_no_credit(self, make_invoice, services, acme):
        deposit = services.invoices.create_deposit_invoice(acme["client_id"], acme["project_id"], "500")
        invoice = make_invoice()
        with pytest.raises(InsufficientCreditError):
            services.ledger.apply_credit(deposit["id"], invoice["id"], "1")
        assert services.ledger.available_deposits(acme["project_id"]) == []

    def test_void_releases_credit(self, make_invoice, services, paid_deposit):
        invoice = make_invoice("2000.00")
        services.invoices.send_invoice(invoice["id"])
        services.ledger.apply_credit(paid_deposit["id"], invoice["id"], "600")

        voided = services.invoices.void_invoice(invoice["id"])

        assert voided["status"] == "cancelled"
        assert voided["amount_paid"] == Decimal("0.00")
        assert services.ledger.credits_for(invoice["id"]) == []
        other = make_invoice("1000.00")
        result = services.ledger.apply_credit(paid_deposit["id"], other["id"], "1000")
        assert result["available_balance"] == Decimal("0.00")

    def test_voided_deposit_with_drawn_credit_is_not_deleted(self, make_invoice, services, acme):
        deposit = services.invoices.create_deposit_invoice(acme["client_id"], acme["project_id"], "1000")
        services.invoices.send_invoice(deposit["id"])
        services.ledger.record_payment(deposit["id"], "500")
        invoice = make_invoice("500.00")
        services.ledger.apply_credit(deposit["id"], invoice["id"], "200")

        assert services.invoices.delete_or_void(deposit["id"]) == {"action": "voided"}
        with pytest.raises(NotEditableError):
            services.invoices.delete_or_void(deposit["id"])
        with pytest.raises(NotEditableError):
            services.ledger.apply_credit(deposit["id"], invoice["id"], "100")
