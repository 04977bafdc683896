"""
Invoice record store: creation, numbering, draft edits, sending,
delete/void/archive and the overdue sweep.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.db.schema import invoice_line_items, invoice_reminders, invoices
from app.errors import (
    InvalidTransitionError,
    NotEditableError,
    NotFoundError,
    ProtectedStateError,
    ValidationError,
)
from app.services.invoices import calculate_totals, normalize_line_items


class TestTotals:
    def test_amount_defaults_to_quantity_times_rate(self):
        items = normalize_line_items([{"description": "Hours", "quantity": "2.5", "rate": "80"}])
        assert items[0]["amount"] == Decimal("200.00")
        assert items[0]["position"] == 0

    def test_percentage_discount_before_tax(self):
        items = normalize_line_items([{"description": "Build", "rate": "1000"}])
        totals = calculate_totals(items, tax_rate="10", discount_type="percentage", discount_value="10")
        assert totals["subtotal"] == Decimal("1000.00")
        assert totals["discount_amount"] == Decimal("100.00")
        assert totals["tax_amount"] == Decimal("90.00")
        assert totals["amount_total"] == Decimal("990.00")

    def test_fixed_discount_is_capped_at_subtotal(self):
        items = normalize_line_items([{"description": "Build", "rate": "50"}])
        totals = calculate_totals(items, discount_type="fixed", discount_value="80")
        assert totals["discount_amount"] == Decimal("50.00")
        assert totals["amount_total"] == Decimal("0.00")

    def test_rejects_empty_line_items(self):
        with pytest.raises(ValidationError):
            normalize_line_items([])

    def test_rejects_blank_description(self):
        with pytest.raises(ValidationError):
            normalize_line_items([{"description": "  ", "rate": "10"}])

    def test_rejects_tax_over_100(self):
        items = normalize_line_items([{"description": "Build", "rate": "10"}])
        with pytest.raises(ValidationError):
            calculate_totals(items, tax_rate="101")


class TestCreateInvoice:
    def test_draft_with_number_and_totals(self, make_invoice, acme):
        invoice = make_invoice("1000.00")

        assert invoice["invoice_number"] == "INV-202501-0001"
        assert invoice["status"] == "draft"
        assert invoice["client_name"] == "Acme Corp"
        assert invoice["amount_total"] == Decimal("1000.00")
        assert invoice["amount_paid"] == Decimal("0.00")
        assert invoice["balance_due"] == Decimal("1000.00")
        assert invoice["issued_date"] == date(2025, 1, 15)
        assert len(invoice["line_items"]) == 1

    def test_sequence_is_per_prefix(self, make_invoice):
        make_invoice()
        second = make_invoice()
        custom = make_invoice(prefix="web")

        assert second["invoice_number"] == "INV-202501-0002"
        assert custom["invoice_number"] == "WEB-202501-0001"

    def test_deleted_draft_number_is_not_reissued(self, make_invoice, services):
        make_invoice()
        second = make_invoice()
        assert services.invoices.delete_or_void(second["id"])["action"] == "deleted"

        assert make_invoice()["invoice_number"] == "INV-202501-0003"

    def test_invalid_prefix(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(prefix="not-valid!")

    def test_unknown_client(self, make_invoice):
        with pytest.raises(NotFoundError):
            make_invoice(client_id=999, project_id=None)

    def test_project_must_belong_to_client(self, make_invoice, globex):
        with pytest.raises(ValidationError):
            make_invoice(project_id=globex["project_id"])

    def test_due_date_before_issue_date(self, make_invoice):
        with pytest.raises(ValidationError):
            make_invoice(due_date=date(2025, 1, 1))

    def test_payment_terms_set_due_date_and_late_fee_policy(self, make_invoice, services):
        net15 = next(t for t in services.terms.list_payment_terms() if t["name"] == "Net 15")
        invoice = make_invoice(due_date=None, payment_terms_id=net15["id"])

        assert invoice["due_date"] == date(2025, 1, 30)
        assert invoice["late_fee_type"] == "percentage"
        assert invoice["late_fee_rate"] == Decimal("1.50")

    def test_deposit_invoice(self, services, acme):
        deposit = services.invoices.create_deposit_invoice(
            acme["client_id"], acme["project_id"], "1500", percentage="30"
        )

        assert deposit["invoice_type"] == "deposit"
        assert deposit["deposit_for_project_id"] == acme["project_id"]
        assert deposit["amount_total"] == Decimal("1500.00")
        assert deposit["due_date"] == date(2025, 1, 29)
        assert deposit["line_items"][0]["description"] == "Project deposit (30%)"

    def test_deposit_amount_must_be_positive(self, services, acme):
        with pytest.raises(ValidationError):
            services.invoices.create_deposit_invoice(acme["client_id"], acme["project_id"], "0")

    def test_duplicate(self, make_invoice, services):
        original = make_invoice("750.00", notes="January retainer", tax_rate="5")
        services.invoices.send_invoice(original["id"])

        copy = services.invoices.duplicate_invoice(original["id"])

        assert copy["status"] == "draft"
        assert copy["invoice_number"] == "INV-202501-0002"
        assert copy["amount_total"] == original["amount_total"]
        assert copy["notes"] == "Copy of INV-202501-0001: January retainer"
        assert copy["due_date"] - copy["issued_date"] == original["due_date"] - original["issued_date"]


class TestDraftEdits:
    def test_replace_line_items_retotals(self, make_invoice, services, engine):
        invoice = make_invoice("100.00")
        updated = services.invoices.update_invoice(
            invoice["id"],
            line_items=[
                {"description": "Design", "quantity": 2, "rate": "150"},
                {"description": "Hosting", "rate": "25"},
            ],
            notes="Updated",
        )

        assert updated["amount_total"] == Decimal("325.00")
        assert [i["description"] for i in updated["line_items"]] == ["Design", "Hosting"]
        assert updated["notes"] == "Updated"
        with engine.connect() as conn:
            count = conn.execute(
                select(func.count()).where(invoice_line_items.c.invoice_id == invoice["id"])
            ).scalar_one()
        assert count == 2

    def test_tax_discount(self, make_invoice, services):
        invoice = make_invoice("200.00")
        updated = services.invoices.update_tax_discount(
            invoice["id"], tax_rate="8", discount_type="fixed", discount_value="50"
        )
        assert updated["discount_amount"] == Decimal("50.00")
        assert updated["tax_amount"] == Decimal("12.00")
        assert updated["amount_total"] == Decimal("162.00")

    def test_sent_invoice_is_not_editable(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])

        with pytest.raises(NotEditableError):
            services.invoices.update_invoice(invoice["id"], notes="too late")
        with pytest.raises(NotEditableError):
            services.invoices.update_tax_discount(invoice["id"], tax_rate="5")

    def test_internal_notes_editable_in_any_status(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])
        updated = services.invoices.update_internal_notes(invoice["id"], "Called client")
        assert updated["internal_notes"] == "Called client"

    def test_apply_payment_terms(self, make_invoice, services):
        invoice = make_invoice()
        net60 = next(t for t in services.terms.list_payment_terms() if t["name"] == "Net 60")

        updated = services.invoices.apply_payment_terms(invoice["id"], net60["id"])

        assert updated["due_date"] == date(2025, 3, 16)
        assert updated["late_fee_type"] == "flat"
        assert updated["late_fee_grace_days"] == 5
        assert updated["payment_terms_id"] == net60["id"]


class TestSend:
    def test_send_creates_reminders_and_emails(self, make_invoice, services, email_sender, engine):
        invoice = make_invoice()
        sent = services.invoices.send_invoice(invoice["id"])

        assert sent["status"] == "sent"
        assert sent["sent_at"] == datetime(2025, 1, 15, 9, 0, 0)
        assert email_sender.templates() == ["invoice_sent"]
        assert email_sender.sent[0]["to"] == "jane@acme.io"
        assert email_sender.sent[0]["subject"] == "Invoice #INV-202501-0001 from Test Studio"
        with engine.connect() as conn:
            reminders = conn.execute(
                select(func.count()).where(invoice_reminders.c.invoice_id == invoice["id"])
            ).scalar_one()
        assert reminders == 6

    def test_email_failure_does_not_fail_send(self, make_invoice, services, email_sender):
        email_sender.fail = True
        invoice = make_invoice()
        assert services.invoices.send_invoice(invoice["id"])["status"] == "sent"

    def test_send_twice_is_rejected(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])
        with pytest.raises(InvalidTransitionError):
            services.invoices.send_invoice(invoice["id"])

    def test_change_status(self, make_invoice, services):
        invoice = make_invoice()
        assert services.invoices.change_status(invoice["id"], "sent")["status"] == "sent"
        assert services.invoices.change_status(invoice["id"], "viewed")["status"] == "viewed"
        assert services.invoices.change_status(invoice["id"], "overdue")["status"] == "overdue"
        assert services.invoices.change_status(invoice["id"], "cancelled")["status"] == "cancelled"

    def test_draft_and_partial_cannot_be_requested(self, make_invoice, services):
        invoice = make_invoice()
        for status in ("draft", "partial"):
            with pytest.raises(ValidationError):
                services.invoices.change_status(invoice["id"], status)


class TestDeleteOrVoid:
    def test_draft_is_deleted(self, make_invoice, services):
        invoice = make_invoice()
        assert services.invoices.delete_or_void(invoice["id"]) == {"action": "deleted"}
        with pytest.raises(NotFoundError):
            services.invoices.get_invoice(invoice["id"])

    def test_sent_is_voided_and_reminders_skipped(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])

        assert services.invoices.delete_or_void(invoice["id"]) == {"action": "voided"}
        assert services.invoices.get_invoice(invoice["id"])["status"] == "cancelled"
        statuses = {r["status"] for r in services.reminders.list_for_invoice(invoice["id"])}
        assert statuses == {"skipped"}

    def test_cancelled_is_then_deleted(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])
        services.invoices.delete_or_void(invoice["id"])
        assert services.invoices.delete_or_void(invoice["id"]) == {"action": "deleted"}

    def test_paid_is_protected(self, make_invoice, services):
        invoice = make_invoice("100.00")
        services.ledger.record_payment(invoice["id"], "100.00")

        with pytest.raises(ProtectedStateError):
            services.invoices.delete_or_void(invoice["id"])
        with pytest.raises(ProtectedStateError):
            services.invoices.soft_delete(invoice["id"])
        assert services.invoices.get_invoice(invoice["id"])["status"] == "paid"


class TestArchive:
    def test_soft_delete_hides_and_restore_returns(self, make_invoice, services):
        invoice = make_invoice()
        archived = services.invoices.soft_delete(invoice["id"], deleted_by="admin:1")

        assert archived["deleted_by"] == "admin:1"
        items, total = services.invoices.list_invoices()
        assert total == 0 and items == []
        with pytest.raises(NotFoundError):
            services.invoices.get_invoice(invoice["id"])

        restored = services.invoices.restore(invoice["id"])
        assert restored["deleted_at"] is None
        assert services.invoices.list_invoices()[1] == 1

    def test_soft_delete_voids_sent_invoice(self, make_invoice, services):
        invoice = make_invoice()
        services.invoices.send_invoice(invoice["id"])
        archived = services.invoices.soft_delete(invoice["id"])
        assert archived["status"] == "cancelled"

    def test_restore_requires_archived(self, make_invoice, services):
        invoice = make_invoice()
        with pytest.raises(NotEditableError):
            services.invoices.restore(invoice["id"])

    def test_purge_after_retention(self, make_invoice, services, clock, engine):
        old = make_invoice()
        services.invoices.soft_delete(old["id"])
        clock.advance(days=20)
        recent = make_invoice()
        services.invoices.soft_delete(recent["id"])
        clock.advance(days=11)

        sweep = services.invoices.purge_deleted()

        assert sweep.succeeded == 1
        with engine.connect() as conn:
            remaining = conn.execute(select(invoices.c.id)).scalars().all()
        assert remaining == [recent["id"]]


class TestSearch:
    def test_search_by_client_name_and_status(self, make_invoice, services, globex):
        make_invoice(notes="Logo refresh")
        other = make_invoice(client_id=globex["client_id"], project_id=globex["project_id"])
        services.invoices.send_invoice(other["id"])

        items, total = services.invoices.list_invoices(search="globex")
        assert total == 1 and items[0]["id"] == other["id"]

        items, total = services.invoices.list_invoices(search="logo")
        assert total == 1 and items[0]["notes"] == "Logo refresh"

        items, total = services.invoices.list_invoices(status="sent")
        assert [i["id"] for i in items] == [other["id"]]

    def test_lookup_by_number(self, make_invoice, services):
        invoice = make_invoice()
        assert services.invoices.get_by_number("INV-202501-0001")["id"] == invoice["id"]
        with pytest.raises(NotFoundError):
            services.invoices.get_by_number("INV-000000-0000")


class TestOverdueSweep:
    def test_past_due_invoice_becomes_overdue(self, make_invoice, services, clock):
        invoice = make_invoice(issued_date=date(2024, 12, 11), due_date=date(2025, 1, 10))
        services.invoices.send_invoice(invoice["id"])

        sweep = services.invoices.check_overdue()

        assert sweep.succeeded == 1
        assert services.invoices.get_invoice(invoice["id"])["status"] == "overdue"
        assert len(services.reminders.list_for_invoice(invoice["id"])) == 6
        due_types = {r["reminder_type"] for r in services.reminders.due_reminders()}
        assert "overdue_3" in due_types

    def test_not_yet_due_and_drafts_untouched(self, make_invoice, services):
        draft = make_invoice(issued_date=date(2024, 12, 1), due_date=date(2025, 1, 1))
        current = make_invoice()
        services.invoices.send_invoice(current["id"])

        sweep = services.invoices.check_overdue()

        assert sweep.processed == 0
        assert services.invoices.get_invoice(draft["id"])["status"] == "draft"
        assert services.invoices.get_invoice(current["id"])["status"] == "sent"

    def test_sweep_is_idempotent(self, make_invoice, services):
        invoice = make_invoice(issued_date=date(2024, 12, 11), due_date=date(2025, 1, 10))
        services.invoices.send_invoice(invoice["id"])
        services.invoices.check_overdue()
        assert services.invoices.check_overdue().processed == 0

    def test_due_today_is_not_overdue(self, make_invoice, services, clock):
        invoice = make_invoice(due_date=date(2025, 1, 15))
        services.invoices.send_invoice(invoice["id"])
        services.invoices.check_overdue()
        assert services.invoices.get_invoice(invoice["id"])["status"] == "sent"
        clock.advance(days=1)
        services.invoices.check_overdue()
        assert services.invoices.get_invoice(invoice["id"])["status"] == "overdue"
        assert clock.today() == date(2025, 1, 15) + timedelta(days=1)
