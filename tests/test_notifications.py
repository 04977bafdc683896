"""
Email and invoice document rendering.
"""

import io
import json
import zipfile
from datetime import date, datetime
from decimal import Decimal

import pytest

from app.errors import NotFoundError, ValidationError
from app.services.notifications import LoggingEmailSender, invoice_email_data, render_email
from app.services.pdf import export_invoice_batch, render_invoice_html


@pytest.fixture
def invoice(make_invoice):
    return make_invoice(
        "1000.00",
        tax_rate="10",
        discount_type="fixed",
        discount_value="100",
        notes="Thanks for the <great> work",
    )


class TestEmails:
    def test_sent_email(self, invoice, settings):
        subject, body = render_email("invoice_sent", invoice_email_data(invoice, settings))

        assert subject == "Invoice #INV-202501-0001 from Test Studio"
        assert body.startswith("Hi Jane Doe,")
        assert "USD 990.00 is ready" in body
        assert "Payment is due on 2025-02-14." in body
        assert "https://portal.studio.io" in body
        assert "Reply to billing@studio.io" in body

    @pytest.mark.parametrize(
        "reminder_type, subject, phrase",
        [
            ("upcoming", "Payment Reminder: Invoice #INV-202501-0001 Due Soon", "is due on 2025-02-14"),
            ("due", "Payment Due Today: Invoice #INV-202501-0001", "is due today"),
            ("overdue_7", "URGENT: Payment Overdue - Invoice #INV-202501-0001", "is now 7 days overdue"),
            ("overdue_30", "COLLECTION NOTICE: Invoice #INV-202501-0001", "discuss payment arrangements"),
        ],
    )
    def test_reminder_emails(self, invoice, settings, reminder_type, subject, phrase):
        data = invoice_email_data(invoice, settings, reminder_type)
        rendered_subject, body = render_email(f"invoice_reminder_{reminder_type}", data)

        assert rendered_subject == subject
        assert phrase in body
        assert "Amount due: USD 990.00" in body

    def test_amount_due_reflects_payments(self, invoice, settings, services):
        paid = services.ledger.record_payment(invoice["id"], "490")["invoice"]
        data = invoice_email_data(paid, settings, "overdue_3")
        assert data["amount_due"] == "500.00"
        assert data["urgency"] == "Please submit payment as soon as possible."

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            render_email("welcome", {})

    def test_logging_sender(self, invoice, settings, caplog):
        caplog.set_level("INFO", logger="app.services.notifications")
        result = LoggingEmailSender().send("jane@acme.io", "invoice_sent", invoice_email_data(invoice, settings))

        assert result.ok
        assert result.message_id
        assert "Invoice #INV-202501-0001 from Test Studio" in caplog.text


class TestInvoiceHtml:
    def test_contents(self, invoice, settings):
        html = render_invoice_html(invoice, settings)

        assert "<h1>Test Studio</h1>" in html
        assert "Invoice INV-202501-0001" in html
        assert "Acme Corp" in html
        assert "Acme Corp website" in html
        assert "Design work" in html
        assert "-100.00" in html
        assert "Tax (10.00%)" in html
        assert "990.00" in html
        assert "Thanks for the &lt;great&gt; work" in html

    def test_deposit_heading(self, services, acme, settings):
        deposit = services.invoices.create_deposit_invoice(
            acme["client_id"], acme["project_id"], Decimal("500"), due_date=date(2025, 2, 1)
        )
        assert "Deposit Invoice INV-202501-0001" in render_invoice_html(deposit, settings)


class TestPreview:
    def test_unsaved_invoice(self, services, acme, settings):
        preview = services.invoices.preview_invoice(
            acme["client_id"],
            [{"description": "Discovery", "quantity": 2, "rate": "150"}],
            project_id=acme["project_id"],
            tax_rate="10",
        )

        assert preview["invoice_number"] == "INV-PREVIEW"
        assert preview["amount_total"] == Decimal("330.00")
        assert preview["due_date"] == date(2025, 2, 14)
        assert "Acme Corp website" in render_invoice_html(preview, settings)

        assert services.invoices.list_invoices()[1] == 0
        created = services.invoices.create_invoice(
            client_id=acme["client_id"], line_items=[{"description": "Build", "rate": "10"}]
        )
        assert created["invoice_number"] == "INV-202501-0001"

    def test_validates_like_create(self, services, acme, globex):
        with pytest.raises(NotFoundError):
            services.invoices.preview_invoice(999, [{"description": "X", "rate": "1"}])
        with pytest.raises(ValidationError):
            services.invoices.preview_invoice(
                acme["client_id"], [{"description": "X", "rate": "1"}], project_id=globex["project_id"]
            )
        with pytest.raises(ValidationError):
            services.invoices.preview_invoice(acme["client_id"], [])


class TestBatchExport:
    def test_zip_with_manifest(self, services, make_invoice, pdf_renderer):
        first = make_invoice()
        second = make_invoice()

        archive, manifest = export_invoice_batch(
            services.invoices, pdf_renderer, [first["id"], 999, second["id"]], datetime(2025, 1, 15, 9, 0)
        )

        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            assert sorted(zf.namelist()) == ["INV-202501-0001.pdf", "INV-202501-0002.pdf", "manifest.json"]
            assert zf.read("INV-202501-0002.pdf") == b"%PDF-1.7 INV-202501-0002"
            assert json.loads(zf.read("manifest.json")) == manifest
        assert manifest["total_requested"] == 3
        assert (manifest["success_count"], manifest["error_count"]) == (2, 1)
        assert manifest["errors"] == [{"id": 999, "error": "Invoice 999 not found"}]

    def test_limits(self, services, pdf_renderer):
        now = datetime(2025, 1, 15, 9, 0)
        with pytest.raises(ValidationError):
            export_invoice_batch(services.invoices, pdf_renderer, [], now)
        with pytest.raises(ValidationError) as excinfo:
            export_invoice_batch(services.invoices, pdf_renderer, range(1, 102), now)
        assert excinfo.value.code == "TOO_MANY_INVOICES"
