"""
Receivables reporting: status stats, aging buckets, past-due listing and
monthly summaries.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.errors import ValidationError
from app.services.reporting import aging_bucket


@pytest.fixture
def book(make_invoice, services):
    """Five invoices across the lifecycle, clock at 2025-01-15."""
    draft = make_invoice("100.00")

    partial = make_invoice("1000.00")
    services.invoices.send_invoice(partial["id"])
    services.ledger.record_payment(partial["id"], "400")

    recent = make_invoice("500.00", issued_date=date(2024, 12, 1), due_date=date(2024, 12, 31))
    services.invoices.send_invoice(recent["id"])

    stale = make_invoice("200.00", issued_date=date(2024, 9, 1), due_date=date(2024, 10, 1))
    services.invoices.send_invoice(stale["id"])

    voided = make_invoice("300.00")
    services.invoices.send_invoice(voided["id"])
    services.invoices.void_invoice(voided["id"])

    services.invoices.check_overdue()
    return {"draft": draft, "partial": partial, "recent": recent, "stale": stale, "voided": voided}


class TestAgingBucket:
    @pytest.mark.parametrize(
        "days, label",
        [(-10, "current"), (0, "current"), (1, "1-30"), (30, "1-30"), (31, "31-60"), (90, "61-90"), (91, "90+")],
    )
    def test_boundaries(self, days, label):
        assert aging_bucket(days) == label


class TestReports:
    def test_stats(self, services, book):
        stats = services.reporting.stats()

        assert stats["total_invoices"] == 5
        assert stats["by_status"]["draft"] == 1
        assert stats["by_status"]["partial"] == 1
        assert stats["by_status"]["overdue"] == 2
        assert stats["by_status"]["cancelled"] == 1
        assert stats["by_status"]["paid"] == 0
        assert stats["total_invoiced"] == Decimal("1800.00")
        assert stats["total_paid"] == Decimal("400.00")
        assert stats["total_outstanding"] == Decimal("1300.00")
        assert stats["total_overdue"] == Decimal("700.00")

    def test_stats_for_other_client_is_empty(self, services, book, globex):
        stats = services.reporting.stats(client_id=globex["client_id"])
        assert stats["total_invoices"] == 0
        assert stats["total_outstanding"] == Decimal("0.00")

    def test_aging(self, services, book):
        report = services.reporting.aging_report()

        assert report["as_of"] == date(2025, 1, 15)
        assert report["buckets"]["current"] == {"count": 1, "amount": Decimal("600.00")}
        assert report["buckets"]["1-30"] == {"count": 1, "amount": Decimal("500.00")}
        assert report["buckets"]["31-60"]["count"] == 0
        assert report["buckets"]["90+"] == {"count": 1, "amount": Decimal("200.00")}
        assert report["total_outstanding"] == Decimal("1300.00")

    def test_past_due(self, services, book):
        items, total = services.reporting.past_due()

        assert total == 2
        assert [i["id"] for i in items] == [book["stale"]["id"], book["recent"]["id"]]
        assert items[0]["days_past_due"] == 106
        assert items[0]["outstanding"] == Decimal("200.00")
        assert items[0]["client_name"] == "Acme Corp"

        items, _ = services.reporting.past_due(sort="due_date.desc", limit=1)
        assert items[0]["id"] == book["recent"]["id"]

    def test_monthly_summary(self, services, book):
        january = services.reporting.monthly_summary("2025-01")
        assert january["sum_total"] == Decimal("1100.00")
        assert january["sum_paid"] == Decimal("400.00")
        assert january["count_invoices"] == 2
        assert january["currency"] == "USD"

        assert services.reporting.monthly_summary("2024-12", client_name="acme corp")["count_invoices"] == 1
        assert services.reporting.monthly_summary("2024-12", client_name="Globex")["count_invoices"] == 0

    def test_monthly_summary_rejects_bad_month(self, services):
        with pytest.raises(ValidationError):
            services.reporting.monthly_summary("2025/01")
