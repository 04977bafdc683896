"""
Pytest fixtures for the invoicing test suite.

Provides:
- an in-memory SQLite engine with the schema and reference data
- a FixedClock starting 2025-01-15 09:00
- recording fakes for the email and PDF collaborators
- a seeded client/project pair and an invoice factory
- a TestClient wired to the same services, authenticated as admin
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from app.clock import FixedClock
from app.config import Settings
from app.db.engine import build_engine
from app.db.schema import clients, projects
from app.db.seed import init_db
from app.main import create_app
from app.services.container import build_services
from app.services.notifications import DeliveryResult, render_email

ADMIN_HEADERS = {"X-User-Id": "1", "X-User-Role": "admin"}


class RecordingEmailSender:
    """Renders every message like the real senders do and keeps it."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    def send(self, to: str, template: str, data: Dict[str, Any]) -> DeliveryResult:
        subject, body = render_email(template, data)
        if self.fail:
            return DeliveryResult(ok=False, error="mailbox unavailable")
        self.sent.append({"to": to, "template": template, "subject": subject, "body": body})
        return DeliveryResult(ok=True, message_id=f"<msg-{len(self.sent)}@test>")

    def templates(self) -> List[str]:
        return [m["template"] for m in self.sent]


class FakePdfRenderer:
    def __init__(self):
        self.rendered: List[str] = []

    def render(self, invoice: Dict[str, Any]) -> bytes:
        self.rendered.append(invoice["invoice_number"])
        return b"%PDF-1.7 " + invoice["invoice_number"].encode()

    def render_receipt(self, receipt: Dict[str, Any]) -> bytes:
        self.rendered.append(receipt["receipt_number"])
        return b"%PDF-1.7 " + receipt["receipt_number"].encode()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        db_url="sqlite://",
        business_name="Test Studio",
        business_email="billing@studio.io",
        client_portal_url="https://portal.studio.io",
        scheduler_enabled=False,
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 15, 9, 0, 0))


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def pdf_renderer() -> FakePdfRenderer:
    return FakePdfRenderer()


@pytest.fixture
def services(engine, clock, settings, email_sender, pdf_renderer):
    return build_services(
        engine,
        clock=clock,
        settings=settings,
        email_sender=email_sender,
        pdf_renderer=pdf_renderer,
    )


def _add_client(engine, company_name, contact_name, email):
    with engine.begin() as conn:
        client_id = conn.execute(
            clients.insert().values(company_name=company_name, contact_name=contact_name, email=email)
        ).inserted_primary_key[0]
        project_id = conn.execute(
            projects.insert().values(client_id=client_id, project_name=f"{company_name} website")
        ).inserted_primary_key[0]
    return {"client_id": client_id, "project_id": project_id}


@pytest.fixture
def acme(engine) -> Dict[str, int]:
    return _add_client(engine, "Acme Corp", "Jane Doe", "jane@acme.io")


@pytest.fixture
def globex(engine) -> Dict[str, int]:
    return _add_client(engine, "Globex", "Hank Scorpio", "hank@globex.io")


@pytest.fixture
def make_invoice(services, acme):
    """Create a draft invoice for Acme due 2025-02-14; ``amount`` becomes one line item."""

    def _make(amount="1000.00", **fields):
        fields.setdefault("client_id", acme["client_id"])
        fields.setdefault("project_id", acme["project_id"])
        fields.setdefault("due_date", date(2025, 2, 14))
        fields.setdefault(
            "line_items",
            [{"description": "Design work", "quantity": 1, "rate": Decimal(amount)}],
        )
        return services.invoices.create_invoice(**fields)

    return _make


@pytest.fixture
def api(services) -> TestClient:
    client = TestClient(create_app(services=services))
    client.headers.update(ADMIN_HEADERS)
    return client


@pytest.fixture
def anonymous_api(services) -> TestClient:
    return TestClient(create_app(services=services))
