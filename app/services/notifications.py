# app/services/notifications.py
"""
Outgoing email.

Services talk to an ``EmailSender``: ``send(to, template, data)`` returns a
``DeliveryResult`` instead of raising, so a failed delivery is recorded by
the caller and never rolls back the business operation that triggered it.
Subjects and bodies are rendered from Jinja2 templates in
``app/templates/email``.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Dict, Optional, Protocol, Tuple

from jinja2 import StrictUndefined

from app.config import Settings
from app.templating import build_environment

logger = logging.getLogger(__name__)

_env = build_environment(
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)

# template name -> (subject, body template)
EMAIL_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "invoice_sent": (
        "Invoice #{invoice_number} from {business_name}",
        "email/invoice_sent.txt",
    ),
    "invoice_reminder_upcoming": (
        "Payment Reminder: Invoice #{invoice_number} Due Soon",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_due": (
        "Payment Due Today: Invoice #{invoice_number}",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_overdue_3": (
        "Payment Overdue: Invoice #{invoice_number}",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_overdue_7": (
        "URGENT: Payment Overdue - Invoice #{invoice_number}",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_overdue_14": (
        "FINAL NOTICE: Invoice #{invoice_number} Overdue",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_overdue_30": (
        "COLLECTION NOTICE: Invoice #{invoice_number}",
        "email/invoice_reminder.txt",
    ),
    "invoice_reminder_manual": (
        "Payment Reminder: Invoice #{invoice_number}",
        "email/invoice_reminder.txt",
    ),
}

URGENCY = {
    "due": "Please submit payment today to avoid late fees.",
    "overdue_3": "Please submit payment as soon as possible.",
    "overdue_7": "Immediate payment is required to avoid service interruption.",
    "overdue_14": "This is a final reminder before collection action may be taken.",
    "overdue_30": "Please contact us immediately to discuss payment arrangements.",
}


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender(Protocol):
    def send(self, to: str, template: str, data: Dict[str, Any]) -> DeliveryResult:
        ...


def render_email(template: str, data: Dict[str, Any]) -> Tuple[str, str]:
    """Return ``(subject, body)`` for a registered template name."""
    try:
        subject, body_template = EMAIL_TEMPLATES[template]
    except KeyError:
        raise ValueError(f"Unknown email template: {template}") from None
    body = _env.get_template(body_template).render(**data)
    return subject.format(**data), body


def invoice_email_data(invoice: Dict[str, Any], settings: Settings, reminder_type: Optional[str] = None) -> Dict[str, Any]:
    """Template context shared by invoice and reminder emails."""
    return {
        "client_name": invoice.get("client_contact") or invoice.get("client_name") or "there",
        "invoice_number": invoice["invoice_number"],
        "amount_due": f"{invoice['amount_total'] - invoice['amount_paid']:.2f}",
        "amount_total": f"{invoice['amount_total']:.2f}",
        "currency": invoice.get("currency") or "USD",
        "due_date": invoice["due_date"].isoformat() if invoice.get("due_date") else None,
        "reminder_type": reminder_type,
        "urgency": URGENCY.get(reminder_type or ""),
        "portal_url": settings.client_portal_url,
        "business_name": settings.business_name,
        "business_email": settings.business_email,
    }


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = "billing@example.com",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    def send(self, to: str, template: str, data: Dict[str, Any]) -> DeliveryResult:
        subject, body = render_email(template, data)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery of %s to %s failed: %s", template, to, exc)
            return DeliveryResult(ok=False, error=str(exc))

        logger.info("Sent %s email to %s", template, to)
        return DeliveryResult(ok=True, message_id=msg["Message-ID"])


class LoggingEmailSender:
    """Renders messages and logs them; used when no SMTP host is configured."""

    def send(self, to: str, template: str, data: Dict[str, Any]) -> DeliveryResult:
        subject, body = render_email(template, data)
        logger.info("Email to %s: %s\n%s", to, subject, body)
        return DeliveryResult(ok=True, message_id=make_msgid())


def build_email_sender(settings: Settings) -> EmailSender:
    if not settings.smtp_host:
        logger.warning("SMTP_HOST not set; emails will only be logged")
        return LoggingEmailSender()
    return SmtpEmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        from_address=settings.email_from,
    )
