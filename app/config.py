# app/config.py
"""
Runtime settings, read once from environment variables.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass(frozen=True)
class Settings:
    db_url: str = "sqlite:///db.sqlite"  # file in project root
    log_level: str = "INFO"
    timezone: str = "America/New_York"
    trust_auth_headers: bool = True

    scheduler_enabled: bool = True
    scheduler_poll_seconds: int = 60
    reminder_interval_seconds: int = 3600
    generation_interval_seconds: int = 86400
    soft_delete_retention_days: int = 30

    default_due_days: int = 30
    deposit_due_days: int = 14
    invoice_prefix: str = "INV"
    default_terms: str = "Payment due within 30 days of receipt."

    client_portal_url: str = "http://localhost:3000/client/portal"
    business_name: str = "Freelance Studio"
    business_email: str = "billing@example.com"

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    email_from: str = "billing@example.com"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_url=os.getenv("INVOICING_DB_URL", cls.db_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            timezone=os.getenv("BUSINESS_TIMEZONE", cls.timezone),
            trust_auth_headers=_env_bool("TRUST_AUTH_HEADERS", cls.trust_auth_headers),
            scheduler_enabled=_env_bool("SCHEDULER_ENABLED", cls.scheduler_enabled),
            scheduler_poll_seconds=_env_int("SCHEDULER_POLL_SECONDS", cls.scheduler_poll_seconds),
            reminder_interval_seconds=_env_int(
                "REMINDER_INTERVAL_SECONDS", cls.reminder_interval_seconds
            ),
            generation_interval_seconds=_env_int(
                "GENERATION_INTERVAL_SECONDS", cls.generation_interval_seconds
            ),
            soft_delete_retention_days=_env_int(
                "SOFT_DELETE_RETENTION_DAYS", cls.soft_delete_retention_days
            ),
            default_due_days=_env_int("DEFAULT_DUE_DAYS", cls.default_due_days),
            deposit_due_days=_env_int("DEPOSIT_DUE_DAYS", cls.deposit_due_days),
            invoice_prefix=os.getenv("INVOICE_PREFIX", cls.invoice_prefix),
            default_terms=os.getenv("DEFAULT_TERMS", cls.default_terms),
            client_portal_url=os.getenv("CLIENT_PORTAL_URL", cls.client_portal_url),
            business_name=os.getenv("BUSINESS_NAME", cls.business_name),
            business_email=os.getenv("BUSINESS_EMAIL", cls.business_email),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=_env_int("SMTP_PORT", cls.smtp_port),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_use_tls=_env_bool("SMTP_USE_TLS", cls.smtp_use_tls),
            email_from=os.getenv("EMAIL_FROM", cls.email_from),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
