# app/db/schema.py

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Boolean,
    Numeric, Date, DateTime, ForeignKey, CheckConstraint, Text, JSON, Index,
    func,
)

metadata = MetaData()

Money = Numeric(18, 2)

clients = Table(
    "clients",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("company_name", String, nullable=True),
    Column("contact_name", String, nullable=True),
    Column("email", String, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("client_id", Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
    Column("project_name", String, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

payment_terms_presets = Table(
    "payment_terms_presets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, nullable=False, unique=True),
    Column("days_until_due", Integer, nullable=False),
    Column("description", Text),
    Column("late_fee_type", String, nullable=False, default="none"),
    Column("late_fee_rate", Money, nullable=False, default=0),
    Column("grace_period_days", Integer, nullable=False, default=0),
    Column("is_default", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint("days_until_due >= 0", name="ck_terms_days_nonneg"),
)

payment_plan_templates = Table(
    "payment_plan_templates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, nullable=False),
    Column("description", Text),
    Column("payments", JSON, nullable=False),
    Column("is_default", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

invoices = Table(
    "invoices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("invoice_number", Text, unique=True, nullable=False),
    Column("invoice_prefix", Text, nullable=False),
    Column("invoice_sequence", Integer, nullable=False),
    Column("client_id", Integer, ForeignKey("clients.id"), nullable=False),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="SET NULL")),
    Column("invoice_type", Text, nullable=False, default="standard"),
    Column("deposit_for_project_id", Integer, ForeignKey("projects.id", ondelete="SET NULL")),
    Column("deposit_percentage", Numeric(5, 2)),
    Column("status", Text, nullable=False, default="draft"),
    Column("currency", Text, nullable=False, default="USD"),
    Column("subtotal", Money, nullable=False, default=0),
    Column("tax_rate", Numeric(5, 2), nullable=False, default=0),
    Column("tax_amount", Money, nullable=False, default=0),
    Column("discount_type", Text),
    Column("discount_value", Money, nullable=False, default=0),
    Column("discount_amount", Money, nullable=False, default=0),
    Column("amount_total", Money, nullable=False),
    Column("amount_paid", Money, nullable=False, default=0),
    Column("issued_date", Date),
    Column("due_date", Date),
    Column("paid_date", Date),
    Column("sent_at", DateTime),
    Column("notes", Text),
    Column("terms", Text),
    Column("internal_notes", Text),
    Column("payment_terms_id", Integer, ForeignKey("payment_terms_presets.id", ondelete="SET NULL")),
    Column("late_fee_type", Text, nullable=False, default="none"),
    Column("late_fee_rate", Money, nullable=False, default=0),
    Column("late_fee_grace_days", Integer, nullable=False, default=0),
    Column("late_fee_amount", Money),
    Column("late_fee_applied_at", DateTime),
    Column("payment_plan_id", Integer, ForeignKey("payment_plan_templates.id", ondelete="SET NULL")),
    Column("milestone_id", Integer),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Column("deleted_at", DateTime),
    Column("deleted_by", Text),
    CheckConstraint("amount_total >= 0", name="ck_invoices_amount_total_nonneg"),
    CheckConstraint("amount_paid >= 0", name="ck_invoices_amount_paid_nonneg"),
    CheckConstraint("amount_paid <= amount_total", name="ck_invoices_paid_within_total"),
    CheckConstraint("invoice_type IN ('standard', 'deposit')", name="ck_invoices_type"),
)

# last number handed out per series (invoice prefix, receipt year)
number_sequences = Table(
    "number_sequences",
    metadata,
    Column("name", Text, primary_key=True),
    Column("last_value", Integer, nullable=False),
)

invoice_line_items = Table(
    "invoice_line_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("position", Integer, nullable=False),
    Column("description", Text, nullable=False),
    Column("quantity", Numeric(12, 2), nullable=False),
    Column("rate", Money, nullable=False),
    Column("amount", Money, nullable=False),
)

invoice_payments = Table(
    "invoice_payments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("amount", Money, nullable=False),
    Column("payment_method", Text, nullable=False),
    Column("payment_reference", Text),
    Column("payment_date", Date, nullable=False),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False),
    CheckConstraint("amount > 0", name="ck_payments_amount_pos"),
)

invoice_credits = Table(
    "invoice_credits",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("deposit_invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("amount", Money, nullable=False),
    Column("applied_at", DateTime, nullable=False),
    Column("applied_by", Text),
    CheckConstraint("amount > 0", name="ck_credits_amount_pos"),
)

invoice_reminders = Table(
    "invoice_reminders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("reminder_type", Text, nullable=False),
    Column("scheduled_date", Date, nullable=False),
    Column("sent_at", DateTime),
    Column("status", Text, nullable=False, default="pending"),
    Column("created_at", DateTime, nullable=False),
    Index("idx_invoice_reminders_status", "status", "scheduled_date"),
)

recurring_invoices = Table(
    "recurring_invoices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("client_id", Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE")),
    Column("frequency", Text, nullable=False),
    Column("anchor_day", Integer),
    Column("line_items", JSON, nullable=False),
    Column("notes", Text),
    Column("terms", Text),
    Column("due_days", Integer, nullable=False, default=30),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("next_generation_date", Date, nullable=False),
    Column("last_generated_at", DateTime),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
    CheckConstraint("frequency IN ('weekly', 'monthly', 'quarterly')", name="ck_recurring_frequency"),
    Index("idx_recurring_invoices_next", "next_generation_date", "is_active"),
)

scheduled_invoices = Table(
    "scheduled_invoices",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("client_id", Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE")),
    Column("scheduled_date", Date),
    Column("trigger_type", Text, nullable=False, default="date"),
    Column("trigger_milestone_id", Integer),
    Column("line_items", JSON, nullable=False),
    Column("notes", Text),
    Column("terms", Text),
    Column("due_days", Integer, nullable=False, default=30),
    Column("status", Text, nullable=False, default="pending"),
    Column("generated_invoice_id", Integer, ForeignKey("invoices.id", ondelete="SET NULL")),
    Column("fired_at", DateTime),
    Column("last_error", Text),
    Column("failed_at", DateTime),
    Column("created_at", DateTime, nullable=False),
    Index("idx_scheduled_invoices_date", "scheduled_date", "status"),
)

receipts = Table(
    "receipts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("receipt_number", Text, unique=True, nullable=False),
    Column("invoice_id", Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
    Column("payment_id", Integer, ForeignKey("invoice_payments.id", ondelete="CASCADE")),
    Column("amount", Money, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Index("idx_receipts_invoice", "invoice_id"),
)
