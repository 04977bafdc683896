# app/models/reports.py

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel


class MonthlySummaryOut(BaseModel):
    month: str  # "YYYY-MM"
    currency: str
    sum_total: Decimal
    sum_paid: Decimal
    count_invoices: int


class PastDueInvoiceItem(BaseModel):
    id: int
    invoice_number: str
    client_name: Optional[str] = None
    issued_date: Optional[date] = None
    due_date: date
    amount_total: Decimal
    amount_paid: Decimal
    outstanding: Decimal
    currency: str
    status: str
    days_past_due: int


class PastDueResponse(BaseModel):
    items: List[PastDueInvoiceItem]
    total: int
    limit: int
    offset: int


class InvoiceStatsOut(BaseModel):
    success: bool = True
    total_invoices: int
    by_status: Dict[str, int]
    total_invoiced: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    total_overdue: Decimal


class AgingBucketOut(BaseModel):
    count: int
    amount: Decimal


class AgingReportOut(BaseModel):
    success: bool = True
    as_of: date
    buckets: Dict[str, AgingBucketOut]
    total_outstanding: Decimal
