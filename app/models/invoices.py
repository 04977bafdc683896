# app/models/invoices.py

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.common import RequestModel
from app.models.receipts import ReceiptOut
from app.services.status import InvoiceStatus

DiscountType = Literal["percentage", "fixed"]
LateFeeType = Literal["none", "flat", "percentage", "daily_percentage"]


# ----------------------------------------------------------------------
# requests
# ----------------------------------------------------------------------

class LineItemIn(RequestModel):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Decimal("1")
    rate: Decimal
    amount: Optional[Decimal] = None


class InvoiceCreate(RequestModel):
    client_id: int
    project_id: Optional[int] = None
    line_items: List[LineItemIn] = Field(..., min_length=1)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    currency: str = "USD"
    tax_rate: Decimal = Decimal("0")
    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Decimal("0")
    prefix: Optional[str] = Field(default=None, description="Custom number prefix, e.g. WEB")
    payment_terms_id: Optional[int] = None
    late_fee_type: Optional[LateFeeType] = None
    late_fee_rate: Optional[Decimal] = None
    late_fee_grace_days: Optional[int] = Field(default=None, ge=0)


class InvoicePreviewIn(RequestModel):
    client_id: int
    project_id: Optional[int] = None
    line_items: List[LineItemIn] = Field(..., min_length=1)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    currency: str = "USD"
    tax_rate: Decimal = Decimal("0")
    discount_type: Optional[DiscountType] = None
    discount_value: Decimal = Decimal("0")


class BatchExportIn(RequestModel):
    invoice_ids: List[int] = Field(..., min_length=1)


class DepositCreate(RequestModel):
    client_id: int
    project_id: int
    amount: Decimal
    percentage: Optional[Decimal] = None
    description: Optional[str] = None
    due_date: Optional[date] = None


class InvoiceUpdate(RequestModel):
    line_items: Optional[List[LineItemIn]] = Field(default=None, min_length=1)
    project_id: Optional[int] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    currency: Optional[str] = None


class TaxDiscountUpdate(RequestModel):
    tax_rate: Optional[Decimal] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None


class InternalNotesUpdate(RequestModel):
    internal_notes: Optional[str] = None


class ApplyTermsIn(RequestModel):
    payment_terms_id: int


class StatusUpdate(RequestModel):
    status: InvoiceStatus
    payment_method: str = "manual"
    payment_reference: Optional[str] = None


class PaymentIn(RequestModel):
    amount: Decimal
    payment_method: str = "manual"
    payment_reference: Optional[str] = None
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class CreditIn(RequestModel):
    deposit_invoice_id: int
    amount: Decimal


# ----------------------------------------------------------------------
# responses
# ----------------------------------------------------------------------

class LineItemOut(BaseModel):
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


class PortalInvoiceOut(BaseModel):
    """What a client sees of their own invoice."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    client_id: int
    client_name: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    invoice_type: str
    status: InvoiceStatus
    currency: str
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_type: Optional[str] = None
    discount_value: Decimal
    discount_amount: Decimal
    late_fee_amount: Optional[Decimal] = None
    amount_total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    issued_date: Optional[date] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    line_items: List[LineItemOut] = []


class InvoiceOut(PortalInvoiceOut):
    client_contact: Optional[str] = None
    client_email: Optional[EmailStr] = None
    invoice_prefix: str
    invoice_sequence: int
    deposit_for_project_id: Optional[int] = None
    deposit_percentage: Optional[Decimal] = None
    sent_at: Optional[datetime] = None
    internal_notes: Optional[str] = None
    payment_terms_id: Optional[int] = None
    late_fee_type: str
    late_fee_rate: Decimal
    late_fee_grace_days: int
    late_fee_applied_at: Optional[datetime] = None
    payment_plan_id: Optional[int] = None
    milestone_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class InvoiceResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    invoice: InvoiceOut


class InvoiceListResponse(BaseModel):
    success: bool = True
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int


class PortalInvoiceResponse(BaseModel):
    success: bool = True
    invoice: PortalInvoiceOut


class PortalInvoiceListResponse(BaseModel):
    success: bool = True
    invoices: List[PortalInvoiceOut]
    total: int


class DeleteResponse(BaseModel):
    success: bool = True
    action: Literal["deleted", "voided"]
    message: str


class PaymentOut(BaseModel):
    id: int
    invoice_id: int
    invoice_number: Optional[str] = None
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    payment_date: date
    notes: Optional[str] = None
    created_at: datetime


class PaymentResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    invoice: InvoiceOut
    payment: PaymentOut
    receipt: Optional[ReceiptOut] = None


class PaymentListResponse(BaseModel):
    success: bool = True
    payments: List[PaymentOut]
    total_paid: Decimal


class CreditOut(BaseModel):
    id: int
    invoice_id: int
    deposit_invoice_id: int
    deposit_invoice_number: Optional[str] = None
    amount: Decimal
    applied_at: datetime
    applied_by: Optional[str] = None


class CreditResponse(BaseModel):
    success: bool = True
    credit: CreditOut
    invoice: InvoiceOut
    available_balance: Decimal


class CreditListResponse(BaseModel):
    success: bool = True
    credits: List[CreditOut]
    total_credits: Decimal


class DepositBalanceOut(BaseModel):
    invoice_id: int
    invoice_number: str
    amount_paid: Decimal
    total_applied: Decimal
    available_amount: Decimal
    paid_date: Optional[date] = None


class DepositListResponse(BaseModel):
    success: bool = True
    deposits: List[DepositBalanceOut]


class LateFeeQuoteOut(BaseModel):
    invoice_id: int
    invoice_number: str
    late_fee_type: str
    late_fee_rate: Decimal
    grace_days: int
    days_overdue: int
    outstanding: Decimal
    fee: Decimal
    already_applied: bool
    applied_amount: Optional[Decimal] = None


class LateFeeQuoteResponse(BaseModel):
    success: bool = True
    late_fee: LateFeeQuoteOut
