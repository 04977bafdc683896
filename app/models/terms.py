# app/models/terms.py

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.common import RequestModel
from app.models.invoices import InvoiceOut, LateFeeType


class PaymentTermsCreate(RequestModel):
    name: str = Field(..., min_length=1)
    days_until_due: int = Field(..., ge=0)
    description: Optional[str] = None
    late_fee_type: LateFeeType = "none"
    late_fee_rate: Decimal = Decimal("0")
    grace_period_days: int = Field(default=0, ge=0)
    is_default: bool = False


class PaymentTermsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    days_until_due: int
    description: Optional[str] = None
    late_fee_type: str
    late_fee_rate: Decimal
    grace_period_days: int
    is_default: bool
    created_at: Optional[datetime] = None


class PaymentTermsResponse(BaseModel):
    success: bool = True
    terms: PaymentTermsOut


class PaymentTermsListResponse(BaseModel):
    success: bool = True
    terms: List[PaymentTermsOut]


class PlanPayment(RequestModel):
    percentage: Decimal = Field(..., gt=0, le=100)
    trigger: Optional[str] = None
    label: Optional[str] = None
    days_after_start: Optional[int] = Field(default=None, ge=0)


class PlanPaymentOut(BaseModel):
    percentage: Decimal
    trigger: Optional[str] = None
    label: Optional[str] = None
    days_after_start: Optional[int] = None


class PaymentPlanCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    payments: List[PlanPayment] = Field(..., min_length=1)
    is_default: bool = False


class PaymentPlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    payments: List[PlanPaymentOut]
    is_default: bool
    created_at: Optional[datetime] = None


class PaymentPlanResponse(BaseModel):
    success: bool = True
    plan: PaymentPlanOut


class PaymentPlanListResponse(BaseModel):
    success: bool = True
    plans: List[PaymentPlanOut]


class GenerateFromPlanIn(RequestModel):
    client_id: int
    project_id: int
    template_id: int
    total_amount: Decimal = Field(..., gt=0)


class GeneratedInvoicesResponse(BaseModel):
    success: bool = True
    message: str
    invoices: List[InvoiceOut]
