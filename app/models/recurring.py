# app/models/recurring.py

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.common import RequestModel
from app.models.invoices import InvoiceOut, LineItemIn

Frequency = Literal["weekly", "monthly", "quarterly"]
TriggerType = Literal["date", "milestone"]


class RecurringCreate(RequestModel):
    client_id: int
    project_id: Optional[int] = None
    frequency: Frequency
    line_items: List[LineItemIn] = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_days: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    terms: Optional[str] = None


class RecurringUpdate(RequestModel):
    frequency: Optional[Frequency] = None
    line_items: Optional[List[LineItemIn]] = Field(default=None, min_length=1)
    end_date: Optional[date] = None
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)
    due_days: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    terms: Optional[str] = None


class TemplateLineItem(BaseModel):
    description: str
    quantity: Decimal
    rate: Decimal


class RecurringOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    project_id: Optional[int] = None
    frequency: Frequency
    anchor_day: Optional[int] = None
    line_items: List[TemplateLineItem]
    notes: Optional[str] = None
    terms: Optional[str] = None
    due_days: int
    start_date: date
    end_date: Optional[date] = None
    next_generation_date: date
    last_generated_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime


class RecurringResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    recurring: RecurringOut


class RecurringListResponse(BaseModel):
    success: bool = True
    recurring: List[RecurringOut]


class ScheduleCreate(RequestModel):
    client_id: int
    project_id: Optional[int] = None
    line_items: List[LineItemIn] = Field(..., min_length=1)
    scheduled_date: Optional[date] = None
    trigger_type: TriggerType = "date"
    trigger_milestone_id: Optional[int] = None
    due_days: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    terms: Optional[str] = None


class ScheduledOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    project_id: Optional[int] = None
    scheduled_date: Optional[date] = None
    trigger_type: TriggerType
    trigger_milestone_id: Optional[int] = None
    line_items: List[TemplateLineItem]
    notes: Optional[str] = None
    terms: Optional[str] = None
    due_days: int
    status: Literal["pending", "fired", "cancelled"]
    generated_invoice_id: Optional[int] = None
    fired_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failed_at: Optional[datetime] = None
    created_at: datetime


class ScheduledResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    scheduled: ScheduledOut


class ScheduledListResponse(BaseModel):
    success: bool = True
    scheduled: List[ScheduledOut]


class FireResponse(BaseModel):
    success: bool = True
    invoice: InvoiceOut
