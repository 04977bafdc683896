# app/models/receipts.py

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class ReceiptOut(BaseModel):
    id: int
    receipt_number: str
    invoice_id: int
    invoice_number: str
    payment_id: Optional[int] = None
    amount: Decimal
    currency: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[date] = None
    client_id: int
    client_name: Optional[str] = None
    project_name: Optional[str] = None
    created_at: datetime


class ReceiptResponse(BaseModel):
    success: bool = True
    receipt: ReceiptOut


class ReceiptListResponse(BaseModel):
    success: bool = True
    receipts: List[ReceiptOut]
    count: int
