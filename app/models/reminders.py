# app/models/reminders.py

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict

ReminderType = Literal["upcoming", "due", "overdue_3", "overdue_7", "overdue_14", "overdue_30"]
ReminderStatus = Literal["pending", "sent", "skipped", "failed"]


class ReminderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    reminder_type: ReminderType
    scheduled_date: date
    sent_at: Optional[datetime] = None
    status: ReminderStatus
    created_at: datetime


class ReminderResponse(BaseModel):
    success: bool = True
    reminder: ReminderOut


class ReminderListResponse(BaseModel):
    success: bool = True
    reminders: List[ReminderOut]


class ReminderSentResponse(BaseModel):
    success: bool = True
    message: str
    message_id: Optional[str] = None
