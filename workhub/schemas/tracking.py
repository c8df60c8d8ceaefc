import uuid
from datetime import date, datetime
from typing import List, Optional, Union
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from .work_orders import WorkOrderOut


class TimeEntryOut(BaseModel):
    id: uuid.UUID
    work_order_id: uuid.UUID
    user_id: uuid.UUID
    username: Optional[str] = None
    user_display_name: Optional[str] = None
    work_date: date
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    running_minutes: Optional[int] = None  # live elapsed time of an open entry
    note: Optional[str] = None
    source: str
    created_at: Optional[datetime] = None


class TrackingStartIn(BaseModel):
    work_order_id: uuid.UUID


class ManualEntryIn(BaseModel):
    work_order_id: uuid.UUID
    work_date: date = Field(alias="date")
    # "2,5" and "2.5" are both accepted; parsed by the engine
    hours: Union[str, Decimal, float, int, None] = None
    note: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("note", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class WorkOrderTimesheetOut(BaseModel):
    work_order: WorkOrderOut
    entries: List[TimeEntryOut]
    total_minutes: int  # closed entries only
