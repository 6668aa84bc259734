from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class ScheduleCreate(BaseModel):
    starts_at: datetime
    ends_at: datetime


class ScheduleUpdate(BaseModel):
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_available: Optional[bool] = None
    unavailable_reason: Optional[str] = None


class Schedule(BaseModel):
    id: int
    doctor_id: int
    starts_at: datetime
    ends_at: datetime
    is_available: bool
    unavailable_reason: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


class ScheduleDay(BaseModel):
    date: date
    slots: List[Schedule]
