from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.api.v1.ledger.schemas import ScheduleEntry
from app.api.v1.units.schemas import UnitLogResponse


class TimetableEntry(BaseModel):
    """One imported row. The date is kept as text so a bad value becomes a per-entry error."""

    model_config = ConfigDict(populate_by_name=True)

    teacher_email: str = Field(..., max_length=255)
    ledger_date: str = Field(..., alias="date", description="YYYY-MM-DD")
    slot_ids: List[str] = Field(default_factory=list)
    break_minutes: Optional[int] = None
    subject_name: Optional[str] = Field(None, max_length=255)
    batch: Optional[str] = Field(None, max_length=100)

    @field_validator("teacher_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class TimetableApply(BaseModel):
    entries: List[TimetableEntry] = Field(..., min_length=1)


class TimetableEntryError(BaseModel):
    index: int
    teacher_email: str
    message: str


class AppliedDay(BaseModel):
    teacher_id: UUID
    teacher_email: str
    ledger_date: date
    scheduled_slot_ids: List[str]
    break_duration: Optional[int] = None
    schedule_entries: List[ScheduleEntry] = Field(default_factory=list)


class TimetableApplyResult(BaseModel):
    applied: List[AppliedDay] = Field(default_factory=list)
    errors: List[TimetableEntryError] = Field(default_factory=list)
    import_id: Optional[UUID] = None


class DaySubjectUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ledger_date: date = Field(..., alias="date")
    subject_name: str = Field(..., min_length=1, max_length=255)
    batch: Optional[str] = Field(None, max_length=100)


class CalendarSlot(BaseModel):
    slot_id: str
    label: str
    checked: bool
    status: str
    approval_id: Optional[UUID] = None


class CalendarDay(BaseModel):
    ledger_date: date
    total_hours: float
    break_duration: Optional[int] = None
    break_checked: bool
    scheduled_slot_ids: Optional[List[str]] = None
    schedule_entries: List[ScheduleEntry] = Field(default_factory=list)
    slots: List[CalendarSlot]


class CalendarResponse(BaseModel):
    start_date: date
    end_date: date
    days: List[CalendarDay] = Field(default_factory=list)
    unit_logs: List[UnitLogResponse] = Field(default_factory=list)


class TimetableImportResponse(BaseModel):
    id: UUID
    imported_by: UUID
    entries: List[Dict[str, Any]] = Field(default_factory=list)
    teacher_emails: List[str] = Field(default_factory=list)
    teacher_names: List[str] = Field(default_factory=list)
    batch_names: List[str] = Field(default_factory=list)
    applied_days: int
    error_count: int
    created_at: datetime

    class Config:
        from_attributes = True
