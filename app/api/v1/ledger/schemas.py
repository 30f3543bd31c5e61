from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.api.v1.approvals.schemas import ApprovalRequestResponse


# ----- Requests -----
class SlotUpdate(BaseModel):
    """checked=true asks for approval; checked=false deselects immediately."""

    model_config = ConfigDict(populate_by_name=True)

    slot_id: str = Field(..., max_length=20)
    checked: bool
    ledger_date: Optional[date] = Field(None, alias="date", description="Defaults to today")


class BreakUpdate(BaseModel):
    """Positive minutes ask for approval; null or 0 removes the break immediately."""

    model_config = ConfigDict(populate_by_name=True)

    break_minutes: Optional[int] = Field(None, ge=0)
    ledger_date: Optional[date] = Field(None, alias="date", description="Defaults to today")


# ----- Responses -----
class LedgerSlotResponse(BaseModel):
    slot_id: str
    label: str
    duration_minutes: int
    checked: bool
    checked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduleEntry(BaseModel):
    subject_name: str
    batch: Optional[str] = None
    slot_ids: List[str] = Field(default_factory=list)


class LedgerResponse(BaseModel):
    id: UUID
    teacher_id: UUID
    ledger_date: date
    slots: List[LedgerSlotResponse]
    break_duration: Optional[int] = None
    break_checked: bool
    break_checked_at: Optional[datetime] = None
    total_hours: float
    scheduled_slot_ids: Optional[List[str]] = None
    schedule_entries: List[ScheduleEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class LedgerActionResponse(BaseModel):
    """immediate=true: the ledger already reflects the change. Otherwise `approval` is pending."""

    immediate: bool
    ledger: LedgerResponse
    approval: Optional[ApprovalRequestResponse] = None


class ApprovalState(BaseModel):
    approval_id: UUID
    status: str
    requested_at: datetime
    request_data: Dict[str, Any]
    rejection_reason: Optional[str] = None


class LedgerApprovalStatus(BaseModel):
    ledger_date: date
    slots: Dict[str, ApprovalState] = Field(default_factory=dict)
    break_request: Optional[ApprovalState] = None
