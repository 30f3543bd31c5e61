from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from app.core.config import settings
from app.core.slots import is_valid_slot


# ----- Typed payloads (one per approval type) -----
class UnitStartPayload(BaseModel):
    type: Literal["unit-start"] = "unit-start"
    teacher_id: UUID
    unit_id: UUID
    subject_id: Optional[UUID] = None

    def natural_key(self) -> str:
        return str(self.unit_id)


class UnitCompletePayload(BaseModel):
    type: Literal["unit-complete"] = "unit-complete"
    teacher_id: UUID
    unit_id: UUID

    def natural_key(self) -> str:
        return str(self.unit_id)


class TimeSlotPayload(BaseModel):
    type: Literal["time-slot"] = "time-slot"
    teacher_id: UUID
    ledger_date: date
    slot_id: str
    checked: bool = True

    @field_validator("slot_id")
    @classmethod
    def known_slot(cls, v: str) -> str:
        if not is_valid_slot(v):
            raise ValueError(f"Invalid time slot ID: {v}")
        return v

    def natural_key(self) -> str:
        # ISO date first so keys sort and range-filter by day
        return f"{self.ledger_date.isoformat()}|{self.slot_id}|{int(self.checked)}"


class BreakTimingPayload(BaseModel):
    type: Literal["break-timing"] = "break-timing"
    teacher_id: UUID
    ledger_date: date
    break_minutes: int = Field(..., ge=1)

    @field_validator("break_minutes")
    @classmethod
    def within_limit(cls, v: int) -> int:
        if v > settings.max_break_minutes:
            raise ValueError(f"break_minutes must be at most {settings.max_break_minutes}")
        return v

    def natural_key(self) -> str:
        return f"{self.ledger_date.isoformat()}|{self.break_minutes}"


class SubjectAssignPayload(BaseModel):
    type: Literal["subject-assign"] = "subject-assign"
    subject_id: UUID
    to_teacher_id: UUID
    from_teacher_id: Optional[UUID] = None
    unit_ids: Optional[List[UUID]] = None

    def natural_key(self) -> str:
        return str(self.subject_id)


ApprovalPayload = Annotated[
    Union[UnitStartPayload, UnitCompletePayload, TimeSlotPayload, BreakTimingPayload, SubjectAssignPayload],
    Field(discriminator="type"),
]

payload_adapter: TypeAdapter = TypeAdapter(ApprovalPayload)


# ----- Requests -----
class ApprovalSubmit(BaseModel):
    """Generic submission. request_data must match the payload shape for `type`."""

    type: Literal["unit-start", "unit-complete", "time-slot", "break-timing", "subject-assign"]
    request_data: Dict[str, Any] = Field(default_factory=dict)


class ApprovalReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


# ----- Responses -----
class ApprovalRequestResponse(BaseModel):
    id: UUID
    type: str
    status: str
    requested_by: UUID
    approved_by: Optional[UUID] = None
    request_data: Dict[str, Any]
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ApprovalDecisionResult(BaseModel):
    """Outcome of a reviewer decision: the envelope plus whatever the applier produced."""

    approval: ApprovalRequestResponse
    processed: Optional[Dict[str, Any]] = None
