from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.api.v1.approvals.schemas import ApprovalRequestResponse


class UnitLogResponse(BaseModel):
    id: UUID
    unit_id: UUID
    teacher_id: UUID
    subject_id: UUID
    status: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_minutes: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class UnitActionResponse(BaseModel):
    """immediate=true: `unit_log` holds the new state. Otherwise `approval` is the pending request."""

    immediate: bool
    unit_log: Optional[UnitLogResponse] = None
    approval: Optional[ApprovalRequestResponse] = None


class UnitProgressResponse(BaseModel):
    """A subject unit with one teacher's progress on it."""

    unit_id: UUID
    subject_id: UUID
    name: str
    order: int
    status: str
    log_id: Optional[UUID] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_minutes: int = 0
