from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AssignmentCreate(BaseModel):
    subject_id: UUID
    to_teacher_id: UUID
    from_teacher_id: Optional[UUID] = Field(None, description="Defaults to the subject's current owner")
    unit_ids: Optional[List[UUID]] = Field(None, description="Units the recipient inherits; defaults to those not yet completed")
    reason: Optional[str] = Field(None, max_length=2000)


class AssignmentDecision(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class AssignmentResponse(BaseModel):
    id: UUID
    subject_id: UUID
    from_teacher_id: Optional[UUID] = None
    to_teacher_id: UUID
    remaining_unit_ids: List[UUID]
    reason: str
    status: str
    requested_by: UUID
    approved_by: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransferSummary(BaseModel):
    """What a completed transfer moved."""

    subject_id: UUID
    from_teacher_id: Optional[UUID] = None
    to_teacher_id: UUID
    moved_logs: int = 0
    demoted_logs: int = 0
    skipped_logs: int = 0
    created_logs: int = 0


class AssignmentAcceptResponse(BaseModel):
    assignment: AssignmentResponse
    transfer: Optional[TransferSummary] = None
