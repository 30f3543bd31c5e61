from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubjectProgress(BaseModel):
    subject_id: UUID
    subject_name: str
    total_units: int
    completed_units: int
    in_progress_units: int
    not_started_units: int
    completion_percent: float


class TeacherProgress(BaseModel):
    """One teacher's curriculum progress plus hours over a date range."""

    teacher_id: UUID
    full_name: str
    email: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    # From approved ledger slots minus the break
    credited_hours: float = 0.0
    # From units completed inside the range
    unit_hours: float = 0.0
    completed_in_range: int = 0
    subjects: List[SubjectProgress] = Field(default_factory=list)


class ProgressGroup(BaseModel):
    """Unit log counts for one subject or one teacher."""

    id: UUID
    name: str
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    delayed: int = 0
    total_hours: float = 0.0
    avg_hours: float = 0.0


class RemainingUnit(BaseModel):
    unit_id: UUID
    name: str
    order: int


class IncompleteSubject(BaseModel):
    subject_id: UUID
    subject_name: str
    total_units: int
    completed_units: int
    remaining_units: List[RemainingUnit] = Field(default_factory=list)


class TeacherIncomplete(BaseModel):
    teacher_id: UUID
    full_name: str
    email: str
    incomplete_subjects: List[IncompleteSubject] = Field(default_factory=list)
