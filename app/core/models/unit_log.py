"""Unit lifecycle per (unit, teacher): not-started -> in-progress -> completed, restartable in place."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import UnitStatus
from app.db.session import Base

_IN_PROGRESS_ONLY = text("status = 'in-progress'")


class UnitLog(Base):
    __tablename__ = "unit_logs"
    __table_args__ = (
        # One log per unit-teacher; a second start reopens this row
        UniqueConstraint("unit_id", "teacher_id", name="uq_unit_log_unit_teacher"),
        Index("ix_unit_logs_teacher_subject_status", "teacher_id", "subject_id", "status"),
        # At most one in-progress unit per teacher and subject
        Index(
            "uq_unit_log_one_in_progress",
            "teacher_id",
            "subject_id",
            unique=True,
            postgresql_where=_IN_PROGRESS_ONLY,
            sqlite_where=_IN_PROGRESS_ONLY,
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=UnitStatus.NOT_STARTED.value)
    start_time = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    end_time = Column(DateTime(timezone=True), nullable=True)
    total_minutes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    unit = relationship("Unit", foreign_keys=[unit_id])
    subject = relationship("Subject", foreign_keys=[subject_id])
    teacher = relationship("User", foreign_keys=[teacher_id])
