"""Two-stage subject transfer: pending -> admin_approved -> approved, or rejected at either stage."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import AssignmentStatus
from app.db.session import Base

_IN_FLIGHT_ONLY = text("status IN ('pending', 'admin_approved')")


class SubjectAssignment(Base):
    __tablename__ = "subject_assignments"
    __table_args__ = (
        Index("ix_subject_assignments_subject_status", "subject_id", "status"),
        Index("ix_subject_assignments_to_teacher_status", "to_teacher_id", "status"),
        # At most one in-flight assignment per subject
        Index(
            "uq_subject_assignment_in_flight",
            "subject_id",
            unique=True,
            postgresql_where=_IN_FLIGHT_ONLY,
            sqlite_where=_IN_FLIGHT_ONLY,
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Null for a subject that had no owner (new assignment)
    from_teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    to_teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    # Unit ids (as strings) the recipient inherits
    remaining_unit_ids = Column(JSON, nullable=False, default=list)
    reason = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=AssignmentStatus.PENDING.value)
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    # Admin who approved or rejected the first stage
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    from_teacher = relationship("User", foreign_keys=[from_teacher_id])
    to_teacher = relationship("User", foreign_keys=[to_teacher_id])
    subject = relationship("Subject", foreign_keys=[subject_id])
    requester = relationship("User", foreign_keys=[requested_by])
