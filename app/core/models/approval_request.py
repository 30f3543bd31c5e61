"""Generic approval envelope. request_data holds the typed payload for `type`; natural_key deduplicates pending requests."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import ApprovalStatus
from app.db.session import Base

_PENDING_ONLY = text("status = 'pending'")


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"
    __table_args__ = (
        # At most one pending request per (type, requester, natural key)
        Index(
            "uq_approval_pending_natural_key",
            "type",
            "requested_by",
            "natural_key",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
        Index("ix_approval_requests_status_created", "status", "created_at"),
        Index("ix_approval_requests_requested_by_status", "requested_by", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=ApprovalStatus.PENDING.value)
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Reviewer who approved or rejected (the teacher themself for self-cancellation)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    request_data = Column(JSON, nullable=False)
    natural_key = Column(String(255), nullable=False)
    rejection_reason = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    requester = relationship("User", foreign_keys=[requested_by])
    reviewer = relationship("User", foreign_keys=[approved_by])
