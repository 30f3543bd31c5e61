"""One applied timetable upload, kept so the reviewer can re-download or audit it."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class TimetableImport(Base):
    __tablename__ = "timetable_imports"
    __table_args__ = (
        Index("ix_timetable_imports_imported_by_created", "imported_by", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    imported_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Raw entries as submitted
    entries = Column(JSON, nullable=False, default=list)
    teacher_emails = Column(JSON, nullable=False, default=list)
    teacher_names = Column(JSON, nullable=False, default=list)
    batch_names = Column(JSON, nullable=False, default=list)
    applied_days = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    importer = relationship("User", foreign_keys=[imported_by])
