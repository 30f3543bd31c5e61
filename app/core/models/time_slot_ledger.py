"""Daily schedule ledger. One master per (teacher, day); one row per catalog slot."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.slots import compute_total_hours, slot_order
from app.db.session import Base


class TimeSlotLedger(Base):
    __tablename__ = "time_slot_ledgers"
    __table_args__ = (
        UniqueConstraint("teacher_id", "ledger_date", name="uq_ledger_teacher_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    teacher_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ledger_date = Column(Date, nullable=False, index=True)
    break_duration = Column(Integer, nullable=True)  # minutes
    break_checked = Column(Boolean, nullable=False, default=False)
    break_checked_at = Column(DateTime(timezone=True), nullable=True)
    total_hours = Column(Float, nullable=False, default=0.0)
    # Timetable overlay (advisory): slot ids the verifier scheduled, and per-subject entries
    scheduled_slot_ids = Column(JSON, nullable=True)
    schedule_entries = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    teacher = relationship("User", foreign_keys=[teacher_id])
    slots = relationship(
        "LedgerSlot",
        back_populates="ledger",
        cascade="all, delete-orphan",
    )

    def ordered_slots(self):
        return sorted(self.slots, key=lambda s: slot_order(s.slot_id))

    def get_slot(self, slot_id: str):
        for slot in self.slots:
            if slot.slot_id == slot_id:
                return slot
        return None

    def recompute_total_hours(self) -> float:
        self.total_hours = compute_total_hours(
            (s.duration_minutes for s in self.slots if s.checked),
            self.break_duration,
            bool(self.break_checked),
        )
        return self.total_hours


class LedgerSlot(Base):
    __tablename__ = "ledger_slots"
    __table_args__ = (
        UniqueConstraint("ledger_id", "slot_id", name="uq_ledger_slot"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ledger_id = Column(
        UUID(as_uuid=True),
        ForeignKey("time_slot_ledgers.id", ondelete="CASCADE"),
        nullable=False,
    )
    slot_id = Column(String(20), nullable=False)
    label = Column(String(50), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    checked = Column(Boolean, nullable=False, default=False)
    checked_at = Column(DateTime(timezone=True), nullable=True)

    ledger = relationship("TimeSlotLedger", back_populates="slots")
