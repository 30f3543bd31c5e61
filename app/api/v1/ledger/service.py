"""
Daily schedule ledger.

One ledger per (teacher, day), created lazily and healed on every read so it always carries
the full slot catalog. Removing claimed time (deselect, break removal) is immediate; claiming
time goes through the approval mediator and lands here via apply_slot_checked / apply_break.
"""

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.approvals import service as approvals_service
from app.api.v1.approvals.schemas import BreakTimingPayload, TimeSlotPayload
from app.core.config import settings
from app.core.enums import ApprovalType
from app.core.exceptions import ValidationError
from app.core.models import ApprovalRequest, LedgerSlot, TimeSlotLedger
from app.core.slots import SLOT_DEFINITIONS, is_valid_slot
from app.db.upsert import insert_ignore

from .schemas import (
    ApprovalState,
    LedgerActionResponse,
    LedgerApprovalStatus,
    LedgerResponse,
    LedgerSlotResponse,
    ScheduleEntry,
)

logger = logging.getLogger("teaching.ledger")


def ledger_to_response(ledger: TimeSlotLedger) -> LedgerResponse:
    return LedgerResponse(
        id=ledger.id,
        teacher_id=ledger.teacher_id,
        ledger_date=ledger.ledger_date,
        slots=[LedgerSlotResponse.model_validate(s) for s in ledger.ordered_slots()],
        break_duration=ledger.break_duration,
        break_checked=bool(ledger.break_checked),
        break_checked_at=ledger.break_checked_at,
        total_hours=ledger.total_hours or 0.0,
        scheduled_slot_ids=ledger.scheduled_slot_ids,
        schedule_entries=[ScheduleEntry(**e) for e in (ledger.schedule_entries or [])],
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


async def fetch_ledger(db: AsyncSession, teacher_id: UUID, ledger_date: date) -> Optional[TimeSlotLedger]:
    """Ledger with its slots, or None. Always reloads from the database."""
    result = await db.execute(
        select(TimeSlotLedger)
        .options(selectinload(TimeSlotLedger.slots))
        .where(
            TimeSlotLedger.teacher_id == teacher_id,
            TimeSlotLedger.ledger_date == ledger_date,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_ledger(db: AsyncSession, teacher_id: UUID, ledger_date: date) -> TimeSlotLedger:
    """
    Get-or-create the ledger and insert any catalog slot it is missing.

    Both inserts are ON CONFLICT DO NOTHING followed by a re-fetch, so two requests racing
    to create the same day end up reading the same rows. Does not commit.
    """
    ledger = await fetch_ledger(db, teacher_id, ledger_date)
    if ledger is None:
        now = datetime.utcnow()
        await insert_ignore(
            db,
            TimeSlotLedger,
            [{
                "id": uuid.uuid4(),
                "teacher_id": teacher_id,
                "ledger_date": ledger_date,
                "break_checked": False,
                "total_hours": 0.0,
                "schedule_entries": [],
                "created_at": now,
                "updated_at": now,
            }],
            ["teacher_id", "ledger_date"],
        )
        ledger = await fetch_ledger(db, teacher_id, ledger_date)

    present = {s.slot_id for s in ledger.slots}
    missing = [slot_id for slot_id in SLOT_DEFINITIONS if slot_id not in present]
    if missing:
        await insert_ignore(
            db,
            LedgerSlot,
            [
                {
                    "id": uuid.uuid4(),
                    "ledger_id": ledger.id,
                    "slot_id": slot_id,
                    "label": SLOT_DEFINITIONS[slot_id][0],
                    "duration_minutes": SLOT_DEFINITIONS[slot_id][1],
                    "checked": False,
                }
                for slot_id in missing
            ],
            ["ledger_id", "slot_id"],
        )
        ledger = await fetch_ledger(db, teacher_id, ledger_date)
        logger.debug("healed ledger %s: inserted slots %s", ledger.id, missing)
    return ledger


async def get_or_create_ledger(db: AsyncSession, teacher_id: UUID, ledger_date: date) -> LedgerResponse:
    ledger = await load_ledger(db, teacher_id, ledger_date)
    await db.commit()
    return ledger_to_response(ledger)


def _require_slot_id(slot_id: str) -> None:
    if not is_valid_slot(slot_id):
        raise ValidationError(f"Invalid time slot ID: {slot_id}")


# ----- Appliers (called by the approval mediator; caller commits) -----
async def apply_slot_checked(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    slot_id: str,
    checked: bool = True,
) -> TimeSlotLedger:
    _require_slot_id(slot_id)
    ledger = await load_ledger(db, teacher_id, ledger_date)
    slot = ledger.get_slot(slot_id)
    now = datetime.utcnow()
    if slot.checked != checked:
        slot.checked = checked
        slot.checked_at = now if checked else None
    ledger.recompute_total_hours()
    ledger.updated_at = now
    return ledger


async def apply_break(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    break_minutes: int,
) -> TimeSlotLedger:
    if break_minutes < 1 or break_minutes > settings.max_break_minutes:
        raise ValidationError(f"Break must be between 1 and {settings.max_break_minutes} minutes")
    ledger = await load_ledger(db, teacher_id, ledger_date)
    now = datetime.utcnow()
    ledger.break_duration = break_minutes
    ledger.break_checked = True
    ledger.break_checked_at = now
    ledger.recompute_total_hours()
    ledger.updated_at = now
    return ledger


# ----- Teacher actions -----
async def deselect_slot(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    slot_id: str,
) -> LedgerResponse:
    """Uncheck a slot now and cancel any pending request to check it."""
    _require_slot_id(slot_id)
    ledger = await load_ledger(db, teacher_id, ledger_date)
    slot = ledger.get_slot(slot_id)

    cancelled = await approvals_service.reject_pending(
        db,
        ApprovalType.TIME_SLOT,
        teacher_id,
        reason="deselected by teacher",
        actor_id=teacher_id,
        natural_key=TimeSlotPayload(teacher_id=teacher_id, ledger_date=ledger_date, slot_id=slot_id).natural_key(),
    )
    if not slot.checked and not cancelled:
        raise ValidationError(f"Time slot {slot.label} is already deselected. No action needed.")

    if slot.checked:
        slot.checked = False
        slot.checked_at = None
        ledger.recompute_total_hours()
        ledger.updated_at = datetime.utcnow()
    await db.commit()
    logger.info("slot deselected teacher=%s date=%s slot=%s", teacher_id, ledger_date, slot_id)
    ledger = await fetch_ledger(db, teacher_id, ledger_date)
    return ledger_to_response(ledger)


async def set_break(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    break_minutes: Optional[int] = None,
) -> LedgerResponse:
    """Remove the day's break immediately. Positive values must go through request_break."""
    if break_minutes:
        raise ValidationError("A break duration must be requested for approval")
    ledger = await load_ledger(db, teacher_id, ledger_date)
    ledger.break_duration = None
    ledger.break_checked = False
    ledger.break_checked_at = None
    ledger.recompute_total_hours()
    ledger.updated_at = datetime.utcnow()

    await approvals_service.reject_pending(
        db,
        ApprovalType.BREAK_TIMING,
        teacher_id,
        reason="break removed by teacher",
        actor_id=teacher_id,
        natural_key_prefix=f"{ledger_date.isoformat()}|",
    )
    await db.commit()
    logger.info("break removed teacher=%s date=%s", teacher_id, ledger_date)
    ledger = await fetch_ledger(db, teacher_id, ledger_date)
    return ledger_to_response(ledger)


async def request_slot(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    slot_id: str,
) -> LedgerActionResponse:
    _require_slot_id(slot_id)
    ledger = await load_ledger(db, teacher_id, ledger_date)
    slot = ledger.get_slot(slot_id)
    if slot.checked:
        raise ValidationError(f"Time slot {slot.label} is already selected. No action needed.")
    await db.commit()

    approval = await approvals_service.submit(
        db,
        ApprovalType.TIME_SLOT,
        teacher_id,
        TimeSlotPayload(teacher_id=teacher_id, ledger_date=ledger_date, slot_id=slot_id, checked=True),
    )
    return LedgerActionResponse(immediate=False, ledger=ledger_to_response(ledger), approval=approval)


async def update_slot(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    slot_id: str,
    checked: bool,
) -> LedgerActionResponse:
    if checked:
        return await request_slot(db, teacher_id, ledger_date, slot_id)
    ledger = await deselect_slot(db, teacher_id, ledger_date, slot_id)
    return LedgerActionResponse(immediate=True, ledger=ledger)


async def request_break(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    break_minutes: Optional[int],
) -> LedgerActionResponse:
    if not break_minutes:
        ledger = await set_break(db, teacher_id, ledger_date, None)
        return LedgerActionResponse(immediate=True, ledger=ledger)

    if break_minutes < 1 or break_minutes > settings.max_break_minutes:
        raise ValidationError(f"Break must be between 1 and {settings.max_break_minutes} minutes")

    ledger = await load_ledger(db, teacher_id, ledger_date)
    if ledger.break_checked and ledger.break_duration == break_minutes:
        raise ValidationError(f"Break of {break_minutes} minutes is already set. No action needed.")
    await db.commit()

    approval = await approvals_service.submit(
        db,
        ApprovalType.BREAK_TIMING,
        teacher_id,
        BreakTimingPayload(teacher_id=teacher_id, ledger_date=ledger_date, break_minutes=break_minutes),
    )
    return LedgerActionResponse(immediate=False, ledger=ledger_to_response(ledger), approval=approval)


def _approval_state(req: ApprovalRequest) -> ApprovalState:
    return ApprovalState(
        approval_id=req.id,
        status=req.status,
        requested_at=req.created_at,
        request_data=req.request_data or {},
        rejection_reason=req.rejection_reason,
    )


async def get_approval_status(db: AsyncSession, teacher_id: UUID, ledger_date: date) -> LedgerApprovalStatus:
    """Latest approval per slot id, and the latest break request, for one day."""
    key_from = ledger_date.isoformat()
    key_to = (ledger_date + timedelta(days=1)).isoformat()

    slots: Dict[str, ApprovalState] = {}
    for req in await approvals_service.list_by_key_range(db, ApprovalType.TIME_SLOT, teacher_id, key_from, key_to):
        slot_id = (req.request_data or {}).get("slot_id")
        if slot_id:
            slots[slot_id] = _approval_state(req)

    break_reqs = await approvals_service.list_by_key_range(db, ApprovalType.BREAK_TIMING, teacher_id, key_from, key_to)
    return LedgerApprovalStatus(
        ledger_date=ledger_date,
        slots=slots,
        break_request=_approval_state(break_reqs[-1]) if break_reqs else None,
    )
