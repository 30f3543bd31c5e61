"""
Timetable overlay on the daily ledger.

A verifier imports who teaches which slots on which day; the import marks the scheduled
slots on each ledger (reset to unchecked, the teacher still has to claim them), sets the
break and records per-subject entries. The calendar merges ledgers with approval state.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.approvals import service as approvals_service
from app.api.v1.ledger import service as ledger_service
from app.api.v1.ledger.schemas import LedgerResponse, ScheduleEntry
from app.api.v1.units import service as units_service
from app.core.enums import ApprovalStatus, ApprovalType, UserRole
from app.core.exceptions import NotFoundError, ValidationError
from app.core.models import ApprovalRequest, TimeSlotLedger, TimetableImport, User
from app.core.slots import SLOT_DEFINITIONS, TIMETABLE_MAX_BREAK_MINUTES, is_valid_slot, slot_order

from .schemas import (
    AppliedDay,
    CalendarDay,
    CalendarResponse,
    CalendarSlot,
    TimetableApply,
    TimetableApplyResult,
    TimetableEntryError,
    TimetableImportResponse,
)

logger = logging.getLogger("teaching.timetables")

MAX_CALENDAR_DAYS = 62
HISTORY_LIMIT = 50
REIMPORT_REASON = "timetable re-imported"


def _clamp_break(minutes: Optional[int]) -> Optional[int]:
    if minutes is None:
        return None
    return max(0, min(TIMETABLE_MAX_BREAK_MINUTES, minutes))


async def _teachers_by_email(db: AsyncSession, emails: List[str]) -> Dict[str, User]:
    if not emails:
        return {}
    result = await db.execute(
        select(User).where(
            func.lower(User.email).in_(emails),
            User.role == UserRole.TEACHER.value,
        )
    )
    return {u.email.lower(): u for u in result.scalars().all()}


async def _reject_stale_requests(
    db: AsyncSession,
    teacher_id: UUID,
    day: date,
    slot_ids: List[str],
    actor_id: UUID,
) -> int:
    """Pending slot and break requests would overwrite the imported state once approved."""
    iso = day.isoformat()
    rejected = 0
    for slot_id in slot_ids:
        rejected += await approvals_service.reject_pending(
            db,
            ApprovalType.TIME_SLOT,
            teacher_id,
            reason=REIMPORT_REASON,
            actor_id=actor_id,
            natural_key_prefix=f"{iso}|{slot_id}|",
        )
    rejected += await approvals_service.reject_pending(
        db,
        ApprovalType.BREAK_TIMING,
        teacher_id,
        reason=REIMPORT_REASON,
        actor_id=actor_id,
        natural_key_prefix=f"{iso}|",
    )
    return rejected


async def apply_timetable(db: AsyncSession, payload: TimetableApply, actor_id: UUID) -> TimetableApplyResult:
    """
    Import entries onto ledgers. Bad entries are reported, the rest are applied together.

    Pending slot requests for the scheduled slots and break requests for the day are
    auto-rejected. Each import that touched at least one day is kept in the history.
    """
    teachers = await _teachers_by_email(db, sorted({e.teacher_email for e in payload.entries}))
    errors: List[TimetableEntryError] = []
    groups: "OrderedDict[Tuple[UUID, date], dict]" = OrderedDict()

    for index, entry in enumerate(payload.entries):
        teacher = teachers.get(entry.teacher_email)
        if not teacher:
            errors.append(TimetableEntryError(
                index=index, teacher_email=entry.teacher_email, message=f"Teacher not found: {entry.teacher_email}",
            ))
            continue
        try:
            day = date.fromisoformat(entry.ledger_date.strip())
        except ValueError:
            errors.append(TimetableEntryError(
                index=index, teacher_email=entry.teacher_email, message=f"Invalid date: {entry.ledger_date}",
            ))
            continue

        slot_ids = [s for s in entry.slot_ids if is_valid_slot(s)]
        group = groups.setdefault((teacher.id, day), {
            "teacher": teacher,
            "slot_ids": set(),
            "break_minutes": None,
            "entries": [],
        })
        group["slot_ids"].update(slot_ids)
        if entry.break_minutes is not None:
            group["break_minutes"] = _clamp_break(entry.break_minutes)
        if entry.subject_name:
            group["entries"].append(
                ScheduleEntry(subject_name=entry.subject_name, batch=entry.batch, slot_ids=sorted(slot_ids, key=slot_order))
            )

    applied: List[AppliedDay] = []
    now = datetime.utcnow()
    for (teacher_id, day), group in groups.items():
        ledger = await ledger_service.load_ledger(db, teacher_id, day)
        scheduled = sorted(group["slot_ids"], key=slot_order)
        for slot_id in scheduled:
            slot = ledger.get_slot(slot_id)
            slot.checked = False
            slot.checked_at = None
        await _reject_stale_requests(db, teacher_id, day, scheduled, actor_id)

        if group["break_minutes"]:
            ledger.break_duration = group["break_minutes"]
            ledger.break_checked = True
            ledger.break_checked_at = now
        else:
            ledger.break_duration = None
            ledger.break_checked = False
            ledger.break_checked_at = None

        ledger.scheduled_slot_ids = scheduled
        ledger.schedule_entries = [e.model_dump() for e in group["entries"]]
        ledger.recompute_total_hours()
        ledger.updated_at = now

        applied.append(AppliedDay(
            teacher_id=teacher_id,
            teacher_email=group["teacher"].email,
            ledger_date=day,
            scheduled_slot_ids=scheduled,
            break_duration=ledger.break_duration,
            schedule_entries=group["entries"],
        ))

    record = None
    if applied:
        record = TimetableImport(
            imported_by=actor_id,
            entries=[e.model_dump(mode="json", by_alias=True) for e in payload.entries],
            teacher_emails=sorted({d.teacher_email for d in applied}),
            teacher_names=sorted({g["teacher"].full_name for g in groups.values()}),
            batch_names=sorted({e.batch for e in payload.entries if e.batch}),
            applied_days=len(applied),
            error_count=len(errors),
        )
        db.add(record)

    await db.commit()
    logger.info("timetable applied days=%d errors=%d by=%s", len(applied), len(errors), actor_id)
    return TimetableApplyResult(applied=applied, errors=errors, import_id=record.id if record else None)


async def list_history(db: AsyncSession, imported_by: UUID) -> List[TimetableImportResponse]:
    """The reviewer's own uploads, newest first."""
    result = await db.execute(
        select(TimetableImport)
        .where(TimetableImport.imported_by == imported_by)
        .order_by(TimetableImport.created_at.desc())
        .limit(HISTORY_LIMIT)
    )
    return [TimetableImportResponse.model_validate(r) for r in result.scalars().all()]


async def delete_history(db: AsyncSession, import_id: UUID, imported_by: UUID) -> None:
    """Forget an upload record. Ledgers it touched are left as they are."""
    result = await db.execute(
        select(TimetableImport).where(
            TimetableImport.id == import_id,
            TimetableImport.imported_by == imported_by,
        )
    )
    record = result.scalar_one_or_none()
    if not record:
        raise NotFoundError("History record not found")
    await db.delete(record)
    await db.commit()
    logger.info("timetable history deleted id=%s", import_id)


async def set_day_subject(
    db: AsyncSession,
    teacher_id: UUID,
    ledger_date: date,
    subject_name: str,
    batch: Optional[str] = None,
) -> LedgerResponse:
    """Teacher correction: one subject/batch for the whole scheduled day."""
    ledger = await ledger_service.fetch_ledger(db, teacher_id, ledger_date)
    if not ledger:
        raise NotFoundError("No timetable found for this day")
    slot_ids = list(ledger.scheduled_slot_ids or SLOT_DEFINITIONS)
    ledger.schedule_entries = [
        ScheduleEntry(subject_name=subject_name.strip(), batch=batch, slot_ids=slot_ids).model_dump()
    ]
    ledger.updated_at = datetime.utcnow()
    await db.commit()
    logger.info("day subject set teacher=%s date=%s subject=%s", teacher_id, ledger_date, subject_name)
    ledger = await ledger_service.fetch_ledger(db, teacher_id, ledger_date)
    return ledger_service.ledger_to_response(ledger)


def _latest_slot_approvals(requests: List[ApprovalRequest]) -> Dict[Tuple[str, str], ApprovalRequest]:
    # Requests arrive oldest first, so later ones win
    latest: Dict[Tuple[str, str], ApprovalRequest] = {}
    for req in requests:
        data = req.request_data or {}
        if data.get("ledger_date") and data.get("slot_id"):
            latest[(data["ledger_date"], data["slot_id"])] = req
    return latest


async def get_calendar(
    db: AsyncSession,
    teacher_id: UUID,
    start_date: date,
    end_date: date,
) -> CalendarResponse:
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    if (end_date - start_date).days + 1 > MAX_CALENDAR_DAYS:
        raise ValidationError(f"Calendar range is limited to {MAX_CALENDAR_DAYS} days")

    result = await db.execute(
        select(TimeSlotLedger)
        .options(selectinload(TimeSlotLedger.slots))
        .where(
            TimeSlotLedger.teacher_id == teacher_id,
            TimeSlotLedger.ledger_date >= start_date,
            TimeSlotLedger.ledger_date <= end_date,
        )
        .order_by(TimeSlotLedger.ledger_date)
        .execution_options(populate_existing=True)
    )
    ledgers = result.scalars().all()

    day_after = end_date + timedelta(days=1)
    approvals = _latest_slot_approvals(
        await approvals_service.list_by_key_range(
            db, ApprovalType.TIME_SLOT, teacher_id, start_date.isoformat(), day_after.isoformat()
        )
    )

    days: List[CalendarDay] = []
    for ledger in ledgers:
        iso = ledger.ledger_date.isoformat()
        slots: List[CalendarSlot] = []
        for slot_id, (label, _) in SLOT_DEFINITIONS.items():
            row = ledger.get_slot(slot_id)
            checked = bool(row.checked) if row else False
            req = approvals.get((iso, slot_id))
            if req:
                slot_status = req.status
            else:
                slot_status = ApprovalStatus.APPROVED.value if checked else ApprovalStatus.PENDING.value
            slots.append(CalendarSlot(
                slot_id=slot_id,
                label=row.label if row else label,
                checked=checked,
                status=slot_status,
                approval_id=req.id if req else None,
            ))
        days.append(CalendarDay(
            ledger_date=ledger.ledger_date,
            total_hours=ledger.total_hours or 0.0,
            break_duration=ledger.break_duration,
            break_checked=bool(ledger.break_checked),
            scheduled_slot_ids=ledger.scheduled_slot_ids,
            schedule_entries=[ScheduleEntry(**e) for e in (ledger.schedule_entries or [])],
            slots=slots,
        ))

    unit_logs = await units_service.list_unit_logs(
        db,
        teacher_id,
        datetime.combine(start_date, time.min),
        datetime.combine(day_after, time.min),
    )
    return CalendarResponse(start_date=start_date, end_date=end_date, days=days, unit_logs=unit_logs)
