"""
Unit lifecycle: one log per (unit, teacher), not-started -> in-progress -> completed.

A completed unit can be started again; the same row is reopened. At most one unit per
(teacher, subject) is in progress at a time.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.approvals import service as approvals_service
from app.api.v1.approvals.schemas import UnitCompletePayload, UnitStartPayload
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.enums import ApprovalType, UnitStatus
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, StateError
from app.core.models import Subject, TeacherSubject, Unit, UnitLog

from .schemas import UnitActionResponse, UnitLogResponse, UnitProgressResponse

logger = logging.getLogger("teaching.units")


def _to_response(log: UnitLog) -> UnitLogResponse:
    return UnitLogResponse.model_validate(log)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values, PostgreSQL aware ones
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def _get_unit_and_subject(db: AsyncSession, unit_id: UUID) -> Tuple[Unit, Subject]:
    unit = await db.get(Unit, unit_id)
    if not unit:
        raise NotFoundError("Unit not found")
    subject = await db.get(Subject, unit.subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    return unit, subject


async def teaches_subject(db: AsyncSession, teacher_id: UUID, subject: Subject) -> bool:
    if subject.teacher_id == teacher_id:
        return True
    result = await db.execute(
        select(TeacherSubject.id).where(
            TeacherSubject.teacher_id == teacher_id,
            TeacherSubject.subject_id == subject.id,
        )
    )
    return result.first() is not None


async def _find_log(db: AsyncSession, unit_id: UUID, teacher_id: UUID) -> Optional[UnitLog]:
    result = await db.execute(
        select(UnitLog).where(UnitLog.unit_id == unit_id, UnitLog.teacher_id == teacher_id)
    )
    return result.scalar_one_or_none()


async def start_unit_log(
    db: AsyncSession,
    unit_id: UUID,
    teacher_id: UUID,
    enforce_ownership: bool = True,
) -> UnitLog:
    """Move a unit to in-progress for the teacher. Flushes, does not commit."""
    unit, subject = await _get_unit_and_subject(db, unit_id)
    if enforce_ownership and not await teaches_subject(db, teacher_id, subject):
        raise ForbiddenError("You are not assigned to this subject")

    log = await _find_log(db, unit_id, teacher_id)
    if log and log.status == UnitStatus.IN_PROGRESS.value:
        raise StateError("Unit is already in progress", current_status=log.status)

    result = await db.execute(
        select(Unit.name)
        .join(UnitLog, UnitLog.unit_id == Unit.id)
        .where(
            UnitLog.teacher_id == teacher_id,
            UnitLog.subject_id == subject.id,
            UnitLog.status == UnitStatus.IN_PROGRESS.value,
            UnitLog.unit_id != unit_id,
        )
        .limit(1)
    )
    blocking = result.scalar_one_or_none()
    if blocking:
        raise ConflictError(
            f"Another unit ({blocking}) in {subject.name} is already in progress. "
            "Please complete it before starting a new one."
        )

    now = datetime.utcnow()
    if log:
        # Restart reopens the existing row
        log.status = UnitStatus.IN_PROGRESS.value
        log.start_time = now
        log.end_time = None
        log.total_minutes = 0
        log.updated_at = now
    else:
        log = UnitLog(
            unit_id=unit.id,
            teacher_id=teacher_id,
            subject_id=subject.id,
            status=UnitStatus.IN_PROGRESS.value,
            start_time=now,
            total_minutes=0,
        )
        db.add(log)

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.warning("concurrent unit start unit=%s teacher=%s", unit_id, teacher_id)
        raise ConflictError("This unit was started concurrently. Please refresh and try again.")
    logger.info("unit started unit=%s teacher=%s", unit_id, teacher_id)
    return log


async def complete_unit_log(db: AsyncSession, unit_id: UUID, teacher_id: UUID) -> UnitLog:
    """Close an in-progress log and record its duration. Flushes, does not commit."""
    log = await _find_log(db, unit_id, teacher_id)
    if not log:
        raise NotFoundError("Unit log not found. Please start the unit first.")
    if log.status != UnitStatus.IN_PROGRESS.value:
        raise StateError(
            f"Unit is not in progress (current status: {log.status})",
            current_status=log.status,
        )

    now = datetime.utcnow()
    elapsed = (as_utc(now) - as_utc(log.start_time)).total_seconds()
    log.status = UnitStatus.COMPLETED.value
    log.end_time = now
    log.total_minutes = max(0, round(elapsed / 60))
    log.updated_at = now
    await db.flush()
    logger.info("unit completed unit=%s teacher=%s minutes=%s", unit_id, teacher_id, log.total_minutes)
    return log


def _target_teacher(actor: CurrentUser, teacher_id: Optional[UUID]) -> UUID:
    # Admins may act on behalf of a teacher
    if teacher_id and actor.is_admin:
        return teacher_id
    return actor.id


async def start_unit(
    db: AsyncSession,
    unit_id: UUID,
    actor: CurrentUser,
    teacher_id: Optional[UUID] = None,
) -> UnitActionResponse:
    target = _target_teacher(actor, teacher_id)
    if settings.unit_start_requires_approval and not actor.is_admin:
        _, subject = await _get_unit_and_subject(db, unit_id)
        if not await teaches_subject(db, target, subject):
            raise ForbiddenError("You are not assigned to this subject")
        approval = await approvals_service.submit(
            db,
            ApprovalType.UNIT_START,
            actor.id,
            UnitStartPayload(teacher_id=target, unit_id=unit_id, subject_id=subject.id),
        )
        return UnitActionResponse(immediate=False, approval=approval)

    log = await start_unit_log(db, unit_id, target, enforce_ownership=not actor.is_admin)
    await db.commit()
    return UnitActionResponse(immediate=True, unit_log=_to_response(log))


async def complete_unit(
    db: AsyncSession,
    unit_id: UUID,
    actor: CurrentUser,
    teacher_id: Optional[UUID] = None,
) -> UnitActionResponse:
    target = _target_teacher(actor, teacher_id)
    if settings.unit_complete_requires_approval and not actor.is_admin:
        log = await _find_log(db, unit_id, target)
        if not log:
            raise NotFoundError("Unit log not found. Please start the unit first.")
        if log.status != UnitStatus.IN_PROGRESS.value:
            raise StateError(
                f"Unit is not in progress (current status: {log.status})",
                current_status=log.status,
            )
        approval = await approvals_service.submit(
            db,
            ApprovalType.UNIT_COMPLETE,
            actor.id,
            UnitCompletePayload(teacher_id=target, unit_id=unit_id),
        )
        return UnitActionResponse(immediate=False, approval=approval)

    log = await complete_unit_log(db, unit_id, target)
    await db.commit()
    return UnitActionResponse(immediate=True, unit_log=_to_response(log))


async def list_subject_units(
    db: AsyncSession,
    subject_id: UUID,
    teacher_id: Optional[UUID] = None,
) -> List[UnitProgressResponse]:
    """Units of a subject in order, with the teacher's status on each (owner by default)."""
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    teacher_id = teacher_id or subject.teacher_id

    result = await db.execute(select(Unit).where(Unit.subject_id == subject_id).order_by(Unit.order, Unit.name))
    units = result.scalars().all()

    logs = {}
    if teacher_id:
        result = await db.execute(
            select(UnitLog).where(UnitLog.subject_id == subject_id, UnitLog.teacher_id == teacher_id)
        )
        logs = {log.unit_id: log for log in result.scalars().all()}

    out = []
    for u in units:
        log = logs.get(u.id)
        out.append(
            UnitProgressResponse(
                unit_id=u.id,
                subject_id=u.subject_id,
                name=u.name,
                order=u.order,
                status=log.status if log else UnitStatus.NOT_STARTED.value,
                log_id=log.id if log else None,
                start_time=log.start_time if log and log.status != UnitStatus.NOT_STARTED.value else None,
                end_time=log.end_time if log else None,
                total_minutes=log.total_minutes if log else 0,
            )
        )
    return out


async def list_unit_logs(
    db: AsyncSession,
    teacher_id: UUID,
    start: datetime,
    end: datetime,
) -> List[UnitLogResponse]:
    """Logs started in [start, end), oldest first. Not-started logs are excluded."""
    result = await db.execute(
        select(UnitLog)
        .where(
            UnitLog.teacher_id == teacher_id,
            UnitLog.status != UnitStatus.NOT_STARTED.value,
            UnitLog.start_time >= start,
            UnitLog.start_time < end,
        )
        .order_by(UnitLog.start_time)
    )
    return [_to_response(log) for log in result.scalars().all()]
