"""
Progress and hours reporting, read-only over unit logs and ledgers.

Credited hours are summed from the daily ledgers. Unit hours come from the recorded
duration of completed unit logs. Either date bound may be left open.
"""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.units.service import as_utc
from app.core.enums import UnitStatus, UserRole
from app.core.exceptions import NotFoundError, ValidationError
from app.core.models import Subject, TimeSlotLedger, Unit, UnitLog, User

from .schemas import (
    IncompleteSubject,
    ProgressGroup,
    RemainingUnit,
    SubjectProgress,
    TeacherIncomplete,
    TeacherProgress,
)

# An in-progress unit open longer than this counts as delayed
DELAYED_AFTER_HOURS = 12

GROUP_BY_SUBJECT = "subject"
GROUP_BY_TEACHER = "teacher"


def _window(start_date: Optional[date], end_date: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None
    return start, end


def _percent(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(100.0 * part / whole, 1)


async def _units_by_subject(db: AsyncSession, subject_ids: List[UUID]) -> Dict[UUID, List[Unit]]:
    grouped: Dict[UUID, List[Unit]] = {s: [] for s in subject_ids}
    if not subject_ids:
        return grouped
    result = await db.execute(
        select(Unit).where(Unit.subject_id.in_(subject_ids)).order_by(Unit.order, Unit.name)
    )
    for unit in result.scalars().all():
        grouped[unit.subject_id].append(unit)
    return grouped


async def _credited_hours(
    db: AsyncSession,
    teacher_id: UUID,
    start_date: Optional[date],
    end_date: Optional[date],
) -> float:
    q = select(func.coalesce(func.sum(TimeSlotLedger.total_hours), 0.0)).where(TimeSlotLedger.teacher_id == teacher_id)
    if start_date:
        q = q.where(TimeSlotLedger.ledger_date >= start_date)
    if end_date:
        q = q.where(TimeSlotLedger.ledger_date <= end_date)
    result = await db.execute(q)
    return round(float(result.scalar_one() or 0.0), 2)


async def teacher_summary(
    db: AsyncSession,
    teacher_id: UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> TeacherProgress:
    """Per-subject unit completion for the subjects the teacher owns, plus hours in range."""
    start, end = _window(start_date, end_date)
    teacher = await db.get(User, teacher_id)
    if not teacher or teacher.role != UserRole.TEACHER.value:
        raise NotFoundError("Teacher not found")

    result = await db.execute(select(Subject).where(Subject.teacher_id == teacher_id).order_by(Subject.name))
    subjects = result.scalars().all()
    units = await _units_by_subject(db, [s.id for s in subjects])

    result = await db.execute(select(UnitLog).where(UnitLog.teacher_id == teacher_id))
    logs = result.scalars().all()
    status_by_unit = {log.unit_id: log.status for log in logs}

    subject_rows: List[SubjectProgress] = []
    for subject in subjects:
        statuses = [status_by_unit.get(u.id, UnitStatus.NOT_STARTED.value) for u in units[subject.id]]
        completed = statuses.count(UnitStatus.COMPLETED.value)
        in_progress = statuses.count(UnitStatus.IN_PROGRESS.value)
        subject_rows.append(SubjectProgress(
            subject_id=subject.id,
            subject_name=subject.name,
            total_units=len(statuses),
            completed_units=completed,
            in_progress_units=in_progress,
            not_started_units=len(statuses) - completed - in_progress,
            completion_percent=_percent(completed, len(statuses)),
        ))

    unit_minutes = 0
    completed_in_range = 0
    for log in logs:
        if log.status != UnitStatus.COMPLETED.value or log.end_time is None:
            continue
        finished = as_utc(log.end_time)
        if start and finished < as_utc(start):
            continue
        if end and finished >= as_utc(end):
            continue
        unit_minutes += log.total_minutes or 0
        completed_in_range += 1

    return TeacherProgress(
        teacher_id=teacher.id,
        full_name=teacher.full_name,
        email=teacher.email,
        start_date=start_date,
        end_date=end_date,
        credited_hours=await _credited_hours(db, teacher_id, start_date, end_date),
        unit_hours=round(unit_minutes / 60, 2),
        completed_in_range=completed_in_range,
        subjects=subject_rows,
    )


async def progress_report(
    db: AsyncSession,
    group_by: str = GROUP_BY_SUBJECT,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[ProgressGroup]:
    """
    Started units grouped by subject or by teacher. Every subject (or teacher) appears,
    with zeros when nothing was started in the range.
    """
    if group_by not in (GROUP_BY_SUBJECT, GROUP_BY_TEACHER):
        raise ValidationError(f"group_by must be '{GROUP_BY_SUBJECT}' or '{GROUP_BY_TEACHER}'")
    start, end = _window(start_date, end_date)

    groups: "OrderedDict[UUID, ProgressGroup]" = OrderedDict()
    if group_by == GROUP_BY_TEACHER:
        result = await db.execute(
            select(User).where(User.role == UserRole.TEACHER.value).order_by(User.full_name)
        )
        for user in result.scalars().all():
            groups[user.id] = ProgressGroup(id=user.id, name=user.full_name)
    else:
        result = await db.execute(select(Subject).order_by(Subject.name))
        for subject in result.scalars().all():
            groups[subject.id] = ProgressGroup(id=subject.id, name=subject.name)

    q = select(UnitLog).where(UnitLog.status != UnitStatus.NOT_STARTED.value)
    if start:
        q = q.where(UnitLog.start_time >= start)
    if end:
        q = q.where(UnitLog.start_time < end)
    result = await db.execute(q)

    now = as_utc(datetime.utcnow())
    for log in result.scalars().all():
        group = groups.get(log.teacher_id if group_by == GROUP_BY_TEACHER else log.subject_id)
        if group is None:
            continue
        group.total += 1
        if log.status == UnitStatus.COMPLETED.value:
            group.completed += 1
            group.total_hours += (log.total_minutes or 0) / 60
        else:
            hours = (now - as_utc(log.start_time)).total_seconds() / 3600
            group.total_hours += hours
            if hours > DELAYED_AFTER_HOURS:
                group.delayed += 1
            else:
                group.in_progress += 1

    for group in groups.values():
        group.total_hours = round(group.total_hours, 2)
        group.avg_hours = round(group.total_hours / group.completed, 2) if group.completed else 0.0
    return list(groups.values())


async def teachers_with_incomplete(db: AsyncSession) -> List[TeacherIncomplete]:
    """Teachers owning at least one subject with units they have not completed. Feeds transfers."""
    result = await db.execute(
        select(Subject).where(Subject.teacher_id.is_not(None)).order_by(Subject.name)
    )
    subjects = result.scalars().all()
    if not subjects:
        return []
    units = await _units_by_subject(db, [s.id for s in subjects])

    result = await db.execute(
        select(UnitLog.unit_id, UnitLog.teacher_id).where(UnitLog.status == UnitStatus.COMPLETED.value)
    )
    completed = {(row.unit_id, row.teacher_id) for row in result.all()}

    result = await db.execute(
        select(User).where(User.role == UserRole.TEACHER.value).order_by(User.full_name)
    )
    out: List[TeacherIncomplete] = []
    for teacher in result.scalars().all():
        incomplete: List[IncompleteSubject] = []
        for subject in subjects:
            if subject.teacher_id != teacher.id:
                continue
            subject_units = units[subject.id]
            remaining = [u for u in subject_units if (u.id, teacher.id) not in completed]
            if not remaining:
                continue
            incomplete.append(IncompleteSubject(
                subject_id=subject.id,
                subject_name=subject.name,
                total_units=len(subject_units),
                completed_units=len(subject_units) - len(remaining),
                remaining_units=[RemainingUnit(unit_id=u.id, name=u.name, order=u.order) for u in remaining],
            ))
        if incomplete:
            out.append(TeacherIncomplete(
                teacher_id=teacher.id,
                full_name=teacher.full_name,
                email=teacher.email,
                incomplete_subjects=incomplete,
            ))
    return out
