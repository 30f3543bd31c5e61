"""
Subject transfer workflow.

pending --admin approve--> admin_approved --recipient accept--> approved
   |                             |
   +--admin reject--> rejected <-+--recipient decline

Data moves only on the recipient's acceptance, in one transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.core.enums import IN_FLIGHT_ASSIGNMENT_STATUSES, AssignmentStatus, UnitStatus, UserRole
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ServiceError, StateError, ValidationError
from app.core.models import Subject, SubjectAssignment, TeacherSubject, Unit, UnitLog, User
from app.db.upsert import insert_ignore

from .schemas import AssignmentAcceptResponse, AssignmentCreate, AssignmentResponse, TransferSummary

logger = logging.getLogger("teaching.assignments")


def _to_response(a: SubjectAssignment) -> AssignmentResponse:
    return AssignmentResponse(
        id=a.id,
        subject_id=a.subject_id,
        from_teacher_id=a.from_teacher_id,
        to_teacher_id=a.to_teacher_id,
        remaining_unit_ids=[UUID(u) for u in (a.remaining_unit_ids or [])],
        reason=a.reason,
        status=a.status,
        requested_by=a.requested_by,
        approved_by=a.approved_by,
        rejection_reason=a.rejection_reason,
        approved_at=a.approved_at,
        accepted_at=a.accepted_at,
        rejected_at=a.rejected_at,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


async def get_subject(db: AsyncSession, subject_id: UUID) -> Subject:
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError("Subject not found")
    return subject


async def require_teacher_user(db: AsyncSession, user_id: UUID, label: str) -> User:
    user = await db.get(User, user_id)
    if not user or user.role != UserRole.TEACHER.value:
        raise ValidationError(f"{label} must be an existing teacher")
    return user


async def find_in_flight(db: AsyncSession, subject_id: UUID) -> Optional[SubjectAssignment]:
    result = await db.execute(
        select(SubjectAssignment)
        .where(
            SubjectAssignment.subject_id == subject_id,
            SubjectAssignment.status.in_(IN_FLIGHT_ASSIGNMENT_STATUSES),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def compute_remaining_units(
    db: AsyncSession,
    subject_id: UUID,
    from_teacher_id: Optional[UUID],
) -> List[UUID]:
    """Subject units the source teacher has not completed, in curriculum order."""
    result = await db.execute(select(Unit.id).where(Unit.subject_id == subject_id).order_by(Unit.order, Unit.name))
    unit_ids = list(result.scalars().all())
    if not from_teacher_id:
        return unit_ids
    result = await db.execute(
        select(UnitLog.unit_id).where(
            UnitLog.subject_id == subject_id,
            UnitLog.teacher_id == from_teacher_id,
            UnitLog.status == UnitStatus.COMPLETED.value,
        )
    )
    completed = set(result.scalars().all())
    return [u for u in unit_ids if u not in completed]


async def resolve_unit_ids(
    db: AsyncSession,
    subject_id: UUID,
    from_teacher_id: Optional[UUID],
    unit_ids: Optional[Sequence[UUID]],
) -> List[UUID]:
    """Explicit unit subset (validated against the subject) or the computed remaining units."""
    if not unit_ids:
        return await compute_remaining_units(db, subject_id, from_teacher_id)
    requested = list(dict.fromkeys(unit_ids))
    result = await db.execute(select(Unit.id).where(Unit.subject_id == subject_id, Unit.id.in_(requested)))
    known = set(result.scalars().all())
    unknown = [str(u) for u in requested if u not in known]
    if unknown:
        raise ValidationError(f"Units do not belong to this subject: {', '.join(unknown)}")
    return requested


async def request_assignment(
    db: AsyncSession,
    requested_by: UUID,
    payload: AssignmentCreate,
) -> AssignmentResponse:
    subject = await get_subject(db, payload.subject_id)

    from_teacher_id = subject.teacher_id
    if payload.from_teacher_id is not None:
        await require_teacher_user(db, payload.from_teacher_id, "Source teacher")
        if payload.from_teacher_id != subject.teacher_id:
            raise ValidationError("Source teacher does not currently own this subject")
        from_teacher_id = payload.from_teacher_id

    await require_teacher_user(db, payload.to_teacher_id, "Target teacher")
    if payload.to_teacher_id == from_teacher_id:
        raise ValidationError("Cannot assign a subject to the teacher who already owns it")

    if await find_in_flight(db, subject.id):
        raise ConflictError("There is already a pending assignment request for this subject")

    remaining = await resolve_unit_ids(db, subject.id, from_teacher_id, payload.unit_ids)
    assignment = SubjectAssignment(
        from_teacher_id=from_teacher_id,
        to_teacher_id=payload.to_teacher_id,
        subject_id=subject.id,
        remaining_unit_ids=[str(u) for u in remaining],
        reason=(payload.reason or "").strip() or "Assignment request",
        status=AssignmentStatus.PENDING.value,
        requested_by=requested_by,
    )
    db.add(assignment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning("concurrent assignment request for subject %s", subject.id)
        raise ConflictError("There is already a pending assignment request for this subject")
    await db.refresh(assignment)
    logger.info(
        "assignment requested id=%s subject=%s from=%s to=%s units=%d",
        assignment.id, subject.id, from_teacher_id, payload.to_teacher_id, len(remaining),
    )
    return _to_response(assignment)


async def list_assignments(db: AsyncSession, status: Optional[str] = None) -> List[AssignmentResponse]:
    q = select(SubjectAssignment)
    if status:
        q = q.where(SubjectAssignment.status == status)
    q = q.order_by(SubjectAssignment.created_at.desc())
    result = await db.execute(q)
    return [_to_response(a) for a in result.scalars().all()]


async def list_teacher_assignments(db: AsyncSession, teacher_id: UUID) -> List[AssignmentResponse]:
    """Assignments where the teacher is the source or the recipient."""
    result = await db.execute(
        select(SubjectAssignment)
        .where(
            or_(
                SubjectAssignment.to_teacher_id == teacher_id,
                SubjectAssignment.from_teacher_id == teacher_id,
            )
        )
        .order_by(SubjectAssignment.created_at.desc())
    )
    return [_to_response(a) for a in result.scalars().all()]


async def _get_assignment(db: AsyncSession, assignment_id: UUID) -> SubjectAssignment:
    result = await db.execute(
        select(SubjectAssignment).where(SubjectAssignment.id == assignment_id).with_for_update()
    )
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise NotFoundError("Assignment request not found")
    return assignment


async def admin_decide(
    db: AsyncSession,
    assignment_id: UUID,
    admin_id: UUID,
    approve: bool,
    reason: Optional[str] = None,
) -> AssignmentResponse:
    """First stage. Approval only forwards the request to the recipient; nothing moves yet."""
    assignment = await _get_assignment(db, assignment_id)
    now = datetime.utcnow()

    if approve:
        if assignment.status == AssignmentStatus.ADMIN_APPROVED.value:
            return _to_response(assignment)
        if assignment.status != AssignmentStatus.PENDING.value:
            raise StateError(
                f"Cannot approve assignment with status: {assignment.status}",
                current_status=assignment.status,
            )
        assignment.status = AssignmentStatus.ADMIN_APPROVED.value
        assignment.approved_at = now
    else:
        if assignment.status != AssignmentStatus.PENDING.value:
            raise StateError(
                f"Cannot reject assignment with status: {assignment.status}",
                current_status=assignment.status,
            )
        assignment.status = AssignmentStatus.REJECTED.value
        assignment.rejection_reason = (reason or "").strip() or "Rejected by admin"
        assignment.rejected_at = now

    assignment.approved_by = admin_id
    assignment.updated_at = now
    await db.commit()
    await db.refresh(assignment)
    logger.info("assignment %s by admin id=%s admin=%s", assignment.status, assignment.id, admin_id)
    return _to_response(assignment)


async def transfer_subject(
    db: AsyncSession,
    subject_id: UUID,
    to_teacher_id: UUID,
    from_teacher_id: Optional[UUID],
    remaining_unit_ids: Sequence,
) -> TransferSummary:
    """
    Move a subject to `to_teacher_id`. Flushes, does not commit.

    Order: owner, subject sets, re-parent the source's open logs, seed not-started logs for
    the remaining units. A re-parented in-progress log is demoted to not-started when the
    recipient already has a unit of this subject in progress. Units the recipient already
    has a log for are left with the source, demoted to not-started if they were open.
    """
    subject = await get_subject(db, subject_id)
    now = datetime.utcnow()
    summary = TransferSummary(subject_id=subject_id, from_teacher_id=from_teacher_id, to_teacher_id=to_teacher_id)

    # (a) owner
    subject.teacher_id = to_teacher_id

    # (b) subject sets
    await insert_ignore(
        db,
        TeacherSubject,
        [{"id": uuid.uuid4(), "teacher_id": to_teacher_id, "subject_id": subject_id, "created_at": now}],
        ["teacher_id", "subject_id"],
    )
    if from_teacher_id and from_teacher_id != to_teacher_id:
        await db.execute(
            delete(TeacherSubject).where(
                TeacherSubject.teacher_id == from_teacher_id,
                TeacherSubject.subject_id == subject_id,
            )
        )

    result = await db.execute(
        select(UnitLog).where(UnitLog.teacher_id == to_teacher_id, UnitLog.subject_id == subject_id)
    )
    recipient_logs = result.scalars().all()
    recipient_units = {log.unit_id for log in recipient_logs}
    recipient_active = any(log.status == UnitStatus.IN_PROGRESS.value for log in recipient_logs)

    # (c) re-parent open logs
    if from_teacher_id and from_teacher_id != to_teacher_id:
        result = await db.execute(
            select(UnitLog).where(
                UnitLog.teacher_id == from_teacher_id,
                UnitLog.subject_id == subject_id,
                UnitLog.status.in_([UnitStatus.NOT_STARTED.value, UnitStatus.IN_PROGRESS.value]),
            )
        )
        for log in result.scalars().all():
            if log.unit_id in recipient_units:
                # Source no longer owns the subject, so its copy cannot stay open
                if log.status == UnitStatus.IN_PROGRESS.value:
                    log.status = UnitStatus.NOT_STARTED.value
                    log.end_time = None
                    log.updated_at = now
                    summary.demoted_logs += 1
                summary.skipped_logs += 1
                continue
            if log.status == UnitStatus.IN_PROGRESS.value:
                if recipient_active:
                    log.status = UnitStatus.NOT_STARTED.value
                    log.end_time = None
                    summary.demoted_logs += 1
                else:
                    recipient_active = True
            log.teacher_id = to_teacher_id
            log.updated_at = now
            recipient_units.add(log.unit_id)
            summary.moved_logs += 1

    # (d) seed remaining units
    wanted = [u if isinstance(u, UUID) else UUID(str(u)) for u in remaining_unit_ids]
    if wanted:
        result = await db.execute(select(Unit.id).where(Unit.subject_id == subject_id, Unit.id.in_(wanted)))
        existing_units = set(result.scalars().all())
        for unit_id in dict.fromkeys(wanted):
            if unit_id not in existing_units or unit_id in recipient_units:
                continue
            db.add(
                UnitLog(
                    unit_id=unit_id,
                    teacher_id=to_teacher_id,
                    subject_id=subject_id,
                    status=UnitStatus.NOT_STARTED.value,
                    start_time=now,
                    total_minutes=0,
                )
            )
            recipient_units.add(unit_id)
            summary.created_logs += 1

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.warning("transfer of subject %s collided with a concurrent change", subject_id)
        raise ConflictError("Subject data changed during the transfer. Please retry.")

    logger.info(
        "subject transferred subject=%s from=%s to=%s moved=%d demoted=%d skipped=%d created=%d",
        subject_id, from_teacher_id, to_teacher_id,
        summary.moved_logs, summary.demoted_logs, summary.skipped_logs, summary.created_logs,
    )
    return summary


async def recipient_decide(
    db: AsyncSession,
    assignment_id: UUID,
    actor: CurrentUser,
    approve: bool,
    reason: Optional[str] = None,
) -> AssignmentAcceptResponse:
    """Second stage. Acceptance performs the transfer."""
    assignment = await _get_assignment(db, assignment_id)
    if assignment.to_teacher_id != actor.id and not actor.is_admin:
        raise ForbiddenError("Only the receiving teacher can respond to this assignment")

    now = datetime.utcnow()
    if not approve:
        if assignment.status != AssignmentStatus.ADMIN_APPROVED.value:
            raise StateError(
                f"Cannot decline assignment with status: {assignment.status}",
                current_status=assignment.status,
            )
        assignment.status = AssignmentStatus.REJECTED.value
        assignment.rejection_reason = (reason or "").strip() or "Rejected by teacher"
        assignment.rejected_at = now
        assignment.updated_at = now
        await db.commit()
        await db.refresh(assignment)
        logger.info("assignment declined id=%s by=%s", assignment.id, actor.id)
        return AssignmentAcceptResponse(assignment=_to_response(assignment))

    if assignment.status == AssignmentStatus.APPROVED.value:
        return AssignmentAcceptResponse(assignment=_to_response(assignment))
    if assignment.status != AssignmentStatus.ADMIN_APPROVED.value:
        raise StateError(
            "Assignment must be approved by an admin before it can be accepted",
            current_status=assignment.status,
        )

    subject = await get_subject(db, assignment.subject_id)
    if subject.teacher_id != assignment.from_teacher_id:
        raise ConflictError("Subject ownership changed since this assignment was requested")

    try:
        summary = await transfer_subject(
            db,
            assignment.subject_id,
            assignment.to_teacher_id,
            assignment.from_teacher_id,
            assignment.remaining_unit_ids or [],
        )
    except ServiceError:
        await db.rollback()
        raise

    assignment.status = AssignmentStatus.APPROVED.value
    assignment.accepted_at = now
    assignment.updated_at = now
    await db.commit()
    await db.refresh(assignment)
    logger.info("assignment accepted id=%s by=%s", assignment.id, actor.id)
    return AssignmentAcceptResponse(assignment=_to_response(assignment), transfer=summary)


async def withdraw(db: AsyncSession, assignment_id: UUID, requester_id: UUID) -> None:
    """The requester deletes their own request while it is still waiting for the admin."""
    assignment = await _get_assignment(db, assignment_id)
    if assignment.requested_by != requester_id:
        raise ForbiddenError("Not authorized to withdraw this assignment")
    if assignment.status != AssignmentStatus.PENDING.value:
        raise StateError(
            f"Cannot withdraw assignment with status: {assignment.status}",
            current_status=assignment.status,
        )
    await db.delete(assignment)
    await db.commit()
    logger.info("assignment withdrawn id=%s", assignment_id)
