from typing import List

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.api.v1.approvals import service as approvals_service
from app.api.v1.assignments import service as assignments_service
from app.api.v1.assignments.schemas import AssignmentCreate
from app.api.v1.units import service as units_service
from app.auth.models import TeacherSubject, User
from app.auth.schemas import CurrentUser
from app.core.enums import ApprovalDecision, ApprovalStatus, ApprovalType, AssignmentStatus, UnitStatus
from app.core.exceptions import ConflictError, ForbiddenError, StateError, ValidationError
from app.core.models import Subject, SubjectAssignment, Unit, UnitLog


def _actor(user: User) -> CurrentUser:
    return CurrentUser(id=user.id, role=user.role)


async def _logs(db: AsyncSession, subject_id, teacher_id) -> List[UnitLog]:
    result = await db.execute(
        select(UnitLog).where(UnitLog.subject_id == subject_id, UnitLog.teacher_id == teacher_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _subject_set(db: AsyncSession, teacher_id) -> set:
    result = await db.execute(select(TeacherSubject.subject_id).where(TeacherSubject.teacher_id == teacher_id))
    return set(result.scalars().all())


async def _request(db: AsyncSession, verifier: User, subject: Subject, to: User, **kwargs):
    return await assignments_service.request_assignment(
        db, verifier.id, AssignmentCreate(subject_id=subject.id, to_teacher_id=to.id, **kwargs)
    )


@pytest.mark.asyncio
async def test_request_defaults(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    algebra = units[0]
    await units_service.start_unit(db_session, algebra.id, _actor(teacher))
    await units_service.complete_unit(db_session, algebra.id, _actor(teacher))

    assignment = await _request(db_session, verifier, subject, other_teacher)

    assert assignment.status == AssignmentStatus.PENDING.value
    assert assignment.from_teacher_id == teacher.id
    assert assignment.reason == "Assignment request"
    # Completed units stay behind
    assert assignment.remaining_unit_ids == [units[1].id, units[2].id]


@pytest.mark.asyncio
async def test_request_validation(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    with pytest.raises(ValidationError):
        await _request(db_session, verifier, subject, teacher)
    with pytest.raises(ValidationError):
        await _request(db_session, verifier, subject, verifier)
    with pytest.raises(ValidationError):
        await _request(db_session, verifier, subject, other_teacher, from_teacher_id=other_teacher.id)

    await _request(db_session, verifier, subject, other_teacher)
    with pytest.raises(ConflictError):
        await _request(db_session, verifier, subject, other_teacher)


@pytest.mark.asyncio
async def test_explicit_units_must_belong_to_subject(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    stray = Subject(name="Art", teacher_id=teacher.id)
    db_session.add(stray)
    await db_session.flush()
    stray_unit = Unit(subject_id=stray.id, name="Color", order=1)
    db_session.add(stray_unit)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await _request(db_session, verifier, subject, other_teacher, unit_ids=[stray_unit.id])

    scoped = await _request(db_session, verifier, subject, other_teacher, unit_ids=[units[2].id])
    assert scoped.remaining_unit_ids == [units[2].id]


@pytest.mark.asyncio
async def test_admin_approval_moves_nothing_and_recipient_decline(
    db_session: AsyncSession,
    teacher: User,
    other_teacher: User,
    verifier: User,
    admin: User,
    subject: Subject,
    units: List[Unit],
) -> None:
    await units_service.start_unit(db_session, units[0].id, _actor(teacher))
    assignment = await _request(db_session, verifier, subject, other_teacher)

    approved = await assignments_service.admin_decide(db_session, assignment.id, admin.id, approve=True)
    assert approved.status == AssignmentStatus.ADMIN_APPROVED.value
    again = await assignments_service.admin_decide(db_session, assignment.id, admin.id, approve=True)
    assert again.status == AssignmentStatus.ADMIN_APPROVED.value
    assert subject.teacher_id == teacher.id
    assert len(await _logs(db_session, subject.id, other_teacher.id)) == 0

    declined = await assignments_service.recipient_decide(db_session, assignment.id, _actor(other_teacher), approve=False)
    assert declined.assignment.status == AssignmentStatus.REJECTED.value
    assert declined.assignment.rejection_reason == "Rejected by teacher"
    assert declined.transfer is None

    await db_session.refresh(subject)
    assert subject.teacher_id == teacher.id
    assert len(await _logs(db_session, subject.id, other_teacher.id)) == 0
    assert len(await _logs(db_session, subject.id, teacher.id)) == 1


@pytest.mark.asyncio
async def test_recipient_cannot_accept_before_admin(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    assignment = await _request(db_session, verifier, subject, other_teacher)

    with pytest.raises(StateError) as exc:
        await assignments_service.recipient_decide(db_session, assignment.id, _actor(other_teacher), approve=True)
    assert exc.value.current_status == AssignmentStatus.PENDING.value

    with pytest.raises(ForbiddenError):
        await assignments_service.recipient_decide(db_session, assignment.id, _actor(teacher), approve=True)


@pytest.mark.asyncio
async def test_accept_transfers_subject_and_open_logs(
    db_session: AsyncSession,
    teacher: User,
    other_teacher: User,
    verifier: User,
    admin: User,
    subject: Subject,
    units: List[Unit],
) -> None:
    algebra, geometry, calculus = units
    actor = _actor(teacher)
    await units_service.start_unit(db_session, algebra.id, actor)
    await units_service.complete_unit(db_session, algebra.id, actor)
    await units_service.start_unit(db_session, geometry.id, actor)

    assignment = await _request(db_session, verifier, subject, other_teacher)
    await assignments_service.admin_decide(db_session, assignment.id, admin.id, approve=True)
    result = await assignments_service.recipient_decide(db_session, assignment.id, _actor(other_teacher), approve=True)

    assert result.assignment.status == AssignmentStatus.APPROVED.value
    assert result.assignment.accepted_at is not None
    assert result.transfer.moved_logs == 1
    assert result.transfer.created_logs == 1

    await db_session.refresh(subject)
    assert subject.teacher_id == other_teacher.id
    assert subject.id in await _subject_set(db_session, other_teacher.id)
    assert subject.id not in await _subject_set(db_session, teacher.id)

    recipient = {log.unit_id: log.status for log in await _logs(db_session, subject.id, other_teacher.id)}
    assert recipient == {
        geometry.id: UnitStatus.IN_PROGRESS.value,
        calculus.id: UnitStatus.NOT_STARTED.value,
    }
    source = {log.unit_id: log.status for log in await _logs(db_session, subject.id, teacher.id)}
    assert source == {algebra.id: UnitStatus.COMPLETED.value}

    repeat = await assignments_service.recipient_decide(db_session, assignment.id, _actor(other_teacher), approve=True)
    assert repeat.assignment.status == AssignmentStatus.APPROVED.value
    assert repeat.transfer is None


@pytest.mark.asyncio
async def test_transfer_demotes_when_recipient_already_busy(
    db_session: AsyncSession, teacher: User, other_teacher: User, subject: Subject, units: List[Unit]
) -> None:
    algebra, geometry, _ = units
    await units_service.start_unit(db_session, algebra.id, _actor(teacher))
    # Recipient is already teaching another unit of the same subject
    db_session.add(UnitLog(
        unit_id=geometry.id,
        teacher_id=other_teacher.id,
        subject_id=subject.id,
        status=UnitStatus.IN_PROGRESS.value,
        total_minutes=0,
    ))
    await db_session.commit()

    summary = await assignments_service.transfer_subject(
        db_session, subject.id, other_teacher.id, teacher.id, []
    )
    await db_session.commit()

    assert summary.moved_logs == 1
    assert summary.demoted_logs == 1
    statuses = {log.unit_id: log.status for log in await _logs(db_session, subject.id, other_teacher.id)}
    assert statuses[algebra.id] == UnitStatus.NOT_STARTED.value
    assert statuses[geometry.id] == UnitStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_withdraw_pending_assignment(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, admin: User, subject: Subject
) -> None:
    assignment = await _request(db_session, verifier, subject, other_teacher)

    with pytest.raises(ForbiddenError):
        await assignments_service.withdraw(db_session, assignment.id, admin.id)

    await assignments_service.withdraw(db_session, assignment.id, verifier.id)
    assert await assignments_service.list_assignments(db_session) == []


@pytest.mark.asyncio
async def test_admin_reject_and_listing(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, admin: User, subject: Subject
) -> None:
    assignment = await _request(db_session, verifier, subject, other_teacher)

    rejected = await assignments_service.admin_decide(db_session, assignment.id, admin.id, approve=False, reason="Not now")
    assert rejected.status == AssignmentStatus.REJECTED.value
    assert rejected.rejection_reason == "Not now"

    with pytest.raises(StateError):
        await assignments_service.admin_decide(db_session, assignment.id, admin.id, approve=True)

    assert [a.id for a in await assignments_service.list_assignments(db_session, status="rejected")] == [assignment.id]
    assert [a.id for a in await assignments_service.list_teacher_assignments(db_session, other_teacher.id)] == [assignment.id]
    assert [a.id for a in await assignments_service.list_teacher_assignments(db_session, teacher.id)] == [assignment.id]


@pytest.mark.asyncio
async def test_subject_assign_approval_transfers_directly(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    req = await approvals_service.submit(
        db_session,
        ApprovalType.SUBJECT_ASSIGN,
        verifier.id,
        {"subject_id": str(subject.id), "to_teacher_id": str(other_teacher.id), "from_teacher_id": str(teacher.id)},
    )

    result = await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)

    assert result.approval.status == ApprovalStatus.APPROVED.value
    assert result.processed["transfer"]["created_logs"] == 3
    await db_session.refresh(subject)
    assert subject.teacher_id == other_teacher.id


@pytest.mark.asyncio
async def test_subject_assign_approval_fails_on_stale_owner(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject
) -> None:
    req = await approvals_service.submit(
        db_session,
        ApprovalType.SUBJECT_ASSIGN,
        verifier.id,
        {"subject_id": str(subject.id), "to_teacher_id": str(teacher.id), "from_teacher_id": str(other_teacher.id)},
    )

    with pytest.raises(ConflictError):
        await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)
    assert (await approvals_service.get_request(db_session, req.id)).status == ApprovalStatus.PENDING.value


@pytest.mark.asyncio
async def test_in_flight_uniqueness_is_enforced_by_the_database(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User, subject: Subject
) -> None:
    def _row(status: str) -> SubjectAssignment:
        return SubjectAssignment(
            from_teacher_id=teacher.id,
            to_teacher_id=other_teacher.id,
            subject_id=subject.id,
            remaining_unit_ids=[],
            reason="Workload",
            status=status,
            requested_by=verifier.id,
        )

    # Finished requests do not count
    db_session.add_all([_row(AssignmentStatus.REJECTED.value), _row(AssignmentStatus.PENDING.value)])
    await db_session.commit()

    db_session.add(_row(AssignmentStatus.ADMIN_APPROVED.value))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_concurrent_request_becomes_conflict(
    engine: AsyncEngine,
    db_session: AsyncSession,
    teacher: User,
    other_teacher: User,
    verifier: User,
    subject: Subject,
    monkeypatch,
) -> None:
    # Another session commits its request after this one has already checked
    async_session = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as other:
        await _request(other, verifier, subject, other_teacher)

    async def _nothing_in_flight(db, subject_id):
        return None

    monkeypatch.setattr(assignments_service, "find_in_flight", _nothing_in_flight)

    with pytest.raises(ConflictError):
        await _request(db_session, verifier, subject, other_teacher)

    result = await db_session.execute(
        select(func.count(SubjectAssignment.id)).where(SubjectAssignment.subject_id == subject.id)
    )
    assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_transfer_demotes_open_log_left_with_source(
    db_session: AsyncSession, teacher: User, other_teacher: User, subject: Subject, units: List[Unit]
) -> None:
    algebra = units[0]
    await units_service.start_unit(db_session, algebra.id, _actor(teacher))
    # Recipient already has its own log for the same unit
    db_session.add(UnitLog(
        unit_id=algebra.id,
        teacher_id=other_teacher.id,
        subject_id=subject.id,
        status=UnitStatus.COMPLETED.value,
        total_minutes=30,
    ))
    await db_session.commit()

    summary = await assignments_service.transfer_subject(db_session, subject.id, other_teacher.id, teacher.id, [])
    await db_session.commit()

    assert summary.skipped_logs == 1
    assert summary.demoted_logs == 1
    source = {log.unit_id: log.status for log in await _logs(db_session, subject.id, teacher.id)}
    assert source == {algebra.id: UnitStatus.NOT_STARTED.value}
    recipient = {log.unit_id: log.status for log in await _logs(db_session, subject.id, other_teacher.id)}
    assert recipient == {algebra.id: UnitStatus.COMPLETED.value}
