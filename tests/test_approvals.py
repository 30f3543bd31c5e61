import uuid
from datetime import date
from typing import List

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.approvals import service as approvals_service
from app.api.v1.units import service as units_service
from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.core.enums import ApprovalDecision, ApprovalStatus, ApprovalType, UnitStatus
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, StateError, ValidationError
from app.core.models import ApprovalRequest, Subject, Unit

DAY = date(2026, 3, 3)


def _slot_payload(teacher: User, slot_id: str = "9-10") -> dict:
    return {"teacher_id": str(teacher.id), "ledger_date": DAY.isoformat(), "slot_id": slot_id}


@pytest.mark.asyncio
async def test_identical_pending_submit_returns_same_request(db_session: AsyncSession, teacher: User) -> None:
    first = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    second = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    other = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher, "10-11"))

    assert first.id == second.id
    assert other.id != first.id
    pending = await approvals_service.list_pending(db_session)
    assert len(pending) == 2


@pytest.mark.asyncio
async def test_pending_uniqueness_is_enforced_by_the_database(db_session: AsyncSession, teacher: User) -> None:
    for _ in range(2):
        db_session.add(ApprovalRequest(
            type=ApprovalType.TIME_SLOT.value,
            status=ApprovalStatus.PENDING.value,
            requested_by=teacher.id,
            request_data=_slot_payload(teacher),
            natural_key=f"{DAY.isoformat()}|9-10|1",
        ))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_resubmit_after_rejection_creates_new_request(
    db_session: AsyncSession, teacher: User, verifier: User
) -> None:
    first = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    await approvals_service.decide(db_session, first.id, ApprovalDecision.REJECTED, verifier.id)

    second = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    assert second.id != first.id
    assert second.status == ApprovalStatus.PENDING.value


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "approval_type, data",
    [
        (ApprovalType.TIME_SLOT, {"ledger_date": "2026-03-03", "slot_id": "7-8"}),
        (ApprovalType.TIME_SLOT, {"ledger_date": "not-a-date", "slot_id": "9-10"}),
        (ApprovalType.BREAK_TIMING, {"ledger_date": "2026-03-03", "break_minutes": 500}),
        (ApprovalType.BREAK_TIMING, {"ledger_date": "2026-03-03", "break_minutes": 0}),
        (ApprovalType.UNIT_START, {}),
    ],
)
async def test_malformed_payloads_are_validation_errors(
    db_session: AsyncSession, teacher: User, approval_type: ApprovalType, data: dict
) -> None:
    payload = {"teacher_id": str(teacher.id), **data}
    with pytest.raises(ValidationError):
        await approvals_service.submit(db_session, approval_type, teacher.id, payload)


@pytest.mark.asyncio
async def test_payload_type_must_match(db_session: AsyncSession, teacher: User) -> None:
    payload = {**_slot_payload(teacher), "type": "break-timing"}
    with pytest.raises(ValidationError, match="does not match"):
        await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, payload)


@pytest.mark.asyncio
async def test_reject_is_a_pure_transition(db_session: AsyncSession, teacher: User, verifier: User) -> None:
    req = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))

    result = await approvals_service.decide(db_session, req.id, ApprovalDecision.REJECTED, verifier.id)

    assert result.approval.status == ApprovalStatus.REJECTED.value
    assert result.approval.rejection_reason == "No reason provided"
    assert result.approval.approved_by == verifier.id
    assert result.approval.rejected_at is not None
    assert result.processed is None


@pytest.mark.asyncio
async def test_terminal_requests_cannot_be_decided_again(
    db_session: AsyncSession, teacher: User, verifier: User
) -> None:
    req = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)

    with pytest.raises(StateError) as exc:
        await approvals_service.decide(db_session, req.id, ApprovalDecision.REJECTED, verifier.id)
    assert exc.value.current_status == ApprovalStatus.APPROVED.value

    with pytest.raises(NotFoundError):
        await approvals_service.decide(db_session, uuid.uuid4(), ApprovalDecision.APPROVED, verifier.id)


@pytest.mark.asyncio
async def test_approved_time_slot_creates_ledger(db_session: AsyncSession, teacher: User, verifier: User) -> None:
    req = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher, "14-15"))

    result = await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)

    assert result.approval.status == ApprovalStatus.APPROVED.value
    assert result.approval.approved_at is not None
    ledger = result.processed["ledger"]
    assert ledger["ledger_date"] == DAY.isoformat()
    assert [s["slot_id"] for s in ledger["slots"] if s["checked"]] == ["14-15"]
    assert ledger["total_hours"] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_unit_start_applier_revalidates_and_leaves_request_pending(
    db_session: AsyncSession, teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    algebra, geometry, _ = units
    req = await approvals_service.submit(
        db_session,
        ApprovalType.UNIT_START,
        teacher.id,
        {"teacher_id": str(teacher.id), "unit_id": str(geometry.id), "subject_id": str(subject.id)},
    )
    # Another unit of the same subject starts between submit and decide
    await units_service.start_unit(db_session, algebra.id, CurrentUser(id=teacher.id, role=teacher.role))

    with pytest.raises(ConflictError, match="Algebra"):
        await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)

    still = await approvals_service.get_request(db_session, req.id)
    assert still.status == ApprovalStatus.PENDING.value
    assert still.approved_by is None


@pytest.mark.asyncio
async def test_unit_complete_applier(
    db_session: AsyncSession, teacher: User, verifier: User, subject: Subject, units: List[Unit]
) -> None:
    actor = CurrentUser(id=teacher.id, role=teacher.role)
    await units_service.start_unit(db_session, units[0].id, actor)
    req = await approvals_service.submit(
        db_session,
        ApprovalType.UNIT_COMPLETE,
        teacher.id,
        {"teacher_id": str(teacher.id), "unit_id": str(units[0].id)},
    )

    result = await approvals_service.decide(db_session, req.id, ApprovalDecision.APPROVED, verifier.id)

    assert result.processed["unit_log"]["status"] == UnitStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_cancel_own_pending_request(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User
) -> None:
    req = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))

    with pytest.raises(ForbiddenError):
        await approvals_service.cancel(db_session, req.id, other_teacher.id)

    cancelled = await approvals_service.cancel(db_session, req.id, teacher.id)
    assert cancelled.status == ApprovalStatus.REJECTED.value
    assert cancelled.rejection_reason == "cancelled by teacher"

    with pytest.raises(StateError):
        await approvals_service.cancel(db_session, req.id, teacher.id)


@pytest.mark.asyncio
async def test_list_filters_and_requester_feed(
    db_session: AsyncSession, teacher: User, other_teacher: User, verifier: User
) -> None:
    a = await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, teacher.id, _slot_payload(teacher))
    await approvals_service.submit(
        db_session,
        ApprovalType.BREAK_TIMING,
        teacher.id,
        {"teacher_id": str(teacher.id), "ledger_date": DAY.isoformat(), "break_minutes": 30},
    )
    await approvals_service.submit(db_session, ApprovalType.TIME_SLOT, other_teacher.id, _slot_payload(other_teacher))
    await approvals_service.decide(db_session, a.id, ApprovalDecision.REJECTED, verifier.id, reason="no")

    slot_requests = await approvals_service.list_requests(db_session, approval_type=ApprovalType.TIME_SLOT.value)
    assert len(slot_requests) == 2
    rejected = await approvals_service.list_requests(db_session, status=ApprovalStatus.REJECTED.value)
    assert [r.id for r in rejected] == [a.id]
    mine = await approvals_service.list_for_requester(db_session, teacher.id)
    assert len(mine) == 2
    assert all(r.requested_by == teacher.id for r in mine)
