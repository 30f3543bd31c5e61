"""
One applier per approval type. Each re-validates against current state, mutates within the
caller's transaction (flush, no commit) and returns a JSON-ready summary of what changed.
"""

from typing import Any, Awaitable, Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.assignments import service as assignments_service
from app.api.v1.ledger import service as ledger_service
from app.api.v1.units import service as units_service
from app.api.v1.units.schemas import UnitLogResponse
from app.core.enums import ApprovalType
from app.core.exceptions import ConflictError
from app.core.models import ApprovalRequest

from .schemas import (
    BreakTimingPayload,
    SubjectAssignPayload,
    TimeSlotPayload,
    UnitCompletePayload,
    UnitStartPayload,
)
from .service import parse_payload

Applier = Callable[[AsyncSession, Any], Awaitable[Dict[str, Any]]]


async def _apply_unit_start(db: AsyncSession, payload: UnitStartPayload) -> Dict[str, Any]:
    log = await units_service.start_unit_log(db, payload.unit_id, payload.teacher_id)
    return {"unit_log": UnitLogResponse.model_validate(log).model_dump(mode="json")}


async def _apply_unit_complete(db: AsyncSession, payload: UnitCompletePayload) -> Dict[str, Any]:
    log = await units_service.complete_unit_log(db, payload.unit_id, payload.teacher_id)
    return {"unit_log": UnitLogResponse.model_validate(log).model_dump(mode="json")}


async def _apply_time_slot(db: AsyncSession, payload: TimeSlotPayload) -> Dict[str, Any]:
    ledger = await ledger_service.apply_slot_checked(
        db, payload.teacher_id, payload.ledger_date, payload.slot_id, payload.checked
    )
    await db.flush()
    return {"ledger": ledger_service.ledger_to_response(ledger).model_dump(mode="json")}


async def _apply_break_timing(db: AsyncSession, payload: BreakTimingPayload) -> Dict[str, Any]:
    ledger = await ledger_service.apply_break(db, payload.teacher_id, payload.ledger_date, payload.break_minutes)
    await db.flush()
    return {"ledger": ledger_service.ledger_to_response(ledger).model_dump(mode="json")}


async def _apply_subject_assign(db: AsyncSession, payload: SubjectAssignPayload) -> Dict[str, Any]:
    subject = await assignments_service.get_subject(db, payload.subject_id)
    await assignments_service.require_teacher_user(db, payload.to_teacher_id, "Target teacher")
    if payload.from_teacher_id is not None and subject.teacher_id != payload.from_teacher_id:
        raise ConflictError("Subject ownership changed since this request was submitted")
    if await assignments_service.find_in_flight(db, subject.id):
        raise ConflictError("There is already a pending assignment request for this subject")

    from_teacher_id = subject.teacher_id
    remaining = await assignments_service.resolve_unit_ids(db, subject.id, from_teacher_id, payload.unit_ids)
    summary = await assignments_service.transfer_subject(
        db, subject.id, payload.to_teacher_id, from_teacher_id, remaining
    )
    return {"transfer": summary.model_dump(mode="json")}


_APPLIERS: Dict[str, Applier] = {
    ApprovalType.UNIT_START.value: _apply_unit_start,
    ApprovalType.UNIT_COMPLETE.value: _apply_unit_complete,
    ApprovalType.TIME_SLOT.value: _apply_time_slot,
    ApprovalType.BREAK_TIMING.value: _apply_break_timing,
    ApprovalType.SUBJECT_ASSIGN.value: _apply_subject_assign,
}


async def apply_approval(db: AsyncSession, req: ApprovalRequest) -> Dict[str, Any]:
    """Dispatch the stored payload to its applier."""
    payload = parse_payload(ApprovalType(req.type), req.request_data or {})
    return await _APPLIERS[req.type](db, payload)
