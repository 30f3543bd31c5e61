"""
Approval mediator: submit, list, decide (approve via typed applier / reject), cancel.

pending is the only non-terminal status. An approve decision runs the applier first and
persists the status afterwards; a failing applier leaves the request pending.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import ApprovalDecision, ApprovalStatus, ApprovalType
from app.core.exceptions import ForbiddenError, NotFoundError, ServiceError, StateError, ValidationError
from app.core.models import ApprovalRequest

from .schemas import ApprovalDecisionResult, ApprovalRequestResponse, payload_adapter

logger = logging.getLogger("teaching.approvals")

LIST_LIMIT = 100


def _to_response(a: ApprovalRequest) -> ApprovalRequestResponse:
    return ApprovalRequestResponse(
        id=a.id,
        type=a.type,
        status=a.status,
        requested_by=a.requested_by,
        approved_by=a.approved_by,
        request_data=a.request_data or {},
        rejection_reason=a.rejection_reason,
        approved_at=a.approved_at,
        rejected_at=a.rejected_at,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def parse_payload(approval_type: ApprovalType, data: Union[Dict[str, Any], BaseModel]) -> BaseModel:
    """Validate raw request data against the payload model for `approval_type`."""
    raw = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    declared = raw.get("type")
    if declared is not None and declared != approval_type.value:
        raise ValidationError(f"Payload type '{declared}' does not match request type '{approval_type.value}'")
    raw["type"] = approval_type.value
    try:
        return payload_adapter.validate_python(raw)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != approval_type.value)
        message = first.get("msg", "Invalid payload")
        raise ValidationError(f"Invalid {approval_type.value} payload: {location} {message}".replace("  ", " "))


async def _find_pending(
    db: AsyncSession,
    approval_type: str,
    requested_by: UUID,
    natural_key: str,
) -> Optional[ApprovalRequest]:
    result = await db.execute(
        select(ApprovalRequest).where(
            ApprovalRequest.type == approval_type,
            ApprovalRequest.requested_by == requested_by,
            ApprovalRequest.natural_key == natural_key,
            ApprovalRequest.status == ApprovalStatus.PENDING.value,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def submit(
    db: AsyncSession,
    approval_type: ApprovalType,
    requested_by: UUID,
    payload: Union[Dict[str, Any], BaseModel],
) -> ApprovalRequestResponse:
    """Create a pending request, or return the pending one that already has this natural key."""
    parsed = parse_payload(approval_type, payload)
    natural_key = parsed.natural_key()

    existing = await _find_pending(db, approval_type.value, requested_by, natural_key)
    if existing:
        return _to_response(existing)

    req = ApprovalRequest(
        type=approval_type.value,
        status=ApprovalStatus.PENDING.value,
        requested_by=requested_by,
        request_data=parsed.model_dump(mode="json"),
        natural_key=natural_key,
    )
    db.add(req)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent submit won the pending slot; hand back its record
        await db.rollback()
        existing = await _find_pending(db, approval_type.value, requested_by, natural_key)
        if not existing:
            raise
        return _to_response(existing)
    await db.refresh(req)
    logger.info("approval submitted id=%s type=%s requester=%s key=%s", req.id, req.type, requested_by, natural_key)
    return _to_response(req)


async def get_request(db: AsyncSession, approval_id: UUID) -> ApprovalRequestResponse:
    req = await db.get(ApprovalRequest, approval_id)
    if not req:
        raise NotFoundError("Approval request not found")
    return _to_response(req)


async def list_requests(
    db: AsyncSession,
    status: Optional[str] = None,
    approval_type: Optional[str] = None,
    requested_by: Optional[UUID] = None,
) -> List[ApprovalRequestResponse]:
    """Reviewer queue, newest first. Filters are optional."""
    q = select(ApprovalRequest)
    if status:
        q = q.where(ApprovalRequest.status == status)
    if approval_type:
        q = q.where(ApprovalRequest.type == approval_type)
    if requested_by:
        q = q.where(ApprovalRequest.requested_by == requested_by)
    q = q.order_by(ApprovalRequest.created_at.desc()).limit(LIST_LIMIT)
    result = await db.execute(q)
    return [_to_response(a) for a in result.scalars().all()]


async def list_pending(db: AsyncSession) -> List[ApprovalRequestResponse]:
    return await list_requests(db, status=ApprovalStatus.PENDING.value)


async def list_for_requester(db: AsyncSession, requested_by: UUID) -> List[ApprovalRequestResponse]:
    """All requests (any status) raised by one teacher; their notification feed."""
    result = await db.execute(
        select(ApprovalRequest)
        .where(ApprovalRequest.requested_by == requested_by)
        .order_by(ApprovalRequest.created_at.desc())
    )
    return [_to_response(a) for a in result.scalars().all()]


async def list_by_key_range(
    db: AsyncSession,
    approval_type: ApprovalType,
    requested_by: UUID,
    key_from: str,
    key_to: str,
) -> List[ApprovalRequest]:
    """Requests whose natural key sorts within [key_from, key_to), oldest first."""
    result = await db.execute(
        select(ApprovalRequest)
        .where(
            ApprovalRequest.type == approval_type.value,
            ApprovalRequest.requested_by == requested_by,
            ApprovalRequest.natural_key >= key_from,
            ApprovalRequest.natural_key < key_to,
        )
        .order_by(ApprovalRequest.created_at.asc())
    )
    return list(result.scalars().all())


def _mark_rejected(req: ApprovalRequest, actor_id: UUID, reason: str) -> None:
    req.status = ApprovalStatus.REJECTED.value
    req.approved_by = actor_id
    req.rejection_reason = reason
    req.rejected_at = datetime.utcnow()


async def reject_pending(
    db: AsyncSession,
    approval_type: ApprovalType,
    requested_by: UUID,
    reason: str,
    actor_id: UUID,
    natural_key: Optional[str] = None,
    natural_key_prefix: Optional[str] = None,
) -> int:
    """Self-cancel every pending request matching the key (or key prefix). Caller must commit."""
    stmt = update(ApprovalRequest).where(
        ApprovalRequest.type == approval_type.value,
        ApprovalRequest.requested_by == requested_by,
        ApprovalRequest.status == ApprovalStatus.PENDING.value,
    )
    if natural_key is not None:
        stmt = stmt.where(ApprovalRequest.natural_key == natural_key)
    if natural_key_prefix is not None:
        stmt = stmt.where(ApprovalRequest.natural_key.startswith(natural_key_prefix, autoescape=True))
    now = datetime.utcnow()
    result = await db.execute(
        stmt.values(
            status=ApprovalStatus.REJECTED.value,
            approved_by=actor_id,
            rejection_reason=reason,
            rejected_at=now,
            updated_at=now,
        ).execution_options(synchronize_session="fetch")
    )
    if result.rowcount:
        logger.info(
            "auto-rejected %s pending %s request(s) for %s: %s",
            result.rowcount, approval_type.value, requested_by, reason,
        )
    return result.rowcount or 0


async def _get_for_decision(db: AsyncSession, approval_id: UUID) -> ApprovalRequest:
    result = await db.execute(
        select(ApprovalRequest).where(ApprovalRequest.id == approval_id).with_for_update()
    )
    req = result.scalar_one_or_none()
    if not req:
        raise NotFoundError("Approval request not found")
    if req.status != ApprovalStatus.PENDING.value:
        raise StateError(f"This request has already been {req.status}", current_status=req.status)
    return req


async def decide(
    db: AsyncSession,
    approval_id: UUID,
    decision: ApprovalDecision,
    reviewer_id: UUID,
    reason: Optional[str] = None,
) -> ApprovalDecisionResult:
    """Approve (run the applier, then persist) or reject a pending request."""
    req = await _get_for_decision(db, approval_id)

    if decision == ApprovalDecision.REJECTED:
        _mark_rejected(req, reviewer_id, (reason or "").strip() or "No reason provided")
        await db.commit()
        await db.refresh(req)
        logger.info("approval rejected id=%s type=%s reviewer=%s", req.id, req.type, reviewer_id)
        return ApprovalDecisionResult(approval=_to_response(req))

    from .appliers import apply_approval

    approval_id, approval_type = req.id, req.type
    try:
        processed = await apply_approval(db, req)
    except ServiceError as e:
        await db.rollback()
        logger.warning("applier failed id=%s type=%s: %s", approval_id, approval_type, e.message)
        raise

    req.status = ApprovalStatus.APPROVED.value
    req.approved_by = reviewer_id
    req.approved_at = datetime.utcnow()
    await db.commit()
    await db.refresh(req)
    logger.info("approval applied id=%s type=%s reviewer=%s", req.id, req.type, reviewer_id)
    return ApprovalDecisionResult(approval=_to_response(req), processed=processed)


async def cancel(
    db: AsyncSession,
    approval_id: UUID,
    requester_id: UUID,
) -> ApprovalRequestResponse:
    """Requester withdraws their own pending request."""
    req = await db.get(ApprovalRequest, approval_id)
    if not req:
        raise NotFoundError("Approval request not found")
    if req.requested_by != requester_id:
        raise ForbiddenError("Not authorized to cancel this request")
    if req.status != ApprovalStatus.PENDING.value:
        raise StateError(
            f"Cannot cancel request with status: {req.status}. Only pending requests can be canceled.",
            current_status=req.status,
        )
    _mark_rejected(req, requester_id, "cancelled by teacher")
    await db.commit()
    await db.refresh(req)
    logger.info("approval cancelled id=%s by requester", req.id)
    return _to_response(req)
