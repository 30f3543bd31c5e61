from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_reviewer
from app.auth.schemas import CurrentUser
from app.core.enums import ApprovalDecision, ApprovalType
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ApprovalDecisionResult, ApprovalReject, ApprovalRequestResponse, ApprovalSubmit
from . import service

router = APIRouter(prefix="/api/v1/approvals", tags=["approvals"])


@router.get("", response_model=List[ApprovalRequestResponse])
async def list_approvals(
    status_filter: Optional[str] = Query(None, alias="status"),
    approval_type: Optional[str] = Query(None, alias="type"),
    teacher_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[ApprovalRequestResponse]:
    """Review queue, newest first (at most 100)."""
    return await service.list_requests(db, status=status_filter, approval_type=approval_type, requested_by=teacher_id)


@router.get("/pending", response_model=List[ApprovalRequestResponse])
async def list_pending(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[ApprovalRequestResponse]:
    return await service.list_pending(db)


@router.get("/mine", response_model=List[ApprovalRequestResponse])
async def list_my_requests(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ApprovalRequestResponse]:
    """Requests raised by the current user, any status."""
    return await service.list_for_requester(db, current_user.id)


@router.post("", response_model=ApprovalRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_approval(
    payload: ApprovalSubmit,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApprovalRequestResponse:
    """Submit a request. An identical pending request is returned instead of a duplicate."""
    approval_type = ApprovalType(payload.type)
    data = dict(payload.request_data)
    if not current_user.is_reviewer:
        if approval_type == ApprovalType.SUBJECT_ASSIGN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        # Teachers only ever request changes to their own records
        data["teacher_id"] = str(current_user.id)
    try:
        return await service.submit(db, approval_type, current_user.id, data)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/{approval_id}", response_model=ApprovalRequestResponse)
async def get_approval(
    approval_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApprovalRequestResponse:
    try:
        approval = await service.get_request(db, approval_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    if approval.requested_by != current_user.id and not current_user.is_reviewer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return approval


@router.post("/{approval_id}/approve", response_model=ApprovalDecisionResult)
async def approve(
    approval_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> ApprovalDecisionResult:
    """Apply the request's change, then mark it approved. A failing change leaves it pending."""
    try:
        return await service.decide(db, approval_id, ApprovalDecision.APPROVED, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{approval_id}/reject", response_model=ApprovalDecisionResult)
async def reject(
    approval_id: UUID,
    payload: Optional[ApprovalReject] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> ApprovalDecisionResult:
    try:
        return await service.decide(
            db,
            approval_id,
            ApprovalDecision.REJECTED,
            current_user.id,
            reason=payload.reason if payload else None,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{approval_id}/cancel", response_model=ApprovalRequestResponse)
async def cancel(
    approval_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ApprovalRequestResponse:
    """Requester withdraws their own pending request."""
    try:
        return await service.cancel(db, approval_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
