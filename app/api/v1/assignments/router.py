from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_admin, require_reviewer, require_teacher
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import AssignmentAcceptResponse, AssignmentCreate, AssignmentDecision, AssignmentResponse
from . import service

router = APIRouter(prefix="/api/v1/assignments", tags=["assignments"])


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def request_assignment(
    payload: AssignmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> AssignmentResponse:
    """Ask to move a subject to another teacher. Needs admin approval, then the recipient's acceptance."""
    try:
        return await service.request_assignment(db, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("", response_model=List[AssignmentResponse])
async def list_assignments(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[AssignmentResponse]:
    return await service.list_assignments(db, status=status_filter)


@router.get("/mine", response_model=List[AssignmentResponse])
async def list_my_assignments(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> List[AssignmentResponse]:
    """Assignments where the current teacher gives or receives the subject."""
    return await service.list_teacher_assignments(db, current_user.id)


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.withdraw(db, assignment_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{assignment_id}/admin-approve", response_model=AssignmentResponse)
async def admin_approve(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> AssignmentResponse:
    try:
        return await service.admin_decide(db, assignment_id, current_user.id, approve=True)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{assignment_id}/admin-reject", response_model=AssignmentResponse)
async def admin_reject(
    assignment_id: UUID,
    payload: Optional[AssignmentDecision] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> AssignmentResponse:
    try:
        return await service.admin_decide(
            db, assignment_id, current_user.id, approve=False, reason=payload.reason if payload else None
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{assignment_id}/accept", response_model=AssignmentAcceptResponse)
async def accept_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> AssignmentAcceptResponse:
    """Recipient accepts: ownership, subject sets and open unit logs move now."""
    try:
        return await service.recipient_decide(db, assignment_id, current_user, approve=True)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{assignment_id}/decline", response_model=AssignmentAcceptResponse)
async def decline_assignment(
    assignment_id: UUID,
    payload: Optional[AssignmentDecision] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> AssignmentAcceptResponse:
    try:
        return await service.recipient_decide(
            db, assignment_id, current_user, approve=False, reason=payload.reason if payload else None
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
