from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_teacher
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import UnitActionResponse, UnitProgressResponse
from . import service

router = APIRouter(prefix="/api/v1/units", tags=["units"])


@router.post("/{unit_id}/start", response_model=UnitActionResponse)
async def start_unit(
    unit_id: UUID,
    teacher_id: Optional[UUID] = Query(None, description="Admin only: act on behalf of this teacher"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> UnitActionResponse:
    """Start (or restart) a unit. Submits a unit-start approval when that policy is enabled."""
    try:
        return await service.start_unit(db, unit_id, current_user, teacher_id=teacher_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/{unit_id}/complete", response_model=UnitActionResponse)
async def complete_unit(
    unit_id: UUID,
    teacher_id: Optional[UUID] = Query(None, description="Admin only: act on behalf of this teacher"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> UnitActionResponse:
    try:
        return await service.complete_unit(db, unit_id, current_user, teacher_id=teacher_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/subjects/{subject_id}", response_model=List[UnitProgressResponse])
async def list_subject_units(
    subject_id: UUID,
    teacher_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[UnitProgressResponse]:
    """Units of a subject with progress. Teachers see their own; reviewers may pass teacher_id."""
    if current_user.is_reviewer:
        target = teacher_id
    else:
        target = current_user.id
    try:
        return await service.list_subject_units(db, subject_id, target)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
