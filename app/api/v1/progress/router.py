from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_reviewer, require_teacher
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ProgressGroup, TeacherIncomplete, TeacherProgress
from . import service

router = APIRouter(prefix="/api/v1/progress", tags=["progress"])


@router.get("/me", response_model=TeacherProgress)
async def my_progress(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> TeacherProgress:
    """Dashboard numbers for the signed-in teacher."""
    try:
        return await service.teacher_summary(db, current_user.id, start_date, end_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/teachers/{teacher_id}", response_model=TeacherProgress)
async def teacher_progress(
    teacher_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> TeacherProgress:
    try:
        return await service.teacher_summary(db, teacher_id, start_date, end_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("", response_model=List[ProgressGroup])
async def progress_report(
    group_by: str = Query(service.GROUP_BY_SUBJECT, description="subject or teacher"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[ProgressGroup]:
    try:
        return await service.progress_report(db, group_by, start_date, end_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/incomplete", response_model=List[TeacherIncomplete])
async def teachers_with_incomplete(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[TeacherIncomplete]:
    """Teachers with unfinished subjects, for picking a transfer source."""
    return await service.teachers_with_incomplete(db)
