from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.ledger.schemas import LedgerResponse
from app.auth.rbac import require_reviewer, require_teacher
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    CalendarResponse,
    DaySubjectUpdate,
    TimetableApply,
    TimetableApplyResult,
    TimetableImportResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/timetables", tags=["timetables"])


@router.post("/apply", response_model=TimetableApplyResult)
async def apply_timetable(
    payload: TimetableApply,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> TimetableApplyResult:
    """Import a timetable onto teachers' ledgers. Invalid entries are returned in `errors`."""
    try:
        return await service.apply_timetable(db, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.patch("/day", response_model=LedgerResponse)
async def set_day_subject(
    payload: DaySubjectUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> LedgerResponse:
    try:
        return await service.set_day_subject(
            db, current_user.id, payload.ledger_date, payload.subject_name, payload.batch
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/calendar", response_model=CalendarResponse)
async def get_calendar(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> CalendarResponse:
    try:
        return await service.get_calendar(db, current_user.id, start_date, end_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/history", response_model=List[TimetableImportResponse])
async def list_history(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> List[TimetableImportResponse]:
    """Your last uploads, newest first."""
    return await service.list_history(db, current_user.id)


@router.delete("/history/{import_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_history(
    import_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_reviewer),
) -> None:
    try:
        await service.delete_history(db, import_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
