from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_teacher
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import BreakUpdate, LedgerActionResponse, LedgerApprovalStatus, LedgerResponse, SlotUpdate
from . import service

router = APIRouter(prefix="/api/v1/ledger", tags=["ledger"])


@router.get("", response_model=LedgerResponse)
async def get_ledger(
    ledger_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> LedgerResponse:
    """The teacher's ledger for a day (today by default). Created on first read."""
    try:
        return await service.get_or_create_ledger(db, current_user.id, ledger_date or date.today())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/slots", response_model=LedgerActionResponse)
async def update_slot(
    payload: SlotUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> LedgerActionResponse:
    """Select (submits a time-slot approval) or deselect (immediate) a slot."""
    try:
        return await service.update_slot(
            db,
            current_user.id,
            payload.ledger_date or date.today(),
            payload.slot_id,
            payload.checked,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.post("/break", response_model=LedgerActionResponse)
async def update_break(
    payload: BreakUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> LedgerActionResponse:
    """Request a break (submits a break-timing approval) or remove it (immediate)."""
    try:
        return await service.request_break(
            db,
            current_user.id,
            payload.ledger_date or date.today(),
            payload.break_minutes,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get("/approval-status", response_model=LedgerApprovalStatus)
async def get_approval_status(
    ledger_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_teacher),
) -> LedgerApprovalStatus:
    return await service.get_approval_status(db, current_user.id, ledger_date or date.today())
