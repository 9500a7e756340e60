"""
Monthly snapshot (month lock) endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..context import RequestContext
from .dependencies import PaisaSystem, get_request_context, get_system, reported_as
from .schemas import MonthRequest, ReopenMonthRequest, snapshot_json


router = APIRouter()


@router.get("")
async def get_snapshots(
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """One month's figures when year and month are given, else every stored snapshot"""
    with reported_as("Failed to fetch monthly snapshot"):
        if year is not None and month is not None:
            return snapshot_json(system.month_locks.current_snapshot(ctx, year, month))
        return [snapshot_json(s) for s in system.month_locks.list_snapshots(ctx)]


@router.post("")
async def close_month(
    request: MonthRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Close a month, locking its entries"""
    with reported_as("Failed to close monthly snapshot"):
        snapshot = system.month_locks.close_month(ctx, request.year, request.month)
        return snapshot_json(snapshot)


@router.post("/reopen")
async def reopen_month(
    request: ReopenMonthRequest,
    ctx: RequestContext = Depends(get_request_context),
    system: PaisaSystem = Depends(get_system)
):
    """Reopen a user's closed month (super admin)"""
    with reported_as("Failed to reopen monthly snapshot"):
        snapshot = system.month_locks.reopen_month(ctx, request.user_id, request.year, request.month)
        return snapshot_json(snapshot)
