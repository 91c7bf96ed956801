"""Leave routers — leave types, quota grants, usage, balances, yearly reset."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from siamleave.database import get_db
from siamleave.leave.schemas import (
    LeaveQuotaOut,
    LeaveQuotaUpsert,
    LeaveSummaryItem,
    LeaveTypeOut,
    LeaveUsageCreate,
    LeaveUsageOut,
    QuotaOut,
    ResetByUsersRequest,
    ResetRequest,
    ResetResult,
)
from siamleave.leave.service import (
    LeaveBalanceService,
    LeaveQuotaResetService,
    LeaveTypeService,
)

router = APIRouter(prefix="", tags=["leave"])
reset_router = APIRouter(prefix="", tags=["leave-quota-reset"])


# ── GET /types ──────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_deleted: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """List leave types. Retired types are hidden unless ``include_deleted``."""
    return await LeaveTypeService.get_leave_types(db, include_deleted=include_deleted)


# ── DELETE /types/{leave_type_id} ───────────────────────────────────

@router.delete("/types/{leave_type_id}", response_model=LeaveTypeOut)
async def soft_delete_leave_type(
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Retire a leave type (soft delete)."""
    return await LeaveTypeService.soft_delete_leave_type(db, leave_type_id)


# ── PUT /quotas ─────────────────────────────────────────────────────

@router.put("/quotas", response_model=LeaveQuotaOut)
async def upsert_quota(
    body: LeaveQuotaUpsert,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.upsert_quota(db, body)


# ── GET /used/{user_id}/type/{leave_type_id} ────────────────────────

@router.get("/used/{user_id}/type/{leave_type_id}", response_model=LeaveUsageOut)
async def get_usage(
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=1900, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: AsyncSession = Depends(get_db),
):
    """Usage of one leave type by one user. Zero when nothing is recorded."""
    return await LeaveBalanceService.usage_for(db, user_id, leave_type_id, year, month)


# ── POST /used/{user_id}/type/{leave_type_id} ───────────────────────

@router.post("/used/{user_id}/type/{leave_type_id}", response_model=LeaveUsageOut)
async def record_usage(
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    body: LeaveUsageCreate,
    db: AsyncSession = Depends(get_db),
):
    """Add days/hours to the user's running total."""
    return await LeaveBalanceService.record_usage(
        db, user_id, leave_type_id, days=body.days, hours=body.hours,
    )


# ── GET /quota/{user_id}/type/{leave_type_id} ───────────────────────

@router.get("/quota/{user_id}/type/{leave_type_id}", response_model=QuotaOut)
async def get_quota(
    user_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveBalanceService.quota_detail(db, user_id, leave_type_id)


# ── GET /summary/{user_id} ──────────────────────────────────────────

@router.get("/summary/{user_id}", response_model=list[LeaveSummaryItem])
async def get_summary(
    user_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=1900, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    db: AsyncSession = Depends(get_db),
):
    """Quota, used and remaining days for every leave type."""
    return await LeaveBalanceService.summary_for_user(db, user_id, year, month)


# ═════════════════════════════════════════════════════════════════════
# Yearly reset
# ═════════════════════════════════════════════════════════════════════


# ── POST /reset ─────────────────────────────────────────────────────

@reset_router.post("/reset", response_model=ResetResult)
async def reset_leave_quota(
    body: ResetRequest,
    db: AsyncSession = Depends(get_db),
):
    """Reset usage for one position or for every position whose quota does
    not carry into the new year. Refused outside January 1st unless forced."""
    return await LeaveQuotaResetService.reset_leave_usage(
        db,
        position_id=body.position_id,
        force=body.force,
        strategy=body.strategy,
    )


# ── POST /reset-by-users ────────────────────────────────────────────

@reset_router.post("/reset-by-users", response_model=ResetResult)
async def reset_leave_quota_by_users(
    body: ResetByUsersRequest,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveQuotaResetService.reset_usage_for_users(
        db, body.user_ids, body.strategy,
    )
