"""Maintenance router — orphan reports, cleanup runs, permanent deletion.

Cleanup endpoints manage their own transactions through the session
factory; read-only reports use the request session.
"""


import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siamleave.common.rate_limit import MAINTENANCE_RATE_LIMIT, limiter
from siamleave.database import get_db, get_session_factory
from siamleave.maintenance.schemas import (
    DeletionCheck,
    LeaveTypeCheck,
    LeaveTypeCleanupResult,
    OrphanedQuota,
    PermanentDeleteResult,
    QuotaCleanupResult,
    QuotaCleanupStatistics,
    RequestRetentionResult,
)
from siamleave.maintenance.service import (
    LeaveQuotaCleanupService,
    LeaveRequestRetentionService,
    LeaveTypeCleanupService,
)

router = APIRouter(prefix="", tags=["maintenance"])


# ── GET /leave-quotas/orphaned ──────────────────────────────────────

@router.get("/leave-quotas/orphaned", response_model=list[OrphanedQuota])
async def list_orphaned_quotas(db: AsyncSession = Depends(get_db)):
    """Quota grants whose leave type is missing, soft-deleted or inactive."""
    return await LeaveQuotaCleanupService.find_orphaned_quotas(db)


# ── GET /leave-quotas/statistics ────────────────────────────────────

@router.get("/leave-quotas/statistics", response_model=QuotaCleanupStatistics)
async def quota_statistics(db: AsyncSession = Depends(get_db)):
    return await LeaveQuotaCleanupService.get_cleanup_statistics(db)


# ── POST /leave-quotas/cleanup ──────────────────────────────────────

@router.post("/leave-quotas/cleanup", response_model=QuotaCleanupResult)
@limiter.limit(MAINTENANCE_RATE_LIMIT)
async def cleanup_orphaned_quotas(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Delete orphaned quota grants, best effort."""
    return await LeaveQuotaCleanupService(session_factory).auto_cleanup_orphaned_quotas()


# ── GET /leave-types/{leave_type_id}/status ─────────────────────────

@router.get("/leave-types/{leave_type_id}/status", response_model=LeaveTypeCheck)
async def leave_type_status(
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveQuotaCleanupService.classify_leave_type(db, leave_type_id)


# ── GET /leave-types/{leave_type_id}/can-delete ─────────────────────

@router.get("/leave-types/{leave_type_id}/can-delete", response_model=DeletionCheck)
async def can_delete_leave_type(
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Whether the leave type may be permanently deleted, and why not."""
    return await LeaveTypeCleanupService.can_permanently_delete(db, leave_type_id)


# ── DELETE /leave-types/{leave_type_id}/permanent ───────────────────

@router.delete("/leave-types/{leave_type_id}/permanent", response_model=PermanentDeleteResult)
@limiter.limit(MAINTENANCE_RATE_LIMIT)
async def permanently_delete_leave_type(
    request: Request,
    leave_type_id: uuid.UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Erase a soft-deleted leave type and its quota grants. 409 when blocked."""
    return await LeaveTypeCleanupService(session_factory).permanently_delete_leave_type(
        leave_type_id
    )


# ── POST /leave-types/cleanup ───────────────────────────────────────

@router.post("/leave-types/cleanup", response_model=LeaveTypeCleanupResult)
@limiter.limit(MAINTENANCE_RATE_LIMIT)
async def cleanup_leave_types(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    return await LeaveTypeCleanupService(session_factory).auto_cleanup_orphaned_leave_types()


# ── POST /leave-requests/cleanup ────────────────────────────────────

@router.post("/leave-requests/cleanup", response_model=RequestRetentionResult)
@limiter.limit(MAINTENANCE_RATE_LIMIT)
async def cleanup_old_leave_requests(
    request: Request,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Delete leave requests older than the retention period."""
    return await LeaveRequestRetentionService(session_factory).cleanup_old_leave_requests()
