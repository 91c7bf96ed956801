"""Maintenance service layer — orphan detection and permanent cleanup.

Deletion paths with different guarantees:
  - Quota grants pointing at a retired or missing leave type are removed
    best-effort, one short transaction per grant.
  - A soft-deleted leave type is erased all-or-nothing: re-check, delete its
    grants, delete the row, commit, inside a single transaction.
  - Leave requests past the retention period are removed by one bulk
    DELETE.

The services own their sessions through an ``async_sessionmaker`` rather
than borrowing a request-scoped one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siamleave.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    STATUS_LABELS,
    UNKNOWN_NAME,
    LeaveTypeStatus,
)
from siamleave.common.exceptions import LeaveTypeDeletionBlocked
from siamleave.config import settings
from siamleave.leave.models import LeaveQuota, LeaveRequest, LeaveType
from siamleave.maintenance.schemas import (
    DeletionCheck,
    DeletionDetails,
    LeaveTypeCheck,
    LeaveTypeCleanupEntry,
    LeaveTypeCleanupResult,
    LeaveTypeInfo,
    OrphanedQuota,
    PermanentDeleteResult,
    QuotaCleanupEntry,
    QuotaCleanupResult,
    QuotaCleanupStatistics,
    QuotaRecord,
    RequestRetentionResult,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_LABEL = "Not Found"

_REASONS: dict[LeaveTypeStatus, str] = {
    LeaveTypeStatus.valid: "Leave type is valid and active",
    LeaveTypeStatus.missing: "Leave type not found",
    LeaveTypeStatus.soft_deleted: "Leave type is soft-deleted",
    LeaveTypeStatus.inactive: "Leave type is inactive",
}


def _leave_type_info(leave_type: Optional[LeaveType]) -> LeaveTypeInfo:
    if leave_type is None:
        return LeaveTypeInfo(
            name_en=UNKNOWN_NAME,
            name_th=UNKNOWN_NAME,
            status=_NOT_FOUND_LABEL,
        )
    return LeaveTypeInfo(
        name_en=leave_type.name_en,
        name_th=leave_type.name_th or leave_type.name_en,
        status=STATUS_LABELS[leave_type.lifecycle_status],
        is_active=bool(leave_type.is_active),
        deleted_at=leave_type.deleted_at,
    )


async def _get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> Optional[LeaveType]:
    result = await db.execute(select(LeaveType).where(LeaveType.id == leave_type_id))
    return result.scalars().first()


# ═════════════════════════════════════════════════════════════════════
# LeaveQuotaCleanupService
# ═════════════════════════════════════════════════════════════════════


class LeaveQuotaCleanupService:
    """Finds and removes quota grants whose leave type is no longer valid."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Detection ───────────────────────────────────────────────────

    @staticmethod
    async def classify_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> LeaveTypeCheck:
        """Status of one leave type id: valid, missing, soft_deleted or inactive."""
        leave_type = await _get_leave_type(db, leave_type_id)
        status = leave_type.lifecycle_status if leave_type else LeaveTypeStatus.missing
        return LeaveTypeCheck(
            leave_type_id=leave_type_id,
            status=status,
            reason=_REASONS[status],
            info=_leave_type_info(leave_type),
        )

    @staticmethod
    async def _valid_leave_type_ids(db: AsyncSession) -> set[uuid.UUID]:
        result = await db.execute(select(LeaveType.id).where(LeaveType.valid_clause()))
        return set(result.scalars().all())

    @staticmethod
    async def find_orphaned_quotas(db: AsyncSession) -> list[OrphanedQuota]:
        """Every grant whose leave type is missing, soft-deleted or inactive."""

        grants_result = await db.execute(
            select(LeaveQuota).order_by(LeaveQuota.created_at, LeaveQuota.id)
        )
        grants = grants_result.scalars().all()
        valid_ids = await LeaveQuotaCleanupService._valid_leave_type_ids(db)

        orphans = [g for g in grants if g.leave_type_id not in valid_ids]
        if not orphans:
            return []

        referenced = {g.leave_type_id for g in orphans}
        types_result = await db.execute(select(LeaveType).where(LeaveType.id.in_(referenced)))
        leave_types = {lt.id: lt for lt in types_result.scalars().all()}

        return [
            OrphanedQuota(
                quota=QuotaRecord.model_validate(grant),
                info=_leave_type_info(leave_types.get(grant.leave_type_id)),
            )
            for grant in orphans
        ]

    @staticmethod
    async def get_cleanup_statistics(db: AsyncSession) -> QuotaCleanupStatistics:
        result = await db.execute(select(LeaveQuota.quota))
        quotas = [Decimal(q) for q in result.scalars().all()]
        valid_ids = await LeaveQuotaCleanupService._valid_leave_type_ids(db)
        orphans = await LeaveQuotaCleanupService.find_orphaned_quotas(db)

        total = len(quotas)
        orphaned = len(orphans)
        percentage = (
            (Decimal(orphaned) * 100 / Decimal(total)).quantize(Decimal("0.01"))
            if total
            else Decimal("0")
        )
        return QuotaCleanupStatistics(
            total_records=total,
            valid_records=total - orphaned,
            orphaned_records=orphaned,
            total_quota=sum(quotas, Decimal("0")),
            orphaned_quota=sum((o.quota.quota for o in orphans), Decimal("0")),
            valid_leave_types=len(valid_ids),
            orphaned_percentage=percentage,
        )

    # ── Best-effort deletion ────────────────────────────────────────

    @staticmethod
    async def _delete_quota(db: AsyncSession, quota_id: uuid.UUID) -> None:
        await db.execute(delete(LeaveQuota).where(LeaveQuota.id == quota_id))

    async def delete_orphaned_quotas(
        self,
        orphans: Sequence[OrphanedQuota],
    ) -> QuotaCleanupResult:
        """Delete each grant in its own transaction; failures are recorded
        and the batch carries on."""

        result = QuotaCleanupResult(total_to_delete=len(orphans))
        for orphan in orphans:
            grant = orphan.quota
            entry = QuotaCleanupEntry(
                id=grant.id,
                position_id=grant.position_id,
                leave_type_id=grant.leave_type_id,
                leave_type_name=orphan.info.name_en or UNKNOWN_NAME,
                quota=grant.quota,
            )
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._delete_quota(session, grant.id)
            except Exception as exc:
                logger.error(
                    "Failed to delete orphaned leave quota %s (%s)",
                    grant.id, entry.leave_type_name, exc_info=True,
                )
                entry.error = str(exc)
                result.failed.append(entry)
                continue

            entry.status = orphan.info.status
            result.deleted.append(entry)
            result.total_quota_removed += grant.quota
            logger.debug("Deleted orphaned leave quota %s (%s)", grant.id, entry.leave_type_name)

        return result

    async def auto_cleanup_orphaned_quotas(self) -> QuotaCleanupResult:
        """Find orphaned grants and delete them."""

        logger.info("Starting leave quota cleanup")
        async with self._session_factory() as session:
            orphans = await self.find_orphaned_quotas(session)

        if not orphans:
            logger.info("No orphaned leave quota records found")
            return QuotaCleanupResult(message="No orphaned records found")

        result = await self.delete_orphaned_quotas(orphans)
        result.total_checked = len(orphans)
        result.message = f"Cleaned up {len(result.deleted)} orphaned leave quota records"

        logger.info(
            "Leave quota cleanup: checked=%d deleted=%d failed=%d quota_removed=%s",
            result.total_checked, len(result.deleted), len(result.failed),
            result.total_quota_removed,
        )
        if result.deleted:
            logger.info(
                "Deleted leave quotas: %s",
                [(str(d.id), d.leave_type_name, str(d.quota), d.status) for d in result.deleted],
            )
        if result.failed:
            logger.warning(
                "Failed leave quota deletions: %s",
                [(str(f.id), f.leave_type_name, f.error) for f in result.failed],
            )
        return result


# ═════════════════════════════════════════════════════════════════════
# LeaveTypeCleanupService
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCleanupService:
    """Permanent erasure of soft-deleted leave types nothing depends on."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _count_requests(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> int:
        query = select(func.count(LeaveRequest.id)).where(
            LeaveRequest.leave_type_id == leave_type_id
        )
        if active_only:
            query = query.where(LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES))
        return (await db.execute(query)).scalar() or 0

    @staticmethod
    async def can_permanently_delete(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> DeletionCheck:
        """Erasure needs a soft-deleted type with no pending, approved or
        in-progress request. Historical requests do not block it."""

        leave_type = await _get_leave_type(db, leave_type_id)
        if leave_type is None:
            return DeletionCheck(can_delete=False, reason="Leave type not found")
        if leave_type.deleted_at is None:
            return DeletionCheck(can_delete=False, reason="Leave type is not soft-deleted")

        active = await LeaveTypeCleanupService._count_requests(
            db, leave_type_id, active_only=True
        )
        if active > 0:
            return DeletionCheck(
                can_delete=False,
                reason=f"Leave type has {active} active leave request(s)",
                active_requests=active,
            )

        historical = await LeaveTypeCleanupService._count_requests(db, leave_type_id)
        quotas = (
            await db.execute(
                select(func.count(LeaveQuota.id)).where(
                    LeaveQuota.leave_type_id == leave_type_id
                )
            )
        ).scalar() or 0

        return DeletionCheck(
            can_delete=True,
            reason="No active usage found",
            details=DeletionDetails(
                leave_type_id=leave_type.id,
                name_en=leave_type.name_en,
                name_th=leave_type.name_th,
                historical_requests=historical,
                leave_quotas=quotas,
                soft_deleted_at=leave_type.deleted_at,
            ),
        )

    # ── Atomic erasure ──────────────────────────────────────────────

    @staticmethod
    async def _delete_quotas_for_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> int:
        result = await db.execute(
            delete(LeaveQuota).where(LeaveQuota.leave_type_id == leave_type_id)
        )
        return result.rowcount or 0

    @staticmethod
    async def _delete_leave_type_row(db: AsyncSession, leave_type_id: uuid.UUID) -> None:
        await db.execute(delete(LeaveType).where(LeaveType.id == leave_type_id))

    async def permanently_delete_leave_type(
        self,
        leave_type_id: uuid.UUID,
    ) -> PermanentDeleteResult:
        """Erase a soft-deleted leave type and its quota grants.

        Runs in one transaction. The safety check is repeated inside it so a
        request created since the caller last looked still blocks the delete.
        Raises ``LeaveTypeDeletionBlocked`` when the check fails; any error
        rolls back both the grants and the type row.
        """

        async with self._session_factory() as session:
            async with session.begin():
                check = await self.can_permanently_delete(session, leave_type_id)
                if not check.can_delete:
                    raise LeaveTypeDeletionBlocked(leave_type_id, check.reason)

                removed = await self._delete_quotas_for_leave_type(session, leave_type_id)
                await self._delete_leave_type_row(session, leave_type_id)

        logger.info(
            "Permanently deleted leave type %s (%d quota grants removed)",
            leave_type_id, removed,
        )
        return PermanentDeleteResult(
            success=True,
            message="Leave type permanently deleted",
            details=check.details,
        )

    async def auto_cleanup_orphaned_leave_types(self) -> LeaveTypeCleanupResult:
        """Try to erase every soft-deleted leave type.

        Each type lands in exactly one of ``deleted``, ``cannot_delete`` or
        ``errors``; a failure on one type does not stop the others.
        """

        async with self._session_factory() as session:
            rows = await session.execute(
                select(LeaveType.id, LeaveType.name_en, LeaveType.name_th)
                .where(LeaveType.deleted_at.is_not(None))
                .order_by(LeaveType.deleted_at, LeaveType.id)
            )
            candidates = [(r.id, r.name_en or r.name_th or UNKNOWN_NAME) for r in rows]

        result = LeaveTypeCleanupResult(total_checked=len(candidates))
        for leave_type_id, name in candidates:
            try:
                async with self._session_factory() as session:
                    check = await self.can_permanently_delete(session, leave_type_id)

                if not check.can_delete:
                    result.cannot_delete.append(
                        LeaveTypeCleanupEntry(id=leave_type_id, name=name, reason=check.reason)
                    )
                    continue

                await self.permanently_delete_leave_type(leave_type_id)
                result.deleted.append(
                    LeaveTypeCleanupEntry(id=leave_type_id, name=name, reason=check.reason)
                )
            except LeaveTypeDeletionBlocked as exc:
                result.cannot_delete.append(
                    LeaveTypeCleanupEntry(id=leave_type_id, name=name, reason=exc.reason)
                )
            except Exception as exc:
                logger.error("Cleanup of leave type %s failed", leave_type_id, exc_info=True)
                result.errors.append(
                    LeaveTypeCleanupEntry(id=leave_type_id, name=name, error=str(exc))
                )

        logger.info("Leave type cleanup: %s", result.summary())
        return result


# ═════════════════════════════════════════════════════════════════════
# LeaveRequestRetentionService
# ═════════════════════════════════════════════════════════════════════


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # Feb 29th onto a non-leap year
        return moment.replace(year=moment.year - years, day=28)


class LeaveRequestRetentionService:
    """Hard deletion of leave requests older than the retention period.

    Every request created before the cutoff goes, whatever its status. The
    delete is a single statement in a single transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retention_years: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        if retention_years is None:
            retention_years = settings.LEAVE_REQUEST_RETENTION_YEARS
        self.retention_years = retention_years

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return _years_before(now or datetime.now(timezone.utc), self.retention_years)

    async def cleanup_old_leave_requests(
        self,
        now: Optional[datetime] = None,
    ) -> RequestRetentionResult:
        cutoff = self.cutoff(now)
        logger.info("Cleaning up leave requests created before %s", cutoff.isoformat())

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(LeaveRequest).where(LeaveRequest.created_at < cutoff)
                )
                deleted = result.rowcount or 0

        if deleted:
            message = f"Successfully deleted {deleted} old leave request records"
        else:
            message = "No old records found to delete"
        logger.info(message)
        return RequestRetentionResult(message=message, deleted_count=deleted, cutoff=cutoff)
