"""Maintenance tests — orphan classification and detection, best-effort quota
cleanup, all-or-nothing leave type erasure.

The cleanup services open their own sessions, so seed data is committed
first and results are checked through a fresh session.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from siamleave.common.constants import LeaveStatus, LeaveTypeStatus
from siamleave.common.exceptions import LeaveTypeDeletionBlocked
from siamleave.leave.models import LeaveQuota, LeaveRequest, LeaveType
from siamleave.maintenance.schemas import DeletionCheck
from siamleave.maintenance.service import (
    LeaveQuotaCleanupService,
    LeaveRequestRetentionService,
    LeaveTypeCleanupService,
)
from tests.conftest import (
    TestSessionFactory,
    seed_employee,
    seed_leave_type,
    seed_position,
    seed_quota,
    seed_request,
)


def _retired() -> dict:
    return dict(is_active=False, deleted_at=datetime.now(timezone.utc))


async def _count(model, *where) -> int:
    async with TestSessionFactory() as session:
        result = await session.execute(select(func.count(model.id)).where(*where))
        return result.scalar()


async def _seed_mixed_types(db: AsyncSession):
    """One leave type in each lifecycle state plus a grant for each, and one
    grant pointing at an id that was never a leave type."""
    pos = await seed_position(db)
    valid = await seed_leave_type(db, name_en="Annual")
    soft_deleted = await seed_leave_type(db, name_en="Ordination", **_retired())
    inactive = await seed_leave_type(db, name_en="Military", is_active=False)
    missing_id = uuid.uuid4()

    grants = {
        "valid": await seed_quota(db, pos.id, valid.id, 10),
        "soft_deleted": await seed_quota(db, pos.id, soft_deleted.id, 5),
        "inactive": await seed_quota(db, pos.id, inactive.id, 3),
        "missing": await seed_quota(db, pos.id, missing_id, 2),
    }
    return grants, (valid, soft_deleted, inactive, missing_id)


# ═════════════════════════════════════════════════════════════════════
# Orphan detection
# ═════════════════════════════════════════════════════════════════════


class TestClassifyLeaveType:
    """valid / missing / soft_deleted / inactive classification."""

    async def test_each_status(self, db: AsyncSession):
        _, (valid, soft_deleted, inactive, missing_id) = await _seed_mixed_types(db)

        checks = {
            key: await LeaveQuotaCleanupService.classify_leave_type(db, lt_id)
            for key, lt_id in [
                ("valid", valid.id),
                ("soft_deleted", soft_deleted.id),
                ("inactive", inactive.id),
                ("missing", missing_id),
            ]
        }
        assert {k: c.status for k, c in checks.items()} == {
            "valid": LeaveTypeStatus.valid,
            "soft_deleted": LeaveTypeStatus.soft_deleted,
            "inactive": LeaveTypeStatus.inactive,
            "missing": LeaveTypeStatus.missing,
        }
        assert not checks["valid"].is_orphaned
        assert checks["missing"].info.name_en == "Unknown"
        assert checks["missing"].info.status == "Not Found"
        assert checks["soft_deleted"].info.status == "Soft-deleted"

    async def test_soft_deleted_wins_over_inactive(self, db: AsyncSession):
        lt = await seed_leave_type(db, **_retired())
        check = await LeaveQuotaCleanupService.classify_leave_type(db, lt.id)
        assert check.status == LeaveTypeStatus.soft_deleted
        assert check.reason == "Leave type is soft-deleted"


class TestFindOrphanedQuotas:
    """Detection is exhaustive and precise."""

    async def test_exactly_the_non_valid_grants(self, db: AsyncSession):
        grants, _ = await _seed_mixed_types(db)

        orphans = await LeaveQuotaCleanupService.find_orphaned_quotas(db)
        assert {o.quota.id for o in orphans} == {
            grants["soft_deleted"].id,
            grants["inactive"].id,
            grants["missing"].id,
        }
        labels = {o.quota.id: o.info.status for o in orphans}
        assert labels[grants["missing"].id] == "Not Found"
        assert labels[grants["inactive"].id] == "Inactive"

    async def test_nothing_orphaned(self, db: AsyncSession):
        pos = await seed_position(db)
        lt = await seed_leave_type(db)
        await seed_quota(db, pos.id, lt.id, 10)
        assert await LeaveQuotaCleanupService.find_orphaned_quotas(db) == []

    async def test_statistics(self, db: AsyncSession):
        await _seed_mixed_types(db)

        stats = await LeaveQuotaCleanupService.get_cleanup_statistics(db)
        assert stats.total_records == 4
        assert stats.valid_records == 1
        assert stats.orphaned_records == 3
        assert stats.total_quota == Decimal("20")
        assert stats.orphaned_quota == Decimal("10")
        assert stats.valid_leave_types == 1
        assert stats.orphaned_percentage == Decimal("75.00")

    async def test_statistics_empty(self, db: AsyncSession):
        stats = await LeaveQuotaCleanupService.get_cleanup_statistics(db)
        assert stats.total_records == 0
        assert stats.orphaned_percentage == 0


# ═════════════════════════════════════════════════════════════════════
# Best-effort quota cleanup
# ═════════════════════════════════════════════════════════════════════


class TestQuotaCleanup:
    """Per-grant transactions; one failure never aborts the batch."""

    async def test_auto_cleanup_deletes_orphans_only(self, db: AsyncSession):
        grants, _ = await _seed_mixed_types(db)
        await db.commit()

        service = LeaveQuotaCleanupService(TestSessionFactory)
        result = await service.auto_cleanup_orphaned_quotas()

        assert result.total_checked == 3
        assert len(result.deleted) == 3
        assert result.failed == []
        assert result.total_quota_removed == Decimal("10")
        assert result.message == "Cleaned up 3 orphaned leave quota records"
        assert await _count(LeaveQuota) == 1
        assert await _count(LeaveQuota, LeaveQuota.id == grants["valid"].id) == 1

    async def test_second_run_finds_nothing(self, db: AsyncSession):
        await _seed_mixed_types(db)
        await db.commit()

        service = LeaveQuotaCleanupService(TestSessionFactory)
        await service.auto_cleanup_orphaned_quotas()
        again = await service.auto_cleanup_orphaned_quotas()
        assert again.deleted == []
        assert again.message == "No orphaned records found"

    async def test_failure_is_recorded_and_batch_continues(self, db: AsyncSession):
        grants, _ = await _seed_mixed_types(db)
        await db.commit()
        bad_id = grants["inactive"].id
        original = LeaveQuotaCleanupService._delete_quota

        async def flaky(session, quota_id):
            if quota_id == bad_id:
                raise OperationalError("DELETE FROM leave_quotas", {}, Exception("database is locked"))
            await original(session, quota_id)

        service = LeaveQuotaCleanupService(TestSessionFactory)
        async with TestSessionFactory() as session:
            orphans = await service.find_orphaned_quotas(session)

        with patch.object(LeaveQuotaCleanupService, "_delete_quota", new=staticmethod(flaky)):
            result = await service.delete_orphaned_quotas(orphans)

        assert result.total_to_delete == 3
        assert len(result.deleted) == 2
        assert [f.id for f in result.failed] == [bad_id]
        assert "database is locked" in result.failed[0].error
        assert result.total_quota_removed == Decimal("7")
        assert await _count(LeaveQuota, LeaveQuota.id == bad_id) == 1
        assert await _count(LeaveQuota) == 2


# ═════════════════════════════════════════════════════════════════════
# Leave type erasure
# ═════════════════════════════════════════════════════════════════════


class TestCanPermanentlyDelete:
    """Safety check before erasing a leave type."""

    async def test_unreferenced_soft_deleted_type(self, db: AsyncSession):
        lt = await seed_leave_type(db, **_retired())
        check = await LeaveTypeCleanupService.can_permanently_delete(db, lt.id)
        assert check.can_delete is True
        assert check.details.leave_quotas == 0

    async def test_pending_request_blocks(self, db: AsyncSession):
        emp = await seed_employee(db)
        lt = await seed_leave_type(db, **_retired())
        await seed_request(db, emp.id, lt.id, status=LeaveStatus.pending)

        check = await LeaveTypeCleanupService.can_permanently_delete(db, lt.id)
        assert check.can_delete is False
        assert check.active_requests == 1
        assert check.reason == "Leave type has 1 active leave request(s)"

    async def test_historical_requests_do_not_block(self, db: AsyncSession):
        emp = await seed_employee(db)
        pos = await seed_position(db)
        lt = await seed_leave_type(db, **_retired())
        await seed_request(db, emp.id, lt.id, status=LeaveStatus.completed)
        await seed_request(db, emp.id, lt.id, status=LeaveStatus.rejected)
        await seed_quota(db, pos.id, lt.id, 4)

        check = await LeaveTypeCleanupService.can_permanently_delete(db, lt.id)
        assert check.can_delete is True
        assert check.details.historical_requests == 2
        assert check.details.leave_quotas == 1

    async def test_active_type_cannot_be_erased(self, db: AsyncSession):
        lt = await seed_leave_type(db)
        check = await LeaveTypeCleanupService.can_permanently_delete(db, lt.id)
        assert check.can_delete is False
        assert check.reason == "Leave type is not soft-deleted"

    async def test_missing_type(self, db: AsyncSession):
        check = await LeaveTypeCleanupService.can_permanently_delete(db, uuid.uuid4())
        assert check.can_delete is False
        assert check.reason == "Leave type not found"


class TestPermanentDelete:
    """Single-transaction erasure of a leave type and its grants."""

    async def test_erased_type_becomes_missing(self, db: AsyncSession):
        lt = await seed_leave_type(db, **_retired())
        await db.commit()

        service = LeaveTypeCleanupService(TestSessionFactory)
        result = await service.permanently_delete_leave_type(lt.id)
        assert result.success is True
        assert result.message == "Leave type permanently deleted"

        async with TestSessionFactory() as session:
            check = await LeaveQuotaCleanupService.classify_leave_type(session, lt.id)
        assert check.status == LeaveTypeStatus.missing

    async def test_grants_removed_with_type(self, db: AsyncSession):
        pos = await seed_position(db)
        lt = await seed_leave_type(db, **_retired())
        await seed_quota(db, pos.id, lt.id, 4)
        await seed_quota(db, pos.id, lt.id, 6)
        await db.commit()

        await LeaveTypeCleanupService(TestSessionFactory).permanently_delete_leave_type(lt.id)
        assert await _count(LeaveQuota, LeaveQuota.leave_type_id == lt.id) == 0
        assert await _count(LeaveType, LeaveType.id == lt.id) == 0

    async def test_blocked_by_active_request(self, db: AsyncSession):
        emp = await seed_employee(db)
        lt = await seed_leave_type(db, **_retired())
        await seed_request(db, emp.id, lt.id, status=LeaveStatus.approved)
        await db.commit()

        with pytest.raises(LeaveTypeDeletionBlocked) as exc_info:
            await LeaveTypeCleanupService(TestSessionFactory).permanently_delete_leave_type(lt.id)
        assert exc_info.value.status_code == 409
        assert "active leave request" in exc_info.value.reason
        assert await _count(LeaveType, LeaveType.id == lt.id) == 1

    async def test_failure_rolls_back_everything(self, db: AsyncSession):
        pos = await seed_position(db)
        lt = await seed_leave_type(db, **_retired())
        await seed_quota(db, pos.id, lt.id, 4)
        await seed_quota(db, pos.id, lt.id, 6)
        await db.commit()

        service = LeaveTypeCleanupService(TestSessionFactory)
        with patch.object(
            LeaveTypeCleanupService,
            "_delete_leave_type_row",
            new=AsyncMock(side_effect=RuntimeError("connection reset")),
        ):
            with pytest.raises(RuntimeError):
                await service.permanently_delete_leave_type(lt.id)

        assert await _count(LeaveType, LeaveType.id == lt.id) == 1
        assert await _count(LeaveQuota, LeaveQuota.leave_type_id == lt.id) == 2


class TestAutoCleanupLeaveTypes:
    """Batch erasure with disjoint outcome buckets."""

    async def test_buckets_are_disjoint(self, db: AsyncSession):
        emp = await seed_employee(db)
        pos = await seed_position(db)
        deletable = await seed_leave_type(db, name_en="Deletable", **_retired())
        blocked = await seed_leave_type(db, name_en="Blocked", **_retired())
        broken = await seed_leave_type(db, name_en="Broken", **_retired())
        untouched = await seed_leave_type(db, name_en="Active")
        await seed_request(db, emp.id, blocked.id, status=LeaveStatus.in_progress)
        await seed_quota(db, pos.id, broken.id, 2)
        await db.commit()

        original = LeaveTypeCleanupService._delete_quotas_for_leave_type

        async def flaky(session, leave_type_id):
            if leave_type_id == broken.id:
                raise OperationalError("DELETE FROM leave_quotas", {}, Exception("timeout"))
            return await original(session, leave_type_id)

        service = LeaveTypeCleanupService(TestSessionFactory)
        with patch.object(
            LeaveTypeCleanupService, "_delete_quotas_for_leave_type", new=staticmethod(flaky),
        ):
            result = await service.auto_cleanup_orphaned_leave_types()

        assert result.total_checked == 3
        assert [e.id for e in result.deleted] == [deletable.id]
        assert [e.id for e in result.cannot_delete] == [blocked.id]
        assert [e.id for e in result.errors] == [broken.id]
        assert await _count(LeaveType, LeaveType.id == untouched.id) == 1
        assert await _count(LeaveType, LeaveType.id == broken.id) == 1
        assert await _count(LeaveQuota, LeaveQuota.leave_type_id == broken.id) == 1

    async def test_request_created_after_precheck_blocks_in_transaction(self, db: AsyncSession):
        """The pre-check saw no active request, but one exists by the time the
        erasure transaction re-checks. Nothing is deleted."""
        emp = await seed_employee(db)
        pos = await seed_position(db)
        lt = await seed_leave_type(db, name_en="Racing", **_retired())
        await seed_quota(db, pos.id, lt.id, 5)
        await seed_request(db, emp.id, lt.id, status=LeaveStatus.pending)
        await db.commit()

        real_check = LeaveTypeCleanupService.can_permanently_delete
        calls = []

        async def stale_then_real(session, leave_type_id):
            calls.append(leave_type_id)
            if len(calls) == 1:
                return DeletionCheck(can_delete=True, reason="No active usage found")
            return await real_check(session, leave_type_id)

        service = LeaveTypeCleanupService(TestSessionFactory)
        with patch.object(
            LeaveTypeCleanupService, "can_permanently_delete", new=staticmethod(stale_then_real),
        ):
            result = await service.auto_cleanup_orphaned_leave_types()

        assert len(calls) == 2
        assert result.deleted == []
        assert result.errors == []
        (entry,) = result.cannot_delete
        assert entry.id == lt.id
        assert entry.reason == "Leave type has 1 active leave request(s)"
        assert await _count(LeaveType, LeaveType.id == lt.id) == 1
        assert await _count(LeaveQuota, LeaveQuota.leave_type_id == lt.id) == 1

    async def test_second_run_deletes_nothing(self, db: AsyncSession):
        emp = await seed_employee(db)
        await seed_leave_type(db, name_en="Old", **_retired())
        blocked = await seed_leave_type(db, name_en="Blocked", **_retired())
        await seed_request(db, emp.id, blocked.id)
        await db.commit()

        service = LeaveTypeCleanupService(TestSessionFactory)
        first = await service.auto_cleanup_orphaned_leave_types()
        second = await service.auto_cleanup_orphaned_leave_types()

        assert len(first.deleted) == 1
        assert second.deleted == []
        assert second.total_checked == 1
        assert [e.id for e in second.cannot_delete] == [blocked.id]


# ═════════════════════════════════════════════════════════════════════
# Leave request retention
# ═════════════════════════════════════════════════════════════════════


class TestLeaveRequestRetention:
    """Bulk deletion of leave requests older than the retention period."""

    NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    async def test_deletes_only_requests_before_cutoff(self, db: AsyncSession):
        emp = await seed_employee(db)
        lt = await seed_leave_type(db)
        old = await seed_request(
            db, emp.id, lt.id, status=LeaveStatus.pending,
            created_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        )
        await seed_request(
            db, emp.id, lt.id, status=LeaveStatus.completed,
            created_at=datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc),
        )
        await seed_request(
            db, emp.id, lt.id, status=LeaveStatus.approved,
            created_at=datetime(2025, 9, 1, tzinfo=timezone.utc),
        )
        await db.commit()

        service = LeaveRequestRetentionService(TestSessionFactory)
        result = await service.cleanup_old_leave_requests(now=self.NOW)

        assert result.cutoff == datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc)
        assert result.deleted_count == 1
        assert result.message == "Successfully deleted 1 old leave request records"
        assert await _count(LeaveRequest, LeaveRequest.id == old.id) == 0
        assert await _count(LeaveRequest, LeaveRequest.user_id == emp.id) == 2

    async def test_nothing_to_delete(self, db: AsyncSession):
        emp = await seed_employee(db)
        lt = await seed_leave_type(db)
        await seed_request(db, emp.id, lt.id, created_at=self.NOW)
        await db.commit()

        service = LeaveRequestRetentionService(TestSessionFactory)
        result = await service.cleanup_old_leave_requests(now=self.NOW)
        assert result.deleted_count == 0
        assert result.message == "No old records found to delete"
        assert await _count(LeaveRequest, LeaveRequest.user_id == emp.id) == 1

    async def test_configured_retention(self, db: AsyncSession):
        emp = await seed_employee(db)
        lt = await seed_leave_type(db)
        await seed_request(
            db, emp.id, lt.id, created_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
        )
        await db.commit()

        service = LeaveRequestRetentionService(TestSessionFactory, retention_years=1)
        result = await service.cleanup_old_leave_requests(now=self.NOW)
        assert result.deleted_count == 1

    def test_leap_day_cutoff(self):
        service = LeaveRequestRetentionService(TestSessionFactory)
        leap_day = datetime(2028, 2, 29, 9, 30, tzinfo=timezone.utc)
        assert service.cutoff(leap_day) == datetime(2026, 2, 28, 9, 30, tzinfo=timezone.utc)
