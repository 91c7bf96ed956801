"""Leave service layer — balance aggregation, leave types, quota grants, yearly reset.

Business logic:
  - Usage / quota / remaining balance per employee and leave type
  - Running-total usage writes with hour → day carry
  - Leave type soft-deletion and quota upsert
  - Yearly reset of usage for positions without carried-over quota
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from siamleave.common.constants import (
    DELETED_PREFIX,
    UNKNOWN_NAME,
    ResetStrategy,
)
from siamleave.common.exceptions import NotFoundException, ValidationException
from siamleave.config import settings
from siamleave.core_hr.models import Employee, Position
from siamleave.leave.duration import end_of_month, end_of_year, start_of_year, to_total_days
from siamleave.leave.models import LeaveQuota, LeaveType, LeaveUsed
from siamleave.leave.schemas import (
    LeaveQuotaOut,
    LeaveQuotaUpsert,
    LeaveSummaryItem,
    LeaveTypeOut,
    LeaveUsageOut,
    QuotaOut,
    ResetResult,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Shared helpers
# ═════════════════════════════════════════════════════════════════════


def display_names(leave_type: Optional[LeaveType]) -> tuple[str, str]:
    """(English, Thai) names for presentation; retired types are prefixed."""
    if leave_type is None:
        return UNKNOWN_NAME, UNKNOWN_NAME
    name_en = leave_type.name_en or UNKNOWN_NAME
    name_th = leave_type.name_th or name_en
    if not leave_type.is_valid:
        return DELETED_PREFIX + name_en, DELETED_PREFIX + name_th
    return name_en, name_th


async def _get_employee(db: AsyncSession, user_id: uuid.UUID) -> Employee:
    result = await db.execute(select(Employee).where(Employee.id == user_id))
    employee = result.scalars().first()
    if employee is None:
        raise NotFoundException("Employee", str(user_id))
    return employee


async def _resolve_position_id(db: AsyncSession, employee: Employee) -> uuid.UUID:
    """The employee's position id; a missing mapping is a hard failure."""
    if employee.position_id is None:
        raise NotFoundException("Position", f"<none assigned to employee {employee.id}>")
    result = await db.execute(
        select(Position.id).where(Position.id == employee.position_id)
    )
    position_id = result.scalar()
    if position_id is None:
        raise NotFoundException("Position", str(employee.position_id))
    return position_id


# ═════════════════════════════════════════════════════════════════════
# LeaveBalanceService
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceService:
    """Read-side aggregation of quota and usage, plus the usage write path.

    All arithmetic is Decimal and unrounded; ``WORKING_HOURS_PER_DAY`` is the
    single day/hour conversion constant.
    """

    @staticmethod
    def _period_window(
        year: Optional[int],
        month: Optional[int] = None,
    ) -> tuple[datetime, datetime]:
        """Business-zone calendar year, or one month of it, as UTC bounds.
        A month without a year means that month of the current year."""
        if year is None:
            year = datetime.now(settings.business_tz).year
        start, end = start_of_year(year), end_of_year(year)
        if month is not None:
            start, end = start.replace(month=month), end_of_month(year, month)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    @staticmethod
    def _usage_query(
        user_id: uuid.UUID,
        year: Optional[int],
        leave_type_id: Optional[uuid.UUID] = None,
        month: Optional[int] = None,
    ):
        query = select(LeaveUsed).where(LeaveUsed.user_id == user_id)
        if leave_type_id is not None:
            query = query.where(LeaveUsed.leave_type_id == leave_type_id)
        if year is not None or month is not None:
            start, end = LeaveBalanceService._period_window(year, month)
            query = query.where(
                LeaveUsed.created_at >= start,
                LeaveUsed.created_at <= end,
            )
        return query

    @staticmethod
    async def _find_usage(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> Optional[LeaveUsed]:
        result = await db.execute(
            LeaveBalanceService._usage_query(user_id, year, leave_type_id, month)
            .order_by(LeaveUsed.updated_at.desc(), LeaveUsed.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    @staticmethod
    async def _get_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> Optional[LeaveType]:
        result = await db.execute(select(LeaveType).where(LeaveType.id == leave_type_id))
        return result.scalars().first()

    # ─────────────────────────────────────────────────────────────────
    # Usage
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def usage_for(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> LeaveUsageOut:
        """Usage of one leave type by one user, optionally scoped to the
        rows created in ``year`` (and ``month``). A missing row is reported
        as zero."""

        leave_type = await LeaveBalanceService._get_leave_type(db, leave_type_id)
        name_en, name_th = display_names(leave_type)

        record = await LeaveBalanceService._find_usage(db, user_id, leave_type_id, year, month)
        if record is None:
            return LeaveUsageOut(
                user_id=user_id,
                leave_type_id=leave_type_id,
                leave_type_name_en=name_en,
                leave_type_name_th=name_th,
            )

        return LeaveUsageOut(
            id=record.id,
            user_id=record.user_id,
            leave_type_id=record.leave_type_id,
            leave_type_name_en=name_en,
            leave_type_name_th=name_th,
            days=record.days or 0,
            hours=Decimal(record.hours or 0),
            total_days=to_total_days(record.days, record.hours),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    # ─────────────────────────────────────────────────────────────────
    # Quota
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _quota_amount(
        db: AsyncSession,
        position_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Decimal:
        # Duplicate grants for a pair: the most recently created one wins
        result = await db.execute(
            select(LeaveQuota.quota)
            .where(
                LeaveQuota.position_id == position_id,
                LeaveQuota.leave_type_id == leave_type_id,
            )
            .order_by(LeaveQuota.created_at.desc(), LeaveQuota.id.desc())
            .limit(1)
        )
        quota = result.scalar()
        return Decimal(quota) if quota is not None else Decimal("0")

    @staticmethod
    async def quota_for(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> Decimal:
        """Days of ``leave_type_id`` granted to the user's position.

        No grant means no entitlement (0). An employee without a resolvable
        position raises ``NotFoundException``.
        """
        employee = await _get_employee(db, user_id)
        position_id = await _resolve_position_id(db, employee)
        return await LeaveBalanceService._quota_amount(db, position_id, leave_type_id)

    @staticmethod
    async def quota_detail(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
    ) -> QuotaOut:
        employee = await _get_employee(db, user_id)
        position_id = await _resolve_position_id(db, employee)
        quota = await LeaveBalanceService._quota_amount(db, position_id, leave_type_id)
        return QuotaOut(
            user_id=user_id,
            leave_type_id=leave_type_id,
            position_id=position_id,
            quota=quota,
        )

    # ─────────────────────────────────────────────────────────────────
    # Summary
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def summary_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> list[LeaveSummaryItem]:
        """Quota / used / remaining for every leave type, in creation order.

        Types without a grant appear with quota 0; retired types appear with
        their status so nothing is silently dropped.
        """

        employee = await _get_employee(db, user_id)
        position_id = await _resolve_position_id(db, employee)

        types_result = await db.execute(
            select(LeaveType).order_by(LeaveType.created_at, LeaveType.id)
        )
        leave_types = types_result.scalars().all()

        quota_result = await db.execute(
            select(LeaveQuota)
            .where(LeaveQuota.position_id == position_id)
            .order_by(LeaveQuota.created_at, LeaveQuota.id)
        )
        quotas: dict[uuid.UUID, Decimal] = {}
        for grant in quota_result.scalars().all():
            quotas[grant.leave_type_id] = Decimal(grant.quota)

        usage_result = await db.execute(
            LeaveBalanceService._usage_query(user_id, year, month=month)
            .order_by(LeaveUsed.updated_at, LeaveUsed.id)
        )
        usage: dict[uuid.UUID, LeaveUsed] = {}
        for record in usage_result.scalars().all():
            usage[record.leave_type_id] = record

        items: list[LeaveSummaryItem] = []
        for lt in leave_types:
            name_en, name_th = display_names(lt)
            quota = quotas.get(lt.id, Decimal("0"))
            record = usage.get(lt.id)
            used_days = record.days if record else 0
            used_hours = Decimal(record.hours) if record else Decimal("0")
            total_used = to_total_days(used_days, used_hours)
            items.append(
                LeaveSummaryItem(
                    leave_type_id=lt.id,
                    leave_type_name_en=name_en,
                    leave_type_name_th=name_th,
                    status=lt.lifecycle_status,
                    quota=quota,
                    used_days=used_days,
                    used_hours=used_hours,
                    total_used=total_used,
                    remaining=max(Decimal("0"), quota - total_used),
                )
            )
        return items

    # ─────────────────────────────────────────────────────────────────
    # Usage write path
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def record_usage(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        *,
        days: int = 0,
        hours: Decimal | int | float = 0,
    ) -> LeaveUsageOut:
        """Add consumption to the user's running total for a leave type.

        Hours beyond one working day carry into days so the stored row keeps
        ``0 <= hours < WORKING_HOURS_PER_DAY``.
        """

        hours = Decimal(str(hours))
        errors: dict[str, list[str]] = {}
        if days < 0:
            errors["days"] = ["Must be zero or positive."]
        if hours < 0:
            errors["hours"] = ["Must be zero or positive."]
        if errors:
            raise ValidationException(errors)

        await _get_employee(db, user_id)
        leave_type = await LeaveBalanceService._get_leave_type(db, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        if not leave_type.is_valid:
            raise ValidationException(
                {"leave_type_id": [f"{leave_type.display_name} is no longer available."]}
            )

        now = datetime.now(timezone.utc)
        record = await LeaveBalanceService._find_usage(db, user_id, leave_type_id)
        if record is None:
            record = LeaveUsed(
                user_id=user_id,
                leave_type_id=leave_type_id,
                days=0,
                hours=Decimal("0"),
                created_at=now,
            )
            db.add(record)

        per_day = settings.WORKING_HOURS_PER_DAY
        total_hours = Decimal(record.hours or 0) + hours
        carry = int(total_hours // per_day)
        record.days = (record.days or 0) + days + carry
        record.hours = total_hours - carry * per_day
        record.updated_at = now
        await db.flush()

        logger.info(
            "Recorded usage user=%s leave_type=%s +%sd %sh → %sd %sh",
            user_id, leave_type_id, days, hours, record.days, record.hours,
        )
        return await LeaveBalanceService.usage_for(db, user_id, leave_type_id)


# ═════════════════════════════════════════════════════════════════════
# LeaveTypeService
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeService:
    """Leave type listing, soft retirement and quota grants."""

    @staticmethod
    async def get_leave_types(
        db: AsyncSession,
        *,
        include_deleted: bool = False,
    ) -> list[LeaveTypeOut]:
        query = select(LeaveType).order_by(LeaveType.created_at, LeaveType.id)
        if not include_deleted:
            query = query.where(LeaveType.valid_clause())
        result = await db.execute(query)
        return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

    @staticmethod
    async def soft_delete_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
    ) -> LeaveTypeOut:
        """Retire a leave type. Its rows stay until maintenance erases them."""

        leave_type = await LeaveBalanceService._get_leave_type(db, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))

        if leave_type.deleted_at is None:
            now = datetime.now(timezone.utc)
            leave_type.soft_delete(now)
            leave_type.updated_at = now
            await db.flush()
            logger.info("Soft-deleted leave type %s (%s)", leave_type.id, leave_type.display_name)

        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def upsert_quota(
        db: AsyncSession,
        data: LeaveQuotaUpsert,
    ) -> LeaveQuotaOut:
        """Create or update the grant for a (position, leave type) pair.

        Writes go to the existing grant when there is one, so the pair never
        gains a second row through this path.
        """

        position = await db.execute(
            select(Position.id).where(Position.id == data.position_id)
        )
        if position.scalar() is None:
            raise NotFoundException("Position", str(data.position_id))

        leave_type = await LeaveBalanceService._get_leave_type(db, data.leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(data.leave_type_id))
        if not leave_type.is_valid:
            raise ValidationException(
                {"leave_type_id": [f"{leave_type.display_name} is no longer available."]}
            )

        result = await db.execute(
            select(LeaveQuota)
            .where(
                LeaveQuota.position_id == data.position_id,
                LeaveQuota.leave_type_id == data.leave_type_id,
            )
            .order_by(LeaveQuota.created_at.desc(), LeaveQuota.id.desc())
            .limit(1)
        )
        grant = result.scalars().first()
        if grant is None:
            grant = LeaveQuota(
                position_id=data.position_id,
                leave_type_id=data.leave_type_id,
                quota=data.quota,
                created_at=datetime.now(timezone.utc),
            )
            db.add(grant)
        else:
            grant.quota = data.quota
        await db.flush()
        return LeaveQuotaOut.model_validate(grant)


# ═════════════════════════════════════════════════════════════════════
# LeaveQuotaResetService
# ═════════════════════════════════════════════════════════════════════


class LeaveQuotaResetService:
    """Start-of-year reset of usage totals."""

    @staticmethod
    async def _reset_users(
        db: AsyncSession,
        user_ids: Sequence[uuid.UUID],
        strategy: ResetStrategy,
    ) -> int:
        if strategy == ResetStrategy.delete:
            result = await db.execute(
                delete(LeaveUsed).where(LeaveUsed.user_id.in_(user_ids))
            )
        else:
            result = await db.execute(
                update(LeaveUsed)
                .where(LeaveUsed.user_id.in_(user_ids))
                .values(
                    days=0,
                    hours=Decimal("0"),
                    updated_at=datetime.now(timezone.utc),
                )
            )
        return result.rowcount or 0

    @staticmethod
    async def reset_leave_usage(
        db: AsyncSession,
        *,
        position_id: Optional[uuid.UUID] = None,
        force: bool = False,
        strategy: ResetStrategy = ResetStrategy.zero,
        today: Optional[date] = None,
    ) -> ResetResult:
        """Reset usage for one position, or for every position whose quota
        does not carry into the new year (``new_year_quota = False``).

        Without ``force`` this only runs on January 1st in the business
        time zone.
        """

        today = today or datetime.now(settings.business_tz).date()
        if not force and (today.month, today.day) != (1, 1):
            raise ValidationException(
                {"force": ["Reset is only allowed on January 1st (or send force=true)."]}
            )

        if position_id is not None:
            result = await db.execute(select(Position.id).where(Position.id == position_id))
            position_ids = list(result.scalars().all())
            if not position_ids:
                raise NotFoundException("Position", str(position_id))
        else:
            result = await db.execute(
                select(Position.id).where(Position.new_year_quota.is_(False))
            )
            position_ids = list(result.scalars().all())

        if not position_ids:
            return ResetResult(
                positions=0, strategy=strategy, message="No positions to reset",
            )

        users_result = await db.execute(
            select(Employee.id).where(Employee.position_id.in_(position_ids))
        )
        user_ids = list(users_result.scalars().all())
        if not user_ids:
            return ResetResult(
                positions=len(position_ids),
                strategy=strategy,
                message="No users in selected positions",
            )

        affected = await LeaveQuotaResetService._reset_users(db, user_ids, strategy)
        logger.info(
            "Leave usage reset: positions=%d users=%d affected=%d strategy=%s",
            len(position_ids), len(user_ids), affected, strategy.value,
        )
        return ResetResult(
            positions=len(position_ids),
            users=len(user_ids),
            affected=affected,
            strategy=strategy,
            message="Leave quota reset successfully",
        )

    @staticmethod
    async def reset_usage_for_users(
        db: AsyncSession,
        user_ids: Sequence[uuid.UUID],
        strategy: ResetStrategy = ResetStrategy.zero,
    ) -> ResetResult:
        """Manual reset for an explicit list of users."""

        if not user_ids:
            raise ValidationException({"user_ids": ["At least one user id is required."]})

        affected = await LeaveQuotaResetService._reset_users(db, user_ids, strategy)
        logger.info(
            "Manual leave usage reset: users=%d affected=%d strategy=%s",
            len(user_ids), affected, strategy.value,
        )
        return ResetResult(
            users=len(user_ids),
            affected=affected,
            strategy=strategy,
            message="Leave quota reset successfully",
        )
