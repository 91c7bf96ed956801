"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out / *Result      → response bodies (read)

Balance figures stay unrounded Decimals inside the service layer; the
``_round2`` serializer is the only place they are rounded, on the way out.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from siamleave.common.constants import LeaveTypeStatus, ResetStrategy

_CENT = Decimal("0.01")


def _round2(value: Decimal) -> float:
    return float(Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name_en: str
    name_th: Optional[str] = None
    require_attachment: bool = False
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ═════════════════════════════════════════════════════════════════════
# Quota
# ═════════════════════════════════════════════════════════════════════


class LeaveQuotaUpsert(BaseModel):
    """Set the quota of one leave type for one position."""

    position_id: uuid.UUID
    leave_type_id: uuid.UUID
    quota: Decimal = Field(..., ge=0, max_digits=5, decimal_places=1)


class LeaveQuotaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position_id: uuid.UUID
    leave_type_id: uuid.UUID
    quota: Decimal
    created_at: Optional[datetime] = None

    @field_serializer("quota")
    def _ser_quota(self, v: Decimal) -> float:
        return _round2(v)


class QuotaOut(BaseModel):
    """Entitlement of one employee for one leave type."""

    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    position_id: uuid.UUID
    quota: Decimal

    @field_serializer("quota")
    def _ser_quota(self, v: Decimal) -> float:
        return _round2(v)


# ═════════════════════════════════════════════════════════════════════
# Usage
# ═════════════════════════════════════════════════════════════════════


class LeaveUsageCreate(BaseModel):
    """Consumption to add to a running total."""

    days: int = Field(0, ge=0)
    hours: Decimal = Field(Decimal("0"), ge=0, decimal_places=1)


class LeaveUsageOut(BaseModel):
    """Usage of one leave type by one user. Zero-valued when no row exists."""

    id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name_en: str
    leave_type_name_th: str
    days: int = 0
    hours: Decimal = Decimal("0")
    total_days: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("hours", "total_days")
    def _ser_amounts(self, v: Decimal) -> float:
        return _round2(v)


# ═════════════════════════════════════════════════════════════════════
# Summary
# ═════════════════════════════════════════════════════════════════════


class LeaveSummaryItem(BaseModel):
    """Quota, usage and remaining balance for one leave type."""

    leave_type_id: uuid.UUID
    leave_type_name_en: str
    leave_type_name_th: str
    status: LeaveTypeStatus
    quota: Decimal = Decimal("0")
    used_days: int = 0
    used_hours: Decimal = Decimal("0")
    total_used: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")

    @field_serializer("quota", "used_hours", "total_used", "remaining")
    def _ser_amounts(self, v: Decimal) -> float:
        return _round2(v)


# ═════════════════════════════════════════════════════════════════════
# Yearly reset
# ═════════════════════════════════════════════════════════════════════


class ResetRequest(BaseModel):
    position_id: Optional[uuid.UUID] = Field(
        None,
        description=(
            "Reset a single position. When omitted every position with "
            "new_year_quota = false is reset."
        ),
    )
    force: bool = Field(False, description="Allow a reset outside January 1st.")
    strategy: ResetStrategy = ResetStrategy.zero


class ResetByUsersRequest(BaseModel):
    user_ids: list[uuid.UUID]
    strategy: ResetStrategy = ResetStrategy.zero


class ResetResult(BaseModel):
    positions: Optional[int] = None
    users: int = 0
    affected: int = 0
    strategy: ResetStrategy = ResetStrategy.zero
    message: str = ""
