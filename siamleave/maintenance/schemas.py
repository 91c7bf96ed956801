"""Maintenance Pydantic v2 schemas — orphan reports and cleanup outcomes."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from siamleave.common.constants import LeaveTypeStatus
from siamleave.leave.schemas import _round2


# ═════════════════════════════════════════════════════════════════════
# Orphan detection
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeInfo(BaseModel):
    """Snapshot of the leave type a record points at, placeholders when gone."""

    name_en: str
    name_th: str
    status: str
    is_active: bool = False
    deleted_at: Optional[datetime] = None


class LeaveTypeCheck(BaseModel):
    leave_type_id: uuid.UUID
    status: LeaveTypeStatus
    reason: str
    info: LeaveTypeInfo

    @property
    def is_orphaned(self) -> bool:
        return self.status != LeaveTypeStatus.valid


class QuotaRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position_id: uuid.UUID
    leave_type_id: uuid.UUID
    quota: Decimal
    created_at: Optional[datetime] = None

    @field_serializer("quota")
    def _ser_quota(self, v: Decimal) -> float:
        return _round2(v)


class OrphanedQuota(BaseModel):
    quota: QuotaRecord
    info: LeaveTypeInfo


class QuotaCleanupStatistics(BaseModel):
    total_records: int = 0
    valid_records: int = 0
    orphaned_records: int = 0
    total_quota: Decimal = Decimal("0")
    orphaned_quota: Decimal = Decimal("0")
    valid_leave_types: int = 0
    orphaned_percentage: Decimal = Decimal("0")

    @field_serializer("total_quota", "orphaned_quota", "orphaned_percentage")
    def _ser_amounts(self, v: Decimal) -> float:
        return _round2(v)


# ═════════════════════════════════════════════════════════════════════
# Quota cleanup
# ═════════════════════════════════════════════════════════════════════


class QuotaCleanupEntry(BaseModel):
    id: uuid.UUID
    position_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: str
    quota: Decimal
    status: Optional[str] = None
    error: Optional[str] = None

    @field_serializer("quota")
    def _ser_quota(self, v: Decimal) -> float:
        return _round2(v)


class QuotaCleanupResult(BaseModel):
    total_checked: int = 0
    total_to_delete: int = 0
    deleted: list[QuotaCleanupEntry] = Field(default_factory=list)
    failed: list[QuotaCleanupEntry] = Field(default_factory=list)
    total_quota_removed: Decimal = Decimal("0")
    message: str = ""

    @field_serializer("total_quota_removed")
    def _ser_removed(self, v: Decimal) -> float:
        return _round2(v)


# ═════════════════════════════════════════════════════════════════════
# Leave type erasure
# ═════════════════════════════════════════════════════════════════════


class DeletionDetails(BaseModel):
    leave_type_id: uuid.UUID
    name_en: str
    name_th: Optional[str] = None
    historical_requests: int = 0
    leave_quotas: int = 0
    soft_deleted_at: Optional[datetime] = None


class DeletionCheck(BaseModel):
    """Whether a leave type may be erased. A refusal is a value, not an error."""

    can_delete: bool
    reason: str
    active_requests: int = 0
    details: Optional[DeletionDetails] = None


class PermanentDeleteResult(BaseModel):
    success: bool
    message: str
    details: Optional[DeletionDetails] = None


class LeaveTypeCleanupEntry(BaseModel):
    id: uuid.UUID
    name: str
    reason: Optional[str] = None
    error: Optional[str] = None


class LeaveTypeCleanupResult(BaseModel):
    total_checked: int = 0
    deleted: list[LeaveTypeCleanupEntry] = Field(default_factory=list)
    cannot_delete: list[LeaveTypeCleanupEntry] = Field(default_factory=list)
    errors: list[LeaveTypeCleanupEntry] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "total_checked": self.total_checked,
            "deleted": len(self.deleted),
            "cannot_delete": len(self.cannot_delete),
            "errors": len(self.errors),
        }


# ═════════════════════════════════════════════════════════════════════
# Leave request retention
# ═════════════════════════════════════════════════════════════════════


class RequestRetentionResult(BaseModel):
    message: str
    deleted_count: int = 0
    cutoff: datetime
