"""Enums and constants for SiamLeave."""

from __future__ import annotations

import enum


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    in_progress = "in_progress"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"


# Requests in these statuses still depend on their leave type.
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.pending,
    LeaveStatus.approved,
    LeaveStatus.in_progress,
)


class LeaveTypeStatus(str, enum.Enum):
    """Classification of a leave type id for orphan detection."""

    valid = "valid"
    missing = "missing"
    soft_deleted = "soft_deleted"
    inactive = "inactive"


class ResetStrategy(str, enum.Enum):
    zero = "zero"
    delete = "delete"


# ── Display ─────────────────────────────────────────────────────────

UNKNOWN_NAME = "Unknown"
DELETED_PREFIX = "[DELETED] "

# Human-readable status labels carried in LeaveTypeInfo snapshots
STATUS_LABELS: dict[LeaveTypeStatus, str] = {
    LeaveTypeStatus.valid: "Active",
    LeaveTypeStatus.missing: "Not Found",
    LeaveTypeStatus.soft_deleted: "Soft-deleted",
    LeaveTypeStatus.inactive: "Inactive",
}
