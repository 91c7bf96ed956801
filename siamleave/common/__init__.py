"""Common module — shared building blocks for SiamLeave."""

from siamleave.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    DELETED_PREFIX,
    STATUS_LABELS,
    UNKNOWN_NAME,
    LeaveStatus,
    LeaveTypeStatus,
    ResetStrategy,
)
from siamleave.common.exceptions import (
    AppException,
    LeaveTypeDeletionBlocked,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from siamleave.common.models import SoftDeleteMixin

__all__ = [
    # Constants / Enums
    "ACTIVE_LEAVE_STATUSES",
    "DELETED_PREFIX",
    "STATUS_LABELS",
    "UNKNOWN_NAME",
    "LeaveStatus",
    "LeaveTypeStatus",
    "ResetStrategy",
    # Exceptions
    "AppException",
    "LeaveTypeDeletionBlocked",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # ORM
    "SoftDeleteMixin",
]
