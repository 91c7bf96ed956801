"""Common ORM building blocks: soft-delete capability."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from siamleave.common.constants import LeaveTypeStatus


class SoftDeleteMixin:
    """Columns and behaviour for rows that are retired before being erased.

    Only models that inherit this mixin can be soft-deleted; everything
    else is removed with a plain DELETE.
    """

    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    @property
    def is_valid(self) -> bool:
        return self.deleted_at is None and bool(self.is_active)

    @property
    def lifecycle_status(self) -> LeaveTypeStatus:
        # soft-deleted wins over inactive: retirement sets both
        if self.deleted_at is not None:
            return LeaveTypeStatus.soft_deleted
        if not self.is_active:
            return LeaveTypeStatus.inactive
        return LeaveTypeStatus.valid

    def soft_delete(self, when: Optional[datetime] = None) -> None:
        self.deleted_at = when or datetime.now(timezone.utc)
        self.is_active = False

    @classmethod
    def valid_clause(cls):
        """SQL predicate matching rows that are neither retired nor inactive."""
        return sa.and_(cls.deleted_at.is_(None), cls.is_active.is_(True))
