"""Core HR ORM models: Position, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
Only the columns the leave engine reads are mapped here.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from siamleave.database import Base


# ═════════════════════════════════════════════════════════════════════
# Position
# ═════════════════════════════════════════════════════════════════════


class Position(Base):
    """Job position. Quota grants are attached per position."""

    __tablename__ = "positions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name_en: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    name_th: Mapped[Optional[str]] = mapped_column(sa.String(150))
    # False → usage is zeroed by the yearly reset; True → kept across years
    new_year_quota: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(back_populates="position")

    def __repr__(self) -> str:
        return f"<Position {self.name_en!r}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255), unique=True)
    position_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("positions.id"), index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    position: Mapped[Optional[Position]] = relationship(back_populates="employees")

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code!r}>"
