"""001 – Leave engine schema: positions, employees, leave types, quotas, usage, requests.

Revision ID: 001_leave_engine_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+07:00
"""

from alembic import op

# Revision identifiers
revision = "001_leave_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. positions ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE positions (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name_en         VARCHAR(150) NOT NULL,
            name_th         VARCHAR(150),
            new_year_quota  BOOLEAN NOT NULL DEFAULT FALSE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code  VARCHAR(20)  NOT NULL UNIQUE,
            full_name      VARCHAR(200) NOT NULL,
            email          VARCHAR(255) UNIQUE,
            position_id    UUID REFERENCES positions(id),
            is_active      BOOLEAN NOT NULL DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_employees_position_id ON employees(position_id)")

    # ── 3. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name_en             VARCHAR(100) NOT NULL,
            name_th             VARCHAR(100),
            require_attachment  BOOLEAN NOT NULL DEFAULT FALSE,
            is_active           BOOLEAN NOT NULL DEFAULT TRUE,
            deleted_at          TIMESTAMPTZ,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_leave_type_active ON leave_types(is_active, deleted_at)")

    # leave_type_id below has no FK: rows may outlive their leave type

    # ── 4. leave_quotas ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_quotas (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            position_id    UUID NOT NULL REFERENCES positions(id),
            leave_type_id  UUID NOT NULL,
            quota          NUMERIC(5,1) NOT NULL DEFAULT 0,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_quota_non_negative CHECK (quota >= 0)
        )
    """)
    op.execute("CREATE INDEX ix_leave_quotas_position_id ON leave_quotas(position_id)")
    op.execute("CREATE INDEX ix_leave_quotas_leave_type_id ON leave_quotas(leave_type_id)")

    # ── 5. leave_used ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_used (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id        UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL,
            days           INTEGER NOT NULL DEFAULT 0,
            hours          NUMERIC(4,1) NOT NULL DEFAULT 0,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_used_days  CHECK (days >= 0),
            CONSTRAINT ck_leave_used_hours CHECK (hours >= 0)
        )
    """)
    op.execute("CREATE INDEX idx_leave_used_user_type ON leave_used(user_id, leave_type_id)")

    # ── 6. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id        UUID NOT NULL REFERENCES employees(id),
            leave_type_id  UUID NOT NULL,
            status         VARCHAR(20) NOT NULL DEFAULT 'pending',
            start_date     DATE NOT NULL,
            end_date       DATE NOT NULL,
            reason         TEXT,
            created_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_leave_type_id ON leave_requests(leave_type_id)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "leave_requests",
        "leave_used",
        "leave_quotas",
        "leave_types",
        "employees",
        "positions",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
