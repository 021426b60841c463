"""001 – Initial schema: leave management tables, indexes, enums, seed data.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "hr", "admin"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name         VARCHAR(100) NOT NULL UNIQUE,
            description  TEXT,
            manager_id   UUID,  -- FK added after employees table
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_department_name_not_blank CHECK (length(trim(name)) > 0)
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    VARCHAR(20)  NOT NULL UNIQUE,
            email          VARCHAR(255) NOT NULL UNIQUE,
            name           VARCHAR(100) NOT NULL,
            department_id  UUID NOT NULL REFERENCES departments(id) ON DELETE RESTRICT,
            role           user_role NOT NULL DEFAULT 'employee',
            joining_date   DATE NOT NULL,
            manager_id     UUID REFERENCES employees(id),
            is_active      BOOLEAN NOT NULL DEFAULT TRUE,
            phone          VARCHAR(20),
            address        TEXT,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_employee_name_not_blank CHECK (length(trim(name)) > 0)
        )
    """)
    op.execute("CREATE INDEX ix_employees_department_id ON employees(department_id)")
    op.execute("CREATE INDEX ix_employees_manager_id ON employees(manager_id)")

    # Deferred FK: departments.manager_id → employees
    op.execute("""
        ALTER TABLE departments
            ADD CONSTRAINT fk_department_manager
            FOREIGN KEY (manager_id) REFERENCES employees(id)
    """)

    # ── 3. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name                    VARCHAR(50) NOT NULL UNIQUE,
            description             TEXT,
            max_days_per_year       INTEGER NOT NULL DEFAULT 0,
            carry_forward_allowed   BOOLEAN NOT NULL DEFAULT FALSE,
            max_carry_forward_days  INTEGER NOT NULL DEFAULT 0,
            is_active               BOOLEAN NOT NULL DEFAULT TRUE,
            created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_leave_type_max_days CHECK (max_days_per_year >= 0),
            CONSTRAINT ck_leave_type_max_carry_forward CHECK (max_carry_forward_days >= 0)
        )
    """)

    # ── 4. employee_leave_balances ────────────────────────────────────────
    op.execute("""
        CREATE TABLE employee_leave_balances (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id           UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type_id         UUID NOT NULL REFERENCES leave_types(id) ON DELETE CASCADE,
            year                  INTEGER NOT NULL,
            allocated_days        INTEGER NOT NULL DEFAULT 0,
            used_days             INTEGER NOT NULL DEFAULT 0,
            carried_forward_days  INTEGER NOT NULL DEFAULT 0,
            created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type_id, year),
            CONSTRAINT ck_balance_allocated CHECK (allocated_days >= 0),
            CONSTRAINT ck_balance_used CHECK (used_days >= 0),
            CONSTRAINT ck_balance_carried_forward CHECK (carried_forward_days >= 0),
            CONSTRAINT ck_balance_used_within_entitlement
                CHECK (used_days <= allocated_days + carried_forward_days),
            CONSTRAINT ck_balance_year_range CHECK (year >= 2020 AND year <= 2050)
        )
    """)

    # ── 5. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type_id     UUID NOT NULL REFERENCES leave_types(id) ON DELETE RESTRICT,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            total_days        INTEGER NOT NULL,
            reason            TEXT NOT NULL,
            status            leave_status NOT NULL DEFAULT 'pending',
            applied_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            approved_by       UUID REFERENCES employees(id),
            approved_at       TIMESTAMPTZ,
            rejection_reason  TEXT,
            comments          TEXT,
            created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_request_date_range CHECK (end_date >= start_date),
            CONSTRAINT ck_request_total_days CHECK (total_days > 0),
            CONSTRAINT ck_request_reason_not_blank CHECK (length(trim(reason)) > 0),
            CONSTRAINT ck_request_approval_fields CHECK (
                (status = 'approved' AND approved_by IS NOT NULL AND approved_at IS NOT NULL)
                OR (status != 'approved' AND approved_by IS NULL AND approved_at IS NULL)
            )
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_dates "
        "ON leave_requests(employee_id, start_date, end_date)"
    )
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")

    # ── 6. audit_logs ─────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_logs (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            table_name  VARCHAR(50) NOT NULL,
            record_id   UUID NOT NULL,
            action      VARCHAR(10) NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            changed_by  UUID REFERENCES employees(id),
            changed_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_logs_record ON audit_logs(table_name, record_id)")
    op.execute("CREATE INDEX ix_audit_logs_changed_by ON audit_logs(changed_by)")
    op.execute("CREATE INDEX ix_audit_logs_changed_at ON audit_logs(changed_at)")
    op.execute("CREATE INDEX ix_audit_logs_action ON audit_logs(action)")

    # ══════════════════════════════════════════════════════════════════════
    # SEED DATA
    # ══════════════════════════════════════════════════════════════════════

    # Departments
    op.execute("""
        INSERT INTO departments (name, description) VALUES
        ('Human Resources', 'Manages employee relations and policies'),
        ('Engineering',     'Software development and technical operations'),
        ('Marketing',       'Brand promotion and customer acquisition'),
        ('Sales',           'Revenue generation and client relations'),
        ('Finance',         'Financial planning and accounting')
    """)

    # Leave types
    op.execute("""
        INSERT INTO leave_types
            (name, description, max_days_per_year, carry_forward_allowed, max_carry_forward_days)
        VALUES
            ('Annual Leave',       'Yearly vacation days',        21, TRUE,  5),
            ('Sick Leave',         'Medical leave for illness',   12, FALSE, 0),
            ('Maternity Leave',    'Leave for new mothers',       90, FALSE, 0),
            ('Paternity Leave',    'Leave for new fathers',       15, FALSE, 0),
            ('Emergency Leave',    'Urgent personal matters',      5, FALSE, 0),
            ('Compensatory Leave', 'Time off for overtime work',  10, TRUE,  3)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_logs",
        "leave_requests",
        "employee_leave_balances",
        "leave_types",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop deferred FK before dropping employees / departments
    op.execute(
        "ALTER TABLE departments DROP CONSTRAINT IF EXISTS fk_department_manager"
    )
    op.execute("DROP TABLE IF EXISTS employees CASCADE")
    op.execute("DROP TABLE IF EXISTS departments CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
