"""001 – Initial schema: users, leave workflow and ledger, tasks, notifications, audit.

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
    ("user_role", ["admin", "manager", "department_head", "staff"]),
    ("user_status", ["active", "inactive", "suspended"]),
    ("approval_status", ["pending", "approved", "rejected"]),
    (
        "transaction_type",
        ["allocation", "pending", "used", "adjustment", "carryforward"],
    ),
    ("task_priority", ["low", "medium", "high", "critical"]),
    ("assignment_level", ["initial", "delegation"]),
    ("notification_type", ["info", "action_required", "approval", "alert"]),
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
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(200) NOT NULL,
            code        VARCHAR(20)  NOT NULL UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            email                 VARCHAR(255) NOT NULL UNIQUE,
            first_name            VARCHAR(100) NOT NULL,
            last_name             VARCHAR(100) NOT NULL,
            role                  user_role    NOT NULL DEFAULT 'staff',
            status                user_status  NOT NULL DEFAULT 'active',
            department_id         UUID REFERENCES departments(id),
            permission_overrides  JSONB        NOT NULL DEFAULT '{}'::jsonb,
            version               INTEGER      NOT NULL,
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            updated_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_users_department ON users(department_id)")
    op.execute("CREATE INDEX idx_users_role ON users(role, status)")

    # ── 3. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_type                VARCHAR(50)  NOT NULL UNIQUE,
            description               TEXT,
            default_allocation        NUMERIC(6,1) NOT NULL DEFAULT 0,
            max_consecutive_days      INTEGER,
            min_advance_notice        INTEGER      NOT NULL DEFAULT 0,
            allow_carry_forward       BOOLEAN      NOT NULL DEFAULT FALSE,
            carry_forward_limit       NUMERIC(6,1) NOT NULL DEFAULT 0,
            manager_max_days          NUMERIC(6,1) NOT NULL,
            department_head_max_days  NUMERIC(6,1) NOT NULL,
            is_active                 BOOLEAN      NOT NULL DEFAULT TRUE,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            CHECK (department_head_max_days >= manager_max_days)
        )
    """)

    # ── 4. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id          UUID NOT NULL REFERENCES users(id),
            leave_type           VARCHAR(50)  NOT NULL,
            start_date           DATE         NOT NULL,
            end_date             DATE         NOT NULL,
            total_days           NUMERIC(6,1) NOT NULL,
            reason               TEXT,
            submitted_by         UUID NOT NULL REFERENCES users(id),
            submitted_at         TIMESTAMPTZ DEFAULT NOW(),
            cancelled_at         TIMESTAMPTZ,
            cancelled_by         UUID REFERENCES users(id),
            cancellation_reason  TEXT,
            is_active            BOOLEAN NOT NULL DEFAULT TRUE,
            counts_against_quota BOOLEAN NOT NULL DEFAULT FALSE,
            modified_by          UUID REFERENCES users(id),
            version              INTEGER NOT NULL,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date),
            CONSTRAINT ck_leave_request_total_days CHECK (total_days > 0)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee ON leave_requests(employee_id, is_active)"
    )

    # ── 5. leave_approval_steps ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_approval_steps (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id  UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            step_order        INTEGER NOT NULL,
            approver_role     user_role NOT NULL,
            approver_id       UUID REFERENCES users(id),
            status            approval_status NOT NULL DEFAULT 'pending',
            comments          TEXT,
            action_date       TIMESTAMPTZ,
            CONSTRAINT uq_leave_step_order UNIQUE (leave_request_id, step_order),
            CONSTRAINT ck_leave_step_order CHECK (step_order >= 0)
        )
    """)

    # ── 6. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id      UUID NOT NULL REFERENCES users(id),
            leave_type       VARCHAR(50)  NOT NULL,
            year             INTEGER      NOT NULL,
            total_allocated  NUMERIC(6,1) NOT NULL DEFAULT 0,
            used             NUMERIC(6,1) NOT NULL DEFAULT 0,
            pending          NUMERIC(6,1) NOT NULL DEFAULT 0,
            carried_forward  NUMERIC(6,1) NOT NULL DEFAULT 0,
            remaining        NUMERIC(6,1) NOT NULL DEFAULT 0,
            version          INTEGER NOT NULL,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type, year),
            CONSTRAINT ck_leave_balance_non_negative CHECK (
                total_allocated >= 0 AND used >= 0 AND pending >= 0 AND carried_forward >= 0
            )
        )
    """)

    # ── 7. leave_transactions (append-only) ───────────────────────────────
    op.execute("""
        CREATE TABLE leave_transactions (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            balance_id        UUID NOT NULL REFERENCES leave_balances(id),
            seq               INTEGER NOT NULL,
            type              transaction_type NOT NULL,
            amount            NUMERIC(6,1) NOT NULL,
            description       TEXT NOT NULL,
            leave_request_id  UUID REFERENCES leave_requests(id),
            created_by        UUID REFERENCES users(id),
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_transaction_seq UNIQUE (balance_id, seq)
        )
    """)
    op.execute("""
        CREATE FUNCTION leave_transactions_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'leave_transactions rows are immutable';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_leave_transactions_immutable
        BEFORE UPDATE OR DELETE ON leave_transactions
        FOR EACH ROW EXECUTE FUNCTION leave_transactions_immutable()
    """)

    # ── 8. tasks ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE tasks (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            title              VARCHAR(200) NOT NULL,
            description        TEXT,
            priority           task_priority NOT NULL DEFAULT 'medium',
            department_id      UUID REFERENCES departments(id),
            created_by         UUID NOT NULL REFERENCES users(id),
            due_date           DATE,
            approval_required  BOOLEAN NOT NULL DEFAULT FALSE,
            is_active          BOOLEAN NOT NULL DEFAULT TRUE,
            last_modified_by   UUID REFERENCES users(id),
            version            INTEGER NOT NULL,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE task_assignees (
            task_id  UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            user_id  UUID NOT NULL REFERENCES users(id),
            PRIMARY KEY (task_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE task_approvers (
            task_id  UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            user_id  UUID NOT NULL REFERENCES users(id),
            PRIMARY KEY (task_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE task_approval_history (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            task_id      UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            approver_id  UUID NOT NULL REFERENCES users(id),
            status       approval_status NOT NULL,
            comments     TEXT,
            recorded_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE task_assignment_history (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            task_id           UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            assigned_by       UUID NOT NULL REFERENCES users(id),
            assigned_to       UUID NOT NULL REFERENCES users(id),
            assignment_level  assignment_level NOT NULL,
            instructions      TEXT,
            assigned_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 9. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type          notification_type NOT NULL DEFAULT 'info',
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            action_url    VARCHAR(500),
            entity_type   VARCHAR(50),
            entity_id     UUID,
            is_read       BOOLEAN NOT NULL DEFAULT FALSE,
            read_at       TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient ON notifications(recipient_id, is_read)"
    )

    # ── 10. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES users(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "notifications",
        "task_assignment_history",
        "task_approval_history",
        "task_approvers",
        "task_assignees",
        "tasks",
        "leave_transactions",
        "leave_balances",
        "leave_approval_steps",
        "leave_requests",
        "leave_policies",
        "users",
        "departments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute("DROP FUNCTION IF EXISTS leave_transactions_immutable()")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
