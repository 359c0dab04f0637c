"""001 – Initial schema: scheduling, EVV, authorizations, audit, notifications.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000-04:00
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
    (
        "user_role",
        [
            "ADMIN",
            "OPS_MANAGER",
            "CLINICAL_DIRECTOR",
            "SUPERVISOR",
            "STAFF",
            "CARER",
            "SPONSOR",
        ],
    ),
    ("shift_status", ["SCHEDULED", "IN_PROGRESS", "COMPLETED", "MISSED", "CANCELLED"]),
    (
        "missed_visit_reason",
        [
            "CLIENT_REFUSED",
            "CLIENT_HOSPITALIZED",
            "CLIENT_NOT_HOME",
            "CLIENT_CANCELLED",
            "CARER_ILLNESS",
            "CARER_EMERGENCY",
            "TRANSPORTATION_ISSUE",
            "WEATHER",
            "SCHEDULING_ERROR",
            "OTHER",
        ],
    ),
    ("evv_status", ["COMPLIANT", "OUT_OF_RANGE", "LOCATION_UNAVAILABLE", "NOT_REQUIRED"]),
    ("evv_source", ["MOBILE", "WEB"]),
    ("unit_type", ["HOURLY", "QUARTER_HOURLY", "DAILY"]),
    ("authorization_status", ["ACTIVE", "EXHAUSTED", "EXPIRED", "CANCELLED"]),
    ("alert_type", ["LOW_UNITS", "UNITS_EXHAUSTED", "EXPIRING_SOON"]),
    ("alert_severity", ["WARNING", "CRITICAL"]),
    (
        "notification_event",
        [
            "SHIFT_ASSIGNED",
            "SHIFT_RESCHEDULED",
            "SHIFT_CANCELLED",
            "SHIFT_COMPLETED",
            "SHIFT_MISSED",
            "AUTH_UNITS_LOW",
            "AUTH_UNITS_EXHAUSTED",
            "AUTH_EXPIRING",
        ],
    ),
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
    # btree_gist lets the shift exclusion constraint mix = and && operators
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id  UUID NOT NULL,
            first_name  VARCHAR(100) NOT NULL,
            last_name   VARCHAR(100) NOT NULL,
            email       VARCHAR(255) NOT NULL UNIQUE,
            phone       VARCHAR(30),
            role        user_role NOT NULL,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_users_company_role ON users(company_id, role)")

    # ── 2. clients ────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE clients (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        UUID NOT NULL,
            first_name        VARCHAR(100) NOT NULL,
            last_name         VARCHAR(100) NOT NULL,
            address           VARCHAR(500),
            latitude          DOUBLE PRECISION,
            longitude         DOUBLE PRECISION,
            geofence_radius   INTEGER DEFAULT 150,
            geofence_enabled  BOOLEAN DEFAULT TRUE,
            sponsor_id        UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_clients_company_id ON clients(company_id)")

    # ── 3. shifts ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE shifts (
            id                     UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id             UUID NOT NULL,
            carer_id               UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            client_id              UUID NOT NULL REFERENCES clients(id) ON DELETE RESTRICT,
            service_type           VARCHAR(100),
            scheduled_start        TIMESTAMPTZ NOT NULL,
            scheduled_end          TIMESTAMPTZ NOT NULL,
            actual_start           TIMESTAMPTZ,
            actual_end             TIMESTAMPTZ,
            status                 shift_status NOT NULL DEFAULT 'SCHEDULED',
            notes                  TEXT,
            client_signature       TEXT,
            signature_captured_at  TIMESTAMPTZ,
            missed_reason          missed_visit_reason,
            missed_notes           TEXT,
            missed_at              TIMESTAMPTZ,
            missed_by_id           UUID REFERENCES users(id) ON DELETE SET NULL,
            cancelled_at           TIMESTAMPTZ,
            cancelled_by_id        UUID REFERENCES users(id) ON DELETE SET NULL,
            created_by_id          UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at             TIMESTAMPTZ DEFAULT NOW(),
            updated_at             TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_shifts_end_after_start CHECK (scheduled_end > scheduled_start)
        )
    """)
    op.execute(
        "CREATE INDEX ix_shifts_carer_window "
        "ON shifts(carer_id, scheduled_start, scheduled_end)"
    )
    op.execute("CREATE INDEX ix_shifts_company_start ON shifts(company_id, scheduled_start)")
    op.execute("CREATE INDEX ix_shifts_client ON shifts(client_id)")

    # A carer never holds two active shifts with overlapping half-open windows.
    op.execute("""
        ALTER TABLE shifts ADD CONSTRAINT ex_shifts_carer_no_overlap
        EXCLUDE USING gist (
            carer_id WITH =,
            tstzrange(scheduled_start, scheduled_end, '[)') WITH &&
        ) WHERE (status IN ('SCHEDULED', 'IN_PROGRESS'))
    """)

    # ── 4. evv_records ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE evv_records (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            shift_id              UUID NOT NULL UNIQUE REFERENCES shifts(id) ON DELETE CASCADE,
            latitude              DOUBLE PRECISION,
            longitude             DOUBLE PRECISION,
            accuracy              DOUBLE PRECISION,
            captured_at           TIMESTAMPTZ NOT NULL,
            source                evv_source NOT NULL,
            status                evv_status NOT NULL,
            is_within_geofence    BOOLEAN,
            distance_from_client  INTEGER,
            geofence_radius       DOUBLE PRECISION,
            message               VARCHAR(255),
            captured_by_id        UUID REFERENCES users(id) ON DELETE SET NULL,
            updated_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 5. authorizations ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE authorizations (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        UUID NOT NULL,
            client_id         UUID NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
            auth_number       VARCHAR(50) NOT NULL,
            service_type      VARCHAR(100) NOT NULL,
            unit_type         unit_type NOT NULL,
            authorized_units  NUMERIC(10, 2) NOT NULL,
            used_units        NUMERIC(10, 2) NOT NULL DEFAULT 0,
            remaining_units   NUMERIC(10, 2) NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            status            authorization_status NOT NULL DEFAULT 'ACTIVE',
            version           INTEGER NOT NULL DEFAULT 1,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_authorizations_used_nonneg CHECK (used_units >= 0),
            CONSTRAINT ck_authorizations_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_authorizations_lookup "
        "ON authorizations(company_id, client_id, service_type, status)"
    )

    # ── 6. authorization_alerts ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE authorization_alerts (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id        UUID NOT NULL,
            authorization_id  UUID NOT NULL REFERENCES authorizations(id) ON DELETE CASCADE,
            alert_type        alert_type NOT NULL,
            severity          alert_severity NOT NULL,
            message           TEXT NOT NULL,
            is_dismissed      BOOLEAN DEFAULT FALSE,
            dismissed_at      TIMESTAMPTZ,
            dismissed_by_id   UUID REFERENCES users(id) ON DELETE SET NULL,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_authorization_alerts_open "
        "ON authorization_alerts(authorization_id, alert_type, is_dismissed)"
    )
    op.execute(
        "CREATE INDEX ix_authorization_alerts_company_id "
        "ON authorization_alerts(company_id)"
    )
    # At most one open alert per (authorization, type)
    op.execute(
        "CREATE UNIQUE INDEX uq_authorization_alerts_open "
        "ON authorization_alerts(authorization_id, alert_type) "
        "WHERE is_dismissed = FALSE"
    )

    # ── 7. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id   UUID NOT NULL,
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_company_id ON audit_trail(company_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")

    # ── 8. notifications ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            company_id    UUID NOT NULL,
            recipient_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            event_type    notification_event NOT NULL,
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            entity_type   VARCHAR(50),
            entity_id     UUID,
            payload       JSONB,
            is_read       BOOLEAN DEFAULT FALSE,
            read_at       TIMESTAMPTZ,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_notifications_recipient_unread "
        "ON notifications(recipient_id, is_read)"
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    tables = [
        "notifications",
        "audit_trail",
        "authorization_alerts",
        "authorizations",
        "evv_records",
        "shifts",
        "clients",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    # Drop extensions
    op.execute('DROP EXTENSION IF EXISTS "btree_gist"')
    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
