"""Alembic migrations on an empty PostgreSQL: upgrade to head, step back to 001, then down to base (pytest -m migration)."""

import pytest
from alembic import command
from sqlalchemy import create_engine, text
from testcontainers.postgres import PostgresContainer

from tests.conftest import POSTGRES_IMAGE, alembic_config

TABLES_001 = [
    "board",
    "contact",
    "contact_group",
    "contact_group_member",
    "contact_tag",
    "data_database",
    "job",
    "job_comment",
    "job_stakeholder",
    "system_metadata",
    "worker_status",
]
TABLES_002 = ["accounting_sync", "quest", "quest_recipient", "reminder_state", "report_definition"]
EXPECTED_TABLES = sorted(TABLES_001 + TABLES_002)

_TABLES_SQL = text(
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_name <> 'alembic_version' ORDER BY table_name"
)
_SCHEMA_VERSION_SQL = text("SELECT value FROM system_metadata WHERE key = 'schema_version'")


@pytest.fixture(scope="module")
def migration_postgres():
    """A container of its own so the migrations start from an empty database."""
    with PostgresContainer(POSTGRES_IMAGE) as postgres:
        yield postgres


@pytest.fixture(scope="module")
def migration_engine(migration_postgres):
    engine = create_engine(migration_postgres.get_connection_url(), pool_pre_ping=True)
    yield engine
    engine.dispose()


def _tables(engine) -> list[str]:
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(_TABLES_SQL)]


@pytest.mark.migration
@pytest.mark.order(1)
def test_migration_01_upgrade_head(migration_postgres, migration_engine):
    command.upgrade(alembic_config(migration_postgres.get_connection_url()), "head")

    assert _tables(migration_engine) == EXPECTED_TABLES
    with migration_engine.connect() as conn:
        assert conn.execute(_SCHEMA_VERSION_SQL).scalar_one() == "3"

    # Timestamps are stored WITH TIME ZONE
    with migration_engine.connect() as conn:
        for table, column in [
            ("quest", "scheduled_for"),
            ("reminder_state", "next_send_at"),
            ("accounting_sync", "last_started_at"),
            ("data_database", "last_imported_at"),
            ("board", "closed_at"),
            ("job", "completed_at"),
        ]:
            row = conn.execute(
                text(
                    "SELECT udt_name FROM information_schema.columns "
                    "WHERE table_schema = 'public' AND table_name = :t AND column_name = :c"
                ),
                {"t": table, "c": column},
            ).fetchone()
            assert row is not None, f"{table}.{column} must exist"
            assert row[0] == "timestamptz", f"{table}.{column} must be timestamp with time zone"

    # One reminder state per recipient (ON CONFLICT target)
    with migration_engine.connect() as conn:
        conn.execute(text("INSERT INTO quest (subject, body) VALUES ('s', 'b')"))
        conn.execute(
            text(
                "INSERT INTO quest_recipient (quest_id, email, token) "
                "SELECT id, 'a@example.com', 'tok' FROM quest LIMIT 1"
            )
        )
        conn.execute(text("INSERT INTO reminder_state (recipient_id) SELECT id FROM quest_recipient LIMIT 1"))
        conn.commit()
        inserted = conn.execute(
            text(
                "INSERT INTO reminder_state (recipient_id) SELECT id FROM quest_recipient LIMIT 1 "
                "ON CONFLICT (recipient_id) DO NOTHING"
            )
        )
        assert inserted.rowcount == 0
        conn.commit()


@pytest.mark.migration
@pytest.mark.order(2)
def test_migration_02_downgrade_to_001(migration_postgres, migration_engine):
    """Stepping back to 001 drops the close timestamps and request tables and restores schema_version 1."""
    command.downgrade(alembic_config(migration_postgres.get_connection_url()), "001")

    assert _tables(migration_engine) == TABLES_001
    with migration_engine.connect() as conn:
        assert conn.execute(_SCHEMA_VERSION_SQL).scalar_one() == "1"


@pytest.mark.migration
@pytest.mark.order(3)
def test_migration_03_downgrade_base(migration_postgres, migration_engine):
    command.downgrade(alembic_config(migration_postgres.get_connection_url()), "base")

    assert _tables(migration_engine) == []
