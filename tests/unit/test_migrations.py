"""Tests for Alembic migration integration."""

from unittest.mock import patch

import pytest
from alembic import command
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.ext.asyncio import create_async_engine

from studio.config import settings
from studio.core.database import Base
from studio.core.exceptions import StorageUnavailableError
from studio.core.migrations import _PROJECT_ROOT, detect_revision, ensure_db_migrated

EXPECTED_TABLES = {"conversations", "messages", "key_value_store", "alembic_version"}


# ── Helpers ───────────────────────────────────────────────────────────────────


def _test_cfg(connection):
    """Alembic Config wired to a sync connection for isolated tests."""
    from alembic.config import Config

    cfg = Config(str(_PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    cfg.attributes["connection"] = connection
    return cfg


async def _run_ensure(db_url: str) -> None:
    test_engine = create_async_engine(db_url)
    original_url = settings.studio_db_url
    try:
        settings.studio_db_url = db_url
        with patch("studio.core.migrations.engine", test_engine):
            await ensure_db_migrated()
    finally:
        settings.studio_db_url = original_url
        await test_engine.dispose()


def _state(db_path) -> tuple[set[str], str | None]:
    sync_engine = create_engine(f"sqlite:///{db_path}")
    with sync_engine.begin() as conn:
        tables = set(inspect(conn).get_table_names())
        row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
    sync_engine.dispose()
    return tables, row[0] if row else None


# ── Migration Chain Tests (sync, isolated SQLite) ────────────────────────────


class TestMigrationChain:
    def test_upgrade_to_head_creates_all_tables(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
        with engine.begin() as conn:
            command.upgrade(_test_cfg(conn), "head")

        with engine.begin() as conn:
            tables = set(inspect(conn).get_table_names())

        assert tables == EXPECTED_TABLES
        engine.dispose()

    def test_upgrade_then_downgrade_to_base(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
        with engine.begin() as conn:
            command.upgrade(_test_cfg(conn), "head")
        with engine.begin() as conn:
            command.downgrade(_test_cfg(conn), "base")

        with engine.begin() as conn:
            tables = set(inspect(conn).get_table_names())

        # alembic_version may remain after downgrade to base
        assert tables <= {"alembic_version"}
        engine.dispose()

    def test_head_revision_is_002(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
        with engine.begin() as conn:
            command.upgrade(_test_cfg(conn), "head")

        with engine.begin() as conn:
            row = conn.execute(text("SELECT version_num FROM alembic_version")).first()

        assert row is not None
        assert row[0] == "002"
        engine.dispose()

    def test_migration_schema_matches_create_all(self, tmp_path):
        engine_m = create_engine(f"sqlite:///{tmp_path / 'migration.db'}")
        with engine_m.begin() as conn:
            command.upgrade(_test_cfg(conn), "head")

        engine_c = create_engine(f"sqlite:///{tmp_path / 'create_all.db'}")
        with engine_c.begin() as conn:
            Base.metadata.create_all(conn)

        with engine_m.begin() as conn:
            m_insp = inspect(conn)
            m_tables = set(m_insp.get_table_names()) - {"alembic_version"}
            m_cols = {t: {c["name"] for c in m_insp.get_columns(t)} for t in m_tables}

        with engine_c.begin() as conn:
            c_insp = inspect(conn)
            c_tables = set(c_insp.get_table_names())
            c_cols = {t: {c["name"] for c in c_insp.get_columns(t)} for t in c_tables}

        assert m_tables == c_tables, f"Table mismatch: {m_tables ^ c_tables}"
        for table in m_tables:
            assert m_cols[table] == c_cols[table], f"Column mismatch in '{table}'"

        engine_m.dispose()
        engine_c.dispose()


# ── ensure_db_migrated Tests (async, real temp DBs) ──────────────────────────


class TestEnsureDbMigrated:
    """Fresh, untracked and tracked databases in ensure_db_migrated()."""

    async def test_fresh_db_creates_tables_and_stamps(self, tmp_path):
        db_path = tmp_path / "fresh.db"
        await _run_ensure(f"sqlite+aiosqlite:///{db_path}")

        tables, revision = _state(db_path)
        assert tables == EXPECTED_TABLES
        assert revision == "002"

    async def test_existing_db_without_alembic_gets_stamped(self, tmp_path):
        db_path = tmp_path / "existing.db"
        sync_engine = create_engine(f"sqlite:///{db_path}")
        with sync_engine.begin() as conn:
            Base.metadata.create_all(conn)
            conn.execute(
                text("INSERT INTO conversations (id, title) VALUES ('keep-me', 'Existing')")
            )
        sync_engine.dispose()

        await _run_ensure(f"sqlite+aiosqlite:///{db_path}")

        tables, revision = _state(db_path)
        assert "alembic_version" in tables
        assert revision == "002"
        sync_engine = create_engine(f"sqlite:///{db_path}")
        with sync_engine.begin() as conn:
            row = conn.execute(text("SELECT title FROM conversations WHERE id = 'keep-me'")).first()
        assert row[0] == "Existing"
        sync_engine.dispose()

    async def test_alembic_tracked_db_gets_upgraded(self, tmp_path):
        """DB at revision 001 gains the legacy key-value table."""
        db_path = tmp_path / "tracked.db"
        sync_engine = create_engine(f"sqlite:///{db_path}")
        with sync_engine.begin() as conn:
            command.upgrade(_test_cfg(conn), "001")
        with sync_engine.begin() as conn:
            assert "key_value_store" not in set(inspect(conn).get_table_names())
        sync_engine.dispose()

        await _run_ensure(f"sqlite+aiosqlite:///{db_path}")

        tables, revision = _state(db_path)
        assert "key_value_store" in tables
        assert revision == "002"

    async def test_running_twice_is_harmless(self, tmp_path):
        db_path = tmp_path / "twice.db"
        db_url = f"sqlite+aiosqlite:///{db_path}"
        await _run_ensure(db_url)
        await _run_ensure(db_url)

        tables, revision = _state(db_path)
        assert tables == EXPECTED_TABLES
        assert revision == "002"

    async def test_untracked_baseline_db_is_stamped_and_upgraded(self, tmp_path):
        """Conversation tables without the key-value table are adopted at 001, then upgraded."""
        db_path = tmp_path / "baseline.db"
        sync_engine = create_engine(f"sqlite:///{db_path}")
        with sync_engine.begin() as conn:
            Base.metadata.create_all(
                conn, tables=[Base.metadata.tables["conversations"], Base.metadata.tables["messages"]]
            )
        sync_engine.dispose()

        await _run_ensure(f"sqlite+aiosqlite:///{db_path}")

        tables, revision = _state(db_path)
        assert tables == EXPECTED_TABLES
        assert revision == "002"

    async def test_unrecognised_layout_is_refused(self, tmp_path):
        db_path = tmp_path / "partial.db"
        sync_engine = create_engine(f"sqlite:///{db_path}")
        with sync_engine.begin() as conn:
            Base.metadata.create_all(conn, tables=[Base.metadata.tables["key_value_store"]])
        sync_engine.dispose()

        with pytest.raises(StorageUnavailableError) as exc_info:
            await _run_ensure(f"sqlite+aiosqlite:///{db_path}")
        assert exc_info.value.details["tables"] == ["key_value_store"]


class TestDetectRevision:
    @pytest.mark.parametrize(
        "tables,revision",
        [
            (set(), None),
            ({"conversations"}, None),
            ({"conversations", "messages"}, "001"),
            ({"conversations", "messages", "key_value_store"}, "002"),
            ({"key_value_store"}, None),
        ],
    )
    def test_detect(self, tables, revision):
        assert detect_revision(frozenset(tables)) == revision
