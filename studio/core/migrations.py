"""Bring the conversation database to the Alembic head revision at startup.

Databases created before Alembic tracking was added are recognised by the
tables they hold: each revision below introduces a known set of tables, so an
untracked database is stamped at the newest revision whose tables are all
present and then upgraded from there.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path

import structlog
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect, text

from studio.core.database import Base, engine
from studio.core.exceptions import StorageUnavailableError

logger = structlog.get_logger()

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Tables introduced by each revision, oldest first.
REVISION_TABLES: tuple[tuple[str, frozenset[str]], ...] = (
    ("001", frozenset({"conversations", "messages"})),
    ("002", frozenset({"key_value_store"})),
)
OWNED_TABLES = frozenset().union(*(tables for _, tables in REVISION_TABLES))


@dataclass(frozen=True)
class SchemaState:
    tables: frozenset[str]  # owned tables present
    revision: str | None  # None when not tracked by Alembic
    tracked: bool


def _alembic_cfg() -> Config:
    cfg = Config(str(_PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    return cfg


def _inspect_schema(connection) -> SchemaState:
    names = set(inspect(connection).get_table_names())
    revision = None
    tracked = "alembic_version" in names
    if tracked:
        row = connection.execute(text("SELECT version_num FROM alembic_version")).first()
        revision = row[0] if row else None
    return SchemaState(tables=frozenset(names & OWNED_TABLES), revision=revision, tracked=tracked)


def detect_revision(tables: frozenset[str]) -> str | None:
    """Newest revision whose tables, and those of every earlier revision, are all present."""
    detected = None
    required: set[str] = set()
    for revision, introduced in REVISION_TABLES:
        required |= introduced
        if not required <= tables:
            break
        detected = revision
    return detected


def _stamp(revision: str) -> None:
    command.stamp(_alembic_cfg(), revision)


def _upgrade_head() -> None:
    command.upgrade(_alembic_cfg(), "head")


async def ensure_db_migrated() -> None:
    """Create, adopt or upgrade the conversation schema.

    An empty database gets every table and is stamped at head. An untracked
    database with conversation tables is stamped at the revision its tables
    match and upgraded. A tracked database is upgraded.
    """
    async with engine.begin() as conn:
        state = await conn.run_sync(_inspect_schema)

    if state.tracked:
        logger.info("migrations_tracked_db", current_rev=state.revision, action="upgrade_head")
        await asyncio.to_thread(_upgrade_head)
        return

    if not state.tables:
        logger.info("migrations_fresh_db", action="create_all_and_stamp")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_stamp, "head")
        return

    baseline = detect_revision(state.tables)
    if baseline is None:
        logger.error("migrations_unrecognised_schema", tables=sorted(state.tables))
        raise StorageUnavailableError(
            "The conversation database has an unrecognised layout.",
            details={"tables": sorted(state.tables)},
        )
    logger.info("migrations_untracked_db", detected_rev=baseline, action="stamp_and_upgrade")
    await asyncio.to_thread(_stamp, baseline)
    await asyncio.to_thread(_upgrade_head)
