"""Durable conversation store: ordered transcripts, export/import and legacy migration.

Every write runs under one store-wide ``asyncio.Lock`` so concurrent
``add_message`` calls against the same conversation serialize and message
timestamps stay strictly increasing within a conversation. The transcript
itself is ordered by the store-assigned message id.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import studio.core.database as db_module
from studio.core.database import Conversation, KeyValueEntry, Message
from studio.core.exceptions import (
    ConversationNotFoundError,
    InvalidRequestError,
    StorageUnavailableError,
)
from studio.schemas.conversations import (
    ConversationDetail,
    ConversationSummary,
    ExportedConversation,
    ExportedMessage,
    LegacyConversation,
    MessageMetadata,
    StoredMessage,
    StoreStats,
)

logger = structlog.get_logger()

LEGACY_CONVERSATIONS_KEY = "ai-agent-conversations"
LEGACY_ACTIVE_KEY = "ai-agent-active-conversation"
TITLE_MAX_LENGTH = 50
ROLES = ("user", "assistant")


@dataclass(frozen=True)
class ImportResult:
    """Outcome of an import. Truthy when the input parsed, even if some items were skipped."""

    ok: bool
    imported: int = 0
    skipped: int = 0

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class LegacyMigrationResult:
    migrated: bool
    conversations: int = 0
    skipped: int = 0
    active_conversation_id: str | None = None  # new id of the legacy active conversation

    def __bool__(self) -> bool:
        return self.migrated


def derive_title(content: str) -> str:
    """Title from the first user message: first 50 characters, with an ellipsis if truncated."""
    text = content.strip()
    title = text[:TITLE_MAX_LENGTH]
    if len(text) > TITLE_MAX_LENGTH:
        title += "..."
    return title


# ── Timestamp helpers ────────────────────────────────────────────────────────
# Timestamps are stored as naive UTC and returned as aware UTC.


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_storage(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _to_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _after(candidate: datetime, previous: datetime | None) -> datetime:
    """Clamp ``candidate`` so it is strictly later than ``previous``."""
    if previous is not None and candidate <= previous:
        return previous + timedelta(microseconds=1)
    return candidate


def _iso(dt: datetime) -> str:
    dt = _to_storage(dt)
    timespec = "milliseconds" if dt.microsecond % 1000 == 0 else "microseconds"
    return dt.isoformat(timespec=timespec) + "Z"


# ── Row conversion ───────────────────────────────────────────────────────────


def _dump_metadata(metadata: MessageMetadata | dict | None) -> str | None:
    if metadata is None:
        return None
    if isinstance(metadata, dict):
        metadata = MessageMetadata.model_validate(metadata)
    dumped = metadata.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(dumped) if dumped else None


def _load_metadata(raw: str | None) -> MessageMetadata | None:
    if not raw:
        return None
    return MessageMetadata.model_validate_json(raw)


def _message_out(msg: Message) -> StoredMessage:
    return StoredMessage(
        id=msg.id,
        conversation_id=msg.conversation_id,
        role=msg.role,
        content=msg.content,
        timestamp=_to_aware(msg.timestamp),
        model=msg.model,
        metadata=_load_metadata(msg.metadata_json),
    )


def _export_message(msg: Message) -> dict:
    item = {
        "id": msg.id,
        "conversationId": msg.conversation_id,
        "role": msg.role,
        "content": msg.content,
        "timestamp": _iso(msg.timestamp),
    }
    if msg.model:
        item["model"] = msg.model
    if msg.metadata_json:
        item["metadata"] = json.loads(msg.metadata_json)
    return item


def _export_conversation(conv: Conversation, messages: list[Message]) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "createdAt": _iso(conv.created_at),
        "updatedAt": _iso(conv.updated_at),
        "messages": [_export_message(m) for m in messages],
    }


class ConversationStore:
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory
        self._write_lock = asyncio.Lock()
        self._migrating = False

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    @asynccontextmanager
    async def _storage(self, operation: str) -> AsyncIterator[None]:
        """Surface database and filesystem failures as a recoverable StorageUnavailableError."""
        try:
            yield
        except (SQLAlchemyError, OSError) as e:
            logger.error("storage_unavailable", operation=operation, error=str(e))
            raise StorageUnavailableError(details={"reason": str(e), "operation": operation}) from e

    # ── Conversations ────────────────────────────────────────────────────────

    async def create_conversation(self, title: str | None = None) -> str:
        async with self._write_lock, self._storage("create_conversation"):
            async with self._session_factory() as session:
                if title is None:
                    count = await session.scalar(select(func.count()).select_from(Conversation))
                    title = f"Conversation {(count or 0) + 1}"
                now = _utcnow()
                conv = Conversation(id=str(uuid.uuid4()), title=title, created_at=now, updated_at=now)
                session.add(conv)
                await session.commit()

        logger.info("conversation_created", conversation_id=conv.id)
        return conv.id

    async def get_conversation(self, conversation_id: str) -> ConversationDetail:
        async with self._storage("get_conversation"):
            async with self._session_factory() as session:
                conv = await self._get_conversation_row(session, conversation_id)
                messages = await self._message_rows(session, conversation_id)

        return ConversationDetail(
            id=conv.id,
            title=conv.title,
            created_at=_to_aware(conv.created_at),
            updated_at=_to_aware(conv.updated_at),
            messages=tuple(_message_out(m) for m in messages),
        )

    async def list_conversations(self) -> list[ConversationSummary]:
        """All conversations, most recently updated first."""
        counts = (
            select(Message.conversation_id, func.count(Message.id).label("message_count"))
            .group_by(Message.conversation_id)
            .subquery()
        )
        stmt = (
            select(Conversation, func.coalesce(counts.c.message_count, 0))
            .outerjoin(counts, counts.c.conversation_id == Conversation.id)
            .order_by(Conversation.updated_at.desc())
        )
        async with self._storage("list_conversations"):
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()

        return [
            ConversationSummary(
                id=conv.id,
                title=conv.title,
                created_at=_to_aware(conv.created_at),
                updated_at=_to_aware(conv.updated_at),
                message_count=message_count,
            )
            for conv, message_count in rows
        ]

    async def rename_conversation(self, conversation_id: str, title: str) -> None:
        async with self._write_lock, self._storage("rename_conversation"):
            async with self._session_factory() as session:
                conv = await self._get_conversation_row(session, conversation_id)
                conv.title = title
                conv.updated_at = _utcnow()
                await session.commit()

        logger.info("conversation_renamed", conversation_id=conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        """Remove the conversation and all of its messages in one transaction."""
        async with self._write_lock, self._storage("delete_conversation"):
            async with self._session_factory() as session:
                await self._get_conversation_row(session, conversation_id)
                result = await session.execute(
                    delete(Message).where(Message.conversation_id == conversation_id)
                )
                await session.execute(delete(Conversation).where(Conversation.id == conversation_id))
                await session.commit()

        logger.info("conversation_deleted", conversation_id=conversation_id, messages=result.rowcount)

    async def delete_all_conversations(self) -> int:
        async with self._write_lock, self._storage("delete_all_conversations"):
            async with self._session_factory() as session:
                await session.execute(delete(Message))
                result = await session.execute(delete(Conversation))
                await session.commit()

        logger.info("conversations_cleared", conversations=result.rowcount)
        return result.rowcount

    # ── Messages ─────────────────────────────────────────────────────────────

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: MessageMetadata | dict | None = None,
        model: str | None = None,
    ) -> StoredMessage:
        """Append a message. The conversation must already exist."""
        if role not in ROLES:
            raise InvalidRequestError(f"Unsupported message role: {role}")

        async with self._write_lock, self._storage("add_message"):
            async with self._session_factory() as session:
                conv = await self._get_conversation_row(session, conversation_id)
                last = await session.scalar(
                    select(func.max(Message.timestamp)).where(Message.conversation_id == conversation_id)
                )
                now = _after(_utcnow(), last)
                msg = Message(
                    conversation_id=conversation_id,
                    role=role,
                    content=content,
                    model=model,
                    metadata_json=_dump_metadata(metadata),
                    timestamp=now,
                )
                session.add(msg)

                conv.updated_at = now
                if last is None and role == "user":
                    title = derive_title(content)
                    if title:
                        conv.title = title

                await session.commit()
                return _message_out(msg)

    async def update_message(self, message_id: int, content: str) -> StoredMessage:
        """Replace content and bump the message timestamp. Transcript position is unchanged."""
        async with self._write_lock, self._storage("update_message"):
            async with self._session_factory() as session:
                msg = await session.get(Message, message_id)
                if msg is None:
                    raise ConversationNotFoundError("Message not found.", details={"message_id": message_id})
                last = await session.scalar(
                    select(func.max(Message.timestamp)).where(Message.conversation_id == msg.conversation_id)
                )
                now = _after(_utcnow(), last)
                msg.content = content
                msg.timestamp = now
                conv = await session.get(Conversation, msg.conversation_id)
                if conv is not None:
                    conv.updated_at = now
                await session.commit()
                return _message_out(msg)

    async def delete_message(self, message_id: int) -> bool:
        async with self._write_lock, self._storage("delete_message"):
            async with self._session_factory() as session:
                result = await session.execute(delete(Message).where(Message.id == message_id))
                await session.commit()
        return result.rowcount > 0

    async def get_messages(self, conversation_id: str) -> list[StoredMessage]:
        async with self._storage("get_messages"):
            async with self._session_factory() as session:
                await self._get_conversation_row(session, conversation_id)
                messages = await self._message_rows(session, conversation_id)
        return [_message_out(m) for m in messages]

    async def stats(self) -> StoreStats:
        async with self._storage("stats"):
            async with self._session_factory() as session:
                conversations = await session.scalar(select(func.count()).select_from(Conversation))
                messages = await session.scalar(select(func.count()).select_from(Message))
        return StoreStats(conversations=conversations or 0, messages=messages or 0)

    # ── Export / import ──────────────────────────────────────────────────────

    async def export_conversation(self, conversation_id: str) -> str:
        async with self._storage("export_conversation"):
            async with self._session_factory() as session:
                conv = await self._get_conversation_row(session, conversation_id)
                messages = await self._message_rows(session, conversation_id)
        return json.dumps(_export_conversation(conv, messages), indent=2)

    async def export_all(self) -> str:
        """Every conversation, most recently updated first, as a JSON array."""
        async with self._storage("export_all"):
            async with self._session_factory() as session:
                result = await session.execute(select(Conversation).order_by(Conversation.updated_at.desc()))
                payload = []
                for conv in result.scalars().all():
                    messages = await self._message_rows(session, conv.id)
                    payload.append(_export_conversation(conv, messages))
        return json.dumps(payload, indent=2)

    async def import_conversations(self, blob: str) -> ImportResult:
        """Import one exported conversation or an array of them under fresh ids.

        Malformed input leaves the store untouched and yields a falsy result.
        Items that fail validation are skipped and counted.
        """
        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as e:
            logger.warning("import_rejected", reason=str(e))
            return ImportResult(ok=False)
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            logger.warning("import_rejected", reason="expected an object or an array")
            return ImportResult(ok=False)

        valid: list[ExportedConversation] = []
        for item in data:
            try:
                valid.append(ExportedConversation.model_validate(item))
            except ValidationError:
                continue
        skipped = len(data) - len(valid)

        async with self._write_lock, self._storage("import_conversations"):
            async with self._session_factory() as session:
                for conv in valid:
                    await self._insert_conversation(session, conv.title, conv.created_at, conv.updated_at, conv.messages)
                await session.commit()

        logger.info("conversations_imported", imported=len(valid), skipped=skipped)
        return ImportResult(ok=True, imported=len(valid), skipped=skipped)

    # ── Legacy flat format ───────────────────────────────────────────────────

    async def write_legacy_entry(self, key: str, value: str) -> None:
        """Store a raw value in the legacy key-value table."""
        async with self._write_lock, self._storage("write_legacy_entry"):
            async with self._session_factory() as session:
                await session.merge(KeyValueEntry(key=key, value=value, updated_at=_utcnow()))
                await session.commit()

    async def migrate_legacy_format(self) -> LegacyMigrationResult:
        """Move legacy flat-format conversations into the structured tables.

        Legacy keys are removed in the same transaction that inserts the
        migrated rows. Safe to call when there is nothing to migrate; a call
        that arrives while another migration is running is a no-op.
        """
        if self._migrating:
            logger.info("legacy_migration_in_progress")
            return LegacyMigrationResult(migrated=False)

        self._migrating = True
        try:
            return await self._migrate_legacy()
        finally:
            self._migrating = False

    async def _migrate_legacy(self) -> LegacyMigrationResult:
        async with self._write_lock, self._storage("migrate_legacy_format"):
            async with self._session_factory() as session:
                saved = await session.get(KeyValueEntry, LEGACY_CONVERSATIONS_KEY)
                if saved is None:
                    return LegacyMigrationResult(migrated=False)
                active = await session.get(KeyValueEntry, LEGACY_ACTIVE_KEY)

                try:
                    parsed = json.loads(saved.value)
                except ValueError as e:
                    logger.warning("legacy_migration_unreadable", reason=str(e))
                    return LegacyMigrationResult(migrated=False)
                if not isinstance(parsed, list):
                    logger.warning("legacy_migration_unreadable", reason="expected an array")
                    return LegacyMigrationResult(migrated=False)

                migrated = 0
                active_id = None
                for item in parsed:
                    try:
                        old = LegacyConversation.model_validate(item)
                    except ValidationError:
                        continue
                    new_id = await self._insert_conversation(
                        session, old.title, old.created_at, old.updated_at, old.messages
                    )
                    migrated += 1
                    if active is not None and active.value == old.id:
                        active_id = new_id

                await session.execute(
                    delete(KeyValueEntry).where(KeyValueEntry.key.in_((LEGACY_CONVERSATIONS_KEY, LEGACY_ACTIVE_KEY)))
                )
                await session.commit()

        skipped = len(parsed) - migrated
        logger.info("legacy_migration_completed", conversations=migrated, skipped=skipped)
        return LegacyMigrationResult(
            migrated=True, conversations=migrated, skipped=skipped, active_conversation_id=active_id
        )

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_conversation_row(session: AsyncSession, conversation_id: str) -> Conversation:
        conv = await session.get(Conversation, conversation_id)
        if conv is None:
            raise ConversationNotFoundError(details={"conversation_id": conversation_id})
        return conv

    @staticmethod
    async def _message_rows(session: AsyncSession, conversation_id: str) -> list[Message]:
        result = await session.execute(
            select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def _insert_conversation(
        session: AsyncSession,
        title: str,
        created_at: datetime,
        updated_at: datetime,
        messages: list[ExportedMessage],
    ) -> str:
        """Stage a conversation and its messages under a fresh id.

        Timestamps are kept exactly as given; insertion order fixes the transcript order.
        """
        new_id = str(uuid.uuid4())
        session.add(
            Conversation(
                id=new_id,
                title=title,
                created_at=_to_storage(created_at),
                updated_at=_to_storage(updated_at),
            )
        )
        await session.flush()
        for msg in messages:
            session.add(
                Message(
                    conversation_id=new_id,
                    role=msg.role,
                    content=msg.content,
                    model=msg.model,
                    metadata_json=_dump_metadata(msg.metadata),
                    timestamp=_to_storage(msg.timestamp),
                )
            )
        return new_id
