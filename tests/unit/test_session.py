import json

import pytest

from studio.core.exceptions import ConversationNotFoundError
from studio.services.conversations import LEGACY_ACTIVE_KEY, LEGACY_CONVERSATIONS_KEY
from studio.services.session import ConversationSession


@pytest.fixture
def session(store):
    return ConversationSession(store)


class TestConversationSession:
    async def test_initialize_empty_store(self, session):
        result = await session.initialize()
        assert not result
        assert session.active_conversation_id is None
        assert await session.active_conversation() is None

    async def test_initialize_picks_most_recent(self, session, store):
        await store.create_conversation("old")
        recent = await store.create_conversation("recent")

        await session.initialize()

        assert session.active_conversation_id == recent

    async def test_initialize_restores_legacy_active(self, session, store):
        legacy = [
            {
                "id": legacy_id,
                "title": legacy_id,
                "createdAt": "2024-01-01T00:00:00Z",
                "updatedAt": "2024-01-01T00:00:00Z",
                "messages": [],
            }
            for legacy_id in ("first", "second")
        ]
        await store.write_legacy_entry(LEGACY_CONVERSATIONS_KEY, json.dumps(legacy))
        await store.write_legacy_entry(LEGACY_ACTIVE_KEY, "first")

        result = await session.initialize()

        assert result.conversations == 2
        active = await session.active_conversation()
        assert active.title == "first"

    async def test_add_message_creates_conversation_on_demand(self, session, store):
        msg = await session.add_message("user", "Hello there")

        assert session.active_conversation_id == msg.conversation_id
        conv = await store.get_conversation(msg.conversation_id)
        assert conv.title == "Hello there"
        assert len(conv.messages) == 1

    async def test_add_message_appends_to_active(self, session):
        conv_id = await session.create_conversation()
        await session.add_message("user", "one")
        await session.add_message("assistant", "two", model="gemini-2.5-flash")

        active = await session.active_conversation()
        assert active.id == conv_id
        assert [m.role for m in active.messages] == ["user", "assistant"]

    async def test_select(self, session, store):
        first = await store.create_conversation()
        await session.create_conversation()

        await session.select(first)
        assert session.active_conversation_id == first

        with pytest.raises(ConversationNotFoundError):
            await session.select("missing")
        assert session.active_conversation_id == first

    async def test_deleting_active_falls_back_to_most_recent(self, session, store):
        remaining = await store.create_conversation()
        active = await session.create_conversation()

        await session.delete_conversation(active)

        assert session.active_conversation_id == remaining

    async def test_deleting_other_keeps_active(self, session, store):
        other = await store.create_conversation()
        active = await session.create_conversation()

        await session.delete_conversation(other)

        assert session.active_conversation_id == active

    async def test_clear_all(self, session):
        await session.add_message("user", "hi")
        assert await session.clear_all() == 1
        assert session.active_conversation_id is None
