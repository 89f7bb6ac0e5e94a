"""Active-conversation tracking on top of the conversation store.

``ConversationStore.add_message`` requires an existing conversation. This
session is the one place that creates a conversation on demand: adding a
message while nothing is active starts a new conversation first.
"""

import structlog

from studio.schemas.conversations import ConversationDetail, MessageMetadata, StoredMessage
from studio.services.conversations import ConversationStore, LegacyMigrationResult

logger = structlog.get_logger()


class ConversationSession:
    def __init__(self, store: ConversationStore):
        self.store = store
        self._active_id: str | None = None

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    async def initialize(self) -> LegacyMigrationResult:
        """Run the one-time legacy migration and pick an active conversation."""
        result = await self.store.migrate_legacy_format()
        if result.active_conversation_id:
            self._active_id = result.active_conversation_id
        elif self._active_id is None:
            await self._activate_most_recent()
        return result

    async def active_conversation(self) -> ConversationDetail | None:
        if self._active_id is None:
            return None
        return await self.store.get_conversation(self._active_id)

    async def create_conversation(self, title: str | None = None) -> str:
        self._active_id = await self.store.create_conversation(title)
        return self._active_id

    async def select(self, conversation_id: str) -> ConversationDetail:
        conversation = await self.store.get_conversation(conversation_id)
        self._active_id = conversation.id
        return conversation

    async def add_message(
        self,
        role: str,
        content: str,
        metadata: MessageMetadata | dict | None = None,
        model: str | None = None,
    ) -> StoredMessage:
        """Append to the active conversation, creating one first if none is active."""
        if self._active_id is None:
            await self.create_conversation()
            logger.info("conversation_created_on_demand", conversation_id=self._active_id)
        return await self.store.add_message(self._active_id, role, content, metadata=metadata, model=model)

    async def delete_conversation(self, conversation_id: str) -> None:
        await self.store.delete_conversation(conversation_id)
        if conversation_id == self._active_id:
            self._active_id = None
            await self._activate_most_recent()

    async def clear_all(self) -> int:
        deleted = await self.store.delete_all_conversations()
        self._active_id = None
        return deleted

    async def _activate_most_recent(self) -> None:
        conversations = await self.store.list_conversations()
        self._active_id = conversations[0].id if conversations else None
