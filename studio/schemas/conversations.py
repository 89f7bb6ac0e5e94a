from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from studio.schemas.common import FrozenModel

Role = Literal["user", "assistant"]


class MessageMetadata(BaseModel):
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, alias="maxTokens")
    tokens_used: int | None = Field(default=None, alias="tokensUsed")

    model_config = ConfigDict(populate_by_name=True)


class StoredMessage(FrozenModel):
    id: int
    conversation_id: str
    role: Role
    content: str
    timestamp: datetime
    model: str | None = None
    metadata: MessageMetadata | None = None


class ConversationSummary(FrozenModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


class ConversationDetail(FrozenModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: tuple[StoredMessage, ...] = ()


class StoreStats(FrozenModel):
    conversations: int
    messages: int


# ── Export / import wire format (camelCase JSON) ─────────────────────────────


class ExportedMessage(BaseModel):
    id: int | str | None = None
    conversation_id: str | None = None
    role: Role
    content: str
    timestamp: datetime
    model: str | None = None
    metadata: MessageMetadata | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportedConversation(BaseModel):
    id: str | None = None
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[ExportedMessage] = []

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LegacyConversation(BaseModel):
    """Conversation as held by the older flat key-value format."""

    id: str
    title: str
    messages: list[ExportedMessage]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
