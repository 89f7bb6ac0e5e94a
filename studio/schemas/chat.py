from typing import Literal

from pydantic import Field

from studio.schemas.common import FeatureResponse, FrozenModel
from studio.schemas.conversations import MessageMetadata


class ChatTurn(FrozenModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(FrozenModel):
    prompt: str = Field(min_length=1)
    history: tuple[ChatTurn, ...] = ()
    model: str | None = None
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)


class ChatResponse(FeatureResponse):
    text: str
    prompt: str
    temperature: float
    max_tokens: int | None = None
    tokens_used: int | None = None

    def message_metadata(self) -> MessageMetadata:
        """Metadata to persist alongside the assistant message."""
        return MessageMetadata(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            tokens_used=self.tokens_used,
        )

