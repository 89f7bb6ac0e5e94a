"""Conversational text generation."""

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.exceptions import ProcessingFailedError
from studio.schemas.chat import ChatRequest, ChatResponse, ChatTurn
from studio.schemas.conversations import StoredMessage
from studio.services.manager import BackendFactory, CancelToken, RequestManager
from studio.services.provider.base import ProviderBackend, extract_text, text_part, total_tokens

_PROVIDER_ROLES = {"user": "user", "assistant": "model"}


def turns_from_messages(messages: list[StoredMessage]) -> tuple[ChatTurn, ...]:
    """Prior turns for a request, taken from a persisted transcript."""
    return tuple(ChatTurn(role=m.role, content=m.content) for m in messages)


async def generate_text(backend: ProviderBackend, request: ChatRequest, token: CancelToken) -> ChatResponse:
    token.raise_if_cancelled()
    model = request.model or settings.studio_text_model

    contents = [
        {"role": _PROVIDER_ROLES[turn.role], "parts": [text_part(turn.content)]}
        for turn in request.history
    ]
    contents.append({"role": "user", "parts": [text_part(request.prompt)]})

    config: dict = {"temperature": request.temperature}
    if request.max_tokens:
        config["maxOutputTokens"] = request.max_tokens

    response = await backend.generate_content(model, contents, config)
    token.raise_if_cancelled()

    text = extract_text(response)
    if not text:
        raise ProcessingFailedError("No response text received from the AI model.")

    return ChatResponse(
        model=model,
        text=text,
        prompt=request.prompt,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        tokens_used=total_tokens(response),
    )


def create_chat_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[ChatRequest, ChatResponse]:
    return RequestManager("text_generation", credentials, generate_text, backend_factory)
