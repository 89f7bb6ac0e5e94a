"""Composition root: one credential store, one HTTP client, a manager per feature, the conversation store."""

import httpx
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.database import close_db, init_db
from studio.features.chat import create_chat_manager, turns_from_messages
from studio.features.images import create_image_editing_manager, create_image_generation_manager
from studio.features.pdf import create_pdf_analysis_manager, create_pdf_upload_manager
from studio.features.speech import create_speech_manager
from studio.features.video import create_video_manager
from studio.schemas.chat import ChatRequest, ChatResponse
from studio.services.conversations import ConversationStore, LegacyMigrationResult
from studio.services.manager import BackendFactory, RequestManager
from studio.services.provider.gemini import build_http_client, gemini_backend_factory
from studio.services.session import ConversationSession

logger = structlog.get_logger()


class Studio:
    def __init__(
        self,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        backend_factory: BackendFactory | None = None,
        session_factory: async_sessionmaker | None = None,
    ):
        self._owns_client = http_client is None
        self.http_client = http_client or build_http_client()
        self.credentials = CredentialStore(api_key if api_key is not None else settings.genai_api_key)
        factory = backend_factory or gemini_backend_factory(self.http_client)

        self.chat = create_chat_manager(self.credentials, factory)
        self.image_generation = create_image_generation_manager(self.credentials, factory)
        self.image_editing = create_image_editing_manager(self.credentials, factory)
        self.speech = create_speech_manager(self.credentials, factory)
        self.video = create_video_manager(self.credentials, factory)
        self.pdf_upload = create_pdf_upload_manager(self.credentials, factory)
        self.pdf_analysis = create_pdf_analysis_manager(self.credentials, factory)

        # Without an injected session factory the store runs on the module engine.
        self._owns_engine = session_factory is None
        self.store = ConversationStore(session_factory)
        self.session = ConversationSession(self.store)

    @property
    def managers(self) -> dict[str, RequestManager]:
        return {
            m.name: m
            for m in (
                self.chat,
                self.image_generation,
                self.image_editing,
                self.speech,
                self.video,
                self.pdf_upload,
                self.pdf_analysis,
            )
        }

    async def start(self, migrate_schema: bool = True) -> LegacyMigrationResult:
        """Bring the schema up to date, then run the one-time legacy migration."""
        if migrate_schema:
            await init_db()
        result = await self.session.initialize()
        logger.info(
            "studio_started",
            credential=self.credentials.current.present,
            legacy_migrated=result.conversations if result else 0,
        )
        return result

    async def close(self) -> None:
        for manager in self.managers.values():
            manager.close()
        if self._owns_client:
            await self.http_client.aclose()
        if self._owns_engine:
            await close_db()
        logger.info("studio_closed")

    async def __aenter__(self) -> "Studio":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def send_chat_message(
        self,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> ChatResponse:
        """Ask the chat model in the context of the active conversation and persist both turns."""
        active = await self.session.active_conversation()
        history = turns_from_messages(list(active.messages)) if active else ()
        request = ChatRequest(
            prompt=prompt, history=history, model=model, temperature=temperature, max_tokens=max_tokens
        )

        await self.session.add_message("user", prompt)
        response = await self.chat.invoke(request)
        await self.session.add_message(
            "assistant", response.text, metadata=response.message_metadata(), model=response.model
        )
        return response
