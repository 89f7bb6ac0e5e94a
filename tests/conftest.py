import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from studio.core.credentials import CredentialStore
from studio.core.database import Base
from studio.services.conversations import ConversationStore
from studio.services.provider.gemini import GeminiBackend, gemini_backend_factory
from tests.mocks.fake_genai import BASE_URL
from tests.mocks.fake_genai import app as fake_genai_app
from tests.mocks.scripted_backend import ScriptedBackend


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def store(session_factory):
    """Conversation store bound to the in-memory engine."""
    return ConversationStore(session_factory=session_factory)


@pytest.fixture
def credentials():
    return CredentialStore("AIzaSyTestKey-1234567890")


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def backend_factory(backend):
    """Factory handing out the scripted backend for every credential, recording the keys it saw."""
    seen: list[str] = []

    def build(api_key: str):
        seen.append(api_key)
        return backend

    build.seen = seen
    return build


@pytest_asyncio.fixture
async def fake_http_client():
    """httpx client wired to the fake GenAI app via in-process ASGITransport."""
    transport = ASGITransport(app=fake_genai_app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest_asyncio.fixture
async def gemini_backend(fake_http_client):
    return GeminiBackend(api_key="good-key", http_client=fake_http_client, base_url=BASE_URL)


@pytest.fixture
def fake_backend_factory(fake_http_client):
    return gemini_backend_factory(fake_http_client, base_url=BASE_URL)
