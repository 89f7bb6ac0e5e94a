from unittest.mock import AsyncMock, patch

import pytest

from studio.core.exceptions import CredentialMissingError, CredentialRejectedError, ProviderError
from studio.runtime import Studio
from tests.mocks.scripted_backend import text_response


@pytest.fixture
async def studio(backend_factory, session_factory):
    studio = Studio(api_key="AIzaSyTestKey-1234567890", backend_factory=backend_factory, session_factory=session_factory)
    await studio.start(migrate_schema=False)
    yield studio
    await studio.close()


class TestStudio:
    async def test_one_manager_per_feature(self, studio):
        assert set(studio.managers) == {
            "text_generation",
            "image_generation",
            "image_editing",
            "text_to_speech",
            "video_understanding",
            "pdf_upload",
            "pdf_analysis",
        }
        assert all(m.ready for m in studio.managers.values())

    async def test_managers_share_one_credential(self, studio):
        studio.credentials.clear()
        assert not any(m.ready for m in studio.managers.values())

        studio.credentials.set_credential("AIzaSyOtherKey-00000000")
        assert all(m.ready for m in studio.managers.values())

    async def test_chat_persists_both_turns(self, studio, backend):
        backend.results = [text_response("Paris.", tokens=7)]

        response = await studio.send_chat_message("Capital of France?", temperature=0.2, max_tokens=64)

        assert response.text == "Paris."
        conv = await studio.session.active_conversation()
        assert conv.title == "Capital of France?"
        user, assistant = conv.messages
        assert (user.role, user.content) == ("user", "Capital of France?")
        assert (assistant.role, assistant.content) == ("assistant", "Paris.")
        assert assistant.model == response.model
        assert assistant.metadata.tokens_used == 7
        assert assistant.metadata.max_tokens == 64
        assert len(studio.chat.history) == 1

    async def test_follow_up_sends_transcript(self, studio, backend):
        backend.results = [text_response("Paris."), text_response("About two million.")]

        await studio.send_chat_message("Capital of France?")
        await studio.send_chat_message("Population?")

        _, contents, _ = backend.calls[-1]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[-1]["parts"][0]["text"] == "Population?"
        conv = await studio.session.active_conversation()
        assert len(conv.messages) == 4

    async def test_rejected_key_keeps_user_turn(self, studio, backend):
        backend.results = [ProviderError("PERMISSION_DENIED: API key not valid.", status=403)]

        with pytest.raises(CredentialRejectedError):
            await studio.send_chat_message("Hello?")

        conv = await studio.session.active_conversation()
        assert [m.role for m in conv.messages] == ["user"]
        assert not studio.chat.ready

    async def test_no_credential(self, backend_factory, session_factory):
        studio = Studio(api_key="", backend_factory=backend_factory, session_factory=session_factory)
        try:
            await studio.start(migrate_schema=False)
            assert not studio.chat.ready
            with pytest.raises(CredentialMissingError):
                await studio.chat.invoke(None)
        finally:
            await studio.close()

    async def test_close_disposes_module_engine(self, backend_factory):
        studio = Studio(api_key="AIzaSyTestKey-1234567890", backend_factory=backend_factory)
        with patch("studio.runtime.close_db", new_callable=AsyncMock) as close_db:
            await studio.close()
        close_db.assert_awaited_once()
        assert studio.http_client.is_closed

    async def test_close_leaves_injected_engine_alone(self, backend_factory, session_factory):
        studio = Studio(api_key="AIzaSyTestKey-1234567890", backend_factory=backend_factory, session_factory=session_factory)
        with patch("studio.runtime.close_db", new_callable=AsyncMock) as close_db:
            await studio.close()
        close_db.assert_not_awaited()
