"""Text to speech. The provider returns raw PCM; ``pcm_to_wav`` wraps it for playback."""

import base64
import io
import wave

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.exceptions import ProcessingFailedError
from studio.schemas.speech import SpeechRequest, SpeechResponse
from studio.services.manager import BackendFactory, CancelToken, RequestManager
from studio.services.provider.base import ProviderBackend, first_inline_data, text_part

def pcm_to_wav(pcm: bytes, channels: int = 1, sample_rate: int = 24000, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


async def synthesize_speech(backend: ProviderBackend, request: SpeechRequest, token: CancelToken) -> SpeechResponse:
    token.raise_if_cancelled()
    model = request.model or settings.studio_tts_model
    config = {
        "responseModalities": ["AUDIO"],
        "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": request.voice_name}}},
    }

    response = await backend.generate_content(model, [{"parts": [text_part(request.text)]}], config)
    token.raise_if_cancelled()

    inline = first_inline_data(response)
    if inline is None:
        raise ProcessingFailedError("No audio data received from the AI model.")

    return SpeechResponse(
        model=model,
        audio=base64.b64decode(inline["data"]),
        text=request.text,
        voice_name=request.voice_name,
    )


def speech_to_wav(response: SpeechResponse) -> bytes:
    return pcm_to_wav(response.audio, response.channels, response.sample_rate, response.sample_width)


def create_speech_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[SpeechRequest, SpeechResponse]:
    return RequestManager("text_to_speech", credentials, synthesize_speech, backend_factory)
