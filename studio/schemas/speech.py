from typing import Literal

from pydantic import Field

from studio.schemas.common import FeatureResponse, FrozenModel

# Prebuilt voices offered by the TTS model.
Voice = Literal["Kore", "Puck", "Charon", "Fenrir", "Aoede", "Leda", "Orus", "Zephyr"]


class SpeechRequest(FrozenModel):
    text: str = Field(min_length=1)
    voice_name: Voice = "Kore"
    model: str | None = None


class SpeechResponse(FeatureResponse):
    audio: bytes  # raw 16-bit little-endian PCM
    text: str
    voice_name: str
    sample_rate: int = 24000
    channels: int = 1
    sample_width: int = 2

    @property
    def wav_filename(self) -> str:
        return f"speech-{self.timestamp:%Y-%m-%dT%H-%M-%S}.wav"
