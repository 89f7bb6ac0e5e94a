"""YouTube video understanding."""

import re

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.exceptions import InvalidRequestError, ProcessingFailedError
from studio.schemas.video import VideoRequest, VideoResponse
from studio.services.manager import BackendFactory, CancelToken, RequestManager
from studio.services.provider.base import ProviderBackend, extract_text, file_part, text_part, total_tokens

YOUTUBE_URL_RE = re.compile(
    r"^(https?://)?(www\.)?(youtube\.com|youtu\.be)/(watch\?v=|embed/|v/)?([a-zA-Z0-9_-]{11})(\S+)?$"
)
_VIDEO_ID_RE = re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)([a-zA-Z0-9_-]{11})")


def is_valid_youtube_url(url: str) -> bool:
    return bool(YOUTUBE_URL_RE.match(url.strip()))


def extract_video_id(url: str) -> str | None:
    match = _VIDEO_ID_RE.search(url)
    return match.group(1) if match else None


def thumbnail_url(url: str) -> str | None:
    video_id = extract_video_id(url)
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg" if video_id else None


async def analyze_video(backend: ProviderBackend, request: VideoRequest, token: CancelToken) -> VideoResponse:
    token.raise_if_cancelled()
    video_url = request.video_url.strip()
    video_id = extract_video_id(video_url)
    if not is_valid_youtube_url(video_url) or video_id is None:
        raise InvalidRequestError("Please provide a valid YouTube URL.")
    model = request.model or settings.studio_video_model

    contents = [{"parts": [text_part(request.prompt), file_part(video_url)]}]
    response = await backend.generate_content(model, contents)
    token.raise_if_cancelled()

    analysis = extract_text(response)
    if not analysis:
        raise ProcessingFailedError("No analysis received from the AI model.")

    return VideoResponse(
        model=model,
        analysis=analysis,
        video_url=video_url,
        video_id=video_id,
        prompt=request.prompt,
        tokens_used=total_tokens(response),
    )


def create_video_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[VideoRequest, VideoResponse]:
    return RequestManager("video_understanding", credentials, analyze_video, backend_factory)
