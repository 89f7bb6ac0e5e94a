from pydantic import Field

from studio.schemas.common import FeatureResponse, FrozenModel


class VideoRequest(FrozenModel):
    video_url: str
    prompt: str = Field(min_length=1)
    model: str | None = None


class VideoResponse(FeatureResponse):
    analysis: str
    video_url: str
    video_id: str
    prompt: str
    tokens_used: int | None = None
