from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FrozenModel(BaseModel):
    """Immutable value model. Requests and responses are never mutated after construction."""

    model_config = ConfigDict(frozen=True)


class FeatureResponse(FrozenModel):
    model: str
    timestamp: datetime = Field(default_factory=utcnow)  # set when the call completes
