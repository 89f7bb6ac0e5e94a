from datetime import datetime
from typing import Literal

from pydantic import Field

from studio.schemas.common import FeatureResponse, FrozenModel, utcnow


class PdfUploadRequest(FrozenModel):
    data: bytes
    display_name: str = Field(min_length=1)
    file_name: str | None = None
    source: Literal["file", "url"] = "file"
    original_url: str | None = None


class ProcessedPdf(FrozenModel):
    name: str  # provider resource name, e.g. "files/abc123"
    uri: str
    mime_type: str = "application/pdf"
    display_name: str
    file_name: str | None = None
    source: Literal["file", "url"] = "file"
    original_url: str | None = None
    size_bytes: int = 0
    uploaded_at: datetime = Field(default_factory=utcnow)


class PdfAnalysisRequest(FrozenModel):
    pdfs: tuple[ProcessedPdf, ...]
    prompt: str = Field(min_length=1)
    model: str | None = None


class PdfAnalysisResponse(FeatureResponse):
    result: str
    pdfs: tuple[ProcessedPdf, ...]
    prompt: str
    tokens_used: int | None = None
