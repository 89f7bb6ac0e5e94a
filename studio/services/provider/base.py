from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator


class ProviderBackend(ABC):
    """Abstract AI provider. Responses use the generateContent JSON shape."""

    @abstractmethod
    async def generate_content(self, model_id: str, contents: list[dict], config: dict | None = None) -> dict:
        """Run one generation call and return the raw response body."""
        ...

    @abstractmethod
    async def upload_file(self, data: bytes, mime_type: str, display_name: str) -> dict:
        """Upload a file for later reference; returns the file resource."""
        ...

    @abstractmethod
    async def get_file(self, name: str) -> dict:
        """Fetch a previously uploaded file resource (including its state)."""
        ...


# Builds a backend for one API key.
BackendFactory = Callable[[str], ProviderBackend]


# ── Response helpers ────────────────────────────────────────────────────────


def iter_parts(response: dict) -> Iterator[dict]:
    """Yield content parts of the first candidate."""
    candidates = response.get("candidates") or []
    if not candidates:
        return
    content = candidates[0].get("content") or {}
    yield from content.get("parts") or []


def extract_text(response: dict) -> str:
    """Concatenate all text parts of the first candidate."""
    return "".join(part["text"] for part in iter_parts(response) if part.get("text"))


def first_inline_data(response: dict, mime_prefix: str = "") -> dict | None:
    """Return the first inlineData part whose mime type starts with ``mime_prefix``."""
    for part in iter_parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data") and (inline.get("mimeType") or "").startswith(mime_prefix):
            return inline
    return None


def total_tokens(response: dict) -> int | None:
    usage = response.get("usageMetadata") or {}
    return usage.get("totalTokenCount")


def text_part(text: str) -> dict:
    return {"text": text}


def inline_part(data_b64: str, mime_type: str) -> dict:
    return {"inlineData": {"mimeType": mime_type, "data": data_b64}}


def file_part(uri: str, mime_type: str | None = None) -> dict:
    file_data = {"fileUri": uri}
    if mime_type:
        file_data["mimeType"] = mime_type
    return {"fileData": file_data}
