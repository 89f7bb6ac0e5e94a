import httpx
import structlog

from studio.config import settings
from studio.core.exceptions import ProviderError
from studio.services.provider.base import BackendFactory, ProviderBackend

logger = structlog.get_logger()


def build_http_client() -> httpx.AsyncClient:
    """Shared HTTP client with the configured timeouts."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.studio_http_connect_timeout,
            read=settings.studio_http_read_timeout,
            write=30.0,
            pool=5.0,
        )
    )


def _error_from_response(response: httpx.Response) -> ProviderError:
    """Build a ProviderError from a Google-style ``{"error": {...}}`` body."""
    status_name = None
    message = response.reason_phrase or "request failed"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        status_name = error.get("status")
        message = error.get("message") or message
    text = f"{status_name}: {message}" if status_name else f"HTTP {response.status_code}: {message}"
    return ProviderError(text, code=status_name, status=response.status_code)


class GeminiBackend(ProviderBackend):
    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str | None = None,
        api_version: str | None = None,
    ):
        if not api_key:
            raise ValueError("API key is required to build a Gemini client.")
        self.base_url = (base_url or settings.genai_base_url).rstrip("/")
        self.api_version = api_version or settings.genai_api_version
        self._headers = {"x-goog-api-key": api_key}
        self._client = http_client

    async def generate_content(self, model_id: str, contents: list[dict], config: dict | None = None) -> dict:
        url = f"{self.base_url}/{self.api_version}/models/{model_id}:generateContent"
        payload: dict = {"contents": contents}
        if config:
            payload["generationConfig"] = config
        response = await self._send("POST", url, json=payload)
        return response.json()

    async def upload_file(self, data: bytes, mime_type: str, display_name: str) -> dict:
        """Resumable upload: start a session, then upload and finalize in one request."""
        start_url = f"{self.base_url}/upload/{self.api_version}/files"
        start = await self._send(
            "POST",
            start_url,
            json={"file": {"display_name": display_name}},
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(len(data)),
                "X-Goog-Upload-Header-Content-Type": mime_type,
            },
        )
        upload_url = start.headers.get("x-goog-upload-url")
        if not upload_url:
            raise ProviderError("File upload failed: no upload session was returned.", code="FAILED_PRECONDITION")

        finish = await self._send(
            "POST",
            upload_url,
            content=data,
            headers={
                "Content-Length": str(len(data)),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
        )
        body = finish.json()
        return body.get("file", body)

    async def get_file(self, name: str) -> dict:
        url = f"{self.base_url}/{self.api_version}/{name}"
        response = await self._send("GET", url)
        return response.json()

    async def _send(self, method: str, url: str, headers: dict | None = None, **kwargs) -> httpx.Response:
        merged = {**self._headers, **(headers or {})}
        try:
            response = await self._client.request(method, url, headers=merged, **kwargs)
        except httpx.ConnectError as e:
            raise ProviderError(f"Network connection failed: {e}")
        except httpx.TimeoutException:
            raise ProviderError("Network request timed out.")
        except httpx.HTTPError as e:
            raise ProviderError(f"Network error: {e}")

        if response.is_error:
            error = _error_from_response(response)
            logger.debug("provider_error", status=response.status_code, code=error.code)
            raise error
        return response


def gemini_backend_factory(http_client: httpx.AsyncClient, base_url: str | None = None) -> BackendFactory:
    """Factory that builds a GeminiBackend per credential over one shared client."""

    def build(api_key: str) -> ProviderBackend:
        return GeminiBackend(api_key=api_key, http_client=http_client, base_url=base_url)

    return build
