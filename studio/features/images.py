"""Image generation and image editing."""

import asyncio
import base64

import structlog

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.exceptions import InvalidRequestError, ProcessingFailedError
from studio.schemas.images import (
    GeneratedImage,
    ImageEditingRequest,
    ImageEditingResponse,
    ImageGenerationRequest,
    ImageGenerationResponse,
)
from studio.services.manager import BackendFactory, CancelToken, RequestManager
from studio.services.provider.base import (
    ProviderBackend,
    extract_text,
    first_inline_data,
    inline_part,
    text_part,
)

logger = structlog.get_logger()

STYLE_SUFFIXES = {
    "realistic": ", realistic style, detailed, high-quality rendering",
    "artistic": ", artistic style, creative interpretation, expressive brushstrokes",
    "cartoon": ", cartoon style, animated, colorful, stylized illustration",
    "photographic": ", photographic style, realistic photography, professional lighting",
}
HD_SUFFIX = ", high definition, sharp details, professional quality"
VARIATION_SUFFIXES = (
    ", different angle",
    ", alternative composition",
    ", varied lighting",
    ", different perspective",
)

_IMAGE_CONFIG = {"responseModalities": ["TEXT", "IMAGE"]}


def enhance_prompt(prompt: str, style: str, quality: str, variation: int = 0) -> str:
    """Append style, quality and per-variation hints to the user's prompt."""
    enhanced = prompt + STYLE_SUFFIXES.get(style, STYLE_SUFFIXES["realistic"])
    if quality == "hd":
        enhanced += HD_SUFFIX
    if variation > 0:
        enhanced += VARIATION_SUFFIXES[variation % len(VARIATION_SUFFIXES)]
    return enhanced


async def generate_images(
    backend: ProviderBackend, request: ImageGenerationRequest, token: CancelToken
) -> ImageGenerationResponse:
    """One provider call per requested image."""
    model = request.model or settings.studio_image_model
    images = []

    for i in range(request.count):
        token.raise_if_cancelled()
        prompt = enhance_prompt(request.prompt, request.style, request.quality, i)
        response = await backend.generate_content(model, [{"parts": [text_part(prompt)]}], _IMAGE_CONFIG)
        token.raise_if_cancelled()

        inline = first_inline_data(response, "image/")
        if inline is None:
            raise ProcessingFailedError("No image data received from the AI model.")
        images.append(GeneratedImage(data_b64=inline["data"], mime_type=inline["mimeType"], revised_prompt=prompt))
        logger.debug("image_generated", index=i, count=request.count)

    return ImageGenerationResponse(
        model=model,
        images=tuple(images),
        prompt=request.prompt,
        style=request.style,
        size=request.size,
        quality=request.quality,
    )


async def edit_image(backend: ProviderBackend, request: ImageEditingRequest, token: CancelToken) -> ImageEditingResponse:
    token.raise_if_cancelled()
    if not request.mime_type.startswith("image/"):
        raise InvalidRequestError("Please upload a valid image file.")
    model = request.model or settings.studio_image_model

    original_b64 = await asyncio.to_thread(lambda: base64.b64encode(request.image).decode("ascii"))
    token.raise_if_cancelled()

    contents = [{"parts": [text_part(request.prompt), inline_part(original_b64, request.mime_type)]}]
    response = await backend.generate_content(model, contents, _IMAGE_CONFIG)
    token.raise_if_cancelled()

    commentary = extract_text(response) or None
    inline = first_inline_data(response, "image/")
    if inline is None:
        if commentary:
            raise ProcessingFailedError(
                "The AI responded with text instead of an edited image. Try a more specific editing instruction.",
                details={"reason": commentary},
            )
        raise ProcessingFailedError("No edited image data received from the AI model.")

    return ImageEditingResponse(
        model=model,
        edited_image_b64=inline["data"],
        edited_mime_type=inline.get("mimeType") or request.mime_type,
        original_image_b64=original_b64,
        original_mime_type=request.mime_type,
        original_file_name=request.file_name,
        prompt=request.prompt,
        commentary=commentary,
    )


def create_image_generation_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[ImageGenerationRequest, ImageGenerationResponse]:
    return RequestManager("image_generation", credentials, generate_images, backend_factory)


def create_image_editing_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[ImageEditingRequest, ImageEditingResponse]:
    return RequestManager("image_editing", credentials, edit_image, backend_factory)
