from typing import Literal

from pydantic import Field

from studio.schemas.common import FeatureResponse, FrozenModel

ImageStyle = Literal["realistic", "artistic", "cartoon", "photographic"]
ImageSize = Literal["256x256", "512x512", "1024x1024"]
ImageQuality = Literal["standard", "hd"]


class ImageGenerationRequest(FrozenModel):
    prompt: str = Field(min_length=1)
    style: ImageStyle = "realistic"
    size: ImageSize = "1024x1024"
    quality: ImageQuality = "standard"
    count: int = Field(default=1, ge=1, le=4)
    model: str | None = None


class GeneratedImage(FrozenModel):
    data_b64: str
    mime_type: str = "image/png"
    revised_prompt: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data_b64}"


class ImageGenerationResponse(FeatureResponse):
    images: tuple[GeneratedImage, ...]
    prompt: str
    style: ImageStyle
    size: ImageSize
    quality: ImageQuality


class ImageEditingRequest(FrozenModel):
    image: bytes
    mime_type: str
    file_name: str
    prompt: str = Field(min_length=1)
    model: str | None = None


class ImageEditingResponse(FeatureResponse):
    edited_image_b64: str
    edited_mime_type: str
    original_image_b64: str
    original_mime_type: str
    original_file_name: str
    prompt: str
    commentary: str | None = None  # any text the model returned next to the image

    @property
    def edited_data_url(self) -> str:
        return f"data:{self.edited_mime_type};base64,{self.edited_image_b64}"

    @property
    def original_data_url(self) -> str:
        return f"data:{self.original_mime_type};base64,{self.original_image_b64}"
