"""Pydantic models for request/response"""
from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_IMAGE_MIME_TYPE = "image/png"


def _require_text(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    return value


class InlineImage(BaseModel):
    mimeType: str = Field(..., description="MIME type of the image, e.g. image/png")
    data: str = Field(..., description="Base64-encoded image bytes")

    @field_validator("mimeType", "data")
    @classmethod
    def not_empty(cls, value: str, info) -> str:
        return _require_text(value, info.field_name)

    @classmethod
    def from_base64(cls, value: str) -> "InlineImage":
        """Accept bare base64 or a data:<mime>;base64,<data> URL"""
        if value.startswith("data:") and ";base64," in value:
            header, data = value.split(";base64,", 1)
            mime_type = header[len("data:"):] or DEFAULT_IMAGE_MIME_TYPE
            return cls(mimeType=mime_type, data=data)
        return cls(mimeType=DEFAULT_IMAGE_MIME_TYPE, data=value)


class SuggestionRequest(BaseModel):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def prompt_not_empty(cls, value: str) -> str:
        return _require_text(value, "prompt")


class ImageCompositionRequestV1(BaseModel):
    """Composition request carrying a ready prompt and typed images"""
    schemaVersion: Literal[1] = 1
    fullPrompt: str = ""
    modelImage: InlineImage
    itemImage: InlineImage


class ImageCompositionRequestV2(BaseModel):
    """Composition request carrying raw base64 images and an optional style prompt"""
    schemaVersion: Literal[2] = 2
    modelImageBase64: str
    itemImageBase64: str
    stylePrompt: str = ""

    @field_validator("modelImageBase64", "itemImageBase64")
    @classmethod
    def image_not_empty(cls, value: str, info) -> str:
        _require_text(value, info.field_name)
        try:
            InlineImage.from_base64(value)
        except ValidationError as e:
            raise ValueError(f"{info.field_name} is not a usable image: {e.errors()[0]['msg']}")
        return value

    @property
    def model_image(self) -> InlineImage:
        return InlineImage.from_base64(self.modelImageBase64)

    @property
    def item_image(self) -> InlineImage:
        return InlineImage.from_base64(self.itemImageBase64)


ImageCompositionRequest = Union[ImageCompositionRequestV1, ImageCompositionRequestV2]


def parse_composition_request(data: dict) -> ImageCompositionRequest:
    """Pick the request version and validate; raises pydantic.ValidationError"""
    version = data.get("schemaVersion")
    if version is None:
        version = 2 if ("modelImageBase64" in data or "itemImageBase64" in data) else 1
    if version == 2:
        return ImageCompositionRequestV2.model_validate(data)
    return ImageCompositionRequestV1.model_validate(data)


class SuggestionResponse(BaseModel):
    text: str


class ImageResponse(BaseModel):
    base64Image: str


class ErrorResponse(BaseModel):
    message: str
    error: Optional[str] = None


# Outcome of the retrying caller, consumed by the route handlers

@dataclass(frozen=True)
class Success:
    artifact: str


@dataclass(frozen=True)
class EmptyContent:
    message: str


@dataclass(frozen=True)
class Error:
    message: str
    status_code: Optional[int] = None
    retries_exhausted: bool = False


UpstreamResult = Union[Success, EmptyContent, Error]
