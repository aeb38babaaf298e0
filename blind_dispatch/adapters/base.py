from __future__ import annotations

from typing import Any, Protocol, TypedDict, Union


class GenerateTextOptions(TypedDict, total=False):
    max_tokens: int
    temperature: float
    model: str


class GenerateImageOptions(TypedDict, total=False):
    size: str
    quality: str
    style: str


class TextResponse(TypedDict, total=False):
    id: str
    content: str
    model: str
    provider: str
    tokens: Union[int, None]
    finish_reason: Union[str, None]
    metadata: dict[str, Any]


class ImageResponse(TypedDict, total=False):
    id: str
    image_url: str
    model: str
    provider: str
    metadata: dict[str, Any]


class ProviderAdapter(Protocol):
    type: str
    name: str
    model: str
    supports_images: bool

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse: ...

    async def test_connection(self) -> bool: ...

    async def aclose(self) -> None: ...


class ImageProviderAdapter(ProviderAdapter, Protocol):
    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse: ...


DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7


def resolve_text_options(
    options: Union[GenerateTextOptions, None],
    default_model: str,
    default_temperature: float = DEFAULT_TEMPERATURE,
) -> tuple[str, int, float]:
    """Return (model, max_tokens, temperature) with adapter defaults applied.

    An explicit ``0`` temperature is honored; only a missing value falls back.
    """
    opts = options or {}
    model = opts.get("model") or default_model
    max_tokens = opts.get("max_tokens") or DEFAULT_MAX_TOKENS
    temperature = opts.get("temperature")
    if temperature is None:
        temperature = default_temperature
    return model, int(max_tokens), float(temperature)
