from __future__ import annotations

import os
import time
from typing import Union

import httpx

from ..core.errors import ConfigurationError
from .base import GenerateImageOptions, GenerateTextOptions, ImageResponse, TextResponse
from .http_utils import build_client, parse_size, request_bytes, to_data_url

TEXT_REFUSAL = "This model only supports image generation."


class HuggingFaceAdapter:
    """Pass-through to Hugging Face image pipelines. Text requests get a fixed refusal."""

    type = "huggingface"
    name = "HuggingFace"
    supports_images = True

    base_url = "https://router.huggingface.co/hf-inference"

    def __init__(
        self,
        model: str,
        api_key_env: str = "HUGGINGFACE_API_KEY",
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        self.model = model
        self.api_key_env = api_key_env
        self.api_key = os.environ.get(api_key_env, "")
        self.client = build_client(self.base_url, transport)

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse:
        return TextResponse(
            id=f"huggingface-{int(time.time() * 1000)}",
            content=TEXT_REFUSAL,
            model=self.model,
            provider=self.type,
            tokens=0,
            finish_reason="unsupported",
            metadata={},
        )

    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse:
        if not self.api_key:
            raise ConfigurationError(
                f"{self.api_key_env} environment variable not set for provider '{self.type}'"
            )
        opts = options or {}
        parameters = {}
        if opts.get("size"):
            width, height = parse_size(opts["size"])
            parameters = {"width": width, "height": height}
        body, content_type = await request_bytes(
            self.client, self.type, self.name, f"/models/{self.model}",
            json={"inputs": prompt, "parameters": parameters},
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "image/png"},
        )
        return ImageResponse(
            id=f"hf-img-{int(time.time() * 1000)}",
            image_url=to_data_url(body, content_type.split(";")[0]),
            model=self.model,
            provider=self.type,
            metadata={"bytes": len(body)},
        )

    async def test_connection(self) -> bool:
        # A real probe would need a model-specific inference call.
        return bool(self.api_key)

    async def aclose(self) -> None:
        await self.client.aclose()
