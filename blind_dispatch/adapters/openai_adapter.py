from __future__ import annotations

import time
from typing import Union

import httpx

from ..core.errors import ProviderError
from .base import (
    GenerateImageOptions,
    GenerateTextOptions,
    ImageResponse,
    TextResponse,
    resolve_text_options,
)
from .http_utils import IMAGE_TIMEOUT, build_client, request_json, require_api_key, with_transport_retries


class OpenAIAdapter:
    type = "openai"
    name = "OpenAI"
    supports_images = True

    base_url = "https://api.openai.com/v1"
    image_model = "dall-e-3"

    def __init__(
        self,
        model: str = "gpt-4",
        api_key_env: str = "OPENAI_API_KEY",
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        self.model = model
        self.api_key = require_api_key(self.type, api_key_env)
        self.client = build_client(self.base_url, transport)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse:
        model, max_tokens, temperature = resolve_text_options(options, self.model)
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        data = await request_json(
            self.client, self.type, self.name, "POST", "/chat/completions",
            json=payload, headers=self._headers(),
        )
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Unexpected response format from OpenAI API", self.type) from exc
        usage = data.get("usage") or {}
        return TextResponse(
            id=data.get("id") or f"openai-{int(time.time() * 1000)}",
            content=content,
            model=data.get("model", model),
            provider=self.type,
            tokens=usage.get("total_tokens"),
            finish_reason=choice.get("finish_reason"),
            metadata={"usage": usage},
        )

    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse:
        opts = options or {}
        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "size": opts.get("size") or "1024x1024",
            "quality": opts.get("quality") or "standard",
            "n": 1,
            "response_format": "url",
        }
        if opts.get("style"):
            payload["style"] = opts["style"]
        data = await request_json(
            self.client, self.type, f"{self.name} DALL-E", "POST", "/images/generations",
            json=payload, headers=self._headers(), timeout=IMAGE_TIMEOUT,
        )
        try:
            image = data["data"][0]
            image_url = image["url"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("No image URL in OpenAI DALL-E response", self.type) from exc
        return ImageResponse(
            id=f"dalle-{int(time.time() * 1000)}",
            image_url=image_url,
            model=self.image_model,
            provider=self.type,
            metadata={"revised_prompt": image.get("revised_prompt")},
        )

    async def test_connection(self) -> bool:
        async def _probe() -> httpx.Response:
            return await self.client.get(
                "/models", headers={"Authorization": f"Bearer {self.api_key}"}, timeout=10
            )

        try:
            resp = await with_transport_retries(_probe)
        except httpx.HTTPError:
            return False
        return resp.is_success

    async def aclose(self) -> None:
        await self.client.aclose()
