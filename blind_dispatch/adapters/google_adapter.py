from __future__ import annotations

import logging
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

logger = logging.getLogger(__name__)


class GoogleAdapter:
    type = "google"
    name = "Google"
    supports_images = True

    base_url = "https://generativelanguage.googleapis.com/v1beta"
    image_model = "gemini-2.5-flash-image"
    test_model = "gemini-2.5-flash"

    def __init__(
        self,
        model: str = "gemini-pro",
        api_key_env: str = "GOOGLE_API_KEY",
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        self.model = model
        self.api_key = require_api_key(self.type, api_key_env)
        self.client = build_client(self.base_url, transport)

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse:
        model, max_tokens, temperature = resolve_text_options(options, self.model)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": temperature,
            },
        }
        data = await request_json(
            self.client, self.type, f"{self.name} Gemini", "POST",
            f"/models/{model}:generateContent",
            json=payload, params={"key": self.api_key},
            headers={"Content-Type": "application/json"},
        )
        try:
            candidate = data["candidates"][0]
            text = candidate["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Unexpected response format from Google Gemini API", self.type) from exc
        usage = data.get("usageMetadata") or {}
        return TextResponse(
            id=f"gemini-{int(time.time() * 1000)}",
            content=text,
            model=model,
            provider=self.type,
            tokens=usage.get("totalTokenCount"),
            finish_reason=candidate.get("finishReason"),
            metadata={
                "usageMetadata": usage,
                "safetyRatings": candidate.get("safetyRatings"),
            },
        )

    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse:
        opts = options or {}
        text = prompt
        if opts.get("style"):
            text = f"{prompt}. Style: {opts['style']}."
        payload = {"contents": [{"role": "user", "parts": [{"text": text}]}]}
        data = await request_json(
            self.client, self.type, f"{self.name} image", "POST",
            f"/models/{self.image_model}:generateContent",
            json=payload, params={"key": self.api_key}, timeout=IMAGE_TIMEOUT,
        )
        inline = None
        for candidate in data.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    break
            if inline and inline.get("data"):
                break
        if not inline or not inline.get("data"):
            raise ProviderError("No image data returned by Google image model", self.type)
        mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
        return ImageResponse(
            id=f"img-{int(time.time() * 1000)}",
            image_url=f"data:{mime};base64,{inline['data']}",
            model=self.image_model,
            provider=self.type,
            metadata={"size": "variable"},
        )

    async def test_connection(self) -> bool:
        payload = {
            "contents": [{"parts": [{"text": "Hi"}]}],
            "generationConfig": {"maxOutputTokens": 1},
        }

        async def _probe() -> httpx.Response:
            return await self.client.post(
                f"/models/{self.test_model}:generateContent",
                json=payload, params={"key": self.api_key}, timeout=15,
            )

        try:
            resp = await with_transport_retries(_probe)
        except httpx.HTTPError as exc:
            logger.warning("Google connection test failed: %s", exc)
            return False
        if resp.is_error:
            logger.warning("Google connection test returned %s: %s", resp.status_code, resp.text[:200])
        return resp.is_success

    async def aclose(self) -> None:
        await self.client.aclose()
