from __future__ import annotations

import time
from typing import Union

import httpx

from ..core.errors import ProviderError
from .base import GenerateTextOptions, TextResponse, resolve_text_options
from .http_utils import build_client, format_api_error, request_json, require_api_key, with_transport_retries


class GroqAdapter:
    """OpenAI-compatible chat completions served by Groq for fast, low-temperature inference."""

    type = "groq"
    name = "Groq"
    supports_images = False

    base_url = "https://api.groq.com/openai/v1"
    default_temperature = 0.3

    def __init__(
        self,
        model: str = "llama-3.1-8b-instant",
        api_key_env: str = "GROQ_API_KEY",
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
        model, max_tokens, temperature = resolve_text_options(
            options, self.model, default_temperature=self.default_temperature
        )
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
            raise ProviderError("Unexpected response format from Groq API", self.type) from exc
        usage = data.get("usage") or {}
        return TextResponse(
            id=data.get("id") or f"groq-{int(time.time() * 1000)}",
            content=content,
            model=data.get("model", model),
            provider=self.type,
            tokens=usage.get("total_tokens"),
            finish_reason=choice.get("finish_reason"),
            metadata={"usage": usage},
        )

    async def test_connection(self) -> bool:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 1,
        }

        async def _probe() -> httpx.Response:
            return await self.client.post(
                "/chat/completions", json=payload, headers=self._headers(), timeout=15
            )

        try:
            resp = await with_transport_retries(_probe)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Groq connection test failed: {exc}", self.type) from exc
        if resp.is_error:
            message, code = format_api_error(self.name, resp)
            raise ProviderError(message, self.type, code=code, status_code=resp.status_code)
        return True

    async def aclose(self) -> None:
        await self.client.aclose()
