from __future__ import annotations

import logging
import time
from typing import Union

import httpx

from ..core.errors import ProviderError
from .base import GenerateTextOptions, TextResponse, resolve_text_options
from .http_utils import build_client, format_api_error, request_json, require_api_key, with_transport_retries

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter:
    type = "anthropic"
    name = "Anthropic"
    supports_images = False

    base_url = "https://api.anthropic.com/v1"
    test_model = "claude-3-5-haiku-20241022"

    def __init__(
        self,
        model: str = "claude-3-sonnet-20240229",
        api_key_env: str = "ANTHROPIC_API_KEY",
        transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        self.model = model
        self.api_key = require_api_key(self.type, api_key_env)
        self.client = build_client(self.base_url, transport)

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse:
        model, max_tokens, temperature = resolve_text_options(options, self.model)
        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await request_json(
            self.client, self.type, self.name, "POST", "/messages",
            json=payload, headers=self._headers(),
        )
        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Unexpected response format from Anthropic API", self.type) from exc
        usage = data.get("usage") or {}
        return TextResponse(
            id=data.get("id") or f"anthropic-{int(time.time() * 1000)}",
            content=text,
            model=data.get("model", model),
            provider=self.type,
            tokens=usage.get("output_tokens"),
            finish_reason=data.get("stop_reason"),
            metadata={"usage": usage},
        )

    async def test_connection(self) -> bool:
        """Send a 1-token message. Vendor failures raise so admins see the real cause."""
        payload = {
            "model": self.test_model,
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        }

        async def _probe() -> httpx.Response:
            return await self.client.post(
                "/messages", json=payload, headers=self._headers(), timeout=15
            )

        try:
            resp = await with_transport_retries(_probe)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Anthropic connection test failed: {exc}", self.type) from exc
        if resp.is_error:
            message, code = format_api_error(self.name, resp)
            logger.warning("Anthropic connection test failed with status %s", resp.status_code)
            raise ProviderError(message, self.type, code=code, status_code=resp.status_code)
        return True

    async def aclose(self) -> None:
        await self.client.aclose()
