from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Union

import httpx

from ..core.errors import ConfigurationError, ProviderError
from ..core.polling import DEFAULT_MAX_ATTEMPTS, DEFAULT_POLL_INTERVAL, poll_task
from .base import (
    GenerateImageOptions,
    GenerateTextOptions,
    ImageResponse,
    TextResponse,
    resolve_text_options,
)
from .http_utils import IMAGE_TIMEOUT, build_client, parse_size, request_json, require_api_key

logger = logging.getLogger(__name__)

IMAGE_MODES = ("sync", "async")


class CustomAdapter:
    """Deployment-specific endpoint speaking an OpenAI-like protocol.

    The credential is never stored: ``api_key_env`` names the environment
    variable that holds it, and construction fails if that variable is unset.
    """

    type = "custom"
    name = "Custom"
    supports_images = True

    def __init__(
        self,
        endpoint: str,
        api_key_env: Union[str, None] = None,
        model: str = "default",
        headers: Union[dict[str, str], None] = None,
        image_mode: str = "sync",
        image_model: Union[str, None] = None,
        transport: Union[httpx.AsyncBaseTransport, None] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not endpoint:
            raise ConfigurationError("Custom provider requires an endpoint")
        if image_mode not in IMAGE_MODES:
            raise ConfigurationError(f"Unknown image mode for custom provider: {image_mode}")
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.image_mode = image_mode
        self.image_model = image_model or model
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts
        self._sleep = sleep

        self.headers = {"Content-Type": "application/json", **(headers or {})}
        if api_key_env:
            api_key = require_api_key(self.type, api_key_env)
            self.headers["Authorization"] = f"Bearer {api_key}"
        self.client = build_client(self.endpoint, transport)

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
            json=payload, headers=self.headers,
        )
        if not isinstance(data, dict):
            raise ProviderError("Unexpected response format from custom API", self.type)

        # OpenAI-compatible and plain {"response": ...} shapes are both accepted.
        if data.get("choices"):
            choice = data["choices"][0]
            content = (choice.get("message") or {}).get("content") or choice.get("text")
            tokens = (data.get("usage") or {}).get("total_tokens")
            finish_reason = choice.get("finish_reason")
        elif "response" in data:
            content = data["response"]
            tokens = data.get("tokens")
            finish_reason = data.get("finish_reason")
        else:
            raise ProviderError("Unexpected response format from custom API", self.type)
        if content is None:
            raise ProviderError("Empty content in custom API response", self.type)

        return TextResponse(
            id=data.get("id") or f"custom-{int(time.time() * 1000)}",
            content=content,
            model=data.get("model") or model,
            provider=self.type,
            tokens=tokens,
            finish_reason=finish_reason or "stop",
            metadata={"endpoint": self.endpoint},
        )

    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse:
        opts = options or {}
        size = opts.get("size") or "1024x1024"
        if self.image_mode == "async":
            task_id = await self.submit_image_task(prompt, size)
            return await self.resume_image_task(task_id)

        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "size": size,
            "quality": opts.get("quality") or "standard",
        }
        data = await request_json(
            self.client, self.type, f"{self.name} image", "POST", "/images/generations",
            json=payload, headers=self.headers, timeout=IMAGE_TIMEOUT,
        )
        image_url = _extract_image_url(data)
        if not image_url:
            raise ProviderError("No image URL in custom API response", self.type)
        return ImageResponse(
            id=data.get("id") or f"custom-img-{int(time.time() * 1000)}",
            image_url=image_url,
            model=data.get("model") or self.image_model,
            provider=self.type,
            metadata={"endpoint": self.endpoint},
        )

    async def submit_image_task(self, prompt: str, size: str = "1024x1024") -> str:
        width, height = parse_size(size)
        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "width": width,
            "height": height,
        }
        data = await request_json(
            self.client, self.type, f"{self.name} image", "POST", "/images/generations",
            json=payload,
            headers={**self.headers, "X-ModelScope-Async-Mode": "true"},
        )
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise ProviderError("No task_id in custom image submission response", self.type)
        logger.info("Submitted async image task %s", task_id)
        return task_id

    async def resume_image_task(self, task_id: str) -> ImageResponse:
        """Poll an already-submitted image task, e.g. after an earlier poll timeout."""
        poll = await poll_task(
            task_id,
            self.type,
            self._fetch_task_status,
            interval=self.poll_interval,
            max_attempts=self.poll_max_attempts,
            sleep=self._sleep,
        )
        image_url = _extract_image_url(poll.last_payload)
        if not image_url:
            raise ProviderError(f"Task {task_id} finished without an image", self.type)
        return ImageResponse(
            id=task_id,
            image_url=image_url,
            model=self.image_model,
            provider=self.type,
            metadata={"endpoint": self.endpoint, "taskId": task_id, "pollAttempts": poll.attempts},
        )

    async def _fetch_task_status(self, task_id: str) -> Union[dict, None]:
        headers = {**self.headers, "X-ModelScope-Task-Type": "image_generation"}
        try:
            resp = await self.client.get(f"/tasks/{task_id}", headers=headers, timeout=15)
        except httpx.TransportError as exc:
            logger.warning("Polling task %s failed: %s", task_id, exc)
            return None
        if resp.is_error:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    async def test_connection(self) -> bool:
        try:
            resp = await self.client.get("/health", headers=self.headers, timeout=10)
            if resp.is_success:
                return True
            resp = await self.client.post(
                "/chat/completions",
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": "test"}],
                    "max_tokens": 1,
                },
                headers=self.headers,
                timeout=15,
            )
        except httpx.HTTPError:
            return False
        return resp.is_success

    async def aclose(self) -> None:
        await self.client.aclose()


def _extract_image_url(data: Any) -> Union[str, None]:
    if not isinstance(data, dict):
        return None
    if data.get("output_images"):
        return data["output_images"][0]
    items = data.get("data")
    if isinstance(items, list) and items:
        return items[0].get("url")
    return data.get("image_url")
