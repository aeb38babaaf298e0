"""Builds provider adapters from stored model configuration."""

from __future__ import annotations

import hashlib
import json
import logging
import os
from typing import Any, Callable, Union

import httpx

from ..adapters.anthropic_adapter import AnthropicAdapter
from ..adapters.base import ProviderAdapter
from ..adapters.custom_adapter import CustomAdapter
from ..adapters.google_adapter import GoogleAdapter
from ..adapters.groq_adapter import GroqAdapter
from ..adapters.huggingface_adapter import HuggingFaceAdapter
from ..adapters.mock_adapter import MockAdapter
from ..adapters.openai_adapter import OpenAIAdapter
from .errors import UnsupportedProviderError
from .types import PROVIDER_KINDS, ModelRecord

logger = logging.getLogger(__name__)

DEFAULT_API_KEY_ENVS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
    "groq": "GROQ_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
}

_VENDOR_ADAPTERS = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
    "groq": GroqAdapter,
    "huggingface": HuggingFaceAdapter,
}

ProviderFactory = Callable[[ModelRecord], ProviderAdapter]


def use_mocks() -> bool:
    return os.environ.get("BLIND_DISPATCH_ENV", "real").lower() == "mock"


def create_provider(
    model: ModelRecord, transport: Union[httpx.AsyncBaseTransport, None] = None
) -> ProviderAdapter:
    """Select and construct the adapter for ``model.provider``.

    Raises ``UnsupportedProviderError`` for unknown kinds and
    ``ConfigurationError`` when required configuration or credentials are missing.
    """
    provider = model.provider
    if provider not in PROVIDER_KINDS:
        raise UnsupportedProviderError(provider)
    if use_mocks():
        return MockAdapter(provider=provider, model=model.model_id or "mock")

    config = model.configuration or {}
    if provider == "custom":
        return CustomAdapter(
            endpoint=config.get("endpoint", ""),
            api_key_env=config.get("apiKeyEnv"),
            model=model.model_id or "default",
            headers=config.get("headers"),
            image_mode=config.get("imageMode", "sync"),
            image_model=config.get("imageModel"),
            transport=transport,
        )

    kwargs: dict[str, Any] = {
        "api_key_env": config.get("apiKeyEnv") or DEFAULT_API_KEY_ENVS[provider],
        "transport": transport,
    }
    if model.model_id:
        kwargs["model"] = model.model_id
    return _VENDOR_ADAPTERS[provider](**kwargs)


async def test_provider(model: ModelRecord) -> bool:
    """Lenient diagnostic: any construction or connection error reports ``False``."""
    adapter = None
    try:
        adapter = create_provider(model)
        return await adapter.test_connection()
    except Exception as exc:
        logger.info("Provider test for model %s failed: %s", model.id, exc)
        return False
    finally:
        if adapter is not None:
            await adapter.aclose()


def config_fingerprint(model: ModelRecord) -> str:
    raw = json.dumps(
        {
            "provider": model.provider,
            "model_id": model.model_id,
            "configuration": model.configuration,
            "capabilities": sorted(model.capabilities),
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class ProviderRegistry:
    """Caches constructed adapters by model id.

    Entries remember the configuration fingerprint they were built from, so a
    changed model record is rebuilt by ``get_or_load``; ``evict`` is the
    explicit hook for configuration-change events.

    Callers that dispatch through a cached adapter take a lease with
    ``acquire`` and hand it back with ``release``. An adapter replaced or
    evicted while leased leaves the cache at once but is only closed when
    its last lease is released, so in-flight vendor calls complete.
    """

    def __init__(self, factory: ProviderFactory = create_provider) -> None:
        self._factory = factory
        self._entries: dict[str, tuple[str, ProviderAdapter]] = {}
        self._leases: dict[int, int] = {}
        self._retired: dict[int, ProviderAdapter] = {}

    async def load(self, model: ModelRecord) -> ProviderAdapter:
        adapter = self._factory(model)
        await self.evict(model.id)
        self._entries[model.id] = (config_fingerprint(model), adapter)
        return adapter

    def get(self, model_id: str) -> Union[ProviderAdapter, None]:
        entry = self._entries.get(model_id)
        return entry[1] if entry else None

    async def get_or_load(self, model: ModelRecord) -> ProviderAdapter:
        entry = self._entries.get(model.id)
        if entry and entry[0] == config_fingerprint(model):
            return entry[1]
        return await self.load(model)

    async def acquire(self, model: ModelRecord) -> ProviderAdapter:
        adapter = await self.get_or_load(model)
        key = id(adapter)
        self._leases[key] = self._leases.get(key, 0) + 1
        return adapter

    async def release(self, adapter: ProviderAdapter) -> None:
        key = id(adapter)
        remaining = self._leases.get(key, 0) - 1
        if remaining > 0:
            self._leases[key] = remaining
            return
        self._leases.pop(key, None)
        if self._retired.pop(key, None) is not None:
            logger.debug("Closing retired adapter %s after its last call", adapter.type)
            await adapter.aclose()

    def in_flight(self, adapter: ProviderAdapter) -> int:
        return self._leases.get(id(adapter), 0)

    def list_loaded(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._entries

    async def _retire(self, adapter: ProviderAdapter) -> None:
        if self.in_flight(adapter):
            self._retired[id(adapter)] = adapter
            return
        await adapter.aclose()

    async def evict(self, model_id: str) -> bool:
        entry = self._entries.pop(model_id, None)
        if entry is None:
            return False
        await self._retire(entry[1])
        return True

    async def clear(self) -> None:
        for model_id in list(self._entries):
            await self.evict(model_id)
