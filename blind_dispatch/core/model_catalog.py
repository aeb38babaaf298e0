from __future__ import annotations

import os
from typing import Any, Union

import httpx

from .errors import ValidationError

OPENAI_BASE_URL = "https://api.openai.com/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
HUGGINGFACE_BASE_URL = "https://huggingface.co/api"

# Anthropic has no listing endpoint.
ANTHROPIC_MODELS = [
    {"id": "claude-3-5-sonnet-20241022", "name": "Claude 3.5 Sonnet"},
    {"id": "claude-3-5-haiku-20241022", "name": "Claude 3.5 Haiku"},
    {"id": "claude-3-opus-20240229", "name": "Claude 3 Opus"},
    {"id": "claude-3-sonnet-20240229", "name": "Claude 3 Sonnet"},
    {"id": "claude-3-haiku-20240307", "name": "Claude 3 Haiku"},
]

CATALOG_PROVIDERS = ("openai", "groq", "google", "anthropic", "huggingface")


def _get_json(
    base_url: str,
    path: str,
    headers: Union[dict[str, str], None] = None,
    params: Union[dict[str, Any], None] = None,
    transport: Union[httpx.BaseTransport, None] = None,
) -> Any:
    with httpx.Client(base_url=base_url, timeout=30, transport=transport) as client:
        resp = client.get(path, headers=headers or {}, params=params)
        resp.raise_for_status()
        return resp.json()


def _bearer(env_name: str) -> dict[str, str]:
    key = os.environ.get(env_name)
    return {"Authorization": f"Bearer {key}"} if key else {}


def normalize_models(provider: str, raw_models: list[dict[str, Any]]) -> list[dict[str, Any]]:
    normalized = []
    for entry in raw_models:
        if provider == "openai":
            model_id = entry.get("id") or ""
            if not model_id.startswith("gpt"):
                continue
            normalized.append({"id": model_id, "name": model_id})
        elif provider == "groq":
            if not entry.get("active") or not entry.get("id"):
                continue
            normalized.append(
                {"id": entry["id"], "name": entry["id"], "context_window": entry.get("context_window")}
            )
        elif provider == "google":
            if "generateContent" not in (entry.get("supportedGenerationMethods") or []):
                continue
            model_id = (entry.get("name") or "").replace("models/", "")
            if not model_id:
                continue
            normalized.append(
                {
                    "id": model_id,
                    "name": entry.get("displayName") or model_id,
                    "context_window": entry.get("inputTokenLimit"),
                }
            )
        elif provider == "huggingface":
            if not entry.get("id"):
                continue
            normalized.append(
                {
                    "id": entry["id"],
                    "name": entry["id"],
                    "downloads": entry.get("downloads"),
                    "pipeline_tag": entry.get("pipeline_tag"),
                }
            )
        else:
            normalized.append(entry)
    return normalized


def fetch_vendor_models(
    provider: str,
    search: str = "",
    task: str = "text-to-image",
    transport: Union[httpx.BaseTransport, None] = None,
) -> list[dict[str, Any]]:
    """List the models a vendor offers, for admins choosing what to register."""
    if provider not in CATALOG_PROVIDERS:
        raise ValidationError(f"Model listing not available for provider: {provider}")

    if provider == "anthropic":
        return [dict(m) for m in ANTHROPIC_MODELS]

    if provider == "openai":
        data = _get_json(OPENAI_BASE_URL, "/models", _bearer("OPENAI_API_KEY"), transport=transport)
        raw = data.get("data") or []
    elif provider == "groq":
        data = _get_json(GROQ_BASE_URL, "/models", _bearer("GROQ_API_KEY"), transport=transport)
        raw = data.get("data") or []
    elif provider == "google":
        data = _get_json(
            GOOGLE_BASE_URL,
            "/models",
            params={"key": os.environ.get("GOOGLE_API_KEY", "")},
            transport=transport,
        )
        raw = data.get("models") or []
    else:
        params: dict[str, Any] = {
            "pipeline_tag": task,
            "sort": "downloads",
            "direction": -1,
            "limit": 20,
        }
        if search:
            params["search"] = search
        raw = _get_json(
            HUGGINGFACE_BASE_URL, "/models", _bearer("HUGGINGFACE_API_KEY"), params, transport
        ) or []

    if not isinstance(raw, list):
        return []
    return normalize_models(provider, raw)
