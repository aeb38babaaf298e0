"""Participant-facing shaping of generation results and errors."""

from __future__ import annotations

import re
import uuid
from typing import Union

from ..adapters.base import ImageResponse, TextResponse
from .errors import BlindDispatchError, CapabilityError, ConfigurationError, ValidationError
from .types import HIDDEN_PROVIDER, ModelRecord

UNAVAILABLE_MESSAGE = "I'm currently unavailable. Please try again later."

VENDOR_TERMS = {
    "openai": ("OpenAI", "ChatGPT"),
    "anthropic": ("Anthropic", "Claude"),
    "google": ("Google", "Gemini"),
    "groq": ("Groq",),
    "huggingface": ("HuggingFace", "Hugging Face"),
}

# Public messages per configuration error code; none of them name a vendor.
CONFIGURATION_MESSAGES = {
    "model_not_found": "Model not found",
    "model_inactive": "Model is not active",
    "not_assigned": "Model is not assigned to this exercise",
}


def identity_terms(model: ModelRecord) -> list[str]:
    """Strings that would reveal which vendor/model sits behind a blind label."""
    terms = {model.id, model.model_id, model.name}
    if model.display_name:
        terms.add(model.display_name)
    if model.provider != "custom":
        terms.add(model.provider)
        terms.update(VENDOR_TERMS.get(model.provider, ()))
    return sorted((t for t in terms if t and len(t) >= 3), key=len, reverse=True)


def redact_identity(text: str, terms: list[str], blind_name: str) -> str:
    for term in terms:
        text = re.sub(re.escape(term), blind_name, text, flags=re.IGNORECASE)
    return text


def _outward_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def mask_text_result(
    result: TextResponse,
    model: ModelRecord,
    blind_name: str,
    conversation_id: str,
    redact: bool = True,
) -> dict:
    content = result.get("content") or ""
    if redact:
        content = redact_identity(content, identity_terms(model), blind_name)
    return {
        "id": _outward_id(),
        "content": content,
        "model": blind_name,
        "provider": HIDDEN_PROVIDER,
        "tokens": result.get("tokens"),
        "conversationId": conversation_id,
    }


def mask_image_result(
    result: ImageResponse, blind_name: str, conversation_id: str
) -> dict:
    return {
        "id": _outward_id(),
        "imageUrl": result.get("image_url"),
        "model": blind_name,
        "provider": HIDDEN_PROVIDER,
        "conversationId": conversation_id,
    }


def participant_error(exc: BlindDispatchError, blind_name: Union[str, None] = None) -> tuple[int, str]:
    """Map an error to an HTTP status and a message safe to show a participant."""
    if isinstance(exc, ValidationError):
        return 400, str(exc)
    if isinstance(exc, ConfigurationError):
        if exc.code == "model_not_found":
            return 404, CONFIGURATION_MESSAGES[exc.code]
        if exc.code == "not_assigned":
            return 403, CONFIGURATION_MESSAGES[exc.code]
        if exc.code == "model_inactive":
            return 400, CONFIGURATION_MESSAGES[exc.code]
        return 503, UNAVAILABLE_MESSAGE
    if isinstance(exc, CapabilityError):
        label = blind_name or "This model"
        return 400, f"{label} doesn't support {exc.capability} generation"
    return 502, UNAVAILABLE_MESSAGE
