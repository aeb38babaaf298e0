from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .errors import ConfigurationError

PROVIDER_KINDS = ("openai", "anthropic", "google", "groq", "custom", "huggingface")

HIDDEN_PROVIDER = "hidden"


@dataclass
class ModelRecord:
    id: str
    name: str
    provider: str
    model_id: str
    configuration: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    capabilities: set[str] = field(default_factory=lambda: {"text"})
    display_name: Union[str, None] = None

    def __post_init__(self) -> None:
        if self.provider not in PROVIDER_KINDS:
            raise ConfigurationError(
                f"Unsupported provider: {self.provider}", code="unsupported_provider"
            )
        if self.provider == "custom" and not self.configuration.get("endpoint"):
            raise ConfigurationError(
                f"Custom model '{self.id}' requires configuration.endpoint"
            )
        self.capabilities = set(self.capabilities)

    @property
    def supports_images(self) -> bool:
        return "image" in self.capabilities


@dataclass
class ExerciseModelAssignment:
    exercise_id: str
    model_id: str
    blind_name: str
    temperature_override: Union[float, None] = None
    position: int = 0


@dataclass
class GenerationRequest:
    exercise_id: str
    model_id: str
    prompt: str
    conversation_id: Union[str, None] = None
    user_id: Union[str, None] = None
    blind_name: Union[str, None] = None
    history: list[dict[str, str]] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class InteractionRecord:
    exercise_id: str
    model_id: str
    session_id: str
    prompt: str
    response: str
    tokens: Union[int, None] = None
    user_id: Union[str, None] = None
    metadata: dict[str, Any] = field(default_factory=dict)
