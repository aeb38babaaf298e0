"""Error taxonomy for the dispatch layer."""

from __future__ import annotations

from typing import Union


class BlindDispatchError(Exception):
    """Base class for every error raised by blind_dispatch."""


class ValidationError(BlindDispatchError):
    """A request is missing required fields or carries malformed ones."""


class ConfigurationError(BlindDispatchError):
    """A model or deployment is misconfigured, or not usable for this request."""

    def __init__(self, message: str, code: str = "missing_configuration") -> None:
        super().__init__(message)
        self.code = code


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported provider: {provider}", code="unsupported_provider")
        self.provider = provider


class ProviderError(BlindDispatchError):
    """A vendor API answered with a failure or with a payload we cannot read."""

    def __init__(
        self,
        message: str,
        provider: str,
        code: Union[str, None] = None,
        status_code: Union[int, None] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.code = code
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "provider": self.provider,
            "code": self.code,
            "statusCode": self.status_code,
        }


class PollTimeoutError(ProviderError):
    """An async vendor task did not reach a terminal state within the attempt ceiling."""

    def __init__(self, provider: str, task_id: str, attempts: int) -> None:
        super().__init__(
            f"Polling timeout for task {task_id} after {attempts} attempts",
            provider,
            code="poll_timeout",
        )
        self.task_id = task_id
        self.attempts = attempts


class CapabilityError(BlindDispatchError):
    """The selected model or vendor cannot perform the requested operation."""

    def __init__(self, message: str, capability: str) -> None:
        super().__init__(message)
        self.capability = capability


class PersistenceWarning(UserWarning):
    """Writing an interaction record failed after a successful generation."""
