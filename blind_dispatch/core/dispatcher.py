"""Request orchestration: validate, resolve, dispatch, persist, mask."""

from __future__ import annotations

import base64
import binascii
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union, cast

import httpx

from ..adapters.base import (
    GenerateImageOptions,
    GenerateTextOptions,
    ImageProviderAdapter,
    ImageResponse,
    ProviderAdapter,
)
from ..adapters.http_utils import build_client, parse_size, request_bytes, to_data_url
from .blind_assignment import get_assignment, resolve_blind_name
from .errors import (
    CapabilityError,
    ConfigurationError,
    PersistenceWarning,
    PollTimeoutError,
    ProviderError,
    ValidationError,
)
from .factory import ProviderFactory, ProviderRegistry, create_provider
from .masking import mask_image_result, mask_text_result
from .prompt import PromptContext, render_prompt
from .sqlite_store import fetch_model, insert_interaction
from .types import ExerciseModelAssignment, GenerationRequest, InteractionRecord, ModelRecord

logger = logging.getLogger(__name__)

TEST_IMAGE_PROMPT = "A simple red circle on white background"

# Served by the API from assets/images.
ASSET_URL_PREFIX = "/api/assets/images"

_IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}


@dataclass
class DispatchOutcome:
    """The masked payload for the caller plus bookkeeping that stays server-side."""

    payload: dict[str, Any]
    interaction_id: Union[int, None] = None
    persistence_warning: Union[PersistenceWarning, None] = None


class Dispatcher:
    def __init__(
        self,
        conn: sqlite3.Connection,
        provider_factory: ProviderFactory = create_provider,
        registry: Union[ProviderRegistry, None] = None,
        assets_dir: Union[Path, None] = None,
        redact_content: bool = True,
        image_transport: Union[httpx.AsyncBaseTransport, None] = None,
    ) -> None:
        self.conn = conn
        self.provider_factory = provider_factory
        self.registry = registry
        self.assets_dir = assets_dir
        self.redact_content = redact_content
        self.image_transport = image_transport

    # -- resolution -------------------------------------------------------

    def _validate(self, request: GenerationRequest) -> None:
        missing = []
        if not request.exercise_id:
            missing.append("exerciseId")
        if not request.model_id and not request.blind_name:
            missing.append("modelId")
        if not request.prompt or not request.prompt.strip():
            missing.append("prompt")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    def _resolve_model(self, request: GenerationRequest) -> ModelRecord:
        if request.model_id:
            model = fetch_model(self.conn, request.model_id)
        else:
            model = resolve_blind_name(self.conn, request.exercise_id, request.blind_name)
        if model is None:
            raise ConfigurationError(
                f"Model {request.model_id or request.blind_name} not found", code="model_not_found"
            )
        if not model.is_active:
            raise ConfigurationError(f"Model {model.id} is not active", code="model_inactive")
        return model

    def _resolve_assignment(self, exercise_id: str, model: ModelRecord) -> ExerciseModelAssignment:
        assignment = get_assignment(self.conn, exercise_id, model.id)
        if assignment is None:
            raise ConfigurationError(
                f"Model {model.id} is not assigned to exercise {exercise_id}", code="not_assigned"
            )
        return assignment

    async def _acquire(self, model: ModelRecord) -> tuple[ProviderAdapter, bool]:
        """Return (adapter, owned); owned adapters are closed after the call."""
        if self.registry is not None:
            return await self.registry.acquire(model), False
        return self.provider_factory(model), True

    async def _release(self, adapter: ProviderAdapter, owned: bool) -> None:
        if owned:
            await adapter.aclose()
        elif self.registry is not None:
            await self.registry.release(adapter)

    @staticmethod
    def _text_options(
        model: ModelRecord, assignment: ExerciseModelAssignment, overrides: dict[str, Any]
    ) -> GenerateTextOptions:
        options = GenerateTextOptions(model=model.model_id)
        config = model.configuration or {}
        if assignment.temperature_override is not None:
            options["temperature"] = assignment.temperature_override
        elif config.get("temperature") is not None:
            options["temperature"] = float(config["temperature"])
        max_tokens = overrides.get("max_tokens") or config.get("maxTokens")
        if max_tokens:
            options["max_tokens"] = int(max_tokens)
        return options

    # -- persistence ------------------------------------------------------

    def _persist(self, record: InteractionRecord) -> tuple[Union[int, None], Union[PersistenceWarning, None]]:
        try:
            return insert_interaction(self.conn, record), None
        except Exception as exc:
            warning = PersistenceWarning(f"Interaction for model {record.model_id} not recorded: {exc}")
            logger.warning("%s", warning, exc_info=True)
            return None, warning

    def _store_image(self, image_url: str) -> str:
        """Write ``data:`` URLs to the assets directory and return the file path as the storage pointer."""
        if not image_url.startswith("data:") or self.assets_dir is None:
            return image_url
        header, _, encoded = image_url.partition(",")
        mime = header[len("data:"):].split(";")[0]
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Image payload is not valid base64; storing a placeholder pointer")
            return "data-url:invalid"
        images_dir = self.assets_dir / "images"
        images_dir.mkdir(parents=True, exist_ok=True)
        path = images_dir / f"{uuid.uuid4().hex}.{_IMAGE_EXTENSIONS.get(mime, 'bin')}"
        path.write_bytes(data)
        return str(path)

    async def _download_image(self, url: str, model: ModelRecord) -> str:
        """Fetch a vendor-hosted image and return it as a ``data:`` URL."""
        async with build_client("", transport=self.image_transport) as client:
            body, content_type = await request_bytes(
                client, model.provider, "Image download", url, method="GET"
            )
        return to_data_url(body, content_type.split(";")[0].strip())

    # -- generation -------------------------------------------------------

    async def generate_text(self, request: GenerationRequest) -> DispatchOutcome:
        self._validate(request)
        model = self._resolve_model(request)
        assignment = self._resolve_assignment(request.exercise_id, model)
        conversation_id = request.conversation_id or f"conv-{uuid.uuid4().hex[:12]}"
        options = self._text_options(model, assignment, request.options)
        prompt = render_prompt(PromptContext(prompt=request.prompt, history=request.history))

        logger.info(
            "Generating text with model %s (%s) for exercise %s",
            model.id, assignment.blind_name, request.exercise_id,
        )
        adapter, owned = await self._acquire(model)
        try:
            result = await adapter.generate_text(prompt, options)
        except ProviderError as exc:
            logger.error(
                "Provider %s failed for model %s in exercise %s (status=%s, code=%s): %s",
                exc.provider, model.id, request.exercise_id, exc.status_code, exc.code, exc,
            )
            raise
        finally:
            await self._release(adapter, owned)

        record = InteractionRecord(
            exercise_id=request.exercise_id,
            model_id=model.id,
            session_id=conversation_id,
            user_id=request.user_id,
            prompt=request.prompt,
            response=result.get("content") or "",
            tokens=result.get("tokens"),
            metadata={
                "kind": "text",
                "blindName": assignment.blind_name,
                "vendorId": result.get("id"),
                "finishReason": result.get("finish_reason"),
                "vendorModel": result.get("model"),
            },
        )
        interaction_id, warning = self._persist(record)
        payload = mask_text_result(
            result, model, assignment.blind_name, conversation_id, redact=self.redact_content
        )
        return DispatchOutcome(payload=payload, interaction_id=interaction_id, persistence_warning=warning)

    async def generate_image(self, request: GenerationRequest) -> DispatchOutcome:
        self._validate(request)
        model = self._resolve_model(request)
        assignment = self._resolve_assignment(request.exercise_id, model)
        if not model.supports_images:
            raise CapabilityError(f"Model {model.id} does not declare image capability", "image")
        if request.options.get("size"):
            parse_size(request.options["size"])
        conversation_id = request.conversation_id or f"conv-{uuid.uuid4().hex[:12]}"

        adapter, owned = await self._acquire(model)
        try:
            if not getattr(adapter, "supports_images", False) or not hasattr(adapter, "generate_image"):
                raise CapabilityError(
                    f"Provider {adapter.type} does not support image generation", "image"
                )
            options = GenerateImageOptions(
                **{k: v for k, v in request.options.items() if k in ("size", "quality", "style") and v}
            )
            logger.info(
                "Generating image with model %s (%s) for exercise %s",
                model.id, assignment.blind_name, request.exercise_id,
            )
            result = await cast(ImageProviderAdapter, adapter).generate_image(request.prompt, options)
        except ProviderError as exc:
            logger.error(
                "Image generation failed for model %s in exercise %s (status=%s, code=%s): %s",
                model.id, request.exercise_id, exc.status_code, exc.code, exc,
            )
            raise
        finally:
            await self._release(adapter, owned)

        image_url = result.get("image_url") or ""
        remote = image_url.startswith(("http://", "https://"))
        if remote:
            # Vendor-hosted URLs name the vendor; re-host the bytes instead.
            image_url = await self._download_image(image_url, model)
        warning = None
        try:
            pointer = self._store_image(image_url)
        except OSError as exc:
            warning = PersistenceWarning(f"Image for model {model.id} not stored: {exc}")
            logger.warning("%s", warning)
            pointer = "data-url:unsaved"
        outward_url = image_url
        if remote and warning is None and self.assets_dir is not None:
            outward_url = f"{ASSET_URL_PREFIX}/{Path(pointer).name}"
        record = InteractionRecord(
            exercise_id=request.exercise_id,
            model_id=model.id,
            session_id=conversation_id,
            user_id=request.user_id,
            prompt=request.prompt,
            response=pointer,
            tokens=None,
            metadata={
                "kind": "image",
                "blindName": assignment.blind_name,
                "vendorId": result.get("id"),
                "vendorModel": result.get("model"),
            },
        )
        interaction_id, persist_warning = self._persist(record)
        payload = mask_image_result(
            ImageResponse(**{**result, "image_url": outward_url}), assignment.blind_name, conversation_id
        )
        return DispatchOutcome(
            payload=payload,
            interaction_id=interaction_id,
            persistence_warning=persist_warning or warning,
        )

    # -- admin diagnostics ------------------------------------------------

    def _require_model(self, model_id: str) -> ModelRecord:
        if not model_id:
            raise ValidationError("Model ID required")
        model = fetch_model(self.conn, model_id)
        if model is None:
            raise ConfigurationError(f"Model {model_id} not found", code="model_not_found")
        return model

    async def test_model(self, model_id: str) -> dict[str, Any]:
        """Strict connection check for admins; vendor detail is returned verbatim."""
        model = self._require_model(model_id)
        logger.info("Testing model %s (%s)", model.name, model.provider)
        adapter = None
        try:
            adapter = self.provider_factory(model)
            success = await adapter.test_connection()
        except ProviderError as exc:
            logger.warning("Provider test error for %s: %s", model.id, exc)
            return {"success": False, **exc.to_dict()}
        except ConfigurationError as exc:
            logger.warning("Provider test error for %s: %s", model.id, exc)
            return {"success": False, "error": str(exc)}
        finally:
            if adapter is not None:
                await adapter.aclose()
        if success:
            return {"success": True}
        return {
            "success": False,
            "error": f"{model.provider} API connection failed. Check your API key and credits.",
        }

    async def test_image(self, model_id: str) -> dict[str, Any]:
        model = self._require_model(model_id)
        if not model.supports_images:
            return {
                "success": False,
                "error": f"Image test not implemented for provider: {model.provider}",
            }
        adapter = None
        try:
            adapter = self.provider_factory(model)
            if not getattr(adapter, "supports_images", False):
                return {
                    "success": False,
                    "error": f"Image test not implemented for provider: {model.provider}",
                }
            result = await adapter.generate_image(TEST_IMAGE_PROMPT, {"size": "512x512"})
        except PollTimeoutError as exc:
            return {"success": False, "error": "Polling timeout", "taskId": exc.task_id}
        except (ConfigurationError, ProviderError) as exc:
            return {"success": False, "error": str(exc)}
        finally:
            if adapter is not None:
                await adapter.aclose()
        response: dict[str, Any] = {
            "success": True,
            "provider": model.provider,
            "model": model.name,
        }
        task_id = (result.get("metadata") or {}).get("taskId")
        if task_id:
            response["taskId"] = task_id
        return response
