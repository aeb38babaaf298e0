from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field

from ..core.blind_assignment import assign_models, list_exercise_models, preview_assignments
from ..core.dispatcher import ASSET_URL_PREFIX, Dispatcher
from ..core.errors import BlindDispatchError, ConfigurationError, ValidationError
from ..core.factory import ProviderRegistry
from ..core.logging_utils import configure_logging
from ..core.masking import participant_error
from ..core.model_catalog import fetch_vendor_models
from ..core.model_config import model_from_dict
from ..core.runtime_data import get_runtime_paths
from ..core.sqlite_store import (
    connect,
    fetch_interactions,
    fetch_models,
    set_model_active,
    upsert_model,
)
from ..core.types import GenerationRequest, ModelRecord

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_runtime_paths().logs_dir)
    yield
    await app.state.provider_registry.clear()


app = FastAPI(lifespan=lifespan)
app.state.provider_registry = ProviderRegistry()


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class ModelPayload(_CamelModel):
    id: str
    name: str | None = None
    provider: str
    model_id: str | None = Field(None, alias="modelId")
    display_name: str | None = Field(None, alias="displayName")
    configuration: dict[str, Any] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=lambda: ["text"])
    active: bool = True


class GenerateRequest(_CamelModel):
    exercise_id: str = Field("", alias="exerciseId")
    model_id: str = Field("", alias="modelId")
    blind_name: str | None = Field(None, alias="blindName")
    prompt: str = ""
    conversation_id: str | None = Field(None, alias="conversationId")
    user_id: str | None = Field(None, alias="userId")
    history: list[dict[str, str]] = Field(default_factory=list)
    size: str | None = None
    quality: str | None = None
    style: str | None = None
    max_tokens: int | None = Field(None, alias="maxTokens")


class ModelTestRequest(_CamelModel):
    model_id: str = Field("", alias="modelId")


class AssignRequest(_CamelModel):
    model_ids: list[str] = Field(default_factory=list, alias="modelIds")
    temperature_overrides: dict[str, float] = Field(default_factory=dict, alias="temperatureOverrides")


class PreviewRequest(_CamelModel):
    model_ids: list[str] = Field(default_factory=list, alias="modelIds")


def _model_view(model: ModelRecord) -> dict:
    return {
        "id": model.id,
        "name": model.name,
        "displayName": model.display_name,
        "provider": model.provider,
        "modelId": model.model_id,
        "configuration": model.configuration,
        "capabilities": sorted(model.capabilities),
        "active": model.is_active,
    }


def _to_generation_request(req: GenerateRequest) -> GenerationRequest:
    options: dict[str, Any] = {}
    for key in ("size", "quality", "style", "max_tokens"):
        value = getattr(req, key)
        if value:
            options[key] = value
    return GenerationRequest(
        exercise_id=req.exercise_id,
        model_id=req.model_id,
        prompt=req.prompt,
        conversation_id=req.conversation_id,
        user_id=req.user_id,
        blind_name=req.blind_name,
        history=req.history,
        options=options,
    )


def _participant_http_error(exc: BlindDispatchError, blind_name: str | None = None) -> HTTPException:
    logger.error("Dispatch failed: %s: %s", type(exc).__name__, exc)
    status, message = participant_error(exc, blind_name)
    return HTTPException(status_code=status, detail=message)


def _admin_http_error(exc: BlindDispatchError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ConfigurationError) and exc.code == "model_not_found":
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


async def _run_dispatch(registry: ProviderRegistry, generation: GenerationRequest, kind: str):
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    dispatcher = Dispatcher(conn, registry=registry, assets_dir=runtime_paths.assets_dir)
    try:
        if kind == "image":
            return await dispatcher.generate_image(generation)
        return await dispatcher.generate_text(generation)
    finally:
        conn.close()


async def _dispatch(request: Request, req: GenerateRequest, kind: str) -> dict:
    generation = _to_generation_request(req)
    try:
        # Runs to completion with its own connection even if the client disconnects.
        outcome = await asyncio.shield(
            _run_dispatch(request.app.state.provider_registry, generation, kind)
        )
    except BlindDispatchError as exc:
        raise _participant_http_error(exc, req.blind_name) from exc
    return {"success": True, "response": outcome.payload}


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/models")
def list_models(active_only: bool = False) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    models = fetch_models(conn, active_only=active_only)
    conn.close()
    return {"models": [_model_view(m) for m in models]}


@app.post("/api/models")
async def save_model(payload: ModelPayload, request: Request) -> dict:
    try:
        model = model_from_dict(payload.model_dump(by_alias=True))
    except BlindDispatchError as exc:
        raise _admin_http_error(exc) from exc
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    upsert_model(conn, model)
    conn.close()
    await request.app.state.provider_registry.evict(model.id)
    logger.info("Saved model %s (%s)", model.id, model.provider)
    return {"model": _model_view(model)}


@app.get("/api/models/catalog")
def model_catalog(provider: str, search: str = "", task: str = "text-to-image") -> dict:
    try:
        models = fetch_vendor_models(provider, search=search, task=task)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except httpx.HTTPError as exc:
        logger.error("Error fetching models for %s: %s", provider, exc)
        raise HTTPException(status_code=500, detail="Failed to fetch models") from exc
    return {"models": models}


@app.post("/api/models/{model_id}/deactivate")
async def deactivate_model(model_id: str, request: Request) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    updated = set_model_active(conn, model_id, False)
    conn.close()
    if not updated:
        raise HTTPException(status_code=404, detail="Model not found")
    await request.app.state.provider_registry.evict(model_id)
    return {"id": model_id, "active": False}


@app.post("/api/ai/chat")
async def chat(req: GenerateRequest, request: Request) -> dict:
    return await _dispatch(request, req, "text")


@app.post("/api/ai/image")
async def image(req: GenerateRequest, request: Request) -> dict:
    return await _dispatch(request, req, "image")


@app.get(ASSET_URL_PREFIX + "/{filename}")
def stored_image(filename: str) -> FileResponse:
    images_dir = get_runtime_paths().images_dir
    path = images_dir / filename
    if path.name != filename or path.parent != images_dir or not path.is_file():
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path)


@app.post("/api/ai/test")
async def test_model(req: ModelTestRequest) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    try:
        return await Dispatcher(conn).test_model(req.model_id)
    except BlindDispatchError as exc:
        raise _admin_http_error(exc) from exc
    finally:
        conn.close()


@app.post("/api/ai/test-image")
async def test_image(req: ModelTestRequest) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    try:
        return await Dispatcher(conn).test_image(req.model_id)
    except BlindDispatchError as exc:
        raise _admin_http_error(exc) from exc
    finally:
        conn.close()


@app.get("/api/exercises/{exercise_id}/models")
def exercise_models(exercise_id: str) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    items = list_exercise_models(conn, exercise_id)
    conn.close()
    return {"exerciseId": exercise_id, "models": [item.participant_view() for item in items]}


@app.put("/api/exercises/{exercise_id}/models")
def save_exercise_models(exercise_id: str, req: AssignRequest) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    try:
        assignments = assign_models(
            conn, exercise_id, req.model_ids, temperature_overrides=req.temperature_overrides
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {
        "exerciseId": exercise_id,
        "assignments": [{"modelId": a.model_id, "blindName": a.blind_name} for a in assignments],
    }


@app.post("/api/blind/preview")
def blind_preview(req: PreviewRequest) -> dict:
    try:
        return {"assignments": preview_assignments(req.model_ids)}
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/interactions")
def list_interactions(exercise_id: str | None = None, limit: int = 1000) -> dict:
    runtime_paths = get_runtime_paths()
    conn = connect(runtime_paths.db_path)
    rows = fetch_interactions(conn, exercise_id=exercise_id, limit=limit)
    conn.close()
    return {"interactions": rows}
