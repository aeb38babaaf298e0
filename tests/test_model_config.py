import sys
from pathlib import Path

import httpx
import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from blind_dispatch.core.blind_assignment import list_exercise_models
from blind_dispatch.core.errors import ConfigurationError, ValidationError
from blind_dispatch.core.model_catalog import ANTHROPIC_MODELS, fetch_vendor_models, normalize_models
from blind_dispatch.core.model_config import ModelConfigLoader, model_from_dict
from blind_dispatch.core.sqlite_store import connect, fetch_model


def test_bundled_config_loads():
    loader = ModelConfigLoader()
    assert loader.models
    for exercise in loader.exercises.values():
        assert all(model_id in loader.models for model_id in exercise["models"])


def test_sync_upserts_models_and_seeds_exercises(tmp_path):
    config = {
        "models": [
            {
                "id": "house",
                "provider": "custom",
                "modelId": "house-1",
                "capabilities": ["text", "image"],
                "configuration": {"endpoint": "https://llm.internal/v1", "apiKeyEnv": "HOUSE_KEY"},
            },
            {"id": "gpt", "provider": "openai", "modelId": "gpt-4o", "active": False},
        ],
        "exercises": {"ex-1": {"models": ["gpt", "house"], "temperatureOverrides": {"house": 0.2}}},
    }
    path = tmp_path / "models.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")

    conn = connect(tmp_path / "db.sqlite3")
    synced = ModelConfigLoader(path).sync(conn)
    assert [m.id for m in synced] == ["house", "gpt"]

    house = fetch_model(conn, "house")
    assert house.name == "house"
    assert house.supports_images
    assert house.configuration["apiKeyEnv"] == "HOUSE_KEY"
    assert fetch_model(conn, "gpt").is_active is False

    items = list_exercise_models(conn, "ex-1", include_inactive=True)
    assert [(i.assignment.model_id, i.blind_name) for i in items] == [("gpt", "Alpha"), ("house", "Beta")]
    assert items[1].assignment.temperature_override == pytest.approx(0.2)
    conn.close()


def test_sync_rejects_unknown_exercise_models(tmp_path):
    path = tmp_path / "models.yaml"
    path.write_text(
        yaml.safe_dump({"models": [], "exercises": {"ex-1": ["ghost"]}}), encoding="utf-8"
    )
    conn = connect(tmp_path / "db.sqlite3")
    with pytest.raises(ConfigurationError):
        ModelConfigLoader(path).sync(conn)
    conn.close()


def test_model_from_dict_requires_provider():
    with pytest.raises(ValidationError):
        model_from_dict({"id": "x"})


def test_catalog_filters_vendor_listings(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gq")

    def handler(request):
        assert request.headers["authorization"] == "Bearer gq"
        return httpx.Response(
            200,
            json={"data": [{"id": "llama-a", "active": True, "context_window": 8192}, {"id": "old", "active": False}]},
        )

    models = fetch_vendor_models("groq", transport=httpx.MockTransport(handler))
    assert models == [{"id": "llama-a", "name": "llama-a", "context_window": 8192}]


def test_catalog_static_and_normalized_lists():
    assert fetch_vendor_models("anthropic") == ANTHROPIC_MODELS
    google = normalize_models(
        "google",
        [
            {"name": "models/gemini-2.5-flash", "displayName": "Gemini 2.5 Flash", "supportedGenerationMethods": ["generateContent"]},
            {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
        ],
    )
    assert [m["id"] for m in google] == ["gemini-2.5-flash"]
    openai = normalize_models("openai", [{"id": "gpt-4o"}, {"id": "whisper-1"}])
    assert [m["id"] for m in openai] == ["gpt-4o"]
    with pytest.raises(ValidationError):
        fetch_vendor_models("custom")
