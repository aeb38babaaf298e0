import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from blind_dispatch.api.app import app
from blind_dispatch.core.factory import ProviderRegistry
from blind_dispatch.core.masking import UNAVAILABLE_MESSAGE
from blind_dispatch.core.model_config import ModelConfigLoader
from blind_dispatch.core.runtime_data import get_runtime_paths
from blind_dispatch.core.sqlite_store import connect


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("BLIND_DISPATCH_RUNTIME_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("BLIND_DISPATCH_ENV", "mock")
    app.state.provider_registry = ProviderRegistry()
    return TestClient(app)


def _seed(client):
    for body in (
        {"id": "gpt", "name": "GPT-4o", "provider": "openai", "modelId": "gpt-4o"},
        {"id": "claude", "name": "Claude", "provider": "anthropic", "modelId": "claude-3-5-sonnet"},
        {"id": "sdxl", "name": "SDXL", "provider": "huggingface", "modelId": "sdxl", "capabilities": ["image"]},
    ):
        resp = client.post("/api/models", json=body)
        assert resp.status_code == 200
    resp = client.put("/api/exercises/ex-1/models", json={"modelIds": ["gpt", "claude", "sdxl"]})
    assert resp.status_code == 200
    client.put("/api/exercises/ex-2/models", json={"modelIds": ["claude"]})


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_models_roundtrip(client):
    _seed(client)
    data = client.get("/api/models").json()
    ids = {m["id"] for m in data["models"]}
    assert ids == {"gpt", "claude", "sdxl"}


def test_unsupported_provider_rejected(client):
    resp = client.post("/api/models", json={"id": "x", "provider": "cohere", "modelId": "c"})
    assert resp.status_code == 400


def test_exercise_models_hide_vendor(client):
    _seed(client)
    resp = client.get("/api/exercises/ex-1/models")
    data = resp.json()
    assert data["models"] == [
        {"blindName": "Alpha", "capabilities": ["text"]},
        {"blindName": "Beta", "capabilities": ["text"]},
        {"blindName": "Gamma", "capabilities": ["image"]},
    ]
    body = resp.text.lower()
    for term in ("gpt", "claude", "sdxl", "openai", "anthropic", "huggingface"):
        assert term not in body


def test_bundled_exercise_listing_reveals_no_configured_identity(client):
    loader = ModelConfigLoader()
    conn = connect(get_runtime_paths().db_path)
    loader.sync(conn)
    conn.close()

    resp = client.get("/api/exercises/demo-exercise/models")
    assert resp.status_code == 200
    assert [m["blindName"] for m in resp.json()["models"]] == ["Alpha", "Beta", "Gamma"]
    body = resp.text.lower()
    for model_id in loader.exercises["demo-exercise"]["models"]:
        model = loader.get_model(model_id)
        for term in (model.id, model.model_id, model.name, model.display_name, model.provider):
            if term:
                assert term.lower() not in body


def test_chat_is_masked_and_logged(client):
    _seed(client)
    resp = client.post(
        "/api/ai/chat",
        json={"exerciseId": "ex-1", "modelId": "gpt", "prompt": "hi", "conversationId": "c-1"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["response"]["model"] == "Alpha"
    assert body["response"]["provider"] == "hidden"
    assert "openai" not in resp.text.lower()

    rows = client.get("/api/interactions", params={"exercise_id": "ex-1"}).json()["interactions"]
    assert len(rows) == 1
    assert rows[0]["session_id"] == "c-1"


def test_chat_errors_are_participant_safe(client):
    _seed(client)
    resp = client.post("/api/ai/chat", json={"exerciseId": "ex-2", "modelId": "gpt", "prompt": "hi"})
    assert resp.status_code == 403

    resp = client.post("/api/ai/chat", json={"exerciseId": "ex-1", "modelId": "nope", "prompt": "hi"})
    assert resp.status_code == 404

    resp = client.post("/api/ai/chat", json={"exerciseId": "ex-1", "modelId": "gpt"})
    assert resp.status_code == 400

    client.post("/api/models/claude/deactivate")
    resp = client.post("/api/ai/chat", json={"exerciseId": "ex-1", "modelId": "claude", "prompt": "hi"})
    assert resp.status_code == 400


def test_missing_credentials_map_to_unavailable(client, monkeypatch):
    _seed(client)
    monkeypatch.setenv("BLIND_DISPATCH_ENV", "real")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    resp = client.post("/api/ai/chat", json={"exerciseId": "ex-1", "modelId": "gpt", "prompt": "hi"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == UNAVAILABLE_MESSAGE
    assert "OPENAI_API_KEY" not in resp.text


def test_image_capability(client):
    _seed(client)
    resp = client.post(
        "/api/ai/image", json={"exerciseId": "ex-1", "blindName": "Alpha", "prompt": "a cat"}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Alpha doesn't support image generation"

    resp = client.post("/api/ai/image", json={"exerciseId": "ex-1", "modelId": "sdxl", "prompt": "a cat"})
    assert resp.status_code == 200
    assert resp.json()["response"]["model"] == "Gamma"


def test_blind_preview(client):
    resp = client.post("/api/blind/preview", json={"modelIds": ["b", "a"]})
    assert resp.json()["assignments"] == [
        {"modelId": "b", "blindName": "Alpha"},
        {"modelId": "a", "blindName": "Beta"},
    ]
    assert client.post("/api/blind/preview", json={"modelIds": ["a", "a"]}).status_code == 400


def test_admin_model_test(client):
    _seed(client)
    resp = client.post("/api/ai/test", json={"modelId": "gpt"})
    assert resp.json() == {"success": True}
    assert client.post("/api/ai/test", json={"modelId": "missing"}).status_code == 404


def test_catalog(client):
    resp = client.get("/api/models/catalog", params={"provider": "anthropic"})
    assert resp.status_code == 200
    assert resp.json()["models"]
    assert client.get("/api/models/catalog", params={"provider": "custom"}).status_code == 400


def test_stored_images_are_served_by_file_name(client):
    _seed(client)
    resp = client.post("/api/ai/image", json={"exerciseId": "ex-1", "blindName": "Gamma", "prompt": "a cat"})
    assert resp.status_code == 200

    row = client.get("/api/interactions", params={"exercise_id": "ex-1"}).json()["interactions"][0]
    stored = Path(row["response"])
    served = client.get(f"/api/assets/images/{stored.name}")
    assert served.status_code == 200
    assert served.content == stored.read_bytes()
    assert client.get("/api/assets/images/missing.png").status_code == 404


def test_malformed_image_size_is_a_bad_request(client):
    _seed(client)
    resp = client.post(
        "/api/ai/image", json={"exerciseId": "ex-1", "modelId": "sdxl", "prompt": "a cat", "size": "huge"}
    )
    assert resp.status_code == 400
    assert "WIDTHxHEIGHT" in resp.json()["detail"]
