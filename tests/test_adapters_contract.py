import asyncio
import base64
import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from blind_dispatch.adapters.anthropic_adapter import ANTHROPIC_VERSION, AnthropicAdapter
from blind_dispatch.adapters.custom_adapter import CustomAdapter
from blind_dispatch.adapters.google_adapter import GoogleAdapter
from blind_dispatch.adapters.groq_adapter import GroqAdapter
from blind_dispatch.adapters.huggingface_adapter import TEXT_REFUSAL, HuggingFaceAdapter
from blind_dispatch.adapters.mock_adapter import MockAdapter
from blind_dispatch.adapters.openai_adapter import OpenAIAdapter
from blind_dispatch.core.errors import ConfigurationError, PollTimeoutError, ProviderError, ValidationError


def _call(adapter, method, *args):
    async def _go():
        try:
            return await getattr(adapter, method)(*args)
        finally:
            await adapter.aclose()

    return asyncio.run(_go())


def _recording(handler, requests):
    def _wrapped(request):
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(_wrapped)


def _no_sleep(calls):
    async def _sleep(seconds):
        calls.append(seconds)

    return _sleep


def test_mock_adapter_shape():
    adapter = MockAdapter(provider="anthropic", model="m")
    res = _call(adapter, "generate_text", "hi")
    assert res["content"] == "Mock response."
    assert res["provider"] == "anthropic"
    assert adapter.calls[0][0] == "text"


def test_openai_parses_chat_completion(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    requests = []

    def handler(request):
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "model": "gpt-4o",
                "choices": [{"message": {"content": "Hello there"}, "finish_reason": "stop"}],
                "usage": {"total_tokens": 12},
            },
        )

    adapter = OpenAIAdapter(model="gpt-4o", transport=_recording(handler, requests))
    res = _call(adapter, "generate_text", "hi", {"temperature": 0.0, "max_tokens": 50})

    assert res["content"] == "Hello there"
    assert res["tokens"] == 12
    assert res["finish_reason"] == "stop"
    sent = json.loads(requests[0].content)
    assert sent["temperature"] == 0.0
    assert sent["max_tokens"] == 50
    assert requests[0].headers["authorization"] == "Bearer sk-test"
    assert requests[0].url.path.endswith("/chat/completions")


def test_openai_rate_limit_is_single_attempt(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    requests = []

    def handler(request):
        return httpx.Response(
            429, json={"error": {"message": "Rate limit reached", "type": "rate_limit_exceeded"}}
        )

    adapter = OpenAIAdapter(transport=_recording(handler, requests))
    with pytest.raises(ProviderError) as excinfo:
        _call(adapter, "generate_text", "hi")

    assert excinfo.value.status_code == 429
    assert excinfo.value.code == "rate_limit_exceeded"
    assert "Rate limit reached" in str(excinfo.value)
    assert len(requests) == 1


def test_openai_image_url(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    def handler(request):
        body = json.loads(request.content)
        assert body["model"] == "dall-e-3"
        return httpx.Response(200, json={"data": [{"url": "https://img/1.png", "revised_prompt": "x"}]})

    adapter = OpenAIAdapter(transport=httpx.MockTransport(handler))
    res = _call(adapter, "generate_image", "a cat", {"size": "512x512"})
    assert res["image_url"] == "https://img/1.png"


def test_openai_missing_key_fails_before_http(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        OpenAIAdapter()


def test_anthropic_headers_and_parsing(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ak-test")
    requests = []

    def handler(request):
        return httpx.Response(
            200,
            json={
                "id": "msg_vendor",
                "model": "claude-3-5-sonnet-20241022",
                "content": [{"type": "text", "text": "Bonjour"}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 4, "output_tokens": 5},
            },
        )

    adapter = AnthropicAdapter(transport=_recording(handler, requests))
    res = _call(adapter, "generate_text", "hi")

    assert res["content"] == "Bonjour"
    assert res["tokens"] == 5
    assert res["finish_reason"] == "end_turn"
    assert requests[0].headers["anthropic-version"] == ANTHROPIC_VERSION
    assert requests[0].headers["x-api-key"] == "ak-test"
    assert adapter.supports_images is False


def test_anthropic_test_connection_is_strict(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ak-test")

    def handler(request):
        return httpx.Response(401, json={"error": {"type": "authentication_error", "message": "invalid x-api-key"}})

    adapter = AnthropicAdapter(transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as excinfo:
        _call(adapter, "test_connection")
    assert excinfo.value.status_code == 401
    assert "invalid x-api-key" in str(excinfo.value)


def test_google_text_and_image(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "g-test")
    png = base64.b64encode(b"\x89PNG").decode("ascii")

    def handler(request):
        assert request.url.params["key"] == "g-test"
        if "gemini-2.5-flash-image" in request.url.path:
            return httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": png}}]}}]},
            )
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "Ciao"}]}, "finishReason": "STOP"}],
                "usageMetadata": {"totalTokenCount": 7},
            },
        )

    text = _call(GoogleAdapter(transport=httpx.MockTransport(handler)), "generate_text", "hi")
    assert text["content"] == "Ciao"
    assert text["tokens"] == 7

    image = _call(GoogleAdapter(transport=httpx.MockTransport(handler)), "generate_image", "a cat")
    assert image["image_url"] == f"data:image/png;base64,{png}"


def test_groq_defaults_to_low_temperature(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gq-test")
    requests = []

    def handler(request):
        return httpx.Response(
            200,
            json={"id": "g1", "choices": [{"message": {"content": "fast"}, "finish_reason": "stop"}], "usage": {}},
        )

    res = _call(GroqAdapter(transport=_recording(handler, requests)), "generate_text", "hi")
    assert res["content"] == "fast"
    assert json.loads(requests[0].content)["temperature"] == 0.3


def test_generation_is_not_retried_on_transport_error(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gq-test")
    requests = []

    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(ProviderError):
        _call(GroqAdapter(transport=_recording(handler, requests)), "generate_text", "hi")
    assert len(requests) == 1


def test_huggingface_text_refusal_makes_no_request(monkeypatch):
    monkeypatch.delenv("HUGGINGFACE_API_KEY", raising=False)
    requests = []
    adapter = HuggingFaceAdapter(
        model="stabilityai/sdxl", transport=_recording(lambda r: httpx.Response(500), requests)
    )
    res = _call(adapter, "generate_text", "hi")
    assert res["content"] == TEXT_REFUSAL
    assert requests == []


def test_huggingface_image_requires_key_and_returns_data_url(monkeypatch):
    monkeypatch.delenv("HUGGINGFACE_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        _call(HuggingFaceAdapter(model="m", transport=httpx.MockTransport(lambda r: httpx.Response(500))), "generate_image", "x")

    monkeypatch.setenv("HUGGINGFACE_API_KEY", "hf-test")

    def handler(request):
        assert request.url.path.endswith("/models/stabilityai/sdxl")
        return httpx.Response(200, content=b"img", headers={"content-type": "image/jpeg"})

    res = _call(HuggingFaceAdapter(model="stabilityai/sdxl", transport=httpx.MockTransport(handler)), "generate_image", "x")
    assert res["image_url"] == "data:image/jpeg;base64," + base64.b64encode(b"img").decode("ascii")


def test_custom_requires_endpoint_and_named_key(monkeypatch):
    with pytest.raises(ConfigurationError):
        CustomAdapter(endpoint="")

    monkeypatch.delenv("FOO_KEY", raising=False)
    requests = []
    with pytest.raises(ConfigurationError):
        CustomAdapter(
            endpoint="https://llm.internal/v1",
            api_key_env="FOO_KEY",
            transport=_recording(lambda r: httpx.Response(200), requests),
        )
    assert requests == []


def test_custom_accepts_plain_response_shape(monkeypatch):
    monkeypatch.setenv("FOO_KEY", "secret")
    requests = []

    def handler(request):
        return httpx.Response(200, json={"response": "plain text", "tokens": 9})

    adapter = CustomAdapter(
        endpoint="https://llm.internal/v1/",
        api_key_env="FOO_KEY",
        headers={"X-Team": "red"},
        transport=_recording(handler, requests),
    )
    res = _call(adapter, "generate_text", "hi")
    assert res["content"] == "plain text"
    assert res["tokens"] == 9
    assert requests[0].headers["authorization"] == "Bearer secret"
    assert requests[0].headers["x-team"] == "red"


def test_custom_async_image_polls_until_done():
    sleeps = []
    polls = iter(
        [
            {"task_status": "PENDING"},
            {"task_status": "RUNNING"},
            {"task_status": "SUCCEED", "output_images": ["https://img/done.png"]},
        ]
    )

    def handler(request):
        if request.method == "POST":
            assert request.headers["x-modelscope-async-mode"] == "true"
            assert json.loads(request.content)["width"] == 512
            return httpx.Response(200, json={"task_id": "t-1"})
        assert request.url.path.endswith("/tasks/t-1")
        assert request.headers["x-modelscope-task-type"] == "image_generation"
        return httpx.Response(200, json=next(polls))

    adapter = CustomAdapter(
        endpoint="https://api-inference.example/v1",
        image_mode="async",
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep(sleeps),
    )
    res = _call(adapter, "generate_image", "a cat", {"size": "512x512"})
    assert res["image_url"] == "https://img/done.png"
    assert res["metadata"]["taskId"] == "t-1"
    assert sleeps == [1.0, 1.0, 1.0]


def test_custom_async_image_timeout_carries_task_id():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"task_id": "t-slow"})
        return httpx.Response(200, json={"task_status": "RUNNING"})

    adapter = CustomAdapter(
        endpoint="https://api-inference.example/v1",
        image_mode="async",
        transport=httpx.MockTransport(handler),
        poll_max_attempts=3,
        sleep=_no_sleep([]),
    )
    with pytest.raises(PollTimeoutError) as excinfo:
        _call(adapter, "generate_image", "a cat")
    assert excinfo.value.task_id == "t-slow"
    assert excinfo.value.attempts == 3


@pytest.mark.parametrize("size", ["large", "512xabc", "x512"])
def test_malformed_image_size_is_rejected_before_http(monkeypatch, size):
    monkeypatch.setenv("HUGGINGFACE_API_KEY", "hf-test")
    requests = []
    transport = _recording(lambda r: httpx.Response(500), requests)

    custom = CustomAdapter(endpoint="https://api-inference.example/v1", image_mode="async", transport=transport)
    with pytest.raises(ValidationError):
        _call(custom, "generate_image", "a cat", {"size": size})

    hf = HuggingFaceAdapter(model="stabilityai/sdxl", transport=transport)
    with pytest.raises(ValidationError):
        _call(hf, "generate_image", "a cat", {"size": size})
    assert requests == []
