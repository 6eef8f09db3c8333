"""Unit tests for polaris.backends.ollama.OllamaBackend."""

import json

import httpx
import pytest

from polaris.backends.ollama import OllamaBackend
from polaris.exceptions import BackendError, BackendUnavailableError
from polaris.types import BackendRequest
from polaris.utils.retry import RetryPolicy


def _chat(content='{"ok": true}', done_reason="stop") -> dict:
    return {
        "model": "qwen-test",
        "message": {"role": "assistant", "content": content},
        "done": True,
        "done_reason": done_reason,
        "prompt_eval_count": 7,
        "eval_count": 9,
    }


def _backend(test_settings, handler) -> OllamaBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ollama.test")
    return OllamaBackend(
        test_settings,
        base_url="http://ollama.test",
        client=client,
        retry_policy=RetryPolicy(max_retries=1, base_delay=0.0),
    )


@pytest.fixture
def request_():
    return BackendRequest(model="qwen-test", system_prompt="sys", user_prompt="usr", max_output_tokens=500)


class TestOllamaBackend:
    async def test_success(self, test_settings, request_):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_chat())

        response = await _backend(test_settings, handler).generate(request_)

        assert response.text == '{"ok": true}'
        assert (response.usage.input_units, response.usage.output_units) == (7, 9)
        assert response.stop_reason == "end_turn"
        body = json.loads(seen[0].content)
        assert seen[0].url.path == "/api/chat"
        assert body["stream"] is False
        assert body["format"] == "json"
        assert body["options"]["num_predict"] == 500
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    async def test_length_stop_reported_as_truncation(self, test_settings, request_):
        response = await _backend(
            test_settings, lambda r: httpx.Response(200, json=_chat(done_reason="length"))
        ).generate(request_)
        assert response.stop_reason == "max_tokens"

    async def test_missing_message_is_parse_error(self, test_settings, request_):
        with pytest.raises(BackendError) as exc_info:
            await _backend(test_settings, lambda r: httpx.Response(200, json={"done": True})).generate(request_)
        assert exc_info.value.error_type == "parse_error"

    async def test_server_error_retried_once(self, test_settings, request_):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(500, json={"error": "model loading"})
            return httpx.Response(200, json=_chat())

        response = await _backend(test_settings, handler).generate(request_)
        assert response.text == '{"ok": true}'
        assert len(calls) == 2

    async def test_string_error_body(self, test_settings, request_):
        with pytest.raises(BackendError) as exc_info:
            await _backend(
                test_settings, lambda r: httpx.Response(404, json={"error": "model 'x' not found"})
            ).generate(request_)
        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "model 'x' not found"

    async def test_unconfigured(self, test_settings, request_):
        backend = OllamaBackend(test_settings)
        assert backend.is_configured is False
        with pytest.raises(BackendUnavailableError):
            await backend.generate(request_)
