"""Tests for ModelClient."""

import json

import httpx
import pytest

from rose.errors import ModelResponseError, TransportError
from rose.llm import ModelClient, ModelConfig

MESSAGES = [{"role": "user", "content": "你好"}]


def completion(content: str | None) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(handler, sleeps: Sleeps | None = None, **config) -> ModelClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    cfg = ModelConfig(api_key="sk-test", base_url="https://llm.test", **config)
    return ModelClient(cfg, http_client=http, sleep=sleeps or Sleeps())


class TestModelClientRequest:
    """Tests for the request shape."""

    @pytest.mark.asyncio
    async def test_posts_chat_completion(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=completion("  嗨  "))

        client = make_client(handler, model="deepseek-chat")
        result = await client.complete(MESSAGES)

        assert result == "嗨"
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://llm.test/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body == {
            "model": "deepseek-chat",
            "messages": MESSAGES,
            "temperature": 0.85,
            "max_tokens": 300,
        }

    def test_defaults(self):
        config = ModelConfig()
        assert config.temperature == 0.85
        assert config.max_tokens == 300
        assert config.timeout == 30.0
        assert config.max_attempts == 3
        assert ModelClient(config).model == "deepseek-chat"


class TestModelClientRetry:
    """Tests for retry behaviour."""

    @pytest.mark.asyncio
    async def test_transport_fails_twice_then_succeeds(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=completion("ok"))

        sleeps = Sleeps()
        client = make_client(handler, sleeps)

        assert await client.complete(MESSAGES) == "ok"
        assert attempts == 3
        assert sleeps.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_always_failing_raises_after_three_attempts(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError(f"refused #{attempts}", request=request)

        client = make_client(handler)

        with pytest.raises(TransportError, match="refused #3"):
            await client.complete(MESSAGES)
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler)

        with pytest.raises(TransportError, match="timed out"):
            await client.complete(MESSAGES)

    @pytest.mark.asyncio
    async def test_http_error_status_is_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        client = make_client(handler)

        with pytest.raises(TransportError, match="503"):
            await client.complete(MESSAGES)

    @pytest.mark.asyncio
    async def test_empty_content_retried_then_raised(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(200, json=completion(""))

        client = make_client(handler)

        with pytest.raises(ModelResponseError, match="empty content"):
            await client.complete(MESSAGES)
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_empty_then_valid(self):
        bodies = [completion(None), {"choices": []}, completion("终于")]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=bodies.pop(0))

        client = make_client(handler)

        assert await client.complete(MESSAGES) == "终于"
        assert bodies == []

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        client = make_client(handler, max_attempts=1)

        with pytest.raises(ModelResponseError):
            await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    client = ModelClient(ModelConfig(), http_client=http)

    await client.aclose()

    assert not http.is_closed
    await http.aclose()
