"""Tests for the Ollama HTTP client."""

import json

import httpx
import pytest

from course_ai_proxy.errors import EngineUnavailableError, UpstreamRejectedError
from course_ai_proxy.local_engine.ollama import OllamaClient
from course_ai_proxy.local_engine.schemas import GenerationOptions

TAGS = {
    "models": [
        {"name": "llama3:latest", "size": 4661224676, "details": {"family": "llama"}},
        {"name": "phi3:mini", "size": 2176178913},
    ]
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class TestOllamaClient:
    async def test_list_models(self) -> None:
        async with _client(lambda r: httpx.Response(200, json=TAGS)) as client:
            engine = OllamaClient(client, "http://localhost:11434/")
            models = await engine.list_models()

        assert [m["name"] for m in models] == ["llama3:latest", "phi3:mini"]
        assert engine.base_url == "http://localhost:11434"

    async def test_probe(self) -> None:
        async with _client(lambda r: httpx.Response(200, json=TAGS)) as client:
            names, latency_ms = await OllamaClient(client, "http://ollama").probe()

        assert names == ["llama3:latest", "phi3:mini"]
        assert latency_ms >= 0

    async def test_offline(self) -> None:
        async with _client(_refused) as client:
            with pytest.raises(EngineUnavailableError) as exc_info:
                await OllamaClient(client, "http://localhost:11434").list_models()

        assert "unreachable" in str(exc_info.value)

    async def test_open_chat_stream_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b'{"done": true}\n')

        options = GenerationOptions(temperature=0.2, max_tokens=64)
        async with _client(handler) as client:
            handle = await OllamaClient(client, "http://ollama").open_chat_stream(
                "llama3", [{"role": "user", "content": "hi"}], options
            )
            body = b"".join([chunk async for chunk in handle])
            await handle.aclose()

        assert body == b'{"done": true}\n'
        sent = json.loads(seen[0].content)
        assert str(seen[0].url) == "http://ollama/api/chat"
        assert sent["model"] == "llama3"
        assert sent["stream"] is True
        assert sent["options"] == {
            "temperature": 0.2,
            "num_predict": 64,
            "top_p": 0.9,
            "top_k": 40,
            "repeat_penalty": 1.1,
        }

    async def test_unknown_model_rejected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": 'model "nope" not found'})

        async with _client(handler) as client:
            with pytest.raises(UpstreamRejectedError) as exc_info:
                await OllamaClient(client, "http://ollama").open_chat_stream(
                    "nope", [], GenerationOptions()
                )

        assert exc_info.value.status_code == 404
        assert "not found" in exc_info.value.body

    async def test_chat_non_streaming(self) -> None:
        answer = {
            "model": "llama3",
            "message": {"role": "assistant", "content": "Hello!"},
            "done": True,
            "total_duration": 12345,
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(200, json=answer)

        async with _client(handler) as client:
            data = await OllamaClient(client, "http://ollama").chat(
                "llama3", [{"role": "user", "content": "hi"}], GenerationOptions()
            )

        assert data == answer

    async def test_warmup_generates_one_token(self) -> None:
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"done": True})

        async with _client(handler) as client:
            await OllamaClient(client, "http://ollama").warmup("mistral")

        assert seen[0]["model"] == "mistral"
        assert seen[0]["options"] == {"num_predict": 1}

    async def test_invalid_json(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(UpstreamRejectedError):
                await OllamaClient(client, "http://ollama").list_models()


class TestGenerationOptions:
    def test_ollama_names(self) -> None:
        assert GenerationOptions(max_tokens=10).to_ollama()["num_predict"] == 10
