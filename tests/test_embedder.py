import asyncio
import json

import httpx
import pytest

from services.embed_cluster.embedder import EmbeddingClient


def _openai_handler(calls: list, fail_with: list | None = None):
    """Echo embeddings of [len(text), index]; pops statuses from fail_with first"""
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        calls.append(payload)
        if fail_with:
            return httpx.Response(fail_with.pop(0), json={"error": "nope"})
        data = [
            {"index": i, "embedding": [float(len(text)), float(i)]}
            for i, text in enumerate(payload["input"])
        ]
        return httpx.Response(200, json={"data": list(reversed(data))})
    return handler


def _client(handler, **kwargs) -> EmbeddingClient:
    kwargs.setdefault("api_key", "test-key")
    kwargs.setdefault("retry_backoff", 0)
    return EmbeddingClient(provider="openai", transport=httpx.MockTransport(handler), **kwargs)


def test_openai_requests_are_batched_and_ordered() -> None:
    calls: list = []
    client = _client(_openai_handler(calls), batch_size=2)

    results = asyncio.run(client.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"]))

    assert [len(c["input"]) for c in calls] == [2, 2, 1]
    assert calls[0]["model"] == client.model
    assert [r.vector[0] for r in results] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert all(r.ok for r in results)


def test_retries_rate_limited_requests() -> None:
    calls: list = []
    client = _client(_openai_handler(calls, fail_with=[429, 503]), max_retries=3)

    results = asyncio.run(client.embed_batch(["one", "two"]))

    assert len(calls) == 3
    assert all(r.ok for r in results)


def test_failed_request_marks_every_item() -> None:
    calls: list = []
    client = _client(_openai_handler(calls, fail_with=[400]), batch_size=2)

    results = asyncio.run(client.embed_batch(["a", "b", "c"]))

    assert [r.ok for r in results] == [False, False, True]
    assert results[0].error
    assert len(calls) == 2


def test_retries_exhausted_returns_errors() -> None:
    calls: list = []
    client = _client(_openai_handler(calls, fail_with=[500, 500, 500]), max_retries=2)

    results = asyncio.run(client.embed_batch(["x"]))

    assert len(calls) == 3
    assert results[0].vector is None
    assert results[0].error


def test_missing_api_key_fails_without_request() -> None:
    calls: list = []
    client = _client(_openai_handler(calls), api_key="")

    results = asyncio.run(client.embed_batch(["a", "b"]))

    assert calls == []
    assert [r.error for r in results] == ["Missing OpenAI API key"] * 2


def test_malformed_response_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    results = asyncio.run(_client(handler).embed_batch(["a"]))

    assert results[0].error == "Unexpected API response format"


def test_long_text_is_truncated() -> None:
    calls: list = []
    client = _client(_openai_handler(calls), max_length=10)

    asyncio.run(client.embed_batch(["x" * 50]))

    assert calls[0]["input"] == ["x" * 10]


def test_ollama_embeds_one_prompt_per_request() -> None:
    prompts = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embeddings"
        payload = json.loads(request.content)
        prompts.append(payload["prompt"])
        return httpx.Response(200, json={"embedding": [1.0, 2.0, 3.0]})

    client = EmbeddingClient(
        provider="ollama",
        ollama_url="http://ollama:11434/",
        batch_size=5,
        transport=httpx.MockTransport(handler),
    )
    results = asyncio.run(client.embed_batch(["first", "second"]))

    assert prompts == ["first", "second"]
    assert all(r.vector == [1.0, 2.0, 3.0] for r in results)


def test_empty_input_makes_no_request() -> None:
    calls: list = []
    assert asyncio.run(_client(_openai_handler(calls)).embed_batch([])) == []
    assert calls == []


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(ValueError):
        EmbeddingClient(provider="bogus")


def test_transport_errors_are_retried() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5, 0.5]}]})

    results = asyncio.run(_client(handler, max_retries=2).embed_batch(["a"]))

    assert len(attempts) == 3
    assert results[0].vector == [0.5, 0.5]


def test_client_errors_are_not_retried() -> None:
    calls: list = []
    client = _client(_openai_handler(calls, fail_with=[401, 401]), max_retries=3)

    results = asyncio.run(client.embed_batch(["a"]))

    assert len(calls) == 1
    assert results[0].error
