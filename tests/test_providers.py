from __future__ import annotations

import json

import httpx
import pytest

from aria.config import LLMSettings
from aria.errors import (
    LLMCredentialsMissing,
    LLMInvalidResponse,
    LLMModelUnavailable,
    LLMNetworkUnavailable,
    LLMRateLimited,
    LLMTimeout,
    NoProviderAvailable,
)
from aria.llm.providers.ollama import OllamaProvider
from aria.llm.providers.openai import OpenAIProvider
from aria.llm.router import ProviderRouter, build_router
from aria.llm.types import LLMMessage, LLMRequest
from conftest import StubLLM


def _request() -> LLMRequest:
    return LLMRequest(messages=[LLMMessage(role="user", content="hi")], system="be nice", max_tokens=50)


def _openai(handler) -> OpenAIProvider:
    return OpenAIProvider(api_key="sk-test", model="gpt-test", transport=httpx.MockTransport(handler))


@pytest.mark.anyio("asyncio")
async def test_openai_success_parses_text_usage_and_tool_calls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert body["messages"][0] == {"role": "system", "content": "be nice"}
        assert body["max_completion_tokens"] == 50
        return httpx.Response(
            200,
            json={
                "model": "gpt-test-0613",
                "choices": [
                    {
                        "message": {
                            "content": "Checking.",
                            "tool_calls": [
                                {"id": "c1", "function": {"name": "get_weather", "arguments": '{"place": "Rome", "days": 2}'}}
                            ],
                        }
                    }
                ],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3},
            },
        )

    provider = _openai(handler)
    response = await provider.complete(_request())
    await provider.aclose()
    assert response.text == "Checking."
    assert response.model == "gpt-test-0613"
    assert response.prompt_tokens == 12
    assert response.tool_calls[0].arguments == {"place": "Rome", "days": "2"}
    assert response.provider == "openai"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    ("status", "error"),
    [
        (401, LLMCredentialsMissing),
        (404, LLMModelUnavailable),
        (429, LLMRateLimited),
        (503, LLMNetworkUnavailable),
        (500, LLMInvalidResponse),
    ],
)
async def test_openai_status_mapping(status: int, error: type[Exception]) -> None:
    provider = _openai(lambda request: httpx.Response(status, headers={"retry-after": "7"}, text="nope"))
    with pytest.raises(error) as info:
        await provider.complete(_request())
    if status == 429:
        assert info.value.retry_after_s == 7.0
    await provider.aclose()


@pytest.mark.anyio("asyncio")
async def test_openai_transport_failures_are_typed() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    with pytest.raises(LLMTimeout):
        await _openai(timeout).complete(_request())
    with pytest.raises(LLMNetworkUnavailable):
        await _openai(offline).complete(_request())


@pytest.mark.anyio("asyncio")
async def test_openai_without_key_fails_before_network() -> None:
    calls = []
    provider = OpenAIProvider(api_key=None, transport=httpx.MockTransport(lambda request: calls.append(request)))
    with pytest.raises(LLMCredentialsMissing):
        await provider.complete(_request())
    assert calls == []


@pytest.mark.anyio("asyncio")
async def test_openai_malformed_payload_is_invalid_response() -> None:
    provider = _openai(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LLMInvalidResponse):
        await provider.complete(_request())

    null_message = _openai(lambda request: httpx.Response(200, json={"choices": [{"message": None}]}))
    with pytest.raises(LLMInvalidResponse):
        await null_message.complete(_request())


@pytest.mark.anyio("asyncio")
async def test_ollama_chat_and_missing_model() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["model"] == "missing":
            return httpx.Response(404, json={"error": "model not found"})
        return httpx.Response(
            200,
            json={"model": body["model"], "message": {"content": "Hi!"}, "prompt_eval_count": 9, "eval_count": 2},
        )

    provider = OllamaProvider("http://ollama.local", transport=httpx.MockTransport(handler))
    response = await provider.complete(_request())
    assert response.text == "Hi!"
    assert response.completion_tokens == 2

    missing = OllamaProvider("http://ollama.local", model="missing", transport=httpx.MockTransport(handler))
    with pytest.raises(LLMModelUnavailable):
        await missing.complete(_request())


@pytest.mark.anyio("asyncio")
async def test_ollama_status_mapping() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["model"] == "busy":
            return httpx.Response(429, headers={"retry-after": "7"}, json={"error": "slow down"})
        return httpx.Response(401, json={"error": "unauthorized"})

    busy = OllamaProvider("http://ollama.local", model="busy", transport=httpx.MockTransport(handler))
    with pytest.raises(LLMRateLimited) as info:
        await busy.complete(_request())
    assert info.value.retry_after_s == 7.0

    locked = OllamaProvider("http://ollama.local", model="locked", transport=httpx.MockTransport(handler))
    with pytest.raises(LLMCredentialsMissing):
        await locked.complete(_request())


@pytest.mark.anyio("asyncio")
async def test_router_dispatches_and_reports_missing_provider() -> None:
    router = ProviderRouter(providers={"stub": StubLLM("hello")})
    response = await router.complete(_request())
    assert response.text == "hello"
    assert router.current_provider() == "stub"

    with pytest.raises(NoProviderAvailable):
        await ProviderRouter().complete(_request())
    with pytest.raises(ValueError):
        router.set_default("gemini")


def test_build_router_registers_both_providers() -> None:
    router = build_router(LLMSettings(provider="ollama"))
    assert router.available() == ["ollama", "openai"]
    assert router.current_provider() == "ollama"
