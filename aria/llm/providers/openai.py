from __future__ import annotations

import json
import time
from typing import Any

import httpx

from aria.errors import (
    LLMCredentialsMissing,
    LLMInvalidResponse,
    LLMModelUnavailable,
    LLMNetworkUnavailable,
    LLMRateLimited,
    LLMTimeout,
)
from aria.llm.plan_schema import DynamicValue, ToolCall
from aria.llm.types import LLMClient, LLMRequest, LLMResponse
from aria.telemetry.logging import get_logger


def _parse_tool_arguments(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(decoded, dict):
        return {}
    return {str(key): DynamicValue.from_json(value).stringify() for key, value in decoded.items()}


def retry_after_seconds(resp: httpx.Response) -> float | None:
    value = resp.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class OpenAIProvider(LLMClient):
    """Chat Completions client for OpenAI and API-compatible servers."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_s, transport=transport)
        self._logger = get_logger(__name__)
        self.name = "openai"

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, request: LLMRequest) -> LLMResponse:
        if not self._api_key:
            raise LLMCredentialsMissing("OPENAI_API_KEY is not configured")

        model = request.model or self._model
        payload = self._build_body(request, model)
        started = time.perf_counter()
        try:
            resp = await self._client.post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TimeoutException as exc:
            raise LLMTimeout(f"{self.name} request timed out") from exc
        except httpx.TransportError as exc:
            raise LLMNetworkUnavailable(str(exc) or exc.__class__.__name__) from exc

        latency_ms = int((time.perf_counter() - started) * 1000)
        self._raise_for_status(resp, model)
        try:
            data = resp.json()
            message = data["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMInvalidResponse("cannot parse chat completion payload") from exc
        if not isinstance(message, dict):
            raise LLMInvalidResponse("chat completion carried no message object")

        usage = data.get("usage") or {}
        tool_calls = [
            ToolCall(
                id=call.get("id"),
                name=call["function"]["name"],
                arguments=_parse_tool_arguments(call["function"].get("arguments")),
            )
            for call in message.get("tool_calls") or []
            if isinstance(call, dict) and isinstance(call.get("function"), dict) and call["function"].get("name")
        ]
        self._logger.info(
            "llm.openai.completed",
            model=data.get("model", model),
            latency_ms=latency_ms,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            tool_calls=len(tool_calls),
        )
        return LLMResponse(
            text=message.get("content") or "",
            model=data.get("model", model),
            latency_ms=latency_ms,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            tool_calls=tool_calls,
            provider=self.name,
        )

    def _build_body(self, request: LLMRequest, model: str) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(message.to_dict() for message in request.messages)
        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_completion_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.tools:
            body["tools"] = request.tools
        return body

    def _raise_for_status(self, resp: httpx.Response, model: str) -> None:
        if resp.status_code == 200:
            return
        if resp.status_code == 429:
            raise LLMRateLimited(retry_after_s=retry_after_seconds(resp))
        if resp.status_code in (401, 403):
            raise LLMCredentialsMissing(f"{self.name} rejected the API key (HTTP {resp.status_code})")
        if resp.status_code == 404:
            raise LLMModelUnavailable(model)
        if resp.status_code in (502, 503, 504):
            raise LLMNetworkUnavailable(f"{self.name} upstream unavailable (HTTP {resp.status_code})")
        raise LLMInvalidResponse(f"HTTP {resp.status_code}: {resp.text[:200]}")

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["OpenAIProvider", "retry_after_seconds"]
