from __future__ import annotations

import time

import httpx

from aria.errors import (
    LLMCredentialsMissing,
    LLMInvalidResponse,
    LLMModelUnavailable,
    LLMNetworkUnavailable,
    LLMRateLimited,
    LLMTimeout,
)
from aria.llm.providers.openai import retry_after_seconds
from aria.llm.types import LLMClient, LLMRequest, LLMResponse
from aria.telemetry.logging import get_logger


class OllamaProvider(LLMClient):
    def __init__(
        self,
        host: str,
        model: str = "llama3.2",
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._model = model
        self._client = httpx.AsyncClient(base_url=self._host, timeout=timeout_s, transport=transport)
        self._logger = get_logger(__name__)
        self.name = "ollama"

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, request: LLMRequest) -> LLMResponse:
        model = request.model or self._model
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(message.to_dict() for message in request.messages)
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": request.temperature, "num_predict": request.max_tokens},
        }
        self._logger.info("ollama.chat", model=model, messages=len(messages))
        started = time.perf_counter()
        try:
            resp = await self._client.post("/api/chat", json=payload)
        except httpx.TimeoutException as exc:
            raise LLMTimeout("ollama request timed out") from exc
        except httpx.TransportError as exc:
            raise LLMNetworkUnavailable(f"ollama unreachable at {self._host}") from exc
        if resp.status_code == 404:
            raise LLMModelUnavailable(model)
        if resp.status_code == 429:
            raise LLMRateLimited(retry_after_s=retry_after_seconds(resp))
        if resp.status_code in (401, 403):
            raise LLMCredentialsMissing(f"ollama rejected the request (HTTP {resp.status_code})")
        try:
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            raise LLMInvalidResponse(f"ollama returned HTTP {resp.status_code}") from exc
        if not isinstance(data, dict):
            raise LLMInvalidResponse("ollama returned a non-object payload")
        message = data.get("message")
        if not isinstance(message, dict):
            message = {}
        return LLMResponse(
            text=message.get("content") or "",
            model=data.get("model", model),
            latency_ms=int((time.perf_counter() - started) * 1000),
            prompt_tokens=data.get("prompt_eval_count"),
            completion_tokens=data.get("eval_count"),
            provider=self.name,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["OllamaProvider"]
