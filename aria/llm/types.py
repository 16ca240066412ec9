from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from aria.llm.plan_schema import ToolCall


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(slots=True)
class ChatMessage:
    """One prior message of conversation history supplied by the caller."""

    role: Role
    text: str
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: int | None = None
    provider: str | None = None

    def to_llm(self) -> "LLMMessage":
        return LLMMessage(role=self.role.value, content=self.text)


@dataclass(slots=True)
class LLMMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class LLMRequest:
    messages: list[LLMMessage]
    system: str | None = None
    model: str | None = None
    max_tokens: int = 2000
    temperature: float = 0.9
    tools: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class LLMResponse:
    text: str
    model: str
    latency_ms: int
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    provider: str | None = None


class LLMClient:
    """Language-model provider boundary.

    Implementations raise the typed ``aria.errors.LLMError`` subclasses so
    callers can tell credentials, network, rate-limit, timeout and model
    availability failures apart.
    """

    name: str

    async def complete(self, request: LLMRequest) -> LLMResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


__all__ = [
    "Role",
    "ChatMessage",
    "LLMMessage",
    "LLMRequest",
    "LLMResponse",
    "LLMClient",
    "ToolCall",
]
