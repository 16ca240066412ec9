from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from aria.errors import ToolErrorKind
from aria.tools.base import OutputItem


@dataclass(slots=True, frozen=True)
class ToolFailure:
    step_index: int
    tool: str
    kind: ToolErrorKind
    error: str


@dataclass(slots=True, frozen=True)
class ToolInvocation:
    step_index: int
    requested: str
    tool: str
    args: dict[str, str]
    success: bool


@dataclass(slots=True, frozen=True)
class Delegation:
    task: str
    context: str


@dataclass(slots=True)
class ExecutionResult:
    say_text: str
    output_items: list[OutputItem] = field(default_factory=list)
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    failures: list[ToolFailure] = field(default_factory=list)
    awaiting_slot: str | None = None
    delegation: Delegation | None = None

    @property
    def side_effects(self) -> list[OutputItem]:
        return self.output_items


@dataclass(slots=True)
class TurnResult:
    turn_id: str
    session_id: str
    say_text: str
    output_items: list[OutputItem] = field(default_factory=list)
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    failures: list[ToolFailure] = field(default_factory=list)
    awaiting_slot: str | None = None
    delegation: Delegation | None = None
    latency_ms: int = 0
    llm_latency_ms: int | None = None
    provider: str | None = None
    model: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    used_memory: bool = False
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "session_id": self.session_id,
            "say_text": self.say_text,
            "output_items": [item.to_dict() for item in self.output_items],
            "tool_calls": [
                {"tool": call.tool, "requested": call.requested, "args": call.args, "success": call.success}
                for call in self.tool_calls
            ],
            "failures": [
                {"tool": failure.tool, "kind": failure.kind.value, "error": failure.error} for failure in self.failures
            ],
            "awaiting_slot": self.awaiting_slot,
            "delegation": (
                {"task": self.delegation.task, "context": self.delegation.context} if self.delegation else None
            ),
            "metadata": {
                "latency_ms": self.latency_ms,
                "llm_latency_ms": self.llm_latency_ms,
                "provider": self.provider,
                "model": self.model,
                "prompt_tokens": self.prompt_tokens,
                "completion_tokens": self.completion_tokens,
                "used_memory": self.used_memory,
                "fallback": self.fallback,
            },
        }


__all__ = [
    "ToolFailure",
    "ToolInvocation",
    "Delegation",
    "ExecutionResult",
    "TurnResult",
]
