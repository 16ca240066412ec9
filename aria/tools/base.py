from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from aria.errors import ToolErrorKind, ToolPermissionDenied
from aria.telemetry.logging import get_logger


class OutputKind(str, Enum):
    MARKDOWN = "markdown"
    IMAGE = "image"
    CARD = "card"


@dataclass(slots=True, frozen=True)
class OutputItem:
    """Structured tool output destined for the canvas."""

    kind: OutputKind
    payload: str
    id: str = field(default_factory=lambda: str(uuid4()))
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "ts": self.ts.isoformat(), "kind": self.kind.value, "payload": self.payload}


@dataclass(slots=True, frozen=True)
class ToolResult:
    tool_name: str
    success: bool
    spoken_text: str | None = None
    output: OutputItem | None = None
    error: str | None = None
    error_kind: ToolErrorKind | None = None

    @classmethod
    def ok(cls, tool_name: str, spoken_text: str | None = None, output: OutputItem | None = None) -> "ToolResult":
        return cls(tool_name=tool_name, success=True, spoken_text=spoken_text, output=output)

    @classmethod
    def failure(
        cls,
        tool_name: str,
        error: str,
        kind: ToolErrorKind = ToolErrorKind.EXECUTION_FAILED,
        spoken_text: str | None = None,
    ) -> "ToolResult":
        return cls(tool_name=tool_name, success=False, spoken_text=spoken_text, error=error, error_kind=kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool_name,
            "success": self.success,
            "spoken_text": self.spoken_text,
            "output": self.output.to_dict() if self.output else None,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }


@runtime_checkable
class Tool(Protocol):
    name: str
    description: str
    parameter_description: str

    async def execute(self, args: dict[str, str]) -> ToolResult: ...


@dataclass(slots=True)
class ToolContext:
    memory: Any | None = None
    scheduler: Any | None = None
    settings: Any | None = None
    http: Any | None = None
    extras: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult] | ToolResult]


def describe_validation_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "args"
    if first.get("type") == "missing":
        return f"Missing required argument '{location}'"
    return f"Invalid argument '{location}': {first.get('msg', 'invalid value')}"


@dataclass(slots=True)
class ToolSpec:
    """Standard tool: pydantic-validated arguments, a handler and a timeout.

    ``execute`` never raises. Validation errors, permission errors, timeouts
    and handler exceptions all come back as failed ``ToolResult`` values.
    """

    name: str
    description: str
    request_model: type[BaseModel]
    handler: ToolHandler
    parameter_description: str = ""
    timeout_s: float = 8.0
    context: ToolContext = field(default_factory=ToolContext)

    async def execute(self, args: dict[str, str]) -> ToolResult:
        logger = get_logger(__name__)
        # null arguments arrive stringified as "" and count as absent
        present = {key: value for key, value in args.items() if value != ""}
        try:
            parsed = self.request_model.model_validate(present)
        except ValidationError as exc:
            logger.info("tool.args.invalid", tool=self.name, errors=exc.error_count())
            return ToolResult.failure(self.name, describe_validation_error(exc), ToolErrorKind.INVALID_ARGUMENTS)

        async def _invoke() -> ToolResult:
            result = self.handler(parsed, self.context)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        try:
            result = await asyncio.wait_for(_invoke(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("tool.timeout", tool=self.name, timeout_s=self.timeout_s)
            return ToolResult.failure(self.name, f"Tool '{self.name}' timed out after {self.timeout_s}s")
        except ToolPermissionDenied as exc:
            return ToolResult.failure(self.name, str(exc) or "permission denied", ToolErrorKind.PERMISSION_DENIED)
        except Exception as exc:
            logger.exception("tool.failed", tool=self.name)
            return ToolResult.failure(self.name, f"{exc.__class__.__name__}: {exc}")

        if not isinstance(result, ToolResult):
            return ToolResult.failure(self.name, f"Tool '{self.name}' returned {type(result).__name__}")
        return result


class EmptyArgs(BaseModel):
    """Placeholder for tools that do not accept input."""


__all__ = [
    "OutputKind",
    "OutputItem",
    "ToolResult",
    "Tool",
    "ToolContext",
    "ToolHandler",
    "ToolSpec",
    "EmptyArgs",
    "describe_validation_error",
]
