from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from aria.errors import DuplicateMemory, MemoryNotFound
from aria.llm.types import LLMClient, LLMRequest, LLMResponse
from aria.memory.models import MemoryRow, MemoryType, ProfileFact
from aria.tools.base import ToolResult


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubLLM(LLMClient):
    """Returns canned responses in order and records every request."""

    def __init__(self, *responses: str | LLMResponse | Exception) -> None:
        self.name = "stub"
        self._responses = list(responses)
        self.requests: list[LLMRequest] = []

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse(text=item, model="stub-model", latency_ms=5, prompt_tokens=11, completion_tokens=7, provider="stub")


@dataclass
class StubTool:
    name: str
    description: str = "stub tool"
    parameter_description: str = ""
    result: ToolResult | None = None
    calls: list[dict[str, str]] = field(default_factory=list)

    async def execute(self, args: dict[str, str]) -> ToolResult:
        self.calls.append(dict(args))
        if self.result is not None:
            return self.result
        return ToolResult.ok(self.name, spoken_text=f"{self.name} done.")


@dataclass
class ExplodingTool:
    """Tool that ignores the ToolResult contract and raises."""

    name: str = "boom"
    description: str = "always raises"
    parameter_description: str = ""

    async def execute(self, args: dict[str, str]) -> ToolResult:
        raise RuntimeError("kaboom")


class FakeMemoryStore:
    """In-process MemoryService with the same duplicate and upsert rules as the SQL store."""

    def __init__(self) -> None:
        self.rows: list[MemoryRow] = []
        self.facts: dict[str, ProfileFact] = {}
        self.closed = False

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        self.closed = True

    async def add_memory(self, type: MemoryType, content: str, source: str = "conversation") -> MemoryRow:
        memory_type = MemoryType(type)
        if any(row.type is memory_type and row.content.lower() == content.strip().lower() for row in self.rows):
            raise DuplicateMemory("duplicate")
        now = datetime.now(timezone.utc)
        row = MemoryRow(
            id=str(uuid4()),
            type=memory_type,
            content=content.strip(),
            source=source,
            created_at=now,
            updated_at=now,
            expires_at=None,
        )
        self.rows.append(row)
        return row

    async def list_memories(self, filter_type: MemoryType | None = None) -> list[MemoryRow]:
        return [row for row in self.rows if filter_type is None or row.type is MemoryType(filter_type)]

    async def search_memories(self, query: str, limit: int = 12) -> list[MemoryRow]:
        needle = query.strip().lower()
        return [row for row in self.rows if needle and needle in row.content.lower()][:limit]

    async def delete_memory(self, memory_id: str) -> MemoryRow:
        for row in self.rows:
            if row.id.startswith(memory_id):
                self.rows.remove(row)
                return row
        raise MemoryNotFound(memory_id)

    async def clear_memories(self) -> int:
        count = len(self.rows)
        self.rows.clear()
        return count

    async def prune_expired(self) -> int:
        return 0

    async def upsert_profile_fact(self, attribute: str, value: str, confidence: float = 1.0) -> ProfileFact:
        now = datetime.now(timezone.utc)
        fact = ProfileFact(attribute=attribute.lower(), value=value, confidence=confidence, updated_at=now)
        self.facts[fact.attribute] = fact
        return fact

    async def core_identity_facts(self, max_items: int = 8) -> list[ProfileFact]:
        return sorted(self.facts.values(), key=lambda fact: fact.confidence, reverse=True)[:max_items]


class FailingMemoryStore(FakeMemoryStore):
    def __init__(self, error: Callable[[], Exception]) -> None:
        super().__init__()
        self._error = error

    async def search_memories(self, query: str, limit: int = 12) -> list[MemoryRow]:
        raise self._error()

    async def core_identity_facts(self, max_items: int = 8) -> list[ProfileFact]:
        raise self._error()
