from __future__ import annotations

from aria.memory.store import MemoryService

IDENTITY_HEADER = "[IDENTITY FACTS]"
MEMORIES_HEADER = "[RELEVANT MEMORIES]"


class MemoryInjector:
    """Builds the bounded memory block prepended to the model prompt.

    Identity facts are always included when any exist; relevant memories only
    when the query matches something. With neither, the block is empty.
    Store errors propagate to the caller.
    """

    def __init__(
        self,
        store: MemoryService,
        max_identity_facts: int = 8,
        max_query_memories: int = 12,
        max_query_memory_chars: int = 2000,
    ) -> None:
        self._store = store
        self._max_identity_facts = max_identity_facts
        self._max_query_memories = max_query_memories
        self._max_query_memory_chars = max_query_memory_chars

    async def build_memory_block(self, query: str) -> str:
        sections: list[str] = []

        facts = await self._store.core_identity_facts(self._max_identity_facts)
        if facts:
            lines = "\n".join(f"- {fact.attribute}: {fact.value}" for fact in facts[: self._max_identity_facts])
            sections.append(f"{IDENTITY_HEADER}\n{lines}")

        memories = await self._store.search_memories(query, self._max_query_memories) if query.strip() else []
        lines: list[str] = []
        used = 0
        for memory in memories:
            line = f"- [{memory.type.value}] {memory.content}"
            if used + len(line) + 1 > self._max_query_memory_chars:
                break
            lines.append(line)
            used += len(line) + 1
        if lines:
            sections.append(MEMORIES_HEADER + "\n" + "\n".join(lines))

        return "\n\n".join(sections)


__all__ = ["MemoryInjector", "IDENTITY_HEADER", "MEMORIES_HEADER"]
