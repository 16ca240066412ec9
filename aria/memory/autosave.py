from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from aria.config import SettingsKey, SettingsStore
from aria.errors import DuplicateMemory, MemoryStoreError
from aria.memory.models import MemoryType
from aria.memory.store import MemoryService
from aria.telemetry.logging import get_logger

EXPLICIT_PREFIXES: tuple[tuple[str, MemoryType], ...] = (
    ("remember that ", MemoryType.FACT),
    ("remember i ", MemoryType.FACT),
    ("remember my ", MemoryType.FACT),
    ("don't forget ", MemoryType.FACT),
    ("note that ", MemoryType.NOTE),
    ("save a note ", MemoryType.NOTE),
)

FACT_MARKERS = (
    "my name is ", "i'm called ", "call me ",
    "i live in ", "i'm from ", "i moved to ",
    "my dog ", "my cat ", "my pet ",
    "i work at ", "my job is ",
    "my birthday is ", "i was born ",
)

PREFERENCE_MARKERS = (
    "i prefer ", "i like ", "i love ", "i hate ",
    "i don't like ", "i always ", "i never ",
    "my favorite ", "my favourite ",
)

PROFILE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("name", re.compile(r"\b(?:my name is|call me|i'm called)\s+([a-z][a-z'-]+)\b", re.I)),
    ("location", re.compile(r"\b(?:i live in|i moved to)\s+([a-z][a-z .'-]{0,60}?)(?:[.,!?]|$)", re.I)),
    ("workplace", re.compile(r"\bi work at\s+([a-z0-9][\w .&'-]{0,60}?)(?:[.,!?]|$)", re.I)),
    ("birthday", re.compile(r"\bmy birthday is\s+([\w ,/-]{1,40}?)(?:[.!?]|$)", re.I)),
)


@dataclass(slots=True, frozen=True)
class ExtractedMemory:
    type: MemoryType
    content: str
    source: str


def extract_memories(text: str) -> list[ExtractedMemory]:
    original = text.strip()
    lower = original.lower()
    found: list[ExtractedMemory] = []
    for prefix, memory_type in EXPLICIT_PREFIXES:
        if lower.startswith(prefix):
            content = original[len(prefix) :].strip()
            if content:
                found.append(ExtractedMemory(memory_type, content, "explicit"))
            break
    if any(marker in lower for marker in FACT_MARKERS):
        found.append(ExtractedMemory(MemoryType.FACT, original, "implicit"))
    if any(marker in lower for marker in PREFERENCE_MARKERS):
        found.append(ExtractedMemory(MemoryType.PREFERENCE, original, "implicit"))
    return found


def extract_profile_facts(text: str) -> dict[str, str]:
    facts: dict[str, str] = {}
    for attribute, pattern in PROFILE_PATTERNS:
        match = pattern.search(text.strip())
        if match:
            value = match.group(1).strip()
            if value:
                facts[attribute] = value.title() if attribute == "name" else value
    return facts


class MemoryAutoSave:
    """Post-turn hook that stores memories mentioned in user utterances.

    Saves are debounced and skipped while the settings store turns
    ``auto_save_memories`` off. Never raises; store failures are logged.
    """

    def __init__(
        self,
        store: MemoryService,
        debounce_s: float = 30.0,
        clock: Callable[[], datetime] | None = None,
        settings: SettingsStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._debounce = timedelta(seconds=debounce_s)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_saved: datetime | None = None
        self._logger = get_logger(__name__)

    async def process_user_message(self, text: str) -> int:
        if self._settings is not None and not self._settings.get_bool(SettingsKey.AUTO_SAVE_MEMORIES, True):
            return 0
        now = self._clock()
        if self._last_saved is not None and now - self._last_saved < self._debounce:
            return 0
        saved = 0
        for attribute, value in extract_profile_facts(text).items():
            try:
                await self._store.upsert_profile_fact(attribute, value, confidence=0.9)
                saved += 1
            except MemoryStoreError as exc:
                self._logger.warning("memory.autosave.profile_failed", attribute=attribute, error=str(exc))
        for memory in extract_memories(text):
            try:
                await self._store.add_memory(memory.type, memory.content, source=memory.source)
                saved += 1
            except DuplicateMemory:
                continue
            except MemoryStoreError as exc:
                self._logger.warning("memory.autosave.failed", type=memory.type.value, error=str(exc))
        if saved:
            self._last_saved = now
            self._logger.info("memory.autosave.saved", count=saved)
        return saved


__all__ = ["MemoryAutoSave", "ExtractedMemory", "extract_memories", "extract_profile_facts"]
