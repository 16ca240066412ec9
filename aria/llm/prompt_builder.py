from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from aria.config import PromptSettings, SettingsStore
from aria.llm.types import ChatMessage
from aria.persona import RESPONSE_RULES, identity_block


@dataclass(slots=True)
class PromptBlocks:
    memory: str = ""
    history: str = ""
    state: str = ""
    temporal: str = ""


def history_digest(history: Sequence[ChatMessage], limit: int) -> str:
    lines = [f"{message.role.value}: {message.text}" for message in list(history)[-limit:] if message.text]
    if not lines:
        return ""
    return "[CONVERSATION SO FAR]\n" + "\n".join(lines)


def temporal_block(now: datetime) -> str:
    return f"[CURRENT TIME]\n{now.strftime('%A %d %B %Y, %H:%M %Z').strip()}"


class PromptBuilder:
    """Assembles the system prompt within a character budget.

    Identity, response rules and the tool manifest are always kept. Optional
    blocks are first clipped to their own budgets, then dropped whole in
    strip order (history, temporal, state, memory) until the prompt fits.
    """

    def __init__(self, policies: PromptSettings | None = None, settings: SettingsStore | None = None) -> None:
        self._policies = policies or PromptSettings()
        self._settings = settings

    def build(self, tool_manifest: str, blocks: PromptBlocks, recent_replies: Sequence[str] = ()) -> str:
        fixed = [identity_block(self._settings), RESPONSE_RULES, tool_manifest]
        fixed_size = sum(len(part) for part in fixed)

        # (strip order, render order, text)
        optional = [
            (0, 3, blocks.history[: self._policies.history_budget]),
            (1, 2, blocks.temporal[: self._policies.temporal_budget]),
            (2, 1, blocks.state[: self._policies.state_budget]),
            (3, 0, blocks.memory[: self._policies.memory_budget]),
        ]
        included = [entry for entry in optional if entry[2]]
        total = fixed_size + sum(len(entry[2]) for entry in included)
        while total > self._policies.total_budget and included:
            dropped = min(included, key=lambda entry: entry[0])
            included.remove(dropped)
            total -= len(dropped[2])

        parts = [part for part in fixed if part]
        parts.extend(entry[2] for entry in sorted(included, key=lambda entry: entry[1]))
        if recent_replies:
            recent = "\n".join(f'- "{reply[:80]}"' for reply in list(recent_replies)[-5:])
            parts.append(f"[DO NOT REPEAT]\nYou recently said these; use different wording:\n{recent}")
        return "\n\n".join(parts)


__all__ = ["PromptBlocks", "PromptBuilder", "history_digest", "temporal_block"]
