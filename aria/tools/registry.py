from __future__ import annotations

import functools
import re
from collections.abc import Mapping
from pathlib import Path

import yaml

from aria.telemetry.logging import get_logger
from aria.tools.base import Tool, ToolContext
from aria.tools.core import core_tools
from aria.tools.info import info_tools
from aria.tools.memory_tools import memory_tools
from aria.tools.scheduler import scheduler_tools

MANIFEST_HEADER = "[AVAILABLE TOOLS]"
ALIASES_PATH = Path(__file__).with_name("aliases.yml")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SEPARATORS = re.compile(r"[\s\-]+")


def structural_name(raw: str) -> str:
    """camelCase to snake_case, spaces and hyphens to underscores, lowercase."""
    name = _CAMEL_BOUNDARY.sub("_", raw.strip())
    name = _SEPARATORS.sub("_", name)
    return re.sub(r"_+", "_", name).strip("_").lower()


class ToolRegistry:
    """Name to tool mapping with alias-aware lookup.

    Tool names and alias keys share one case-insensitive lookup index. When
    a tool name and an alias collide, whichever was registered last wins.
    Mutation is expected at startup only; lookups need no locking.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._index: dict[str, str] = {}
        self._aliases: dict[str, str] = {}
        self._logger = get_logger(__name__)

    def register(self, tool: Tool) -> None:
        replaced = tool.name in self._tools
        self._tools[tool.name] = tool
        self._index[tool.name.lower()] = tool.name
        self._logger.info("tool.registry.registered", tool=tool.name, replaced=replaced)

    def register_aliases(self, mapping: Mapping[str, str]) -> None:
        for alias, canonical in mapping.items():
            key = alias.strip().lower()
            if not key:
                continue
            self._aliases[key] = canonical
            self._index[key] = canonical
        self._logger.info("tool.registry.aliases", count=len(mapping))

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def available(self) -> list[str]:
        return sorted(self._tools)

    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def normalize_tool_name(self, raw: str | None) -> str | None:
        """Resolve a model-supplied tool name to a canonical one.

        Tries the case-insensitive index of names and aliases, then retries
        with the structural form of the name. Returns None when nothing
        resolves; the caller treats that as a missing tool.
        """
        if not raw or not raw.strip():
            return None
        key = raw.strip().lower()
        if key in self._index:
            return self._index[key]
        structural = structural_name(raw)
        if structural in self._index:
            return self._index[structural]
        return None

    def build_tool_manifest(self) -> str:
        lines = [MANIFEST_HEADER]
        for name in sorted(self._tools):
            tool = self._tools[name]
            line = f"- {name}: {tool.description}"
            if tool.parameter_description:
                line = f"{line} {tool.parameter_description}"
            lines.append(line)
        return "\n".join(lines)

    def function_definitions(self) -> list[dict]:
        """OpenAI-style function definitions with string-typed parameters."""
        definitions = []
        for name in sorted(self._tools):
            tool = self._tools[name]
            schema_source = getattr(tool, "request_model", None)
            properties: dict[str, dict[str, str]] = {}
            required: list[str] = []
            if schema_source is not None:
                for field_name, info in schema_source.model_fields.items():
                    properties[field_name] = {"type": "string", "description": info.description or ""}
                    if info.is_required():
                        required.append(field_name)
            definitions.append(
                {
                    "type": "function",
                    "function": {
                        "name": name,
                        "description": tool.description,
                        "parameters": {"type": "object", "properties": properties, "required": required},
                    },
                }
            )
        return definitions


@functools.lru_cache(maxsize=1)
def load_default_aliases() -> dict[str, str]:
    raw = yaml.safe_load(ALIASES_PATH.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("aliases.yml must define a mapping of canonical name to alias list")
    aliases: dict[str, str] = {}
    for canonical, keys in raw.items():
        for key in keys or []:
            aliases[str(key)] = str(canonical)
    return aliases


def register_defaults(registry: ToolRegistry, context: ToolContext, timeout_s: float = 8.0) -> None:
    for spec in (
        *core_tools(context),
        *info_tools(context, timeout_s=timeout_s),
        *memory_tools(context),
        *scheduler_tools(context),
    ):
        registry.register(spec)
    registry.register_aliases(load_default_aliases())


__all__ = [
    "ToolRegistry",
    "register_defaults",
    "MANIFEST_HEADER",
    "structural_name",
    "load_default_aliases",
]
