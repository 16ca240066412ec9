from __future__ import annotations

import pytest

from aria.tools.base import ToolContext
from aria.tools.registry import MANIFEST_HEADER, ToolRegistry, load_default_aliases, register_defaults, structural_name
from conftest import StubTool


def _registry(*names: str) -> ToolRegistry:
    registry = ToolRegistry()
    for name in names:
        registry.register(StubTool(name=name, description=f"{name} description"))
    return registry


def test_alias_lookup_is_case_insensitive() -> None:
    registry = _registry("get_weather")
    registry.register_aliases({"Weather": "get_weather"})
    assert registry.normalize_tool_name("weather") == "get_weather"
    assert registry.normalize_tool_name("WEATHER") == "get_weather"


@pytest.mark.parametrize("name", ["get_weather", "save_memory", "list_tasks"])
def test_canonical_names_normalise_to_themselves(name: str) -> None:
    registry = _registry("get_weather", "save_memory", "list_tasks")
    assert registry.normalize_tool_name(name) == name
    assert registry.normalize_tool_name(registry.normalize_tool_name(name)) == name


@pytest.mark.parametrize("raw", ["getWeather", "Get Weather", "get-weather", "GET_WEATHER", "  get_weather  "])
def test_structural_normalisation(raw: str) -> None:
    assert _registry("get_weather").normalize_tool_name(raw) == "get_weather"


def test_unknown_or_blank_names_resolve_to_none() -> None:
    registry = _registry("get_weather")
    assert registry.normalize_tool_name("teleport") is None
    assert registry.normalize_tool_name("") is None
    assert registry.normalize_tool_name(None) is None


def test_structural_name_helper() -> None:
    assert structural_name("showAssetImage") == "show_asset_image"
    assert structural_name("HTTPRequest tool") == "http_request_tool"


def test_later_registration_wins() -> None:
    registry = ToolRegistry()
    first = StubTool(name="get_time", description="first")
    second = StubTool(name="get_time", description="second")
    registry.register(first)
    registry.register(second)
    assert registry.get("get_time") is second
    assert registry.available() == ["get_time"]


def test_collision_between_alias_and_name_goes_to_last_registration() -> None:
    registry = _registry("timer", "timer.manage")
    registry.register_aliases({"timer": "timer.manage"})
    assert registry.normalize_tool_name("timer") == "timer.manage"
    registry.register(StubTool(name="timer"))
    assert registry.normalize_tool_name("timer") == "timer"


def test_manifest_is_deterministic_and_headed() -> None:
    registry = _registry("show_text", "get_time")
    manifest = registry.build_tool_manifest()
    lines = manifest.splitlines()
    assert lines[0] == MANIFEST_HEADER
    assert lines[1].startswith("- get_time: ")
    assert lines[2].startswith("- show_text: ")
    assert manifest == _registry("get_time", "show_text").build_tool_manifest()


def test_default_tools_and_aliases() -> None:
    registry = ToolRegistry()
    register_defaults(registry, ToolContext())
    assert {"get_time", "get_weather", "news.fetch", "save_memory", "schedule_task", "show_text"} <= set(
        registry.available()
    )
    assert registry.normalize_tool_name("weather") == "get_weather"
    assert registry.normalize_tool_name("remember") == "save_memory"
    aliases = load_default_aliases()
    assert all(registry.get(canonical) is not None for canonical in aliases.values())


def test_function_definitions_use_string_parameters() -> None:
    registry = ToolRegistry()
    register_defaults(registry, ToolContext())
    definitions = {item["function"]["name"]: item["function"] for item in registry.function_definitions()}
    params = definitions["delete_memory"]["parameters"]
    assert params["properties"]["id"]["type"] == "string"
    assert params["required"] == ["id"]
