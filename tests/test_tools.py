from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from pydantic import BaseModel

from aria.config import ToolSettings
from aria.errors import ToolErrorKind, ToolPermissionDenied
from aria.llm.plan_schema import Plan
from aria.memory.models import MemoryType
from aria.orchestrator.executor import PlanExecutor
from aria.tools.base import OutputKind, ToolContext, ToolResult, ToolSpec
from aria.tools.core import core_tools
from aria.tools.info import info_tools
from aria.tools.memory_tools import memory_tools
from aria.tools.registry import ToolRegistry
from aria.tools.scheduler import TaskScheduler, format_duration, scheduler_tools
from conftest import FakeMemoryStore


class EchoArgs(BaseModel):
    text: str


def _spec(handler, timeout_s: float = 1.0) -> ToolSpec:
    return ToolSpec(name="echo", description="echo", request_model=EchoArgs, handler=handler, timeout_s=timeout_s)


def _by_name(specs: list[ToolSpec]) -> dict[str, ToolSpec]:
    return {spec.name: spec for spec in specs}


@pytest.mark.anyio("asyncio")
async def test_missing_argument_is_reported_not_raised() -> None:
    result = await _spec(lambda args, ctx: ToolResult.ok("echo", args.text)).execute({})
    assert result.success is False
    assert result.error_kind is ToolErrorKind.INVALID_ARGUMENTS
    assert result.error == "Missing required argument 'text'"


@pytest.mark.anyio("asyncio")
async def test_handler_exception_becomes_failed_result() -> None:
    def boom(args, ctx):
        raise RuntimeError("disk on fire")

    result = await _spec(boom).execute({"text": "hi"})
    assert result.success is False
    assert result.error_kind is ToolErrorKind.EXECUTION_FAILED
    assert "disk on fire" in (result.error or "")


@pytest.mark.anyio("asyncio")
async def test_permission_and_timeout_failures() -> None:
    def denied(args, ctx):
        raise ToolPermissionDenied("no calendar access")

    async def slow(args, ctx):
        await asyncio.sleep(1)
        return ToolResult.ok("echo")

    denied_result = await _spec(denied).execute({"text": "x"})
    assert denied_result.error_kind is ToolErrorKind.PERMISSION_DENIED

    slow_result = await _spec(slow, timeout_s=0.01).execute({"text": "x"})
    assert slow_result.success is False
    assert "timed out" in (slow_result.error or "")


@pytest.mark.anyio("asyncio")
async def test_get_time_for_place_uses_clock() -> None:
    ctx = ToolContext(extras={"now": lambda: datetime(2024, 1, 1, 0, 30, tzinfo=timezone.utc)})
    tools = _by_name(info_tools(ctx))
    result = await tools["get_time"].execute({"place": "Tokyo"})
    assert result.success
    assert result.spoken_text == "It's 9:30 AM in Tokyo."

    unknown = await tools["get_time"].execute({"place": "Atlantis"})
    assert unknown.error_kind is ToolErrorKind.INVALID_ARGUMENTS


@pytest.mark.anyio("asyncio")
async def test_get_weather_with_mock_transport() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "geocoding" in request.url.host:
            assert request.url.params["name"] == "Oslo"
            return httpx.Response(200, json={"results": [{"name": "Oslo", "latitude": 59.9, "longitude": 10.7}]})
        return httpx.Response(
            200,
            json={
                "current": {
                    "temperature_2m": 3.4,
                    "relative_humidity_2m": 80,
                    "precipitation": 0.1,
                    "wind_speed_10m": 12.0,
                    "weather_code": 3,
                },
                "daily": {},
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        tools = _by_name(info_tools(ToolContext(http=client)))
        result = await tools["get_weather"].execute({"city": "Oslo"})
        missing = await tools["get_weather"].execute({})

    assert result.success
    assert result.spoken_text == "It's currently 3 degrees and overcast in Oslo."
    assert result.output is not None and result.output.kind is OutputKind.MARKDOWN
    assert missing.error_kind is ToolErrorKind.INVALID_ARGUMENTS


@pytest.mark.anyio("asyncio")
async def test_weather_http_error_is_a_failure() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        tools = _by_name(info_tools(ToolContext(http=client)))
        result = await tools["get_weather"].execute({"place": "Oslo"})
    assert result.success is False
    assert result.error_kind is ToolErrorKind.EXECUTION_FAILED


@pytest.mark.anyio("asyncio")
async def test_news_requires_api_key_and_reads_headlines() -> None:
    no_key = _by_name(info_tools(ToolContext(settings=ToolSettings())))
    denied = await no_key["news.fetch"].execute({})
    assert denied.error_kind is ToolErrorKind.PERMISSION_DENIED

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-Api-Key"] == "secret"
        assert request.url.path.endswith("/top-headlines")
        return httpx.Response(200, json={"articles": [{"title": "Rain expected", "source": {"name": "Wire"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ctx = ToolContext(settings=ToolSettings(news_api_key="secret"), http=client)
        result = await _by_name(info_tools(ctx))["news.fetch"].execute({"topic": "weather"})
    assert result.spoken_text == "Here's the top headline: Rain expected."


@pytest.mark.anyio("asyncio")
async def test_core_display_tools() -> None:
    tools = _by_name(core_tools(ToolContext()))
    shown = await tools["show_text"].execute({"text": "# Hello"})
    assert shown.output is not None and shown.output.payload == "# Hello"

    bad_image = await tools["show_image"].execute({"url": "ftp://example.com/cat.png"})
    assert bad_image.error_kind is ToolErrorKind.INVALID_ARGUMENTS

    listed = await tools["list_assets"].execute({})
    assert listed.spoken_text == "I have 1 asset available."

    asset = await tools["show_asset_image"].execute({"name": "aria"})
    assert asset.output is not None and asset.output.kind is OutputKind.IMAGE


@pytest.mark.anyio("asyncio")
async def test_memory_tools_crud() -> None:
    store = FakeMemoryStore()
    tools = _by_name(memory_tools(ToolContext(memory=store)))

    saved = await tools["save_memory"].execute({"content": "Likes green tea", "type": "preference"})
    assert saved.success and saved.spoken_text.startswith("Saved preference: Likes green tea")
    again = await tools["save_memory"].execute({"content": "likes green tea", "type": "preference"})
    assert again.spoken_text == "I already remember that."

    listed = await tools["list_memories"].execute({})
    assert listed.spoken_text == "I have 1 memory."

    missing = await tools["delete_memory"].execute({"id": "ffffffff"})
    assert missing.error_kind is ToolErrorKind.INVALID_ARGUMENTS
    deleted = await tools["delete_memory"].execute({"id": store.rows[0].id[:8]})
    assert deleted.spoken_text == "Memory deleted."

    bad_type = await tools["save_memory"].execute({"content": "x", "type": "secret"})
    assert bad_type.error_kind is ToolErrorKind.INVALID_ARGUMENTS


@pytest.mark.anyio("asyncio")
async def test_null_optional_argument_counts_as_absent() -> None:
    store = FakeMemoryStore()
    await store.add_memory(MemoryType.NOTE, "Buy stamps")
    registry = ToolRegistry()
    for spec in memory_tools(ToolContext(memory=store)):
        registry.register(spec)
    plan = Plan.model_validate({"steps": [{"step": "tool", "name": "list_memories", "args": {"type": None}}]})

    result = await PlanExecutor(registry).execute(plan)

    assert result.failures == []
    assert result.say_text == "I have 1 memory."

    empty_required = await _spec(lambda args, ctx: ToolResult.ok("echo", args.text)).execute({"text": ""})
    assert empty_required.error == "Missing required argument 'text'"


@pytest.mark.anyio("asyncio")
async def test_scheduler_tools_set_list_cancel() -> None:
    scheduler = TaskScheduler()
    tools = _by_name(scheduler_tools(ToolContext(scheduler=scheduler)))
    try:
        created = await tools["schedule_task"].execute({"label": "Tea", "in_seconds": "300"})
        assert created.spoken_text == "Tea set for 5 minutes."

        listed = await tools["list_tasks"].execute({})
        assert listed.success and "Tea" in (listed.spoken_text or "")

        task_id = scheduler.active()[0].id
        cancelled = await tools["cancel_task"].execute({"id": task_id[:8]})
        assert cancelled.spoken_text == "Tea cancelled."
        assert scheduler.active() == []

        no_time = await tools["schedule_task"].execute({"label": "Nothing"})
        assert no_time.error_kind is ToolErrorKind.INVALID_ARGUMENTS

        await tools["timer.manage"].execute({"action": "set", "duration": "90"})
        stopped = await tools["timer.manage"].execute({"action": "cancel"})
        assert stopped.success
    finally:
        scheduler.shutdown()


def test_format_duration() -> None:
    assert format_duration(0) == "0 seconds"
    assert format_duration(61) == "1 minute 1 second"
    assert format_duration(3600) == "1 hour"
