from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from uuid import uuid4

from opentelemetry import trace

from aria.config import LLMSettings, PromptSettings
from aria.errors import AriaError, EmptyResponse, MemoryStoreError, apology_for
from aria.llm.plan_schema import Plan
from aria.llm.prompt_builder import PromptBlocks, PromptBuilder, history_digest, temporal_block
from aria.llm.response_parser import ResponseParser
from aria.llm.types import ChatMessage, LLMClient, LLMMessage, LLMRequest, Role
from aria.memory.autosave import MemoryAutoSave
from aria.memory.injector import MemoryInjector
from aria.orchestrator.events import TurnResult
from aria.orchestrator.executor import PlanExecutor
from aria.telemetry.logging import get_logger
from aria.tools.registry import ToolRegistry


class TurnOrchestrator:
    """Turns one utterance into one response.

    Stages run strictly in sequence: memory, prompt, model call, parse,
    execute. Turns for the same session are serialised on a per-session
    ``asyncio.Lock``; a second call queues behind the in-flight turn and runs
    after it in arrival order. Different sessions run concurrently.

    Language-model, parse and pipeline failures propagate as typed errors and
    are never retried here. Memory lookup failures degrade to an empty block
    and an empty model reply degrades to an apology.
    """

    def __init__(
        self,
        llm: LLMClient,
        registry: ToolRegistry,
        injector: MemoryInjector,
        *,
        executor: PlanExecutor | None = None,
        parser: ResponseParser | None = None,
        prompt_builder: PromptBuilder | None = None,
        autosave: MemoryAutoSave | None = None,
        llm_settings: LLMSettings | None = None,
        prompt_settings: PromptSettings | None = None,
        native_tools: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._llm = llm
        self._registry = registry
        self._injector = injector
        self._executor = executor or PlanExecutor(registry)
        self._parser = parser or ResponseParser()
        self._prompt_settings = prompt_settings or PromptSettings()
        self._prompt_builder = prompt_builder or PromptBuilder(self._prompt_settings)
        self._autosave = autosave
        self._llm_settings = llm_settings or LLMSettings()
        self._native_tools = native_tools
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._logger = get_logger(__name__)
        self._tracer = trace.get_tracer(__name__)

    def _acquire_slot(self, session_id: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = self._session_locks[session_id] = asyncio.Lock()
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        return lock

    def _release_slot(self, session_id: str) -> None:
        remaining = self._lock_users[session_id] - 1
        if remaining:
            self._lock_users[session_id] = remaining
            return
        # no holder and no waiters left
        del self._lock_users[session_id]
        del self._session_locks[session_id]

    def is_busy(self, session_id: str) -> bool:
        lock = self._session_locks.get(session_id)
        return lock is not None and lock.locked()

    def tracked_sessions(self) -> int:
        return len(self._session_locks)

    async def process_turn(
        self,
        text: str,
        history: Sequence[ChatMessage] = (),
        session_id: str = "default",
        *,
        state: str = "",
    ) -> TurnResult:
        lock = self._acquire_slot(session_id)
        try:
            async with lock:
                return await self._run(text, list(history), session_id, state)
        finally:
            self._release_slot(session_id)

    async def _run(self, text: str, history: list[ChatMessage], session_id: str, state: str) -> TurnResult:
        turn_id = str(uuid4())
        started = time.perf_counter()
        log = self._logger.bind(turn_id=turn_id, session_id=session_id)
        log.info("turn.start", chars=len(text), history=len(history))

        with self._tracer.start_as_current_span("turn") as span:
            span.set_attribute("turn.session_id", session_id)

            with self._tracer.start_as_current_span("turn.memory"):
                memory_block = await self._memory_block(text, log)

            with self._tracer.start_as_current_span("turn.prompt"):
                request = self._build_request(text, history, memory_block, state)

            with self._tracer.start_as_current_span("turn.llm") as llm_span:
                try:
                    response = await self._llm.complete(request)
                except AriaError as exc:
                    llm_span.record_exception(exc)
                    log.warning("turn.llm_failed", error_type=type(exc).__name__, error=str(exc))
                    raise
                llm_span.set_attribute("llm.model", response.model)

            with self._tracer.start_as_current_span("turn.parse"):
                if response.tool_calls:
                    plan = Plan.from_tool_calls(response.tool_calls, response.text)
                else:
                    try:
                        plan = self._parser.parse(response.text)
                    except EmptyResponse as exc:
                        log.warning("turn.empty_response", provider=response.provider, model=response.model)
                        return TurnResult(
                            turn_id=turn_id,
                            session_id=session_id,
                            say_text=apology_for(exc),
                            latency_ms=int((time.perf_counter() - started) * 1000),
                            llm_latency_ms=response.latency_ms,
                            provider=response.provider,
                            model=response.model,
                            prompt_tokens=response.prompt_tokens,
                            completion_tokens=response.completion_tokens,
                            used_memory=bool(memory_block),
                            fallback=True,
                        )

            with self._tracer.start_as_current_span("turn.execute"):
                execution = await self._executor.execute(plan)

        if self._autosave is not None:
            await self._autosave.process_user_message(text)

        result = TurnResult(
            turn_id=turn_id,
            session_id=session_id,
            say_text=execution.say_text,
            output_items=execution.output_items,
            tool_calls=execution.tool_calls,
            failures=execution.failures,
            awaiting_slot=execution.awaiting_slot,
            delegation=execution.delegation,
            latency_ms=int((time.perf_counter() - started) * 1000),
            llm_latency_ms=response.latency_ms,
            provider=response.provider,
            model=response.model,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            used_memory=bool(memory_block),
        )
        log.info(
            "turn.complete",
            latency_ms=result.latency_ms,
            provider=result.provider,
            steps=len(plan.steps),
            tool_calls=len(result.tool_calls),
            failures=len(result.failures),
        )
        return result

    async def _memory_block(self, text: str, log) -> str:
        try:
            return await self._injector.build_memory_block(text)
        except MemoryStoreError as exc:
            log.warning("turn.memory_unavailable", error=str(exc))
            return ""

    def _build_request(self, text: str, history: list[ChatMessage], memory_block: str, state: str) -> LLMRequest:
        window = self._prompt_settings.history_messages
        conversation = [message for message in history if message.role is not Role.SYSTEM]
        recent = conversation[-window:] if window else []
        earlier = conversation[: len(conversation) - len(recent)]
        blocks = PromptBlocks(
            memory=memory_block,
            history=history_digest(earlier, self._prompt_settings.history_digest_messages),
            state=state,
            temporal=temporal_block(self._clock()),
        )
        recent_replies = [message.text for message in recent if message.role is Role.ASSISTANT]
        system = self._prompt_builder.build(self._registry.build_tool_manifest(), blocks, recent_replies)
        messages = [message.to_llm() for message in recent]
        messages.append(LLMMessage(role=Role.USER.value, content=text))
        return LLMRequest(
            messages=messages,
            system=system,
            max_tokens=self._llm_settings.max_tokens,
            temperature=self._llm_settings.temperature,
            tools=self._registry.function_definitions() if self._native_tools else [],
        )


__all__ = ["TurnOrchestrator"]
