from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from aria.config import AppSettings, InMemorySettingsStore, load_settings
from aria.llm.prompt_builder import PromptBuilder
from aria.llm.router import ProviderRouter, build_router
from aria.memory.autosave import MemoryAutoSave
from aria.memory.injector import MemoryInjector
from aria.memory.store import MemoryStore, NullMemoryStore
from aria.orchestrator.session import VoiceSession
from aria.orchestrator.turn import TurnOrchestrator
from aria.orchestrator.voice_state import VoiceEvent
from aria.telemetry.logging import configure_logging, get_logger
from aria.telemetry.tracing import configure_tracing
from aria.tools.base import ToolContext
from aria.tools.registry import ToolRegistry, register_defaults
from aria.tools.scheduler import SCHEDULER, ScheduledTask, TaskScheduler
from aria.ui.websocket import WebSocketStateBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level)
configure_tracing("aria-voice-assistant", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

VOICE_SESSION_ID = "voice"


class Runtime:
    """Long-lived collaborators shared by every request."""

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        registry: ToolRegistry,
        memory: MemoryStore | NullMemoryStore,
        bridge: WebSocketStateBridge,
        *,
        router: ProviderRouter | None = None,
        scheduler: TaskScheduler | None = None,
        http: httpx.AsyncClient | None = None,
        follow_up_timeout_s: float = 8.0,
        max_chat_sessions: int = 256,
    ) -> None:
        self.orchestrator = orchestrator
        self.registry = registry
        self.memory = memory
        self.bridge = bridge
        self.router = router
        self.scheduler = scheduler
        self._http = http
        self._follow_up_timeout_s = follow_up_timeout_s
        self.voice = VoiceSession(
            orchestrator,
            bridge=bridge,
            session_id=VOICE_SESSION_ID,
            follow_up_timeout_s=follow_up_timeout_s,
        )
        self._chats: OrderedDict[str, VoiceSession] = OrderedDict()
        self._max_chat_sessions = max_chat_sessions

    def chat_session(self, session_id: str) -> VoiceSession:
        if session_id == VOICE_SESSION_ID:
            return self.voice
        session = self._chats.get(session_id)
        if session is not None:
            self._chats.move_to_end(session_id)
            return session
        session = self._chats[session_id] = VoiceSession(
            self.orchestrator, session_id=session_id, follow_up_timeout_s=self._follow_up_timeout_s
        )
        while len(self._chats) > self._max_chat_sessions:
            evicted, _ = self._chats.popitem(last=False)
            logger.info("chat.session.evicted", session_id=evicted)
        return session

    async def handle_text(self, text: str, session_id: str) -> dict[str, Any]:
        result = await self.chat_session(session_id).chat(text)
        return result.to_dict()

    def watch_scheduler(self) -> None:
        if self.scheduler is None:
            return
        loop = asyncio.get_running_loop()

        def on_fire(task: ScheduledTask) -> None:
            payload = {"alert": task.kind, "label": task.label, "task_id": task.id}
            asyncio.run_coroutine_threadsafe(self.bridge.publish_state("alert", payload), loop)

        self.scheduler.set_on_fire(on_fire)

    async def shutdown(self) -> None:
        await self.voice.close()
        for session in self._chats.values():
            await session.close()
        if self.scheduler is not None:
            self.scheduler.set_on_fire(None)
            self.scheduler.shutdown()
        if self.router is not None:
            await self.router.aclose()
        if self._http is not None:
            await self._http.aclose()
        await self.memory.close()
        logger.info("runtime.stopped")


async def bootstrap_runtime(settings: AppSettings, bridge: WebSocketStateBridge) -> Runtime:
    try:
        memory: MemoryStore | NullMemoryStore = MemoryStore(settings.memory.dsn, settings.memory.max_pool_size)
        await memory.init()
        pruned = await memory.prune_expired()
        logger.info("memory.ready", pruned=pruned)
    except Exception as exc:
        logger.error("memory.init.failed", error=str(exc))
        memory = NullMemoryStore()
        await memory.init()

    tool_settings = settings.tools
    http = httpx.AsyncClient(timeout=tool_settings.timeout_s)
    context = ToolContext(memory=memory, scheduler=SCHEDULER, settings=tool_settings, http=http)
    registry = ToolRegistry()
    register_defaults(registry, context, timeout_s=tool_settings.timeout_s)

    router = build_router(settings.llm)
    settings_store = InMemorySettingsStore.from_settings(settings)
    injector = MemoryInjector(
        memory,
        max_identity_facts=settings.memory.max_identity_facts,
        max_query_memories=settings.memory.max_query_memories,
        max_query_memory_chars=settings.memory.max_query_memory_chars,
    )
    orchestrator = TurnOrchestrator(
        router,
        registry,
        injector,
        prompt_builder=PromptBuilder(settings.prompt, settings_store),
        autosave=MemoryAutoSave(memory, settings=settings_store),
        llm_settings=settings.llm,
        prompt_settings=settings.prompt,
    )
    runtime = Runtime(
        orchestrator,
        registry,
        memory,
        bridge,
        router=router,
        scheduler=SCHEDULER,
        http=http,
        follow_up_timeout_s=settings.voice.follow_up_timeout_s,
    )
    runtime.watch_scheduler()
    logger.info("runtime.started", provider=router.current_provider(), tools=len(registry.available()))
    return runtime


class ChatRequest(BaseModel):
    text: str = Field(..., min_length=1)
    session_id: str = "chat"


class VoiceEventRequest(BaseModel):
    text: str | None = None


class LLMProviderRequest(BaseModel):
    provider: str


def create_app(runtime: Runtime | None = None) -> FastAPI:
    bridge = runtime.bridge if runtime is not None else WebSocketStateBridge()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.runtime is None:
            app.state.runtime = await bootstrap_runtime(settings, bridge)
        try:
            yield
        finally:
            await app.state.runtime.shutdown()

    app = FastAPI(title="Aria Voice Assistant", lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(bridge.router)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    def require_runtime() -> Runtime:
        current = getattr(app.state, "runtime", None)
        if current is None:
            raise HTTPException(status_code=503, detail="Assistant not ready yet.")
        return current

    @app.post("/chat")
    async def chat_endpoint(request: ChatRequest) -> dict[str, Any]:
        return await require_runtime().handle_text(request.text, request.session_id)

    @app.get("/voice/state")
    async def voice_state() -> dict[str, Any]:
        session = require_runtime().voice
        return {
            "state": session.voice_state.value,
            "session_id": session.session_id,
            "turn_count": session.state.turn_count,
            "awaiting_slot": session.state.awaiting_slot,
        }

    @app.post("/voice/{event}")
    async def voice_event(event: str, request: VoiceEventRequest | None = None) -> dict[str, Any]:
        session = require_runtime().voice
        try:
            voice_event = VoiceEvent(event)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown voice event '{event}'") from None

        if voice_event is VoiceEvent.TRANSCRIPTION_COMPLETE:
            if request is None or not request.text:
                raise HTTPException(status_code=422, detail="transcription_complete requires text")
            result = await session.on_transcript(request.text)
            logger.info("voice.endpoint.transcript", state=session.voice_state.value)
            return {
                "state": session.voice_state.value,
                "changed": result is not None,
                "result": result.to_dict() if result is not None else None,
            }

        changed = await session.dispatch(voice_event)
        logger.info("voice.endpoint.event", voice_event=voice_event.value, changed=changed)
        return {"state": session.voice_state.value, "changed": changed}

    @app.get("/tools")
    async def list_tools() -> dict[str, Any]:
        registry = require_runtime().registry
        return {"tools": registry.available(), "aliases": registry.aliases()}

    @app.get("/llm/provider")
    async def get_llm_provider() -> dict[str, Any]:
        router = require_runtime().router
        if router is None:
            return {"provider": None, "available": []}
        return {"provider": router.current_provider(), "available": router.available()}

    @app.post("/llm/provider")
    async def set_llm_provider(request: LLMProviderRequest) -> dict[str, Any]:
        router = require_runtime().router
        if router is None:
            raise HTTPException(status_code=503, detail="No provider router configured")
        try:
            provider = router.set_default(request.provider)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        logger.info("llm.provider.changed", provider=provider)
        return {"provider": provider}

    return app


app = create_app()


__all__ = ["app", "create_app", "bootstrap_runtime", "Runtime"]
