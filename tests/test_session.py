from __future__ import annotations

import asyncio

import pytest

from aria.errors import GENERIC_APOLOGY, LLMNetworkUnavailable, apology_for
from aria.memory.injector import MemoryInjector
from aria.orchestrator.session import VoiceSession
from aria.orchestrator.turn import TurnOrchestrator
from aria.orchestrator.voice_state import VoiceState
from aria.tools.registry import ToolRegistry
from conftest import FakeMemoryStore, StubLLM


class RecordingSpeech:
    def __init__(self, delay: float = 0.0) -> None:
        self.spoken: list[str] = []
        self.delay = delay
        self.started = asyncio.Event()

    async def speak(self, text: str) -> float:
        self.spoken.append(text)
        self.started.set()
        await asyncio.sleep(self.delay)
        return self.delay


class RecordingBridge:
    def __init__(self) -> None:
        self.states: list[str] = []

    async def publish_state(self, state: str, payload: dict | None = None) -> None:
        self.states.append(state)


def _session(llm, **kwargs) -> VoiceSession:
    orchestrator = TurnOrchestrator(llm, ToolRegistry(), MemoryInjector(FakeMemoryStore()))
    return VoiceSession(orchestrator, session_id="test", **kwargs)


async def _to_processing(session: VoiceSession) -> None:
    await session.wake()
    await session.capture_complete()


@pytest.mark.anyio("asyncio")
async def test_full_voice_turn_ends_in_follow_up() -> None:
    speech = RecordingSpeech()
    bridge = RecordingBridge()
    session = _session(StubLLM('{"action":"TALK","say":"Hello there."}'), speech=speech, bridge=bridge)
    await _to_processing(session)

    result = await session.on_transcript("hi")

    assert result is not None and result.say_text == "Hello there."
    assert speech.spoken == ["Hello there."]
    assert session.voice_state is VoiceState.FOLLOW_UP
    assert bridge.states == ["capturing", "processing", "routing", "speaking", "follow_up"]
    assert session.state.turn_count == 1
    assert [message.text for message in session.state.history] == ["hi", "Hello there."]
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_transcript_outside_processing_is_ignored() -> None:
    llm = StubLLM("Hi.")
    session = _session(llm)
    assert await session.on_transcript("hello?") is None
    assert llm.requests == []
    assert session.voice_state is VoiceState.IDLE


@pytest.mark.anyio("asyncio")
async def test_failed_turn_apologises_and_resets() -> None:
    speech = RecordingSpeech()
    session = _session(StubLLM(LLMNetworkUnavailable("offline")), speech=speech)
    await _to_processing(session)

    assert await session.on_transcript("what's new?") is None
    assert speech.spoken == [apology_for(LLMNetworkUnavailable("offline"))]
    assert session.voice_state is VoiceState.IDLE
    assert session.state.turn_count == 0


@pytest.mark.anyio("asyncio")
async def test_barge_in_cancels_playback() -> None:
    speech = RecordingSpeech(delay=5.0)
    session = _session(StubLLM("A very long answer."), speech=speech)
    await _to_processing(session)

    turn = asyncio.create_task(session.on_transcript("tell me a story"))
    await asyncio.wait_for(speech.started.wait(), timeout=1)
    assert session.voice_state is VoiceState.SPEAKING

    assert await session.barge_in() is True
    result = await asyncio.wait_for(turn, timeout=1)
    assert result is not None
    assert session.voice_state is VoiceState.IDLE


@pytest.mark.anyio("asyncio")
async def test_follow_up_window_times_out_to_idle() -> None:
    session = _session(StubLLM("Sure."), follow_up_timeout_s=0.01)
    await _to_processing(session)
    await session.on_transcript("thanks")
    assert session.voice_state is VoiceState.FOLLOW_UP
    await asyncio.sleep(0.05)
    assert session.voice_state is VoiceState.IDLE


@pytest.mark.anyio("asyncio")
async def test_wake_during_follow_up_keeps_listening() -> None:
    session = _session(StubLLM("Sure."), follow_up_timeout_s=0.05)
    await _to_processing(session)
    await session.on_transcript("thanks")
    await session.wake()
    await asyncio.sleep(0.1)
    assert session.voice_state is VoiceState.CAPTURING
    await session.close()


@pytest.mark.anyio("asyncio")
async def test_ask_step_is_remembered_in_session_state() -> None:
    llm = StubLLM('{"steps":[{"step":"ask","slot":"city","prompt":"Which city?"}]}', "Got it, Paris.")
    session = _session(llm)
    first = await session.chat("what's the weather?")
    assert first.awaiting_slot == "city"
    assert session.state.awaiting_slot == "city"

    await session.chat("Paris")
    assert "awaiting answer for: city" in (llm.requests[1].system or "")
    assert session.state.awaiting_slot is None


@pytest.mark.anyio("asyncio")
async def test_chat_failure_returns_apology_result() -> None:
    session = _session(StubLLM(LLMNetworkUnavailable("offline")))
    result = await session.chat("hello")
    assert result.fallback is True
    assert result.say_text == apology_for(LLMNetworkUnavailable("offline"))


@pytest.mark.anyio("asyncio")
async def test_unexpected_turn_error_apologises_and_resets() -> None:
    speech = RecordingSpeech()
    session = _session(StubLLM(RuntimeError("kaboom")), speech=speech)
    await _to_processing(session)

    assert await session.on_transcript("hello") is None
    assert speech.spoken == [GENERIC_APOLOGY]
    assert session.voice_state is VoiceState.IDLE

    result = await session.chat("hello again")
    assert result.fallback is True
    assert result.say_text == GENERIC_APOLOGY
