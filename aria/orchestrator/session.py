from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import uuid4

from aria.errors import AriaError, apology_for
from aria.llm.types import ChatMessage, Role
from aria.orchestrator.events import Delegation, TurnResult
from aria.orchestrator.turn import TurnOrchestrator
from aria.orchestrator.voice_state import VoiceEvent, VoiceState, VoiceStateMachine
from aria.telemetry.logging import get_logger


class SpeechOutput(Protocol):
    async def speak(self, text: str) -> float: ...


class StateBridge(Protocol):
    async def publish_state(self, state: str, payload: dict[str, Any] | None = None) -> None: ...


@dataclass(slots=True)
class SessionState:
    """Conversational state owned by one session; only its VoiceSession writes it."""

    session_id: str
    current_topic: str | None = None
    awaiting_slot: str | None = None
    pending_delegation: Delegation | None = None
    turn_count: int = 0
    history: list[ChatMessage] = field(default_factory=list)
    max_history: int = 40

    def record(self, user_text: str, result: TurnResult) -> None:
        self.turn_count += 1
        self.awaiting_slot = result.awaiting_slot
        self.pending_delegation = result.delegation
        if result.delegation is not None:
            self.current_topic = result.delegation.task
        elif result.tool_calls:
            self.current_topic = result.tool_calls[-1].tool
        self.history.append(ChatMessage(role=Role.USER, text=user_text))
        self.history.append(
            ChatMessage(
                role=Role.ASSISTANT,
                text=result.say_text,
                latency_ms=result.latency_ms,
                provider=result.provider,
            )
        )
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]

    def describe(self) -> str:
        lines = []
        if self.current_topic:
            lines.append(f"topic: {self.current_topic}")
        if self.awaiting_slot:
            lines.append(f"awaiting answer for: {self.awaiting_slot}")
        if self.pending_delegation is not None:
            lines.append(f"delegated task: {self.pending_delegation.task}")
        if not lines:
            return ""
        return "[SESSION STATE]\n" + "\n".join(f"- {line}" for line in lines)


class VoiceSession:
    """Drives one session's state machine through capture, turn and playback.

    Spoken output and UI publishing are collaborators; either may be absent.
    A barge-in cancels in-flight playback and any pending turn. A failed turn
    is answered with a short apology and the machine returns to idle.
    """

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        *,
        speech: SpeechOutput | None = None,
        bridge: StateBridge | None = None,
        session_id: str | None = None,
        follow_up_timeout_s: float = 8.0,
    ) -> None:
        self._orchestrator = orchestrator
        self._speech = speech
        self._bridge = bridge
        self._follow_up_timeout_s = follow_up_timeout_s
        self.machine = VoiceStateMachine()
        self.state = SessionState(session_id=session_id or str(uuid4()))
        self._turn_task: asyncio.Task[TurnResult] | None = None
        self._speech_task: asyncio.Task[float] | None = None
        self._follow_up_task: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__).bind(session_id=self.state.session_id)

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def voice_state(self) -> VoiceState:
        return self.machine.state

    async def dispatch(self, event: VoiceEvent | str, payload: dict[str, Any] | None = None) -> bool:
        event = VoiceEvent(event)
        if event is VoiceEvent.BARGE_IN:
            return await self.barge_in()
        if event is VoiceEvent.RESET:
            return await self.reset()
        if event is VoiceEvent.WAKE_WORD_DETECTED:
            self._cancel_follow_up()
        changed = self.machine.handle(event)
        if changed:
            await self._publish(payload)
        if changed and self.machine.state is VoiceState.FOLLOW_UP:
            self._arm_follow_up()
        return changed

    async def wake(self) -> bool:
        return await self.dispatch(VoiceEvent.WAKE_WORD_DETECTED)

    async def capture_complete(self) -> bool:
        return await self.dispatch(VoiceEvent.CAPTURE_COMPLETE)

    async def on_transcript(self, text: str) -> TurnResult | None:
        """Run a turn for a finished transcription and speak the reply."""
        if self.machine.state is not VoiceState.PROCESSING:
            self._logger.info("voice.transcript.ignored", state=self.machine.state.value)
            return None
        await self.dispatch(VoiceEvent.TRANSCRIPTION_COMPLETE, {"transcript": text})

        self._turn_task = asyncio.create_task(
            self._orchestrator.process_turn(
                text,
                list(self.state.history),
                self.session_id,
                state=self.state.describe(),
            )
        )
        try:
            result = await self._turn_task
        except asyncio.CancelledError:
            if self._turn_task.cancelled() and self.machine.state is not VoiceState.ROUTING:
                self._logger.info("voice.turn.cancelled")
                return None
            raise
        except AriaError as exc:
            self._logger.warning("voice.turn.failed", error_type=type(exc).__name__, error=str(exc))
            await self._apologise(exc)
            return None
        except Exception as exc:
            self._logger.exception("voice.turn.crashed", error_type=type(exc).__name__)
            await self._apologise(exc)
            return None
        finally:
            self._turn_task = None

        self.state.record(text, result)
        if self.machine.state is not VoiceState.ROUTING:
            return result
        await self.dispatch(VoiceEvent.ROUTING_COMPLETE, {"turn_id": result.turn_id, "text": result.say_text})
        await self._speak(result.say_text)
        return result

    async def chat(self, text: str) -> TurnResult:
        """Text turn outside the audio lifecycle; failures become an apology."""
        try:
            result = await self._orchestrator.process_turn(
                text,
                list(self.state.history),
                self.session_id,
                state=self.state.describe(),
            )
        except Exception as exc:
            if isinstance(exc, AriaError):
                self._logger.warning("chat.turn.failed", error_type=type(exc).__name__, error=str(exc))
            else:
                self._logger.exception("chat.turn.crashed", error_type=type(exc).__name__)
            return TurnResult(
                turn_id=str(uuid4()),
                session_id=self.session_id,
                say_text=apology_for(exc),
                fallback=True,
            )
        self.state.record(text, result)
        return result

    async def barge_in(self) -> bool:
        changed = self.machine.barge_in()
        if not changed:
            return False
        self._cancel_follow_up()
        self._cancel_task(self._speech_task)
        self._cancel_task(self._turn_task)
        await self._publish({"reason": "barge_in"})
        return True

    async def reset(self) -> bool:
        self._cancel_follow_up()
        self._cancel_task(self._speech_task)
        self._cancel_task(self._turn_task)
        changed = self.machine.reset()
        await self._publish({"reason": "reset"})
        return changed

    async def close(self) -> None:
        await self.reset()

    async def _speak(self, text: str) -> None:
        if self._speech is not None and text:
            self._speech_task = asyncio.create_task(self._speech.speak(text))
            started = time.perf_counter()
            try:
                duration = await self._speech_task
            except asyncio.CancelledError:
                if self._speech_task.cancelled() and self.machine.state is not VoiceState.SPEAKING:
                    self._logger.info("voice.speech.interrupted", elapsed_s=round(time.perf_counter() - started, 3))
                    return
                raise
            except Exception:
                self._logger.exception("voice.speech.failed")
            else:
                self._logger.info("voice.speech.done", duration_s=duration)
            finally:
                self._speech_task = None
        if self.machine.state is VoiceState.SPEAKING:
            await self.dispatch(VoiceEvent.SPEECH_COMPLETE)

    async def _apologise(self, exc: Exception) -> None:
        apology = apology_for(exc)
        if self.machine.state is VoiceState.ROUTING:
            await self.dispatch(VoiceEvent.ROUTING_COMPLETE, {"text": apology, "error": type(exc).__name__})
            await self._speak(apology)
        await self.reset()

    def _arm_follow_up(self) -> None:
        self._cancel_follow_up()
        self._follow_up_task = asyncio.create_task(self._follow_up_window())

    async def _follow_up_window(self) -> None:
        await asyncio.sleep(self._follow_up_timeout_s)
        self._follow_up_task = None
        if self.machine.follow_up_timeout():
            await self._publish({"reason": "follow_up_timeout"})

    def _cancel_follow_up(self) -> None:
        task, self._follow_up_task = self._follow_up_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    def _cancel_task(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _publish(self, payload: dict[str, Any] | None = None) -> None:
        if self._bridge is None:
            return
        body = {"session_id": self.session_id, **(payload or {})}
        await self._bridge.publish_state(self.machine.state.value, body)


__all__ = ["SessionState", "SpeechOutput", "StateBridge", "VoiceSession"]
