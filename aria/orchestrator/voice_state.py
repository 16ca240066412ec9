from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from aria.telemetry.logging import get_logger


class VoiceState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    ROUTING = "routing"
    SPEAKING = "speaking"
    FOLLOW_UP = "follow_up"


class VoiceEvent(str, Enum):
    WAKE_WORD_DETECTED = "wake_word_detected"
    CAPTURE_COMPLETE = "capture_complete"
    TRANSCRIPTION_COMPLETE = "transcription_complete"
    ROUTING_COMPLETE = "routing_complete"
    SPEECH_COMPLETE = "speech_complete"
    BARGE_IN = "barge_in"
    RESET = "reset"
    FOLLOW_UP_TIMEOUT = "follow_up_timeout"


TRANSITIONS: dict[tuple[VoiceState, VoiceEvent], VoiceState] = {
    (VoiceState.IDLE, VoiceEvent.WAKE_WORD_DETECTED): VoiceState.CAPTURING,
    (VoiceState.FOLLOW_UP, VoiceEvent.WAKE_WORD_DETECTED): VoiceState.CAPTURING,
    (VoiceState.CAPTURING, VoiceEvent.CAPTURE_COMPLETE): VoiceState.PROCESSING,
    (VoiceState.PROCESSING, VoiceEvent.TRANSCRIPTION_COMPLETE): VoiceState.ROUTING,
    (VoiceState.ROUTING, VoiceEvent.ROUTING_COMPLETE): VoiceState.SPEAKING,
    (VoiceState.SPEAKING, VoiceEvent.SPEECH_COMPLETE): VoiceState.FOLLOW_UP,
    (VoiceState.SPEAKING, VoiceEvent.BARGE_IN): VoiceState.IDLE,
    (VoiceState.FOLLOW_UP, VoiceEvent.BARGE_IN): VoiceState.IDLE,
    (VoiceState.FOLLOW_UP, VoiceEvent.FOLLOW_UP_TIMEOUT): VoiceState.IDLE,
}

StateListener = Callable[[VoiceState, VoiceState, VoiceEvent], None]


class VoiceStateMachine:
    """Audio-facing lifecycle of one session.

    The machine only records which phase is active; capture, transcription
    and playback belong to collaborators that observe it. Unlisted
    (state, event) pairs leave the state untouched. ``reset`` always lands in
    idle. Single owner: transitions must come from one task, there is no
    locking.
    """

    def __init__(self, initial: VoiceState = VoiceState.IDLE) -> None:
        self._state = initial
        self._listeners: list[StateListener] = []
        self._logger = get_logger(__name__)

    @property
    def state(self) -> VoiceState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def handle(self, event: VoiceEvent | str) -> bool:
        """Apply ``event``; returns True when the state changed."""
        event = VoiceEvent(event)
        previous = self._state
        if event is VoiceEvent.RESET:
            target = VoiceState.IDLE
        else:
            target = TRANSITIONS.get((previous, event))
        if target is None:
            self._logger.debug("voice.event.ignored", state=previous.value, voice_event=event.value)
            return False
        self._state = target
        self._logger.info("voice.transition", source=previous.value, target=target.value, voice_event=event.value)
        for listener in list(self._listeners):
            try:
                listener(previous, target, event)
            except Exception:
                self._logger.exception("voice.listener_failed", voice_event=event.value)
        return previous is not target

    def wake_word_detected(self) -> bool:
        return self.handle(VoiceEvent.WAKE_WORD_DETECTED)

    def capture_complete(self) -> bool:
        return self.handle(VoiceEvent.CAPTURE_COMPLETE)

    def transcription_complete(self) -> bool:
        return self.handle(VoiceEvent.TRANSCRIPTION_COMPLETE)

    def routing_complete(self) -> bool:
        return self.handle(VoiceEvent.ROUTING_COMPLETE)

    def speech_complete(self) -> bool:
        return self.handle(VoiceEvent.SPEECH_COMPLETE)

    def barge_in(self) -> bool:
        return self.handle(VoiceEvent.BARGE_IN)

    def follow_up_timeout(self) -> bool:
        return self.handle(VoiceEvent.FOLLOW_UP_TIMEOUT)

    def reset(self) -> bool:
        return self.handle(VoiceEvent.RESET)

    @property
    def is_capturing(self) -> bool:
        return self._state is VoiceState.CAPTURING

    @property
    def is_speaking(self) -> bool:
        return self._state is VoiceState.SPEAKING

    @property
    def is_busy(self) -> bool:
        return self._state in (VoiceState.PROCESSING, VoiceState.ROUTING)


__all__ = ["VoiceState", "VoiceEvent", "VoiceStateMachine", "TRANSITIONS", "StateListener"]
