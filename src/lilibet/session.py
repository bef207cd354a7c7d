"""Recording session: one press of the record button, start to text."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from lilibet.errors import (
    ERROR_MESSAGES,
    RETRYABLE,
    EmptyRecording,
    ErrorCode,
    SessionBusy,
    VoiceError,
)
from lilibet.recorder.base import PlatformRecorder

if TYPE_CHECKING:
    from lilibet.speech import SpeechOutput
    from lilibet.transcriber import TranscriptionClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    RECORDING = "recording"
    STOPPING = "stopping"
    TRANSCRIBING = "transcribing"
    DELIVERED = "delivered"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset({SessionState.DELIVERED, SessionState.FAILED, SessionState.ABANDONED})


@dataclass(frozen=True)
class SessionOutcome:
    state: SessionState
    text: str = ""
    error: Optional[ErrorCode] = None
    detail: str = ""

    @property
    def delivered(self) -> bool:
        return self.state is SessionState.DELIVERED

    @property
    def retryable(self) -> bool:
        return self.error in RETRYABLE

    @property
    def message(self) -> str:
        """What to tell the user."""
        if self.error is not None:
            return ERROR_MESSAGES[self.error]
        return self.text


class RecordingSlot:
    """The microphone claim for one UI surface.

    Only one non-terminal session may hold the slot at a time.
    """

    def __init__(self):
        self.active: Optional[RecordingSession] = None

    @property
    def busy(self) -> bool:
        return self.active is not None and not self.active.is_terminal

    def claim(self, session: RecordingSession) -> None:
        if self.busy and self.active is not session:
            raise SessionBusy(f"Another recording is {self.active.state.value}")
        self.active = session

    def release(self, session: RecordingSession) -> None:
        if self.active is session:
            self.active = None


StateCallback = Callable[[SessionState, SessionState], None]


class RecordingSession:
    """State machine for a single recording attempt.

    idle → requesting_permission → recording → stopping → transcribing →
    delivered | failed. ``abandon()`` ends the session from any state.
    Sessions are single-use; every exit path gives the microphone back.
    """

    def __init__(
        self,
        recorder_factory: Callable[[], PlatformRecorder],
        transcriber: TranscriptionClient,
        slot: Optional[RecordingSlot] = None,
        speech: Optional[SpeechOutput] = None,
        on_state_change: Optional[StateCallback] = None,
    ):
        self._recorder_factory = recorder_factory
        self._transcriber = transcriber
        self._slot = slot if slot is not None else RecordingSlot()
        self._speech = speech
        self._on_state_change = on_state_change

        self._state = SessionState.IDLE
        self._recorder: Optional[PlatformRecorder] = None
        self._task: Optional[asyncio.Future] = None
        self._text = ""
        self._error: Optional[ErrorCode] = None
        self._detail = ""
        self._opening = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def recorder(self) -> Optional[PlatformRecorder]:
        return self._recorder

    @property
    def error(self) -> Optional[ErrorCode]:
        return self._error

    @property
    def text(self) -> str:
        return self._text

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self._state is not SessionState.IDLE and not self.is_terminal

    @property
    def is_transcribing(self) -> bool:
        return self._state is SessionState.TRANSCRIBING

    @property
    def outcome(self) -> SessionOutcome:
        return SessionOutcome(self._state, self._text, self._error, self._detail)

    async def start(self) -> SessionState:
        """Acquire the microphone and begin recording.

        Permission and device problems end the session in ``failed``; they
        are reported through ``outcome`` rather than raised.
        """
        if self._state is not SessionState.IDLE:
            raise SessionBusy(f"Session is {self._state.value}; start a new one")
        self._slot.claim(self)

        if self._speech is not None and self._speech.is_speaking:
            self._speech.stop()

        self._transition(SessionState.REQUESTING_PERMISSION)
        try:
            recorder = self._recorder_factory()
        except Exception as e:
            logger.exception("could not create a recorder")
            self._fail(ErrorCode.DEVICE_UNAVAILABLE, str(e))
            return self._state
        self._recorder = recorder

        # while the device opens, releasing the recorder is left to this coroutine
        self._opening = True
        try:
            await asyncio.to_thread(recorder.start)
        except VoiceError as e:
            self._opened(e.code, str(e))
            return self._state
        except asyncio.CancelledError:
            self.abandon()
            # recorder.start is still running in its worker thread
            asyncio.get_running_loop().run_in_executor(None, self._release_recorder)
            self._opening = False
            raise
        except Exception as e:
            logger.exception("opening the microphone failed")
            self._opened(ErrorCode.DEVICE_UNAVAILABLE, str(e))
            return self._state

        self._opening = False
        if self._state is SessionState.ABANDONED:
            # abandoned while the device was opening
            self._release_recorder()
            return self._state

        self._transition(SessionState.RECORDING)
        return self._state

    async def stop(self) -> SessionOutcome:
        """Stop recording, transcribe, and resolve the session."""
        if self.is_terminal:
            return self.outcome
        if self._state is not SessionState.RECORDING:
            raise SessionBusy(f"Cannot stop a session that is {self._state.value}")

        recorder = self._recorder
        self._transition(SessionState.STOPPING)
        try:
            await asyncio.to_thread(recorder.stop)
        except asyncio.CancelledError:
            self.abandon()
            raise
        except Exception as e:
            # recorder.stop() has already released the device
            logger.warning("finalizing the recording failed: %s", e)

        if self._state is SessionState.ABANDONED:
            return self.outcome

        try:
            payload = recorder.get_upload_payload()
        except EmptyRecording as e:
            self._fail(ErrorCode.EMPTY_RECORDING, str(e))
            return self.outcome
        except Exception as e:
            logger.exception("reading the recording failed")
            self._fail(ErrorCode.DEVICE_UNAVAILABLE, str(e))
            return self.outcome

        self._transition(SessionState.TRANSCRIBING)
        self._task = asyncio.ensure_future(self._transcriber.transcribe(payload))
        try:
            result = await self._task
        except asyncio.CancelledError:
            if self._state is not SessionState.ABANDONED:
                self.abandon()
                raise
            return self.outcome
        except Exception as e:
            logger.exception("transcription request failed")
            self._fail(ErrorCode.TRANSCRIPTION_UNAVAILABLE, str(e))
            return self.outcome
        finally:
            self._task = None
            recorder.discard()

        text = (result.text or "").strip()
        if result.success and text:
            self._text = text
            self._transition(SessionState.DELIVERED)
            self._slot.release(self)
        elif result.success:
            self._fail(ErrorCode.NO_SPEECH_DETECTED, "blank transcription")
        else:
            self._fail(result.error or ErrorCode.TRANSCRIPTION_UNAVAILABLE, result.detail)
        return self.outcome

    def abandon(self) -> None:
        """Drop the session from any state, releasing the microphone."""
        if self.is_terminal:
            return
        self._transition(SessionState.ABANDONED)
        if not self._opening:
            self._release_recorder()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._slot.release(self)

    def _fail(self, code: ErrorCode, detail: str = "") -> None:
        self._error = code
        self._detail = detail
        self._transition(SessionState.FAILED)
        logger.info("recording session failed: %s %s", code.value, detail)
        self._release_recorder()
        self._slot.release(self)

    def _opened(self, code: ErrorCode, detail: str) -> None:
        """Settle a failed device open, which may have raced an abandon."""
        self._opening = False
        if self._state is SessionState.ABANDONED:
            self._release_recorder()
        else:
            self._fail(code, detail)

    def _release_recorder(self) -> None:
        recorder = self._recorder
        if recorder is None:
            return
        try:
            recorder.stop()
        except Exception:
            logger.warning("error while releasing the recorder", exc_info=True)
        if self.is_terminal and self._state is not SessionState.DELIVERED:
            recorder.discard()

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("recording session %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
