"""A learner's chat with the tutor: subjects, messages, voice in and out."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

from lilibet.constants import DEFAULT_MODEL, FALLBACK_REPLY
from lilibet.errors import BackendError, LilibetError
from lilibet.recorder.base import PlatformRecorder
from lilibet.session import RecordingSession, RecordingSlot, SessionOutcome, SessionState
from lilibet.speech import SpeechOutput
from lilibet.transcriber import TranscriptionClient
from lilibet.tutor_client import TutorClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    description: str


SUBJECTS = (
    Subject("math", "Math", "Numbers, equations, problem solving"),
    Subject("reading", "Reading", "Stories, comprehension, analysis"),
    Subject("writing", "Writing", "Essays, creativity, expression"),
    Subject("science", "Science", "Experiments, discoveries, nature"),
)


def get_subject(subject_id: str) -> Subject:
    for subject in SUBJECTS:
        if subject.id == subject_id:
            return subject
    raise ValueError(
        f"Unknown subject: {subject_id!r}. Choose from: {', '.join(s.id for s in SUBJECTS)}"
    )


def welcome_text(subject: Subject, display_name: str = "") -> str:
    return (
        f"Hello {display_name or 'there'}! I'm Lilibet, your {subject.name.lower()} tutor. "
        "What would you like to explore today?"
    )


_ids = itertools.count()


def _next_id() -> int:
    return int(time.time() * 1000) * 1000 + next(_ids) % 1000


@dataclass
class Message:
    text: str
    sender: str  # "user" | "tutor" | "system"
    timestamp: str = field(default_factory=lambda: datetime.now().strftime("%H:%M:%S"))
    id: int = field(default_factory=_next_id)

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "sender": self.sender, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        return cls(
            text=data.get("text", ""),
            sender=data.get("sender", "user"),
            timestamp=data.get("timestamp", ""),
            id=data.get("id") or _next_id(),
        )


@dataclass
class Conversation:
    subject: Subject
    messages: list[Message] = field(default_factory=list)
    conversation_id: Any = None
    learning_mode: Optional[str] = None

    def history(self) -> list[dict[str, str]]:
        """Messages in the role/content shape the tutor endpoint expects."""
        return [
            {"role": "user" if m.sender == "user" else "assistant", "content": m.text}
            for m in self.messages
            if m.sender != "system"
        ]

    @classmethod
    def from_saved(cls, saved: dict) -> Conversation:
        """Rebuild a conversation returned by ``/api/conversations``."""
        raw = saved.get("messages") or []
        if isinstance(raw, str):
            raw = json.loads(raw)
        return cls(
            subject=get_subject(saved.get("subject", "")),
            messages=[Message.from_dict(m) for m in raw],
            conversation_id=saved.get("id"),
        )


class ChatSession:
    """Everything one learner does at one chat surface.

    Owns the surface's RecordingSlot, so at most one voice recording runs
    at a time, and abandons it whenever the subject changes or the learner
    logs out.
    """

    def __init__(
        self,
        tutor: TutorClient,
        transcriber: TranscriptionClient,
        recorder_factory: Callable[[], PlatformRecorder],
        speech: Optional[SpeechOutput] = None,
        model: str = DEFAULT_MODEL,
        display_name: str = "",
        speak_replies: bool = False,
    ):
        self.tutor = tutor
        self.transcriber = transcriber
        self.recorder_factory = recorder_factory
        self.speech = speech
        self.model = model
        self.display_name = display_name
        self.muted = not speak_replies
        self.slot = RecordingSlot()
        self.conversation: Optional[Conversation] = None
        self.recording: Optional[RecordingSession] = None
        self._speech_task: Optional[asyncio.Task] = None

    # ---- subject / conversation ----

    def select_subject(self, subject_id: str) -> Message:
        subject = get_subject(subject_id)
        self._interrupt()
        name = self.display_name
        if not name and self.tutor.user is not None:
            name = self.tutor.user.display_name
        welcome = Message(welcome_text(subject, name), "tutor")
        self.conversation = Conversation(subject=subject, messages=[welcome])
        return welcome

    def resume(self, saved: dict) -> Conversation:
        self._interrupt()
        self.conversation = Conversation.from_saved(saved)
        return self.conversation

    async def resume_saved(self, conversation_id) -> Conversation:
        """Look up one of the learner's saved conversations and continue it."""
        for saved in await self.tutor.list_conversations():
            if str(saved.get("id")) == str(conversation_id):
                return self.resume(saved)
        raise LilibetError(f"No saved conversation with id {conversation_id}")

    async def send(self, text: str) -> Optional[Message]:
        """Send a learner message and return the tutor's reply.

        Backend failures produce a gentle fallback reply instead of an error.
        """
        if self.conversation is None:
            raise LilibetError("Pick a subject first")
        text = text.strip()
        if not text:
            return None

        conversation = self.conversation
        history = conversation.history()
        conversation.messages.append(Message(text, "user"))

        try:
            reply = await self.tutor.ask_tutor(text, conversation.subject.id, history, self.model)
            reply_text = reply.response
            conversation.learning_mode = reply.learning_mode or conversation.learning_mode
        except BackendError as e:
            logger.warning("tutor request failed: %s", e)
            reply_text = FALLBACK_REPLY

        tutor_message = Message(reply_text, "tutor")
        conversation.messages.append(tutor_message)

        await self._autosave(conversation)
        if not self.muted and self.speech is not None:
            self._speech_task = asyncio.ensure_future(self.speech.speak(reply_text))
        return tutor_message

    async def _autosave(self, conversation: Conversation) -> None:
        if not self.tutor.is_authenticated:
            return
        title = f"{conversation.subject.id} session - {date.today().isoformat()}"
        try:
            conversation.conversation_id = await self.tutor.save_conversation(
                conversation.subject.id,
                [m.to_dict() for m in conversation.messages],
                "middle",
                self.model,
                title,
            )
        except BackendError as e:
            logger.info("save failed: %s", e)

    # ---- voice ----

    async def start_recording(self) -> RecordingSession:
        """Begin a new voice recording; raises SessionBusy if one is active."""
        session = RecordingSession(
            self.recorder_factory,
            self.transcriber,
            slot=self.slot,
            speech=self.speech,
        )
        self.slot.claim(session)
        self.recording = session
        await session.start()
        return session

    async def finish_recording(self, send: bool = True) -> SessionOutcome:
        """Stop the active recording; send the recognized text if asked."""
        if self.recording is None:
            raise LilibetError("No recording in progress")
        outcome = await self.recording.stop()
        if outcome.delivered and send and self.conversation is not None:
            await self.send(outcome.text)
        return outcome

    def abandon_recording(self) -> None:
        if self.recording is not None:
            self.recording.abandon()

    @property
    def is_recording(self) -> bool:
        return self.recording is not None and self.recording.state is SessionState.RECORDING

    def set_muted(self, muted: bool) -> None:
        if muted and self.speech is not None:
            self.speech.stop()
        self.muted = muted

    # ---- lifecycle ----

    def _interrupt(self) -> None:
        self.abandon_recording()
        if self.speech is not None:
            self.speech.stop()

    async def logout(self) -> None:
        self._interrupt()
        await self.tutor.logout()
        self.conversation = None

    async def close(self) -> None:
        self._interrupt()
        if self._speech_task is not None and not self._speech_task.done():
            self._speech_task.cancel()
            try:
                await self._speech_task
            except asyncio.CancelledError:
                pass
        await self.tutor.aclose()
        await self.transcriber.aclose()
