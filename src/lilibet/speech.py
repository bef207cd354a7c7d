"""Reading tutor replies aloud.

Two backends share one contract. ``speak()`` strips emoji, skips blank
text, and otherwise resolves to exactly one of done/stopped/error (firing
the matching callback once). ``stop()`` cancels the current utterance
immediately, and a new ``speak()`` always replaces the previous one.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from lilibet.constants import DEFAULT_LANGUAGE, DEFAULT_PITCH, DEFAULT_RATE, DEFAULT_VOLUME
from lilibet.errors import SpeechOutputError

logger = logging.getLogger(__name__)

_EMOJI_RE = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA70-\U0001FAFF"
    "]"
)


def strip_emoji(text: str) -> str:
    """Remove pictographic symbols and trim the result."""
    return _EMOJI_RE.sub("", text).strip()


class SpeechOutcome(str, Enum):
    DONE = "done"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class VoiceSettings:
    language: str = DEFAULT_LANGUAGE
    pitch: float = DEFAULT_PITCH
    rate: float = DEFAULT_RATE
    volume: float = DEFAULT_VOLUME


Callback = Optional[Callable[[], None]]


class SpeechOutput(ABC):
    """Text-to-speech with single-slot semantics."""

    name: str = ""

    def __init__(self, settings: VoiceSettings | None = None):
        self.settings = settings or VoiceSettings()
        self._generation = 0
        self._stopped_upto = 0
        self._speaking = False

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    async def speak(
        self,
        text: str,
        on_done: Callback = None,
        on_stopped: Callback = None,
        on_error: Callback = None,
    ) -> Optional[SpeechOutcome]:
        """Speak ``text``. Returns None (and fires nothing) for blank text."""
        clean = strip_emoji(text or "")
        if not clean:
            return None

        self.stop()
        self._generation += 1
        generation = self._generation
        self._speaking = True
        outcome = SpeechOutcome.DONE
        try:
            await self._synthesize(clean, generation)
        except asyncio.CancelledError:
            self._finish(generation)
            if on_stopped:
                on_stopped()
            raise
        except Exception as e:
            logger.warning("%s speech failed: %s", self.name, e)
            outcome = SpeechOutcome.ERROR
        self._finish(generation)

        if self._is_stopped(generation):
            outcome = SpeechOutcome.STOPPED

        callback = {
            SpeechOutcome.DONE: on_done,
            SpeechOutcome.STOPPED: on_stopped,
            SpeechOutcome.ERROR: on_error,
        }[outcome]
        if callback:
            callback()
        return outcome

    def stop(self) -> None:
        """Cancel whatever is being spoken right now."""
        self._stopped_upto = self._generation
        if self._speaking:
            self._cancel()

    def _is_stopped(self, generation: int) -> bool:
        return generation <= self._stopped_upto

    def _finish(self, generation: int) -> None:
        if generation == self._generation:
            self._speaking = False

    @abstractmethod
    async def _synthesize(self, text: str, generation: int) -> None:
        """Speak and return when finished or cancelled; raise on failure.

        ``stop()`` may land before the synthesizer is running, so
        implementations check ``_is_stopped(generation)`` once it is.
        """
        ...

    @abstractmethod
    def _cancel(self) -> None:
        ...


class ProcessSpeechOutput(SpeechOutput):
    """Calls the platform speech service directly: ``say`` or ``espeak-ng``."""

    name = "process"

    def __init__(self, settings: VoiceSettings | None = None, platform: str = sys.platform):
        super().__init__(settings)
        self.platform = platform
        self._process: asyncio.subprocess.Process | None = None

    def find_binary(self) -> Optional[str]:
        candidates = ["say"] if self.platform == "darwin" else ["espeak-ng", "espeak"]
        for name in candidates:
            path = shutil.which(name)
            if path:
                return path
        return None

    def is_available(self) -> bool:
        return self.find_binary() is not None

    def build_command(self, binary: str, text: str) -> list[str]:
        s = self.settings
        if self.platform == "darwin":
            # say: words per minute, default ~175
            return [binary, "-r", str(int(175 * s.rate)), text]
        return [
            binary,
            "-v", s.language.lower(),
            "-s", str(int(175 * s.rate)),
            "-p", str(max(0, min(99, int(50 * s.pitch)))),
            "-a", str(max(0, min(200, int(100 * s.volume)))),
            text,
        ]

    async def _synthesize(self, text: str, generation: int) -> None:
        binary = self.find_binary()
        if binary is None:
            raise SpeechOutputError("No speech synthesizer found (install espeak-ng)")
        process = await asyncio.create_subprocess_exec(
            *self.build_command(binary, text),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        if self._is_stopped(generation):
            # stopped while the process was spawning
            _terminate(process)
        else:
            self._process = process
        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            _terminate(process)
            raise
        finally:
            if self._process is process:
                self._process = None
        if process.returncode != 0 and not self._is_stopped(generation):
            raise SpeechOutputError(stderr.decode(errors="replace").strip() or f"exit {process.returncode}")

    def _cancel(self) -> None:
        if self._process is not None:
            _terminate(self._process)


def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass


class QueuedSpeechOutput(SpeechOutput):
    """pyttsx3 engine speech.

    The engine keeps a FIFO of utterances, so it is cleared before each new
    utterance. The blocking run loop runs in a worker thread.
    """

    name = "queued"

    def __init__(self, settings: VoiceSettings | None = None, engine_factory=None):
        super().__init__(settings)
        self._engine_factory = engine_factory
        self._engine = None
        self._run_lock = asyncio.Lock()

    def _get_engine(self):
        if self._engine is None:
            if self._engine_factory is not None:
                self._engine = self._engine_factory()
            else:
                import pyttsx3

                self._engine = pyttsx3.init()
            self._configure(self._engine)
        return self._engine

    def _configure(self, engine) -> None:
        s = self.settings
        engine.setProperty("rate", int(200 * s.rate))
        engine.setProperty("volume", s.volume)
        wanted = s.language.lower().replace("_", "-")
        for voice in engine.getProperty("voices") or []:
            langs = [
                (lang.decode(errors="ignore") if isinstance(lang, bytes) else str(lang)).lower()
                for lang in (getattr(voice, "languages", None) or [])
            ]
            haystack = " ".join(langs + [str(voice.id).lower(), str(getattr(voice, "name", "")).lower()])
            if wanted in haystack.replace("_", "-"):
                engine.setProperty("voice", voice.id)
                break

    async def _synthesize(self, text: str, generation: int) -> None:
        async with self._run_lock:
            if self._is_stopped(generation):
                return
            engine = self._get_engine()
            engine.stop()
            engine.say(text)
            await asyncio.to_thread(engine.runAndWait)

    def _cancel(self) -> None:
        if self._engine is not None:
            self._engine.stop()
