"""Platform recorder capability and shared data types."""

from __future__ import annotations

import io
import logging
import threading
import time
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from lilibet.constants import DEFAULT_BITRATE, DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE
from lilibet.errors import RecorderBusy

logger = logging.getLogger(__name__)


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"


@dataclass
class RecordingConfig:
    """Capture parameters shared by every recorder variant."""
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    bitrate: int = DEFAULT_BITRATE
    device: Optional[int | str] = None


@dataclass(frozen=True)
class AudioPayload:
    """A finished recording, ready for multipart upload.

    ``explicit_content_type`` tells the uploader whether it must write the
    multipart Content-Type header itself or leave it to the HTTP client.
    """
    content: bytes
    content_type: str
    filename: str
    explicit_content_type: bool = False

    @property
    def size(self) -> int:
        return len(self.content)


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int, sample_width: int = 2) -> bytes:
    """Wrap raw little-endian PCM in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


class PlatformRecorder(ABC):
    """One microphone capture, from ``start()`` to a finished payload.

    Subclasses implement ``_acquire`` (open the device, raising
    PermissionDenied or DeviceUnavailable), ``_finalize`` (flush the capture)
    and ``_release`` (give the device back). The base class guarantees that
    ``_release`` runs exactly once per successful ``_acquire``, even when
    ``_finalize`` raises, and that ``stop()`` is idempotent.
    """

    platform: str = ""

    def __init__(self, config: RecordingConfig | None = None):
        self.config = config or RecordingConfig()
        self._state = RecorderState.IDLE
        self._start_time: float | None = None
        self._stop_time: float | None = None
        self._lock = threading.RLock()
        self.acquire_count = 0
        self.release_count = 0

    @property
    def state(self) -> RecorderState:
        return self._state

    def start(self) -> None:
        """Open the microphone and begin capturing."""
        with self._lock:
            if self._state is RecorderState.RECORDING:
                raise RecorderBusy("Already recording")
            self._acquire()
            self.acquire_count += 1
            self._state = RecorderState.RECORDING
            self._start_time = time.monotonic()
            self._stop_time = None
            logger.debug("%s recorder started", self.platform)

    def stop(self) -> None:
        """Finalize the capture and release the device. Safe to call twice."""
        with self._lock:
            if self._state is not RecorderState.RECORDING:
                return
            self._state = RecorderState.STOPPED
            self._stop_time = time.monotonic()
            try:
                self._finalize()
            finally:
                self._release()
                self.release_count += 1
                logger.debug("%s recorder released", self.platform)

    def get_upload_payload(self) -> AudioPayload:
        """The captured audio as a named, typed payload.

        Raises EmptyRecording when nothing was captured.
        """
        with self._lock:
            if self._state is RecorderState.RECORDING:
                raise RecorderBusy("Stop the recording before reading it")
            return self._build_payload()

    @abstractmethod
    def get_playable_reference(self) -> Optional[str]:
        """A locally dereferenceable pointer to the audio, or None if empty."""
        ...

    def discard(self) -> None:
        """Drop any captured audio held by this recorder."""

    def is_recording(self) -> bool:
        return self._state is RecorderState.RECORDING

    @property
    def elapsed_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        end = self._stop_time if self._stop_time is not None else time.monotonic()
        return end - self._start_time

    @property
    def level(self) -> float:
        """Current input level (0.0 to 1.0)."""
        return 0.0

    @abstractmethod
    def _acquire(self) -> None:
        ...

    @abstractmethod
    def _finalize(self) -> None:
        ...

    @abstractmethod
    def _release(self) -> None:
        ...

    @abstractmethod
    def _build_payload(self) -> AudioPayload:
        ...


_PERMISSION_MARKERS = (
    "permission denied",
    "not authorized",
    "not permitted",
    "access denied",
    "access is denied",
)


def is_permission_message(message: str) -> bool:
    """Heuristic: does a device error message describe a denied permission?"""
    low = message.lower()
    return any(marker in low for marker in _PERMISSION_MARKERS)
