"""Push-based recorder: sounddevice callbacks accumulated into chunks."""

from __future__ import annotations

import base64
import logging
import threading
from typing import Optional

import numpy as np

from lilibet.errors import DeviceUnavailable, EmptyRecording, PermissionDenied
from lilibet.recorder.base import (
    AudioPayload,
    PlatformRecorder,
    RecordingConfig,
    is_permission_message,
    pcm_to_wav,
)

logger = logging.getLogger(__name__)

CHUNK_SECONDS = 0.25


class StreamRecorder(PlatformRecorder):
    """Records from a sounddevice input stream into in-memory chunks.

    Chunks are kept in arrival order and joined in that order when the
    payload is built. The payload is a WAV file held in memory.
    """

    platform = "stream"

    def __init__(self, config: RecordingConfig | None = None):
        super().__init__(config)
        self._stream = None
        self._chunks: list[bytes] = []
        # The audio callback must never take self._lock: stop() holds it
        # while the stream drains pending callbacks.
        self._chunk_lock = threading.Lock()
        self._capturing = False
        self._level: float = 0.0

    @property
    def chunks(self) -> tuple[bytes, ...]:
        with self._chunk_lock:
            return tuple(self._chunks)

    @property
    def level(self) -> float:
        return self._level

    def _acquire(self) -> None:
        try:
            from lilibet.devices import _import_sounddevice

            sd = _import_sounddevice()
        except (ImportError, OSError) as e:
            raise DeviceUnavailable(f"Audio capture is not available: {e}") from e

        device = self.config.device
        try:
            sd.query_devices(device, kind="input")
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(f"No input device: {e}") from e

        self._chunks = []
        self._level = 0.0
        blocksize = int(self.config.sample_rate * CHUNK_SECONDS)
        stream = None
        try:
            stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                dtype="int16",
                device=device,
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._capturing = True
            stream.start()
        except sd.PortAudioError as e:
            self._capturing = False
            if stream is not None:
                stream.close()
            if is_permission_message(str(e)):
                raise PermissionDenied(str(e)) from e
            raise DeviceUnavailable(str(e)) from e

        self._stream = stream

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("input stream status: %s", status)
        data = indata.tobytes()
        if not data:
            return
        with self._chunk_lock:
            if not self._capturing:
                return
            self._chunks.append(data)
        peak = float(np.max(np.abs(indata.astype(np.float32)))) / 32768.0
        self._level = peak

    def _finalize(self) -> None:
        # Stopping the stream waits for pending callbacks to drain.
        if self._stream is not None:
            self._stream.stop()

    def _release(self) -> None:
        self._capturing = False
        self._level = 0.0
        if self._stream is not None:
            try:
                self._stream.close()
            finally:
                self._stream = None

    def _build_payload(self) -> AudioPayload:
        with self._chunk_lock:
            pcm = b"".join(self._chunks)
        if not pcm:
            raise EmptyRecording("No audio was captured")
        wav = pcm_to_wav(pcm, self.config.sample_rate, self.config.channels)
        return AudioPayload(
            content=wav,
            content_type="audio/wav",
            filename="recording.wav",
            explicit_content_type=False,
        )

    def get_playable_reference(self) -> Optional[str]:
        """A new ``data:`` URI on every call; do not compare across calls."""
        with self._chunk_lock:
            if not self._chunks:
                return None
            wav = pcm_to_wav(b"".join(self._chunks), self.config.sample_rate, self.config.channels)
        return "data:audio/wav;base64," + base64.b64encode(wav).decode("ascii")

    def discard(self) -> None:
        with self._chunk_lock:
            self._chunks = []
