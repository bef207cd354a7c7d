"""Mock recorder for testing without audio hardware."""

from __future__ import annotations

import base64
from typing import Optional

import numpy as np

from lilibet.errors import EmptyRecording
from lilibet.recorder.base import AudioPayload, PlatformRecorder, RecordingConfig, pcm_to_wav


class MockRecorder(PlatformRecorder):
    """A recorder that "captures" pre-loaded audio for deterministic testing."""

    platform = "mock"

    def __init__(
        self,
        audio_data: np.ndarray | None = None,
        duration: float = 1.0,
        config: RecordingConfig | None = None,
        error: Exception | None = None,
        chunk_seconds: float = 0.25,
    ):
        """Initialize with audio data or generate silence.

        Args:
            audio_data: Pre-loaded PCM data (int16). If None, generates silence.
            duration: Duration in seconds if generating silence. Zero captures nothing.
            error: Raised from ``start()`` instead of acquiring, e.g. PermissionDenied().
            chunk_seconds: Size of the simulated callback chunks.
        """
        super().__init__(config or RecordingConfig(sample_rate=16000))
        self._audio_data = audio_data
        self._default_duration = duration
        self._error = error
        self._chunk_seconds = chunk_seconds
        self._chunks: list[bytes] = []
        self.device_open = False

    @property
    def chunks(self) -> tuple[bytes, ...]:
        return tuple(self._chunks)

    def _acquire(self) -> None:
        if self._error is not None:
            raise self._error
        self.device_open = True

        if self._audio_data is not None:
            audio = self._audio_data.astype(np.int16)
        else:
            num_samples = int(self._default_duration * self.config.sample_rate)
            audio = np.zeros(num_samples * self.config.channels, dtype=np.int16)

        step = max(1, int(self._chunk_seconds * self.config.sample_rate) * self.config.channels)
        self._chunks = [audio[i:i + step].tobytes() for i in range(0, len(audio), step)]

    def _finalize(self) -> None:
        pass

    def _release(self) -> None:
        self.device_open = False

    def _build_payload(self) -> AudioPayload:
        if not self._chunks:
            raise EmptyRecording("No audio was captured")
        wav = pcm_to_wav(b"".join(self._chunks), self.config.sample_rate, self.config.channels)
        return AudioPayload(content=wav, content_type="audio/wav", filename="recording.wav")

    def get_playable_reference(self) -> Optional[str]:
        if not self._chunks:
            return None
        wav = pcm_to_wav(b"".join(self._chunks), self.config.sample_rate, self.config.channels)
        return "data:audio/wav;base64," + base64.b64encode(wav).decode("ascii")

    def discard(self) -> None:
        self._chunks = []
