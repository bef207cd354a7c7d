"""Pick the recorder and speech backends for this machine, once, at startup."""

from __future__ import annotations

import logging
import shutil
import sys
from functools import partial
from pathlib import Path
from typing import Callable, Optional

from lilibet.config import LilibetConfig
from lilibet.recorder.base import PlatformRecorder, RecordingConfig
from lilibet.speech import ProcessSpeechOutput, QueuedSpeechOutput, SpeechOutput, VoiceSettings

logger = logging.getLogger(__name__)

RecorderFactory = Callable[[], PlatformRecorder]


def parse_device(value: str) -> Optional[int | str]:
    """Config stores devices as strings; numeric ones are PortAudio indices."""
    value = (value or "").strip()
    if not value:
        return None
    return int(value) if value.isdigit() else value


def resolve_recorder_backend(requested: str, ffmpeg_path: str = "ffmpeg") -> str:
    """Map ``auto`` to a concrete recorder backend.

    Prefers the sounddevice stream when PortAudio sees an input device,
    then an ffmpeg native capture. With neither, falls back to ``stream``
    so that ``start()`` reports the missing device.
    """
    if requested != "auto":
        return requested

    from lilibet.devices import has_input_device

    if has_input_device():
        return "stream"
    if shutil.which(ffmpeg_path):
        return "native"
    return "stream"


def create_recorder_factory(cfg: LilibetConfig, data_dir: Path) -> RecorderFactory:
    """A zero-argument callable producing a fresh recorder per session."""
    from lilibet.paths import get_recordings_dir
    from lilibet.recorder.native_recorder import NativeRecorder
    from lilibet.recorder.stream_recorder import StreamRecorder

    rec_config = RecordingConfig(
        sample_rate=cfg.recording.sample_rate,
        channels=cfg.recording.channels,
        bitrate=cfg.recording.bitrate,
        device=parse_device(cfg.recording.device),
    )
    backend = resolve_recorder_backend(cfg.recording.backend, cfg.recording.ffmpeg_path)
    logger.debug("recorder backend: %s", backend)

    if backend == "native":
        return partial(
            NativeRecorder,
            get_recordings_dir(data_dir),
            rec_config,
            ffmpeg_path=cfg.recording.ffmpeg_path,
        )
    return partial(StreamRecorder, rec_config)


def resolve_speech_backend(requested: str, platform: str = sys.platform) -> str:
    """Map ``auto`` to ``process`` when say/espeak exists, else ``queued``."""
    if requested != "auto":
        return requested
    if ProcessSpeechOutput(platform=platform).is_available():
        return "process"
    return "queued"


def create_speech_output(cfg: LilibetConfig) -> SpeechOutput:
    settings = VoiceSettings(
        language=cfg.speech.language,
        pitch=cfg.speech.pitch,
        rate=cfg.speech.rate,
        volume=cfg.speech.volume,
    )
    backend = resolve_speech_backend(cfg.speech.backend)
    logger.debug("speech backend: %s", backend)
    if backend == "process":
        return ProcessSpeechOutput(settings)
    return QueuedSpeechOutput(settings)
