"""Microphone capture behind one recorder interface."""

from lilibet.recorder.base import (
    AudioPayload,
    PlatformRecorder,
    RecorderState,
    RecordingConfig,
)
from lilibet.recorder.mock_recorder import MockRecorder
from lilibet.recorder.native_recorder import NativeRecorder
from lilibet.recorder.stream_recorder import StreamRecorder

__all__ = [
    "AudioPayload",
    "PlatformRecorder",
    "RecorderState",
    "RecordingConfig",
    "MockRecorder",
    "NativeRecorder",
    "StreamRecorder",
]
