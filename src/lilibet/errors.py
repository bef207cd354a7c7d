"""Error codes, user-facing messages and the exception hierarchy."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
    EMPTY_RECORDING = "EMPTY_RECORDING"
    NO_SPEECH_DETECTED = "NO_SPEECH_DETECTED"
    TRANSCRIPTION_UNAVAILABLE = "TRANSCRIPTION_UNAVAILABLE"
    SPEECH_OUTPUT_ERROR = "SPEECH_OUTPUT_ERROR"


ERROR_MESSAGES = {
    ErrorCode.PERMISSION_DENIED: "Please allow microphone access to use voice input.",
    ErrorCode.DEVICE_UNAVAILABLE: "No microphone was found on this device.",
    ErrorCode.EMPTY_RECORDING: "Nothing was recorded. Hold the button a little longer.",
    ErrorCode.NO_SPEECH_DETECTED: "I didn't catch that. Please try speaking again.",
    ErrorCode.TRANSCRIPTION_UNAVAILABLE: "Voice input is unavailable right now. Please try again.",
    ErrorCode.SPEECH_OUTPUT_ERROR: "Couldn't read the reply aloud.",
}

# Errors the user can fix by simply trying again.
RETRYABLE = frozenset({
    ErrorCode.EMPTY_RECORDING,
    ErrorCode.NO_SPEECH_DETECTED,
    ErrorCode.TRANSCRIPTION_UNAVAILABLE,
})


def user_message(code: ErrorCode) -> str:
    return ERROR_MESSAGES[code]


class LilibetError(Exception):
    """Base class for all errors raised by lilibet."""


class VoiceError(LilibetError):
    """An error in the voice pipeline, tagged with an ErrorCode."""

    code: ErrorCode = ErrorCode.TRANSCRIPTION_UNAVAILABLE

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(detail or ERROR_MESSAGES[self.code])

    @property
    def user_message(self) -> str:
        return ERROR_MESSAGES[self.code]


class PermissionDenied(VoiceError):
    code = ErrorCode.PERMISSION_DENIED


class DeviceUnavailable(VoiceError):
    code = ErrorCode.DEVICE_UNAVAILABLE


class EmptyRecording(VoiceError):
    code = ErrorCode.EMPTY_RECORDING


class NoSpeechDetected(VoiceError):
    code = ErrorCode.NO_SPEECH_DETECTED


class TranscriptionUnavailable(VoiceError):
    code = ErrorCode.TRANSCRIPTION_UNAVAILABLE


class SpeechOutputError(VoiceError):
    code = ErrorCode.SPEECH_OUTPUT_ERROR


class RecorderBusy(LilibetError):
    """The recorder is in the wrong state for the requested operation."""


class SessionBusy(LilibetError):
    """A recording session is already active on this surface."""


class BackendError(LilibetError):
    """The tutor backend returned an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NotAuthenticated(BackendError):
    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, status_code=None)
