"""Speech-to-text via the tutor backend's upload endpoint."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import httpx

from lilibet.client import BackendClient
from lilibet.constants import DEFAULT_TRANSCRIPTION_TIMEOUT
from lilibet.errors import ErrorCode
from lilibet.recorder.base import AudioPayload

logger = logging.getLogger(__name__)

SPEECH_TO_TEXT_PATH = "/api/speech-to-text"


@dataclass(frozen=True)
class TranscriptionResult:
    success: bool
    text: str = ""
    error: Optional[ErrorCode] = None
    detail: str = ""

    @classmethod
    def recognized(cls, text: str) -> TranscriptionResult:
        return cls(success=True, text=text)

    @classmethod
    def failed(cls, error: ErrorCode, detail: str = "") -> TranscriptionResult:
        return cls(success=False, error=error, detail=detail)


class TranscriptionClient(BackendClient):
    """Uploads recorded audio as multipart form data and returns the text.

    Payloads flagged ``explicit_content_type`` get a multipart Content-Type
    header (with our own boundary) written here; the rest leave the header
    to httpx. Every failure comes back as a TranscriptionResult; only
    cancellation propagates.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TRANSCRIPTION_TIMEOUT,
        retries: int = 0,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, token=token, transport=transport)
        self.retries = retries

    async def transcribe(self, payload: AudioPayload) -> TranscriptionResult:
        attempts = 1 + max(0, self.retries)
        result = TranscriptionResult.failed(ErrorCode.TRANSCRIPTION_UNAVAILABLE)
        for attempt in range(attempts):
            result = await self._transcribe_once(payload)
            if result.error is not ErrorCode.TRANSCRIPTION_UNAVAILABLE:
                break
            if attempt < attempts - 1:
                logger.info("transcription unavailable (%s), retrying", result.detail)
        return result

    def build_request(self, payload: AudioPayload) -> httpx.Request:
        extra = {}
        if payload.explicit_content_type:
            boundary = secrets.token_hex(16)
            extra["Content-Type"] = f"multipart/form-data; boundary={boundary}"
        files = {"audio": (payload.filename, payload.content, payload.content_type)}
        return self._client.build_request(
            "POST", SPEECH_TO_TEXT_PATH, files=files, headers=self._headers(extra)
        )

    async def _transcribe_once(self, payload: AudioPayload) -> TranscriptionResult:
        request = self.build_request(payload)
        logger.debug("uploading %s (%d bytes)", payload.filename, payload.size)
        try:
            response = await asyncio.wait_for(self._client.send(request), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return TranscriptionResult.failed(
                ErrorCode.TRANSCRIPTION_UNAVAILABLE, f"timed out after {self.timeout:g}s"
            )
        except httpx.HTTPError as e:
            return TranscriptionResult.failed(ErrorCode.TRANSCRIPTION_UNAVAILABLE, str(e))

        if not response.is_success:
            return TranscriptionResult.failed(
                ErrorCode.TRANSCRIPTION_UNAVAILABLE, f"HTTP {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError:
            return TranscriptionResult.failed(ErrorCode.TRANSCRIPTION_UNAVAILABLE, "invalid JSON response")
        if not isinstance(data, dict):
            return TranscriptionResult.failed(ErrorCode.TRANSCRIPTION_UNAVAILABLE, "invalid JSON response")

        text = data.get("text")
        if not data.get("success") or not isinstance(text, str) or not text.strip():
            return TranscriptionResult.failed(ErrorCode.NO_SPEECH_DETECTED, str(data.get("error", "")))
        return TranscriptionResult.recognized(text.strip())
