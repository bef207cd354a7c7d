"""Shared test fixtures."""

import json

import httpx
import numpy as np
import pytest

from lilibet.transcriber import TranscriptionResult


@pytest.fixture
def tmp_data_dir(tmp_path, monkeypatch):
    """Point lilibet at a temporary data directory."""
    monkeypatch.setenv("LILIBET_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("LILIBET_SERVER_URL", raising=False)
    (tmp_path / "recordings").mkdir()
    return tmp_path


def tone(duration: float = 1.0, sample_rate: int = 16000, freq: float = 440.0) -> np.ndarray:
    """A sine tone as int16 PCM."""
    t = np.linspace(0, duration, int(duration * sample_rate), endpoint=False)
    return (np.sin(2 * np.pi * freq * t) * 16000).astype(np.int16)


def json_response(data, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data).encode(),
                          headers={"Content-Type": "application/json"})


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def record(request):
            request.read()
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


class FakeTranscriber:
    """Stands in for TranscriptionClient in session and chat tests."""

    def __init__(self, result=None, gate=None, error=None):
        self.result = result or TranscriptionResult.recognized("What is 2+2?")
        self.gate = gate
        self.error = error
        self.payloads = []
        self.closed = False
        self.token = None

    async def transcribe(self, payload):
        self.payloads.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self):
        self.closed = True


class FakeEngine:
    """Minimal pyttsx3 engine."""

    def __init__(self, voices=None, fail=False):
        self.properties = {"voices": voices or []}
        self.said: list[str] = []
        self.stop_calls = 0
        self.fail = fail

    def getProperty(self, name):
        return self.properties.get(name)

    def setProperty(self, name, value):
        self.properties[name] = value

    def say(self, text):
        self.said.append(text)

    def runAndWait(self):
        if self.fail:
            raise RuntimeError("driver error")

    def stop(self):
        self.stop_calls += 1


@pytest.fixture
def mock_transport():
    return RecordingTransport


@pytest.fixture
def make_tone():
    return tone


@pytest.fixture
def make_json_response():
    return json_response


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber


@pytest.fixture
def fake_engine():
    return FakeEngine
