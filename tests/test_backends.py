"""Tests for recorder and speech backend selection."""

from unittest.mock import patch

import pytest

from lilibet.backends import (
    create_recorder_factory,
    create_speech_output,
    parse_device,
    resolve_recorder_backend,
    resolve_speech_backend,
)
from lilibet.config import LilibetConfig
from lilibet.recorder import NativeRecorder, StreamRecorder
from lilibet.speech import ProcessSpeechOutput, QueuedSpeechOutput


@pytest.mark.parametrize("value,expected", [
    ("", None),
    ("  ", None),
    ("3", 3),
    ("USB Headset", "USB Headset"),
])
def test_parse_device(value, expected):
    assert parse_device(value) == expected


class TestResolveRecorderBackend:
    def test_explicit_choice_is_kept(self):
        assert resolve_recorder_backend("native") == "native"
        assert resolve_recorder_backend("stream") == "stream"

    def test_auto_prefers_stream_with_input_device(self):
        with patch("lilibet.devices.has_input_device", return_value=True):
            assert resolve_recorder_backend("auto") == "stream"

    def test_auto_falls_back_to_ffmpeg(self):
        with patch("lilibet.devices.has_input_device", return_value=False), \
             patch("lilibet.backends.shutil.which", return_value="/usr/bin/ffmpeg"):
            assert resolve_recorder_backend("auto") == "native"

    def test_auto_with_nothing_available(self):
        with patch("lilibet.devices.has_input_device", return_value=False), \
             patch("lilibet.backends.shutil.which", return_value=None):
            assert resolve_recorder_backend("auto") == "stream"


def test_native_factory_makes_fresh_recorders(tmp_path):
    cfg = LilibetConfig()
    cfg.recording.backend = "native"
    cfg.recording.device = "2"
    cfg.recording.ffmpeg_path = "/opt/ffmpeg"
    factory = create_recorder_factory(cfg, tmp_path)

    first, second = factory(), factory()
    assert isinstance(first, NativeRecorder)
    assert first is not second
    assert first.output_dir == tmp_path / "recordings"
    assert first.ffmpeg_path == "/opt/ffmpeg"
    assert first.config.device == 2


def test_stream_factory(tmp_path):
    cfg = LilibetConfig()
    cfg.recording.backend = "stream"
    cfg.recording.sample_rate = 16000
    recorder = create_recorder_factory(cfg, tmp_path)()
    assert isinstance(recorder, StreamRecorder)
    assert recorder.config.sample_rate == 16000
    assert recorder.config.device is None


class TestSpeechBackend:
    def test_explicit_choice_is_kept(self):
        assert resolve_speech_backend("queued") == "queued"

    def test_auto_uses_process_when_available(self):
        with patch("lilibet.speech.shutil.which", return_value="/usr/bin/espeak-ng"):
            assert resolve_speech_backend("auto", platform="linux") == "process"

    def test_auto_falls_back_to_queued(self):
        with patch("lilibet.speech.shutil.which", return_value=None):
            assert resolve_speech_backend("auto", platform="linux") == "queued"

    def test_create_speech_output_uses_voice_settings(self):
        cfg = LilibetConfig()
        cfg.speech.backend = "queued"
        cfg.speech.rate = 1.0
        speech = create_speech_output(cfg)
        assert isinstance(speech, QueuedSpeechOutput)
        assert speech.settings.rate == 1.0
        assert speech.settings.language == "en-GB"

    def test_create_process_output(self):
        cfg = LilibetConfig()
        cfg.speech.backend = "process"
        assert isinstance(create_speech_output(cfg), ProcessSpeechOutput)
