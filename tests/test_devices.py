"""Tests for input device enumeration."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from lilibet.devices import AudioDevice, has_input_device, list_input_devices


MOCK_DEVICES = [
    {
        "name": "Built-in Microphone",
        "max_input_channels": 1,
        "max_output_channels": 0,
        "default_samplerate": 44100.0,
        "hostapi": 0,
    },
    {
        "name": "Built-in Speakers",
        "max_input_channels": 0,
        "max_output_channels": 2,
        "default_samplerate": 44100.0,
        "hostapi": 0,
    },
    {
        "name": "USB Headset",
        "max_input_channels": 2,
        "max_output_channels": 2,
        "default_samplerate": 48000.0,
        "hostapi": 1,
    },
]

MOCK_HOSTAPIS = [
    {"name": "PulseAudio"},
    {"name": "ALSA"},
]


class PortAudioError(Exception):
    pass


def _fake_sd(devices=MOCK_DEVICES, default=(2, 1)):
    return SimpleNamespace(
        query_devices=lambda: devices,
        query_hostapis=lambda: MOCK_HOSTAPIS,
        default=SimpleNamespace(device=default),
    )


def test_lists_only_inputs():
    with patch("lilibet.devices._import_sounddevice", return_value=_fake_sd()):
        devs = list_input_devices()
    assert [d.name for d in devs] == ["Built-in Microphone", "USB Headset"]
    assert [d.index for d in devs] == [0, 2]
    assert devs[1].hostapi == "ALSA"


def test_marks_default_input():
    with patch("lilibet.devices._import_sounddevice", return_value=_fake_sd()):
        devs = list_input_devices()
    assert devs[0].is_default is False
    assert devs[1].is_default is True


def test_no_default_device():
    with patch("lilibet.devices._import_sounddevice", return_value=_fake_sd(default=-1)):
        devs = list_input_devices()
    assert not any(d.is_default for d in devs)


def test_audio_device_dataclass():
    dev = AudioDevice(index=0, name="Mic", max_input_channels=1, default_samplerate=16000.0, hostapi="ALSA")
    assert dev.is_default is False


def test_has_input_device():
    with patch("lilibet.devices._import_sounddevice", return_value=_fake_sd()):
        assert has_input_device() is True
    with patch("lilibet.devices._import_sounddevice", return_value=_fake_sd(devices=MOCK_DEVICES[1:2])):
        assert has_input_device() is False


@pytest.mark.parametrize("error", [OSError("PortAudio library not found"), ImportError("no module")])
def test_has_input_device_without_portaudio(error):
    with patch("lilibet.devices._import_sounddevice", side_effect=error):
        assert has_input_device() is False


def test_has_input_device_portaudio_error():
    with patch("lilibet.devices._import_sounddevice", side_effect=PortAudioError("host error")):
        assert has_input_device() is False


def test_has_input_device_other_errors_propagate():
    with patch("lilibet.devices._import_sounddevice", side_effect=RuntimeError("bug")):
        with pytest.raises(RuntimeError):
            has_input_device()


def test_import_sounddevice_missing():
    from lilibet import devices

    with patch.dict("sys.modules", {"sounddevice": None}):
        with pytest.raises(ImportError):
            devices._import_sounddevice()
