"""Microphone discovery for the stream recorder and the ``devices`` command."""

from __future__ import annotations

from dataclasses import dataclass

_LIBSTDCXX_HINT = (
    "PortAudio could not be loaded because another libstdc++ shadows the system one "
    "(common inside conda environments). Try:\n"
    "  LD_PRELOAD=/lib/x86_64-linux-gnu/libstdc++.so.6 lilibet devices"
)


@dataclass
class AudioDevice:
    index: int
    name: str
    max_input_channels: int
    default_samplerate: float
    hostapi: str
    is_default: bool = False


def _import_sounddevice():
    try:
        import sounddevice
    except OSError as e:
        message = str(e)
        if "GLIBCXX" in message or "libstdc++" in message:
            raise OSError(_LIBSTDCXX_HINT) from e
        raise
    return sounddevice


def _default_input_index(sd) -> int | None:
    device = sd.default.device
    if isinstance(device, (list, tuple)):
        device = device[0]
    if device is None or device < 0:
        return None
    return device


def _hostapi_name(hostapis, index: int) -> str:
    return hostapis[index]["name"] if 0 <= index < len(hostapis) else ""


def list_input_devices() -> list[AudioDevice]:
    """Return every PortAudio device with at least one input channel."""
    sd = _import_sounddevice()
    hostapis = sd.query_hostapis()
    default = _default_input_index(sd)
    return [
        AudioDevice(
            index=index,
            name=info["name"],
            max_input_channels=info["max_input_channels"],
            default_samplerate=info["default_samplerate"],
            hostapi=_hostapi_name(hostapis, info["hostapi"]),
            is_default=index == default,
        )
        for index, info in enumerate(sd.query_devices())
        if info["max_input_channels"] > 0
    ]


def has_input_device() -> bool:
    try:
        return len(list_input_devices()) > 0
    except (ImportError, OSError):
        return False
    except Exception as e:
        # PortAudioError can only be imported once PortAudio has loaded
        if type(e).__name__ != "PortAudioError":
            raise
        return False
