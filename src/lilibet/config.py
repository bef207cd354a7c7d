"""User settings stored as TOML in the data directory."""

from __future__ import annotations

import os
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from lilibet.constants import (
    DEFAULT_BITRATE,
    DEFAULT_CHANNELS,
    DEFAULT_LANGUAGE,
    DEFAULT_MODEL,
    DEFAULT_PITCH,
    DEFAULT_RATE,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_TRANSCRIPTION_TIMEOUT,
    DEFAULT_VOLUME,
    DEV_SERVER_URL,
    PRODUCTION_SERVER_URL,
    VALID_MODELS,
    VALID_RECORDER_BACKENDS,
    VALID_SPEECH_BACKENDS,
)


@dataclass
class ServerConfig:
    """Where the tutor backend lives.

    ``base_url`` wins when set; otherwise ``is_development`` picks between
    ``dev_url`` and ``production_url``.
    """
    base_url: str = ""
    is_development: bool = False
    dev_url: str = DEV_SERVER_URL
    production_url: str = PRODUCTION_SERVER_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def resolve_base_url(self) -> str:
        env_url = os.environ.get("LILIBET_SERVER_URL")
        if env_url:
            return env_url.rstrip("/")
        if self.base_url:
            return self.base_url.rstrip("/")
        url = self.dev_url if self.is_development else self.production_url
        return url.rstrip("/")


@dataclass
class RecordingSettings:
    backend: str = "auto"
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    bitrate: int = DEFAULT_BITRATE
    device: str = ""
    ffmpeg_path: str = "ffmpeg"


@dataclass
class TranscriptionSettings:
    timeout: float = DEFAULT_TRANSCRIPTION_TIMEOUT
    retries: int = 0


@dataclass
class SpeechSettings:
    backend: str = "auto"
    enabled: bool = False
    language: str = DEFAULT_LANGUAGE
    pitch: float = DEFAULT_PITCH
    rate: float = DEFAULT_RATE
    volume: float = DEFAULT_VOLUME


@dataclass
class ChatSettings:
    model: str = DEFAULT_MODEL
    display_name: str = ""


@dataclass
class StorageSettings:
    data_dir: str = ""


@dataclass
class LilibetConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    recording: RecordingSettings = field(default_factory=RecordingSettings)
    transcription: TranscriptionSettings = field(default_factory=TranscriptionSettings)
    speech: SpeechSettings = field(default_factory=SpeechSettings)
    chat: ChatSettings = field(default_factory=ChatSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @classmethod
    def load(cls, config_path: Path | None = None) -> LilibetConfig:
        """Read ``config_path`` over the defaults. Unknown keys are ignored."""
        config = cls()
        if config_path is None or not config_path.is_file():
            return config

        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        for section_name, values in data.items():
            section = getattr(config, section_name, None)
            if section is None or not isinstance(values, dict):
                continue
            known = {f.name for f in fields(section)}
            for name, value in values.items():
                if name in known:
                    setattr(section, name, value)
        return config

    def save(self, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(tomli_w.dumps(self.as_dict()), encoding="utf-8")

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return asdict(self)

    def get(self, key: str) -> Any:
        """Look up a dotted key such as ``server.base_url``."""
        section, name = self._lookup(key)
        return getattr(section, name)

    def set(self, key: str, value: Any) -> None:
        """Assign a dotted key, converting strings to the field's type."""
        section, name = self._lookup(key)
        value = _coerce_value(value, getattr(section, name), key)
        _validate_value(key, value)
        setattr(section, name, value)

    def _lookup(self, key: str) -> tuple[Any, str]:
        section_name, dot, name = key.partition(".")
        if not dot or not name:
            raise KeyError(f"Invalid key format: {key!r}. Use 'section.key' (e.g., 'server.base_url')")
        if section_name not in {f.name for f in fields(self)}:
            raise KeyError(f"Unknown config section: {section_name!r}")
        section = getattr(self, section_name)
        if name not in {f.name for f in fields(section)}:
            raise KeyError(f"Unknown config key: {key!r}")
        return section, name


_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def _coerce_value(value: Any, current: Any, key: str) -> Any:
    """Convert command-line strings to the type of the field they replace."""
    if not isinstance(value, str) or isinstance(current, str):
        return value
    text = value.strip().lower()
    if isinstance(current, bool):
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"Cannot convert {value!r} to bool for key {key!r}")
    convert = int if isinstance(current, int) else float if isinstance(current, float) else None
    if convert is None:
        return value
    try:
        return convert(text)
    except ValueError:
        raise ValueError(f"Cannot convert {value!r} for key {key!r}") from None


_CHOICES = {
    "recording.backend": ("recorder backend", VALID_RECORDER_BACKENDS),
    "speech.backend": ("speech backend", VALID_SPEECH_BACKENDS),
    "chat.model": ("model", VALID_MODELS),
}

_POSITIVE = frozenset({
    "recording.sample_rate",
    "recording.channels",
    "recording.bitrate",
    "transcription.timeout",
    "server.request_timeout",
})


def _validate_value(key: str, value: Any) -> None:
    if key in _CHOICES:
        label, choices = _CHOICES[key]
        if value not in choices:
            raise ValueError(f"Invalid {label}: {value!r}. Choose from: {', '.join(choices)}")
    elif key in _POSITIVE and value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    elif key == "transcription.retries" and value < 0:
        raise ValueError(f"retries must be >= 0, got {value}")
    elif key == "speech.volume" and not 0.0 <= value <= 1.0:
        raise ValueError(f"volume must be between 0.0 and 1.0, got {value}")
