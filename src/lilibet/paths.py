"""Where lilibet keeps its config and native recordings."""

import os
from datetime import datetime
from pathlib import Path

from platformdirs import user_data_dir

from lilibet.constants import APP_NAME


def get_data_dir(config_override: str = "") -> Path:
    """Resolve the lilibet data directory.

    Priority: config_override > LILIBET_DATA_DIR env var > platform default.
    """
    if config_override:
        return Path(config_override)

    env_dir = os.environ.get("LILIBET_DATA_DIR")
    if env_dir:
        return Path(env_dir)

    return Path(user_data_dir(APP_NAME))


def get_config_path(data_dir: Path) -> Path:
    return data_dir / "config.toml"


def get_recordings_dir(data_dir: Path) -> Path:
    recordings = data_dir / "recordings"
    recordings.mkdir(parents=True, exist_ok=True)
    return recordings


def new_recording_path(recordings_dir: Path, suffix: str = ".m4a") -> Path:
    """Timestamped file name for a native capture: YYYY-MM-DD-HHMMSS-ffffff.m4a."""
    stem = datetime.now().strftime("%Y-%m-%d-%H%M%S-%f")
    return recordings_dir / f"{stem}{suffix}"
