"""Native recorder: an OS-managed ffmpeg capture writing one .m4a file.

The capture process is opaque; the only thing it exposes is the finished
file. Stopping asks ffmpeg to quit via stdin so the MP4 container is
finalized, escalating to terminate/kill if it does not exit.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from lilibet.errors import DeviceUnavailable, EmptyRecording, PermissionDenied
from lilibet.recorder.base import (
    AudioPayload,
    PlatformRecorder,
    RecordingConfig,
    is_permission_message,
)

logger = logging.getLogger(__name__)

STARTUP_GRACE_SECONDS = 0.5
QUIT_TIMEOUT_SECONDS = 3.0


def capture_input_args(device: Optional[int | str], platform: str = sys.platform) -> list[str]:
    """ffmpeg input arguments for the platform's native capture API."""
    if platform == "darwin":
        return ["-f", "avfoundation", "-i", f":{device if device is not None else 0}"]
    if platform == "win32":
        if device is None:
            raise DeviceUnavailable(
                "Set recording.device to a DirectShow microphone name "
                "(ffmpeg -list_devices true -f dshow -i dummy)."
            )
        return ["-f", "dshow", "-i", f"audio={device}"]
    return ["-f", "pulse", "-i", str(device) if device is not None else "default"]


class NativeRecorder(PlatformRecorder):
    """Records the microphone to an AAC .m4a file via an ffmpeg subprocess."""

    platform = "native"

    def __init__(
        self,
        output_dir: Path,
        config: RecordingConfig | None = None,
        ffmpeg_path: str = "ffmpeg",
    ):
        super().__init__(config)
        self.output_dir = output_dir
        self.ffmpeg_path = ffmpeg_path
        self._process: subprocess.Popen | None = None
        self._output_path: Path | None = None

    @property
    def output_path(self) -> Path | None:
        return self._output_path

    def build_command(self, binary: str, output_path: Path) -> list[str]:
        cmd = [binary, "-hide_banner", "-loglevel", "error"]
        cmd.extend(capture_input_args(self.config.device))
        cmd.extend(["-ac", str(self.config.channels)])
        cmd.extend(["-ar", str(self.config.sample_rate)])
        cmd.extend(["-c:a", "aac", "-b:a", str(self.config.bitrate)])
        cmd.extend(["-y", str(output_path)])
        return cmd

    def _acquire(self) -> None:
        binary = shutil.which(self.ffmpeg_path)
        if binary is None:
            raise DeviceUnavailable(f"{self.ffmpeg_path} was not found on PATH")

        from lilibet.paths import new_recording_path

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = new_recording_path(self.output_dir, ".m4a")
        cmd = self.build_command(binary, output_path)
        logger.debug("starting capture: %s", " ".join(cmd))

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise DeviceUnavailable(str(e)) from e

        # A denied or missing microphone makes ffmpeg exit right away.
        try:
            process.wait(timeout=STARTUP_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            self._process = process
            self._output_path = output_path
            return

        stderr = process.stderr.read().decode(errors="replace") if process.stderr else ""
        self._close_pipes(process)
        output_path.unlink(missing_ok=True)
        message = stderr.strip() or f"ffmpeg exited with code {process.returncode}"
        if is_permission_message(message):
            raise PermissionDenied(message)
        raise DeviceUnavailable(message)

    def _finalize(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.stdin.write(b"q")
            process.stdin.flush()
        except (OSError, ValueError):
            pass
        try:
            process.wait(timeout=QUIT_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg did not quit, terminating")
            process.terminate()
            try:
                process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                pass  # _release kills it

    def _release(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return
        if process.poll() is None:
            process.kill()
            process.wait()
        self._close_pipes(process)

    @staticmethod
    def _close_pipes(process: subprocess.Popen) -> None:
        for pipe in (process.stdin, process.stderr):
            if pipe is not None:
                try:
                    pipe.close()
                except OSError:
                    pass

    def _build_payload(self) -> AudioPayload:
        path = self._output_path
        if path is None or not path.exists() or path.stat().st_size == 0:
            raise EmptyRecording("No audio was captured")
        return AudioPayload(
            content=path.read_bytes(),
            content_type="audio/m4a",
            filename="recording.m4a",
            explicit_content_type=True,
        )

    def get_playable_reference(self) -> Optional[str]:
        path = self._output_path
        if path is None or not path.exists():
            return None
        return str(path)

    def discard(self) -> None:
        if self._output_path is not None:
            self._output_path.unlink(missing_ok=True)
            self._output_path = None
