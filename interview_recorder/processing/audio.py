"""Extract a speech-recognition friendly waveform from an answer clip."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol

from ..config import FFmpegSettings
from ..errors import ExternalProcessError
from .runner import CommandRunner, SubprocessRunner


LOGGER = logging.getLogger(__name__)

SAMPLE_RATE = 16_000
CHANNELS = 1


class AudioExtractor(Protocol):
    def extract(self, clip_path: Path, destination: Path, *, deadline: Optional[float] = None) -> Path:
        """Write a mono 16 kHz WAV for *clip_path* to *destination* and return it."""


class FFmpegAudioExtractor:
    """Transcode the audio track of a clip to 16-bit PCM, mono, 16 kHz."""

    stage = "extract"

    def __init__(self, settings: FFmpegSettings, *, runner: Optional[CommandRunner] = None) -> None:
        self._settings = settings
        self._runner = runner or SubprocessRunner()

    def build_command(self, clip_path: Path, destination: Path) -> list[str]:
        return [
            self._settings.binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(clip_path),
            "-vn",
            "-ac",
            str(CHANNELS),
            "-ar",
            str(SAMPLE_RATE),
            "-c:a",
            "pcm_s16le",
            str(destination),
        ]

    def extract(self, clip_path: Path, destination: Path, *, deadline: Optional[float] = None) -> Path:
        LOGGER.debug("Extracting audio from %s into %s", clip_path, destination)
        if not clip_path.is_file():
            raise ExternalProcessError(f"clip {clip_path.name} does not exist", stage=self.stage)
        destination.parent.mkdir(parents=True, exist_ok=True)
        self._runner.run(
            self.build_command(clip_path, destination),
            stage=self.stage,
            timeout=self._settings.timeout_seconds,
            deadline=deadline,
        )
        if not destination.is_file() or destination.stat().st_size == 0:
            raise ExternalProcessError("ffmpeg produced no audio output", stage=self.stage)
        LOGGER.debug("Audio extraction succeeded; waveform stored at %s", destination)
        return destination


def ffmpeg_available(settings: FFmpegSettings) -> bool:
    """Return ``True`` when the configured FFmpeg binary can be resolved."""

    return shutil.which(settings.binary) is not None


__all__ = ["AudioExtractor", "CHANNELS", "FFmpegAudioExtractor", "SAMPLE_RATE", "ffmpeg_available"]
