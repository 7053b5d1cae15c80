"""Offline speech recognition backends."""

from __future__ import annotations

import logging
import re
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..config import TranscriberSettings
from ..errors import ExternalProcessError
from .runner import CommandRunner, SubprocessRunner


LOGGER = logging.getLogger(__name__)

STAGE = "transcribe"

_SEGMENT_PATTERN = re.compile(
    r"^\[(\d+):(\d+):(\d+\.\d+)\s+-->\s+(\d+):(\d+):(\d+\.\d+)\]\s*(.*)$"
)


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path, *, deadline: Optional[float] = None) -> str:
        """Return the transcript text for *audio_path*."""


def _clean_transcript(raw: str) -> str:
    lines = []
    for raw_line in raw.splitlines():
        line = raw_line.strip()
        match = _SEGMENT_PATTERN.match(line)
        if match:
            line = match.group(7).strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


class WhisperCliTranscriber:
    """Run a whisper.cpp style command line binary and read the transcript from stdout."""

    def __init__(self, settings: TranscriberSettings, *, runner: Optional[CommandRunner] = None) -> None:
        self._settings = settings
        self._runner = runner or SubprocessRunner()

    def build_command(self, audio_path: Path) -> list[str]:
        command = [
            self._settings.binary,
            "-m",
            self._settings.model,
            "-f",
            str(audio_path),
            "-nt",
            "-np",
        ]
        if self._settings.language:
            command.extend(["-l", self._settings.language])
        return command

    def transcribe(self, audio_path: Path, *, deadline: Optional[float] = None) -> str:
        LOGGER.debug("Starting CLI transcription for %s", audio_path)
        result = self._runner.run(
            self.build_command(audio_path),
            stage=STAGE,
            timeout=self._settings.timeout_seconds,
            deadline=deadline,
        )
        try:
            text = result.stdout.decode("utf-8")
        except UnicodeDecodeError as error:
            raise ExternalProcessError("transcriber output is not valid UTF-8", stage=STAGE) from error
        transcript = _clean_transcript(text)
        LOGGER.debug("Transcription produced %d characters", len(transcript))
        return transcript


class FasterWhisperTranscription:
    """In-process transcription backed by :mod:`faster_whisper`.

    The deadline is checked between decoded segments; there is no external
    process to kill.
    """

    def __init__(
        self,
        settings: TranscriberSettings,
        *,
        compute_type: str = "int8",
        beam_size: int = 5,
        model: Any = None,
    ) -> None:
        self._settings = settings
        self._beam_size = beam_size
        if model is None:
            try:
                from faster_whisper import WhisperModel
            except ImportError as exc:  # pragma: no cover - exercised in runtime, not tests
                raise RuntimeError("faster-whisper is not installed") from exc
            model = WhisperModel(settings.model, device="cpu", compute_type=compute_type)
            LOGGER.debug("Loaded faster_whisper model '%s'", settings.model)
        self._model = model

    def transcribe(self, audio_path: Path, *, deadline: Optional[float] = None) -> str:
        LOGGER.debug("Invoking faster_whisper model for %s", audio_path)
        try:
            segments, _info = self._model.transcribe(
                str(audio_path),
                beam_size=self._beam_size,
                language=self._settings.language,
            )
            lines = []
            for segment in segments:
                if deadline is not None and time.monotonic() > deadline:
                    raise ExternalProcessError("transcription exceeded the analysis deadline", stage=STAGE)
                cleaned = segment.text.strip()
                if cleaned:
                    lines.append(cleaned)
        except ExternalProcessError:
            raise
        except Exception as error:  # noqa: BLE001 - engine errors are reported as stage failures
            raise ExternalProcessError(f"transcription engine failed: {error}", stage=STAGE) from error
        return "\n".join(lines)


def build_transcriber(settings: TranscriberSettings, *, runner: Optional[CommandRunner] = None) -> Transcriber:
    engine = settings.engine.lower()
    if engine == "whisper-cli":
        return WhisperCliTranscriber(settings, runner=runner)
    if engine == "faster-whisper":
        return FasterWhisperTranscription(settings)
    raise ValueError(f"Unknown transcriber engine '{settings.engine}'")


def check_transcriber_availability(settings: TranscriberSettings) -> Dict[str, object]:
    """Return diagnostic information about the configured transcriber."""

    if settings.engine.lower() == "faster-whisper":
        try:
            import faster_whisper  # noqa: F401
        except ImportError:
            return {"supported": False, "message": "faster-whisper is not installed."}
        return {"supported": True, "message": "faster-whisper is installed.", "model": settings.model}

    binary = shutil.which(settings.binary)
    if binary is None:
        return {"supported": False, "message": f"Transcriber binary '{settings.binary}' not found."}
    if not Path(settings.model).exists():
        return {
            "supported": False,
            "message": f"Transcriber model not found at {settings.model}.",
            "binary": binary,
        }
    return {"supported": True, "message": "Transcriber is available.", "binary": binary, "model": settings.model}


__all__ = [
    "FasterWhisperTranscription",
    "Transcriber",
    "WhisperCliTranscriber",
    "build_transcriber",
    "check_transcriber_availability",
]
