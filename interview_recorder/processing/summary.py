"""Turn a transcript into a short summary with feedback."""

from __future__ import annotations

import logging
import shutil
from typing import Dict, Optional, Protocol

from ..config import SummarizerSettings
from ..errors import ExternalProcessError
from .runner import CommandRunner, SubprocessRunner


LOGGER = logging.getLogger(__name__)

STAGE = "summarize"


class Summarizer(Protocol):
    def summarize(self, transcript: str, *, deadline: Optional[float] = None) -> str:
        """Return summary and feedback text for *transcript*."""


class CommandSummarizer:
    """Run a local text-generation command and pass the prompt on stdin.

    The transcript never appears on the command line.
    """

    def __init__(self, settings: SummarizerSettings, *, runner: Optional[CommandRunner] = None) -> None:
        if not settings.command:
            raise ValueError("summarizer command is empty")
        self._settings = settings
        self._runner = runner or SubprocessRunner()

    def build_prompt(self, transcript: str) -> str:
        # str.replace keeps braces inside the transcript literal
        return self._settings.prompt.replace("{transcript}", transcript)

    def summarize(self, transcript: str, *, deadline: Optional[float] = None) -> str:
        if not transcript.strip():
            LOGGER.debug("Transcript is empty; skipping summarization")
            return ""
        result = self._runner.run(
            list(self._settings.command),
            stage=STAGE,
            timeout=self._settings.timeout_seconds,
            input_bytes=self.build_prompt(transcript).encode("utf-8"),
            deadline=deadline,
        )
        try:
            summary = result.stdout.decode("utf-8").strip()
        except UnicodeDecodeError as error:
            raise ExternalProcessError("summarizer output is not valid UTF-8", stage=STAGE) from error
        LOGGER.debug("Summarizer produced %d characters", len(summary))
        return summary


def check_summarizer_availability(settings: SummarizerSettings) -> Dict[str, object]:
    if not settings.command:
        return {"supported": False, "message": "No summarizer command configured."}
    binary = shutil.which(settings.command[0])
    if binary is None:
        return {"supported": False, "message": f"Summarizer binary '{settings.command[0]}' not found."}
    return {"supported": True, "message": "Summarizer is available.", "binary": binary}


__all__ = ["CommandSummarizer", "Summarizer", "check_summarizer_availability"]
