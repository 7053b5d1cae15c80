"""Clip analysis: audio extraction, transcription, summarization and cleanup."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from ..config import AppConfig
from ..errors import ExternalProcessError
from ..services.events import emit_file_event, emit_pipeline_event
from .audio import AudioExtractor, FFmpegAudioExtractor
from .runner import CommandRunner
from .summary import CommandSummarizer, Summarizer
from .transcription import Transcriber, build_transcriber


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AnalysisResult:
    transcript: str
    summary: str


class AIPipeline:
    """Run extract → transcribe → summarize for one clip and always clean up.

    Intermediate files are registered before the stage that creates them
    runs, so a stage that fails halfway still has its output removed. Each
    registered file is discarded exactly once.
    """

    def __init__(
        self,
        extractor: AudioExtractor,
        transcriber: Transcriber,
        summarizer: Summarizer,
        *,
        work_dir: Path,
    ) -> None:
        self._extractor = extractor
        self._transcriber = transcriber
        self._summarizer = summarizer
        self._work_dir = Path(work_dir)

    @classmethod
    def from_config(cls, config: AppConfig, *, runner: Optional[CommandRunner] = None) -> "AIPipeline":
        return cls(
            FFmpegAudioExtractor(config.ffmpeg, runner=runner),
            build_transcriber(config.transcriber, runner=runner),
            CommandSummarizer(config.summarizer, runner=runner),
            work_dir=config.incoming_root,
        )

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def _run_stage(self, stage: str, operation: Callable[[], T]) -> T:
        emit_pipeline_event(f"{stage} started", level=logging.DEBUG)
        start = time.perf_counter()
        try:
            result = operation()
        except ExternalProcessError as error:
            emit_pipeline_event(
                f"{stage} failed",
                payload={"error": error.message},
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.WARNING,
            )
            raise
        except Exception as error:  # noqa: BLE001 - any stage failure becomes a typed error
            LOGGER.exception("Unexpected failure during %s", stage)
            raise ExternalProcessError(f"{stage} failed: {error}", stage=stage) from error
        emit_pipeline_event(
            f"{stage} finished", duration_ms=(time.perf_counter() - start) * 1000.0
        )
        return result

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            LOGGER.warning("Could not remove intermediate file %s: %s", path, error)
        else:
            emit_file_event("Removed intermediate file", payload={"path": path}, level=logging.DEBUG)

    def run(
        self,
        clip_path: Path,
        *,
        remove_clip: bool = True,
        deadline: Optional[float] = None,
    ) -> AnalysisResult:
        """Analyse *clip_path* and return its transcript and summary.

        *deadline* is a :func:`time.monotonic` timestamp shared by all stages.
        The first failing stage stops the run with :class:`ExternalProcessError`.
        """

        clip_path = Path(clip_path)
        created: List[Path] = []
        if remove_clip:
            created.append(clip_path)
        try:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            waveform = self._work_dir / f"{clip_path.stem}-{uuid.uuid4().hex[:8]}.wav"
            created.append(waveform)
            self._run_stage(
                "extract",
                lambda: self._extractor.extract(clip_path, waveform, deadline=deadline),
            )
            transcript = self._run_stage(
                "transcribe",
                lambda: self._transcriber.transcribe(waveform, deadline=deadline),
            )
            summary = self._run_stage(
                "summarize",
                lambda: self._summarizer.summarize(transcript, deadline=deadline),
            )
        finally:
            for path in dict.fromkeys(created):
                self._discard(path)
        LOGGER.info("Analysed %s (%d transcript characters)", clip_path.name, len(transcript))
        return AnalysisResult(transcript=transcript, summary=summary)


__all__ = ["AIPipeline", "AnalysisResult"]
