"""Analysis backends for recorded answer clips."""

from .audio import FFmpegAudioExtractor, ffmpeg_available
from .pipeline import AIPipeline, AnalysisResult
from .runner import CommandResult, SubprocessRunner
from .summary import CommandSummarizer, check_summarizer_availability
from .transcription import (
    FasterWhisperTranscription,
    WhisperCliTranscriber,
    build_transcriber,
    check_transcriber_availability,
)

__all__ = [
    "AIPipeline",
    "AnalysisResult",
    "CommandResult",
    "CommandSummarizer",
    "FFmpegAudioExtractor",
    "FasterWhisperTranscription",
    "SubprocessRunner",
    "WhisperCliTranscriber",
    "build_transcriber",
    "check_summarizer_availability",
    "check_transcriber_availability",
    "ffmpeg_available",
]
