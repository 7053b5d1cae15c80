"""Configuration loading utilities for the Interview Recorder service."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".interview_recorder_write_check"
_ENV_TOKENS = "INTERVIEW_RECORDER_TOKENS"
_ENV_STORAGE = "INTERVIEW_RECORDER_STORAGE"
_ENV_MAX_UPLOAD_MB = "INTERVIEW_RECORDER_MAX_UPLOAD_MB"

DEFAULT_SUMMARY_PROMPT = (
    "You are an interview coach. Summarize the candidate's answer below in two or "
    "three sentences, then give one short piece of feedback.\n\nAnswer:\n{transcript}\n"
)


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins and the flag reports whether a fallback
    was used. When nothing can be prepared the original ``preferred`` path is
    returned so that bootstrap can report the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _coerce_positive_number(value: Any, *, label: str, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        LOGGER.warning("Invalid %s value %r; using %s.", label, value, default)
        return default
    if number <= 0:
        LOGGER.warning("Non-positive %s value %r; using %s.", label, value, default)
        return default
    return number


@dataclass(frozen=True)
class FFmpegSettings:
    binary: str = "ffmpeg"
    timeout_seconds: float = 120.0


@dataclass(frozen=True)
class TranscriberSettings:
    engine: str = "whisper-cli"
    binary: str = "whisper-cli"
    model: str = "models/ggml-base.en.bin"
    language: Optional[str] = None
    timeout_seconds: float = 300.0


@dataclass(frozen=True)
class SummarizerSettings:
    command: Tuple[str, ...] = ("ollama", "run", "llama3.2")
    prompt: str = DEFAULT_SUMMARY_PROMPT
    timeout_seconds: float = 180.0


@dataclass(frozen=True)
class AppConfig:
    """Immutable runtime settings, loaded once at startup."""

    storage_root: Path
    tokens: FrozenSet[str] = frozenset()
    time_zone: str = "Asia/Bangkok"
    max_questions: int = 5
    max_upload_bytes: int = 50 * 1024 * 1024
    accepted_media_type: str = "video/webm"
    max_concurrent_analyses: int = 2
    analysis_deadline_seconds: float = 600.0
    ffmpeg: FFmpegSettings = field(default_factory=FFmpegSettings)
    transcriber: TranscriberSettings = field(default_factory=TranscriberSettings)
    summarizer: SummarizerSettings = field(default_factory=SummarizerSettings)

    @property
    def incoming_root(self) -> Path:
        """Scratch location for clips submitted for analysis."""

        return (self.storage_root / "_incoming").resolve()

    @property
    def artifact_extension(self) -> str:
        """File extension derived from the accepted media type (``video/webm`` -> ``webm``)."""

        subtype = self.accepted_media_type.split("/", 1)[-1]
        return subtype.split("+", 1)[0].strip().lower() or "bin"

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping.get("storage_root", "storage")).resolve()
        storage_fallback = Path.home() / ".interview_recorder" / "storage"
        storage_root, _ = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        tokens = frozenset(
            str(token).strip() for token in mapping.get("tokens", ()) if str(token).strip()
        )
        if not tokens:
            LOGGER.warning("No access tokens configured; every session request will be rejected.")

        max_upload_mb = _coerce_positive_number(
            mapping.get("max_upload_mb", 50), label="max_upload_mb", default=50.0
        )
        max_questions = int(
            _coerce_positive_number(
                mapping.get("max_questions", 5), label="max_questions", default=5.0
            )
        )
        max_concurrent = int(
            _coerce_positive_number(
                mapping.get("max_concurrent_analyses", 2),
                label="max_concurrent_analyses",
                default=2.0,
            )
        )
        deadline = _coerce_positive_number(
            mapping.get("analysis_deadline_seconds", 600),
            label="analysis_deadline_seconds",
            default=600.0,
        )

        tools: Mapping[str, Any] = mapping.get("tools", {}) or {}
        ffmpeg_raw: Mapping[str, Any] = tools.get("ffmpeg", {}) or {}
        transcriber_raw: Mapping[str, Any] = tools.get("transcriber", {}) or {}
        summarizer_raw: Mapping[str, Any] = tools.get("summarizer", {}) or {}

        ffmpeg = FFmpegSettings(
            binary=str(ffmpeg_raw.get("binary", FFmpegSettings.binary)),
            timeout_seconds=_coerce_positive_number(
                ffmpeg_raw.get("timeout_seconds", FFmpegSettings.timeout_seconds),
                label="tools.ffmpeg.timeout_seconds",
                default=FFmpegSettings.timeout_seconds,
            ),
        )

        model = str(transcriber_raw.get("model", TranscriberSettings.model))
        if transcriber_raw.get("engine", "whisper-cli") == "whisper-cli" and not Path(model).is_absolute():
            model = str((base_path / model).resolve())
        transcriber = TranscriberSettings(
            engine=str(transcriber_raw.get("engine", TranscriberSettings.engine)),
            binary=str(transcriber_raw.get("binary", TranscriberSettings.binary)),
            model=model,
            language=transcriber_raw.get("language") or None,
            timeout_seconds=_coerce_positive_number(
                transcriber_raw.get("timeout_seconds", TranscriberSettings.timeout_seconds),
                label="tools.transcriber.timeout_seconds",
                default=TranscriberSettings.timeout_seconds,
            ),
        )

        command = summarizer_raw.get("command", SummarizerSettings.command)
        if isinstance(command, str):
            raise ValueError("tools.summarizer.command must be a list of arguments, not a string")
        summarizer = SummarizerSettings(
            command=tuple(str(part) for part in command),
            prompt=str(summarizer_raw.get("prompt", DEFAULT_SUMMARY_PROMPT)),
            timeout_seconds=_coerce_positive_number(
                summarizer_raw.get("timeout_seconds", SummarizerSettings.timeout_seconds),
                label="tools.summarizer.timeout_seconds",
                default=SummarizerSettings.timeout_seconds,
            ),
        )

        return cls(
            storage_root=storage_root,
            tokens=tokens,
            time_zone=str(mapping.get("time_zone", "Asia/Bangkok")),
            max_questions=max_questions,
            max_upload_bytes=int(max_upload_mb * 1024 * 1024),
            accepted_media_type=str(mapping.get("accepted_media_type", "video/webm")).lower(),
            max_concurrent_analyses=max_concurrent,
            analysis_deadline_seconds=deadline,
            ffmpeg=ffmpeg,
            transcriber=transcriber,
            summarizer=summarizer,
        )


def _apply_environment(raw_config: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = dict(raw_config)
    tokens = environ.get(_ENV_TOKENS)
    if tokens is not None and tokens.strip():
        merged["tokens"] = [item.strip() for item in tokens.split(",") if item.strip()]
    storage = environ.get(_ENV_STORAGE)
    if storage is not None and storage.strip():
        merged["storage_root"] = storage.strip()
    max_upload = environ.get(_ENV_MAX_UPLOAD_MB)
    if max_upload is not None and max_upload.strip():
        merged["max_upload_mb"] = max_upload.strip()
    return merged


def load_config(
    config_path: Path | None = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load the configuration from ``config/default.json`` by default.

    Environment variables ``INTERVIEW_RECORDER_TOKENS``,
    ``INTERVIEW_RECORDER_STORAGE`` and ``INTERVIEW_RECORDER_MAX_UPLOAD_MB``
    override the file. They are read here and nowhere else.
    """

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    raw_config = _apply_environment(raw_config, os.environ if environ is None else environ)
    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = [
    "AppConfig",
    "DEFAULT_SUMMARY_PROMPT",
    "FFmpegSettings",
    "SummarizerSettings",
    "TranscriberSettings",
    "load_config",
]
