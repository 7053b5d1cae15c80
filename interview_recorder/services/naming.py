"""Helpers for session folder names, clip names and question indices."""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Optional

import pytz

__all__ = [
    "DEFAULT_NAME",
    "artifact_name",
    "build_session_folder_name",
    "clamp_question_index",
    "is_artifact_name",
    "is_valid_session_id",
    "parse_question_index",
    "question_index_from_filename",
    "resolve_question_index",
    "sanitize_name",
]

DEFAULT_NAME = "user"
MAX_NAME_LENGTH = 40

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CLIP_NAME = re.compile(r"Q(\d+)\.[A-Za-z0-9]+$", re.IGNORECASE)
# a leading underscore marks reserved directories such as _incoming
_SESSION_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]{0,127}")
# letters NFKD does not decompose
_EXTRA_FOLDING = str.maketrans({"đ": "d", "ð": "d", "ø": "o", "ł": "l", "ß": "ss", "æ": "ae", "œ": "oe"})


def sanitize_name(value: Optional[str]) -> str:
    """Return a lower-case ``[a-z0-9_]`` form of *value*, at most 40 characters.

    The transformation is idempotent: ``sanitize_name(sanitize_name(x)) ==
    sanitize_name(x)``.
    """

    text = unicodedata.normalize("NFKD", value or "")
    text = text.lower().translate(_EXTRA_FOLDING)
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = _NON_ALNUM.sub("_", text).strip("_")
    text = text[:MAX_NAME_LENGTH].strip("_")
    return text or DEFAULT_NAME


def build_session_folder_name(display_name: Optional[str], now: datetime, time_zone: str) -> str:
    """Return ``DD_MM_YYYY_HH_mm_<name>`` for *now* expressed in *time_zone*."""

    zone = pytz.timezone(time_zone)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    local = now.astimezone(zone)
    return f"{local.strftime('%d_%m_%Y_%H_%M')}_{sanitize_name(display_name)}"


def is_valid_session_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_SESSION_ID.fullmatch(value))


def artifact_name(question_index: int, extension: str) -> str:
    return f"Q{question_index}.{extension.lstrip('.')}"


def is_artifact_name(name: str, extension: str) -> bool:
    """Return ``True`` when *name* is a stored clip such as ``Q3.webm``."""

    pattern = rf"Q\d+\.{re.escape(extension.lstrip('.'))}"
    return re.fullmatch(pattern, name, re.IGNORECASE) is not None



def clamp_question_index(value: int, max_questions: int) -> int:
    return max(1, min(max_questions, value))


def parse_question_index(value: Any) -> Optional[int]:
    """Return *value* as an integer, or ``None`` when it is missing or not numeric."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not re.fullmatch(r"[+-]?\d+", text):
        return None
    return int(text)


def question_index_from_filename(filename: Optional[str]) -> Optional[int]:
    if not filename:
        return None
    match = _CLIP_NAME.search(PurePosixPath(filename.replace("\\", "/")).name)
    return int(match.group(1)) if match else None


def resolve_question_index(
    filename: Optional[str],
    explicit_index: Any,
    *,
    max_questions: int,
) -> int:
    """Return the question index a clip targets.

    The filename (``Q<digits>.<ext>``) wins, then the explicit index field.
    When neither yields a number the clip is treated as question 1. The result
    is always clamped into ``[1, max_questions]``.
    """

    candidate = question_index_from_filename(filename)
    if candidate is None:
        candidate = parse_question_index(explicit_index)
    if candidate is None:
        candidate = 1
    return clamp_question_index(candidate, max_questions)
