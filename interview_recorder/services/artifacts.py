"""Persistence of answer clips and their upload records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..errors import ValidationError
from .naming import artifact_name
from .storage import SessionDocumentStore


LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Return an ISO-8601 UTC timestamp with milliseconds and a ``Z`` suffix."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    stamp = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def normalize_media_type(value: Optional[str]) -> str:
    return (value or "").split(";", 1)[0].strip().lower()


def upsert_by_question(entries: Any, entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return *entries* with *entry* replacing any item for the same ``q``, sorted by ``q``."""

    existing = entries if isinstance(entries, list) else []
    kept = [
        item for item in existing if isinstance(item, dict) and item.get("q") != entry["q"]
    ]
    kept.append(entry)
    return sorted(kept, key=lambda item: int(item.get("q") or 0))


@dataclass(frozen=True)
class UploadRecord:
    question_index: int
    file: str
    uploaded_at: str
    path: Path

    def to_document(self) -> Dict[str, Any]:
        return {"q": self.question_index, "file": self.file, "uploadedAt": self.uploaded_at}


class ArtifactStore:
    """Validate and store clips as ``Q<index>.<ext>`` and record them in the session document."""

    def __init__(
        self,
        store: SessionDocumentStore,
        *,
        accepted_media_type: str,
        extension: str,
        max_bytes: int,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._accepted_media_type = normalize_media_type(accepted_media_type)
        self._extension = extension
        self._max_bytes = max_bytes
        self._clock = clock

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def validate(self, data: bytes, declared_content_type: Optional[str]) -> None:
        media_type = normalize_media_type(declared_content_type)
        if media_type != self._accepted_media_type:
            raise ValidationError(
                f"invalid media type '{media_type or 'unknown'}'; expected {self._accepted_media_type}",
                field="contentType",
            )
        if not data:
            raise ValidationError("no file", field="video")
        if self._max_bytes > 0 and len(data) > self._max_bytes:
            raise ValidationError(
                f"file exceeds the {self._max_bytes} byte limit",
                field="video",
                status_code=413,
                limit=self._max_bytes,
            )

    def save_artifact(
        self,
        session_id: str,
        question_index: int,
        data: bytes,
        declared_content_type: Optional[str],
    ) -> UploadRecord:
        self.validate(data, declared_content_type)
        name = artifact_name(question_index, self._extension)
        with self._store.lock(session_id):
            path = self._store.put_artifact(session_id, name, data)
            record = UploadRecord(
                question_index=question_index,
                file=name,
                uploaded_at=format_timestamp(self._clock()),
                path=path,
            )

            def _record_upload(document: Dict[str, Any]) -> Dict[str, Any]:
                document["uploaded"] = upsert_by_question(
                    document.get("uploaded"), record.to_document()
                )
                return document

            self._store.merge(session_id, _record_upload)
        LOGGER.debug("Recorded %s for session %s (%d bytes)", name, session_id, len(data))
        return record


__all__ = [
    "ArtifactStore",
    "UploadRecord",
    "format_timestamp",
    "normalize_media_type",
    "upsert_by_question",
    "utc_now",
]
