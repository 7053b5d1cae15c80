"""Ordering rule for clip submissions."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..errors import SequentialViolation
from .naming import artifact_name, resolve_question_index
from .storage import SessionDocumentStore


LOGGER = logging.getLogger(__name__)


class SequentialUploadGuard:
    """Accept a clip for question ``q`` only when clips ``1..q-1`` are stored.

    The guard keeps no state of its own; the artifacts present in the session
    directory are the record of what has been accepted. Re-submitting an index
    that already exists is allowed and overwrites it.
    """

    def __init__(self, store: SessionDocumentStore, *, max_questions: int, extension: str) -> None:
        self._store = store
        self._max_questions = max_questions
        self._extension = extension

    @property
    def max_questions(self) -> int:
        return self._max_questions

    def resolve(self, filename: Optional[str], explicit_index: Any) -> int:
        return resolve_question_index(filename, explicit_index, max_questions=self._max_questions)

    def first_missing(self, session_id: str, question_index: int) -> Optional[int]:
        for earlier in range(1, question_index):
            if not self._store.artifact_exists(session_id, artifact_name(earlier, self._extension)):
                return earlier
        return None

    def check(self, session_id: str, question_index: int) -> None:
        missing = self.first_missing(session_id, question_index)
        if missing is not None:
            LOGGER.info(
                "Rejected Q%s for session %s; Q%s is missing", question_index, session_id, missing
            )
            raise SequentialViolation(missing=missing, requested=question_index)


__all__ = ["SequentialUploadGuard"]
