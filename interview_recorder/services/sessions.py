"""Session lifecycle: start, clip submission, analysis results and finish."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import AppConfig
from ..errors import NotFoundError, ValidationError
from .artifacts import ArtifactStore, Clock, UploadRecord, format_timestamp, upsert_by_question, utc_now
from .auth import TokenAuthenticator
from .events import emit_session_event
from .guard import SequentialUploadGuard
from .naming import DEFAULT_NAME, build_session_folder_name, is_artifact_name, is_valid_session_id
from .storage import FileSessionStore


LOGGER = logging.getLogger(__name__)

_MAX_COLLISION_SUFFIX = 1000


@dataclass(frozen=True)
class SessionHandle:
    session_id: str
    path: Path
    started_at: str


@dataclass(frozen=True)
class AIResult:
    question_index: int
    transcript: str
    summary: str
    analyzed_at: str

    def to_document(self) -> Dict[str, Any]:
        return {
            "q": self.question_index,
            "transcript": self.transcript,
            "summary": self.summary,
            "analyzedAt": self.analyzed_at,
        }


class SessionManager:
    """Coordinate authentication, ordering, storage and metadata for sessions."""

    def __init__(
        self,
        config: AppConfig,
        *,
        store: Optional[FileSessionStore] = None,
        authenticator: Optional[TokenAuthenticator] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._store = store or FileSessionStore(config.storage_root)
        self._authenticator = authenticator or TokenAuthenticator(config.tokens)
        self._clock = clock
        self._guard = SequentialUploadGuard(
            self._store,
            max_questions=config.max_questions,
            extension=config.artifact_extension,
        )
        self._artifacts = ArtifactStore(
            self._store,
            accepted_media_type=config.accepted_media_type,
            extension=config.artifact_extension,
            max_bytes=config.max_upload_bytes,
            clock=clock,
        )

    @property
    def store(self) -> FileSessionStore:
        return self._store

    @property
    def guard(self) -> SequentialUploadGuard:
        return self._guard

    @property
    def artifacts(self) -> ArtifactStore:
        return self._artifacts

    def verify_token(self, token: Optional[str]) -> bool:
        return self._authenticator.authenticate(token)

    def _require_session(self, session_id: Optional[str]) -> str:
        if not session_id:
            raise ValidationError("missing folder", field="sessionId")
        if not is_valid_session_id(session_id):
            raise ValidationError("invalid session id", field="sessionId")
        if not self._store.exists(session_id):
            raise NotFoundError("folder not found")
        return session_id

    def _folder_in_use(self, session_id: str) -> bool:
        """Return ``True`` when the folder already holds another session.

        An unreadable ``meta.json`` or any stored clip counts as in use even
        without ``startedAt``, so two sessions never share clips.
        """

        if not self._store.document_readable(session_id):
            return True
        if self._store.get(session_id).get("startedAt"):
            return True
        extension = self._config.artifact_extension
        return any(
            is_artifact_name(name, extension) for name in self._store.artifact_names(session_id)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start_session(self, token: Optional[str], display_name: Optional[str]) -> SessionHandle:
        """Create (or adopt) the session folder and write its initial document.

        When the computed folder already belongs to another session the name
        gets a ``_2``, ``_3`` … suffix; two sessions are never merged. An empty
        folder with a readable document and no ``startedAt`` is adopted and its
        ``questionsCount`` is kept.
        """

        self._authenticator.require(token)
        user_name = (display_name or "").strip() or DEFAULT_NAME
        now = self._clock()
        base_name = build_session_folder_name(user_name, now, self._config.time_zone)
        started_at = format_timestamp(now)

        def _initialise(previous: Dict[str, Any]) -> Dict[str, Any]:
            return {
                **previous,
                "userName": user_name,
                "timeZone": self._config.time_zone,
                "uploaded": [],
                "startedAt": started_at,
                "finishedAt": None,
                "questionsCount": previous.get("questionsCount") or None,
            }

        for attempt in range(1, _MAX_COLLISION_SUFFIX + 1):
            session_id = base_name if attempt == 1 else f"{base_name}_{attempt}"
            with self._store.lock(session_id):
                self._store.create(session_id)
                if self._folder_in_use(session_id):
                    LOGGER.info("Session folder %s already in use; trying a suffix", session_id)
                    continue
                self._store.merge(session_id, _initialise)
            emit_session_event("Session started", payload={"session": session_id})
            return SessionHandle(
                session_id=session_id,
                path=self._store.session_path(session_id),
                started_at=started_at,
            )
        raise ValidationError("too many sessions with the same name in this minute")

    def finish_session(
        self,
        token: Optional[str],
        session_id: Optional[str],
        questions_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        self._authenticator.require(token)
        session_id = self._require_session(session_id)
        if questions_count is not None and questions_count < 0:
            raise ValidationError("questionsCount must not be negative", field="questionsCount")
        finished_at = format_timestamp(self._clock())

        def _finish(previous: Dict[str, Any]) -> Dict[str, Any]:
            if questions_count is not None:
                count = questions_count
            else:
                count = previous.get("questionsCount") or 0
            return {**previous, "questionsCount": int(count), "finishedAt": finished_at}

        document = self._store.merge(session_id, _finish)
        emit_session_event(
            "Session finished",
            payload={"session": session_id, "questions": document.get("questionsCount")},
        )
        return document

    def get_session(self, token: Optional[str], session_id: Optional[str]) -> Dict[str, Any]:
        self._authenticator.require(token)
        session_id = self._require_session(session_id)
        return self._store.get(session_id)

    # ------------------------------------------------------------------
    # Clips and analysis
    # ------------------------------------------------------------------
    def submit_clip(
        self,
        token: Optional[str],
        session_id: Optional[str],
        data: bytes,
        content_type: Optional[str],
        *,
        filename: Optional[str] = None,
        question_index: Any = None,
    ) -> UploadRecord:
        """Validate ordering and store one answer clip.

        The guard check, the artifact write and the metadata update share the
        session lock, so a concurrent submission cannot slip in between them.
        """

        self._authenticator.require(token)
        session_id = self._require_session(session_id)
        target = self._guard.resolve(filename, question_index)
        LOGGER.info(
            "Clip submission filename=%s questionIndex=%s -> Q%s", filename, question_index, target
        )
        self._artifacts.validate(data, content_type)
        with self._store.lock(session_id):
            self._guard.check(session_id, target)
            record = self._artifacts.save_artifact(session_id, target, data, content_type)
        emit_session_event(
            "Clip accepted",
            payload={"session": session_id, "question": target, "file": record.file},
        )
        return record

    def record_analysis(
        self,
        token: Optional[str],
        session_id: Optional[str],
        question_index: Any,
        transcript: str,
        summary: str,
    ) -> AIResult:
        self._authenticator.require(token)
        session_id = self._require_session(session_id)
        target = self._guard.resolve(None, question_index)
        result = AIResult(
            question_index=target,
            transcript=transcript,
            summary=summary,
            analyzed_at=format_timestamp(self._clock()),
        )

        def _store_result(previous: Dict[str, Any]) -> Dict[str, Any]:
            previous["analysis"] = upsert_by_question(previous.get("analysis"), result.to_document())
            return previous

        self._store.merge(session_id, _store_result)
        emit_session_event("Analysis stored", payload={"session": session_id, "question": target})
        return result


__all__ = ["AIResult", "SessionHandle", "SessionManager"]
