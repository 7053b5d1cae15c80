"""Filesystem-backed document store for interview sessions.

Each session is a directory below the storage root holding ``meta.json`` and
the clip artifacts. The store exposes a small document-store interface so a
different back end can be substituted without touching the session logic.
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import threading
import time
import uuid
import weakref
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Protocol

from ..errors import CorruptStateError, NotFoundError, ValidationError
from .events import emit_file_event
from .naming import is_valid_session_id


LOGGER = logging.getLogger(__name__)

METADATA_FILENAME = "meta.json"

Document = Dict[str, Any]
UpdateFn = Callable[[Document], Document]


class SessionDocumentStore(Protocol):
    """Interface the session core relies on."""

    def exists(self, session_id: str) -> bool:
        ...

    def create(self, session_id: str) -> bool:
        """Create the session container; return ``True`` if it was new."""

    def get(self, session_id: str) -> Document:
        ...

    def document_readable(self, session_id: str) -> bool:
        ...

    def merge(self, session_id: str, update_fn: UpdateFn) -> Document:
        ...

    def lock(self, session_id: str) -> threading.RLock:
        ...

    def put_artifact(self, session_id: str, name: str, data: bytes) -> Path:
        ...

    def artifact_exists(self, session_id: str, name: str) -> bool:
        ...

    def artifact_path(self, session_id: str, name: str) -> Path:
        ...

    def artifact_names(self, session_id: str) -> List[str]:
        ...


class _LockRegistry:
    """Hand out one re-entrant lock per session id.

    Entries are weak: a lock lives only while some caller still holds it, so
    the registry does not grow with every session ever touched.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock


def _atomic_write_bytes(target: Path, data: bytes) -> None:
    """Write *data* to *target* through a temporary sibling and ``os.replace``."""

    temporary = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
    try:
        with temporary.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temporary, target)
    except BaseException:
        with contextlib.suppress(OSError):
            temporary.unlink()
        raise


class FileSessionStore:
    """Session documents and artifacts stored as plain files."""

    def __init__(self, storage_root: Path) -> None:
        self._root = Path(storage_root)
        self._locks = _LockRegistry()

    @property
    def root(self) -> Path:
        return self._root

    def session_path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValidationError("invalid session id", field="sessionId")
        return self._root / session_id

    def lock(self, session_id: str) -> threading.RLock:
        return self._locks.get(session_id)

    @contextlib.contextmanager
    def locked(self, session_id: str) -> Iterator[Path]:
        """Hold the session lock and yield the session directory."""

        path = self.session_path(session_id)
        with self.lock(session_id):
            yield path

    def exists(self, session_id: str) -> bool:
        return self.session_path(session_id).is_dir()

    def create(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        with self.lock(session_id):
            if path.is_dir():
                return False
            path.mkdir(parents=True, exist_ok=True)
        emit_file_event("Created session directory", payload={"path": path})
        return True

    # ------------------------------------------------------------------
    # Metadata document
    # ------------------------------------------------------------------
    def _metadata_path(self, session_id: str) -> Path:
        return self.session_path(session_id) / METADATA_FILENAME

    def _load_document(self, path: Path) -> Document:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as error:
            raise CorruptStateError(f"{path} is not valid JSON: {error}") from error
        if not isinstance(document, dict):
            raise CorruptStateError(f"{path} does not contain a JSON object")
        return document

    def _read(self, session_id: str) -> Document:
        path = self._metadata_path(session_id)
        try:
            return self._load_document(path)
        except CorruptStateError as error:
            LOGGER.warning("Resetting unreadable session document: %s", error)
            return {}
        except (OSError, UnicodeDecodeError) as error:
            LOGGER.warning("Could not read session document %s (%s); treating as empty", path, error)
            return {}

    def get(self, session_id: str) -> Document:
        """Return the current document, ``{}`` when missing or unreadable."""

        with self.lock(session_id):
            return self._read(session_id)

    def document_readable(self, session_id: str) -> bool:
        """Return ``False`` when ``meta.json`` exists but cannot be parsed."""

        path = self._metadata_path(session_id)
        with self.lock(session_id):
            try:
                self._load_document(path)
            except (CorruptStateError, OSError, UnicodeDecodeError):
                return False
        return True

    def merge(self, session_id: str, update_fn: UpdateFn) -> Document:
        """Apply *update_fn* to the stored document and persist the result in full.

        *update_fn* receives a private copy of the current document and must
        return the complete next document; fields it does not carry over are
        dropped.
        """

        path = self._metadata_path(session_id)
        with self.lock(session_id):
            if not path.parent.is_dir():
                raise NotFoundError(f"session '{session_id}' does not exist")
            current = self._read(session_id)
            updated = update_fn(copy.deepcopy(current))
            if not isinstance(updated, dict):
                raise TypeError("metadata update must return a dict")
            start = time.perf_counter()
            encoded = json.dumps(updated, indent=2, ensure_ascii=False).encode("utf-8")
            _atomic_write_bytes(path, encoded)
        emit_file_event(
            "Wrote session metadata",
            payload={"session": session_id, "bytes": len(encoded)},
            duration_ms=(time.perf_counter() - start) * 1000.0,
            level=logging.DEBUG,
        )
        return updated

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------
    def artifact_path(self, session_id: str, name: str) -> Path:
        if Path(name).name != name or name in {"", ".", "..", METADATA_FILENAME}:
            raise ValidationError("invalid artifact name", field="filename")
        return self.session_path(session_id) / name

    def artifact_exists(self, session_id: str, name: str) -> bool:
        return self.artifact_path(session_id, name).is_file()

    def artifact_names(self, session_id: str) -> List[str]:
        """Return the names of the stored artifacts, without metadata and temporary files."""

        path = self.session_path(session_id)
        if not path.is_dir():
            return []
        return sorted(
            child.name
            for child in path.iterdir()
            if child.is_file() and child.name != METADATA_FILENAME and not child.name.startswith(".")
        )

    def put_artifact(self, session_id: str, name: str, data: bytes) -> Path:
        target = self.artifact_path(session_id, name)
        with self.lock(session_id):
            if not target.parent.is_dir():
                raise NotFoundError(f"session '{session_id}' does not exist")
            start = time.perf_counter()
            _atomic_write_bytes(target, data)
        emit_file_event(
            "Stored artifact",
            payload={"session": session_id, "name": name, "bytes": len(data)},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return target


__all__ = ["FileSessionStore", "METADATA_FILENAME", "SessionDocumentStore"]
