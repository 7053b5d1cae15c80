"""FastAPI application exposing the interview recorder API."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import functools
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..errors import AuthError, RecorderError, ValidationError
from ..processing import AIPipeline
from ..services.artifacts import normalize_media_type
from ..services.events import emit_structured_event
from ..services.sessions import SessionManager

T = TypeVar("T")

_DEFAULT_UPLOAD_CHUNK_SIZE = 1024 * 1024

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "interview_recorder_request_id",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_token = _REQUEST_ID_VAR.set(_new_correlation_id())
        try:
            await self.app(scope, receive, send)
        finally:
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the request id into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra or {})
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        request_id = _REQUEST_ID_VAR.get()
        if request_id:
            extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("interview_recorder.events"), {})


def _log_event(message: str, **context: Any) -> None:
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context.setdefault("request_id", request_id)
    emit_structured_event("API", message, payload=context, logger=EVENT_LOGGER)


def _copy_upload_stream(
    upload: UploadFile,
    target: Path,
    *,
    limit: int,
    chunk_size: int = _DEFAULT_UPLOAD_CHUNK_SIZE,
) -> int:
    """Synchronously copy ``upload`` to ``target``, refusing more than ``limit`` bytes."""

    source = upload.file
    if hasattr(source, "seek"):
        with contextlib.suppress(OSError, ValueError):
            source.seek(0)
    written = 0
    try:
        with target.open("wb") as buffer:
            while True:
                chunk = source.read(chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                if limit > 0 and written > limit:
                    raise ValidationError(
                        f"file exceeds the {limit} byte limit",
                        field="video",
                        status_code=413,
                        limit=limit,
                    )
                buffer.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    return written


async def _read_upload_bytes(upload: UploadFile, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes so oversized payloads are detectable."""

    try:
        if limit > 0:
            return await upload.read(limit + 1)
        return await upload.read()
    finally:
        await upload.close()


class TokenPayload(BaseModel):
    token: Optional[str] = None


class SessionStartPayload(BaseModel):
    token: Optional[str] = None
    displayName: Optional[str] = None
    userName: Optional[str] = None


class SessionFinishPayload(BaseModel):
    token: Optional[str] = None
    sessionId: Optional[str] = None
    folder: Optional[str] = None
    questionsCount: Optional[int] = None


def create_app(
    sessions: SessionManager,
    *,
    config: AppConfig,
    pipeline: Optional[AIPipeline] = None,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    app = FastAPI(
        title="Interview Recorder",
        description="Sequential interview clip uploads with offline analysis",
        root_path=root_path or "",
    )
    app.state.server = None
    app.state.sessions = sessions
    app.state.pipeline = pipeline or AIPipeline.from_config(config)
    analysis_executor = ThreadPoolExecutor(
        max_workers=config.max_concurrent_analyses,
        thread_name_prefix="clip-analysis",
    )
    app.state.analysis_executor = analysis_executor

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def _run_blocking(
        operation: Callable[..., T],
        *args: Any,
        executor: Optional[ThreadPoolExecutor] = None,
        **kwargs: Any,
    ) -> T:
        loop = asyncio.get_running_loop()
        context = contextvars.copy_context()
        call = functools.partial(context.run, operation, *args, **kwargs)
        return await loop.run_in_executor(executor, call)

    def _shutdown_executor() -> None:
        analysis_executor.shutdown(wait=False, cancel_futures=True)

    app.add_event_handler("shutdown", _shutdown_executor)

    @app.exception_handler(RecorderError)
    async def handle_recorder_error(request: Request, error: RecorderError) -> JSONResponse:
        level = logging.WARNING if error.status_code >= 500 else logging.INFO
        LOGGER.log(
            level,
            "%s %s -> %s (%s)",
            request.method,
            request.url.path,
            error.error_code,
            error.message,
        )
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, error: RequestValidationError) -> JSONResponse:
        failure = ValidationError("malformed request", issues=len(error.errors()))
        return JSONResponse(status_code=failure.status_code, content=failure.to_payload())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, error: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error for %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=RecorderError("internal error").to_payload())

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "service": "backend",
            "time": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/api/verify-token")
    async def verify_token(payload: TokenPayload) -> Dict[str, Any]:
        if not sessions.verify_token(payload.token):
            raise AuthError("invalid token")
        return {"ok": True}

    @app.post("/api/session/start")
    async def start_session(payload: SessionStartPayload) -> Dict[str, Any]:
        display_name = payload.displayName if payload.displayName is not None else payload.userName
        handle = await _run_blocking(sessions.start_session, payload.token, display_name)
        _log_event("Session started", session=handle.session_id)
        return {"ok": True, "sessionId": handle.session_id, "folder": handle.session_id}

    @app.post("/api/upload-one")
    async def upload_one(
        token: Optional[str] = Form(None),
        sessionId: Optional[str] = Form(None),
        folder: Optional[str] = Form(None),
        questionIndex: Optional[str] = Form(None),
        video: Optional[UploadFile] = File(None),
    ) -> Dict[str, Any]:
        if not sessions.verify_token(token):
            raise AuthError("invalid token")
        if video is None:
            raise ValidationError("no file", field="video")
        data = await _read_upload_bytes(video, config.max_upload_bytes)
        record = await _run_blocking(
            sessions.submit_clip,
            token,
            sessionId or folder,
            data,
            video.content_type,
            filename=video.filename,
            question_index=questionIndex,
        )
        _log_event(
            "Uploaded clip",
            session=sessionId or folder,
            original=video.filename,
            saved_as=record.file,
        )
        return {"ok": True, "savedAs": record.file, "q": record.question_index}

    @app.post("/api/session/finish")
    async def finish_session(payload: SessionFinishPayload) -> Dict[str, Any]:
        await _run_blocking(
            sessions.finish_session,
            payload.token,
            payload.sessionId or payload.folder,
            payload.questionsCount,
        )
        return {"ok": True}

    @app.get("/api/session/{session_id}")
    async def get_session(session_id: str, token: Optional[str] = Query(None)) -> Dict[str, Any]:
        document = await _run_blocking(sessions.get_session, token, session_id)
        return {"ok": True, "sessionId": session_id, "session": document}

    @app.post("/api/ai-analyze")
    async def analyze_clip(
        video: Optional[UploadFile] = File(None),
        token: Optional[str] = Form(None),
        sessionId: Optional[str] = Form(None),
        folder: Optional[str] = Form(None),
        questionIndex: Optional[str] = Form(None),
    ) -> Dict[str, Any]:
        if video is None:
            raise ValidationError("no file", field="video")
        target_session = sessionId or folder
        try:
            if target_session:
                # reject unauthorized callers before any expensive work
                await _run_blocking(sessions.get_session, token, target_session)
            media_type = normalize_media_type(video.content_type)
            if media_type != normalize_media_type(config.accepted_media_type):
                raise ValidationError(
                    f"invalid media type '{media_type or 'unknown'}'", field="contentType"
                )
            incoming_root = config.incoming_root
            incoming_root.mkdir(parents=True, exist_ok=True)
            clip_path = incoming_root / f"{_new_correlation_id()}.{config.artifact_extension}"
            written = await _run_blocking(
                _copy_upload_stream, video, clip_path, limit=config.max_upload_bytes
            )
        finally:
            await video.close()
        if written == 0:
            clip_path.unlink(missing_ok=True)
            raise ValidationError("no file", field="video")

        deadline = time.monotonic() + config.analysis_deadline_seconds
        pipeline: AIPipeline = app.state.pipeline
        result = await _run_blocking(
            pipeline.run,
            clip_path,
            remove_clip=True,
            deadline=deadline,
            executor=analysis_executor,
        )
        response: Dict[str, Any] = {
            "ok": True,
            "transcript": result.transcript,
            "summary": result.summary,
        }
        if target_session:
            stored = await _run_blocking(
                sessions.record_analysis,
                token,
                target_session,
                questionIndex,
                result.transcript,
                result.summary,
            )
            response["q"] = stored.question_index
        _log_event("Analysed clip", session=target_session, original=video.filename)
        return response

    return app


__all__ = ["ContextualLoggerAdapter", "RequestContextMiddleware", "create_app"]
