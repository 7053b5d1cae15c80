"""Entry-point for the Interview Recorder service."""

from __future__ import annotations

import inspect
import logging
import shutil
import time
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from interview_recorder.bootstrap import initialize_app
from interview_recorder.errors import RecorderError
from interview_recorder.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from interview_recorder.processing import (
    AIPipeline,
    check_summarizer_availability,
    check_transcriber_availability,
    ffmpeg_available,
)
from interview_recorder.services.sessions import SessionManager
from interview_recorder.web import create_app


LOGGER = logging.getLogger("interview_recorder.cli")


cli = typer.Typer(add_completion=False, help="Interview Recorder management commands")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip().rstrip("/")
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the API server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the API server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the API server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="INTERVIEW_RECORDER_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI-powered recorder API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    sessions = SessionManager(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(sessions, config=app_config, root_path=normalized_root)

    config_kwargs = {}
    # multipart framing adds a little on top of the clip itself
    request_limit = app_config.max_upload_bytes + 1024 * 1024
    config_signature = inspect.signature(uvicorn.Config.__init__)
    if "limit_max_request_size" in config_signature.parameters:
        config_kwargs["limit_max_request_size"] = request_limit
    else:
        LOGGER.debug("uvicorn.Config does not support 'limit_max_request_size'; relying on app checks")

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving Interview Recorder on http://%s:%s%s", host, port, normalized_root or "/")
    server.run()


@cli.command()
def analyze(
    clip: Path = typer.Argument(..., help="Path to a recorded answer clip."),
    keep: bool = typer.Option(True, help="Keep the clip after analysis."),
) -> None:
    """Run the extract → transcribe → summarize pipeline on one clip."""

    clip_path = clip.expanduser()
    if not clip_path.is_file():
        raise typer.BadParameter(f"File '{clip_path}' does not exist or is not a file.", param_hint="CLIP")

    config = initialize_app()
    _prepare_logging(config.storage_root)
    pipeline = AIPipeline.from_config(config)

    typer.echo(f"====> Analysing {clip_path.name}…")
    started = time.monotonic()
    try:
        result = pipeline.run(
            clip_path.resolve(),
            remove_clip=not keep,
            deadline=started + config.analysis_deadline_seconds,
        )
    except RecorderError as error:
        typer.echo(f"Analysis failed: {error.message}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo(f"====> Completed in {time.monotonic() - started:.1f}s")
    typer.echo("\nTranscript:\n" + (result.transcript or "(empty)"))
    typer.echo("\nSummary:\n" + (result.summary or "(empty)"))


@cli.command("check-tools")
def check_tools() -> None:
    """Report whether the external analysis tools can be found."""

    config = initialize_app()
    checks = {
        "ffmpeg": {
            "supported": ffmpeg_available(config.ffmpeg),
            "binary": shutil.which(config.ffmpeg.binary),
        },
        "transcriber": check_transcriber_availability(config.transcriber),
        "summarizer": check_summarizer_availability(config.summarizer),
    }
    all_supported = True
    for name, details in checks.items():
        supported = bool(details.get("supported"))
        all_supported = all_supported and supported
        label = "ok" if supported else "missing"
        message = details.get("message") or details.get("binary") or ""
        typer.echo(f"{name:<12} {label:<8} {message}")
    if not all_supported:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
