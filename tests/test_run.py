"""Tests for the run.py entrypoint helpers."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

from typer.testing import CliRunner

import run
from interview_recorder.errors import ExternalProcessError
from interview_recorder.processing import AnalysisResult


def _setup_serve(monkeypatch, tmp_path, *, supports_limit=True):
    captured = {}

    monkeypatch.setattr(
        run,
        "initialize_app",
        lambda: SimpleNamespace(storage_root=tmp_path, max_upload_bytes=50 * 1024 * 1024),
    )
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run, "SessionManager", lambda config: object())

    dummy_app = SimpleNamespace(state=SimpleNamespace())
    monkeypatch.setattr(run, "create_app", lambda sessions, config, root_path: dummy_app)

    if supports_limit:

        class DummyConfig:
            def __init__(self, app, *, limit_max_request_size=None, **kwargs):
                captured["app"] = app
                captured["config_kwargs"] = dict(kwargs)
                if limit_max_request_size is not None:
                    captured["config_kwargs"]["limit_max_request_size"] = limit_max_request_size

    else:

        class DummyConfig:
            def __init__(self, app, host=None, port=None, log_config=None, root_path=""):
                captured["app"] = app
                captured["config_kwargs"] = {"host": host, "port": port, "root_path": root_path}

    class DummyServer:
        def __init__(self, config):
            captured["server_config"] = config
            captured["server_instance"] = self

        def run(self):
            captured["server_run"] = True

    monkeypatch.setattr(run.uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(run.uvicorn, "Server", DummyServer)

    run.serve(host="0.0.0.0", port=9000, root_path="api/")

    captured["app_state_server"] = dummy_app.state.server
    return captured


def test_serve_applies_request_size_limit(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path)

    assert captured["config_kwargs"]["limit_max_request_size"] == 51 * 1024 * 1024
    assert captured["config_kwargs"]["root_path"] == "/api"
    assert captured["app_state_server"] is captured["server_instance"]
    assert captured["server_run"] is True


def test_serve_omits_limit_when_unsupported(monkeypatch, tmp_path):
    captured = _setup_serve(monkeypatch, tmp_path, supports_limit=False)

    assert "limit_max_request_size" not in captured["config_kwargs"]
    assert captured["server_run"] is True


def test_normalize_root_path():
    assert run._normalize_root_path(None) == ""
    assert run._normalize_root_path("  ") == ""
    assert run._normalize_root_path("/") == ""
    assert run._normalize_root_path("recorder/") == "/recorder"
    assert run._normalize_root_path("/recorder") == "/recorder"


def _setup_analyze(monkeypatch, tmp_path, pipeline):
    config = SimpleNamespace(storage_root=tmp_path, analysis_deadline_seconds=60)
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root: None)
    monkeypatch.setattr(run.AIPipeline, "from_config", classmethod(lambda cls, cfg: pipeline))


def test_analyze_prints_transcript_and_summary(monkeypatch, tmp_path: Path):
    clip = tmp_path / "Q1.webm"
    clip.write_bytes(b"clip")
    calls = {}

    class DummyPipeline:
        def run(self, clip_path, *, remove_clip, deadline):
            calls["clip"] = clip_path
            calls["remove_clip"] = remove_clip
            return AnalysisResult(transcript="I like testing.", summary="Short and clear.")

    _setup_analyze(monkeypatch, tmp_path, DummyPipeline())

    result = CliRunner().invoke(run.cli, ["analyze", str(clip)])

    assert result.exit_code == 0, result.output
    assert "I like testing." in result.output
    assert "Short and clear." in result.output
    assert calls["clip"] == clip.resolve()
    assert calls["remove_clip"] is False


def test_analyze_reports_stage_failure(monkeypatch, tmp_path: Path):
    clip = tmp_path / "Q1.webm"
    clip.write_bytes(b"clip")

    class FailingPipeline:
        def run(self, clip_path, *, remove_clip, deadline):
            raise ExternalProcessError("ffmpeg exited with status 1", stage="extract")

    _setup_analyze(monkeypatch, tmp_path, FailingPipeline())

    result = CliRunner().invoke(run.cli, ["analyze", str(clip)])

    assert result.exit_code == 1


def test_check_tools_reports_missing(monkeypatch, tmp_path: Path):
    config = SimpleNamespace(
        ffmpeg=SimpleNamespace(binary="ffmpeg"),
        transcriber=object(),
        summarizer=object(),
    )
    monkeypatch.setattr(run, "initialize_app", lambda: config)
    monkeypatch.setattr(run, "ffmpeg_available", lambda settings: True)
    monkeypatch.setattr(run.shutil, "which", lambda binary: "/usr/bin/ffmpeg")
    monkeypatch.setattr(
        run,
        "check_transcriber_availability",
        lambda settings: {"supported": False, "message": "Transcriber binary 'whisper-cli' not found."},
    )
    monkeypatch.setattr(
        run,
        "check_summarizer_availability",
        lambda settings: {"supported": True, "message": "Summarizer is available."},
    )

    result = CliRunner().invoke(run.cli, ["check-tools"])

    assert result.exit_code == 1
    assert "whisper-cli" in result.output
    assert "ffmpeg" in result.output
