from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from interview_recorder.errors import ExternalProcessError
from interview_recorder.processing import AIPipeline
from interview_recorder.services.sessions import SessionManager
from interview_recorder.web import create_app

TOKEN = "demo123"


class _Extractor:
    def extract(self, clip_path: Path, destination: Path, *, deadline: Optional[float] = None) -> Path:
        destination.write_bytes(b"RIFF" + clip_path.read_bytes())
        return destination


class _Transcriber:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error

    def transcribe(self, audio_path: Path, *, deadline: Optional[float] = None) -> str:
        if self.error is not None:
            raise self.error
        return "I would start by listening to the team."


class _Summarizer:
    def summarize(self, transcript: str, *, deadline: Optional[float] = None) -> str:
        return "Good focus on collaboration."


def _client(temp_config, clock, *, transcriber=None) -> TestClient:
    sessions = SessionManager(temp_config, clock=clock)
    pipeline = AIPipeline(
        _Extractor(),
        transcriber or _Transcriber(),
        _Summarizer(),
        work_dir=temp_config.incoming_root,
    )
    app = create_app(sessions, config=temp_config, pipeline=pipeline)
    return TestClient(app)


@pytest.fixture()
def client(temp_config, clock) -> TestClient:
    return _client(temp_config, clock)


def _start(client: TestClient, name: str = "Anna Lee") -> str:
    response = client.post("/api/session/start", json={"token": TOKEN, "userName": name})
    assert response.status_code == 200, response.text
    return response.json()["sessionId"]


def _upload(client: TestClient, session_id: str, name: str, data: bytes = b"webm", **fields):
    form = {"token": TOKEN, "folder": session_id, **fields}
    return client.post(
        "/api/upload-one",
        data=form,
        files={"video": (name, data, "video/webm")},
    )


def test_health(client: TestClient) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["service"] == "backend"
    assert payload["time"]


def test_verify_token(client: TestClient) -> None:
    assert client.post("/api/verify-token", json={"token": TOKEN}).json() == {"ok": True}

    response = client.post("/api/verify-token", json={"token": "nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_interview_flow(client: TestClient, temp_config) -> None:
    response = client.post("/api/session/start", json={"token": TOKEN, "displayName": "Anna Lee"})
    assert response.json() == {
        "ok": True,
        "sessionId": "09_03_2026_10_07_anna_lee",
        "folder": "09_03_2026_10_07_anna_lee",
    }
    session_id = response.json()["sessionId"]

    for q in (1, 2, 3):
        response = _upload(client, session_id, f"Q{q}.webm")
        assert response.status_code == 200, response.text
        assert response.json() == {"ok": True, "savedAs": f"Q{q}.webm", "q": q}

    response = client.post(
        "/api/session/finish",
        json={"token": TOKEN, "folder": session_id, "questionsCount": 3},
    )
    assert response.json() == {"ok": True}

    response = client.get(f"/api/session/{session_id}", params={"token": TOKEN})
    session = response.json()["session"]
    assert [entry["file"] for entry in session["uploaded"]] == ["Q1.webm", "Q2.webm", "Q3.webm"]
    assert session["questionsCount"] == 3
    assert session["finishedAt"]
    assert (temp_config.storage_root / session_id / "Q3.webm").read_bytes() == b"webm"


def test_out_of_order_upload_is_rejected(client: TestClient, temp_config) -> None:
    session_id = _start(client)
    assert _upload(client, session_id, "Q1.webm").status_code == 200

    response = _upload(client, session_id, "Q3.webm")

    assert response.status_code == 409
    payload = response.json()
    assert payload["ok"] is False
    assert payload["error"] == "sequential_violation"
    assert payload["missing"] == 2
    assert payload["retryable"] is False
    assert not (temp_config.storage_root / session_id / "Q3.webm").exists()


def test_question_index_field_is_used_for_blob_names(client: TestClient) -> None:
    session_id = _start(client)

    response = _upload(client, session_id, "blob", questionIndex="1")

    assert response.json()["savedAs"] == "Q1.webm"


def test_upload_validation_errors(client: TestClient) -> None:
    session_id = _start(client)

    wrong_type = client.post(
        "/api/upload-one",
        data={"token": TOKEN, "folder": session_id},
        files={"video": ("Q1.mp4", b"mp4", "video/mp4")},
    )
    assert wrong_type.status_code == 400
    assert wrong_type.json()["error"] == "validation_error"

    missing_file = client.post("/api/upload-one", data={"token": TOKEN, "folder": session_id})
    assert missing_file.status_code == 400
    assert missing_file.json()["message"] == "no file"

    oversized = _upload(client, session_id, "Q1.webm", b"x" * (1024 * 1024 + 1))
    assert oversized.status_code == 413

    missing_folder = client.post(
        "/api/upload-one",
        data={"token": TOKEN},
        files={"video": ("Q1.webm", b"webm", "video/webm")},
    )
    assert missing_folder.status_code == 400
    assert missing_folder.json()["message"] == "missing folder"


def test_upload_auth_and_unknown_session(client: TestClient) -> None:
    session_id = _start(client)

    unauthorized = client.post(
        "/api/upload-one",
        data={"token": "nope", "folder": session_id},
        files={"video": ("Q1.webm", b"webm", "video/webm")},
    )
    assert unauthorized.status_code == 401

    unknown = _upload(client, "01_01_2020_00_00_ghost", "Q1.webm")
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "not_found"


def test_start_requires_token(client: TestClient) -> None:
    response = client.post("/api/session/start", json={"userName": "Anna Lee"})

    assert response.status_code == 401


def test_malformed_body_is_a_validation_error(client: TestClient) -> None:
    response = client.post(
        "/api/session/finish",
        json={"token": TOKEN, "folder": "x", "questionsCount": "three"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_get_session_requires_token(client: TestClient) -> None:
    session_id = _start(client)

    assert client.get(f"/api/session/{session_id}").status_code == 401
    assert client.get("/api/session/missing_one", params={"token": TOKEN}).status_code == 404


def test_analyze_returns_transcript_and_summary(client: TestClient, temp_config) -> None:
    response = client.post(
        "/api/ai-analyze",
        files={"video": ("Q1.webm", b"webm", "video/webm")},
    )

    assert response.status_code == 200, response.text
    assert response.json() == {
        "ok": True,
        "transcript": "I would start by listening to the team.",
        "summary": "Good focus on collaboration.",
    }
    assert list(temp_config.incoming_root.iterdir()) == []


def test_analyze_records_result_on_session(client: TestClient) -> None:
    session_id = _start(client)

    response = client.post(
        "/api/ai-analyze",
        data={"token": TOKEN, "sessionId": session_id, "questionIndex": "2"},
        files={"video": ("Q2.webm", b"webm", "video/webm")},
    )

    assert response.json()["q"] == 2
    session = client.get(f"/api/session/{session_id}", params={"token": TOKEN}).json()["session"]
    assert session["analysis"][0]["summary"] == "Good focus on collaboration."


def test_analyze_rejects_bad_token_before_work(client: TestClient, temp_config) -> None:
    session_id = _start(client)

    response = client.post(
        "/api/ai-analyze",
        data={"token": "nope", "sessionId": session_id},
        files={"video": ("Q1.webm", b"webm", "video/webm")},
    )

    assert response.status_code == 401
    assert list(temp_config.incoming_root.iterdir()) == []


def test_analyze_validation(client: TestClient) -> None:
    assert client.post("/api/ai-analyze").status_code == 400

    wrong_type = client.post(
        "/api/ai-analyze",
        files={"video": ("clip.mp4", b"mp4", "video/mp4")},
    )
    assert wrong_type.status_code == 400

    empty = client.post(
        "/api/ai-analyze",
        files={"video": ("clip.webm", b"", "video/webm")},
    )
    assert empty.status_code == 400


def test_analyze_stage_failure_is_retryable(temp_config, clock) -> None:
    failing = _Transcriber(ExternalProcessError("whisper-cli exited with status 1", stage="transcribe"))
    client = _client(temp_config, clock, transcriber=failing)

    response = client.post(
        "/api/ai-analyze",
        files={"video": ("Q1.webm", b"webm", "video/webm")},
    )

    assert response.status_code == 502
    payload = response.json()
    assert payload["error"] == "external_process_error"
    assert payload["stage"] == "transcribe"
    assert payload["retryable"] is True
    assert list(temp_config.incoming_root.iterdir()) == []


def test_upload_checks_token_before_reading_body(client: TestClient) -> None:
    session_id = _start(client)

    response = client.post(
        "/api/upload-one",
        data={"token": "nope", "folder": session_id},
        files={"video": ("Q1.webm", b"x" * (1024 * 1024 + 1), "video/webm")},
    )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_wrong_media_type_wins_over_ordering(client: TestClient) -> None:
    session_id = _start(client)

    response = client.post(
        "/api/upload-one",
        data={"token": TOKEN, "folder": session_id},
        files={"video": ("Q2.mp4", b"mp4", "video/mp4")},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_scratch_directory_is_rejected_over_http(client: TestClient) -> None:
    response = _upload(client, "_incoming", "Q1.webm")

    assert response.status_code == 400
    assert client.get("/api/session/_incoming", params={"token": TOKEN}).status_code == 400
