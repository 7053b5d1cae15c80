from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from interview_recorder.bootstrap import Bootstrapper
from interview_recorder.config import AppConfig


class FakeClock:
    """Deterministic clock advanced explicitly by tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    # 03:07 UTC is 10:07 in Asia/Bangkok
    return FakeClock(datetime(2026, 3, 9, 3, 7, 30, tzinfo=timezone.utc))


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "tokens": ["demo123", "abc456"],
            "time_zone": "Asia/Bangkok",
            "max_questions": 5,
            "max_upload_mb": 1,
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config
