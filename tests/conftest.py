from __future__ import annotations

import io
from typing import List

import pytest
from requests.structures import CaseInsensitiveDict

from jpgrid.config import TESTDATA_DIR

FIXTURE_DATE = "2025-10-23"


class FakeRaw(io.BytesIO):
    decode_content = False


class FakeResponse:
    def __init__(self, status_code: int = 200, body: bytes = b"", headers: dict | None = None) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.raw = FakeRaw(body)
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Replays queued responses/exceptions and records every GET."""

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[dict] = []

    def get(self, url, headers=None, timeout=None, stream=False):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout, "stream": stream})
        if not self.outcomes:
            raise AssertionError(f"unexpected request to {url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def close(self) -> None:
        pass


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def fixture_bytes(name: str) -> bytes:
    return (TESTDATA_DIR / name).read_bytes()


def assert_hourly(timestamps, date: str) -> None:
    assert timestamps, "series is empty"
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)
    for ts in timestamps:
        assert ts.startswith(f"{date}T")
        assert ts.endswith(":00:00+09:00")
