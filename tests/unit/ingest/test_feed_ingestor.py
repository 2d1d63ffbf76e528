"""Unit tests for feed retrieval, fallbacks and snapshots."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import requests

from core.constants import LATEST_POINTER_FILE_NAME
from core.errors import ContentValidationFailure, SanctionsStoreError
from ingest.feed_ingestor import (
    FeedIngestor,
    FeedSource,
    RetryPolicy,
    check_freshness,
    load_latest_snapshot,
    validate_feed_content,
    write_snapshot,
)
from tests.fixture_paths import fixture_path

FETCH_TIME = datetime(2026, 10, 1, 8, 30, tzinfo=timezone.utc)
FEED_BYTES = fixture_path("sdn_sample.xml").read_bytes()


class _FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class _ScriptedSession:
    """Replays a scripted outcome list per URL."""

    def __init__(self, script: dict[str, list[object]]) -> None:
        self._script = {url: list(outcomes) for url, outcomes in script.items()}
        self.calls: list[str] = []

    def get(self, url: str, headers: dict[str, str], timeout: float) -> _FakeResponse:
        self.calls.append(url)
        outcome = self._script[url].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome  # type: ignore[return-value]


def _ingestor(session: _ScriptedSession, attempts: int = 2) -> tuple[FeedIngestor, list[float]]:
    sleeps: list[float] = []
    ingestor = FeedIngestor(
        sources=[
            FeedSource(name="primary", url="https://primary.example/sdn.xml"),
            FeedSource(name="fallback-1", url="https://mirror.example/sdn.xml"),
        ],
        retry_policy=RetryPolicy(attempts=attempts, delay_seconds=0.5, timeout_seconds=5.0),
        session=session,  # type: ignore[arg-type]
        sleep=sleeps.append,
        clock=lambda: FETCH_TIME,
    )
    return ingestor, sleeps


def test_fetch_latest_writes_snapshot_and_pointer(tmp_path) -> None:
    """A valid primary payload should become the latest snapshot."""
    session = _ScriptedSession({"https://primary.example/sdn.xml": [_FakeResponse(FEED_BYTES)]})
    ingestor, _ = _ingestor(session)

    result = ingestor.fetch_latest(tmp_path)
    latest = load_latest_snapshot(tmp_path)

    assert (
        result.success
        and result.snapshot is not None
        and latest.path == result.snapshot.path
        and latest.path.read_bytes() == FEED_BYTES
        and latest.path.name == "sdn-20261001T083000000000Z.xml"
    )


def test_fetch_latest_retries_network_errors_with_delay(tmp_path) -> None:
    """Transient network errors should be retried on the same source."""
    session = _ScriptedSession(
        {
            "https://primary.example/sdn.xml": [
                requests.ConnectionError("reset"),
                _FakeResponse(FEED_BYTES),
            ]
        }
    )
    ingestor, sleeps = _ingestor(session)

    result = ingestor.fetch_latest(tmp_path)

    assert result.success and sleeps == [0.5] and len(session.calls) == 2


def test_fetch_latest_falls_back_after_exhausting_retries(tmp_path) -> None:
    """Primary failures past the retry limit should move to the fallback."""
    session = _ScriptedSession(
        {
            "https://primary.example/sdn.xml": [
                _FakeResponse(b"", status_code=503),
                _FakeResponse(b"", status_code=503),
            ],
            "https://mirror.example/sdn.xml": [_FakeResponse(FEED_BYTES)],
        }
    )
    ingestor, _ = _ingestor(session)

    result = ingestor.fetch_latest(tmp_path)

    assert (
        result.success
        and result.snapshot is not None
        and result.snapshot.source_url == "https://mirror.example/sdn.xml"
        and [failure.error_kind for failure in result.failures] == ["FetchFailure"]
    )


def test_fetch_latest_skips_invalid_content_without_retry(tmp_path) -> None:
    """A non-feed payload should skip the source immediately."""
    session = _ScriptedSession(
        {
            "https://primary.example/sdn.xml": [_FakeResponse(b"<html>maintenance</html>")],
            "https://mirror.example/sdn.xml": [_FakeResponse(FEED_BYTES)],
        }
    )
    ingestor, sleeps = _ingestor(session)

    result = ingestor.fetch_latest(tmp_path)

    assert (
        result.success
        and sleeps == []
        and [failure.error_kind for failure in result.failures] == ["ContentValidationFailure"]
    )


def test_fetch_latest_reports_all_sources_failed_without_writing(tmp_path) -> None:
    """When every source fails nothing should be written."""
    session = _ScriptedSession(
        {
            "https://primary.example/sdn.xml": [requests.Timeout("slow")],
            "https://mirror.example/sdn.xml": [_FakeResponse(b"not xml at all")],
        }
    )
    ingestor, _ = _ingestor(session, attempts=1)

    result = ingestor.fetch_latest(tmp_path)

    assert (
        not result.success
        and result.error == "All sources failed"
        and len(result.failures) == 2
        and list(tmp_path.iterdir()) == []
    )


def test_validate_feed_content_rejects_empty_payload() -> None:
    """Empty payloads are never a feed."""
    with pytest.raises(ContentValidationFailure):
        validate_feed_content(b"", "https://primary.example/sdn.xml")


def test_write_snapshot_refuses_to_overwrite(tmp_path) -> None:
    """Snapshots are immutable once written."""
    write_snapshot(FEED_BYTES, "https://primary.example/sdn.xml", tmp_path, FETCH_TIME)

    with pytest.raises(SanctionsStoreError):
        write_snapshot(FEED_BYTES, "https://primary.example/sdn.xml", tmp_path, FETCH_TIME)


def test_load_latest_snapshot_requires_pointer(tmp_path) -> None:
    """Skipping download without any prior fetch should fail clearly."""
    with pytest.raises(SanctionsStoreError):
        load_latest_snapshot(tmp_path)


def test_check_freshness_recommends_refresh_for_old_snapshot(tmp_path) -> None:
    """Snapshots older than the threshold should be flagged."""
    write_snapshot(FEED_BYTES, "https://primary.example/sdn.xml", tmp_path, FETCH_TIME)

    report = check_freshness(tmp_path, max_age_hours=24, now=FETCH_TIME + timedelta(hours=30))

    assert report.refresh_recommended and report.age_hours == pytest.approx(30.0)


def test_check_freshness_accepts_recent_snapshot(tmp_path) -> None:
    """Recent snapshots should not trigger a refresh."""
    write_snapshot(FEED_BYTES, "https://primary.example/sdn.xml", tmp_path, FETCH_TIME)

    report = check_freshness(tmp_path, now=FETCH_TIME + timedelta(hours=2))

    assert not report.refresh_recommended and (tmp_path / LATEST_POINTER_FILE_NAME).exists()


def test_check_freshness_without_snapshot_recommends_refresh(tmp_path) -> None:
    """A data root that never fetched should recommend a refresh."""
    report = check_freshness(tmp_path)

    assert report.refresh_recommended and report.latest_snapshot is None
