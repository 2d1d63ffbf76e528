"""Sanctions feed retrieval with retries and ordered fallbacks.

Sources are plain data: an ordered list tried primary first. Each source
gets a bounded number of attempts; a payload that does not look like a
sanctions feed skips straight to the next source. A successful fetch is
written as a new timestamped snapshot before the ``latest`` pointer is
swapped, so a failed run never disturbs what downstream stages read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
from pathlib import Path
import time
from typing import Callable, Sequence

import requests

from core.config import RegistryConfig
from core.constants import (
    DEFAULT_FRESHNESS_HOURS,
    FEED_ACCEPT_HEADER,
    FEED_CONTENT_MARKERS,
    FEED_USER_AGENT,
    LATEST_POINTER_FILE_NAME,
    SNAPSHOT_FILE_PREFIX,
    SNAPSHOT_FILE_SUFFIX,
)
from core.errors import ContentValidationFailure, FetchFailure, SanctionsStoreError
from core.json_io import read_json_file, write_bytes_atomic, write_json_file
from core.logging_config import get_logger
from core.types import RawSnapshot

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class FeedSource:
    """One feed endpoint in priority order."""

    name: str
    url: str


@dataclass(frozen=True)
class RetryPolicy:
    """Per-source retry settings.

    Attributes:
        attempts: Attempts per source before falling back.
        delay_seconds: Sleep between attempts on the same source.
        timeout_seconds: HTTP timeout per attempt.
    """

    attempts: int
    delay_seconds: float
    timeout_seconds: float


@dataclass(frozen=True)
class SourceFailure:
    """Why one source was abandoned."""

    source: str
    error_kind: str
    message: str


@dataclass(frozen=True)
class FetchResult:
    """Outcome of ``FeedIngestor.fetch_latest``."""

    success: bool
    snapshot: RawSnapshot | None = None
    error: str | None = None
    failures: tuple[SourceFailure, ...] = ()


@dataclass(frozen=True)
class FreshnessReport:
    """Advisory freshness of the latest snapshot."""

    latest_snapshot: Path | None
    age_hours: float | None
    refresh_recommended: bool


class FeedIngestor:
    """Fetches the raw sanctions feed into immutable snapshots."""

    def __init__(
        self,
        sources: Sequence[FeedSource],
        retry_policy: RetryPolicy,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not sources:
            raise FetchFailure("Feed ingestor needs at least one source.")
        self._sources = tuple(sources)
        self._retry_policy = retry_policy
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config: RegistryConfig) -> "FeedIngestor":
        sources = [
            FeedSource(name="primary" if index == 0 else f"fallback-{index}", url=url)
            for index, url in enumerate(config.feed_urls)
        ]
        policy = RetryPolicy(
            attempts=config.fetch_retries,
            delay_seconds=config.fetch_delay_seconds,
            timeout_seconds=config.fetch_timeout_seconds,
        )
        return cls(sources, policy)

    def fetch_latest(self, output_dir: Path) -> FetchResult:
        """Try each source in order and persist the first valid payload.

        Args:
            output_dir: Raw snapshot directory.

        Returns:
            Success with the written snapshot, or failure with per-source reasons.
            On failure nothing under ``output_dir`` is modified.
        """
        failures: list[SourceFailure] = []
        for source in self._sources:
            try:
                payload = self._fetch_source(source)
            except FetchFailure as error:
                failures.append(
                    SourceFailure(source=source.url, error_kind=error.error_kind, message=str(error))
                )
                _LOGGER.warning(
                    "feed_source_failed",
                    source=source.name,
                    url=source.url,
                    error_kind=error.error_kind,
                    error=str(error),
                )
                continue
            snapshot = write_snapshot(payload, source.url, output_dir, self._clock())
            _LOGGER.info(
                "feed_snapshot_written",
                source=source.name,
                path=str(snapshot.path),
                size_bytes=snapshot.size_bytes,
                sha256=snapshot.sha256,
            )
            return FetchResult(success=True, snapshot=snapshot, failures=tuple(failures))
        _LOGGER.error("feed_all_sources_failed", source_count=len(self._sources))
        return FetchResult(success=False, error="All sources failed", failures=tuple(failures))

    def _fetch_source(self, source: FeedSource) -> bytes:
        last_error: Exception | None = None
        for attempt in range(1, self._retry_policy.attempts + 1):
            try:
                payload = self._download(source)
            except requests.RequestException as error:
                last_error = error
                _LOGGER.warning(
                    "feed_download_attempt_failed",
                    source=source.name,
                    attempt=attempt,
                    max_attempts=self._retry_policy.attempts,
                    error=str(error),
                )
                if attempt < self._retry_policy.attempts:
                    self._sleep(self._retry_policy.delay_seconds)
                continue
            validate_feed_content(payload, source.url)
            return payload
        raise FetchFailure(
            f"Source {source.url} failed after {self._retry_policy.attempts} attempts: {last_error}"
        )

    def _download(self, source: FeedSource) -> bytes:
        response = self._session.get(
            source.url,
            headers={"User-Agent": FEED_USER_AGENT, "Accept": FEED_ACCEPT_HEADER},
            timeout=self._retry_policy.timeout_seconds,
        )
        response.raise_for_status()
        return response.content


def validate_feed_content(payload: bytes, source_url: str) -> None:
    """Reject payloads that carry no sanctions-list markers.

    Raises:
        ContentValidationFailure: If no marker is present.
    """
    if not payload or not any(marker.encode("ascii") in payload for marker in FEED_CONTENT_MARKERS):
        raise ContentValidationFailure(
            f"Payload from {source_url} is not a sanctions feed: none of "
            f"{', '.join(FEED_CONTENT_MARKERS)} found."
        )


def write_snapshot(
    payload: bytes,
    source_url: str,
    output_dir: Path,
    fetched_at: datetime,
) -> RawSnapshot:
    """Write an immutable snapshot, then swap the latest pointer.

    Raises:
        SanctionsStoreError: If the snapshot already exists or writes fail.
    """
    snapshot_path = output_dir / (
        f"{SNAPSHOT_FILE_PREFIX}{fetched_at.strftime('%Y%m%dT%H%M%S%fZ')}{SNAPSHOT_FILE_SUFFIX}"
    )
    if snapshot_path.exists():
        raise SanctionsStoreError(
            f"Snapshot {snapshot_path} already exists; snapshots are never overwritten."
        )
    write_bytes_atomic(snapshot_path, payload)
    snapshot = RawSnapshot(
        path=snapshot_path,
        fetched_at=fetched_at,
        source_url=source_url,
        sha256=hashlib.sha256(payload).hexdigest(),
        size_bytes=len(payload),
    )
    write_json_file(
        output_dir / LATEST_POINTER_FILE_NAME,
        {
            "snapshot": snapshot_path.name,
            "fetched_at": fetched_at.isoformat(),
            "source_url": source_url,
            "sha256": snapshot.sha256,
            "size_bytes": snapshot.size_bytes,
        },
    )
    return snapshot


def load_latest_snapshot(output_dir: Path) -> RawSnapshot:
    """Resolve the latest pointer into a snapshot record.

    Raises:
        SanctionsStoreError: If no snapshot has been fetched yet or it is missing.
    """
    pointer_path = output_dir / LATEST_POINTER_FILE_NAME
    if not pointer_path.exists():
        raise SanctionsStoreError(
            f"No latest snapshot pointer at {pointer_path}. Run without --skip-download first."
        )
    payload = read_json_file(pointer_path)
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid snapshot pointer at {pointer_path}: expected object.")
    try:
        snapshot = RawSnapshot(
            path=output_dir / str(payload["snapshot"]),
            fetched_at=datetime.fromisoformat(str(payload["fetched_at"])),
            source_url=str(payload["source_url"]),
            sha256=str(payload["sha256"]),
            size_bytes=int(payload["size_bytes"]),
        )
    except (KeyError, ValueError) as error:
        raise SanctionsStoreError(
            f"Invalid snapshot pointer at {pointer_path}: {error}."
        ) from error
    if not snapshot.path.exists():
        raise SanctionsStoreError(
            f"Latest pointer references missing snapshot {snapshot.path}."
        )
    return snapshot


def check_freshness(
    output_dir: Path,
    max_age_hours: float = DEFAULT_FRESHNESS_HOURS,
    now: datetime | None = None,
) -> FreshnessReport:
    """Report how old the latest snapshot is. Advisory only."""
    try:
        snapshot = load_latest_snapshot(output_dir)
    except SanctionsStoreError:
        return FreshnessReport(latest_snapshot=None, age_hours=None, refresh_recommended=True)
    current_time = now or datetime.now(timezone.utc)
    age_hours = (current_time - snapshot.fetched_at).total_seconds() / 3600
    return FreshnessReport(
        latest_snapshot=snapshot.path,
        age_hours=age_hours,
        refresh_recommended=age_hours > max_age_hours,
    )
