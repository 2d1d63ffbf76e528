"""Unit tests for build pipeline orchestration."""

from __future__ import annotations

import pytest
import requests

from core.constants import ROOT_SET_FILE_NAME, RUN_LOCK_FILE_NAME
from core.errors import SanctionsStoreError
from ingest.entry_store import EntryStore
from ingest.feed_ingestor import FeedIngestor, FeedSource, RetryPolicy, write_snapshot
from ingest.pipeline import PipelineOptions, SanctionsPipelineRunner, rebuild_from_entries
from tests.fixture_paths import fixture_path
from tests.registry_fakes import BUILD_TIME, make_config
from trees.tree_builder import load_root_set


class _OfflineSession:
    def get(self, url: str, headers: dict[str, str], timeout: float) -> object:
        raise requests.ConnectionError(f"offline: {url}")


def _offline_ingestor() -> FeedIngestor:
    return FeedIngestor(
        [FeedSource(name="primary", url="https://primary.example/sdn.xml")],
        RetryPolicy(attempts=1, delay_seconds=0.0, timeout_seconds=1.0),
        session=_OfflineSession(),  # type: ignore[arg-type]
        sleep=lambda _: None,
    )


def _seed_snapshot(data_root) -> None:
    write_snapshot(
        fixture_path("sdn_sample.xml").read_bytes(),
        "https://primary.example/sdn.xml",
        data_root / "raw",
        BUILD_TIME,
    )


def test_pipeline_skip_download_builds_from_latest_snapshot(tmp_path) -> None:
    """Skipping download should reuse the stored snapshot and write roots."""
    config = make_config(tmp_path)
    _seed_snapshot(tmp_path)

    result = SanctionsPipelineRunner(
        PipelineOptions(skip_download=True), config, ingestor=_offline_ingestor()
    ).run()

    assert (
        result.success
        and result.stage == "completed"
        and result.entry_count == 6
        and result.root_set is not None
        and load_root_set(tmp_path / "outputs") == result.root_set
    )


def test_pipeline_persists_normalized_entries(tmp_path) -> None:
    """A successful run should leave entries for later rebuilds."""
    config = make_config(tmp_path)
    _seed_snapshot(tmp_path)

    SanctionsPipelineRunner(
        PipelineOptions(skip_download=True), config, ingestor=_offline_ingestor()
    ).run()

    assert len(EntryStore(tmp_path / "inputs").load().entries) == 6


def test_pipeline_reports_fetch_failure_without_outputs(tmp_path) -> None:
    """When every source fails the run stops at fetch and writes no roots."""
    config = make_config(tmp_path)

    result = SanctionsPipelineRunner(PipelineOptions(), config, ingestor=_offline_ingestor()).run()

    assert (
        not result.success
        and result.stage == "fetch"
        and result.error_kind == "FetchFailure"
        and not (tmp_path / "outputs" / ROOT_SET_FILE_NAME).exists()
    )


def test_pipeline_refuses_overlapping_runs(tmp_path) -> None:
    """A lock under the data root fails runs aimed at any output directory."""
    config = make_config(tmp_path)
    _seed_snapshot(tmp_path)
    lock_path = tmp_path / RUN_LOCK_FILE_NAME
    lock_path.write_text("4242", encoding="utf-8")

    result = SanctionsPipelineRunner(
        PipelineOptions(skip_download=True, output_dir=tmp_path / "elsewhere"),
        config,
        ingestor=_offline_ingestor(),
    ).run()

    assert not result.success and result.error_kind == "StoreError" and lock_path.exists()


def test_pipeline_result_payload_is_json_ready(tmp_path) -> None:
    """Payload fields should be plain strings, numbers and mappings."""
    config = make_config(tmp_path)

    payload = SanctionsPipelineRunner(
        PipelineOptions(), config, ingestor=_offline_ingestor()
    ).run().to_payload()

    assert payload["success"] is False and payload["root_set"] is None and payload["stage"] == "fetch"


def test_rebuild_from_entries_matches_pipeline_roots(tmp_path) -> None:
    """Rebuilding from stored entries should reproduce the same roots."""
    config = make_config(tmp_path)
    _seed_snapshot(tmp_path)
    result = SanctionsPipelineRunner(
        PipelineOptions(skip_download=True), config, ingestor=_offline_ingestor()
    ).run()

    rebuilt = rebuild_from_entries(config, tmp_path / "rebuilt")

    assert result.root_set is not None and dict(rebuilt.roots) == dict(result.root_set.roots)


def test_rebuild_from_entries_honors_data_root_lock(tmp_path) -> None:
    """Rebuilds into a separate directory still wait for the running build."""
    config = make_config(tmp_path)
    _seed_snapshot(tmp_path)
    SanctionsPipelineRunner(
        PipelineOptions(skip_download=True), config, ingestor=_offline_ingestor()
    ).run()
    (tmp_path / RUN_LOCK_FILE_NAME).write_text("4242", encoding="utf-8")

    with pytest.raises(SanctionsStoreError, match="Another run"):
        rebuild_from_entries(config, tmp_path / "rebuilt")
