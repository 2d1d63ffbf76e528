"""Integration tests for build-to-serving rollout behavior."""

from __future__ import annotations

import json
import threading

import pytest
import requests

from core.constants import ROOT_SET_FILE_NAME
from core.errors import ConfirmationPending, NoOpProposalError, StaleProposalError
from ingest.feed_ingestor import FeedIngestor, FeedSource, RetryPolicy
from ingest.pipeline import PipelineOptions, SanctionsPipelineRunner
from tests.registry_fakes import BUILD_TIME, build_harness, build_sample_outputs, make_config


class _DownSession:
    def get(self, url: str, headers: dict[str, str], timeout: float) -> object:
        raise requests.ConnectionError(f"unreachable: {url}")


def test_serving_stays_on_previous_bundle_until_receipt(tmp_path) -> None:
    """Until the chain confirms, readers keep seeing the previous roots."""
    harness = build_harness(tmp_path)
    first = harness.coordinator.propose(harness.root_set, harness.signers[0])
    harness.coordinator.cosign(first.proposal_id, harness.signers[1])
    harness.coordinator.execute(first.proposal_id)
    next_roots = build_sample_outputs(tmp_path / "outputs-next", hash_algorithm="blake2s")
    harness.promoter.prestage(tmp_path / "outputs-next", next_roots)
    second = harness.coordinator.propose(next_roots, harness.signers[0])
    harness.coordinator.cosign(second.proposal_id, harness.signers[1])
    harness.chain.withhold_receipts = True

    with pytest.raises(ConfirmationPending):
        harness.coordinator.execute(second.proposal_id)

    assert all(location.active_bundle_id() == first.bundle_id for location in harness.locations)


def test_readers_never_observe_mixed_bundles(tmp_path) -> None:
    """Concurrent readers only ever see a complete bundle during promotions."""
    harness = build_harness(tmp_path)
    next_roots = build_sample_outputs(tmp_path / "outputs-next", hash_algorithm="blake2s")
    next_bundle = harness.promoter.prestage(tmp_path / "outputs-next", next_roots).bundle_id
    first_bundle = harness.promoter.prestage(harness.output_dir, harness.root_set).bundle_id
    expected = {
        json.dumps(harness.root_set.to_payload(), sort_keys=True),
        json.dumps(next_roots.to_payload(), sort_keys=True),
    }
    location = harness.locations[0]
    location.activate(first_bundle)
    observed: list[str] = []
    stop = threading.Event()

    def _read() -> None:
        while True:
            payload = json.loads(location.read_active_file(ROOT_SET_FILE_NAME))
            observed.append(json.dumps(payload, sort_keys=True))
            if stop.is_set():
                return

    reader = threading.Thread(target=_read)
    reader.start()
    for index in range(200):
        harness.promoter.promote(next_bundle if index % 2 == 0 else first_bundle)
    stop.set()
    reader.join()

    assert observed and set(observed) <= expected


def test_all_sources_down_keeps_previous_outputs(tmp_path) -> None:
    """A failed fetch never replaces the last good root set."""
    config = make_config(tmp_path)
    previous = build_sample_outputs(tmp_path / "outputs")
    ingestor = FeedIngestor(
        [
            FeedSource(name="primary", url="https://primary.example/sdn.xml"),
            FeedSource(name="fallback-1", url="https://mirror.example/sdn.xml"),
        ],
        RetryPolicy(attempts=2, delay_seconds=0.0, timeout_seconds=1.0),
        session=_DownSession(),  # type: ignore[arg-type]
        sleep=lambda _: None,
    )

    result = SanctionsPipelineRunner(PipelineOptions(), config, ingestor=ingestor).run()

    assert (
        not result.success
        and result.stage == "fetch"
        and json.loads((tmp_path / "outputs" / ROOT_SET_FILE_NAME).read_text(encoding="utf-8"))
        == previous.to_payload()
    )


def test_superseded_proposal_cannot_execute(tmp_path) -> None:
    """Only the newest proposal can reach the chain."""
    harness = build_harness(tmp_path)
    first = harness.coordinator.propose(harness.root_set, harness.signers[0])
    harness.coordinator.cosign(first.proposal_id, harness.signers[1])
    harness.coordinator.propose(
        build_sample_outputs(tmp_path / "outputs-next", timestamp=BUILD_TIME.replace(hour=18)),
        harness.signers[0],
    )

    with pytest.raises(StaleProposalError):
        harness.coordinator.execute(first.proposal_id)

    assert harness.chain.submitted == []


def test_rebuilding_confirmed_roots_is_noop(tmp_path) -> None:
    """After confirmation, proposing the same roots again is refused."""
    harness = build_harness(tmp_path)
    proposal = harness.coordinator.propose(harness.root_set, harness.signers[0])
    harness.coordinator.cosign(proposal.proposal_id, harness.signers[1])
    harness.coordinator.execute(proposal.proposal_id)
    rebuilt = build_sample_outputs(tmp_path / "outputs-rebuilt", timestamp=BUILD_TIME.replace(hour=20))

    with pytest.raises(NoOpProposalError):
        harness.coordinator.propose(rebuilt, harness.signers[0])
