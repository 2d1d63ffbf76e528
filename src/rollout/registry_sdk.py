"""Python SDK for sanctions registry operations.

This module exposes high-level APIs for build runs, freshness checks,
bundle staging and witnesses, plus a factory for the rollout coordinator,
all backed by one runtime config and an optional rollout profile.
"""

from __future__ import annotations

from pathlib import Path

from eth_account.signers.local import LocalAccount

from core.config import RegistryConfig
from core.constants import INPUTS_DIR_NAME, OUTPUTS_DIR_NAME, RAW_DIR_NAME, ROLLOUTS_DIR_NAME
from core.errors import SanctionsConfigError, SanctionsStoreError
from core.rollout_profile import RolloutProfile, load_rollout_profile
from distribution.bundle_types import BundleManifest, BundleTag, build_bundle_id
from distribution.promotion import BundlePromoter, build_serving_locations
from ingest.entry_store import EntryStore
from ingest.feed_ingestor import FreshnessReport, check_freshness
from ingest.pipeline import PipelineOptions, PipelineResult, run_pipeline
from rollout.coordinator import RolloutCoordinator
from rollout.proposal_registry import ProposalRegistry
from rollout.proposal_types import PENDING_STATES, RolloutProposal
from trees.field_hash import FieldHash
from trees.leaf_encoding import canonical_fields, is_eligible, leaf_key_from_fields
from trees.sparse_merkle import Witness
from trees.tree_builder import load_root_set, load_tree


class SanctionsClient:
    """Primary SDK entry point for registry workflows."""

    def __init__(
        self,
        config: RegistryConfig | None = None,
        profile: RolloutProfile | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration.
            profile: Optional rollout profile; loaded from ``config.profile_path`` on demand.
        """
        self._config = config or RegistryConfig.from_env()
        self._profile = profile

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def output_dir(self) -> Path:
        return self._config.data_root / OUTPUTS_DIR_NAME

    def run(self, options: PipelineOptions | None = None) -> PipelineResult:
        """Run one fetch-normalize-build pass.

        Returns:
            Pipeline result; failures are reported in the result, not raised.
        """
        return run_pipeline(options or PipelineOptions(), self._config)

    def freshness(self, max_age_hours: float | None = None) -> FreshnessReport:
        raw_dir = self._config.data_root / RAW_DIR_NAME
        if max_age_hours is None:
            return check_freshness(raw_dir)
        return check_freshness(raw_dir, max_age_hours=max_age_hours)

    def profile(self) -> RolloutProfile:
        """Return the rollout profile, loading it from config on first use.

        Raises:
            SanctionsConfigError: If no profile was given or configured.
        """
        if self._profile is None:
            if self._config.profile_path is None:
                raise SanctionsConfigError(
                    "No rollout profile configured. Set SANCTIONS_PROFILE or pass --profile."
                )
            self._profile = load_rollout_profile(self._config.profile_path)
        return self._profile

    def promoter(self) -> BundlePromoter:
        return BundlePromoter(build_serving_locations(self.profile(), self._config))

    def coordinator(self, executor: LocalAccount | None = None) -> RolloutCoordinator:
        return RolloutCoordinator.from_profile(self._config, self.profile(), executor)

    def proposals(self) -> tuple[RolloutProposal, ...]:
        return ProposalRegistry(self._config.data_root / ROLLOUTS_DIR_NAME).load_all()

    def prestage(self, output_dir: Path | None = None, tag: BundleTag = "staged") -> BundleManifest:
        """Stage the last build's outputs at every serving location."""
        source_dir = output_dir or self.output_dir
        return self.promoter().prestage(source_dir, load_root_set(source_dir), tag)

    def prune(self, keep: int) -> dict[str, tuple[str, ...]]:
        """Prune old bundles, sparing those that unfinished proposals will promote."""
        return self.promoter().prune(keep, protected=_in_flight_bundle_ids(self.proposals()))

    def witness(
        self,
        category: str,
        fields: tuple[str, ...] | None = None,
        entry_id: str | None = None,
        tree_dir: Path | None = None,
    ) -> Witness:
        """Produce a membership or non-membership witness.

        Exactly one of ``fields`` (the canonical field strings of an identity)
        or ``entry_id`` (a normalized entry from the last run) must be given.

        Raises:
            SanctionsConfigError: If both or neither lookup inputs are given.
            SanctionsStoreError: If the entry or tree cannot be loaded.
        """
        if (fields is None) == (entry_id is None):
            raise SanctionsConfigError("Pass exactly one of identity fields or an entry id.")
        field_hash = FieldHash(self._config.hash_algorithm)
        if entry_id is not None:
            fields = self._entry_fields(entry_id, category)
        tree = load_tree(tree_dir or self.output_dir, category, self._config.hash_algorithm)
        return tree.prove(leaf_key_from_fields(tuple(fields or ()), category, field_hash))

    def _entry_fields(self, entry_id: str, category: str) -> tuple[str, ...]:
        normalized = EntryStore(self._config.data_root / INPUTS_DIR_NAME).load()
        for entry in normalized.entries:
            if entry.entry_id != entry_id:
                continue
            if not is_eligible(entry, category):
                raise SanctionsStoreError(
                    f"Entry {entry_id} lacks the fields required by {category}."
                )
            return canonical_fields(entry, category)
        raise SanctionsStoreError(f"Unknown entry {entry_id!r} in the last normalized run.")


def _in_flight_bundle_ids(proposals: tuple[RolloutProposal, ...]) -> frozenset[str]:
    return frozenset(
        proposal.bundle_id or build_bundle_id(proposal.root_set)
        for proposal in proposals
        if proposal.state in (*PENDING_STATES, "executing")
    )
