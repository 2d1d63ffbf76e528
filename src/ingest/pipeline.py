"""Build pipeline orchestration.

This module runs fetch, normalize, build and root-set write as one
sequential run per data root. A lock file keeps overlapping runs off the
same output directory, and any stage failure stops the run before a
root set is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Mapping

from core.config import RegistryConfig
from core.constants import INPUTS_DIR_NAME, OUTPUTS_DIR_NAME, RAW_DIR_NAME, RUN_LOCK_FILE_NAME
from core.errors import FetchFailure, SanctionsError, SanctionsStoreError
from core.logging_config import get_logger
from core.types import CategoryCounts, NormalizationResult, RawSnapshot, RootSet
from ingest.entry_normalizer import normalize
from ingest.entry_store import EntryStore
from ingest.feed_ingestor import FeedIngestor, load_latest_snapshot
from trees.tree_builder import build_all_trees, build_root_set, write_tree_outputs

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    """Options for one build run.

    Attributes:
        skip_download: Reuse the latest snapshot instead of fetching.
        output_dir: Tree output directory, defaults to ``<data_root>/outputs``.
    """

    skip_download: bool = False
    output_dir: Path | None = None


@dataclass(frozen=True)
class PipelineResult:
    """Machine-readable run outcome."""

    success: bool
    stage: str
    output_dir: Path
    snapshot_path: Path | None = None
    entry_count: int = 0
    category_counts: Mapping[str, CategoryCounts] = field(default_factory=dict)
    root_set: RootSet | None = None
    error_kind: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "success": self.success,
            "stage": self.stage,
            "output_dir": str(self.output_dir),
            "snapshot": None if self.snapshot_path is None else str(self.snapshot_path),
            "entry_count": self.entry_count,
            "category_counts": {
                category: {"included": counts.included, "excluded": counts.excluded}
                for category, counts in self.category_counts.items()
            },
            "root_set": None if self.root_set is None else self.root_set.to_payload(),
            "error_kind": self.error_kind,
            "error": self.error,
        }


class SanctionsPipelineRunner:
    """Sequential runner for one fetch-normalize-build pass."""

    def __init__(
        self,
        options: PipelineOptions,
        config: RegistryConfig,
        ingestor: FeedIngestor | None = None,
    ) -> None:
        self._options = options
        self._config = config
        self._ingestor = ingestor or FeedIngestor.from_config(config)
        self._raw_dir = config.data_root / RAW_DIR_NAME
        self._entry_store = EntryStore(config.data_root / INPUTS_DIR_NAME)
        self._output_dir = options.output_dir or config.data_root / OUTPUTS_DIR_NAME
        self._stage = "initialized"
        self._snapshot: RawSnapshot | None = None
        self._normalized: NormalizationResult | None = None

    def run(self) -> PipelineResult:
        """Execute the pipeline and report success or the failing stage."""
        try:
            with _RunLock(self._config.data_root / RUN_LOCK_FILE_NAME):
                root_set = self._run_stages()
        except SanctionsError as error:
            _LOGGER.error(
                "pipeline_failed",
                stage=self._stage,
                error_kind=error.error_kind,
                error=str(error),
            )
            return self._result(success=False, error_kind=error.error_kind, error=str(error))
        return self._result(success=True, root_set=root_set)

    def _run_stages(self) -> RootSet:
        snapshot = self._load_snapshot()
        normalized = self._normalize(snapshot)
        self._stage = "build"
        trees = build_all_trees(
            normalized.entries,
            self._config.hash_algorithm,
            workers=self._config.build_workers,
        )
        root_set = build_root_set(trees)
        self._stage = "write"
        write_tree_outputs(trees, root_set, self._output_dir)
        self._stage = "completed"
        _log_pipeline_completion(snapshot, normalized, root_set, self._output_dir)
        return root_set

    def _load_snapshot(self) -> RawSnapshot:
        self._stage = "fetch"
        if self._options.skip_download:
            self._snapshot = load_latest_snapshot(self._raw_dir)
            return self._snapshot
        result = self._ingestor.fetch_latest(self._raw_dir)
        if not result.success or result.snapshot is None:
            reasons = "; ".join(f"{failure.source}: {failure.message}" for failure in result.failures)
            raise FetchFailure(f"{result.error}. {reasons}".strip())
        self._snapshot = result.snapshot
        return result.snapshot

    def _normalize(self, snapshot: RawSnapshot) -> NormalizationResult:
        self._stage = "normalize"
        normalized = normalize(snapshot)
        self._entry_store.save(normalized, snapshot.path)
        self._normalized = normalized
        return normalized

    def _result(
        self,
        success: bool,
        root_set: RootSet | None = None,
        error_kind: str | None = None,
        error: str | None = None,
    ) -> PipelineResult:
        normalized = self._normalized
        return PipelineResult(
            success=success,
            stage=self._stage,
            output_dir=self._output_dir,
            snapshot_path=None if self._snapshot is None else self._snapshot.path,
            entry_count=0 if normalized is None else len(normalized.entries),
            category_counts={} if normalized is None else normalized.category_counts,
            root_set=root_set,
            error_kind=error_kind,
            error=error,
        )


def run_pipeline(options: PipelineOptions, config: RegistryConfig) -> PipelineResult:
    """Run one build pass.

    Args:
        options: Run options.
        config: Runtime configuration.

    Returns:
        Pipeline result; failures are reported, not raised.
    """
    return SanctionsPipelineRunner(options, config).run()


def rebuild_from_entries(config: RegistryConfig, output_dir: Path | None = None) -> RootSet:
    """Rebuild trees from persisted normalized entries without fetching.

    Raises:
        SanctionsStoreError: If no normalized entries exist.
        BuildInvariantViolation: If an entry yields a malformed leaf.
    """
    normalized = EntryStore(config.data_root / INPUTS_DIR_NAME).load()
    target_dir = output_dir or config.data_root / OUTPUTS_DIR_NAME
    with _RunLock(config.data_root / RUN_LOCK_FILE_NAME):
        trees = build_all_trees(
            normalized.entries, config.hash_algorithm, workers=config.build_workers
        )
        root_set = build_root_set(trees)
        write_tree_outputs(trees, root_set, target_dir)
    return root_set


class _RunLock:
    """Exclusive create lock preventing overlapping runs on one data root."""

    def __init__(self, lock_path: Path) -> None:
        self._lock_path = lock_path

    def __enter__(self) -> "_RunLock":
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            descriptor = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as error:
            raise SanctionsStoreError(
                f"Another run holds {self._lock_path}. Wait for it to finish or remove a "
                "stale lock left by a crashed run."
            ) from error
        with os.fdopen(descriptor, "w", encoding="utf-8") as lock_file:
            lock_file.write(str(os.getpid()))
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock_path.unlink(missing_ok=True)


def _log_pipeline_completion(
    snapshot: RawSnapshot,
    normalized: NormalizationResult,
    root_set: RootSet,
    output_dir: Path,
) -> None:
    """Log pipeline completion with contextual metadata."""
    _LOGGER.info(
        "pipeline_completed",
        snapshot=str(snapshot.path),
        source_url=snapshot.source_url,
        entry_count=len(normalized.entries),
        output_dir=str(output_dir),
        hash_algorithm=root_set.hash_algorithm,
        roots={category: str(root) for category, root in root_set.roots.items()},
    )
