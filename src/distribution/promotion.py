"""Bundle pre-staging, promotion and pruning across serving locations.

Promotion is the only step that runs after on-chain confirmation and it
is nothing but one pointer swap per location. Locations are promoted
independently: a failure at one location does not roll back the others,
and every failure is collected into a single ``PromotionFailure``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import time
from typing import Collection, Protocol, Sequence

from core.config import RegistryConfig
from core.constants import DEFAULT_PRUNE_KEEP
from core.errors import PromotionFailure, SanctionsDistributionError, SanctionsStoreError
from core.logging_config import get_logger
from core.rollout_profile import RolloutProfile
from core.types import RootSet
from distribution.bundle_types import BundleManifest, BundleTag, PromotionReport, assemble_manifest
from distribution.local_location import LocalServingLocation
from distribution.s3_location import S3ServingLocation, create_s3_client

_LOGGER = get_logger(__name__)


class ServingLocation(Protocol):
    """Storage that holds immutable bundles and one active pointer."""

    name: str

    def stage_bundle(self, manifest: BundleManifest, source_dir: Path) -> None: ...

    def has_bundle(self, bundle_id: str) -> bool: ...

    def read_manifest(self, bundle_id: str) -> BundleManifest: ...

    def activate(self, bundle_id: str) -> None: ...

    def active_bundle_id(self) -> str | None: ...

    def list_bundles(self) -> tuple[str, ...]: ...

    def delete_bundle(self, bundle_id: str) -> None: ...


class BundlePromoter:
    """Coordinates bundle lifecycle across every serving location."""

    def __init__(self, locations: Sequence[ServingLocation]) -> None:
        self._locations = tuple(locations)

    @property
    def locations(self) -> tuple[ServingLocation, ...]:
        return self._locations

    def prestage(self, output_dir: Path, root_set: RootSet, tag: BundleTag = "staged") -> BundleManifest:
        """Copy build outputs to every location without touching active pointers.

        Raises:
            SanctionsDistributionError: If any location cannot be staged.
        """
        manifest = assemble_manifest(
            output_dir, root_set, tag, datetime.now(timezone.utc).isoformat()
        )
        for location in self._locations:
            location.stage_bundle(manifest, output_dir)
            _LOGGER.info(
                "bundle_prestaged",
                location=location.name,
                bundle_id=manifest.bundle_id,
                tag=tag,
            )
        return manifest

    def promote(self, bundle_id: str) -> PromotionReport:
        """Swap every location's active pointer to ``bundle_id``.

        Raises:
            PromotionFailure: If any location failed; the message names them all.
        """
        started = time.monotonic()
        promoted: list[str] = []
        failed: dict[str, str] = {}
        for location in self._locations:
            try:
                location.activate(bundle_id)
            except (SanctionsDistributionError, SanctionsStoreError) as error:
                failed[location.name] = str(error)
                _LOGGER.error(
                    "bundle_promotion_failed",
                    location=location.name,
                    bundle_id=bundle_id,
                    error=str(error),
                )
                continue
            promoted.append(location.name)
        report = PromotionReport(
            bundle_id=bundle_id,
            promoted=tuple(promoted),
            failed=failed,
            mismatch_window_ms=(time.monotonic() - started) * 1000,
        )
        _LOGGER.info(
            "bundle_promotion_completed",
            bundle_id=bundle_id,
            promoted=list(report.promoted),
            failed=sorted(report.failed),
            mismatch_window_ms=round(report.mismatch_window_ms, 3),
        )
        if failed:
            raise PromotionFailure(
                f"Bundle {bundle_id} failed to promote at {', '.join(sorted(failed))}. "
                "On-chain roots are ahead of those locations; rerun 'promote' to retry.",
                failed_locations=tuple(sorted(failed)),
            )
        return report

    def prune(
        self,
        keep: int = DEFAULT_PRUNE_KEEP,
        protected: Collection[str] = (),
    ) -> dict[str, tuple[str, ...]]:
        """Delete inactive bundles beyond the ``keep`` most recent per location.

        The active bundle and any ``protected`` bundle (one an unfinished
        proposal will promote) are never deleted and do not count toward
        ``keep``. Test bundles rank below staged ones, so they go first.
        """
        deleted: dict[str, tuple[str, ...]] = {}
        for location in self._locations:
            active_bundle_id = location.active_bundle_id()
            inactive = [
                location.read_manifest(bundle_id)
                for bundle_id in location.list_bundles()
                if bundle_id != active_bundle_id
                and bundle_id not in protected
                and location.has_bundle(bundle_id)
            ]
            inactive.sort(
                key=lambda manifest: (
                    manifest.tag == "staged",
                    manifest.created_at,
                    manifest.bundle_id,
                ),
                reverse=True,
            )
            to_delete = tuple(manifest.bundle_id for manifest in inactive[keep:])
            for bundle_id in to_delete:
                location.delete_bundle(bundle_id)
            deleted[location.name] = to_delete
            _LOGGER.info(
                "bundles_pruned",
                location=location.name,
                active_bundle_id=active_bundle_id,
                protected=sorted(protected),
                deleted=list(to_delete),
            )
        return deleted


def build_serving_locations(
    profile: RolloutProfile,
    config: RegistryConfig,
    s3_client: object | None = None,
) -> tuple[ServingLocation, ...]:
    """Instantiate serving locations declared in a rollout profile."""
    locations: list[ServingLocation] = []
    for settings in profile.serving_locations:
        if settings.kind == "local":
            locations.append(LocalServingLocation(settings.name, Path(str(settings.path))))
            continue
        client = s3_client or create_s3_client(config)
        locations.append(S3ServingLocation(settings.name, client, str(settings.uri)))
    return tuple(locations)
