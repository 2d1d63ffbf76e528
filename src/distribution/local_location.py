"""Filesystem serving location.

Layout under the location root::

    bundles/<bundle_id>/<category>.json
    bundles/<bundle_id>/roots.json
    bundles/<bundle_id>/manifest.json
    active.json

Bundle directories are written under a temp name and renamed into place,
then never modified. ``active.json`` is the only mutable file and is
replaced atomically, so a reader that resolves the pointer first and then
reads from the bundle directory sees old or new trees, never a mix.
"""

from __future__ import annotations

from datetime import datetime, timezone
import os
from pathlib import Path
import shutil

from core.constants import ACTIVE_POINTER_FILE_NAME, BUNDLE_MANIFEST_FILE_NAME, BUNDLES_DIR_NAME
from core.errors import SanctionsDistributionError, SanctionsStoreError
from core.json_io import read_json_file, write_json_file
from distribution.bundle_types import BundleManifest, manifest_from_payload


class LocalServingLocation:
    """Serving location backed by a local or mounted directory."""

    def __init__(self, name: str, root: Path) -> None:
        self.name = name
        self._root = root.expanduser().resolve()
        self._bundles_root = self._root / BUNDLES_DIR_NAME

    @property
    def root(self) -> Path:
        return self._root

    def stage_bundle(self, manifest: BundleManifest, source_dir: Path) -> None:
        """Copy bundle files into an immutable bundle directory.

        Re-staging an existing bundle is a no-op once its manifest matches.
        """
        bundle_dir = self._bundles_root / manifest.bundle_id
        if bundle_dir.exists():
            if self.read_manifest(manifest.bundle_id).files == manifest.files:
                return
            raise SanctionsDistributionError(
                f"Bundle {manifest.bundle_id} already exists at {self.name} with different files."
            )
        temp_dir = self._bundles_root / f".{manifest.bundle_id}.{os.getpid()}.tmp"
        try:
            shutil.rmtree(temp_dir, ignore_errors=True)
            temp_dir.mkdir(parents=True)
            for file_name in manifest.files:
                shutil.copy2(source_dir / file_name, temp_dir / file_name)
            write_json_file(temp_dir / BUNDLE_MANIFEST_FILE_NAME, manifest.to_payload())
            os.replace(temp_dir, bundle_dir)
        except (OSError, SanctionsStoreError) as error:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise SanctionsDistributionError(
                f"Failed to stage bundle {manifest.bundle_id} at {self.name}: {error}."
            ) from error

    def has_bundle(self, bundle_id: str) -> bool:
        return (self._bundles_root / bundle_id / BUNDLE_MANIFEST_FILE_NAME).exists()

    def read_manifest(self, bundle_id: str) -> BundleManifest:
        manifest_path = self._bundles_root / bundle_id / BUNDLE_MANIFEST_FILE_NAME
        return manifest_from_payload(read_json_file(manifest_path), str(manifest_path))

    def activate(self, bundle_id: str) -> None:
        """Swap the active pointer to a staged bundle."""
        if not self.has_bundle(bundle_id):
            raise SanctionsDistributionError(
                f"Bundle {bundle_id} is not staged at {self.name}; pre-stage before promotion."
            )
        write_json_file(
            self._root / ACTIVE_POINTER_FILE_NAME,
            {"bundle_id": bundle_id, "promoted_at": datetime.now(timezone.utc).isoformat()},
        )

    def active_bundle_id(self) -> str | None:
        pointer_path = self._root / ACTIVE_POINTER_FILE_NAME
        if not pointer_path.exists():
            return None
        payload = read_json_file(pointer_path)
        if not isinstance(payload, dict) or not payload.get("bundle_id"):
            raise SanctionsDistributionError(f"Invalid active pointer at {pointer_path}.")
        return str(payload["bundle_id"])

    def list_bundles(self) -> tuple[str, ...]:
        if not self._bundles_root.exists():
            return ()
        return tuple(
            sorted(
                path.name
                for path in self._bundles_root.iterdir()
                if path.is_dir() and not path.name.startswith(".")
            )
        )

    def delete_bundle(self, bundle_id: str) -> None:
        if bundle_id == self.active_bundle_id():
            raise SanctionsDistributionError(
                f"Refusing to delete active bundle {bundle_id} at {self.name}."
            )
        shutil.rmtree(self._bundles_root / bundle_id)

    def read_active_file(self, file_name: str) -> bytes:
        """Read one file from the active bundle, resolving the pointer first."""
        bundle_id = self.active_bundle_id()
        if bundle_id is None:
            raise SanctionsDistributionError(f"No active bundle at {self.name}.")
        return (self._bundles_root / bundle_id / file_name).read_bytes()
