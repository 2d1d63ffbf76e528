"""Serving bundle models and bundle assembly helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import json
from pathlib import Path
from typing import Literal, Mapping, cast

from core.constants import ROOT_SET_FILE_NAME
from core.errors import SanctionsDistributionError
from core.types import RootSet, root_set_from_payload
from trees.tree_builder import tree_file_name

BundleTag = Literal["staged", "test"]
SUPPORTED_BUNDLE_TAGS: tuple[BundleTag, ...] = ("staged", "test")


@dataclass(frozen=True)
class BundleManifest:
    """Immutable description of one serving bundle.

    Attributes:
        bundle_id: Bundle identifier, derived from the root set.
        tag: ``staged`` for production candidates, ``test`` for dry runs.
        created_at: ISO-8601 staging timestamp.
        root_set: Root set the bundle's trees produce.
        files: File name to sha256 digest.
    """

    bundle_id: str
    tag: BundleTag
    created_at: str
    root_set: RootSet
    files: Mapping[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, object]:
        return {
            "bundle_id": self.bundle_id,
            "tag": self.tag,
            "created_at": self.created_at,
            "root_set": self.root_set.to_payload(),
            "files": dict(sorted(self.files.items())),
        }


@dataclass(frozen=True)
class PromotionReport:
    """Outcome of promoting one bundle across serving locations."""

    bundle_id: str
    promoted: tuple[str, ...]
    failed: Mapping[str, str]
    mismatch_window_ms: float

    @property
    def success(self) -> bool:
        return not self.failed


def build_bundle_id(root_set: RootSet) -> str:
    """Derive a stable bundle id from the root set contents."""
    roots_digest = hashlib.sha256(
        json.dumps(root_set.to_payload()["roots"], sort_keys=True).encode("utf-8")
    ).hexdigest()
    compact_timestamp = "".join(character for character in root_set.timestamp if character.isdigit())
    return f"bundle-{compact_timestamp[:14]}-{roots_digest[:12]}"


def bundle_file_names(root_set: RootSet) -> tuple[str, ...]:
    """Files a complete bundle holds: one tree per category plus the root set."""
    return tuple(tree_file_name(category) for category in sorted(root_set.roots)) + (
        ROOT_SET_FILE_NAME,
    )


def assemble_manifest(
    output_dir: Path,
    root_set: RootSet,
    tag: BundleTag,
    created_at: str,
) -> BundleManifest:
    """Hash the build outputs that make up a bundle.

    Raises:
        SanctionsDistributionError: If a tree file is missing from ``output_dir``.
    """
    if tag not in SUPPORTED_BUNDLE_TAGS:
        raise SanctionsDistributionError(
            f"Unsupported bundle tag {tag!r}. Supported: {', '.join(SUPPORTED_BUNDLE_TAGS)}."
        )
    files: dict[str, str] = {}
    for file_name in bundle_file_names(root_set):
        file_path = output_dir / file_name
        try:
            files[file_name] = hashlib.sha256(file_path.read_bytes()).hexdigest()
        except OSError as error:
            raise SanctionsDistributionError(
                f"Cannot stage bundle: missing build output {file_path}. Rebuild trees first."
            ) from error
    return BundleManifest(
        bundle_id=build_bundle_id(root_set),
        tag=tag,
        created_at=created_at,
        root_set=root_set,
        files=files,
    )


def manifest_from_payload(payload: object, source: str) -> BundleManifest:
    """Deserialize a bundle manifest payload."""
    if not isinstance(payload, dict) or not isinstance(payload.get("files"), dict):
        raise SanctionsDistributionError(f"Invalid bundle manifest at {source}: expected object.")
    tag = payload.get("tag")
    if tag not in SUPPORTED_BUNDLE_TAGS:
        raise SanctionsDistributionError(f"Invalid bundle manifest at {source}: bad tag {tag!r}.")
    return BundleManifest(
        bundle_id=str(payload.get("bundle_id", "")),
        tag=cast(BundleTag, tag),
        created_at=str(payload.get("created_at", "")),
        root_set=root_set_from_payload(payload.get("root_set"), Path(source)),
        files={str(name): str(digest) for name, digest in payload["files"].items()},
    )
