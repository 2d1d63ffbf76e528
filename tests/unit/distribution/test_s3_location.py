"""Unit tests for the S3 serving location."""

from __future__ import annotations

from dataclasses import replace

import pytest

from core.errors import SanctionsConfigError, SanctionsDistributionError
from distribution.bundle_types import assemble_manifest
from distribution.s3_location import S3ServingLocation
from tests.registry_fakes import FakeS3Client, build_sample_outputs

CREATED_AT = "2026-10-01T12:00:00+00:00"


def _staged(tmp_path):
    root_set = build_sample_outputs(tmp_path)
    manifest = assemble_manifest(tmp_path, root_set, "staged", CREATED_AT)
    client = FakeS3Client()
    location = S3ServingLocation("edge", client, "s3://serving-bucket/sanctions/prod")
    location.stage_bundle(manifest, tmp_path)
    return location, client, manifest


def test_stage_bundle_writes_manifest_last(tmp_path) -> None:
    """The manifest is the final put, marking the bundle complete."""
    _, client, manifest = _staged(tmp_path)

    assert client.put_keys == [f"sanctions/prod/bundles/{manifest.bundle_id}/manifest.json"]


def test_stage_bundle_uploads_every_file(tmp_path) -> None:
    """Every manifest file should exist under the bundle prefix."""
    _, client, manifest = _staged(tmp_path)

    assert all(
        ("serving-bucket", f"sanctions/prod/bundles/{manifest.bundle_id}/{name}") in client.objects
        for name in manifest.files
    )


def test_restaging_identical_bundle_uploads_nothing(tmp_path) -> None:
    """An already staged bundle with matching files is left as is."""
    location, client, manifest = _staged(tmp_path)
    client.put_keys.clear()
    client.uploaded_keys.clear()

    location.stage_bundle(manifest, tmp_path)

    assert client.put_keys == [] and client.uploaded_keys == []


def test_restaging_bundle_with_other_files_is_refused(tmp_path) -> None:
    """A bundle id never gets different content uploaded over it."""
    location, client, manifest = _staged(tmp_path)
    changed = replace(manifest, files={**manifest.files, "roots.json": "0" * 64})
    client.uploaded_keys.clear()

    with pytest.raises(SanctionsDistributionError, match="different files"):
        location.stage_bundle(changed, tmp_path)

    assert client.uploaded_keys == []


def test_read_manifest_round_trips(tmp_path) -> None:
    """Staged manifests load back unchanged."""
    location, _, manifest = _staged(tmp_path)

    assert location.read_manifest(manifest.bundle_id) == manifest


def test_active_pointer_absent_until_activation(tmp_path) -> None:
    """A missing pointer object means nothing is active yet."""
    location, _, manifest = _staged(tmp_path)
    before = location.active_bundle_id()

    location.activate(manifest.bundle_id)

    assert before is None and location.active_bundle_id() == manifest.bundle_id


def test_activate_writes_single_pointer_object(tmp_path) -> None:
    """Promotion is exactly one put of the active pointer."""
    location, client, manifest = _staged(tmp_path)
    client.put_keys.clear()

    location.activate(manifest.bundle_id)

    assert client.put_keys == ["sanctions/prod/active.json"]


def test_delete_bundle_removes_objects(tmp_path) -> None:
    """Deleting an inactive bundle removes all its objects."""
    location, client, manifest = _staged(tmp_path)

    location.delete_bundle(manifest.bundle_id)

    assert location.list_bundles() == () and not location.has_bundle(manifest.bundle_id)


def test_delete_active_bundle_is_refused(tmp_path) -> None:
    """The active bundle stays in place."""
    location, _, manifest = _staged(tmp_path)
    location.activate(manifest.bundle_id)

    with pytest.raises(SanctionsDistributionError):
        location.delete_bundle(manifest.bundle_id)


def test_uri_without_prefix_is_rejected() -> None:
    """Serving locations need a key prefix."""
    with pytest.raises(SanctionsConfigError):
        S3ServingLocation("edge", FakeS3Client(), "s3://serving-bucket")
