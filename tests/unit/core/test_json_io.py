"""Unit tests for JSON state I/O, S3 URIs and root set payloads."""

from __future__ import annotations

import pytest

from core.errors import SanctionsConfigError, SanctionsStoreError
from core.json_io import read_json_file, write_bytes_atomic, write_json_file
from core.s3_uri import parse_s3_uri
from core.types import RootSet, root_set_from_payload


def test_write_json_file_leaves_no_temp_files(tmp_path) -> None:
    """Atomic writes should only leave the target file behind."""
    target = tmp_path / "state" / "payload.json"

    write_json_file(target, {"b": 1, "a": 2})

    assert read_json_file(target) == {"a": 2, "b": 1} and [
        path.name for path in target.parent.iterdir()
    ] == ["payload.json"]


def test_read_json_file_returns_default_for_missing_file(tmp_path) -> None:
    """Missing files should yield the provided default."""
    payload = read_json_file(tmp_path / "missing.json", default_value={"proposals": []})

    assert payload == {"proposals": []}


def test_read_json_file_raises_for_corrupt_json(tmp_path) -> None:
    """Corrupt state files should surface as store errors."""
    target = tmp_path / "broken.json"
    target.write_text("{not json", encoding="utf-8")

    with pytest.raises(SanctionsStoreError):
        read_json_file(target)


def test_write_bytes_atomic_replaces_existing_content(tmp_path) -> None:
    """Byte writes should replace prior content in full."""
    target = tmp_path / "blob.bin"
    write_bytes_atomic(target, b"old-content")

    write_bytes_atomic(target, b"new")

    assert target.read_bytes() == b"new"


def test_parse_s3_uri_strips_prefix_slashes() -> None:
    """Prefixes should be normalized without surrounding slashes."""
    location = parse_s3_uri("s3://sanctions-bucket/trees/prod/")

    assert location.bucket == "sanctions-bucket" and location.prefix == "trees/prod"


def test_s3_location_keys_live_under_prefix() -> None:
    """Object keys and URLs are built under the configured prefix."""
    location = parse_s3_uri("s3://sanctions-bucket/trees/prod")
    object_key = location.key("bundles", "bundle-1/", "roots.json")

    assert (
        object_key == "trees/prod/bundles/bundle-1/roots.json"
        and location.url(object_key) == "s3://sanctions-bucket/trees/prod/bundles/bundle-1/roots.json"
    )


def test_parse_s3_uri_rejects_non_s3_scheme() -> None:
    """Only s3:// URIs are accepted."""
    with pytest.raises(SanctionsConfigError):
        parse_s3_uri("https://bucket/prefix")


def test_root_set_payload_round_trips_large_roots(tmp_path) -> None:
    """Roots serialize as decimal strings so field elements keep full precision."""
    root_set = RootSet(
        timestamp="2026-10-01T12:00:00+00:00",
        hash_algorithm="sha256",
        roots={"name_and_dob": 2**250 + 7, "name_and_yob": 0},
    )

    restored = root_set_from_payload(root_set.to_payload(), tmp_path / "roots.json")

    assert restored == root_set and root_set.to_payload()["roots"]["name_and_dob"] == str(2**250 + 7)


def test_root_set_from_payload_rejects_non_integer_roots(tmp_path) -> None:
    """Non-decimal roots should be rejected as corrupt state."""
    payload = {"timestamp": "t", "hash_algorithm": "sha256", "roots": {"name_and_dob": "0xabc"}}

    with pytest.raises(SanctionsStoreError):
        root_set_from_payload(payload, tmp_path / "roots.json")


def test_same_roots_ignores_timestamp() -> None:
    """Root comparison should not depend on build time."""
    first = RootSet(timestamp="2026-10-01", hash_algorithm="sha256", roots={"name_and_dob": 5})
    second = RootSet(timestamp="2026-10-02", hash_algorithm="sha256", roots={"name_and_dob": 5})

    assert first.same_roots(second) and not first.same_roots(None)
