"""Unit tests for category tree builds and root set output."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.constants import ROOT_SET_FILE_NAME
from core.errors import BuildInvariantViolation, SanctionsStoreError
from core.types import BirthDate, SanctionEntry
from trees import tree_builder
from trees.field_hash import FieldHash
from trees.leaf_encoding import SANCTIONS_CATEGORIES, leaf_key
from trees.tree_builder import (
    build_all_trees,
    build_category_tree,
    build_root_set,
    load_root_set,
    load_tree,
    write_tree_outputs,
)

BUILD_TIME = datetime(2026, 10, 1, tzinfo=timezone.utc)


def _entries() -> tuple[SanctionEntry, ...]:
    return (
        SanctionEntry(
            entry_id="1001",
            source_uid="1001",
            alias_index=0,
            first_name_tokens=("IVAN",),
            last_name_tokens=("PETROV",),
            birth_date=BirthDate(year=1965, month=3, day=12),
            passport_number="AB123456",
            passport_country="RUSSIA",
        ),
        SanctionEntry(
            entry_id="1001-aka-2002",
            source_uid="1001",
            alias_index=1,
            first_name_tokens=("IVAN",),
            last_name_tokens=("PETROFF",),
            birth_date=BirthDate(year=1965, month=3, day=12),
            passport_number="AB123456",
            passport_country="RUSSIA",
        ),
        SanctionEntry(
            entry_id="1002",
            source_uid="1002",
            alias_index=0,
            first_name_tokens=("JOSE",),
            last_name_tokens=("GARCIA", "LOPEZ"),
            birth_date=BirthDate(year=1970),
        ),
    )


def test_build_category_tree_counts_leaves_and_duplicates() -> None:
    """Aliases sharing a passport collapse onto one leaf and are counted."""
    built = build_category_tree(_entries(), "passport_no_and_nationality", "sha256")

    assert built.leaf_count == 1 and built.duplicate_count == 1


def test_build_category_tree_skips_ineligible_entries() -> None:
    """Year-only dates should not reach full-DOB trees."""
    built = build_category_tree(_entries(), "name_and_dob", "sha256")

    assert built.leaf_count == 2 and built.serialized["category"] == "name_and_dob"


def test_build_category_tree_contains_entry_keys() -> None:
    """Built tree leaves should be the entries' derived keys."""
    field_hash = FieldHash("sha256")
    built = build_category_tree(_entries(), "name_and_yob", "sha256")

    expected = {str(leaf_key(entry, "name_and_yob", field_hash)) for entry in _entries()}

    assert set(built.serialized["leaves"]) == expected  # type: ignore[arg-type]


def test_build_category_tree_is_order_independent() -> None:
    """Reversing entry order should not change any root."""
    forward = build_category_tree(_entries(), "aadhaar_name_and_yob", "sha256")
    backward = build_category_tree(tuple(reversed(_entries())), "aadhaar_name_and_yob", "sha256")

    assert forward.root == backward.root


def test_build_category_tree_fails_on_malformed_entry() -> None:
    """A leaf field that escapes canonicalization fails the category build."""
    bad_entry = SanctionEntry(
        entry_id="9999",
        source_uid="9999",
        alias_index=0,
        first_name_tokens=("ÅSA",),
        last_name_tokens=("BERG",),
        birth_date=BirthDate(year=1980),
    )

    with pytest.raises(BuildInvariantViolation, match="9999"):
        build_category_tree(_entries() + (bad_entry,), "name_and_yob", "sha256")


def test_build_all_trees_returns_categories_in_order() -> None:
    """Every category should be built in registry order."""
    trees = build_all_trees(_entries(), "sha256")

    assert tuple(tree.category for tree in trees) == SANCTIONS_CATEGORIES


def test_build_all_trees_parallel_matches_sequential() -> None:
    """Process fan-out should produce the same roots as a sequential build."""
    sequential = build_all_trees(_entries(), "sha256")
    parallel = build_all_trees(_entries(), "sha256", workers=2)

    assert [tree.root for tree in parallel] == [tree.root for tree in sequential]


def test_build_root_set_rejects_mixed_algorithms() -> None:
    """Trees from different primitives cannot share a root set."""
    trees = (
        build_category_tree(_entries(), "name_and_dob", "sha256"),
        build_category_tree(_entries(), "name_and_yob", "blake2s"),
    )

    with pytest.raises(BuildInvariantViolation):
        build_root_set(trees, BUILD_TIME)


def test_write_tree_outputs_round_trips_roots(tmp_path) -> None:
    """Written trees and root set should load back with identical roots."""
    trees = build_all_trees(_entries(), "sha256")
    root_set = build_root_set(trees, BUILD_TIME)

    write_tree_outputs(trees, root_set, tmp_path)
    loaded = load_root_set(tmp_path)
    reloaded_roots = {
        category: load_tree(tmp_path, category, "sha256").root for category in SANCTIONS_CATEGORIES
    }

    assert (
        loaded == root_set
        and reloaded_roots == dict(root_set.roots)
        and (tmp_path / ROOT_SET_FILE_NAME).exists()
    )


def test_write_tree_outputs_replaces_previous_build_whole(tmp_path) -> None:
    """A rewrite leaves only the new build and no staging directories."""
    output_dir = tmp_path / "outputs"
    output_dir.mkdir()
    (output_dir / "retired_category.json").write_text("{}", encoding="utf-8")
    trees = build_all_trees(_entries(), "sha256")

    write_tree_outputs(trees, build_root_set(trees, BUILD_TIME), output_dir)

    assert not (output_dir / "retired_category.json").exists() and [
        path.name for path in tmp_path.iterdir()
    ] == ["outputs"]


def test_write_tree_outputs_keeps_previous_build_on_failure(tmp_path, monkeypatch) -> None:
    """A failed write leaves the previous trees and root set untouched."""
    output_dir = tmp_path / "outputs"
    first_trees = build_all_trees(_entries(), "sha256")
    first_roots = build_root_set(first_trees, BUILD_TIME)
    write_tree_outputs(first_trees, first_roots, output_dir)
    real_write = tree_builder.write_json_file

    def failing_root_set_write(path, payload) -> None:
        if path.name == ROOT_SET_FILE_NAME:
            raise SanctionsStoreError(f"disk full at {path}")
        real_write(path, payload)

    monkeypatch.setattr(tree_builder, "write_json_file", failing_root_set_write)
    second_trees = build_all_trees(_entries(), "blake2s")

    with pytest.raises(SanctionsStoreError):
        write_tree_outputs(second_trees, build_root_set(second_trees, BUILD_TIME), output_dir)

    assert (
        load_root_set(output_dir) == first_roots
        and load_tree(output_dir, "name_and_dob", "sha256").root == first_roots.roots["name_and_dob"]
        and [path.name for path in tmp_path.iterdir()] == ["outputs"]
    )


def test_load_tree_rejects_other_hash_algorithm(tmp_path) -> None:
    """Loading with a different configured primitive should fail loudly."""
    trees = build_all_trees(_entries(), "sha256", categories=("name_and_dob",))
    write_tree_outputs(trees, build_root_set(trees, BUILD_TIME), tmp_path)

    with pytest.raises(SanctionsStoreError):
        load_tree(tmp_path, "name_and_dob", "blake2s")
