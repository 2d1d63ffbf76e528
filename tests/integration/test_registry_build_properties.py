"""Integration tests for normalized builds and their root guarantees."""

from __future__ import annotations

from dataclasses import replace
import random

from core.types import BirthDate
from ingest.entry_normalizer import normalize
from tests.registry_fakes import BUILD_TIME, build_sample_outputs, sample_snapshot
from trees.field_hash import FieldHash
from trees.leaf_encoding import SANCTIONS_CATEGORIES, is_eligible, leaf_key
from trees.sparse_merkle import verify_witness
from trees.tree_builder import build_all_trees, build_root_set, load_tree


def test_same_snapshot_builds_identical_roots(tmp_path) -> None:
    """Two builds of one snapshot produce the same roots."""
    first = build_sample_outputs(tmp_path / "first")
    second = build_sample_outputs(tmp_path / "second")

    assert dict(first.roots) == dict(second.roots)


def test_entry_order_does_not_change_roots() -> None:
    """Shuffling entries before the build leaves every root unchanged."""
    entries = list(normalize(sample_snapshot()).entries)
    shuffled = list(entries)
    random.Random(11).shuffle(shuffled)

    ordered_roots = build_root_set(build_all_trees(entries, "sha256"), BUILD_TIME).roots
    shuffled_roots = build_root_set(build_all_trees(shuffled, "sha256"), BUILD_TIME).roots

    assert dict(ordered_roots) == dict(shuffled_roots)


def test_every_eligible_entry_has_membership_witness(tmp_path) -> None:
    """Each included entry proves membership against the written tree."""
    build_sample_outputs(tmp_path)
    field_hash = FieldHash("sha256")
    entries = normalize(sample_snapshot()).entries
    witnesses = [
        (load_tree(tmp_path, category), leaf_key(entry, category, field_hash))
        for category in SANCTIONS_CATEGORIES
        for entry in entries
        if is_eligible(entry, category)
    ]

    assert witnesses and all(
        tree.prove(key).membership and verify_witness(tree.prove(key), field_hash)
        for tree, key in witnesses
    )


def test_unlisted_identity_has_verifying_non_membership(tmp_path) -> None:
    """A person not on the list gets a verifying non-membership witness."""
    build_sample_outputs(tmp_path)
    field_hash = FieldHash("sha256")
    listed = normalize(sample_snapshot()).entries[0]
    stranger = replace(
        listed,
        entry_id="9999",
        first_name_tokens=("MARIA",),
        last_name_tokens=("SANTOS",),
    )
    witness = load_tree(tmp_path, "name_and_dob").prove(leaf_key(stranger, "name_and_dob", field_hash))

    assert not witness.membership and verify_witness(witness, field_hash)


def test_changing_one_field_changes_only_affected_roots() -> None:
    """Altering a birth day moves DOB roots but not YOB or passport roots."""
    entries = list(normalize(sample_snapshot()).entries)
    target = entries.index(next(entry for entry in entries if entry.entry_id == "1006"))
    tampered = list(entries)
    tampered[target] = replace(entries[target], birth_date=BirthDate(year=1975, month=8, day=2))

    original = build_root_set(build_all_trees(entries, "sha256"), BUILD_TIME).roots
    changed = build_root_set(build_all_trees(tampered, "sha256"), BUILD_TIME).roots

    assert (
        original["name_and_dob"] != changed["name_and_dob"]
        and original["aadhaar_name_and_dob"] != changed["aadhaar_name_and_dob"]
        and original["name_and_yob"] == changed["name_and_yob"]
        and original["passport_no_and_nationality"] == changed["passport_no_and_nationality"]
    )


def test_hash_algorithm_switch_changes_every_root(tmp_path) -> None:
    """Roots built with another primitive never collide with the default ones."""
    sha_roots = build_sample_outputs(tmp_path / "sha").roots
    blake_roots = build_sample_outputs(tmp_path / "blake", hash_algorithm="blake2s").roots

    assert all(sha_roots[category] != blake_roots[category] for category in SANCTIONS_CATEGORIES)
