"""Per-category tree builds and root-set aggregation.

Categories are independent pure functions of the same entry set, so they
fan out across worker processes and fan back in to one ``RootSet``. Any
malformed leaf fails its category build, which fails the whole run: a
partial root set is never written.
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from datetime import datetime, timezone
import os
from pathlib import Path
import shutil
from typing import Sequence

from core.constants import ROOT_SET_FILE_NAME
from core.errors import BuildInvariantViolation, SanctionsStoreError
from core.json_io import read_json_file, write_json_file
from core.logging_config import get_logger
from core.types import BuiltTree, RootSet, SanctionEntry, root_set_from_payload
from trees.field_hash import FieldHash
from trees.leaf_encoding import SANCTIONS_CATEGORIES, category_rule, is_eligible, leaf_key
from trees.sparse_merkle import SparseMerkleTree

_LOGGER = get_logger(__name__)


def build_category_tree(
    entries: Sequence[SanctionEntry],
    category: str,
    hash_algorithm: str,
) -> BuiltTree:
    """Build one category tree from normalized entries.

    Args:
        entries: Normalized entries; ineligible ones are left out.
        category: Screening category name.
        hash_algorithm: Field hash primitive name.

    Returns:
        Built tree with root and serialized payload.

    Raises:
        BuildInvariantViolation: If any eligible entry yields a malformed leaf.
    """
    category_rule(category)
    field_hash = FieldHash(hash_algorithm)
    keys: list[int] = []
    for entry in entries:
        if not is_eligible(entry, category):
            continue
        try:
            keys.append(leaf_key(entry, category, field_hash))
        except BuildInvariantViolation as error:
            raise BuildInvariantViolation(
                f"Category {category!r} build failed on entry {entry.entry_id}: {error}"
            ) from error
    tree = SparseMerkleTree(keys, field_hash)
    built = BuiltTree(
        category=category,
        root=tree.root,
        hash_algorithm=hash_algorithm,
        leaf_count=len(tree),
        duplicate_count=len(keys) - len(tree),
        serialized=tree.to_payload(category),
    )
    _LOGGER.info(
        "category_tree_built",
        category=category,
        leaf_count=built.leaf_count,
        duplicate_count=built.duplicate_count,
        root=str(built.root),
    )
    return built


def build_all_trees(
    entries: Sequence[SanctionEntry],
    hash_algorithm: str,
    categories: Sequence[str] = SANCTIONS_CATEGORIES,
    workers: int = 1,
) -> tuple[BuiltTree, ...]:
    """Build every category, in parallel when ``workers`` is above one.

    Results come back in ``categories`` order regardless of completion order.
    """
    entry_tuple = tuple(entries)
    if workers <= 1 or len(categories) <= 1:
        return tuple(
            build_category_tree(entry_tuple, category, hash_algorithm) for category in categories
        )
    with ProcessPoolExecutor(max_workers=min(workers, len(categories))) as executor:
        futures = [
            executor.submit(build_category_tree, entry_tuple, category, hash_algorithm)
            for category in categories
        ]
        return tuple(future.result() for future in futures)


def build_root_set(trees: Sequence[BuiltTree], timestamp: datetime | None = None) -> RootSet:
    """Join built trees into one root set.

    Raises:
        BuildInvariantViolation: If trees disagree on hash algorithm or repeat a category.
    """
    if not trees:
        raise BuildInvariantViolation("Cannot build a root set without any category trees.")
    algorithms = {tree.hash_algorithm for tree in trees}
    if len(algorithms) != 1:
        raise BuildInvariantViolation(
            f"Category trees disagree on hash algorithm: {', '.join(sorted(algorithms))}."
        )
    roots = {tree.category: tree.root for tree in trees}
    if len(roots) != len(trees):
        raise BuildInvariantViolation("Root set has duplicate categories.")
    build_time = timestamp or datetime.now(timezone.utc)
    return RootSet(
        timestamp=build_time.isoformat(),
        hash_algorithm=algorithms.pop(),
        roots=roots,
    )


def write_tree_outputs(
    trees: Sequence[BuiltTree],
    root_set: RootSet,
    output_dir: Path,
) -> tuple[Path, ...]:
    """Persist one file per tree plus the root set as a single directory swap.

    Files are written to a sibling staging directory that then takes the
    place of ``output_dir`` with ``os.replace``, so readers find either the
    previous build or this one in full, never a mix. Anything else inside
    ``output_dir`` is discarded with the previous build.

    Returns:
        Written tree file paths, excluding the root set file.

    Raises:
        SanctionsStoreError: If the outputs cannot be written or swapped in.
    """
    staging_dir = output_dir.with_name(f".{output_dir.name}.{os.getpid()}.staging")
    try:
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        for tree in trees:
            write_json_file(staging_dir / tree_file_name(tree.category), dict(tree.serialized))
        write_json_file(staging_dir / ROOT_SET_FILE_NAME, root_set.to_payload())
        _swap_in(staging_dir, output_dir)
    except OSError as error:
        raise SanctionsStoreError(f"Failed to replace tree outputs at {output_dir}: {error}.") from error
    finally:
        if staging_dir.exists():
            shutil.rmtree(staging_dir, ignore_errors=True)
    return tuple(output_dir / tree_file_name(tree.category) for tree in trees)


def _swap_in(staging_dir: Path, output_dir: Path) -> None:
    if not output_dir.exists():
        os.replace(staging_dir, output_dir)
        return
    retired_dir = output_dir.with_name(f".{output_dir.name}.{os.getpid()}.retired")
    if retired_dir.exists():
        shutil.rmtree(retired_dir)
    os.replace(output_dir, retired_dir)
    os.replace(staging_dir, output_dir)
    shutil.rmtree(retired_dir)


def tree_file_name(category: str) -> str:
    return f"{category}.json"


def load_root_set(output_dir: Path) -> RootSet:
    """Load the root set written by the last successful build."""
    root_set_path = output_dir / ROOT_SET_FILE_NAME
    return root_set_from_payload(read_json_file(root_set_path), root_set_path)


def load_tree(tree_dir: Path, category: str, hash_algorithm: str | None = None) -> SparseMerkleTree:
    """Load and verify one serialized category tree.

    Raises:
        SanctionsStoreError: If the file is corrupt or uses another hash algorithm.
    """
    tree_path = tree_dir / tree_file_name(category)
    payload = read_json_file(tree_path)
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid tree file at {tree_path}: expected object.")
    if hash_algorithm is not None and payload.get("hash_algorithm") != hash_algorithm:
        raise SanctionsStoreError(
            f"Tree at {tree_path} was built with {payload.get('hash_algorithm')!r}, "
            f"expected {hash_algorithm!r}. Rebuild trees with the configured algorithm."
        )
    return SparseMerkleTree.from_payload(payload)
