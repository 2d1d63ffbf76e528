"""Compressed sparse Merkle tree over field-element keys.

The tree follows the compressed SMT layout used by the circuit's
non-membership check: key bits are consumed least-significant first, a
subtree holding a single key collapses into one leaf node, and empty
subtrees hash to zero. Because the shape is derived from the sorted key
set alone, the root is independent of insertion order.

Node hashes:
    leaf(key)           = H(key, 1, 1)
    middle(left, right) = H(left, right)
    empty               = 0

A leaf hashes its key, its value and a trailing 1 that separates leaves
from two-input middle nodes. Every key carries the value 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from core.constants import SMT_MAX_DEPTH
from core.errors import BuildInvariantViolation, SanctionsStoreError
from trees.field_hash import FieldHash, require_field_element

EMPTY_NODE = 0
LEAF_VALUE = 1
_LEAF_MARKER = 1
SERIALIZATION_FORMAT = "compressed-smt-v1"


@dataclass(frozen=True)
class _Node:
    digest: int
    key: int | None = None
    left: "_Node | None" = None
    right: "_Node | None" = None


_EMPTY = _Node(digest=EMPTY_NODE)


@dataclass(frozen=True)
class Witness:
    """Membership or non-membership witness for one key.

    Attributes:
        root: Tree root the witness verifies against.
        key: Queried key.
        siblings: Sibling digests from the root downwards.
        closest_key: Leaf key found at the end of the path, if any.
        membership: Whether ``key`` itself is in the tree.
    """

    root: int
    key: int
    siblings: tuple[int, ...]
    closest_key: int | None
    membership: bool

    def to_payload(self) -> dict[str, object]:
        return {
            "root": str(self.root),
            "key": str(self.key),
            "siblings": [str(sibling) for sibling in self.siblings],
            "closest_key": None if self.closest_key is None else str(self.closest_key),
            "membership": self.membership,
        }


class SparseMerkleTree:
    """Immutable compressed sparse Merkle tree built from a key set."""

    def __init__(self, keys: Iterable[int], field_hash: FieldHash) -> None:
        unique_keys = sorted(set(keys))
        for key in unique_keys:
            require_field_element(key)
        self._field_hash = field_hash
        self._keys = tuple(unique_keys)
        self._root_node = self._build(self._keys, 0)

    @property
    def root(self) -> int:
        return self._root_node.digest

    @property
    def keys(self) -> tuple[int, ...]:
        return self._keys

    @property
    def hash_algorithm(self) -> str:
        return self._field_hash.algorithm

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, int):
            return False
        return self.prove(key).membership

    def leaf_hash(self, key: int) -> int:
        return leaf_digest(self._field_hash, key)

    def prove(self, key: int) -> Witness:
        """Walk the key's path and collect siblings for a witness."""
        require_field_element(key)
        siblings: list[int] = []
        node = self._root_node
        depth = 0
        while node.left is not None and node.right is not None:
            if (key >> depth) & 1:
                siblings.append(node.left.digest)
                node = node.right
            else:
                siblings.append(node.right.digest)
                node = node.left
            depth += 1
        closest_key = node.key
        return Witness(
            root=self.root,
            key=key,
            siblings=tuple(siblings),
            closest_key=closest_key,
            membership=closest_key == key,
        )

    def to_payload(self, category: str) -> dict[str, object]:
        """Serialize enough state to regenerate any witness."""
        return {
            "format": SERIALIZATION_FORMAT,
            "category": category,
            "hash_algorithm": self.hash_algorithm,
            "root": str(self.root),
            "leaf_count": len(self._keys),
            "leaves": [str(key) for key in self._keys],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "SparseMerkleTree":
        """Rebuild a tree from its serialized form and check the stored root.

        Raises:
            SanctionsStoreError: If the payload is malformed or its root does
                not match the rebuilt tree.
        """
        if payload.get("format") != SERIALIZATION_FORMAT:
            raise SanctionsStoreError(
                f"Unsupported tree format {payload.get('format')!r}. "
                f"Expected {SERIALIZATION_FORMAT!r}."
            )
        raw_leaves = payload.get("leaves")
        if not isinstance(raw_leaves, list):
            raise SanctionsStoreError("Invalid tree payload: leaves must be a list.")
        try:
            keys = [int(str(leaf)) for leaf in raw_leaves]
            expected_root = int(str(payload.get("root")))
        except ValueError as error:
            raise SanctionsStoreError(
                "Invalid tree payload: leaves and root must be decimal integers."
            ) from error
        tree = cls(keys, FieldHash(str(payload.get("hash_algorithm"))))
        if tree.root != expected_root:
            raise SanctionsStoreError(
                f"Tree root mismatch for {payload.get('category')!r}: "
                f"stored {expected_root}, rebuilt {tree.root}. The tree file is corrupt."
            )
        return tree

    def _build(self, keys: tuple[int, ...], depth: int) -> _Node:
        if not keys:
            return _EMPTY
        if len(keys) == 1:
            return _Node(digest=self.leaf_hash(keys[0]), key=keys[0])
        if depth >= SMT_MAX_DEPTH:
            raise BuildInvariantViolation(
                f"Sparse Merkle tree exceeded depth {SMT_MAX_DEPTH}; keys are not distinct."
            )
        left_keys = tuple(key for key in keys if not (key >> depth) & 1)
        right_keys = tuple(key for key in keys if (key >> depth) & 1)
        left = self._build(left_keys, depth + 1)
        right = self._build(right_keys, depth + 1)
        return _Node(digest=self._field_hash(left.digest, right.digest), left=left, right=right)


def leaf_digest(field_hash: FieldHash, key: int) -> int:
    return field_hash(key, LEAF_VALUE, _LEAF_MARKER)


def verify_witness(witness: Witness, field_hash: FieldHash) -> bool:
    """Recompute the root from a witness.

    A non-membership witness is valid when the path ends at an empty node,
    or at a different leaf whose low bits agree with the queried key along
    the whole path.
    """
    depth = len(witness.siblings)
    if witness.closest_key is None:
        if witness.membership:
            return False
        node = EMPTY_NODE
    else:
        path_mask = (1 << depth) - 1
        if (witness.closest_key ^ witness.key) & path_mask:
            return False
        if witness.membership != (witness.closest_key == witness.key):
            return False
        node = leaf_digest(field_hash, witness.closest_key)
    for level in range(depth - 1, -1, -1):
        sibling = witness.siblings[level]
        if (witness.key >> level) & 1:
            node = field_hash(sibling, node)
        else:
            node = field_hash(node, sibling)
    return node == witness.root
