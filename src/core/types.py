"""Shared typed models.

This module defines immutable data models passed between the ingestor,
normalizer, tree builder, rollout coordinator and distribution layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping

from core.errors import SanctionsStoreError


@dataclass(frozen=True)
class RawSnapshot:
    """Immutable raw feed snapshot written by the ingestor.

    Attributes:
        path: Snapshot file location on disk.
        fetched_at: UTC fetch timestamp.
        source_url: Feed source the payload came from.
        sha256: Hex digest of the payload bytes.
        size_bytes: Payload size.
    """

    path: Path
    fetched_at: datetime
    source_url: str
    sha256: str
    size_bytes: int


@dataclass(frozen=True)
class BirthDate:
    """Parsed birth date with optional day and month precision.

    Attributes:
        year: Four-digit year.
        month: Month number when known.
        day: Day of month when known.
    """

    year: int
    month: int | None = None
    day: int | None = None

    @property
    def is_complete(self) -> bool:
        return self.month is not None and self.day is not None


@dataclass(frozen=True)
class SanctionEntry:
    """Canonical sanctioned-individual record.

    Attributes:
        entry_id: Stable identifier, ``<uid>`` or ``<uid>-aka-<aka uid>``.
        source_uid: Feed uid of the primary record.
        alias_index: Zero for the primary name, alias ordinal otherwise.
        first_name_tokens: Normalized given-name tokens.
        last_name_tokens: Normalized surname tokens.
        birth_date: Parsed birth date when present and exact.
        passport_number: Normalized passport number when present.
        passport_country: Normalized issuing country when present.
        program_tags: Sanctions programs listed for the record.
    """

    entry_id: str
    source_uid: str
    alias_index: int
    first_name_tokens: tuple[str, ...]
    last_name_tokens: tuple[str, ...]
    birth_date: BirthDate | None = None
    passport_number: str | None = None
    passport_country: str | None = None
    program_tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryCounts:
    """Per-category inclusion audit counts."""

    included: int
    excluded: int


@dataclass(frozen=True)
class NormalizationResult:
    """Normalizer output.

    Attributes:
        entries: Deterministically ordered canonical entries.
        category_counts: Inclusion and exclusion counts per category.
        stats: Parse statistics such as skipped records.
    """

    entries: tuple[SanctionEntry, ...]
    category_counts: Mapping[str, CategoryCounts]
    stats: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class BuiltTree:
    """One built accumulator tree.

    Attributes:
        category: Screening category name.
        root: Tree root as a field element.
        hash_algorithm: Field hash primitive name.
        leaf_count: Distinct keys in the tree.
        duplicate_count: Entries that collapsed onto an existing key.
        serialized: JSON-ready tree payload for witness regeneration.
    """

    category: str
    root: int
    hash_algorithm: str
    leaf_count: int
    duplicate_count: int
    serialized: Mapping[str, object]


@dataclass(frozen=True)
class RootSet:
    """Intended next registry state, one root per category.

    Attributes:
        timestamp: ISO-8601 build timestamp.
        hash_algorithm: Hash primitive every root was computed with.
        roots: Category name to root field element.
    """

    timestamp: str
    hash_algorithm: str
    roots: Mapping[str, int]

    def same_roots(self, other: "RootSet | None") -> bool:
        """Compare roots only, ignoring build timestamps."""
        if other is None:
            return False
        return dict(self.roots) == dict(other.roots)

    def to_payload(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "hash_algorithm": self.hash_algorithm,
            "roots": {category: str(root) for category, root in sorted(self.roots.items())},
        }


def root_set_from_payload(payload: object, payload_path: Path) -> RootSet:
    """Deserialize a root set payload written by ``RootSet.to_payload``."""
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid root set at {payload_path}: expected object.")
    raw_roots = payload.get("roots")
    if not isinstance(raw_roots, dict):
        raise SanctionsStoreError(f"Invalid root set at {payload_path}: roots must be an object.")
    try:
        roots = {str(category): int(str(root)) for category, root in raw_roots.items()}
        return RootSet(
            timestamp=str(payload["timestamp"]),
            hash_algorithm=str(payload["hash_algorithm"]),
            roots=roots,
        )
    except KeyError as error:
        raise SanctionsStoreError(
            f"Invalid root set at {payload_path}: missing required field {error.args[0]!r}."
        ) from error
    except ValueError as error:
        raise SanctionsStoreError(
            f"Invalid root set at {payload_path}: roots must be decimal integers."
        ) from error
