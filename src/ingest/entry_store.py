"""Persistence for normalized sanctions entries.

Normalized entries are written once per run as JSONL next to a stats
document, so trees can be rebuilt from the same canonical data without
re-fetching or re-parsing the feed.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from core.constants import ENTRIES_FILE_NAME, NORMALIZATION_STATS_FILE_NAME
from core.errors import SanctionsStoreError
from core.json_io import read_json_file, write_bytes_atomic, write_json_file
from core.types import BirthDate, CategoryCounts, NormalizationResult, SanctionEntry


def entry_to_payload(entry: SanctionEntry) -> dict[str, object]:
    """Serialize SanctionEntry into JSON-safe payload."""
    birth_date = entry.birth_date
    return {
        "entry_id": entry.entry_id,
        "source_uid": entry.source_uid,
        "alias_index": entry.alias_index,
        "first_name_tokens": list(entry.first_name_tokens),
        "last_name_tokens": list(entry.last_name_tokens),
        "birth_date": None
        if birth_date is None
        else {"year": birth_date.year, "month": birth_date.month, "day": birth_date.day},
        "passport_number": entry.passport_number,
        "passport_country": entry.passport_country,
        "program_tags": list(entry.program_tags),
    }


def entry_from_payload(payload: dict[str, Any]) -> SanctionEntry:
    """Deserialize JSON payload into SanctionEntry.

    Raises:
        KeyError: If required fields are missing.
    """
    raw_birth_date = payload.get("birth_date")
    birth_date = None
    if isinstance(raw_birth_date, dict):
        birth_date = BirthDate(
            year=int(raw_birth_date["year"]),
            month=_optional_int(raw_birth_date.get("month")),
            day=_optional_int(raw_birth_date.get("day")),
        )
    return SanctionEntry(
        entry_id=str(payload["entry_id"]),
        source_uid=str(payload["source_uid"]),
        alias_index=int(payload.get("alias_index", 0)),
        first_name_tokens=tuple(str(token) for token in payload.get("first_name_tokens", [])),
        last_name_tokens=tuple(str(token) for token in payload.get("last_name_tokens", [])),
        birth_date=birth_date,
        passport_number=_optional_str(payload.get("passport_number")),
        passport_country=_optional_str(payload.get("passport_country")),
        program_tags=tuple(str(tag) for tag in payload.get("program_tags", [])),
    )


class EntryStore:
    """Filesystem-backed normalized entry store."""

    def __init__(self, inputs_dir: Path) -> None:
        self._inputs_dir = inputs_dir
        self._entries_path = inputs_dir / ENTRIES_FILE_NAME
        self._stats_path = inputs_dir / NORMALIZATION_STATS_FILE_NAME

    @property
    def entries_path(self) -> Path:
        return self._entries_path

    def save(self, result: NormalizationResult, snapshot_path: Path | None = None) -> None:
        """Persist entries and normalization stats."""
        lines = [json.dumps(entry_to_payload(entry), sort_keys=True) for entry in result.entries]
        write_bytes_atomic(self._entries_path, ("\n".join(lines) + "\n").encode("utf-8"))
        write_json_file(
            self._stats_path,
            {
                "snapshot": None if snapshot_path is None else str(snapshot_path),
                "entry_count": len(result.entries),
                "stats": dict(result.stats),
                "category_counts": {
                    category: {"included": counts.included, "excluded": counts.excluded}
                    for category, counts in result.category_counts.items()
                },
            },
        )

    def load(self) -> NormalizationResult:
        """Load entries and stats written by ``save``.

        Raises:
            SanctionsStoreError: If files are missing or rows are invalid.
        """
        entries = self._read_entries()
        stats_payload = read_json_file(self._stats_path)
        if not isinstance(stats_payload, dict):
            raise SanctionsStoreError(
                f"Invalid normalization stats at {self._stats_path}: expected object."
            )
        raw_counts = stats_payload.get("category_counts", {})
        raw_stats = stats_payload.get("stats", {})
        if not isinstance(raw_counts, dict) or not isinstance(raw_stats, dict):
            raise SanctionsStoreError(
                f"Invalid normalization stats at {self._stats_path}: "
                "expected category_counts and stats objects."
            )
        category_counts = {
            str(category): CategoryCounts(
                included=int(counts.get("included", 0)),
                excluded=int(counts.get("excluded", 0)),
            )
            for category, counts in raw_counts.items()
            if isinstance(counts, dict)
        }
        return NormalizationResult(
            entries=entries,
            category_counts=category_counts,
            stats={str(key): int(value) for key, value in raw_stats.items()},
        )

    def _read_entries(self) -> tuple[SanctionEntry, ...]:
        try:
            text = self._entries_path.read_text(encoding="utf-8")
        except FileNotFoundError as error:
            raise SanctionsStoreError(
                f"No normalized entries at {self._entries_path}. Run the pipeline first."
            ) from error
        except OSError as error:
            raise SanctionsStoreError(
                f"Failed to read entries at {self._entries_path}: {error}."
            ) from error
        entries: list[SanctionEntry] = []
        for line_number, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
                if not isinstance(payload, dict):
                    raise ValueError("expected JSON object")
                entries.append(entry_from_payload(payload))
            except (ValueError, KeyError, TypeError) as error:
                raise SanctionsStoreError(
                    f"Invalid entry at {self._entries_path}:{line_number}: {error}."
                ) from error
        return tuple(entries)


def _optional_int(raw_value: object) -> int | None:
    if raw_value is None:
        return None
    return int(str(raw_value))


def _optional_str(raw_value: object) -> str | None:
    if raw_value is None:
        return None
    return str(raw_value)
