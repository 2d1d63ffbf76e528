"""Canonical entry normalization.

This module turns parsed SDN individuals into ``SanctionEntry`` records
with locale-independent name tokens, exact birth dates and passport
details, then orders them deterministically and computes per-category
inclusion counts.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Sequence

from core.logging_config import get_logger
from core.types import (
    BirthDate,
    CategoryCounts,
    NormalizationResult,
    RawSnapshot,
    SanctionEntry,
)
from ingest.sdn_parser import ParsedIndividual, parse_sdn_file
from trees.leaf_encoding import SANCTIONS_CATEGORIES, is_eligible

_LOGGER = get_logger(__name__)
_MONTH_NAMES = (
    "JANUARY", "FEBRUARY", "MARCH", "APRIL", "MAY", "JUNE",
    "JULY", "AUGUST", "SEPTEMBER", "OCTOBER", "NOVEMBER", "DECEMBER",
)
# Spelled-out names plus their abbreviations, including "Sept".
_MONTHS = {
    **{name: index for index, name in enumerate(_MONTH_NAMES, start=1)},
    **{name[:3]: index for index, name in enumerate(_MONTH_NAMES, start=1)},
    "SEPT": 9,
}
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2}) ([A-Za-z]{3,9})\.? (\d{4})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_YEAR_ONLY = re.compile(r"^(\d{4})$")
_MONTH_YEAR = re.compile(r"^([A-Za-z]{3,9})\.? (\d{4})$")
_NON_CANONICAL = re.compile(r"[^A-Z0-9]+")


def normalize(raw_snapshot: RawSnapshot) -> NormalizationResult:
    """Parse and normalize one raw snapshot.

    Args:
        raw_snapshot: Snapshot written by the feed ingestor.

    Returns:
        Ordered entries with per-category inclusion counts.

    Raises:
        SanctionsIngestError: If the snapshot cannot be parsed.
    """
    parsed_feed = parse_sdn_file(raw_snapshot.path)
    result = normalize_individuals(parsed_feed.individuals)
    stats = {
        **result.stats,
        "total_entries": parsed_feed.total_entries,
        "skipped_non_individual": parsed_feed.skipped_non_individual,
    }
    _LOGGER.info(
        "entries_normalized",
        snapshot=str(raw_snapshot.path),
        entry_count=len(result.entries),
        **stats,
    )
    return NormalizationResult(
        entries=result.entries,
        category_counts=result.category_counts,
        stats=stats,
    )


def normalize_individuals(individuals: Sequence[ParsedIndividual]) -> NormalizationResult:
    """Normalize parsed individuals into ordered entries."""
    entries: list[SanctionEntry] = []
    skipped_nameless = 0
    for individual in individuals:
        individual_entries = _entries_for_individual(individual)
        if not individual_entries:
            skipped_nameless += 1
        entries.extend(individual_entries)
    ordered = sort_entries(entries)
    return NormalizationResult(
        entries=ordered,
        category_counts=count_categories(ordered),
        stats={
            "individuals": len(individuals),
            "skipped_nameless": skipped_nameless,
            "alias_entries": sum(1 for entry in ordered if entry.alias_index > 0),
        },
    )


def normalize_name(raw_name: str) -> tuple[str, ...]:
    """Split a raw name into canonical upper-case ASCII tokens.

    Compatibility decomposition strips accents; anything that is still not
    an ASCII letter or digit acts as a separator.
    """
    decomposed = unicodedata.normalize("NFKD", raw_name)
    stripped = "".join(
        character for character in decomposed if not unicodedata.combining(character)
    )
    return tuple(token for token in _NON_CANONICAL.split(stripped.upper()) if token)


def normalize_identifier(raw_value: str) -> str | None:
    """Canonicalize a passport number or country: tokens joined by one space."""
    tokens = normalize_name(raw_value)
    return " ".join(tokens) if tokens else None


def parse_birth_date(raw_value: str) -> BirthDate | None:
    """Parse one SDN date-of-birth string.

    Supported: ``DD Mon YYYY``, ``YYYY-MM-DD``, ``YYYY`` and ``Mon YYYY``,
    where the month may be abbreviated (``Sep``, ``Sept``) or spelled out.
    Estimated forms such as ``circa 1960`` and ranges such as
    ``1960 to 1962`` are not exact and yield None.
    """
    value = " ".join(raw_value.split())
    match = _DAY_MONTH_YEAR.match(value)
    if match:
        month = _MONTHS.get(match.group(2).upper())
        return _checked_date(int(match.group(3)), month, int(match.group(1)))
    match = _ISO_DATE.match(value)
    if match:
        return _checked_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    match = _YEAR_ONLY.match(value)
    if match:
        return BirthDate(year=int(match.group(1)))
    match = _MONTH_YEAR.match(value)
    if match:
        month = _MONTHS.get(match.group(1).upper())
        if month is None:
            return None
        return BirthDate(year=int(match.group(2)), month=month)
    return None


def _checked_date(year: int, month: int | None, day: int) -> BirthDate | None:
    if month is None or not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    return BirthDate(year=year, month=month, day=day)


def first_birth_date(raw_values: Sequence[str]) -> BirthDate | None:
    """Return the first parseable birth date, preferring listed order."""
    for raw_value in raw_values:
        parsed = parse_birth_date(raw_value)
        if parsed is not None:
            return parsed
    return None


def sort_entries(entries: Sequence[SanctionEntry]) -> tuple[SanctionEntry, ...]:
    """Order entries by numeric source uid, alias order, then id."""
    return tuple(sorted(entries, key=_entry_sort_key))


def count_categories(entries: Sequence[SanctionEntry]) -> dict[str, CategoryCounts]:
    """Count included and excluded entries for every category."""
    counts: dict[str, CategoryCounts] = {}
    for category in SANCTIONS_CATEGORIES:
        included = sum(1 for entry in entries if is_eligible(entry, category))
        counts[category] = CategoryCounts(included=included, excluded=len(entries) - included)
    return counts


def _entries_for_individual(individual: ParsedIndividual) -> list[SanctionEntry]:
    first_tokens = normalize_name(individual.first_name)
    last_tokens = normalize_name(individual.last_name)
    birth_date = first_birth_date(individual.dates_of_birth)
    passport_number, passport_country = _first_passport(individual)
    programs = tuple(sorted(set(individual.programs)))
    entries: list[SanctionEntry] = []
    if first_tokens or last_tokens:
        entries.append(
            SanctionEntry(
                entry_id=individual.uid,
                source_uid=individual.uid,
                alias_index=0,
                first_name_tokens=first_tokens,
                last_name_tokens=last_tokens,
                birth_date=birth_date,
                passport_number=passport_number,
                passport_country=passport_country,
                program_tags=programs,
            )
        )
    for alias_index, alias in enumerate(individual.aliases, start=1):
        own_first = normalize_name(alias.first_name)
        own_last = normalize_name(alias.last_name)
        if not (own_first or own_last):
            continue
        alias_first = own_first or first_tokens
        alias_last = own_last or last_tokens
        alias_uid = alias.uid or str(alias_index)
        entries.append(
            SanctionEntry(
                entry_id=f"{individual.uid}-aka-{alias_uid}",
                source_uid=individual.uid,
                alias_index=alias_index,
                first_name_tokens=alias_first,
                last_name_tokens=alias_last,
                birth_date=birth_date,
                passport_number=passport_number,
                passport_country=passport_country,
                program_tags=programs,
            )
        )
    return entries


def _first_passport(individual: ParsedIndividual) -> tuple[str | None, str | None]:
    for raw_number, raw_country in individual.passports:
        number = normalize_identifier(raw_number)
        if number:
            return number.replace(" ", ""), normalize_identifier(raw_country)
    return None, None


def _entry_sort_key(entry: SanctionEntry) -> tuple[int, str, int, str]:
    uid_text = entry.source_uid
    numeric_uid = int(uid_text) if uid_text.isdigit() else -1
    return (numeric_uid, uid_text, entry.alias_index, entry.entry_id)
