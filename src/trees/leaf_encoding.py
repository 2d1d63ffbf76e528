"""Screening categories and canonical leaf field encoding.

Each category names the entry fields it requires and how they render as
canonical ASCII strings, matching the document formats the circuit reads:
MRZ names and dates for passports and ID cards, plain text for Aadhaar.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal

from core.constants import (
    ID_CARD_MRZ_NAME_LENGTH,
    MRZ_FILLER,
    PASSPORT_MRZ_NAME_LENGTH,
)
from core.errors import BuildInvariantViolation
from core.types import BirthDate, SanctionEntry
from trees.field_hash import FieldHash

RequiredField = Literal["name", "birth_date", "birth_year", "passport"]


@dataclass(frozen=True)
class CategoryRule:
    """One screening category definition.

    Attributes:
        name: Category name, also the on-chain category label.
        required_fields: Entry fields that must be present for inclusion.
        encode: Renders an eligible entry as its canonical field tuple.
    """

    name: str
    required_fields: tuple[RequiredField, ...]
    encode: Callable[[SanctionEntry], tuple[str, ...]]


def mrz_name(entry: SanctionEntry, width: int) -> str:
    """Render ``LAST<<FIRST`` with ``<`` separators, padded or cut to width."""
    surname = MRZ_FILLER.join(entry.last_name_tokens)
    given_names = MRZ_FILLER.join(entry.first_name_tokens)
    if surname and given_names:
        rendered = f"{surname}{MRZ_FILLER * 2}{given_names}"
    else:
        rendered = surname or given_names
    return rendered[:width].ljust(width, MRZ_FILLER)


def plain_name(entry: SanctionEntry) -> str:
    return " ".join(entry.first_name_tokens + entry.last_name_tokens)


def _birth_date(entry: SanctionEntry) -> BirthDate:
    if entry.birth_date is None:
        raise BuildInvariantViolation(f"Entry {entry.entry_id} has no birth date.")
    return entry.birth_date


def mrz_birth_date(entry: SanctionEntry) -> str:
    birth_date = _birth_date(entry)
    if not birth_date.is_complete:
        raise BuildInvariantViolation(f"Entry {entry.entry_id} has an incomplete birth date.")
    return f"{birth_date.year % 100:02d}{birth_date.month:02d}{birth_date.day:02d}"


def mrz_birth_year(entry: SanctionEntry) -> str:
    return f"{_birth_date(entry).year % 100:02d}"


def aadhaar_birth_date(entry: SanctionEntry) -> str:
    birth_date = _birth_date(entry)
    if not birth_date.is_complete:
        raise BuildInvariantViolation(f"Entry {entry.entry_id} has an incomplete birth date.")
    return f"{birth_date.day:02d}-{birth_date.month:02d}-{birth_date.year:04d}"


def aadhaar_birth_year(entry: SanctionEntry) -> str:
    return f"{_birth_date(entry).year:04d}"


def _passport_fields(entry: SanctionEntry) -> tuple[str, ...]:
    if not entry.passport_number or not entry.passport_country:
        raise BuildInvariantViolation(f"Entry {entry.entry_id} has no passport details.")
    return (entry.passport_number, entry.passport_country)


CATEGORY_RULES: dict[str, CategoryRule] = {
    rule.name: rule
    for rule in (
        CategoryRule(
            name="passport_no_and_nationality",
            required_fields=("passport",),
            encode=_passport_fields,
        ),
        CategoryRule(
            name="name_and_dob",
            required_fields=("name", "birth_date"),
            encode=lambda entry: (
                mrz_name(entry, PASSPORT_MRZ_NAME_LENGTH),
                mrz_birth_date(entry),
            ),
        ),
        CategoryRule(
            name="name_and_yob",
            required_fields=("name", "birth_year"),
            encode=lambda entry: (
                mrz_name(entry, PASSPORT_MRZ_NAME_LENGTH),
                mrz_birth_year(entry),
            ),
        ),
        CategoryRule(
            name="name_and_dob_id_card",
            required_fields=("name", "birth_date"),
            encode=lambda entry: (
                mrz_name(entry, ID_CARD_MRZ_NAME_LENGTH),
                mrz_birth_date(entry),
            ),
        ),
        CategoryRule(
            name="name_and_yob_id_card",
            required_fields=("name", "birth_year"),
            encode=lambda entry: (
                mrz_name(entry, ID_CARD_MRZ_NAME_LENGTH),
                mrz_birth_year(entry),
            ),
        ),
        CategoryRule(
            name="aadhaar_name_and_dob",
            required_fields=("name", "birth_date"),
            encode=lambda entry: (plain_name(entry), aadhaar_birth_date(entry)),
        ),
        CategoryRule(
            name="aadhaar_name_and_yob",
            required_fields=("name", "birth_year"),
            encode=lambda entry: (plain_name(entry), aadhaar_birth_year(entry)),
        ),
    )
}
SANCTIONS_CATEGORIES: tuple[str, ...] = tuple(CATEGORY_RULES)


def category_rule(category: str) -> CategoryRule:
    """Look up a category rule by name.

    Raises:
        BuildInvariantViolation: If the category is unknown.
    """
    try:
        return CATEGORY_RULES[category]
    except KeyError as error:
        raise BuildInvariantViolation(
            f"Unknown screening category {category!r}. "
            f"Supported: {', '.join(SANCTIONS_CATEGORIES)}."
        ) from error


def is_eligible(entry: SanctionEntry, category: str) -> bool:
    """Return whether entry carries every field the category requires."""
    return all(
        _has_field(entry, field_name) for field_name in category_rule(category).required_fields
    )


def _has_field(entry: SanctionEntry, field_name: RequiredField) -> bool:
    if field_name == "name":
        return bool(entry.first_name_tokens or entry.last_name_tokens)
    if field_name == "birth_date":
        return entry.birth_date is not None and entry.birth_date.is_complete
    if field_name == "birth_year":
        return entry.birth_date is not None
    return bool(entry.passport_number and entry.passport_country)


def canonical_fields(entry: SanctionEntry, category: str) -> tuple[str, ...]:
    """Render the canonical field tuple for one entry in one category."""
    return category_rule(category).encode(entry)


def leaf_key(entry: SanctionEntry, category: str, field_hash: FieldHash) -> int:
    """Derive the leaf key for one entry.

    The category name is folded in first so identical fields in different
    categories never share a key.

    Raises:
        BuildInvariantViolation: If any canonical field is malformed.
    """
    return leaf_key_from_fields(canonical_fields(entry, category), category, field_hash)


def leaf_key_from_fields(fields: tuple[str, ...], category: str, field_hash: FieldHash) -> int:
    """Derive a leaf key from an already-rendered canonical field tuple."""
    elements = [field_hash.pack_text(category)]
    elements.extend(field_hash.pack_text(value) for value in fields)
    return field_hash.fold(elements)
