"""SDN XML parsing into raw individual records.

Element names are matched by local name so both the namespaced Treasury
export and un-namespaced mirrors parse the same way. Only individuals are
kept; values are returned as found and canonicalized later.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from lxml import etree

from core.errors import SanctionsIngestError


@dataclass(frozen=True)
class ParsedAlias:
    """One ``aka`` entry of an individual."""

    uid: str
    first_name: str
    last_name: str


@dataclass(frozen=True)
class ParsedIndividual:
    """One ``sdnEntry`` with ``sdnType`` Individual, values verbatim."""

    uid: str
    first_name: str
    last_name: str
    dates_of_birth: tuple[str, ...]
    passports: tuple[tuple[str, str], ...]
    programs: tuple[str, ...]
    aliases: tuple[ParsedAlias, ...]


@dataclass(frozen=True)
class ParsedFeed:
    """Parse output with skip counts for the audit trail."""

    individuals: tuple[ParsedIndividual, ...]
    total_entries: int
    skipped_non_individual: int


def parse_sdn_file(snapshot_path: Path) -> ParsedFeed:
    """Parse an SDN snapshot file from disk.

    Raises:
        SanctionsIngestError: If the file cannot be read or is not valid XML.
    """
    try:
        payload = snapshot_path.read_bytes()
    except OSError as error:
        raise SanctionsIngestError(
            f"Failed to read snapshot {snapshot_path}: {error}."
        ) from error
    return parse_sdn_xml(payload)


def parse_sdn_xml(payload: bytes) -> ParsedFeed:
    """Parse SDN XML bytes.

    Raises:
        SanctionsIngestError: If the payload is not well-formed XML.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    try:
        root = etree.fromstring(payload, parser=parser)
    except etree.XMLSyntaxError as error:
        raise SanctionsIngestError(f"Snapshot is not well-formed XML: {error}.") from error
    individuals: list[ParsedIndividual] = []
    total_entries = 0
    skipped_non_individual = 0
    for element in root.iter():
        if _local_name(element) != "sdnEntry":
            continue
        total_entries += 1
        if _child_text(element, "sdnType").lower() != "individual":
            skipped_non_individual += 1
            continue
        individuals.append(_parse_individual(element))
    return ParsedFeed(
        individuals=tuple(individuals),
        total_entries=total_entries,
        skipped_non_individual=skipped_non_individual,
    )


def _parse_individual(element: etree._Element) -> ParsedIndividual:
    dates_of_birth = tuple(
        _child_text(item, "dateOfBirth")
        for item in _descendants(element, "dateOfBirthItem")
        if _child_text(item, "dateOfBirth")
    )
    passports = tuple(
        (_child_text(item, "idNumber"), _child_text(item, "idCountry"))
        for item in _descendants(element, "id")
        if "passport" in _child_text(item, "idType").lower() and _child_text(item, "idNumber")
    )
    programs = tuple(
        program.text.strip()
        for program in _descendants(element, "program")
        if program.text and program.text.strip()
    )
    aliases = tuple(
        ParsedAlias(
            uid=_child_text(item, "uid"),
            first_name=_child_text(item, "firstName"),
            last_name=_child_text(item, "lastName"),
        )
        for item in _descendants(element, "aka")
    )
    return ParsedIndividual(
        uid=_child_text(element, "uid"),
        first_name=_child_text(element, "firstName"),
        last_name=_child_text(element, "lastName"),
        dates_of_birth=dates_of_birth,
        passports=passports,
        programs=programs,
        aliases=aliases,
    )


def _local_name(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _child_text(element: etree._Element, name: str) -> str:
    for child in element:
        if _local_name(child) == name:
            return (child.text or "").strip()
    return ""


def _descendants(element: etree._Element, name: str) -> list[etree._Element]:
    return [item for item in element.iter() if item is not element and _local_name(item) == name]
