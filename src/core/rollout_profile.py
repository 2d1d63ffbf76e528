"""Typed rollout-profile parsing for network and serving settings.

A rollout profile is a YAML file describing one deployment target: the
chain and registry contract, the multisig that gates root updates, and
the serving locations that receive tree bundles. Parsing is strict so a
typo in a production profile fails before any transaction is proposed.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Sequence, cast

import yaml

from core.errors import SanctionsConfigError
from core.s3_uri import parse_s3_uri

MultisigKind = Literal["local", "safe"]
ServingKind = Literal["local", "s3"]
SUPPORTED_MULTISIG_KINDS: tuple[MultisigKind, ...] = ("local", "safe")
SUPPORTED_SERVING_KINDS: tuple[ServingKind, ...] = ("local", "s3")
_ROOT_KEYS = {
    "version",
    "name",
    "network",
    "chain_id",
    "rpc_url",
    "registry_address",
    "multisig",
    "serving_locations",
}
_MULTISIG_KEYS = {"kind", "threshold", "owners", "safe_address", "service_url"}
_SERVING_KEYS = {"name", "kind", "path", "uri"}


@dataclass(frozen=True)
class MultisigSettings:
    """M-of-N multisig gating the registry contract.

    Attributes:
        kind: ``safe`` for a Safe wallet, ``local`` for a file-backed signer set.
        threshold: Signatures required before execution.
        owners: Checksummed owner addresses.
        safe_address: Safe contract address for ``safe`` kind.
        service_url: Safe transaction service base URL for ``safe`` kind.
    """

    kind: MultisigKind
    threshold: int
    owners: tuple[str, ...]
    safe_address: str | None = None
    service_url: str | None = None


@dataclass(frozen=True)
class ServingLocationSettings:
    """One serving location receiving bundles."""

    name: str
    kind: ServingKind
    path: str | None = None
    uri: str | None = None


@dataclass(frozen=True)
class RolloutProfile:
    """Validated rollout profile root object."""

    name: str
    network: str
    chain_id: int
    rpc_url: str | None
    registry_address: str | None
    multisig: MultisigSettings
    serving_locations: tuple[ServingLocationSettings, ...]


def load_rollout_profile(profile_path: Path) -> RolloutProfile:
    """Load and validate a YAML rollout profile from disk.

    Args:
        profile_path: File path to YAML profile.

    Returns:
        Fully validated rollout profile.

    Raises:
        SanctionsConfigError: If file is invalid or schema checks fail.
    """
    payload = _load_yaml_payload(profile_path)
    return parse_rollout_profile(payload)


def parse_rollout_profile(payload: object) -> RolloutProfile:
    """Validate an already-loaded profile payload."""
    root_mapping = _expect_mapping(payload, "rollout profile root")
    _validate_keys(root_mapping, _ROOT_KEYS, "rollout profile root")
    _parse_version(root_mapping)
    multisig = _parse_multisig(root_mapping.get("multisig"))
    locations = _parse_serving_locations(root_mapping.get("serving_locations"))
    return RolloutProfile(
        name=_expect_string(root_mapping.get("name"), "name"),
        network=_expect_string(root_mapping.get("network"), "network"),
        chain_id=_expect_int(root_mapping.get("chain_id"), "chain_id"),
        rpc_url=_optional_string(root_mapping.get("rpc_url"), "rpc_url"),
        registry_address=_optional_string(
            root_mapping.get("registry_address"), "registry_address"
        ),
        multisig=multisig,
        serving_locations=locations,
    )


def _load_yaml_payload(profile_path: Path) -> object:
    profile_file = profile_path.expanduser().resolve()
    if not profile_file.exists():
        raise SanctionsConfigError(
            f"Rollout profile does not exist at {profile_file}. "
            "Set SANCTIONS_PROFILE or pass --profile with a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(profile_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise SanctionsConfigError(
            f"Failed to read rollout profile at {profile_file}: {error}. "
            "Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise SanctionsConfigError(
            f"Failed to parse YAML rollout profile at {profile_file}: {error}. "
            "Fix YAML syntax and retry."
        ) from error
    if payload is None:
        raise SanctionsConfigError(
            f"Rollout profile at {profile_file} is empty. Define 'version' and 'multisig'."
        )
    return payload


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise SanctionsConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise SanctionsConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _expect_sequence(value: object, context: str) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise SanctionsConfigError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def _expect_string(value: object, context: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise SanctionsConfigError(f"Rollout profile field '{context}' must be a non-empty string.")


def _optional_string(value: object, context: str) -> str | None:
    if value is None:
        return None
    return _expect_string(value, context)


def _expect_int(value: object, context: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SanctionsConfigError(f"Rollout profile field '{context}' must be an integer.")
    return value


def _validate_keys(mapping: Mapping[str, object], allowed: set[str], context: str) -> None:
    unknown_keys = sorted(set(mapping) - allowed)
    if unknown_keys:
        raise SanctionsConfigError(
            f"Unsupported keys in {context}: {', '.join(unknown_keys)}. "
            f"Allowed keys: {', '.join(sorted(allowed))}."
        )


def _parse_version(root_mapping: Mapping[str, object]) -> int:
    raw_version = root_mapping.get("version")
    if not isinstance(raw_version, int):
        raise SanctionsConfigError(
            "Rollout profile field 'version' must be an integer. Set version: 1."
        )
    if raw_version != 1:
        raise SanctionsConfigError(
            f"Unsupported rollout profile version {raw_version}. Use version: 1."
        )
    return raw_version


def _parse_multisig(raw_value: object) -> MultisigSettings:
    mapping = _expect_mapping(raw_value, "multisig")
    _validate_keys(mapping, _MULTISIG_KEYS, "multisig")
    kind = mapping.get("kind", "local")
    if kind not in SUPPORTED_MULTISIG_KINDS:
        raise SanctionsConfigError(
            f"Unsupported multisig kind {kind!r}. "
            f"Supported: {', '.join(SUPPORTED_MULTISIG_KINDS)}."
        )
    owners = tuple(
        _expect_string(owner, "multisig.owners")
        for owner in _expect_sequence(mapping.get("owners"), "multisig.owners")
    )
    if len(set(owner.lower() for owner in owners)) != len(owners):
        raise SanctionsConfigError("Rollout profile multisig.owners contains duplicates.")
    threshold = _expect_int(mapping.get("threshold"), "multisig.threshold")
    if threshold < 1 or threshold > len(owners):
        raise SanctionsConfigError(
            f"Invalid multisig threshold {threshold}: expected 1..{len(owners)} "
            "for the configured owners."
        )
    settings = MultisigSettings(
        kind=cast(MultisigKind, kind),
        threshold=threshold,
        owners=owners,
        safe_address=_optional_string(mapping.get("safe_address"), "multisig.safe_address"),
        service_url=_optional_string(mapping.get("service_url"), "multisig.service_url"),
    )
    if settings.kind == "safe" and not (settings.safe_address and settings.service_url):
        raise SanctionsConfigError(
            "Safe multisig requires 'safe_address' and 'service_url' in the rollout profile."
        )
    return settings


def _parse_serving_locations(raw_value: object) -> tuple[ServingLocationSettings, ...]:
    if raw_value is None:
        return ()
    locations: list[ServingLocationSettings] = []
    for index, raw_location in enumerate(_expect_sequence(raw_value, "serving_locations")):
        context = f"serving_locations[{index}]"
        mapping = _expect_mapping(raw_location, context)
        _validate_keys(mapping, _SERVING_KEYS, context)
        kind = mapping.get("kind")
        if kind not in SUPPORTED_SERVING_KINDS:
            raise SanctionsConfigError(
                f"Unsupported serving kind {kind!r} in {context}. "
                f"Supported: {', '.join(SUPPORTED_SERVING_KINDS)}."
            )
        location = ServingLocationSettings(
            name=_expect_string(mapping.get("name"), f"{context}.name"),
            kind=cast(ServingKind, kind),
            path=_optional_string(mapping.get("path"), f"{context}.path"),
            uri=_optional_string(mapping.get("uri"), f"{context}.uri"),
        )
        if location.kind == "local" and location.path is None:
            raise SanctionsConfigError(f"Local serving location {context} requires 'path'.")
        if location.kind == "s3":
            if location.uri is None:
                raise SanctionsConfigError(f"S3 serving location {context} requires 'uri'.")
            parse_s3_uri(location.uri)
        locations.append(location)
    names = [location.name for location in locations]
    if len(set(names)) != len(names):
        raise SanctionsConfigError("Serving location names must be unique.")
    return tuple(locations)
