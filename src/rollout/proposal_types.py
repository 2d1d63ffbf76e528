"""Typed rollout proposal models and validation helpers.

This module defines the proposal state machine and payload parsing used by
the proposal registry and CLI commands that inspect persisted rollouts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Literal, Mapping, cast

from core.errors import SanctionsRolloutError, SanctionsStoreError
from core.types import RootSet, root_set_from_payload

ProposalState = Literal[
    "proposed",
    "co_signed",
    "executing",
    "promoted",
    "aborted",
    "stale",
]
ALLOWED_STATE_TRANSITIONS: dict[ProposalState, tuple[ProposalState, ...]] = {
    "proposed": ("co_signed", "stale", "aborted"),
    "co_signed": ("executing", "stale", "aborted"),
    "executing": ("promoted", "aborted"),
    "promoted": (),
    "aborted": (),
    "stale": (),
}
PENDING_STATES: tuple[ProposalState, ...] = ("proposed", "co_signed")


@dataclass(frozen=True)
class ProposalSignature:
    """One owner signature over the proposal hash."""

    signer: str
    signature: str
    signed_at: str


@dataclass(frozen=True)
class ProposalEvent:
    """One lifecycle state transition event."""

    state: ProposalState
    timestamp: str
    message: str | None


@dataclass(frozen=True)
class ChainReceipt:
    """Confirmed on-chain receipt summary."""

    tx_hash: str
    status: int
    block_number: int | None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class RolloutProposal:
    """Persisted multisig rollout proposal.

    Attributes:
        proposal_id: Local identifier.
        root_set: Root set this proposal publishes.
        bundle_id: Pre-staged serving bundle promoted on confirmation.
        target: Registry contract address the calldata targets.
        calldata: Hex-encoded ``setSanctionsRoots`` call.
        proposal_hash: Hash every owner signs.
        multisig_nonce: Multisig nonce the hash commits to, when the service uses one.
        threshold: Signatures required before execution.
        signatures: Collected owner signatures in arrival order.
        state: Current lifecycle state.
        events: Full state history.
        tx_hash: Execution transaction hash once submitted.
        receipt: Confirmed receipt once mined.
        error_message: Last abort or promotion failure reason.
    """

    proposal_id: str
    root_set: RootSet
    bundle_id: str | None
    target: str
    calldata: str
    proposal_hash: str
    multisig_nonce: int | None
    threshold: int
    signatures: tuple[ProposalSignature, ...]
    state: ProposalState
    created_at: str
    updated_at: str
    events: tuple[ProposalEvent, ...]
    tx_hash: str | None = None
    receipt: ChainReceipt | None = None
    error_message: str | None = None

    @property
    def signers(self) -> tuple[str, ...]:
        return tuple(signature.signer for signature in self.signatures)

    @property
    def threshold_met(self) -> bool:
        return len(self.signatures) >= self.threshold


def validate_transition(current: ProposalState, next_state: ProposalState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise SanctionsRolloutError(
            f"Invalid proposal state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


def proposal_to_payload(proposal: RolloutProposal) -> dict[str, object]:
    """Serialize a proposal into a JSON-safe payload."""
    payload = asdict(proposal)
    payload["root_set"] = proposal.root_set.to_payload()
    payload["signatures"] = [asdict(signature) for signature in proposal.signatures]
    payload["events"] = [asdict(event) for event in proposal.events]
    payload["receipt"] = None if proposal.receipt is None else asdict(proposal.receipt)
    return payload


def proposal_from_payload(payload: Mapping[str, object], payload_path: Path) -> RolloutProposal:
    """Deserialize a proposal payload from JSON."""
    raw_events = payload.get("events")
    raw_signatures = payload.get("signatures")
    if not isinstance(raw_events, list) or not isinstance(raw_signatures, list):
        raise SanctionsStoreError(
            f"Invalid proposal state at {payload_path}: events and signatures must be lists."
        )
    try:
        return RolloutProposal(
            proposal_id=str(payload["proposal_id"]),
            root_set=root_set_from_payload(payload["root_set"], payload_path),
            bundle_id=optional_string(payload.get("bundle_id")),
            target=str(payload["target"]),
            calldata=str(payload["calldata"]),
            proposal_hash=str(payload["proposal_hash"]),
            multisig_nonce=_optional_int(payload.get("multisig_nonce")),
            threshold=int(str(payload["threshold"])),
            signatures=tuple(_signature_from_payload(item, payload_path) for item in raw_signatures),
            state=parse_state(payload.get("state"), payload_path),
            created_at=str(payload["created_at"]),
            updated_at=str(payload["updated_at"]),
            events=tuple(_event_from_payload(item, payload_path) for item in raw_events),
            tx_hash=optional_string(payload.get("tx_hash")),
            receipt=_receipt_from_payload(payload.get("receipt"), payload_path),
            error_message=optional_string(payload.get("error_message")),
        )
    except KeyError as error:
        raise SanctionsStoreError(
            f"Invalid proposal state at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def parse_state(raw_state: object, payload_path: Path) -> ProposalState:
    """Parse one proposal state value from persisted payload."""
    if isinstance(raw_state, str) and raw_state in ALLOWED_STATE_TRANSITIONS:
        return cast(ProposalState, raw_state)
    allowed = ", ".join(ALLOWED_STATE_TRANSITIONS.keys())
    raise SanctionsStoreError(
        f"Invalid proposal state at {payload_path}: expected one of {allowed}."
    )


def optional_string(raw_value: object) -> str | None:
    """Convert optional payload field to string when present."""
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        return raw_value
    return str(raw_value)


def _optional_int(raw_value: object) -> int | None:
    if raw_value is None:
        return None
    return int(str(raw_value))


def _signature_from_payload(payload: object, payload_path: Path) -> ProposalSignature:
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid signature at {payload_path}: expected object.")
    return ProposalSignature(
        signer=str(payload.get("signer", "")),
        signature=str(payload.get("signature", "")),
        signed_at=str(payload.get("signed_at", "")),
    )


def _event_from_payload(payload: object, payload_path: Path) -> ProposalEvent:
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid proposal event at {payload_path}: expected object.")
    return ProposalEvent(
        state=parse_state(payload.get("state"), payload_path),
        timestamp=str(payload.get("timestamp", "")),
        message=optional_string(payload.get("message")),
    )


def _receipt_from_payload(payload: object, payload_path: Path) -> ChainReceipt | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise SanctionsStoreError(f"Invalid receipt at {payload_path}: expected object.")
    return ChainReceipt(
        tx_hash=str(payload.get("tx_hash", "")),
        status=int(str(payload.get("status", 0))),
        block_number=_optional_int(payload.get("block_number")),
    )
