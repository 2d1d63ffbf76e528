"""Rollout proposal lifecycle persistence.

This module stores proposal state transitions under the configured
data root so a multisig wait can span days and process restarts while
remaining inspectable.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from core.constants import (
    ONCHAIN_ROOTS_FILE_NAME,
    PROPOSAL_INDEX_FILE_NAME,
    PROPOSAL_STATE_FILE_NAME,
)
from core.errors import SanctionsStoreError
from core.json_io import read_json_file, write_json_file
from core.types import RootSet, root_set_from_payload
from rollout.proposal_types import (
    ProposalEvent,
    ProposalSignature,
    ProposalState,
    RolloutProposal,
    proposal_from_payload,
    proposal_to_payload,
    validate_transition,
)


class ProposalRegistry:
    """Persistent lifecycle registry for rollout proposals."""

    def __init__(self, rollouts_root: Path) -> None:
        self._rollouts_root = rollouts_root.expanduser().resolve()
        self._rollouts_root.mkdir(parents=True, exist_ok=True)

    def create(
        self,
        root_set: RootSet,
        bundle_id: str | None,
        target: str,
        calldata: str,
        proposal_hash: str,
        multisig_nonce: int | None,
        threshold: int,
    ) -> RolloutProposal:
        """Create a new proposal record in the proposed state."""
        timestamp = utc_now_iso()
        proposal = RolloutProposal(
            proposal_id=_build_proposal_id(),
            root_set=root_set,
            bundle_id=bundle_id,
            target=target,
            calldata=calldata,
            proposal_hash=proposal_hash,
            multisig_nonce=multisig_nonce,
            threshold=threshold,
            signatures=(),
            state="proposed",
            created_at=timestamp,
            updated_at=timestamp,
            events=(ProposalEvent(state="proposed", timestamp=timestamp, message=None),),
        )
        self._write_proposal(proposal)
        self._append_index_row(proposal.proposal_id)
        return proposal

    def transition(
        self,
        proposal_id: str,
        next_state: ProposalState,
        message: str | None = None,
        **updates: Any,
    ) -> RolloutProposal:
        """Persist one lifecycle transition with optional field updates."""
        proposal = self.load(proposal_id)
        validate_transition(proposal.state, next_state)
        timestamp = utc_now_iso()
        error_message = updates.pop(
            "error_message",
            message if next_state == "aborted" else proposal.error_message,
        )
        next_proposal = replace(
            proposal,
            state=next_state,
            updated_at=timestamp,
            events=proposal.events
            + (ProposalEvent(state=next_state, timestamp=timestamp, message=message),),
            error_message=error_message,
            **updates,
        )
        self._write_proposal(next_proposal)
        return next_proposal

    def update(self, proposal_id: str, **updates: Any) -> RolloutProposal:
        """Persist field updates that do not change state."""
        proposal = self.load(proposal_id)
        next_proposal = replace(proposal, updated_at=utc_now_iso(), **updates)
        self._write_proposal(next_proposal)
        return next_proposal

    def add_signature(self, proposal_id: str, signature: ProposalSignature) -> RolloutProposal:
        proposal = self.load(proposal_id)
        return self.update(proposal_id, signatures=proposal.signatures + (signature,))

    def load(self, proposal_id: str) -> RolloutProposal:
        """Load one proposal record by ID."""
        state_path = self._rollouts_root / proposal_id / PROPOSAL_STATE_FILE_NAME
        if not state_path.exists():
            raise SanctionsStoreError(
                f"Unknown proposal {proposal_id!r}: no state at {state_path}."
            )
        payload = read_json_file(state_path)
        if not isinstance(payload, dict):
            raise SanctionsStoreError(
                f"Invalid proposal state payload at {state_path}: expected object."
            )
        return proposal_from_payload(payload, state_path)

    def list_proposals(self) -> tuple[str, ...]:
        """List proposal IDs from the index in insertion order."""
        index_path = self._rollouts_root / PROPOSAL_INDEX_FILE_NAME
        payload = read_json_file(index_path, default_value={"proposals": []})
        if not isinstance(payload, dict) or not isinstance(payload.get("proposals"), list):
            raise SanctionsStoreError(
                f"Invalid proposal index format at {index_path}: expected proposals list."
            )
        return tuple(str(item) for item in payload["proposals"])

    def load_all(self) -> tuple[RolloutProposal, ...]:
        return tuple(self.load(proposal_id) for proposal_id in self.list_proposals())

    def load_confirmed_roots(self) -> RootSet | None:
        """Load the last root set confirmed on-chain, if any."""
        roots_path = self._rollouts_root / ONCHAIN_ROOTS_FILE_NAME
        if not roots_path.exists():
            return None
        return root_set_from_payload(read_json_file(roots_path), roots_path)

    def save_confirmed_roots(self, root_set: RootSet) -> None:
        write_json_file(self._rollouts_root / ONCHAIN_ROOTS_FILE_NAME, root_set.to_payload())

    def _write_proposal(self, proposal: RolloutProposal) -> None:
        proposal_dir = self._rollouts_root / proposal.proposal_id
        proposal_dir.mkdir(parents=True, exist_ok=True)
        write_json_file(proposal_dir / PROPOSAL_STATE_FILE_NAME, proposal_to_payload(proposal))

    def _append_index_row(self, proposal_id: str) -> None:
        index_path = self._rollouts_root / PROPOSAL_INDEX_FILE_NAME
        payload = read_json_file(index_path, default_value={"proposals": []})
        if not isinstance(payload, dict) or not isinstance(payload.get("proposals"), list):
            raise SanctionsStoreError(
                f"Invalid proposal index format at {index_path}: expected proposals list."
            )
        proposal_ids = payload["proposals"]
        if proposal_id not in proposal_ids:
            proposal_ids.append(proposal_id)
            write_json_file(index_path, payload)


def _build_proposal_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"proposal-{timestamp}-{uuid4().hex[:8]}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
