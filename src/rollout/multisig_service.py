"""Multisig services that collect owner signatures and execute.

``LocalMultisigService`` keeps pending transactions as JSON files and
executes through a chain client once enough owners have signed; it backs
tests and single-operator test networks. ``SafeTransactionService`` talks
to a Safe wallet: signatures go to the Safe transaction service over HTTP
and execution calls ``execTransaction`` on the Safe contract.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Protocol

import requests
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import Web3Exception

from core.errors import ExecutionFailure, ProposalSubmissionFailure, SanctionsConfigError
from core.json_io import read_json_file, write_json_file
from core.logging_config import get_logger
from rollout.chain_client import ChainClient
from rollout.proposal_types import ProposalSignature, RolloutProposal
from rollout.signer import recover_signer

_LOGGER = get_logger(__name__)
_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
_LOCAL_NONCE_FILE_NAME = "nonce.json"
_SAFE_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "nonce",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "getTransactionHash",
        "stateMutability": "view",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "operation", "type": "uint8"},
            {"name": "safeTxGas", "type": "uint256"},
            {"name": "baseGas", "type": "uint256"},
            {"name": "gasPrice", "type": "uint256"},
            {"name": "gasToken", "type": "address"},
            {"name": "refundReceiver", "type": "address"},
            {"name": "_nonce", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "execTransaction",
        "stateMutability": "payable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "operation", "type": "uint8"},
            {"name": "safeTxGas", "type": "uint256"},
            {"name": "baseGas", "type": "uint256"},
            {"name": "gasPrice", "type": "uint256"},
            {"name": "gasToken", "type": "address"},
            {"name": "refundReceiver", "type": "address"},
            {"name": "signatures", "type": "bytes"},
        ],
        "outputs": [{"name": "success", "type": "bool"}],
    },
]


@dataclass(frozen=True)
class PreparedTransaction:
    """Hash owners sign, and the multisig nonce it commits to."""

    proposal_hash: str
    nonce: int | None


class MultisigService(Protocol):
    """Signature collection and execution backend."""

    owners: tuple[str, ...]
    threshold: int

    def prepare(self, target: str, calldata: str) -> PreparedTransaction: ...

    def submit_proposal(self, proposal: RolloutProposal, signature: ProposalSignature) -> None: ...

    def submit_confirmation(
        self, proposal: RolloutProposal, signature: ProposalSignature
    ) -> None: ...

    def execute(self, proposal: RolloutProposal) -> str: ...


class LocalMultisigService:
    """File-backed M-of-N multisig executing through a chain client."""

    def __init__(
        self,
        state_dir: Path,
        owners: tuple[str, ...],
        threshold: int,
        chain: ChainClient,
        chain_id: int,
    ) -> None:
        if threshold < 1 or threshold > len(owners):
            raise SanctionsConfigError(
                f"Invalid multisig threshold {threshold} for {len(owners)} owners."
            )
        self.owners = tuple(Web3.to_checksum_address(owner) for owner in owners)
        self.threshold = threshold
        self._state_dir = state_dir
        self._chain = chain
        self._chain_id = chain_id
        self._state_dir.mkdir(parents=True, exist_ok=True)

    def prepare(self, target: str, calldata: str) -> PreparedTransaction:
        nonce = self._current_nonce()
        commitment = json.dumps(
            {
                "chain_id": self._chain_id,
                "target": target.lower(),
                "calldata": calldata.lower(),
                "nonce": nonce,
            },
            sort_keys=True,
        )
        return PreparedTransaction(
            proposal_hash=Web3.to_hex(Web3.keccak(text=commitment)),
            nonce=nonce,
        )

    def submit_proposal(self, proposal: RolloutProposal, signature: ProposalSignature) -> None:
        self._verify_signature(proposal.proposal_hash, signature)
        write_json_file(
            self._transaction_path(proposal.proposal_hash),
            {
                "target": proposal.target,
                "calldata": proposal.calldata,
                "nonce": proposal.multisig_nonce,
                "confirmations": [
                    {"owner": signature.signer, "signature": signature.signature}
                ],
                "executed_tx_hash": None,
            },
        )

    def submit_confirmation(self, proposal: RolloutProposal, signature: ProposalSignature) -> None:
        self._verify_signature(proposal.proposal_hash, signature)
        payload = self._load_transaction(proposal.proposal_hash)
        confirmations = payload["confirmations"]
        if any(item["owner"] == signature.signer for item in confirmations):
            raise ProposalSubmissionFailure(
                f"Owner {signature.signer} already confirmed {proposal.proposal_hash}."
            )
        confirmations.append({"owner": signature.signer, "signature": signature.signature})
        write_json_file(self._transaction_path(proposal.proposal_hash), payload)

    def execute(self, proposal: RolloutProposal) -> str:
        """Execute once the stored confirmations meet the threshold.

        Raises:
            ExecutionFailure: If confirmations are short or the nonce moved on.
        """
        payload = self._load_transaction(proposal.proposal_hash)
        confirmations = payload["confirmations"]
        if len(confirmations) < self.threshold:
            raise ExecutionFailure(
                f"Proposal {proposal.proposal_id} has {len(confirmations)} of "
                f"{self.threshold} required confirmations."
            )
        if payload.get("nonce") != self._current_nonce():
            raise ExecutionFailure(
                f"Multisig nonce moved past proposal {proposal.proposal_id}; propose again."
            )
        tx_hash = self._chain.submit_calldata(proposal.target, proposal.calldata)
        payload["executed_tx_hash"] = tx_hash
        write_json_file(self._transaction_path(proposal.proposal_hash), payload)
        write_json_file(self._state_dir / _LOCAL_NONCE_FILE_NAME, {"nonce": self._current_nonce() + 1})
        _LOGGER.info(
            "local_multisig_executed",
            proposal_id=proposal.proposal_id,
            tx_hash=tx_hash,
            confirmations=len(confirmations),
        )
        return tx_hash

    def _verify_signature(self, proposal_hash: str, signature: ProposalSignature) -> None:
        signer = recover_signer(proposal_hash, signature.signature)
        if signer != Web3.to_checksum_address(signature.signer):
            raise ProposalSubmissionFailure(
                f"Signature does not match claimed signer {signature.signer}."
            )
        if signer not in self.owners:
            raise ProposalSubmissionFailure(f"Signer {signer} is not a multisig owner.")

    def _current_nonce(self) -> int:
        payload = read_json_file(self._state_dir / _LOCAL_NONCE_FILE_NAME, default_value={"nonce": 0})
        if not isinstance(payload, dict):
            raise ExecutionFailure("Invalid local multisig nonce file: expected object.")
        return int(payload.get("nonce", 0))

    def _transaction_path(self, proposal_hash: str) -> Path:
        return self._state_dir / f"{proposal_hash}.json"

    def _load_transaction(self, proposal_hash: str) -> dict[str, Any]:
        transaction_path = self._transaction_path(proposal_hash)
        if not transaction_path.exists():
            raise ProposalSubmissionFailure(
                f"Multisig has no pending transaction {proposal_hash}."
            )
        payload = read_json_file(transaction_path)
        if not isinstance(payload, dict) or not isinstance(payload.get("confirmations"), list):
            raise ProposalSubmissionFailure(
                f"Invalid multisig transaction at {transaction_path}: expected confirmations list."
            )
        return payload


class SafeTransactionService:
    """Safe wallet backend using the Safe transaction service API."""

    def __init__(
        self,
        web3: Web3,
        safe_address: str,
        service_url: str,
        owners: tuple[str, ...],
        threshold: int,
        executor: LocalAccount | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.owners = tuple(Web3.to_checksum_address(owner) for owner in owners)
        self.threshold = threshold
        self._web3 = web3
        self._safe_address = Web3.to_checksum_address(safe_address)
        self._safe = web3.eth.contract(address=self._safe_address, abi=_SAFE_ABI)
        self._service_url = service_url.rstrip("/")
        self._executor = executor
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds

    def prepare(self, target: str, calldata: str) -> PreparedTransaction:
        try:
            nonce = int(self._safe.functions.nonce().call())
            safe_tx_hash = self._safe.functions.getTransactionHash(
                *self._safe_tx_fields(target, calldata), nonce
            ).call()
        except Web3Exception as error:
            raise ProposalSubmissionFailure(
                f"Failed to read Safe {self._safe_address} state: {error}."
            ) from error
        return PreparedTransaction(proposal_hash=Web3.to_hex(safe_tx_hash), nonce=nonce)

    def submit_proposal(self, proposal: RolloutProposal, signature: ProposalSignature) -> None:
        body = {
            "to": Web3.to_checksum_address(proposal.target),
            "value": "0",
            "data": proposal.calldata,
            "operation": 0,
            "safeTxGas": "0",
            "baseGas": "0",
            "gasPrice": "0",
            "gasToken": _ZERO_ADDRESS,
            "refundReceiver": _ZERO_ADDRESS,
            "nonce": proposal.multisig_nonce,
            "contractTransactionHash": proposal.proposal_hash,
            "sender": Web3.to_checksum_address(signature.signer),
            "signature": safe_signature(signature.signature),
            "origin": "sanctions-registry",
        }
        self._post(f"/api/v1/safes/{self._safe_address}/multisig-transactions/", body)

    def submit_confirmation(self, proposal: RolloutProposal, signature: ProposalSignature) -> None:
        self._post(
            f"/api/v1/multisig-transactions/{proposal.proposal_hash}/confirmations/",
            {"signature": safe_signature(signature.signature)},
        )

    def confirmations(self, proposal_hash: str) -> tuple[tuple[str, str], ...]:
        """Return ``(owner, signature)`` pairs known to the service."""
        url = f"{self._service_url}/api/v1/multisig-transactions/{proposal_hash}/"
        try:
            response = self._session.get(url, timeout=self._timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as error:
            raise ProposalSubmissionFailure(
                f"Failed to load Safe transaction {proposal_hash}: {error}."
            ) from error
        return tuple(
            (Web3.to_checksum_address(item["owner"]), str(item["signature"]))
            for item in payload.get("confirmations") or []
        )

    def execute(self, proposal: RolloutProposal) -> str:
        """Submit ``execTransaction`` with owner signatures sorted by address.

        Raises:
            ExecutionFailure: If confirmations are short or submission fails.
        """
        if self._executor is None:
            raise ExecutionFailure(
                "Safe execution requires an executor key. Pass --executor-key-env."
            )
        confirmations = self.confirmations(proposal.proposal_hash)
        if len(confirmations) < self.threshold:
            raise ExecutionFailure(
                f"Safe transaction {proposal.proposal_hash} has {len(confirmations)} of "
                f"{self.threshold} required confirmations."
            )
        ordered = sorted(confirmations, key=lambda item: int(item[0], 16))
        packed_signatures = b"".join(
            bytes.fromhex(signature.removeprefix("0x")) for _, signature in ordered
        )
        try:
            transaction = self._safe.functions.execTransaction(
                *self._safe_tx_fields(proposal.target, proposal.calldata), packed_signatures
            ).build_transaction(
                {
                    "from": self._executor.address,
                    "nonce": self._web3.eth.get_transaction_count(self._executor.address),
                }
            )
            signed = self._executor.sign_transaction(transaction)
            tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3Exception as error:
            raise ExecutionFailure(
                f"Failed to execute Safe transaction {proposal.proposal_hash}: {error}."
            ) from error
        return Web3.to_hex(tx_hash)

    def _safe_tx_fields(self, target: str, calldata: str) -> tuple[object, ...]:
        return (
            Web3.to_checksum_address(target),
            0,
            bytes.fromhex(calldata.removeprefix("0x")),
            0,
            0,
            0,
            0,
            _ZERO_ADDRESS,
            _ZERO_ADDRESS,
        )

    def _post(self, path: str, body: dict[str, object]) -> None:
        try:
            response = self._session.post(
                f"{self._service_url}{path}", json=body, timeout=self._timeout_seconds
            )
            response.raise_for_status()
        except requests.RequestException as error:
            raise ProposalSubmissionFailure(
                f"Safe transaction service rejected {path}: {error}."
            ) from error


def safe_signature(signature: str) -> str:
    """Mark an EIP-191 signature as ``eth_sign`` for Safe by adding 4 to v."""
    raw_signature = bytearray(bytes.fromhex(signature.removeprefix("0x")))
    if raw_signature and raw_signature[-1] in (27, 28):
        raw_signature[-1] += 4
    return "0x" + raw_signature.hex()
