"""On-chain registry access through web3.

The registry contract stores one root per category id, where a category
id is ``keccak256(category_name)``. All categories change in a single
``setSanctionsRoots`` call so the contract never exposes a mix of old and
new roots.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, Web3
from web3.exceptions import TimeExhausted, Web3Exception

from core.constants import DEFAULT_RECEIPT_TIMEOUT_SECONDS
from core.errors import (
    ConfirmationPending,
    ExecutionFailure,
    SanctionsConfigError,
    SanctionsRolloutError,
)
from core.logging_config import get_logger
from core.rollout_profile import RolloutProfile
from core.types import RootSet
from rollout.proposal_types import ChainReceipt

_LOGGER = get_logger(__name__)

REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "setSanctionsRoots",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "categories", "type": "bytes32[]"},
            {"name": "roots", "type": "uint256[]"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getSanctionsRoot",
        "stateMutability": "view",
        "inputs": [{"name": "category", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class ChainClient(Protocol):
    """Registry operations the rollout coordinator depends on."""

    registry_address: str

    def encode_set_roots(self, root_set: RootSet) -> str: ...

    def read_roots(self, categories: Sequence[str]) -> dict[str, int]: ...

    def submit_calldata(self, target: str, calldata: str) -> str: ...

    def wait_for_receipt(self, tx_hash: str) -> ChainReceipt: ...


def category_id(category: str) -> bytes:
    """Return the bytes32 registry key for a category name."""
    return bytes(Web3.keccak(text=category))


class RegistryChainClient:
    """web3-backed registry contract client."""

    def __init__(
        self,
        web3: Web3,
        registry_address: str,
        account: LocalAccount | None = None,
        receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ) -> None:
        self._web3 = web3
        self.registry_address = Web3.to_checksum_address(registry_address)
        self._contract = web3.eth.contract(address=self.registry_address, abi=REGISTRY_ABI)
        self._account = account
        self._receipt_timeout_seconds = receipt_timeout_seconds

    @classmethod
    def from_profile(
        cls,
        profile: RolloutProfile,
        account: LocalAccount | None = None,
    ) -> "RegistryChainClient":
        if not profile.rpc_url or not profile.registry_address:
            raise SanctionsConfigError(
                f"Rollout profile {profile.name!r} needs rpc_url and registry_address "
                "for on-chain operations."
            )
        return cls(Web3(HTTPProvider(profile.rpc_url)), profile.registry_address, account)

    @property
    def web3(self) -> Web3:
        return self._web3

    def encode_set_roots(self, root_set: RootSet) -> str:
        """ABI-encode one atomic ``setSanctionsRoots`` call."""
        categories = sorted(root_set.roots)
        return self._contract.encode_abi(
            "setSanctionsRoots",
            args=[
                [category_id(category) for category in categories],
                [root_set.roots[category] for category in categories],
            ],
        )

    def read_roots(self, categories: Sequence[str]) -> dict[str, int]:
        """Read the active on-chain root for each category."""
        try:
            return {
                category: int(
                    self._contract.functions.getSanctionsRoot(category_id(category)).call()
                )
                for category in categories
            }
        except Web3Exception as error:
            raise SanctionsRolloutError(
                f"Failed to read registry roots from {self.registry_address}: {error}."
            ) from error

    def submit_calldata(self, target: str, calldata: str) -> str:
        """Sign and send calldata from the configured account.

        Raises:
            ExecutionFailure: If no account is configured or sending fails.
        """
        if self._account is None:
            raise ExecutionFailure(
                "Direct submission requires an executor key. Pass --executor-key-env."
            )
        try:
            transaction = {
                "from": self._account.address,
                "to": Web3.to_checksum_address(target),
                "data": calldata,
                "value": 0,
                "nonce": self._web3.eth.get_transaction_count(self._account.address),
                "chainId": self._web3.eth.chain_id,
            }
            transaction["gas"] = self._web3.eth.estimate_gas(transaction)
            transaction["gasPrice"] = self._web3.eth.gas_price
            signed = self._account.sign_transaction(transaction)
            tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3Exception as error:
            raise ExecutionFailure(f"Failed to submit transaction to {target}: {error}.") from error
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> ChainReceipt:
        """Block until the transaction is mined.

        Raises:
            ConfirmationPending: If no receipt arrives within the timeout.
        """
        try:
            receipt = self._web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout_seconds
            )
        except TimeExhausted as error:
            raise ConfirmationPending(
                f"Transaction {tx_hash} has no receipt after "
                f"{self._receipt_timeout_seconds:.0f}s. Run 'resume' to keep waiting."
            ) from error
        _LOGGER.info(
            "registry_receipt_received",
            tx_hash=tx_hash,
            status=receipt["status"],
            block_number=receipt["blockNumber"],
        )
        return ChainReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
        )
