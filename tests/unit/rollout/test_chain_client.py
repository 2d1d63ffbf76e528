"""Unit tests for registry contract access."""

from __future__ import annotations

import pytest
from web3 import Web3
from web3.exceptions import TimeExhausted

from core.errors import ConfirmationPending, ExecutionFailure
from core.types import RootSet
from rollout.chain_client import RegistryChainClient, category_id
from tests.registry_fakes import REGISTRY_ADDRESS


class _FakeEth:
    def __init__(self, web3: Web3, receipt: dict[str, int] | None) -> None:
        self._web3 = web3
        self._receipt = receipt

    def contract(self, address: str, abi: list[dict[str, object]]):
        return self._web3.eth.contract(address=address, abi=abi)

    def wait_for_transaction_receipt(self, tx_hash: str, timeout: float) -> dict[str, int]:
        if self._receipt is None:
            raise TimeExhausted(f"no receipt for {tx_hash}")
        return self._receipt


class _FakeWeb3:
    def __init__(self, receipt: dict[str, int] | None = None) -> None:
        self.eth = _FakeEth(Web3(), receipt)


def test_category_id_is_keccak_of_name() -> None:
    """Registry keys are the keccak hash of the category name."""
    assert category_id("name_and_dob") == bytes(Web3.keccak(text="name_and_dob"))


def test_encode_set_roots_targets_batch_setter() -> None:
    """Calldata should call setSanctionsRoots with every category."""
    client = RegistryChainClient(Web3(), REGISTRY_ADDRESS)
    root_set = RootSet(
        timestamp="2026-10-01T12:00:00+00:00",
        hash_algorithm="sha256",
        roots={"name_and_yob": 2, "name_and_dob": 1},
    )
    selector = Web3.to_hex(Web3.keccak(text="setSanctionsRoots(bytes32[],uint256[])")[:4])

    calldata = client.encode_set_roots(root_set)

    assert calldata.startswith(selector) and category_id("name_and_dob").hex() in calldata


def test_submit_calldata_requires_account() -> None:
    """Without an executor key nothing can be sent."""
    client = RegistryChainClient(Web3(), REGISTRY_ADDRESS)

    with pytest.raises(ExecutionFailure, match="executor key"):
        client.submit_calldata(REGISTRY_ADDRESS, "0x")


def test_wait_for_receipt_maps_timeout_to_pending() -> None:
    """A receipt timeout leaves the outcome pending instead of failed."""
    client = RegistryChainClient(_FakeWeb3(), REGISTRY_ADDRESS)  # type: ignore[arg-type]

    with pytest.raises(ConfirmationPending, match="resume"):
        client.wait_for_receipt("0x" + "01" * 32)


def test_wait_for_receipt_returns_status_and_block() -> None:
    """Mined receipts should be summarized with status and block."""
    client = RegistryChainClient(
        _FakeWeb3({"status": 0, "blockNumber": 12}),  # type: ignore[arg-type]
        REGISTRY_ADDRESS,
    )

    receipt = client.wait_for_receipt("0x" + "02" * 32)

    assert receipt.status == 0 and receipt.block_number == 12 and not receipt.succeeded
