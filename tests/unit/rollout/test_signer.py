"""Unit tests for owner signing."""

from __future__ import annotations

import pytest

from core.errors import SanctionsConfigError
from rollout.signer import EthAccountSigner, load_signer_from_env, recover_signer
from tests.registry_fakes import OWNER_KEYS

PROPOSAL_HASH = "0x" + "5a" * 32


def test_signature_recovers_signer_address() -> None:
    """A signed proposal hash should recover to the signing owner."""
    signer = EthAccountSigner(OWNER_KEYS[0])

    signature = signer.sign_proposal(PROPOSAL_HASH)

    assert (
        recover_signer(PROPOSAL_HASH, signature.signature) == signer.address
        and signature.signer == signer.address
    )


def test_signature_does_not_recover_for_other_hash() -> None:
    """A signature is bound to the hash it signed."""
    signer = EthAccountSigner(OWNER_KEYS[0])
    signature = signer.sign_proposal(PROPOSAL_HASH)

    assert recover_signer("0x" + "5b" * 32, signature.signature) != signer.address


def test_invalid_private_key_is_config_error() -> None:
    """Garbage keys should fail as configuration errors."""
    with pytest.raises(SanctionsConfigError):
        EthAccountSigner("not-a-key")


def test_load_signer_from_env_requires_variable(monkeypatch) -> None:
    """An unset key variable should name the variable."""
    monkeypatch.delenv("SANCTIONS_SIGNER_KEY", raising=False)

    with pytest.raises(SanctionsConfigError, match="SANCTIONS_SIGNER_KEY"):
        load_signer_from_env("SANCTIONS_SIGNER_KEY")


def test_load_signer_from_env_reads_key(monkeypatch) -> None:
    """A set key variable should produce the matching signer."""
    monkeypatch.setenv("SANCTIONS_SIGNER_KEY", OWNER_KEYS[1])

    assert load_signer_from_env("SANCTIONS_SIGNER_KEY").address == EthAccountSigner(
        OWNER_KEYS[1]
    ).address
