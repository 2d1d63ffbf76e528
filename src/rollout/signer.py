"""Owner signing for rollout proposals.

Owners sign the proposal hash as an EIP-191 personal message, so the same
signature is recoverable locally and accepted by Safe as an ``eth_sign``
confirmation.
"""

from __future__ import annotations

import os

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from core.errors import SanctionsConfigError, SanctionsRolloutError
from rollout.proposal_registry import utc_now_iso
from rollout.proposal_types import ProposalSignature


class EthAccountSigner:
    """Signs proposal hashes with a local private key."""

    def __init__(self, private_key: str) -> None:
        try:
            self._account: LocalAccount = Account.from_key(private_key)
        except (ValueError, TypeError) as error:
            raise SanctionsConfigError(
                "Invalid signer private key: expected 32-byte hex string."
            ) from error

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        return self._account

    def sign_proposal(self, proposal_hash: str) -> ProposalSignature:
        """Sign one proposal hash."""
        signed = self._account.sign_message(encode_defunct(hexstr=proposal_hash))
        return ProposalSignature(
            signer=self._account.address,
            signature="0x" + bytes(signed.signature).hex(),
            signed_at=utc_now_iso(),
        )


def recover_signer(proposal_hash: str, signature: str) -> str:
    """Recover the checksummed address that produced ``signature``.

    Raises:
        SanctionsRolloutError: If the signature is malformed.
    """
    try:
        return Account.recover_message(encode_defunct(hexstr=proposal_hash), signature=signature)
    except (ValueError, TypeError) as error:
        raise SanctionsRolloutError(
            f"Malformed signature for proposal hash {proposal_hash}: {error}."
        ) from error


def load_signer_from_env(env_name: str) -> EthAccountSigner:
    """Build a signer from a private key held in an environment variable.

    Raises:
        SanctionsConfigError: If the variable is unset.
    """
    private_key = os.getenv(env_name)
    if not private_key:
        raise SanctionsConfigError(
            f"Signer key variable {env_name} is not set. Export the owner's private key "
            f"as {env_name} before signing."
        )
    return EthAccountSigner(private_key)
