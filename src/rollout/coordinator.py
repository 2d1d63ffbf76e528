"""Multisig rollout coordination for new root sets.

The coordinator drives one proposal through
``proposed -> co_signed -> executing -> promoted | aborted``. Every step
persists before it talks to the outside world, so a crash leaves a record
that ``resume`` or ``promote`` can pick up. Signature collection is not a
waiting loop: each ``cosign`` call is an external event that advances the
persisted state.
"""

from __future__ import annotations

from eth_account.signers.local import LocalAccount
from web3 import Web3

from core.config import RegistryConfig
from core.constants import LOCAL_MULTISIG_DIR_NAME, ROLLOUTS_DIR_NAME
from core.errors import (
    ExecutionFailure,
    NoOpProposalError,
    PromotionFailure,
    ProposalSubmissionFailure,
    SanctionsDistributionError,
    SanctionsRolloutError,
    StaleProposalError,
)
from core.logging_config import get_logger
from core.rollout_profile import RolloutProfile
from core.types import RootSet
from distribution.bundle_types import build_bundle_id
from distribution.promotion import BundlePromoter, build_serving_locations
from rollout.chain_client import ChainClient, RegistryChainClient
from rollout.multisig_service import (
    LocalMultisigService,
    MultisigService,
    SafeTransactionService,
)
from rollout.proposal_registry import ProposalRegistry
from rollout.proposal_types import PENDING_STATES, RolloutProposal
from rollout.signer import EthAccountSigner

_LOGGER = get_logger(__name__)


class RolloutCoordinator:
    """Propose, co-sign, execute and promote root set updates."""

    def __init__(
        self,
        registry: ProposalRegistry,
        multisig: MultisigService,
        chain: ChainClient,
        promoter: BundlePromoter,
    ) -> None:
        self._registry = registry
        self._multisig = multisig
        self._chain = chain
        self._promoter = promoter

    @classmethod
    def from_profile(
        cls,
        config: RegistryConfig,
        profile: RolloutProfile,
        executor: LocalAccount | None = None,
    ) -> "RolloutCoordinator":
        """Wire chain, multisig and serving locations from a rollout profile."""
        rollouts_root = config.data_root / ROLLOUTS_DIR_NAME
        chain = RegistryChainClient.from_profile(profile, executor)
        settings = profile.multisig
        multisig: MultisigService
        if settings.kind == "safe":
            multisig = SafeTransactionService(
                chain.web3,
                str(settings.safe_address),
                str(settings.service_url),
                settings.owners,
                settings.threshold,
                executor=executor,
            )
        else:
            multisig = LocalMultisigService(
                rollouts_root / LOCAL_MULTISIG_DIR_NAME,
                settings.owners,
                settings.threshold,
                chain,
                profile.chain_id,
            )
        return cls(
            registry=ProposalRegistry(rollouts_root),
            multisig=multisig,
            chain=chain,
            promoter=BundlePromoter(build_serving_locations(profile, config)),
        )

    def propose(
        self,
        root_set: RootSet,
        signer: EthAccountSigner,
        bundle_id: str | None = None,
    ) -> RolloutProposal:
        """Submit a root set update with the proposer's signature.

        Earlier proposals still collecting signatures are marked stale once
        the new proposal is accepted by the multisig service.

        Args:
            root_set: Root set to publish.
            signer: Proposing owner.
            bundle_id: Pre-staged bundle to promote; derived from the root set when omitted.

        Returns:
            Persisted proposal, already ``co_signed`` for a 1-of-N multisig.

        Raises:
            NoOpProposalError: If the roots equal the active on-chain roots.
            ProposalSubmissionFailure: If the multisig service rejects the proposal.
            SanctionsRolloutError: If another proposal is awaiting its receipt.
        """
        self._require_owner(signer.address)
        active_roots = self._chain.read_roots(sorted(root_set.roots))
        if active_roots == dict(root_set.roots):
            raise NoOpProposalError(
                "Proposed roots equal the active on-chain roots; nothing to roll out."
            )
        for existing in self._registry.load_all():
            if existing.state == "executing" and existing.receipt is None:
                raise SanctionsRolloutError(
                    f"Proposal {existing.proposal_id} is executing without a receipt. "
                    "Run 'resume' or 'abort' on it before proposing again."
                )
        calldata = self._chain.encode_set_roots(root_set)
        prepared = self._multisig.prepare(self._chain.registry_address, calldata)
        proposal = self._registry.create(
            root_set=root_set,
            bundle_id=bundle_id or build_bundle_id(root_set),
            target=self._chain.registry_address,
            calldata=calldata,
            proposal_hash=prepared.proposal_hash,
            multisig_nonce=prepared.nonce,
            threshold=self._multisig.threshold,
        )
        signature = signer.sign_proposal(prepared.proposal_hash)
        try:
            self._multisig.submit_proposal(proposal, signature)
        except ProposalSubmissionFailure as error:
            self._registry.transition(proposal.proposal_id, "aborted", message=str(error))
            raise
        self._mark_superseded(proposal.proposal_id)
        proposal = self._registry.add_signature(proposal.proposal_id, signature)
        if proposal.threshold_met:
            proposal = self._registry.transition(proposal.proposal_id, "co_signed")
        _LOGGER.info(
            "rollout_proposed",
            proposal_id=proposal.proposal_id,
            proposal_hash=proposal.proposal_hash,
            bundle_id=proposal.bundle_id,
            signatures=len(proposal.signatures),
            threshold=proposal.threshold,
        )
        return proposal

    def cosign(self, proposal_id: str, signer: EthAccountSigner) -> RolloutProposal:
        """Record one more owner signature.

        Raises:
            StaleProposalError: If a newer proposal superseded this one.
            ProposalSubmissionFailure: If the owner already signed or is not an owner.
        """
        proposal = self._registry.load(proposal_id)
        self._require_pending(proposal)
        self._require_owner(signer.address)
        if Web3.to_checksum_address(signer.address) in proposal.signers:
            raise ProposalSubmissionFailure(
                f"Owner {signer.address} already signed proposal {proposal_id}."
            )
        signature = signer.sign_proposal(proposal.proposal_hash)
        self._multisig.submit_confirmation(proposal, signature)
        proposal = self._registry.add_signature(proposal_id, signature)
        if proposal.state == "proposed" and proposal.threshold_met:
            proposal = self._registry.transition(proposal_id, "co_signed")
        _LOGGER.info(
            "rollout_cosigned",
            proposal_id=proposal_id,
            signer=signer.address,
            signatures=len(proposal.signatures),
            threshold=proposal.threshold,
            state=proposal.state,
        )
        return proposal

    def execute(self, proposal_id: str) -> RolloutProposal:
        """Execute a co-signed proposal, wait for its receipt and promote.

        Raises:
            StaleProposalError: If a newer proposal superseded this one.
            ExecutionFailure: If submission fails or the transaction reverts.
            SanctionsDistributionError: If any serving location lacks the bundle.
            ConfirmationPending: If the receipt does not arrive in time.
            PromotionFailure: If serving locations could not be promoted.
        """
        proposal = self._registry.load(proposal_id)
        self._require_pending(proposal)
        if proposal.state != "co_signed":
            raise SanctionsRolloutError(
                f"Proposal {proposal_id} has {len(proposal.signatures)} of "
                f"{proposal.threshold} signatures; collect more with 'cosign'."
            )
        self._require_staged(proposal)
        proposal = self._registry.transition(proposal_id, "executing")
        try:
            tx_hash = self._multisig.execute(proposal)
        except (ExecutionFailure, ProposalSubmissionFailure) as error:
            self._registry.transition(proposal_id, "aborted", message=str(error))
            _LOGGER.error("rollout_execution_failed", proposal_id=proposal_id, error=str(error))
            if isinstance(error, ExecutionFailure):
                raise
            raise ExecutionFailure(str(error)) from error
        proposal = self._registry.update(proposal_id, tx_hash=tx_hash)
        _LOGGER.info("rollout_submitted", proposal_id=proposal_id, tx_hash=tx_hash)
        return self._await_confirmation(proposal)

    def resume(self, proposal_id: str) -> RolloutProposal:
        """Continue an executing proposal after a crash or receipt timeout."""
        proposal = self._registry.load(proposal_id)
        if proposal.state != "executing":
            raise SanctionsRolloutError(
                f"Proposal {proposal_id} is {proposal.state}; only executing proposals resume."
            )
        if proposal.receipt is not None:
            return self._promote_confirmed(proposal)
        if proposal.tx_hash is None:
            raise SanctionsRolloutError(
                f"Proposal {proposal_id} has no recorded transaction. Check the multisig "
                "for an executed transaction, then 'abort' and propose again if none exists."
            )
        return self._await_confirmation(proposal)

    def promote(self, proposal_id: str) -> RolloutProposal:
        """Retry promotion for a proposal whose execution is confirmed.

        Raises:
            SanctionsRolloutError: If the proposal has no successful receipt.
            PromotionFailure: If serving locations still could not be promoted.
        """
        proposal = self._registry.load(proposal_id)
        if proposal.state != "executing" or proposal.receipt is None:
            raise SanctionsRolloutError(
                f"Proposal {proposal_id} has no confirmed execution; promotion only "
                "follows an on-chain receipt."
            )
        return self._promote_confirmed(proposal)

    def abort(self, proposal_id: str, reason: str) -> RolloutProposal:
        """Abort a proposal that has not been confirmed on-chain."""
        proposal = self._registry.load(proposal_id)
        if proposal.receipt is not None and proposal.receipt.succeeded:
            raise SanctionsRolloutError(
                f"Proposal {proposal_id} is confirmed on-chain and cannot be aborted. "
                "Run 'promote' to bring serving locations up to date."
            )
        proposal = self._registry.transition(proposal_id, "aborted", message=reason)
        _LOGGER.warning("rollout_aborted", proposal_id=proposal_id, reason=reason)
        return proposal

    def list_proposals(self) -> tuple[RolloutProposal, ...]:
        return self._registry.load_all()

    def load(self, proposal_id: str) -> RolloutProposal:
        return self._registry.load(proposal_id)

    def _await_confirmation(self, proposal: RolloutProposal) -> RolloutProposal:
        receipt = self._chain.wait_for_receipt(str(proposal.tx_hash))
        if not receipt.succeeded:
            message = f"Transaction {receipt.tx_hash} reverted in block {receipt.block_number}."
            self._registry.transition(
                proposal.proposal_id, "aborted", message=message, receipt=receipt
            )
            _LOGGER.error(
                "rollout_reverted",
                proposal_id=proposal.proposal_id,
                tx_hash=receipt.tx_hash,
            )
            raise ExecutionFailure(f"{message} Roots are unchanged; nothing was promoted.")
        proposal = self._registry.update(proposal.proposal_id, receipt=receipt)
        self._registry.save_confirmed_roots(proposal.root_set)
        _LOGGER.info(
            "rollout_confirmed",
            proposal_id=proposal.proposal_id,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )
        return self._promote_confirmed(proposal)

    def _promote_confirmed(self, proposal: RolloutProposal) -> RolloutProposal:
        bundle_id = proposal.bundle_id or build_bundle_id(proposal.root_set)
        try:
            report = self._promoter.promote(bundle_id)
        except PromotionFailure as error:
            self._registry.update(proposal.proposal_id, error_message=str(error))
            _LOGGER.error(
                "rollout_promotion_failed",
                proposal_id=proposal.proposal_id,
                bundle_id=bundle_id,
                failed_locations=list(error.failed_locations),
            )
            raise
        return self._registry.transition(
            proposal.proposal_id,
            "promoted",
            message=(
                f"Promoted {bundle_id} to {len(report.promoted)} location(s) "
                f"in {report.mismatch_window_ms:.1f}ms."
            ),
            error_message=None,
        )

    def _mark_superseded(self, newest_id: str) -> None:
        for existing in self._registry.load_all():
            if existing.proposal_id == newest_id or existing.state not in PENDING_STATES:
                continue
            self._registry.transition(
                existing.proposal_id, "stale", message=f"Superseded by {newest_id}."
            )
            _LOGGER.info("rollout_marked_stale", proposal_id=existing.proposal_id, newest=newest_id)

    def _require_pending(self, proposal: RolloutProposal) -> None:
        if proposal.state == "stale":
            raise StaleProposalError(
                f"Proposal {proposal.proposal_id} was superseded by a newer proposal. "
                "Sign or execute the newest proposal instead."
            )
        if proposal.state not in PENDING_STATES:
            raise SanctionsRolloutError(
                f"Proposal {proposal.proposal_id} is {proposal.state} and no longer accepts "
                "signatures or execution."
            )

    def _require_staged(self, proposal: RolloutProposal) -> None:
        bundle_id = proposal.bundle_id or build_bundle_id(proposal.root_set)
        missing = [
            location.name
            for location in self._promoter.locations
            if not location.has_bundle(bundle_id)
        ]
        if missing:
            raise SanctionsDistributionError(
                f"Bundle {bundle_id} is not staged at: {', '.join(missing)}. "
                "Run 'prestage' before executing so confirmed roots can be served."
            )

    def _require_owner(self, address: str) -> None:
        if Web3.to_checksum_address(address) not in self._multisig.owners:
            raise ProposalSubmissionFailure(f"Signer {address} is not a multisig owner.")
