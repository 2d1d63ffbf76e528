"""Sanctions registry exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability, and every
type carries an ``error_kind`` string for machine-readable failure output.
"""

from __future__ import annotations


class SanctionsError(Exception):
    """Base exception for all sanctions registry failures."""

    error_kind = "SanctionsError"


class SanctionsConfigError(SanctionsError):
    """Raised for invalid runtime configuration or rollout profiles."""

    error_kind = "ConfigError"


class SanctionsStoreError(SanctionsError):
    """Raised for corrupt or unreadable persisted state."""

    error_kind = "StoreError"


class SanctionsIngestError(SanctionsError):
    """Raised for feed retrieval and parsing failures."""

    error_kind = "IngestError"


class FetchFailure(SanctionsIngestError):
    """Raised when no feed source yields a snapshot."""

    error_kind = "FetchFailure"


class ContentValidationFailure(FetchFailure):
    """Raised when a fetched payload does not look like a sanctions feed."""

    error_kind = "ContentValidationFailure"


class SanctionsBuildError(SanctionsError):
    """Raised for accumulator tree build failures."""

    error_kind = "BuildError"


class BuildInvariantViolation(SanctionsBuildError):
    """Raised when leaf input is malformed or a tree invariant breaks."""

    error_kind = "BuildInvariantViolation"


class SanctionsRolloutError(SanctionsError):
    """Raised for multisig proposal and on-chain execution failures."""

    error_kind = "RolloutError"


class NoOpProposalError(SanctionsRolloutError):
    """Raised when a proposed root set equals the active on-chain roots."""

    error_kind = "NoOpProposal"


class StaleProposalError(SanctionsRolloutError):
    """Raised when acting on a proposal superseded by a newer one."""

    error_kind = "StaleProposal"


class ProposalSubmissionFailure(SanctionsRolloutError):
    """Raised when the multisig service rejects a proposal or signature."""

    error_kind = "ProposalSubmissionFailure"


class ExecutionFailure(SanctionsRolloutError):
    """Raised when an on-chain execution reverts or cannot be submitted."""

    error_kind = "ExecutionFailure"


class ConfirmationPending(SanctionsRolloutError):
    """Raised when a submitted transaction has no receipt within the wait window."""

    error_kind = "ConfirmationPending"


class SanctionsDistributionError(SanctionsError):
    """Raised for serving bundle staging and pruning failures."""

    error_kind = "DistributionError"


class PromotionFailure(SanctionsDistributionError):
    """Raised when a confirmed root set could not be promoted everywhere."""

    error_kind = "PromotionFailure"

    def __init__(self, message: str, failed_locations: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.failed_locations = failed_locations
