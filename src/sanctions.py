"""Public SDK surface for the sanctions registry.

This module provides a stable import path for registry users.
It re-exports the primary client and the typed models it returns.
"""

from __future__ import annotations

from core.config import RegistryConfig
from core.rollout_profile import RolloutProfile, load_rollout_profile
from core.types import BuiltTree, RootSet, SanctionEntry
from distribution.bundle_types import BundleManifest, PromotionReport
from distribution.promotion import BundlePromoter
from ingest.pipeline import PipelineOptions, PipelineResult
from rollout.coordinator import RolloutCoordinator
from rollout.proposal_types import RolloutProposal
from rollout.registry_sdk import SanctionsClient
from trees.field_hash import FieldHash
from trees.leaf_encoding import SANCTIONS_CATEGORIES
from trees.sparse_merkle import SparseMerkleTree, Witness, verify_witness

__all__ = [
    "BuiltTree",
    "BundleManifest",
    "BundlePromoter",
    "FieldHash",
    "PipelineOptions",
    "PipelineResult",
    "PromotionReport",
    "RegistryConfig",
    "RolloutCoordinator",
    "RolloutProfile",
    "RolloutProposal",
    "RootSet",
    "SANCTIONS_CATEGORIES",
    "SanctionEntry",
    "SanctionsClient",
    "SparseMerkleTree",
    "Witness",
    "load_rollout_profile",
    "verify_witness",
]
