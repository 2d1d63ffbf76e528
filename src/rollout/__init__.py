"""Multisig-gated rollout of new registry roots.

This module tracks root-set proposals through co-signing, on-chain
execution and promotion as a persisted state machine.
"""
