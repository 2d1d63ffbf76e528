"""Accumulator tree construction.

This module turns normalized sanctions entries into per-category sparse
Merkle trees whose roots are published on-chain.
"""
