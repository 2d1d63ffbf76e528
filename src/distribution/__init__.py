"""Serving bundle distribution.

This module pre-stages tree bundles on serving locations and swaps the
active bundle pointer once new roots are confirmed on-chain.
"""
