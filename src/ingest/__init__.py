"""Sanctions feed ingestion pipeline.

This module fetches raw feed snapshots and normalizes them into canonical
entries for the tree builder.
"""
