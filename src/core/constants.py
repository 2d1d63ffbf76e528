"""Core constants used across sanctions registry modules.

This module centralizes on-disk layout names, feed defaults, and the
field parameters shared by leaf encoding and tree construction.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".sanctions")
RAW_DIR_NAME = "raw"
INPUTS_DIR_NAME = "inputs"
OUTPUTS_DIR_NAME = "outputs"
ROLLOUTS_DIR_NAME = "rollouts"
SNAPSHOT_FILE_PREFIX = "sdn-"
SNAPSHOT_FILE_SUFFIX = ".xml"
LATEST_POINTER_FILE_NAME = "latest.json"
ENTRIES_FILE_NAME = "entries.jsonl"
NORMALIZATION_STATS_FILE_NAME = "normalization.json"
ROOT_SET_FILE_NAME = "roots.json"
RUN_LOCK_FILE_NAME = ".run.lock"
PROPOSAL_STATE_FILE_NAME = "state.json"
PROPOSAL_INDEX_FILE_NAME = "index.json"
ONCHAIN_ROOTS_FILE_NAME = "onchain_roots.json"
LOCAL_MULTISIG_DIR_NAME = "multisig"
BUNDLES_DIR_NAME = "bundles"
ACTIVE_POINTER_FILE_NAME = "active.json"
BUNDLE_MANIFEST_FILE_NAME = "manifest.json"

DEFAULT_FEED_URLS = (
    "https://sanctionslistservice.ofac.treas.gov/api/PublicationPreview/exports/SDN.XML",
    "https://www.treasury.gov/ofac/downloads/sdn.xml",
    "https://www.treasury.gov/ofac/downloads/sanctions/1.0/sdn_advanced.xml",
)
FEED_CONTENT_MARKERS = ("<sdnList", "<sanctionsData", "<sdnEntry")
FEED_USER_AGENT = "sanctions-registry/0.1 (+feed-ingestor)"
FEED_ACCEPT_HEADER = "application/xml, text/xml, */*"
DEFAULT_FETCH_RETRIES = 3
DEFAULT_FETCH_DELAY_SECONDS = 2.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0
DEFAULT_FRESHNESS_HOURS = 24.0

HASH_ALGORITHM = "poseidon"
SUPPORTED_HASH_ALGORITHMS = ("poseidon", "sha256", "sha3_256", "blake2s")
POSEIDON_ALPHA = 5
POSEIDON_SECURITY_LEVEL = 128
POSEIDON_FULL_ROUNDS = 8
# Partial rounds by state width, as in circomlib.
POSEIDON_PARTIAL_ROUNDS = {3: 57, 4: 56}
BN254_FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_CHUNK_BYTES = 31
FIELD_ELEMENT_BYTES = 32
SMT_MAX_DEPTH = 254
DEFAULT_BUILD_WORKERS = 1

PASSPORT_MRZ_NAME_LENGTH = 39
ID_CARD_MRZ_NAME_LENGTH = 30
MRZ_FILLER = "<"

DEFAULT_PRUNE_KEEP = 3
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 300.0
