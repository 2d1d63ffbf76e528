"""Field hash shared with the disclosure circuit.

Every tree node and leaf key is computed with ``FieldHash``. The default
primitive is Poseidon over the BN254 scalar field with circomlib's
parameters (alpha 5, 8 full rounds, state ``[0, *inputs]``), taking two
inputs for nodes and three for leaves. The byte-oriented digests
(sha256, sha3_256, blake2s) remain selectable for experiments; their
inputs are serialized as 32-byte big-endian words and the digest is
reduced modulo the field. The algorithm name travels with every tree
and root set so a verifier configured with a different primitive is
rejected instead of silently producing unprovable roots.
"""

from __future__ import annotations

from functools import lru_cache
import hashlib
from typing import Iterable

import poseidon

from core.constants import (
    BN254_FIELD_MODULUS,
    FIELD_CHUNK_BYTES,
    FIELD_ELEMENT_BYTES,
    HASH_ALGORITHM,
    POSEIDON_ALPHA,
    POSEIDON_FULL_ROUNDS,
    POSEIDON_PARTIAL_ROUNDS,
    POSEIDON_SECURITY_LEVEL,
    SUPPORTED_HASH_ALGORITHMS,
)
from core.errors import BuildInvariantViolation

POSEIDON_ALGORITHM = "poseidon"
_MAX_ARITY = max(POSEIDON_PARTIAL_ROUNDS) - 1


class FieldHash:
    """Two- or three-input hash over the BN254 scalar field."""

    def __init__(self, algorithm: str = HASH_ALGORITHM) -> None:
        if algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise BuildInvariantViolation(
                f"Unsupported hash algorithm {algorithm!r}. "
                f"Supported: {', '.join(SUPPORTED_HASH_ALGORITHMS)}."
            )
        self.algorithm = algorithm

    def __call__(self, *elements: int) -> int:
        """Hash two or three field elements into one field element.

        Raises:
            BuildInvariantViolation: If the arity is unsupported or an input
                is outside the field.
        """
        if not 2 <= len(elements) <= _MAX_ARITY:
            raise BuildInvariantViolation(
                f"Field hash takes 2 to {_MAX_ARITY} inputs, got {len(elements)}."
            )
        for element in elements:
            require_field_element(element)
        if self.algorithm == POSEIDON_ALGORITHM:
            permutation = _poseidon_permutation(len(elements) + 1)
            return int(permutation.run_hash([0, *elements])) % BN254_FIELD_MODULUS
        hasher = hashlib.new(self.algorithm)
        for element in elements:
            hasher.update(element.to_bytes(FIELD_ELEMENT_BYTES, "big"))
        return int.from_bytes(hasher.digest(), "big") % BN254_FIELD_MODULUS

    def fold(self, elements: Iterable[int]) -> int:
        """Left-fold elements, seeding the accumulator with the first one."""
        accumulator: int | None = None
        for element in elements:
            if accumulator is None:
                require_field_element(element)
                accumulator = element
            else:
                accumulator = self(accumulator, element)
        if accumulator is None:
            raise BuildInvariantViolation("Cannot fold an empty element sequence.")
        return accumulator

    def pack_text(self, text: str) -> int:
        """Pack one canonical ASCII field into a single field element.

        The byte length seeds the fold so texts that differ only in chunk
        boundaries cannot collide.

        Raises:
            BuildInvariantViolation: If the text is empty or not printable ASCII.
        """
        payload = canonical_bytes(text)
        chunks = [
            int.from_bytes(payload[offset : offset + FIELD_CHUNK_BYTES], "big")
            for offset in range(0, len(payload), FIELD_CHUNK_BYTES)
        ]
        return self.fold([len(payload), *chunks])


def canonical_bytes(text: str) -> bytes:
    """Validate and encode one canonical field value.

    Raises:
        BuildInvariantViolation: If the value is empty or leaves the 0x20-0x7E range.
    """
    if not text:
        raise BuildInvariantViolation("Canonical field value is empty.")
    for position, character in enumerate(text):
        if not 0x20 <= ord(character) <= 0x7E:
            raise BuildInvariantViolation(
                f"Non-canonical byte {ord(character):#x} at position {position} in {text!r}. "
                "Leaf fields must be printable ASCII."
            )
    return text.encode("ascii")


def require_field_element(value: int) -> None:
    """Raise unless value is an int in ``[0, p)``."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise BuildInvariantViolation(
            f"Field element must be an integer, got {type(value).__name__}."
        )
    if not 0 <= value < BN254_FIELD_MODULUS:
        raise BuildInvariantViolation(
            f"Value {value} is outside the BN254 scalar field. "
            "Leaf inputs must be reduced before hashing."
        )


@lru_cache(maxsize=None)
def _poseidon_permutation(width: int) -> poseidon.Poseidon:
    # Round constants are derived once per width and process.
    return poseidon.Poseidon(
        BN254_FIELD_MODULUS,
        POSEIDON_SECURITY_LEVEL,
        POSEIDON_ALPHA,
        width - 1,
        width,
        full_round=POSEIDON_FULL_ROUNDS,
        partial_round=POSEIDON_PARTIAL_ROUNDS[width],
    )
