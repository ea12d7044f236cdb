"""Field-element hashing for the shielded pool.

Every value that enters an accumulator, a commitment or a Fiat-Shamir challenge
is an element of the Stark prime field. This module fixes how such values are
hashed so that every component agrees on the same bytes.

Hashing:
- SHA-256 over the 32-byte big-endian encoding of each input, in order
- output reduced mod the Stark field prime
- Domain separation: the first input is always a short-string tag (ASCII bytes
  read as a big-endian integer), e.g. ``LEAN_IMT_NODE``

Commitments and nullifiers:
- commitment = H(PP_COMMITMENT, secret, nullifier_seed, amount, asset_id)
- nullifier  = H(PP_NULLIFIER, nullifier_seed, leaf_index)

"""

from __future__ import annotations

import hashlib
from typing import Iterable


# 2^251 + 17 * 2^192 + 1
FIELD_PRIME = 0x800000000000011000000000000000000000000000000000000000000000001

_MAX_WORD = 1 << 256


def short_string(tag: str) -> int:
    """Encode an ASCII tag (max 31 chars) as a field element."""
    raw = tag.encode("ascii")
    if not raw or len(raw) > 31:
        raise ValueError("short string tags must be 1..31 ASCII characters")
    return int.from_bytes(raw, "big")


DOMAIN_COMMITMENT = short_string("PP_COMMITMENT")
DOMAIN_NULLIFIER = short_string("PP_NULLIFIER")
DOMAIN_TREE_NODE = short_string("LEAN_IMT_NODE")
DOMAIN_SCHNORR = short_string("SCHNORR_PROOF")
DOMAIN_ENCRYPTION_PROOF = short_string("ELGAMAL_ENC_PROOF")
DOMAIN_GENERATOR_H = short_string("AEGIS_GENERATOR_H")


def is_felt(value: object) -> bool:
    """True for ints in [0, FIELD_PRIME). Booleans are rejected."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < FIELD_PRIME


def _word(value: int) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"hash inputs must be int, got {type(value).__name__}")
    if value < 0 or value >= _MAX_WORD:
        raise ValueError("hash inputs must fit in 256 bits")
    return value.to_bytes(32, "big")


def felt_hash_many(values: Iterable[int]) -> int:
    h = hashlib.sha256()
    for v in values:
        h.update(_word(v))
    return int.from_bytes(h.digest(), "big") % FIELD_PRIME


def felt_hash(*values: int) -> int:
    """Hash a sequence of integers into a single field element."""
    return felt_hash_many(values)


def hash_pair(left: int, right: int) -> int:
    """Parent node of an accumulator. Order-sensitive."""
    return felt_hash(DOMAIN_TREE_NODE, left, right)


def compute_commitment(secret: int, nullifier_seed: int, amount: int, asset_id: int) -> int:
    """Note commitment a depositor publishes in place of their identity."""
    return felt_hash(DOMAIN_COMMITMENT, secret, nullifier_seed, amount, asset_id)


def compute_nullifier(nullifier_seed: int, leaf_index: int) -> int:
    """Spend tag revealed when a note leaves the pool."""
    return felt_hash(DOMAIN_NULLIFIER, nullifier_seed, leaf_index)
