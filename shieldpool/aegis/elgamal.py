"""
AEGIS Additively Homomorphic ElGamal

Exponential ElGamal over the Stark curve. Amounts are encoded as amount * H so
that ciphertexts add:

    Enc(a, pk; r) = (r * G, a * H + r * pk)
    Enc(a) + Enc(b) = Enc(a + b)

Decryption recovers the point a * H, not the integer a. Pool logic stays
homomorphic; ``decrypt_amount`` solves the discrete log only for small, bounded
amounts (wallet display, tests).

Also provides Pedersen commitments (a * H + b * G) and the encrypted balance
container with pending-in / pending-out buffers that roll into the main
ciphertext at epoch boundaries.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shieldpool.aegis.curve import (
    CURVE_ORDER,
    IDENTITY,
    Point,
    generator_g,
    generator_h,
    is_on_curve,
    point_add,
    point_negate,
    point_sub,
    random_scalar,
    scalar_mul,
)
from shieldpool.aegis.hardening import InvalidInput, InvariantChecker


# =============================================================================
# KEYS
# =============================================================================

@dataclass(frozen=True)
class KeyPair:
    secret_key: int
    public_key: Point

    def to_dict(self) -> Dict[str, Any]:
        return {"secret_key": hex(self.secret_key), "public_key": self.public_key.to_dict()}


def derive_public_key(secret_key: int) -> Point:
    if secret_key % CURVE_ORDER == 0:
        raise InvalidInput("secret_key", "Must be non-zero mod the group order")
    return scalar_mul(secret_key, generator_g())


def generate_keypair(secret_key: Optional[int] = None) -> KeyPair:
    sk = secret_key if secret_key is not None else random_scalar()
    return KeyPair(secret_key=sk % CURVE_ORDER, public_key=derive_public_key(sk))


# =============================================================================
# CIPHERTEXTS
# =============================================================================

@dataclass(frozen=True)
class Ciphertext:
    """ElGamal ciphertext (C1, C2)."""
    c1: Point
    c2: Point

    def is_zero(self) -> bool:
        return self.c1.is_zero() and self.c2.is_zero()

    def __add__(self, other: "Ciphertext") -> "Ciphertext":
        return homomorphic_add(self, other)

    def __sub__(self, other: "Ciphertext") -> "Ciphertext":
        return homomorphic_sub(self, other)

    def to_dict(self) -> Dict[str, Any]:
        return {"c1": self.c1.to_dict(), "c2": self.c2.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ciphertext":
        return cls(c1=Point.from_dict(data["c1"]), c2=Point.from_dict(data["c2"]))


ZERO_CIPHERTEXT = Ciphertext(IDENTITY, IDENTITY)


def _check_public_key(public_key: Point) -> None:
    if not isinstance(public_key, Point) or not is_on_curve(public_key):
        raise InvalidInput("public_key", "Must be a non-identity point on the curve", public_key)


def encrypt(amount: int, public_key: Point, randomness: Optional[int] = None) -> Ciphertext:
    """Enc(amount, pk; r) = (r*G, amount*H + r*pk)."""
    _check_public_key(public_key)
    if amount < 0:
        raise InvalidInput("amount", "Must be non-negative", amount)
    r = randomness if randomness is not None else random_scalar()
    if r % CURVE_ORDER == 0:
        raise InvalidInput("randomness", "Must be non-zero mod the group order")

    c1 = scalar_mul(r, generator_g())
    c2 = point_add(scalar_mul(amount, generator_h()), scalar_mul(r, public_key))
    return Ciphertext(c1, c2)


def decrypt_point(ciphertext: Ciphertext, secret_key: int) -> Point:
    """C2 - sk*C1, which equals amount*H."""
    return point_sub(ciphertext.c2, scalar_mul(secret_key, ciphertext.c1))


def homomorphic_add(a: Ciphertext, b: Ciphertext) -> Ciphertext:
    return Ciphertext(point_add(a.c1, b.c1), point_add(a.c2, b.c2))


def homomorphic_sub(a: Ciphertext, b: Ciphertext) -> Ciphertext:
    return Ciphertext(point_sub(a.c1, b.c1), point_sub(a.c2, b.c2))


def homomorphic_negate(ct: Ciphertext) -> Ciphertext:
    return Ciphertext(point_negate(ct.c1), point_negate(ct.c2))


def homomorphic_scalar_mul(scalar: int, ct: Ciphertext) -> Ciphertext:
    return Ciphertext(scalar_mul(scalar, ct.c1), scalar_mul(scalar, ct.c2))


def rerandomize(ct: Ciphertext, public_key: Point, randomness: Optional[int] = None) -> Ciphertext:
    """Fresh-looking ciphertext of the same plaintext."""
    return homomorphic_add(ct, encrypt(0, public_key, randomness))


def decrypt_amount(ciphertext: Ciphertext, secret_key: int, max_amount: int = 1 << 20) -> Optional[int]:
    """
    Recover a small plaintext with baby-step giant-step.

    Returns None if the amount is not in [0, max_amount].
    """
    if max_amount < 0:
        raise InvalidInput("max_amount", "Must be non-negative", max_amount)
    target = decrypt_point(ciphertext, secret_key)
    h = generator_h()

    m = math.isqrt(max_amount) + 1
    baby: Dict[Point, int] = {}
    step = IDENTITY
    for j in range(m):
        baby.setdefault(step, j)
        step = point_add(step, h)

    giant = point_negate(scalar_mul(m, h))
    current = target
    for i in range(m + 1):
        j = baby.get(current)
        if j is not None:
            amount = i * m + j
            return amount if amount <= max_amount else None
        current = point_add(current, giant)
    return None


# =============================================================================
# PEDERSEN COMMITMENTS
# =============================================================================

def pedersen_commit(amount: int, blinding: int) -> Point:
    """amount*H + blinding*G."""
    return point_add(scalar_mul(amount, generator_h()), scalar_mul(blinding, generator_g()))


def verify_pedersen_opening(commitment: Point, amount: int, blinding: int) -> bool:
    return pedersen_commit(amount, blinding) == commitment


# =============================================================================
# ENCRYPTED BALANCES
# =============================================================================

@dataclass
class EncryptedBalance:
    """
    Encrypted account balance with pending buffers.

    Incoming and outgoing amounts accumulate in ``pending_in`` and
    ``pending_out`` and are folded into ``ciphertext`` by ``rollup``. The epoch
    counter only ever increases.
    """
    ciphertext: Ciphertext = ZERO_CIPHERTEXT
    pending_in: Ciphertext = ZERO_CIPHERTEXT
    pending_out: Ciphertext = ZERO_CIPHERTEXT
    epoch: int = 0

    def credit(self, amount_ct: Ciphertext) -> None:
        self.pending_in = homomorphic_add(self.pending_in, amount_ct)

    def debit(self, amount_ct: Ciphertext) -> None:
        self.pending_out = homomorphic_add(self.pending_out, amount_ct)

    def has_pending(self) -> bool:
        return not (self.pending_in.is_zero() and self.pending_out.is_zero())

    def rollup(self) -> int:
        """Fold pending buffers into the main ciphertext. Returns the new epoch."""
        net = homomorphic_sub(self.pending_in, self.pending_out)
        new_epoch = self.epoch + 1
        InvariantChecker.check_monotonic_increase("epoch", self.epoch, new_epoch)

        self.ciphertext = homomorphic_add(self.ciphertext, net)
        self.pending_in = ZERO_CIPHERTEXT
        self.pending_out = ZERO_CIPHERTEXT
        self.epoch = new_epoch
        return new_epoch

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext.to_dict(),
            "pending_in": self.pending_in.to_dict(),
            "pending_out": self.pending_out.to_dict(),
            "epoch": self.epoch,
        }
