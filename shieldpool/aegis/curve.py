"""
AEGIS Stark Curve Arithmetic

Affine arithmetic on the Stark curve

    y^2 = x^3 + alpha * x + beta   (mod p)

with alpha = 1, prime group order n and cofactor 1. Every point other than the
identity generates the full group.

Generators:
    G   The standard Stark generator.
    H   Derived by hashing a fixed domain tag to the curve, so that nobody
        knows log_G(H). Pedersen commitments and ElGamal messages use H.

The identity is represented by the sentinel Point(0, 0). Since beta != 0 the
sentinel is never a curve point.

Scalars are always reduced modulo the group order n, never modulo p.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from shieldpool.hashing import DOMAIN_GENERATOR_H, FIELD_PRIME, felt_hash


# =============================================================================
# CURVE PARAMETERS
# =============================================================================

P = FIELD_PRIME
ALPHA = 1
BETA = 0x6f21413efbe40de150e596d72f7a8c5609ad26c15c915c1f4cdfcb99cee9e89
CURVE_ORDER = 0x800000000000010ffffffffffffffffb781126dcae7b2321e66a241adc64d2f

GX = 0x1ef15c18599971b7beced415a40f0c7deacfd9b0d1819e03d723d8bc943cfca
GY = 0x5668060aa49730b7be4801df46ec62de53ecd11abe43a32873000c36e8dc1f


@dataclass(frozen=True)
class Point:
    """Affine curve point. Point(0, 0) is the identity."""
    x: int
    y: int

    def is_zero(self) -> bool:
        return self.x == 0 and self.y == 0

    def felts(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def to_dict(self) -> Dict[str, str]:
        return {"x": hex(self.x), "y": hex(self.y)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Point":
        x, y = data["x"], data["y"]
        return cls(
            x=int(x, 16) if isinstance(x, str) else int(x),
            y=int(y, 16) if isinstance(y, str) else int(y),
        )

    def __add__(self, other: "Point") -> "Point":
        return point_add(self, other)

    def __sub__(self, other: "Point") -> "Point":
        return point_sub(self, other)

    def __neg__(self) -> "Point":
        return point_negate(self)

    def __rmul__(self, scalar: int) -> "Point":
        return scalar_mul(scalar, self)


IDENTITY = Point(0, 0)


# =============================================================================
# FIELD HELPERS
# =============================================================================

def _inv(value: int) -> int:
    return pow(value % P, -1, P)


def _is_quadratic_residue(value: int) -> bool:
    value %= P
    return value == 0 or pow(value, (P - 1) // 2, P) == 1


def _sqrt_mod_p(value: int) -> Optional[int]:
    """Tonelli-Shanks square root mod p, or None for a non-residue."""
    value %= P
    if value == 0:
        return 0
    if not _is_quadratic_residue(value):
        return None

    # p - 1 = q * 2^s with q odd
    q, s = P - 1, 0
    while q % 2 == 0:
        q //= 2
        s += 1

    z = 2
    while _is_quadratic_residue(z):
        z += 1

    m = s
    c = pow(z, q, P)
    t = pow(value, q, P)
    r = pow(value, (q + 1) // 2, P)
    while t != 1:
        i, t2 = 0, t
        while t2 != 1:
            t2 = t2 * t2 % P
            i += 1
        b = pow(c, 1 << (m - i - 1), P)
        m = i
        c = b * b % P
        t = t * c % P
        r = r * b % P
    return r


# =============================================================================
# GROUP LAW
# =============================================================================

def is_on_curve(point: Point) -> bool:
    if point.is_zero():
        return False
    x, y = point.x, point.y
    if not (0 <= x < P and 0 <= y < P):
        return False
    return (y * y - (x * x * x + ALPHA * x + BETA)) % P == 0


def point_negate(point: Point) -> Point:
    if point.is_zero():
        return IDENTITY
    return Point(point.x, (-point.y) % P)


def point_double(point: Point) -> Point:
    if point.is_zero() or point.y == 0:
        return IDENTITY
    lam = (3 * point.x * point.x + ALPHA) * _inv(2 * point.y) % P
    x3 = (lam * lam - 2 * point.x) % P
    y3 = (lam * (point.x - x3) - point.y) % P
    return Point(x3, y3)


def point_add(a: Point, b: Point) -> Point:
    if a.is_zero():
        return b
    if b.is_zero():
        return a
    if a.x == b.x:
        if (a.y + b.y) % P == 0:
            return IDENTITY
        return point_double(a)
    lam = (b.y - a.y) * _inv(b.x - a.x) % P
    x3 = (lam * lam - a.x - b.x) % P
    y3 = (lam * (a.x - x3) - a.y) % P
    return Point(x3, y3)


def point_sub(a: Point, b: Point) -> Point:
    return point_add(a, point_negate(b))


def scalar_mul(scalar: int, point: Point) -> Point:
    """Double-and-add, scalar reduced mod the group order."""
    k = scalar % CURVE_ORDER
    if k == 0 or point.is_zero():
        return IDENTITY

    result = IDENTITY
    addend = point
    while k:
        if k & 1:
            result = point_add(result, addend)
        addend = point_double(addend)
        k >>= 1
    return result


# =============================================================================
# GENERATORS
# =============================================================================

def hash_to_curve(tag: int, max_attempts: int = 1024) -> Point:
    """
    Try-and-increment hash to the curve.

    x = H(tag, counter) for counter = 0, 1, ... until x^3 + x + beta is a
    square; the even root is taken as y.
    """
    for counter in range(max_attempts):
        x = felt_hash(tag, counter)
        y = _sqrt_mod_p(x * x * x + ALPHA * x + BETA)
        if y is None or y == 0:
            continue
        if y % 2 == 1:
            y = P - y
        return Point(x, y)
    raise ValueError(f"no curve point found for tag {hex(tag)} in {max_attempts} attempts")


def generator_g() -> Point:
    return Point(GX, GY)


@lru_cache(maxsize=1)
def generator_h() -> Point:
    return hash_to_curve(DOMAIN_GENERATOR_H)


def random_scalar() -> int:
    """Uniform non-zero scalar."""
    return secrets.randbelow(CURVE_ORDER - 1) + 1


def is_valid_scalar(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value < CURVE_ORDER
