"""
AEGIS Sigma-Protocol Proofs

Non-interactive (Fiat-Shamir) proofs over the Stark curve:

    SchnorrProof      Knowledge of sk such that pk = sk * G. ASPs attach one
                      at registration as proof-of-possession of their key.

    EncryptionProof   Knowledge of (amount, r) such that a ciphertext equals
                      (r * G, amount * H + r * pk).

Challenges are domain-separated felt hashes of every public point involved,
reduced modulo the group order. Responses live in Z_n.

Verification fails closed: identity points, off-curve points, out-of-range
scalars and malformed input all yield False rather than an exception.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from shieldpool.aegis.curve import (
    CURVE_ORDER,
    Point,
    generator_g,
    generator_h,
    is_on_curve,
    point_add,
    random_scalar,
    scalar_mul,
)
from shieldpool.aegis.elgamal import Ciphertext
from shieldpool.hashing import DOMAIN_ENCRYPTION_PROOF, DOMAIN_SCHNORR, felt_hash


def _challenge(domain: int, *points: Point) -> int:
    coords = []
    for p in points:
        coords.extend(p.felts())
    return felt_hash(domain, *coords) % CURVE_ORDER


def _valid_point(p: Any) -> bool:
    return isinstance(p, Point) and is_on_curve(p)


def _valid_response(s: Any) -> bool:
    return isinstance(s, int) and not isinstance(s, bool) and 0 <= s < CURVE_ORDER


# =============================================================================
# SCHNORR PROOF OF KNOWLEDGE
# =============================================================================

@dataclass(frozen=True)
class SchnorrProof:
    """Proof of knowledge of a discrete log with respect to G."""
    commitment: Point
    challenge: int
    response: int

    @classmethod
    def prove(cls, secret_key: int, public_key: Point, nonce: Optional[int] = None) -> "SchnorrProof":
        k = nonce if nonce is not None else random_scalar()
        r = scalar_mul(k, generator_g())
        c = _challenge(DOMAIN_SCHNORR, generator_g(), public_key, r)
        s = (k + c * secret_key) % CURVE_ORDER
        return cls(commitment=r, challenge=c, response=s)

    def verify(self, public_key: Point) -> bool:
        """Check s*G == R + c*pk with c recomputed from the transcript."""
        if not _valid_point(public_key) or not _valid_point(self.commitment):
            return False
        if not _valid_response(self.response):
            return False
        c = _challenge(DOMAIN_SCHNORR, generator_g(), public_key, self.commitment)
        if c != self.challenge:
            return False
        lhs = scalar_mul(self.response, generator_g())
        rhs = point_add(self.commitment, scalar_mul(c, public_key))
        return lhs == rhs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": self.commitment.to_dict(),
            "challenge": hex(self.challenge),
            "response": hex(self.response),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchnorrProof":
        return cls(
            commitment=Point.from_dict(data["commitment"]),
            challenge=int(data["challenge"], 16),
            response=int(data["response"], 16),
        )


# =============================================================================
# CORRECT-ENCRYPTION PROOF
# =============================================================================

@dataclass(frozen=True)
class EncryptionProof:
    """
    Proof that a ciphertext encrypts some amount under a public key.

    Prover picks k_a, k_r and sends A1 = k_r*G, A2 = k_a*H + k_r*pk. With
    challenge c the responses are s_a = k_a + c*amount, s_r = k_r + c*r.
    """
    a1: Point
    a2: Point
    challenge: int
    s_amount: int
    s_randomness: int

    @staticmethod
    def _transcript(public_key: Point, ct: Ciphertext, a1: Point, a2: Point) -> int:
        return _challenge(
            DOMAIN_ENCRYPTION_PROOF,
            generator_g(), generator_h(), public_key, ct.c1, ct.c2, a1, a2,
        )

    @classmethod
    def prove(
        cls,
        amount: int,
        randomness: int,
        public_key: Point,
        ciphertext: Ciphertext,
    ) -> "EncryptionProof":
        k_a = random_scalar()
        k_r = random_scalar()
        a1 = scalar_mul(k_r, generator_g())
        a2 = point_add(scalar_mul(k_a, generator_h()), scalar_mul(k_r, public_key))
        c = cls._transcript(public_key, ciphertext, a1, a2)
        return cls(
            a1=a1,
            a2=a2,
            challenge=c,
            s_amount=(k_a + c * amount) % CURVE_ORDER,
            s_randomness=(k_r + c * randomness) % CURVE_ORDER,
        )

    def verify(self, public_key: Point, ciphertext: Ciphertext) -> bool:
        points = (public_key, ciphertext.c1, ciphertext.c2, self.a1, self.a2)
        if not all(_valid_point(p) for p in points):
            return False
        if not (_valid_response(self.s_amount) and _valid_response(self.s_randomness)):
            return False

        c = self._transcript(public_key, ciphertext, self.a1, self.a2)
        if c != self.challenge:
            return False

        # s_r*G == A1 + c*C1
        lhs1 = scalar_mul(self.s_randomness, generator_g())
        rhs1 = point_add(self.a1, scalar_mul(c, ciphertext.c1))
        if lhs1 != rhs1:
            return False

        # s_a*H + s_r*pk == A2 + c*C2
        lhs2 = point_add(
            scalar_mul(self.s_amount, generator_h()),
            scalar_mul(self.s_randomness, public_key),
        )
        rhs2 = point_add(self.a2, scalar_mul(c, ciphertext.c2))
        return lhs2 == rhs2
