"""
AEGIS External Collaborators

The pool core never moves tokens, checks STARK proofs or reads wall-clock time
itself. It talks to three collaborators through narrow protocols:

    TokenLedger     transfer / transfer_from / balance_of
    ProofVerifier   verify(proof_bytes, public_inputs) -> bool
    Clock           now() -> int (seconds)

In-memory implementations are provided for local runs and tests.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence, Set, Tuple, runtime_checkable


# =============================================================================
# PROTOCOLS
# =============================================================================

@runtime_checkable
class TokenLedger(Protocol):
    """Fungible token interface. Transfers return False rather than raising."""

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        ...

    def balance_of(self, account: str) -> int:
        ...


@runtime_checkable
class ProofVerifier(Protocol):
    """Opaque proof oracle. The pool only consumes the boolean."""

    def verify(self, proof: bytes, public_inputs: Sequence[int]) -> bool:
        ...


@runtime_checkable
class Clock(Protocol):
    def now(self) -> int:
        ...


# =============================================================================
# TOKENS
# =============================================================================

class InMemoryToken:
    """ERC20-style ledger with allowances."""

    def __init__(self, symbol: str = "TKN"):
        self.symbol = symbol
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self.frozen: Set[str] = set()

    def mint(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("mint amount must be non-negative")
        self._balances[account] = self._balances.get(account, 0) + amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("allowance must be non-negative")
        self._allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def _move(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0 or sender in self.frozen or recipient in self.frozen:
            return False
        if self._balances.get(sender, 0) < amount:
            return False
        self._balances[sender] -= amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        return self._move(sender, recipient, amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            return False
        if not self._move(owner, recipient, amount):
            return False
        self._allowances[(owner, spender)] = allowed - amount
        return True


# =============================================================================
# VERIFIERS
# =============================================================================

@dataclass
class AcceptingVerifier:
    """
    Mock verifier for testing.

    Accepts any non-empty proof and records every call.
    NOT CRYPTOGRAPHICALLY SECURE - for testing only.
    """
    calls: List[Tuple[bytes, Tuple[int, ...]]] = field(default_factory=list)

    def verify(self, proof: bytes, public_inputs: Sequence[int]) -> bool:
        self.calls.append((bytes(proof), tuple(public_inputs)))
        return len(proof) > 0


@dataclass
class RejectingVerifier:
    """Verifier that rejects everything."""
    calls: List[Tuple[bytes, Tuple[int, ...]]] = field(default_factory=list)

    def verify(self, proof: bytes, public_inputs: Sequence[int]) -> bool:
        self.calls.append((bytes(proof), tuple(public_inputs)))
        return False


# =============================================================================
# CLOCKS
# =============================================================================

class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock advanced explicitly by tests and simulations."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += seconds
        return self._now
