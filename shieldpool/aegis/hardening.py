"""
AEGIS Validation and Hardening Module

Error taxonomy, input validation and state-machine enforcement shared by every
AEGIS component. It addresses:

1. A stable error code for every failure the pool can report
2. Input validation for field elements, addresses, amounts and curve points
3. State machine invariant enforcement
4. Reentrancy protection for pool mutations

Security Model:
    - All inputs are untrusted until validated
    - All state mutations are atomic or compensated
    - A failed operation leaves no trace in pool state

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Set

from shieldpool.hashing import FIELD_PRIME, is_felt


# =============================================================================
# ERROR TYPES
# =============================================================================

class AegisError(Exception):
    """Base exception for every pool failure."""

    code = "aegis_error"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInput(AegisError, ValueError):
    """Input failed validation."""

    code = "invalid_input"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"{field}: {message}", field=field)


class Unauthorized(AegisError):
    code = "unauthorized"


class InsufficientStake(AegisError):
    code = "insufficient_stake"


class AlreadyExists(AegisError):
    code = "already_exists"


class DuplicateVote(AlreadyExists):
    code = "duplicate_vote"


class NotFound(AegisError):
    code = "not_found"


class InvalidProof(AegisError):
    code = "invalid_proof"


class ExcludedDeposit(InvalidProof):
    """Deposit appears in an exclusion set."""

    code = "excluded_deposit"


class AlreadySpent(AegisError):
    code = "already_spent"


class NotYetExecutable(AegisError):
    code = "not_yet_executable"


class Expired(AegisError):
    code = "expired"


class CapacityExceeded(AegisError):
    code = "capacity_exceeded"


class InvalidState(AegisError):
    """Illegal status transition."""

    code = "invalid_state"


class NotInitialized(AegisError):
    code = "not_initialized"


class AlreadyInitialized(AegisError):
    code = "already_initialized"


class TransferFailed(AegisError):
    code = "transfer_failed"


class ReentrantCall(AegisError):
    code = "reentrant_call"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[InvalidInput] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> Any:
        """Raise the first error if validation failed, else return the sanitized value."""
        if not self.is_valid:
            raise self.errors[0]
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[InvalidInput]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    # Patterns
    ADDRESS_PATTERN = re.compile(r'^0x[0-9a-f]{1,64}$')

    # Limits
    MAX_AMOUNT = (1 << 128) - 1
    MAX_PROOF_BYTES = 1 << 20

    @classmethod
    def validate_felt(
        cls,
        value: Any,
        field_name: str,
        allow_zero: bool = False,
    ) -> ValidationResult:
        """Validate a Stark field element."""
        if not is_felt(value):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Must be an integer in [0, {hex(FIELD_PRIME)})", value)
            ])
        if value == 0 and not allow_zero:
            return ValidationResult.failure([
                InvalidInput(field_name, "Must be non-zero", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate an account address (0x-prefixed hex, up to a felt wide)."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected string, got {type(value).__name__}", value)
            ])
        lower = value.strip().lower()
        if not cls.ADDRESS_PATTERN.match(lower):
            return ValidationResult.failure([
                InvalidInput(field_name, "Must be 0x followed by 1-64 hex characters", value)
            ])
        if int(lower, 16) == 0:
            return ValidationResult.failure([
                InvalidInput(field_name, "Zero address is not allowed", value)
            ])
        return ValidationResult.success(lower)

    @classmethod
    def validate_amount(
        cls,
        value: Any,
        field_name: str = "amount",
        min_value: int = 1,
        max_value: Optional[int] = None,
    ) -> ValidationResult:
        """Validate an integer token amount."""
        max_value = max_value if max_value is not None else cls.MAX_AMOUNT
        if not isinstance(value, int) or isinstance(value, bool):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected int, got {type(value).__name__}", value)
            ])
        if value < min_value:
            return ValidationResult.failure([
                InvalidInput(field_name, f"Below minimum ({min_value})", value)
            ])
        if value > max_value:
            return ValidationResult.failure([
                InvalidInput(field_name, f"Above maximum ({max_value})", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_point(cls, value: Any, field_name: str = "point") -> ValidationResult:
        """Validate a non-identity point on the Stark curve."""
        from shieldpool.aegis.curve import Point, is_on_curve

        if not isinstance(value, Point):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected Point, got {type(value).__name__}", value)
            ])
        if value.is_zero() or not is_on_curve(value):
            return ValidationResult.failure([
                InvalidInput(field_name, "Must be a non-identity point on the curve", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_bytes(
        cls,
        value: Any,
        field_name: str = "proof",
        allow_empty: bool = True,
    ) -> ValidationResult:
        """Validate an opaque proof blob."""
        if not isinstance(value, (bytes, bytearray)):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected bytes, got {type(value).__name__}", value)
            ])
        if not value and not allow_empty:
            return ValidationResult.failure([
                InvalidInput(field_name, "Must not be empty", value)
            ])
        if len(value) > cls.MAX_PROOF_BYTES:
            return ValidationResult.failure([
                InvalidInput(field_name, f"Too large (max {cls.MAX_PROOF_BYTES} bytes)", value)
            ])
        return ValidationResult.success(bytes(value))

    @classmethod
    def validate_felt_batch(
        cls,
        values: Any,
        field_name: str,
        max_items: int,
        allow_empty: bool = True,
    ) -> ValidationResult:
        """Validate a list of distinct non-zero field elements."""
        if not isinstance(values, (list, tuple)):
            return ValidationResult.failure([
                InvalidInput(field_name, f"Expected list, got {type(values).__name__}", values)
            ])
        if not values and not allow_empty:
            return ValidationResult.failure([InvalidInput(field_name, "Must not be empty")])

        errors: List[InvalidInput] = []
        for i, v in enumerate(values):
            result = cls.validate_felt(v, f"{field_name}[{i}]")
            errors.extend(result.errors)
        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(list(values))


def require_felt(value: Any, field_name: str, allow_zero: bool = False) -> int:
    return Validators.validate_felt(value, field_name, allow_zero=allow_zero).raise_if_invalid()


def require_address(value: Any, field_name: str = "address") -> str:
    return Validators.validate_address(value, field_name).raise_if_invalid()


def require_amount(value: Any, field_name: str = "amount") -> int:
    return Validators.validate_amount(value, field_name).raise_if_invalid()


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvalidState(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}",
                current=current_state.value,
                target=target_state.value,
            )

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvalidState(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )


# =============================================================================
# DECORATOR UTILITIES
# =============================================================================

def non_reentrant(func: Callable) -> Callable:
    """Reject a call made while another guarded method of the same object is running."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_entered", False):
            raise ReentrantCall(f"{func.__name__} called during another pool operation")
        self._entered = True
        try:
            return func(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper
