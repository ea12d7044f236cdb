"""
AEGIS Association Set Provider Registry

ASPs are staked compliance operators. They certify deposits by publishing
association sets; an ASP's sets only count while the ASP is active.

Lifecycle:

    PENDING ──(approval_threshold auditor votes)──▶ ACTIVE
    ACTIVE  ──(owner or auditor)──▶ SUSPENDED ──(owner)──▶ ACTIVE
    any non-terminal ──(owner)──▶ REVOKED (terminal)

Governance:

    Registration requires a stake of at least ``min_stake`` pulled from the
    registrant into pool custody, and optionally a Schnorr proof that the
    registrant holds the secret key behind the ASP public key.

    Registered auditors vote to activate pending ASPs. An auditor votes at
    most once per ASP. Votes are counted only while the ASP is pending.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from shieldpool.aegis.collaborators import Clock, TokenLedger
from shieldpool.aegis.curve import Point
from shieldpool.aegis.hardening import (
    AlreadyExists,
    DuplicateVote,
    InsufficientStake,
    InvalidProof,
    InvalidState,
    InvariantChecker,
    NotFound,
    TransferFailed,
    Unauthorized,
    Validators,
    require_address,
    require_felt,
)
from shieldpool.aegis.observability import AegisLayer, AuditTrail, get_logger
from shieldpool.aegis.zkp import SchnorrProof

logger = get_logger("asp_registry", AegisLayer.REGISTRY)


# =============================================================================
# ASP STATUS
# =============================================================================

class ASPStatus(Enum):
    """Status of an association set provider."""
    PENDING = "pending"  # Registered, awaiting auditor approval
    ACTIVE = "active"  # Approved; sets are honored
    SUSPENDED = "suspended"  # Temporarily barred; sets not honored
    REVOKED = "revoked"  # Permanently removed


ASP_TRANSITIONS: Dict[ASPStatus, Set[ASPStatus]] = {
    ASPStatus.PENDING: {ASPStatus.ACTIVE, ASPStatus.REVOKED},
    ASPStatus.ACTIVE: {ASPStatus.SUSPENDED, ASPStatus.REVOKED},
    ASPStatus.SUSPENDED: {ASPStatus.ACTIVE, ASPStatus.REVOKED},
    ASPStatus.REVOKED: set(),
}


@dataclass
class ASPInfo:
    """Registry record for one ASP."""
    asp_id: int
    address: str
    public_key: Point
    metadata_hash: int
    stake: int
    status: ASPStatus = ASPStatus.PENDING
    voters: Set[str] = field(default_factory=set)
    set_count: int = 0
    registered_at: int = 0
    activated_at: Optional[int] = None
    suspension_reason: Optional[int] = None

    @property
    def approval_votes(self) -> int:
        return len(self.voters)

    @property
    def is_active(self) -> bool:
        return self.status == ASPStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asp_id": self.asp_id,
            "address": self.address,
            "public_key": self.public_key.to_dict(),
            "metadata_hash": hex(self.metadata_hash),
            "stake": self.stake,
            "status": self.status.value,
            "approval_votes": self.approval_votes,
            "voters": sorted(self.voters),
            "set_count": self.set_count,
            "registered_at": self.registered_at,
            "activated_at": self.activated_at,
            "suspension_reason": self.suspension_reason,
        }


# =============================================================================
# REGISTRY
# =============================================================================

class ASPRegistry:
    """
    Registry of ASPs and the auditors who approve them.

    ``custody`` is the account that receives stakes; it must be approved by the
    registrant as spender on the stake token.
    """

    def __init__(
        self,
        owner: str,
        stake_token: TokenLedger,
        custody: str,
        clock: Clock,
        min_stake: int = 10000,
        approval_threshold: int = 2,
        require_key_proof: bool = False,
        auditors: Iterable[str] = (),
        audit: Optional[AuditTrail] = None,
    ):
        self.owner = require_address(owner, "owner")
        self.custody = custody
        self.stake_token = stake_token
        self.clock = clock
        self.min_stake = min_stake
        self.approval_threshold = approval_threshold
        self.require_key_proof = require_key_proof
        self._audit = audit
        self._auditors: Set[str] = {require_address(a, "auditor") for a in auditors}
        self._asps: Dict[int, ASPInfo] = {}
        self._by_address: Dict[str, int] = {}
        self._next_id = 1

    # -- auditors -----------------------------------------------------------

    def _require_owner(self, caller: str) -> str:
        caller = require_address(caller, "caller")
        if caller != self.owner:
            raise Unauthorized("caller is not the pool owner", caller=caller)
        return caller

    def add_auditor(self, caller: str, auditor: str) -> None:
        caller = self._require_owner(caller)
        auditor = require_address(auditor, "auditor")
        if auditor in self._auditors:
            raise AlreadyExists(f"{auditor} is already an auditor")
        self._auditors.add(auditor)
        self._record(caller, "add_auditor", "auditor", auditor)

    def remove_auditor(self, caller: str, auditor: str) -> None:
        caller = self._require_owner(caller)
        auditor = require_address(auditor, "auditor")
        if auditor not in self._auditors:
            raise NotFound(f"{auditor} is not an auditor")
        self._auditors.discard(auditor)
        self._record(caller, "remove_auditor", "auditor", auditor)

    def is_auditor(self, address: str) -> bool:
        return address.lower() in self._auditors

    @property
    def auditors(self) -> List[str]:
        return sorted(self._auditors)

    # -- lifecycle ----------------------------------------------------------

    def register(
        self,
        caller: str,
        public_key: Point,
        metadata_hash: int,
        stake: int,
        key_proof: Optional[SchnorrProof] = None,
    ) -> int:
        """Register a new ASP in PENDING state and return its id."""
        caller = require_address(caller, "caller")
        Validators.validate_point(public_key, "public_key").raise_if_invalid()
        require_felt(metadata_hash, "metadata_hash", allow_zero=True)
        Validators.validate_amount(stake, "stake", min_value=0).raise_if_invalid()

        if caller in self._by_address:
            raise AlreadyExists(f"{caller} already registered an ASP", asp_id=self._by_address[caller])
        if stake < self.min_stake:
            raise InsufficientStake(
                f"stake {stake} below minimum {self.min_stake}",
                stake=stake,
                min_stake=self.min_stake,
            )
        if key_proof is None and self.require_key_proof:
            raise InvalidProof("proof of key possession required")
        if key_proof is not None and not key_proof.verify(public_key):
            raise InvalidProof("proof of key possession does not verify")

        if not self.stake_token.transfer_from(self.custody, caller, self.custody, stake):
            raise TransferFailed(f"could not pull stake of {stake} from {caller}")

        asp_id = self._next_id
        self._next_id += 1
        self._asps[asp_id] = ASPInfo(
            asp_id=asp_id,
            address=caller,
            public_key=public_key,
            metadata_hash=metadata_hash,
            stake=stake,
            registered_at=self.clock.now(),
        )
        self._by_address[caller] = asp_id
        logger.info("ASP registered", asp_id=asp_id, address=caller, stake=stake)
        self._record(caller, "register", "asp", asp_id, stake=stake)
        return asp_id

    def approve(self, auditor: str, asp_id: int) -> ASPStatus:
        """Cast an auditor vote. Returns the ASP status after the vote."""
        auditor = require_address(auditor, "auditor")
        if auditor not in self._auditors:
            raise Unauthorized("caller is not an auditor", caller=auditor)
        asp = self.get_asp(asp_id)
        if auditor in asp.voters:
            raise DuplicateVote(f"{auditor} already voted for ASP {asp_id}", asp_id=asp_id)
        if asp.status != ASPStatus.PENDING:
            raise InvalidState(
                f"ASP {asp_id} is {asp.status.value}; only pending ASPs take votes",
                asp_id=asp_id,
            )

        asp.voters.add(auditor)
        if asp.approval_votes >= self.approval_threshold:
            self._transition(asp, ASPStatus.ACTIVE)
            asp.activated_at = self.clock.now()
            logger.info("ASP activated", asp_id=asp_id, votes=asp.approval_votes)
        self._record(auditor, "approve", "asp", asp_id, votes=asp.approval_votes)
        return asp.status

    def suspend(self, caller: str, asp_id: int, reason: int = 0) -> None:
        caller = require_address(caller, "caller")
        if caller != self.owner and caller not in self._auditors:
            raise Unauthorized("only the owner or an auditor may suspend", caller=caller)
        asp = self.get_asp(asp_id)
        self._transition(asp, ASPStatus.SUSPENDED)
        asp.suspension_reason = reason
        logger.warning("ASP suspended", asp_id=asp_id, reason=reason)
        self._record(caller, "suspend", "asp", asp_id, reason=reason)

    def reinstate(self, caller: str, asp_id: int) -> None:
        caller = self._require_owner(caller)
        asp = self.get_asp(asp_id)
        if asp.status != ASPStatus.SUSPENDED:
            raise InvalidState(f"ASP {asp_id} is {asp.status.value}, not suspended")
        self._transition(asp, ASPStatus.ACTIVE)
        asp.suspension_reason = None
        self._record(caller, "reinstate", "asp", asp_id)

    def revoke(self, caller: str, asp_id: int) -> None:
        caller = self._require_owner(caller)
        asp = self.get_asp(asp_id)
        self._transition(asp, ASPStatus.REVOKED)
        logger.warning("ASP revoked", asp_id=asp_id)
        self._record(caller, "revoke", "asp", asp_id)

    def _transition(self, asp: ASPInfo, target: ASPStatus) -> None:
        InvariantChecker.check_state_transition(asp.status, target, ASP_TRANSITIONS)
        asp.status = target

    # -- queries ------------------------------------------------------------

    def get_asp(self, asp_id: int) -> ASPInfo:
        asp = self._asps.get(asp_id)
        if asp is None:
            raise NotFound(f"ASP {asp_id} not found", asp_id=asp_id)
        return asp

    def find_by_address(self, address: str) -> Optional[ASPInfo]:
        asp_id = self._by_address.get(address.lower())
        return self._asps.get(asp_id) if asp_id is not None else None

    def require_active_asp(self, caller: str) -> ASPInfo:
        """The caller's own ASP, which must be active."""
        asp = self.find_by_address(caller)
        if asp is None:
            raise Unauthorized("caller is not a registered ASP", caller=caller)
        if not asp.is_active:
            raise Unauthorized(f"ASP {asp.asp_id} is {asp.status.value}", asp_id=asp.asp_id)
        return asp

    def is_active(self, asp_id: int) -> bool:
        asp = self._asps.get(asp_id)
        return asp is not None and asp.is_active

    def count(self) -> int:
        return len(self._asps)

    def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in ASPStatus}
        for asp in self._asps.values():
            counts[asp.status.value] += 1
        return counts

    def all_asps(self) -> List[ASPInfo]:
        return [self._asps[k] for k in sorted(self._asps)]

    def _record(self, actor: str, action: str, resource_type: str, resource_id: Any, **details: Any) -> None:
        if self._audit is not None:
            self._audit.record(actor, action, resource_type, resource_id, timestamp=self.clock.now(), **details)
