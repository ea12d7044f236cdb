"""
AEGIS Privacy Pool Engine

Deposit, withdrawal and ragequit lifecycle for the shielded pool.

Flow:

    deposit     Depositor publishes a note commitment and pays ``amount`` into
                pool custody. The commitment is appended to the global LeanIMT.

    withdraw    Anyone holding a note proves (a) its commitment is in the
                global tree under a recent root, (b) the commitment is in an
                active ASP's inclusion set, (c) optionally it is absent from an
                exclusion set, and (d) the opaque verifier accepts the spend.
                The nullifier is burned and the note amount paid out.

    ragequit    The original depositor exits without any ASP certification
                after a fixed delay. The exit is public: the nullifier is
                linked to the depositor and marked spent.

Ordering:

    Inbound funds: validate -> pull tokens -> record.
    Outbound funds: validate -> mark spent -> transfer -> restore marks if the
    transfer fails.

Every mutation is guarded against reentrancy and produces an audit event.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from shieldpool.aegis.asp import ASPInfo, ASPRegistry, ASPStatus
from shieldpool.aegis.association import AssociationSetInfo, AssociationSetManager, SetType
from shieldpool.aegis.collaborators import Clock, ProofVerifier, SystemClock, TokenLedger
from shieldpool.aegis.config import AegisConfig, get_config
from shieldpool.aegis.curve import Point
from shieldpool.aegis.hardening import (
    AlreadyExists,
    AlreadyInitialized,
    AlreadySpent,
    CapacityExceeded,
    ExcludedDeposit,
    Expired,
    InvalidInput,
    InvalidProof,
    InvalidState,
    InvariantChecker,
    NotFound,
    NotInitialized,
    NotYetExecutable,
    TransferFailed,
    Unauthorized,
    Validators,
    non_reentrant,
    require_address,
    require_amount,
    require_felt,
)
from shieldpool.aegis.observability import AegisLayer, AuditTrail, get_logger, timed_operation
from shieldpool.aegis.zkp import SchnorrProof
from shieldpool.leanimt import (
    BatchInsertResult,
    LeanIMT,
    MerkleProof,
    MerkleState,
    RootHistory,
    verify_proof,
)

logger = get_logger("privacy_pool", AegisLayer.POOL)

DEFAULT_POOL_ADDRESS = "0xae9150000000000000000000000000000000000000000000000000000000001"


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class Deposit:
    """Immutable record of a deposited note."""
    commitment: int
    amount_commitment: Point
    asset_id: int
    depositor: str
    amount: int
    timestamp: int
    leaf_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment": hex(self.commitment),
            "amount_commitment": self.amount_commitment.to_dict(),
            "asset_id": hex(self.asset_id),
            "depositor": self.depositor,
            "amount": self.amount,
            "timestamp": self.timestamp,
            "leaf_index": self.leaf_index,
        }


@dataclass(frozen=True)
class DepositEntry:
    """One element of a batch deposit."""
    commitment: int
    amount_commitment: Point
    asset_id: int
    amount: int
    range_proof: bytes = b""


@dataclass(frozen=True)
class DepositReceipt:
    commitment: int
    leaf_index: int
    root: int
    size: int
    depth: int


@dataclass
class WithdrawalParams:
    nullifier: int
    recipient: str
    deposit_proof: MerkleProof
    inclusion_set_id: int
    inclusion_proof: MerkleProof
    proof: bytes
    exclusion_set_id: Optional[int] = None


@dataclass(frozen=True)
class WithdrawalReceipt:
    nullifier: int
    recipient: str
    asset_id: int
    amount: int
    deposit_root: int
    inclusion_root: int
    timestamp: int


class RagequitStatus(Enum):
    """Status of a ragequit request."""
    PENDING = "pending"  # Waiting out the delay
    EXECUTABLE = "executable"  # Delay elapsed, inside the execution window
    COMPLETED = "completed"  # Paid out
    CANCELLED = "cancelled"  # Withdrawn by the depositor
    EXPIRED = "expired"  # Execution window passed


# Stored transitions. EXECUTABLE and EXPIRED are derived from the clock.
RAGEQUIT_TRANSITIONS: Dict[RagequitStatus, Set[RagequitStatus]] = {
    RagequitStatus.PENDING: {RagequitStatus.COMPLETED, RagequitStatus.CANCELLED},
    RagequitStatus.COMPLETED: set(),
    RagequitStatus.CANCELLED: set(),
}


@dataclass
class RagequitRequest:
    request_id: int
    commitment: int
    nullifier: int
    depositor: str
    amount: int
    asset_id: int
    recipient: str
    initiated_at: int
    executable_at: int
    expires_at: int
    status: RagequitStatus = RagequitStatus.PENDING
    completed_at: Optional[int] = None

    def effective_status(self, now: int) -> RagequitStatus:
        if self.status != RagequitStatus.PENDING:
            return self.status
        if now < self.executable_at:
            return RagequitStatus.PENDING
        if now <= self.expires_at:
            return RagequitStatus.EXECUTABLE
        return RagequitStatus.EXPIRED

    def to_dict(self, now: Optional[int] = None) -> Dict[str, Any]:
        status = self.effective_status(now) if now is not None else self.status
        return {
            "request_id": self.request_id,
            "commitment": hex(self.commitment),
            "nullifier": hex(self.nullifier),
            "depositor": self.depositor,
            "amount": self.amount,
            "asset_id": hex(self.asset_id),
            "recipient": self.recipient,
            "initiated_at": self.initiated_at,
            "executable_at": self.executable_at,
            "expires_at": self.expires_at,
            "status": status.value,
            "completed_at": self.completed_at,
        }


def withdrawal_public_inputs(
    nullifier: int,
    commitment: int,
    deposit_root: int,
    inclusion_root: int,
    recipient: str,
    amount: int,
    asset_id: int,
) -> List[int]:
    """Public inputs the withdrawal proof is checked against, in order."""
    return [nullifier, commitment, deposit_root, inclusion_root, int(recipient, 16), amount, asset_id]


def ragequit_public_inputs(
    nullifier: int,
    commitment: int,
    amount: int,
    asset_id: int,
    recipient: str,
) -> List[int]:
    return [nullifier, commitment, amount, asset_id, int(recipient, 16)]


def deposit_public_inputs(commitment: int, amount_commitment: Point, asset_id: int, amount: int) -> List[int]:
    return [commitment, amount_commitment.x, amount_commitment.y, asset_id, amount]


# =============================================================================
# POOL
# =============================================================================

@dataclass
class _PoolSettings:
    max_batch_deposit: int
    ragequit_delay: int
    ragequit_window: int
    max_depth: int
    root_history_size: int


class PrivacyPool:
    """
    The shielded pool. Owns the ASP registry, association sets, global deposit
    tree, deposit table, nullifier set and ragequit table.

    ``address`` is the custody account that holds deposited funds and ASP
    stakes; depositors approve it as spender.
    """

    def __init__(self, address: str = DEFAULT_POOL_ADDRESS):
        self.address = require_address(address, "pool_address")
        self._initialized = False
        self._entered = False
        self.owner: Optional[str] = None
        self.verifier: Optional[ProofVerifier] = None
        self.clock: Clock = SystemClock()
        self.registry: Optional[ASPRegistry] = None
        self.sets: Optional[AssociationSetManager] = None
        self.audit = AuditTrail(logger)
        self._settings: Optional[_PoolSettings] = None
        self._tree = LeanIMT()
        self._root_history = RootHistory()
        self._assets: Dict[int, TokenLedger] = {}
        self._deposits: Dict[int, Deposit] = {}
        self._spent: Dict[int, int] = {}  # nullifier -> timestamp
        self._paid_out: Set[int] = set()  # commitments already paid
        self._ragequits: Dict[int, RagequitRequest] = {}
        self._open_ragequit: Dict[int, int] = {}  # commitment -> request_id
        self._next_ragequit_id = 1

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitialized("pool is not initialized")

    def _require_owner(self, caller: str) -> str:
        caller = require_address(caller, "caller")
        if caller != self.owner:
            raise Unauthorized("caller is not the pool owner", caller=caller)
        return caller

    @timed_operation(logger, "initialize")
    @non_reentrant
    def initialize(
        self,
        caller: str,
        owner: str,
        stake_token: TokenLedger,
        verifier: ProofVerifier,
        clock: Optional[Clock] = None,
        auditors: Iterable[str] = (),
        config: Optional[AegisConfig] = None,
    ) -> None:
        """One-time setup. Configuration values are captured here."""
        if self._initialized:
            raise AlreadyInitialized("pool is already initialized")
        caller = require_address(caller, "caller")
        owner = require_address(owner, "owner")
        cfg = config or get_config()

        self.clock = clock or SystemClock()
        self.owner = owner
        self.verifier = verifier
        self.audit.enabled = cfg.observability.audit_enabled.get()
        self._settings = _PoolSettings(
            max_batch_deposit=cfg.pool.max_batch_deposit.get(),
            ragequit_delay=cfg.pool.ragequit_delay_seconds.get(),
            ragequit_window=cfg.pool.ragequit_window_seconds.get(),
            max_depth=cfg.accumulator.max_depth.get(),
            root_history_size=cfg.accumulator.root_history_size.get(),
        )
        self._tree = LeanIMT(max_depth=self._settings.max_depth)
        self._root_history = RootHistory(capacity=self._settings.root_history_size)

        self.registry = ASPRegistry(
            owner=owner,
            stake_token=stake_token,
            custody=self.address,
            clock=self.clock,
            min_stake=cfg.governance.min_stake.get(),
            approval_threshold=cfg.governance.approval_threshold.get(),
            require_key_proof=cfg.governance.require_key_proof.get(),
            auditors=auditors,
            audit=self.audit,
        )
        self.sets = AssociationSetManager(
            registry=self.registry,
            clock=self.clock,
            max_batch_size=cfg.association.max_batch_size.get(),
            max_depth=cfg.association.max_depth.get(),
            root_history_size=cfg.association.root_history_size.get(),
            audit=self.audit,
        )
        self._initialized = True
        logger.info("Pool initialized", owner=owner, auditors=len(self.registry.auditors))
        self.audit.record(caller, "initialize", "pool", self.address, timestamp=self.clock.now(), owner=owner)

    @timed_operation(logger, "register_asset")
    @non_reentrant
    def register_asset(self, caller: str, asset_id: int, token: TokenLedger) -> None:
        self._require_initialized()
        caller = self._require_owner(caller)
        require_felt(asset_id, "asset_id")
        if asset_id in self._assets:
            raise AlreadyExists(f"asset {hex(asset_id)} already registered")
        self._assets[asset_id] = token
        self.audit.record(caller, "register_asset", "asset", hex(asset_id), timestamp=self.clock.now())

    def _token(self, asset_id: int) -> TokenLedger:
        token = self._assets.get(asset_id)
        if token is None:
            raise NotFound(f"asset {hex(asset_id)} is not registered", asset_id=asset_id)
        return token

    # -------------------------------------------------------------------------
    # ASP governance
    # -------------------------------------------------------------------------

    @timed_operation(logger, "register_asp")
    @non_reentrant
    def register_asp(
        self,
        caller: str,
        public_key: Point,
        metadata_hash: int,
        stake: int,
        key_proof: Optional[SchnorrProof] = None,
    ) -> int:
        self._require_initialized()
        return self.registry.register(caller, public_key, metadata_hash, stake, key_proof)

    @timed_operation(logger, "approve_asp")
    @non_reentrant
    def approve_asp(self, caller: str, asp_id: int) -> ASPStatus:
        self._require_initialized()
        return self.registry.approve(caller, asp_id)

    @timed_operation(logger, "suspend_asp")
    @non_reentrant
    def suspend_asp(self, caller: str, asp_id: int, reason: int = 0) -> None:
        self._require_initialized()
        self.registry.suspend(caller, asp_id, reason)

    @timed_operation(logger, "reinstate_asp")
    @non_reentrant
    def reinstate_asp(self, caller: str, asp_id: int) -> None:
        self._require_initialized()
        self.registry.reinstate(caller, asp_id)

    @timed_operation(logger, "revoke_asp")
    @non_reentrant
    def revoke_asp(self, caller: str, asp_id: int) -> None:
        self._require_initialized()
        self.registry.revoke(caller, asp_id)

    @non_reentrant
    def add_auditor(self, caller: str, auditor: str) -> None:
        self._require_initialized()
        self.registry.add_auditor(caller, auditor)

    @non_reentrant
    def remove_auditor(self, caller: str, auditor: str) -> None:
        self._require_initialized()
        self.registry.remove_auditor(caller, auditor)

    # -------------------------------------------------------------------------
    # Association sets
    # -------------------------------------------------------------------------

    @timed_operation(logger, "create_association_set")
    @non_reentrant
    def create_association_set(
        self,
        caller: str,
        set_type: SetType,
        initial_members: Sequence[int] = (),
    ) -> int:
        self._require_initialized()
        return self.sets.create_set(caller, set_type, initial_members)

    @timed_operation(logger, "add_to_association_set")
    @non_reentrant
    def add_to_association_set(self, caller: str, set_id: int, members: Sequence[int]) -> BatchInsertResult:
        self._require_initialized()
        return self.sets.add_members(caller, set_id, members)

    @non_reentrant
    def deactivate_association_set(self, caller: str, set_id: int) -> None:
        self._require_initialized()
        self.sets.deactivate_set(caller, set_id)

    # -------------------------------------------------------------------------
    # Deposits
    # -------------------------------------------------------------------------

    def _validate_entry(self, entry: DepositEntry) -> TokenLedger:
        require_felt(entry.commitment, "commitment")
        Validators.validate_point(entry.amount_commitment, "amount_commitment").raise_if_invalid()
        require_felt(entry.asset_id, "asset_id")
        require_amount(entry.amount)
        Validators.validate_bytes(entry.range_proof, "range_proof").raise_if_invalid()
        token = self._token(entry.asset_id)

        if entry.commitment in self._deposits:
            raise AlreadyExists(f"commitment {hex(entry.commitment)} already deposited")
        if entry.range_proof and not self.verifier.verify(
            entry.range_proof,
            deposit_public_inputs(entry.commitment, entry.amount_commitment, entry.asset_id, entry.amount),
        ):
            raise InvalidProof("range proof rejected", commitment=hex(entry.commitment))
        return token

    def _record_deposit(self, caller: str, entry: DepositEntry, leaf_index: int, now: int) -> Deposit:
        deposit = Deposit(
            commitment=entry.commitment,
            amount_commitment=entry.amount_commitment,
            asset_id=entry.asset_id,
            depositor=caller,
            amount=entry.amount,
            timestamp=now,
            leaf_index=leaf_index,
        )
        self._deposits[entry.commitment] = deposit
        return deposit

    @timed_operation(logger, "deposit")
    @non_reentrant
    def deposit(
        self,
        caller: str,
        commitment: int,
        amount_commitment: Point,
        asset_id: int,
        amount: int,
        range_proof: bytes = b"",
    ) -> DepositReceipt:
        """Pay ``amount`` into the pool under a note commitment."""
        self._require_initialized()
        caller = require_address(caller, "caller")
        entry = DepositEntry(commitment, amount_commitment, asset_id, amount, range_proof)
        token = self._validate_entry(entry)
        if self._tree.remaining_capacity() < 1:
            raise CapacityExceeded("deposit tree is full")

        if not token.transfer_from(self.address, caller, self.address, amount):
            raise TransferFailed(f"could not pull {amount} from {caller}")

        now = self.clock.now()
        leaf_index = self._tree.size
        root = self._tree.insert(commitment)
        self._root_history.push(root)
        self._record_deposit(caller, entry, leaf_index, now)

        logger.info(
            "Deposit recorded",
            commitment=hex(commitment),
            leaf_index=leaf_index,
            root=hex(root),
        )
        self.audit.record(
            caller, "deposit", "commitment", hex(commitment),
            timestamp=now, amount=amount, asset_id=hex(asset_id), leaf_index=leaf_index,
        )
        return DepositReceipt(
            commitment=commitment,
            leaf_index=leaf_index,
            root=root,
            size=self._tree.size,
            depth=self._tree.depth,
        )

    @timed_operation(logger, "batch_deposit")
    @non_reentrant
    def batch_deposit(self, caller: str, entries: Sequence[DepositEntry]) -> BatchInsertResult:
        """Deposit several notes atomically; one root is published for the batch."""
        self._require_initialized()
        caller = require_address(caller, "caller")
        entries = list(entries)
        if not entries:
            raise InvalidInput("entries", "Must not be empty")
        if len(entries) > self._settings.max_batch_deposit:
            raise CapacityExceeded(
                f"batch of {len(entries)} exceeds limit {self._settings.max_batch_deposit}",
                limit=self._settings.max_batch_deposit,
            )
        if len(entries) > self._tree.remaining_capacity():
            raise CapacityExceeded("deposit tree cannot hold the batch")

        tokens: List[TokenLedger] = []
        seen: Set[int] = set()
        for entry in entries:
            tokens.append(self._validate_entry(entry))
            if entry.commitment in seen:
                raise AlreadyExists(f"commitment {hex(entry.commitment)} repeated in batch")
            seen.add(entry.commitment)

        pulled: List[int] = []
        for i, (entry, token) in enumerate(zip(entries, tokens)):
            if not token.transfer_from(self.address, caller, self.address, entry.amount):
                self._refund(caller, entries, tokens, pulled)
                raise TransferFailed(f"could not pull {entry.amount} for batch entry {i}", index=i)
            pulled.append(i)

        now = self.clock.now()
        result = self._tree.insert_many([e.commitment for e in entries])
        self._root_history.push(result.root)
        for offset, entry in enumerate(entries):
            self._record_deposit(caller, entry, result.start_index + offset, now)

        logger.info(
            "Batch deposit recorded",
            count=result.inserted_count,
            start_index=result.start_index,
            root=hex(result.root),
        )
        self.audit.record(
            caller, "batch_deposit", "deposit_tree", result.start_index,
            timestamp=now, count=result.inserted_count, root=hex(result.root),
        )
        return result

    def _refund(
        self,
        caller: str,
        entries: List[DepositEntry],
        tokens: List[TokenLedger],
        pulled: List[int],
    ) -> None:
        for i in reversed(pulled):
            if not tokens[i].transfer(self.address, caller, entries[i].amount):
                logger.error(
                    "Refund failed during batch rollback",
                    error_code=TransferFailed.code,
                    index=i,
                    depositor=caller,
                )

    # -------------------------------------------------------------------------
    # Withdrawals
    # -------------------------------------------------------------------------

    def _check_inclusion(self, set_id: int, proof: MerkleProof, commitment: int) -> AssociationSetInfo:
        info = self.sets.get_set(set_id)
        if info.set_type != SetType.INCLUSION:
            raise InvalidProof(f"set {set_id} is not an inclusion set", set_id=set_id)
        if not info.active:
            raise InvalidProof(f"inclusion set {set_id} is deactivated", set_id=set_id)
        if not self.registry.is_active(info.asp_id):
            raise InvalidProof(f"ASP {info.asp_id} behind set {set_id} is not active", set_id=set_id)
        if proof.leaf != commitment:
            raise InvalidProof("inclusion proof is for a different commitment", set_id=set_id)
        if not self.sets.verify_membership(set_id, proof):
            raise InvalidProof(f"inclusion proof for set {set_id} does not verify", set_id=set_id)
        return info

    def _check_exclusion(self, set_id: int, commitment: int) -> None:
        info = self.sets.get_set(set_id)
        if info.set_type != SetType.EXCLUSION:
            raise InvalidInput("exclusion_set_id", "Must reference an exclusion set", set_id)
        if info.active and info.tree.has(commitment):
            raise ExcludedDeposit(
                f"commitment {hex(commitment)} is in exclusion set {set_id}",
                set_id=set_id,
            )

    @timed_operation(logger, "withdraw")
    @non_reentrant
    def withdraw(self, caller: str, params: WithdrawalParams) -> WithdrawalReceipt:
        """Spend a note with an ASP-certified proof and pay out its amount."""
        self._require_initialized()
        require_address(caller, "caller")
        nullifier = require_felt(params.nullifier, "nullifier")
        recipient = require_address(params.recipient, "recipient")
        proof = Validators.validate_bytes(params.proof, "proof", allow_empty=False).raise_if_invalid()

        if nullifier in self._spent:
            raise AlreadySpent(f"nullifier {hex(nullifier)} already spent")

        deposit_proof = params.deposit_proof
        if not self.is_known_root(deposit_proof.root) or not verify_proof(deposit_proof):
            raise InvalidProof("deposit proof does not verify against a known root")
        commitment = deposit_proof.leaf
        deposit = self.get_deposit(commitment)
        if commitment in self._paid_out:
            raise AlreadySpent(f"note {hex(commitment)} already paid out")

        inclusion = self._check_inclusion(params.inclusion_set_id, params.inclusion_proof, commitment)
        if params.exclusion_set_id is not None:
            self._check_exclusion(params.exclusion_set_id, commitment)

        public_inputs = withdrawal_public_inputs(
            nullifier,
            commitment,
            deposit_proof.root,
            params.inclusion_proof.root,
            recipient,
            deposit.amount,
            deposit.asset_id,
        )
        if not self.verifier.verify(proof, public_inputs):
            raise InvalidProof("withdrawal proof rejected")

        now = self.clock.now()
        self._spent[nullifier] = now
        self._paid_out.add(commitment)
        if not self._token(deposit.asset_id).transfer(self.address, recipient, deposit.amount):
            del self._spent[nullifier]
            self._paid_out.discard(commitment)
            raise TransferFailed(f"could not pay {deposit.amount} to {recipient}")

        logger.info(
            "Withdrawal completed",
            nullifier=hex(nullifier),
            inclusion_set=inclusion.set_id,
            amount=deposit.amount,
        )
        self.audit.record(
            caller, "withdraw", "nullifier", hex(nullifier),
            timestamp=now, recipient=recipient, inclusion_set=inclusion.set_id,
        )
        return WithdrawalReceipt(
            nullifier=nullifier,
            recipient=recipient,
            asset_id=deposit.asset_id,
            amount=deposit.amount,
            deposit_root=deposit_proof.root,
            inclusion_root=params.inclusion_proof.root,
            timestamp=now,
        )

    # -------------------------------------------------------------------------
    # Ragequit
    # -------------------------------------------------------------------------

    def _get_ragequit(self, request_id: int) -> RagequitRequest:
        request = self._ragequits.get(request_id)
        if request is None:
            raise NotFound(f"ragequit request {request_id} not found", request_id=request_id)
        return request

    def _has_open_ragequit(self, commitment: int, now: int) -> bool:
        request_id = self._open_ragequit.get(commitment)
        if request_id is None:
            return False
        status = self._ragequits[request_id].effective_status(now)
        return status in (RagequitStatus.PENDING, RagequitStatus.EXECUTABLE)

    def _nullifier_reserved(self, nullifier: int, now: int) -> bool:
        for request_id in self._open_ragequit.values():
            request = self._ragequits[request_id]
            if request.nullifier == nullifier and request.effective_status(now) in (
                RagequitStatus.PENDING, RagequitStatus.EXECUTABLE,
            ):
                return True
        return False

    @timed_operation(logger, "request_ragequit")
    @non_reentrant
    def request_ragequit(
        self,
        caller: str,
        commitment: int,
        nullifier: int,
        amount: int,
        recipient: str,
        proof: bytes = b"",
    ) -> int:
        """Start a time-locked exit that needs no ASP certification."""
        self._require_initialized()
        caller = require_address(caller, "caller")
        require_felt(commitment, "commitment")
        require_felt(nullifier, "nullifier")
        require_amount(amount)
        recipient = require_address(recipient, "recipient")
        proof = Validators.validate_bytes(proof, "proof").raise_if_invalid()

        deposit = self.get_deposit(commitment)
        if caller != deposit.depositor:
            raise Unauthorized("only the original depositor may ragequit", caller=caller)
        if amount != deposit.amount:
            raise InvalidInput("amount", f"Must equal the deposited amount {deposit.amount}", amount)
        if nullifier in self._spent or commitment in self._paid_out:
            raise AlreadySpent("note already spent")

        now = self.clock.now()
        if self._has_open_ragequit(commitment, now):
            raise AlreadyExists(f"an open ragequit already exists for {hex(commitment)}")
        if self._nullifier_reserved(nullifier, now):
            raise AlreadyExists(f"nullifier {hex(nullifier)} is reserved by another ragequit")
        if not self.verifier.verify(
            proof,
            ragequit_public_inputs(nullifier, commitment, amount, deposit.asset_id, recipient),
        ):
            raise InvalidProof("ragequit proof rejected")

        request_id = self._next_ragequit_id
        self._next_ragequit_id += 1
        executable_at = now + self._settings.ragequit_delay
        request = RagequitRequest(
            request_id=request_id,
            commitment=commitment,
            nullifier=nullifier,
            depositor=caller,
            amount=amount,
            asset_id=deposit.asset_id,
            recipient=recipient,
            initiated_at=now,
            executable_at=executable_at,
            expires_at=executable_at + self._settings.ragequit_window,
        )
        self._ragequits[request_id] = request
        self._open_ragequit[commitment] = request_id

        logger.info("Ragequit requested", request_id=request_id, executable_at=executable_at)
        self.audit.record(
            caller, "request_ragequit", "ragequit", request_id,
            timestamp=now, commitment=hex(commitment), executable_at=executable_at,
        )
        return request_id

    def _transition_ragequit(self, request: RagequitRequest, target: RagequitStatus) -> None:
        InvariantChecker.check_state_transition(request.status, target, RAGEQUIT_TRANSITIONS)
        request.status = target

    @timed_operation(logger, "execute_ragequit")
    @non_reentrant
    def execute_ragequit(self, caller: str, request_id: int) -> RagequitRequest:
        self._require_initialized()
        caller = require_address(caller, "caller")
        request = self._get_ragequit(request_id)
        if caller != request.depositor:
            raise Unauthorized("only the original depositor may execute", caller=caller)

        now = self.clock.now()
        status = request.effective_status(now)
        if status == RagequitStatus.PENDING:
            raise NotYetExecutable(
                f"ragequit {request_id} executable at {request.executable_at}",
                executable_at=request.executable_at,
                now=now,
            )
        if status == RagequitStatus.EXPIRED:
            raise Expired(f"ragequit {request_id} expired at {request.expires_at}")
        if status != RagequitStatus.EXECUTABLE:
            raise InvalidState(f"ragequit {request_id} is {status.value}")
        if request.nullifier in self._spent or request.commitment in self._paid_out:
            raise AlreadySpent("note already spent")

        self._spent[request.nullifier] = now
        self._paid_out.add(request.commitment)
        self._transition_ragequit(request, RagequitStatus.COMPLETED)
        request.completed_at = now
        if not self._token(request.asset_id).transfer(self.address, request.recipient, request.amount):
            del self._spent[request.nullifier]
            self._paid_out.discard(request.commitment)
            request.status = RagequitStatus.PENDING
            request.completed_at = None
            raise TransferFailed(f"could not pay {request.amount} to {request.recipient}")
        self._open_ragequit.pop(request.commitment, None)

        logger.warning(
            "Ragequit executed",
            request_id=request_id,
            nullifier=hex(request.nullifier),
            amount=request.amount,
        )
        self.audit.record(caller, "execute_ragequit", "ragequit", request_id, timestamp=now)
        return request

    @timed_operation(logger, "cancel_ragequit")
    @non_reentrant
    def cancel_ragequit(self, caller: str, request_id: int) -> None:
        self._require_initialized()
        caller = require_address(caller, "caller")
        request = self._get_ragequit(request_id)
        if caller != request.depositor:
            raise Unauthorized("only the original depositor may cancel", caller=caller)

        now = self.clock.now()
        if request.effective_status(now) == RagequitStatus.EXPIRED:
            raise Expired(f"ragequit {request_id} expired at {request.expires_at}")
        self._transition_ragequit(request, RagequitStatus.CANCELLED)
        self._open_ragequit.pop(request.commitment, None)
        self.audit.record(caller, "cancel_ragequit", "ragequit", request_id, timestamp=now)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_global_state(self) -> MerkleState:
        return self._tree.state()

    def is_known_root(self, root: int) -> bool:
        return root != 0 and (root == self._tree.root or root in self._root_history)

    def root_history(self) -> List[int]:
        return self._root_history.roots()

    def get_deposit(self, commitment: int) -> Deposit:
        deposit = self._deposits.get(commitment)
        if deposit is None:
            raise NotFound(f"no deposit for commitment {hex(commitment)}")
        return deposit

    def has_deposit(self, commitment: int) -> bool:
        return commitment in self._deposits

    def is_nullifier_spent(self, nullifier: int) -> bool:
        return nullifier in self._spent

    def generate_deposit_proof(self, commitment: int) -> MerkleProof:
        return self._tree.generate_proof(self.get_deposit(commitment).leaf_index)

    def get_ragequit(self, request_id: int) -> RagequitRequest:
        return self._get_ragequit(request_id)

    def ragequit_status(self, request_id: int) -> RagequitStatus:
        return self._get_ragequit(request_id).effective_status(self.clock.now())

    def get_asp(self, asp_id: int) -> ASPInfo:
        self._require_initialized()
        return self.registry.get_asp(asp_id)

    def get_association_set(self, set_id: int) -> AssociationSetInfo:
        self._require_initialized()
        return self.sets.get_set(set_id)

    def generate_membership_proof(self, set_id: int, member: int) -> MerkleProof:
        self._require_initialized()
        return self.sets.generate_membership_proof(set_id, member)

    def get_pool_stats(self) -> Dict[str, Any]:
        self._require_initialized()
        now = self.clock.now()
        locked: Dict[str, int] = {}
        for deposit in self._deposits.values():
            if deposit.commitment not in self._paid_out:
                key = hex(deposit.asset_id)
                locked[key] = locked.get(key, 0) + deposit.amount
        ragequits = {s.value: 0 for s in RagequitStatus}
        for request in self._ragequits.values():
            ragequits[request.effective_status(now).value] += 1

        state = self._tree.state()
        return {
            "deposits": len(self._deposits),
            "tree": state.to_dict(),
            "nullifiers_spent": len(self._spent),
            "value_locked": locked,
            "asps": self.registry.count_by_status(),
            "association_sets": self.sets.count(),
            "ragequits": ragequits,
            "audit_events": len(self.audit),
        }

    def export_state(self) -> Dict[str, Any]:
        """Snapshot of every table the pool owns."""
        self._require_initialized()
        now = self.clock.now()
        return {
            "address": self.address,
            "owner": self.owner,
            "auditors": self.registry.auditors,
            "assets": sorted(hex(a) for a in self._assets),
            "global_tree": self._tree.state().to_dict(),
            "root_history": [hex(r) for r in self._root_history.roots()],
            "asps": [asp.to_dict() for asp in self.registry.all_asps()],
            "association_sets": [s.to_dict(include_members=True) for s in self.sets.all_sets()],
            "deposits": [d.to_dict() for d in sorted(self._deposits.values(), key=lambda d: d.leaf_index)],
            "nullifiers": sorted(hex(n) for n in self._spent),
            "ragequits": [r.to_dict(now) for r in self._ragequits.values()],
            "audit_head": self.audit.head,
        }
