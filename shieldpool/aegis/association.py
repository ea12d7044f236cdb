"""
AEGIS Association Sets

An association set is a LeanIMT of deposit commitments published by an ASP.

    INCLUSION   Deposits the ASP certifies as compliant. A withdrawal must
                prove its commitment is a member of one.

    EXCLUSION   Deposits the ASP flags. A withdrawal naming an exclusion set
                fails if its commitment is a member.

Sets are append-only: membership is never removed from an existing set. To
withdraw certification an ASP publishes a new set, or deactivates the old one.
Each set keeps a bounded history of recent roots so that proofs generated just
before an append remain acceptable.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from shieldpool.aegis.asp import ASPRegistry
from shieldpool.aegis.collaborators import Clock
from shieldpool.aegis.hardening import (
    AlreadyExists,
    CapacityExceeded,
    InvalidInput,
    InvalidState,
    NotFound,
    Unauthorized,
    Validators,
    require_address,
)
from shieldpool.aegis.observability import AegisLayer, AuditTrail, get_logger
from shieldpool.leanimt import BatchInsertResult, LeanIMT, MerkleProof, RootHistory, verify_proof

logger = get_logger("association_sets", AegisLayer.ASSOCIATION)


class SetType(Enum):
    INCLUSION = "inclusion"
    EXCLUSION = "exclusion"


@dataclass
class AssociationSetInfo:
    set_id: int
    asp_id: int
    set_type: SetType
    tree: LeanIMT
    history: RootHistory
    active: bool = True
    created_at: int = 0
    updated_at: int = 0

    @property
    def root(self) -> int:
        return self.tree.root

    @property
    def member_count(self) -> int:
        return self.tree.size

    @property
    def depth(self) -> int:
        return self.tree.depth

    def is_known_root(self, root: int) -> bool:
        return root != 0 and (root == self.root or root in self.history)

    def to_dict(self, include_members: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "set_id": self.set_id,
            "asp_id": self.asp_id,
            "set_type": self.set_type.value,
            "root": hex(self.root),
            "member_count": self.member_count,
            "depth": self.depth,
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "root_history": [hex(r) for r in self.history.roots()],
        }
        if include_members:
            out["members"] = [hex(m) for m in self.tree.leaves()]
        return out


class AssociationSetManager:
    """Creates, grows and verifies association sets on behalf of active ASPs."""

    def __init__(
        self,
        registry: ASPRegistry,
        clock: Clock,
        max_batch_size: int = 1024,
        max_depth: int = 32,
        root_history_size: int = 30,
        audit: Optional[AuditTrail] = None,
    ):
        self.registry = registry
        self.clock = clock
        self.max_batch_size = max_batch_size
        self.max_depth = max_depth
        self.root_history_size = root_history_size
        self._audit = audit
        self._sets: Dict[int, AssociationSetInfo] = {}
        self._next_id = 1

    # -- validation ---------------------------------------------------------

    def _check_members(self, members: Sequence[int], tree: LeanIMT) -> List[int]:
        batch = Validators.validate_felt_batch(
            members, "members", self.max_batch_size
        ).raise_if_invalid()
        if len(batch) > self.max_batch_size:
            raise CapacityExceeded(
                f"batch of {len(batch)} exceeds limit {self.max_batch_size}",
                limit=self.max_batch_size,
            )
        if len(batch) > tree.remaining_capacity():
            raise CapacityExceeded(f"set tree cannot hold {len(batch)} more members")

        seen = set()
        for member in batch:
            if member in seen or tree.has(member):
                raise AlreadyExists(f"member {hex(member)} already in set")
            seen.add(member)
        return batch

    @staticmethod
    def _coerce_type(set_type: Union[SetType, str]) -> SetType:
        if isinstance(set_type, SetType):
            return set_type
        try:
            return SetType(set_type)
        except ValueError:
            raise InvalidInput("set_type", "Must be 'inclusion' or 'exclusion'", set_type) from None

    # -- mutation -----------------------------------------------------------

    def create_set(
        self,
        caller: str,
        set_type: Union[SetType, str],
        initial_members: Sequence[int] = (),
    ) -> int:
        """Publish a new set owned by the caller's active ASP."""
        caller = require_address(caller, "caller")
        asp = self.registry.require_active_asp(caller)
        kind = self._coerce_type(set_type)

        tree = LeanIMT(max_depth=self.max_depth)
        members = self._check_members(list(initial_members), tree)
        history = RootHistory(capacity=self.root_history_size)
        if members:
            tree.insert_many(members)
            history.push(tree.root)

        now = self.clock.now()
        set_id = self._next_id
        self._next_id += 1
        self._sets[set_id] = AssociationSetInfo(
            set_id=set_id,
            asp_id=asp.asp_id,
            set_type=kind,
            tree=tree,
            history=history,
            created_at=now,
            updated_at=now,
        )
        asp.set_count += 1

        logger.info(
            "Association set created",
            set_id=set_id,
            asp_id=asp.asp_id,
            set_type=kind.value,
            members=len(members),
        )
        self._record(caller, "create_set", set_id, set_type=kind.value, members=len(members))
        return set_id

    def add_members(self, caller: str, set_id: int, new_members: Sequence[int]) -> BatchInsertResult:
        """Append members to a set. All or nothing."""
        caller = require_address(caller, "caller")
        info = self.get_set(set_id)
        asp = self.registry.require_active_asp(caller)
        if info.asp_id != asp.asp_id:
            raise Unauthorized(f"set {set_id} belongs to ASP {info.asp_id}", set_id=set_id)
        if not info.active:
            raise InvalidState(f"set {set_id} is deactivated", set_id=set_id)
        if not new_members:
            raise InvalidInput("members", "Must not be empty")

        members = self._check_members(list(new_members), info.tree)
        result = info.tree.insert_many(members)
        info.history.push(result.root)
        info.updated_at = self.clock.now()

        logger.info("Association set extended", set_id=set_id, added=len(members), size=result.size)
        self._record(caller, "add_members", set_id, added=len(members), root=hex(result.root))
        return result

    def deactivate_set(self, caller: str, set_id: int) -> None:
        """Stop honoring a set. Only its ASP or the pool owner may do this."""
        caller = require_address(caller, "caller")
        info = self.get_set(set_id)
        asp = self.registry.get_asp(info.asp_id)
        if caller != asp.address and caller != self.registry.owner:
            raise Unauthorized(f"caller may not deactivate set {set_id}", set_id=set_id)
        if not info.active:
            raise InvalidState(f"set {set_id} is already deactivated", set_id=set_id)
        info.active = False
        info.updated_at = self.clock.now()
        self._record(caller, "deactivate_set", set_id)

    # -- queries ------------------------------------------------------------

    def get_set(self, set_id: int) -> AssociationSetInfo:
        info = self._sets.get(set_id)
        if info is None:
            raise NotFound(f"association set {set_id} not found", set_id=set_id)
        return info

    def verify_membership(self, set_id: int, proof: MerkleProof) -> bool:
        """Proof must verify against the current root or a recent one."""
        info = self.get_set(set_id)
        if not info.is_known_root(proof.root):
            return False
        return verify_proof(proof)

    def contains(self, set_id: int, member: int) -> bool:
        return self.get_set(set_id).tree.has(member)

    def generate_membership_proof(self, set_id: int, member: int) -> MerkleProof:
        info = self.get_set(set_id)
        index = info.tree.index_of(member)
        if index is None:
            raise NotFound(f"{hex(member)} is not a member of set {set_id}", set_id=set_id)
        return info.tree.generate_proof(index)

    def sets_for_asp(self, asp_id: int) -> List[AssociationSetInfo]:
        return [s for s in self._sets.values() if s.asp_id == asp_id]

    def all_sets(self) -> List[AssociationSetInfo]:
        return [self._sets[k] for k in sorted(self._sets)]

    def count(self) -> int:
        return len(self._sets)

    def _record(self, actor: str, action: str, set_id: int, **details: Any) -> None:
        if self._audit is not None:
            self._audit.record(actor, action, "association_set", set_id, timestamp=self.clock.now(), **details)
