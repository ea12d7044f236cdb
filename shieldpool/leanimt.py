"""Lean incremental Merkle tree (LeanIMT) for shielded-pool accumulators.

This module implements an **append-only, dynamic-depth** binary Merkle tree. Unlike a
fixed-depth tree it does not pad with zero hashes: a node without a right sibling is
carried up to its parent unchanged, so a tree holding one leaf has that leaf as its root.

Design goals:
- Deterministic across implementations
- Cheap appends (one root-ward path per leaf)
- Compact inclusion proofs whose length equals the current depth

Depth:
- depth(0) = 0, depth(1) = 1, otherwise ceil(log2(size))
- depth never decreases because the tree never shrinks

Proof encoding:
- ``siblings[i]`` is the sibling at level i, or 0 where the node had none
- ``path_indices[i]`` is 1 when the node at level i is a right child
- a missing sibling is only legal where the tree has no node at that position,
  which ``tree_size`` determines; the path bits must spell an index below it

Leaves are non-zero Stark field elements. Parent hashing uses
``shieldpool.hashing.hash_pair``.

"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional

from shieldpool.hashing import FIELD_PRIME, hash_pair, is_felt


DEFAULT_MAX_DEPTH = 32


class LeanIMTError(ValueError):
    """Base error for accumulator misuse."""


class InvalidLeafError(LeanIMTError):
    pass


class TreeFullError(LeanIMTError):
    pass


# ---------------------------------------------------------------------------
# Index arithmetic
# ---------------------------------------------------------------------------

def calculate_depth(size: int) -> int:
    """Depth of a tree holding ``size`` leaves."""
    if size < 0:
        raise ValueError("size must be non-negative")
    if size == 0:
        return 0
    if size == 1:
        return 1
    return (size - 1).bit_length()


def needs_depth_increase(size: int) -> bool:
    """True when appending one more leaf to a tree of ``size`` grows its depth."""
    return calculate_depth(size + 1) > calculate_depth(size)


def sibling_index(index: int) -> int:
    return index ^ 1


def parent_index(index: int) -> int:
    return index // 2


def is_left_child(index: int) -> bool:
    return index % 2 == 0


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MerkleState:
    root: int
    size: int
    depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {"root": hex(self.root), "size": self.size, "depth": self.depth}


@dataclass(frozen=True)
class BatchInsertResult:
    root: int
    size: int
    depth: int
    start_index: int
    inserted_count: int


@dataclass
class MerkleProof:
    """Inclusion proof for a single leaf."""
    siblings: List[int]
    path_indices: List[int]
    leaf: int
    root: int
    tree_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf": hex(self.leaf),
            "root": hex(self.root),
            "tree_size": self.tree_size,
            "siblings": [hex(s) for s in self.siblings],
            "path_indices": list(self.path_indices),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleProof":
        def as_int(v: Any) -> int:
            return int(v, 16) if isinstance(v, str) else int(v)

        return cls(
            siblings=[as_int(s) for s in data["siblings"]],
            path_indices=[int(b) for b in data["path_indices"]],
            leaf=as_int(data["leaf"]),
            root=as_int(data["root"]),
            tree_size=int(data["tree_size"]),
        )


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

class LeanIMT:
    """Append-only Merkle accumulator storing every level."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.max_depth = max_depth
        self._levels: List[List[int]] = [[]]
        self._positions: Dict[int, int] = {}

    # -- state --------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._levels[0])

    @property
    def depth(self) -> int:
        return calculate_depth(self.size)

    @property
    def root(self) -> int:
        if self.size == 0:
            return 0
        return self._levels[self.depth][0]

    @property
    def capacity(self) -> int:
        return 1 << self.max_depth

    def remaining_capacity(self) -> int:
        return self.capacity - self.size

    def state(self) -> MerkleState:
        return MerkleState(root=self.root, size=self.size, depth=self.depth)

    def leaves(self) -> List[int]:
        return list(self._levels[0])

    def leaf_at(self, index: int) -> int:
        if index < 0 or index >= self.size:
            raise IndexError(f"leaf index {index} out of range for size {self.size}")
        return self._levels[0][index]

    def index_of(self, leaf: int) -> Optional[int]:
        return self._positions.get(leaf)

    def has(self, leaf: int) -> bool:
        return leaf in self._positions

    # -- mutation -----------------------------------------------------------

    @staticmethod
    def _check_leaf(leaf: Any) -> None:
        if not is_felt(leaf):
            raise InvalidLeafError(f"leaf must be a field element below {hex(FIELD_PRIME)}")
        if leaf == 0:
            raise InvalidLeafError("leaf must be non-zero")

    def _check_room(self, count: int) -> None:
        if count > self.remaining_capacity():
            raise TreeFullError(
                f"cannot insert {count} leaves: tree of max depth {self.max_depth} "
                f"holds {self.size} of {self.capacity}"
            )

    def _set_node(self, level: int, index: int, value: int) -> None:
        while len(self._levels) <= level:
            self._levels.append([])
        row = self._levels[level]
        if index == len(row):
            row.append(value)
        else:
            row[index] = value

    def _append(self, leaf: int) -> int:
        index = self.size
        self._levels[0].append(leaf)
        self._positions.setdefault(leaf, index)
        depth = calculate_depth(index + 1)

        node = leaf
        for level in range(depth):
            if index & 1:
                node = hash_pair(self._levels[level][index - 1], node)
            index >>= 1
            self._set_node(level + 1, index, node)
        return node

    def insert(self, leaf: int) -> int:
        """Append a leaf and return the new root."""
        self._check_leaf(leaf)
        self._check_room(1)
        return self._append(leaf)

    def insert_many(self, leaves: Iterable[int]) -> BatchInsertResult:
        """Append leaves in order. Nothing is inserted unless every leaf is valid."""
        batch = list(leaves)
        for leaf in batch:
            self._check_leaf(leaf)
        self._check_room(len(batch))

        start = self.size
        for leaf in batch:
            self._append(leaf)
        return BatchInsertResult(
            root=self.root,
            size=self.size,
            depth=self.depth,
            start_index=start,
            inserted_count=len(batch),
        )

    # -- proofs -------------------------------------------------------------

    def generate_proof(self, index: int) -> MerkleProof:
        leaf = self.leaf_at(index)
        siblings: List[int] = []
        path: List[int] = []

        for level in range(self.depth):
            row = self._levels[level]
            sib = sibling_index(index)
            if sib < len(row):
                siblings.append(row[sib])
                path.append(index & 1)
            else:
                siblings.append(0)
                path.append(0)
            index = parent_index(index)

        return MerkleProof(
            siblings=siblings,
            path_indices=path,
            leaf=leaf,
            root=self.root,
            tree_size=self.size,
        )

    def proof_for(self, leaf: int) -> MerkleProof:
        index = self.index_of(leaf)
        if index is None:
            raise KeyError(f"leaf {hex(leaf)} not in tree")
        return self.generate_proof(index)


def path_to_index(path_indices: List[int]) -> int:
    """Leaf index encoded by a proof's path bits, least significant first."""
    index = 0
    for level, bit in enumerate(path_indices):
        index |= bit << level
    return index


def compute_root_from_proof(proof: MerkleProof) -> Optional[int]:
    """Fold a proof up to its implied root. None if the proof is malformed.

    The path is replayed against the tree shape implied by ``tree_size``: at
    each level a sibling must be present exactly where the tree has one, so an
    internal node cannot be passed off as a leaf.
    """
    if len(proof.siblings) != len(proof.path_indices):
        return None
    if any(bit not in (0, 1) for bit in proof.path_indices):
        return None
    if isinstance(proof.tree_size, bool) or not isinstance(proof.tree_size, int):
        return None

    index = path_to_index(proof.path_indices)
    width = proof.tree_size
    if index >= width:
        return None

    node = proof.leaf
    for sibling in proof.siblings:
        if not is_felt(sibling):
            return None
        if sibling_index(index) < width:
            if sibling == 0:
                return None
            node = hash_pair(sibling, node) if index & 1 else hash_pair(node, sibling)
        elif sibling != 0:
            return None
        index = parent_index(index)
        width = (width + 1) // 2
    return node


def verify_proof(proof: MerkleProof) -> bool:
    if not is_felt(proof.leaf) or proof.leaf == 0:
        return False
    if not is_felt(proof.root):
        return False
    if len(proof.siblings) != len(proof.path_indices):
        return False
    if isinstance(proof.tree_size, bool) or not isinstance(proof.tree_size, int):
        return False
    if proof.tree_size < 1 or len(proof.siblings) != calculate_depth(proof.tree_size):
        return False
    return compute_root_from_proof(proof) == proof.root


def verify_proof_dict(data: Dict[str, Any]) -> bool:
    """Verify a proof in its ``to_dict`` form. Malformed input is simply invalid."""
    try:
        proof = MerkleProof.from_dict(data)
    except (KeyError, TypeError, ValueError):
        return False
    return verify_proof(proof)


def root_of(leaves: Iterable[int]) -> int:
    """Root of a fresh tree built from ``leaves``."""
    tree = LeanIMT()
    tree.insert_many(leaves)
    return tree.root


# ---------------------------------------------------------------------------
# Root history
# ---------------------------------------------------------------------------

@dataclass
class RootHistory:
    """Bounded ring of recent roots, newest last."""
    capacity: int = 30
    _roots: Deque[int] = field(default_factory=deque, repr=False)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("root history capacity must be >= 1")
        self._roots = deque(self._roots, maxlen=self.capacity)

    def push(self, root: int) -> None:
        self._roots.append(root)

    def __contains__(self, root: object) -> bool:
        return root in self._roots

    def __len__(self) -> int:
        return len(self._roots)

    @property
    def latest(self) -> Optional[int]:
        return self._roots[-1] if self._roots else None

    def roots(self) -> List[int]:
        return list(self._roots)
