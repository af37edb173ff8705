"""
Merkle sum tree over (identity commitment, per-asset balances) leaves.

Every internal node carries the Poseidon hash of its children and the
componentwise sum of their balances. Levels are built bottom-up; nodes of one
level are hashed in parallel batches with a barrier between levels.
"""

import hashlib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from . import poseidon
from .errors import IndexOutOfRange, MalformedInput
from .field import MODULUS, is_field_element
from .params import MAX_VALUE_BITS, MAX_WORKERS

logger = structlog.get_logger(__name__)


# ============================================================================
# Leaves, nodes and paths
# ============================================================================


def identity_commitment(username: str, salt: bytes = b"") -> int:
    """sha256(salt || username) reduced into the scalar field."""
    digest = hashlib.sha256(salt + username.encode("utf-8")).digest()
    return int.from_bytes(digest, "big") % MODULUS


@dataclass(frozen=True)
class Leaf:
    identity: int
    balances: Tuple[int, ...]

    @classmethod
    def from_record(cls, username: str, balances: Sequence[int], salt: bytes = b"") -> "Leaf":
        return cls(identity=identity_commitment(username, salt), balances=tuple(balances))

    @classmethod
    def zero(cls, n_assets: int) -> "Leaf":
        return cls(identity=0, balances=(0,) * n_assets)

    def node(self) -> "Node":
        return Node(hash=self.identity, sums=self.balances)


@dataclass(frozen=True)
class Node:
    hash: int
    sums: Tuple[int, ...]


def combine_nodes(left: Node, right: Node) -> Node:
    sums = tuple(l + r for l, r in zip(left.sums, right.sums))
    return Node(hash=poseidon.hash_node(left.hash, left.sums, right.hash, right.sums), sums=sums)


@dataclass(frozen=True)
class PathStep:
    sibling_hash: int
    sibling_sums: Tuple[int, ...]
    # 0: the running node is the left child, 1: it is the right child
    direction: int


@dataclass(frozen=True)
class InclusionPath:
    leaf_index: int
    leaf: Leaf
    steps: Tuple[PathStep, ...]

    def compute_root(self) -> Node:
        current = self.leaf.node()
        for step in self.steps:
            sibling = Node(hash=step.sibling_hash, sums=step.sibling_sums)
            if step.direction == 0:
                current = combine_nodes(current, sibling)
            elif step.direction == 1:
                current = combine_nodes(sibling, current)
            else:
                raise MalformedInput(f"direction bit must be 0 or 1, got {step.direction}")
        return current


def verify_path(path: InclusionPath, root: Node) -> bool:
    """Recompute the root from an inclusion path using only the hash function."""
    if any(len(step.sibling_sums) != len(path.leaf.balances) for step in path.steps):
        return False
    try:
        return path.compute_root() == root
    except MalformedInput:
        return False


# ============================================================================
# Tree construction
# ============================================================================


class MerkleSumTree:
    """Complete binary Merkle sum tree, padded with zero leaves to a power of two."""

    def __init__(self, leaves: Sequence[Leaf], leaf_bits: int = 64, max_workers: int = MAX_WORKERS):
        self.leaf_bits = leaf_bits
        self.max_workers = max_workers
        self._validate(leaves)

        self.leaf_count = len(leaves)
        self.n_assets = len(leaves[0].balances)
        self.depth = max(1, (self.leaf_count - 1).bit_length())
        self.padded_count = 1 << self.depth

        start_time = time.perf_counter()
        padded = list(leaves) + [Leaf.zero(self.n_assets)] * (self.padded_count - self.leaf_count)
        self.leaves: Tuple[Leaf, ...] = tuple(padded)

        level_nodes = [leaf.node() for leaf in padded]
        levels = [tuple(level_nodes)]
        sums = np.empty((self.padded_count, self.n_assets), dtype=object)
        for i, leaf in enumerate(padded):
            for asset, balance in enumerate(leaf.balances):
                sums[i, asset] = balance
        total_hashes = 0

        while len(level_nodes) > 1:
            level_nodes, sums = self._build_level(level_nodes, sums)
            total_hashes += len(level_nodes)
            levels.append(tuple(level_nodes))

        self._levels: Tuple[Tuple[Node, ...], ...] = tuple(levels)
        total_time = time.perf_counter() - start_time

        self.last_metrics = {
            "total_hashes": total_hashes,
            "total_time": total_time,
            "hashes_per_sec": total_hashes / total_time if total_time > 0 else 0.0,
        }
        logger.info(
            "tree_built",
            leaves=self.leaf_count,
            padded=self.padded_count,
            depth=self.depth,
            assets=self.n_assets,
            time_sec=total_time,
        )

    @classmethod
    def build(cls, leaves: Sequence[Leaf], leaf_bits: int = 64, max_workers: int = MAX_WORKERS) -> "MerkleSumTree":
        return cls(leaves, leaf_bits=leaf_bits, max_workers=max_workers)

    def _validate(self, leaves: Sequence[Leaf]) -> None:
        if not 1 <= self.leaf_bits <= MAX_VALUE_BITS:
            raise MalformedInput(f"leaf_bits must be in [1, {MAX_VALUE_BITS}], got {self.leaf_bits}")
        if not leaves:
            raise MalformedInput("cannot build a tree from an empty leaf sequence")

        n_assets = len(leaves[0].balances)
        if n_assets == 0:
            raise MalformedInput("leaves must carry at least one balance")
        bound = 1 << self.leaf_bits

        for i, leaf in enumerate(leaves):
            if not is_field_element(leaf.identity):
                raise MalformedInput(f"leaf {i}: identity commitment is not a field element")
            if len(leaf.balances) != n_assets:
                raise MalformedInput(f"leaf {i}: expected {n_assets} balances, got {len(leaf.balances)}")
            for asset, balance in enumerate(leaf.balances):
                if not isinstance(balance, int) or isinstance(balance, bool):
                    raise MalformedInput(f"leaf {i}: balance {asset} is not an integer")
                if balance < 0:
                    raise MalformedInput(f"leaf {i}: balance {asset} is negative")
                if balance >= bound:
                    raise MalformedInput(f"leaf {i}: balance {asset} exceeds {self.leaf_bits} bits")

        if self.leaf_bits + max(1, (len(leaves) - 1).bit_length()) > MAX_VALUE_BITS:
            raise MalformedInput("tree too deep for the configured leaf bit-width")

    def _build_level(self, current_level: List[Node], sums: np.ndarray):
        next_sums = sums[0::2] + sums[1::2]
        next_size = len(current_level) // 2
        next_level: List[Optional[Node]] = [None] * next_size
        batch_size = max(64, next_size // (self.max_workers * 2) if self.max_workers > 0 else next_size)

        def process_batch(batch_range):
            batch_start, batch_end = batch_range
            results = []
            for idx in range(batch_start, batch_end):
                left = current_level[2 * idx]
                right = current_level[2 * idx + 1]
                node_hash = poseidon.hash_node(left.hash, left.sums, right.hash, right.sums)
                results.append((idx, node_hash))
            return results

        ranges = [(i, min(i + batch_size, next_size)) for i in range(0, next_size, batch_size)]
        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as executor:
            futures = [executor.submit(process_batch, r) for r in ranges]
            for f in futures:
                for idx, node_hash in f.result():
                    next_level[idx] = Node(hash=node_hash, sums=tuple(int(s) for s in next_sums[idx]))

        return next_level, next_sums

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def root(self) -> Node:
        return self._levels[-1][0]

    @property
    def levels(self) -> Tuple[Tuple[Node, ...], ...]:
        return self._levels

    def node(self, level: int, index: int) -> Node:
        if not 0 <= level <= self.depth:
            raise IndexOutOfRange(f"level {level} outside [0, {self.depth}]")
        nodes = self._levels[level]
        if not 0 <= index < len(nodes):
            raise IndexOutOfRange(f"node {index} outside level {level} of width {len(nodes)}")
        return nodes[index]

    @property
    def total_sums(self) -> Tuple[int, ...]:
        return tuple(sum(leaf.balances[a] for leaf in self.leaves[:self.leaf_count]) for a in range(self.n_assets))

    def inclusion_path(self, leaf_index: int) -> InclusionPath:
        if not isinstance(leaf_index, int) or not 0 <= leaf_index < self.padded_count:
            raise IndexOutOfRange(f"leaf index {leaf_index} outside [0, {self.padded_count})")

        steps = []
        index = leaf_index
        for level in range(self.depth):
            sibling = self._levels[level][index ^ 1]
            steps.append(PathStep(sibling_hash=sibling.hash, sibling_sums=sibling.sums, direction=index & 1))
            index >>= 1
        return InclusionPath(leaf_index=leaf_index, leaf=self.leaves[leaf_index], steps=tuple(steps))

    def __len__(self) -> int:
        return self.leaf_count
