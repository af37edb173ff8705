"""
Solvency and inclusion circuits.

Solvency, for a tree of depth d and A assets:

  * one range check per leaf per asset (leaf_bits),
  * one sum/hash chip per internal node, sums range-checked at leaf_bits + level,
  * a public region binding the root hash and root sums to the public inputs
    and proving assets = liabilities + surplus with the surplus range-checked.

Inclusion, for one leaf of such a tree:

  * the leaf hash and balances exposed and range-checked,
  * per level a swap region ordering (running node, sibling) by the private
    direction bit, the sibling sums range-checked and one sum/hash chip,
  * the same public region as solvency, with the root sums kept private.

Public inputs, in ABI order:
  solvency   root hash, liabilities[0..A), assets[0..A)
  inclusion  leaf hash, balances[0..A), root hash, assets[0..A)
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from . import poseidon
from .chips import NodeCells, PoseidonChip, RangeCheckChip, SumHashChip, SwapChip
from .constraint_system import CircuitAssignment, Layouter, build_gates, find_failures
from .errors import MalformedInput, ShapeMismatch, WitnessInconsistent
from .field import FIELD_BYTES, MODULUS, is_field_element
from .merkle_sum_tree import InclusionPath, Leaf, MerkleSumTree, PathStep, combine_nodes
from .params import MAX_WORKERS, CircuitConfig, CircuitKind, CircuitShape

logger = structlog.get_logger(__name__)


# ============================================================================
# Public inputs
# ============================================================================


class PublicInputVector:
    """Encoding shared by every circuit's public inputs: 32-byte big-endian words."""

    def _check_words(self) -> None:
        for value in self.to_list():
            if not is_field_element(value):
                raise MalformedInput(f"public input {value!r} is not a field element")

    @property
    def n_assets(self) -> int:
        return len(self.assets)

    def to_bytes(self) -> bytes:
        return b"".join(v.to_bytes(FIELD_BYTES, "big") for v in self.to_list())

    @classmethod
    def from_bytes(cls, data: bytes, n_assets: int):
        if len(data) % FIELD_BYTES:
            raise ShapeMismatch("public input encoding has the wrong length")
        words = [int.from_bytes(data[i:i + FIELD_BYTES], "big") for i in range(0, len(data), FIELD_BYTES)]
        return cls.from_list(words, n_assets)

    def to_hex(self) -> List[str]:
        return ["0x" + v.to_bytes(FIELD_BYTES, "big").hex() for v in self.to_list()]


@dataclass(frozen=True)
class PublicInputs(PublicInputVector):
    root_hash: int
    liabilities: Tuple[int, ...]
    assets: Tuple[int, ...]

    def __post_init__(self):
        if len(self.liabilities) != len(self.assets):
            raise MalformedInput("liabilities and assets must cover the same assets")
        self._check_words()

    def to_list(self) -> List[int]:
        return [self.root_hash, *self.liabilities, *self.assets]

    @classmethod
    def from_list(cls, values: Sequence[int], n_assets: int) -> "PublicInputs":
        if len(values) != 1 + 2 * n_assets:
            raise ShapeMismatch(f"expected {1 + 2 * n_assets} public inputs, got {len(values)}")
        values = list(values)
        return cls(
            root_hash=values[0],
            liabilities=tuple(values[1:1 + n_assets]),
            assets=tuple(values[1 + n_assets:]),
        )

    def to_dict(self) -> dict:
        return {
            "root_hash": hex(self.root_hash),
            "liabilities": [str(v) for v in self.liabilities],
            "assets": [str(v) for v in self.assets],
        }


@dataclass(frozen=True)
class InclusionPublicInputs(PublicInputVector):
    leaf_hash: int
    balances: Tuple[int, ...]
    root_hash: int
    assets: Tuple[int, ...]

    def __post_init__(self):
        if len(self.balances) != len(self.assets):
            raise MalformedInput("leaf balances and assets must cover the same assets")
        self._check_words()

    def to_list(self) -> List[int]:
        return [self.leaf_hash, *self.balances, self.root_hash, *self.assets]

    @classmethod
    def from_list(cls, values: Sequence[int], n_assets: int) -> "InclusionPublicInputs":
        if len(values) != 2 + 2 * n_assets:
            raise ShapeMismatch(f"expected {2 + 2 * n_assets} public inputs, got {len(values)}")
        values = list(values)
        return cls(
            leaf_hash=values[0],
            balances=tuple(values[1:1 + n_assets]),
            root_hash=values[1 + n_assets],
            assets=tuple(values[2 + n_assets:]),
        )

    def to_dict(self) -> dict:
        return {
            "leaf_hash": hex(self.leaf_hash),
            "balances": [str(v) for v in self.balances],
            "root_hash": hex(self.root_hash),
            "assets": [str(v) for v in self.assets],
        }


# ============================================================================
# Shared pieces
# ============================================================================


def _fits(value, bits: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < (1 << bits)


def _check_assets(assets: Sequence[int], n_assets: int, config: CircuitConfig) -> Tuple[int, ...]:
    """
    Declared assets must fit the surplus range check, otherwise a solvent
    declaration could not be proven.
    """
    assets = tuple(assets)
    if len(assets) != n_assets:
        raise MalformedInput(f"expected {n_assets} asset declarations, got {len(assets)}")
    for i, value in enumerate(assets):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise MalformedInput(f"asset declaration {i} must be a non-negative integer")
        if not _fits(value, config.surplus_bits):
            raise MalformedInput(f"asset declaration {i} exceeds {config.surplus_bits} bits")
    return assets


def _assign_solvency_check(
    layouter: Layouter,
    range_chip: RangeCheckChip,
    root: NodeCells,
    assets: Sequence[int],
    surplus_bits: int,
    expose_liabilities: bool,
) -> None:
    """Bind the root hash and declared assets, and prove assets >= root sums."""
    n_assets = len(assets)
    region = layouter.region("public", 1 + 2 * n_assets)
    region.copy_advice(root.hash, "a", 0)
    region.expose_public("a", 0)

    surpluses = []
    for asset, (sum_cell, declared) in enumerate(zip(root.sums, assets)):
        row = 1 + 2 * asset
        region.copy_advice(sum_cell, "a", row)
        surplus = region.assign_advice("b", row, declared - sum_cell.value)
        region.enable_selector("q_add", row)
        region.assign_advice("a", row + 1, declared)
        surpluses.append(surplus)

    # ABI order: root hash, every liability (solvency only), then every asset
    if expose_liabilities:
        for asset in range(n_assets):
            region.expose_public("a", 1 + 2 * asset)
    for asset in range(n_assets):
        region.expose_public("a", 2 + 2 * asset)

    for asset, surplus in enumerate(surpluses):
        range_chip.assign(layouter, surplus, surplus_bits, name=f"solvency {asset}", enforce=True)


class CircuitBase:
    shape: CircuitShape

    def synthesize(self, n: int) -> CircuitAssignment:
        raise NotImplementedError

    def check(self, n: Optional[int] = None, public_inputs: Optional[Sequence[int]] = None) -> list:
        """Constraint failures of this witness; empty when satisfied."""
        n = n or (1 << self.shape.min_k)
        assignment = self.synthesize(n)
        if public_inputs is None:
            public_inputs = self.public_inputs.to_list()
        return find_failures(assignment, self.gates, public_inputs, self.shape.config.table_size)


# ============================================================================
# Solvency circuit
# ============================================================================


class SolvencyCircuit(CircuitBase):
    """Witnessed solvency circuit for one tree and one declaration of assets."""

    public_inputs_type = PublicInputs

    def __init__(self, shape: CircuitShape, tree: MerkleSumTree, assets: Sequence[int], max_workers: int = MAX_WORKERS):
        self.shape = shape
        self.tree = tree
        self.assets = tuple(assets)
        self.max_workers = max_workers
        self.gates = build_gates(shape.config)
        self.last_metrics = {}

    @classmethod
    def init_from_tree(
        cls,
        tree: MerkleSumTree,
        assets: Sequence[int],
        config: Optional[CircuitConfig] = None,
        max_workers: int = MAX_WORKERS,
    ) -> "SolvencyCircuit":
        config = config or CircuitConfig(leaf_bits=tree.leaf_bits)
        if config.leaf_bits != tree.leaf_bits:
            raise ShapeMismatch(
                f"tree was built for {tree.leaf_bits}-bit balances, circuit expects {config.leaf_bits}"
            )
        assets = _check_assets(assets, tree.n_assets, config)

        _check_tree(tree)
        shape = CircuitShape(depth=tree.depth, n_assets=tree.n_assets, config=config)
        return cls(shape, tree, assets, max_workers=max_workers)

    @classmethod
    def init_empty(cls, shape: CircuitShape) -> "SolvencyCircuit":
        """Zero witness with the layout of any circuit of this shape, for keygen."""
        leaves = [Leaf.zero(shape.n_assets)] * shape.n_leaves
        tree = MerkleSumTree(leaves, leaf_bits=shape.config.leaf_bits)
        return cls(shape, tree, (0,) * shape.n_assets)

    @property
    def public_inputs(self) -> PublicInputs:
        root = self.tree.root
        return PublicInputs(
            root_hash=root.hash,
            liabilities=tuple(s % MODULUS for s in root.sums),
            assets=self.assets,
        )

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    def _level_traces(self, level: int) -> List[List[List[int]]]:
        """Sponge traces of every node at `level`, computed in parallel batches."""
        children = self.tree.levels[level - 1]
        count = len(children) // 2

        def trace_for(idx: int):
            left, right = children[2 * idx], children[2 * idx + 1]
            return poseidon.sponge_trace(poseidon.node_inputs(left.hash, left.sums, right.hash, right.sums))

        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as executor:
            return list(executor.map(trace_for, range(count)))

    def synthesize(self, n: int) -> CircuitAssignment:
        start = time.perf_counter()
        shape = self.shape
        config = shape.config
        layouter = Layouter(n)

        range_chip = RangeCheckChip(config)
        poseidon_chip = PoseidonChip()
        node_chip = SumHashChip(range_chip, poseidon_chip)
        range_chip.load_table(layouter)

        cells: List[NodeCells] = []
        for i, leaf in enumerate(self.tree.leaves):
            sums = [
                range_chip.assign(layouter, balance, config.leaf_bits, name=f"leaf {i} range {asset}")
                for asset, balance in enumerate(leaf.balances)
            ]
            cells.append(NodeCells(hash=leaf.identity, sums=sums))

        for level in range(1, shape.depth + 1):
            traces = self._level_traces(level)
            bits = shape.level_bits(level)
            cells = [
                node_chip.assign(
                    layouter, cells[2 * i], cells[2 * i + 1], bits, name=f"node {level}/{i}", trace=traces[i]
                )
                for i in range(len(cells) // 2)
            ]

        _assign_solvency_check(layouter, range_chip, cells[0], self.assets, config.surplus_bits, True)

        assignment = layouter.finish()
        self.last_metrics = {"time_synthesize": time.perf_counter() - start, "rows_used": assignment.rows_used}
        logger.debug("circuit_synthesized", rows=assignment.rows_used, n=n, shape=shape.describe())
        return assignment


def _check_tree(tree: MerkleSumTree) -> None:
    """Every stored internal node must be the combination of its children."""
    for level in range(1, tree.depth + 1):
        children = tree.levels[level - 1]
        for i, node in enumerate(tree.levels[level]):
            expected = combine_nodes(children[2 * i], children[2 * i + 1])
            if expected != node:
                logger.error("witness_inconsistent", level=level, index=i)
                raise WitnessInconsistent(f"node {i} at level {level} does not match its children")
    for i, leaf in enumerate(tree.leaves):
        if tree.levels[0][i] != leaf.node():
            logger.error("witness_inconsistent", level=0, index=i)
            raise WitnessInconsistent(f"leaf node {i} does not match its leaf")


# ============================================================================
# Inclusion circuit
# ============================================================================


class InclusionCircuit(CircuitBase):
    """
    One user's leaf proven against the root of the tree.

    The leaf hash and balances, the root hash and the declared assets are
    public. Sibling hashes, sibling sums and direction bits stay private, and
    the root sums are only shown to be covered by the declared assets.
    """

    public_inputs_type = InclusionPublicInputs

    def __init__(self, shape: CircuitShape, path: InclusionPath, root_hash: int, assets: Sequence[int]):
        self.shape = shape
        self.path = path
        self.root_hash = root_hash
        self.assets = tuple(assets)
        self.gates = build_gates(shape.config)
        self.last_metrics = {}

    @classmethod
    def init_from_path(
        cls, path: InclusionPath, assets: Sequence[int], config: Optional[CircuitConfig] = None
    ) -> "InclusionCircuit":
        config = config or CircuitConfig()
        if not path.steps:
            raise MalformedInput("inclusion path has no steps")
        n_assets = len(path.leaf.balances)
        assets = _check_assets(assets, n_assets, config)

        if not is_field_element(path.leaf.identity):
            raise MalformedInput("leaf identity commitment is not a field element")
        for asset, balance in enumerate(path.leaf.balances):
            if not _fits(balance, config.leaf_bits):
                raise MalformedInput(f"leaf balance {asset} must be a non-negative {config.leaf_bits}-bit integer")
        for level, step in enumerate(path.steps, start=1):
            bits = config.leaf_bits + level - 1
            if not is_field_element(step.sibling_hash):
                raise MalformedInput(f"sibling hash at level {level} is not a field element")
            if len(step.sibling_sums) != n_assets:
                raise MalformedInput(f"sibling at level {level} carries {len(step.sibling_sums)} sums")
            if not all(_fits(s, bits) for s in step.sibling_sums):
                raise MalformedInput(f"sibling sum at level {level} must be a non-negative {bits}-bit integer")

        # rejects direction bits other than 0 and 1
        root = path.compute_root()
        try:
            shape = CircuitShape(depth=len(path.steps), n_assets=n_assets, config=config, kind=CircuitKind.INCLUSION)
        except ValueError as e:
            raise MalformedInput(str(e)) from e
        return cls(shape, path, root.hash, assets)

    @classmethod
    def init_from_tree(
        cls,
        tree: MerkleSumTree,
        leaf_index: int,
        assets: Sequence[int],
        config: Optional[CircuitConfig] = None,
    ) -> "InclusionCircuit":
        config = config or CircuitConfig(leaf_bits=tree.leaf_bits)
        if config.leaf_bits != tree.leaf_bits:
            raise ShapeMismatch(
                f"tree was built for {tree.leaf_bits}-bit balances, circuit expects {config.leaf_bits}"
            )
        circuit = cls.init_from_path(tree.inclusion_path(leaf_index), assets, config)
        if circuit.root_hash != tree.root.hash:
            logger.error("witness_inconsistent", leaf_index=leaf_index)
            raise WitnessInconsistent(f"path of leaf {leaf_index} does not lead to the tree root")
        return circuit

    @classmethod
    def init_empty(cls, shape: CircuitShape) -> "InclusionCircuit":
        """Zero witness with the layout of any circuit of this shape, for keygen."""
        zeros = (0,) * shape.n_assets
        steps = tuple(PathStep(sibling_hash=0, sibling_sums=zeros, direction=0) for _ in range(shape.depth))
        path = InclusionPath(leaf_index=0, leaf=Leaf.zero(shape.n_assets), steps=steps)
        return cls(shape, path, 0, zeros)

    @property
    def public_inputs(self) -> InclusionPublicInputs:
        leaf = self.path.leaf
        return InclusionPublicInputs(
            leaf_hash=leaf.identity,
            balances=tuple(leaf.balances),
            root_hash=self.root_hash,
            assets=self.assets,
        )

    def synthesize(self, n: int) -> CircuitAssignment:
        start = time.perf_counter()
        shape = self.shape
        config = shape.config
        if len(self.path.steps) != shape.depth:
            raise ShapeMismatch(f"path has {len(self.path.steps)} steps, shape expects {shape.depth}")
        layouter = Layouter(n)

        range_chip = RangeCheckChip(config)
        node_chip = SumHashChip(range_chip, PoseidonChip())
        swap_chip = SwapChip()
        range_chip.load_table(layouter)

        leaf = self.path.leaf
        region = layouter.region("leaf", 1 + shape.n_assets)
        leaf_hash = region.assign_advice("a", 0, leaf.identity)
        region.expose_public("a", 0)
        balance_cells = []
        for asset, balance in enumerate(leaf.balances):
            balance_cells.append(region.assign_advice("a", 1 + asset, balance))
            region.expose_public("a", 1 + asset)
        sums = [
            range_chip.assign(layouter, cell, config.leaf_bits, name=f"leaf range {asset}")
            for asset, cell in enumerate(balance_cells)
        ]
        current = NodeCells(hash=leaf_hash, sums=sums)

        for level, step in enumerate(self.path.steps, start=1):
            sibling_sums = [
                range_chip.assign(layouter, s, shape.level_bits(level - 1), name=f"level {level} sibling range {asset}")
                for asset, s in enumerate(step.sibling_sums)
            ]
            sibling = NodeCells(hash=step.sibling_hash, sums=sibling_sums)
            left, right = swap_chip.assign(layouter, current, sibling, step.direction, name=f"level {level} swap")
            current = node_chip.assign(layouter, left, right, shape.level_bits(level), name=f"level {level}")

        _assign_solvency_check(layouter, range_chip, current, self.assets, config.surplus_bits, False)

        assignment = layouter.finish()
        self.last_metrics = {"time_synthesize": time.perf_counter() - start, "rows_used": assignment.rows_used}
        logger.debug("circuit_synthesized", rows=assignment.rows_used, n=n, shape=shape.describe())
        return assignment


CIRCUIT_TYPES = {
    CircuitKind.SOLVENCY: SolvencyCircuit,
    CircuitKind.INCLUSION: InclusionCircuit,
}


def circuit_type(shape: CircuitShape):
    return CIRCUIT_TYPES[shape.kind]
