"""
PLONKish constraint system: columns, regions, gates and the witness checker.

Gates are written once against a ColumnView and evaluated three ways: on ints
for a single row (witness checking), on numpy object arrays over the extended
coset (quotient construction) and on ints at the challenge point
(verification). The same ordering of constraints is used everywhere.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from . import poseidon
from .errors import CircuitUnsatisfied, ConstraintFailure, ShapeMismatch
from .field import GENERATOR, MODULUS, powers, root_of_unity
from .params import CircuitConfig

logger = structlog.get_logger(__name__)


# ============================================================================
# Columns
# ============================================================================

STATE_COLUMNS = ("s0", "s1", "s2")
ADVICE_COLUMNS = STATE_COLUMNS + ("a", "b")

# Advice committed by the prover in the first round (multiplicities included)
WITNESS_COLUMNS = ADVICE_COLUMNS + ("m",)

ROUND_CONSTANT_COLUMNS = ("rc0", "rc1", "rc2")
SELECTOR_COLUMNS = (
    "q_full",
    "q_partial",
    "q_init",
    "q_absorb",
    "q_add",
    "q_range",
    "q_top",
    "q_lookup",
    "q_const",
    "q_pub",
    "q_swap",
)
FIXED_COLUMNS = ROUND_CONSTANT_COLUMNS + SELECTOR_COLUMNS + ("const", "table")

# Columns participating in copy constraints
EQUALITY_COLUMNS = ("s1", "a", "b")
SIGMA_COLUMNS = tuple(f"sigma_{c}" for c in EQUALITY_COLUMNS)

# Columns also queried at the next row
ROTATED_COLUMNS = ADVICE_COLUMNS + ("z", "phi")

# Multiplicative shifts separating the equality columns in the permutation
PERMUTATION_SHIFTS = tuple(powers(GENERATOR, len(EQUALITY_COLUMNS)))


@dataclass(frozen=True)
class Cell:
    column: str
    row: int


@dataclass(frozen=True)
class AssignedCell:
    cell: Cell
    value: int

    @property
    def column(self) -> str:
        return self.cell.column

    @property
    def row(self) -> int:
        return self.cell.row


@dataclass(frozen=True)
class RegionInfo:
    name: str
    start: int
    end: int


# ============================================================================
# Assignment and layouter
# ============================================================================


@dataclass
class CircuitAssignment:
    n: int
    advice: Dict[str, List[int]]
    fixed: Dict[str, List[int]]
    copies: List[Tuple[Cell, Cell]]
    public_rows: List[int]
    regions: List[RegionInfo]
    rows_used: int

    def region_at(self, row: int) -> str:
        for region in self.regions:
            if region.start <= row < region.end:
                return region.name
        return "unassigned"


class Region:
    """A contiguous block of rows; offsets are relative to its first row."""

    def __init__(self, layouter: "Layouter", name: str, start: int, height: int):
        self.layouter = layouter
        self.name = name
        self.start = start
        self.height = height

    def _row(self, offset: int) -> int:
        if not 0 <= offset < self.height:
            raise IndexError(f"offset {offset} outside region '{self.name}' of height {self.height}")
        return self.start + offset

    def assign_advice(self, column: str, offset: int, value: int) -> AssignedCell:
        if column not in ADVICE_COLUMNS:
            raise ValueError(f"{column} is not an advice column")
        row = self._row(offset)
        value %= MODULUS
        self.layouter.advice[column][row] = value
        return AssignedCell(Cell(column, row), value)

    def assign_fixed(self, column: str, offset: int, value: int) -> None:
        if column not in FIXED_COLUMNS:
            raise ValueError(f"{column} is not a fixed column")
        self.layouter.fixed[column][self._row(offset)] = value % MODULUS

    def enable_selector(self, selector: str, offset: int) -> None:
        if selector not in SELECTOR_COLUMNS:
            raise ValueError(f"{selector} is not a selector")
        self.assign_fixed(selector, offset, 1)

    def copy_advice(self, source: AssignedCell, column: str, offset: int) -> AssignedCell:
        """Assign source's value here and constrain both cells to be equal."""
        target = self.assign_advice(column, offset, source.value)
        self.layouter.constrain_equal(source, target)
        return target

    def assign_or_copy(self, value, column: str, offset: int) -> AssignedCell:
        if isinstance(value, AssignedCell):
            return self.copy_advice(value, column, offset)
        return self.assign_advice(column, offset, value)

    def expose_public(self, column: str, offset: int) -> None:
        if column != "a":
            raise ValueError("public inputs are bound through column a")
        self.enable_selector("q_pub", offset)
        self.layouter.public_rows.append(self._row(offset))


class Layouter:
    """Sequential region allocator over a domain of n rows."""

    def __init__(self, n: int):
        self.n = n
        self.advice: Dict[str, List[int]] = {c: [0] * n for c in ADVICE_COLUMNS}
        self.fixed: Dict[str, List[int]] = {c: [0] * n for c in FIXED_COLUMNS}
        self.copies: List[Tuple[Cell, Cell]] = []
        self.public_rows: List[int] = []
        self.regions: List[RegionInfo] = []
        self.offset = 0

    def region(self, name: str, height: int) -> Region:
        if self.offset + height > self.n:
            raise ShapeMismatch(
                f"region '{name}' needs rows {self.offset}..{self.offset + height} but the domain has {self.n}"
            )
        region = Region(self, name, self.offset, height)
        self.regions.append(RegionInfo(name, self.offset, self.offset + height))
        self.offset += height
        return region

    def constrain_equal(self, a: AssignedCell, b: AssignedCell) -> None:
        for cell in (a.cell, b.cell):
            if cell.column not in EQUALITY_COLUMNS:
                raise ValueError(f"column {cell.column} does not support equality constraints")
        self.copies.append((a.cell, b.cell))

    def assign_table(self, column: str, values: Sequence[int]) -> None:
        if len(values) > self.n:
            raise ShapeMismatch(f"lookup table of {len(values)} rows exceeds the domain of {self.n}")
        for row, v in enumerate(values):
            self.fixed[column][row] = v % MODULUS

    def finish(self) -> CircuitAssignment:
        return CircuitAssignment(
            n=self.n,
            advice=self.advice,
            fixed=self.fixed,
            copies=self.copies,
            public_rows=list(self.public_rows),
            regions=list(self.regions),
            rows_used=self.offset,
        )


# ============================================================================
# Gates
# ============================================================================


@dataclass
class ColumnView:
    """Column values at the current and next row, as ints or object arrays."""
    cur: Dict[str, object]
    nxt: Dict[str, object] = field(default_factory=dict)
    x: object = None
    l0: object = None
    pi: object = None


def sbox(x):
    x2 = x * x % MODULUS
    return x2 * x2 % MODULUS * x % MODULUS


def _mds_row(j: int, s):
    m = poseidon.MDS[j]
    return (m[0] * s[0] + m[1] * s[1] + m[2] * s[2]) % MODULUS


@dataclass(frozen=True)
class Gate:
    name: str
    selector: str
    polys: Callable[[ColumnView], list]

    def evaluate(self, view: ColumnView) -> list:
        q = view.cur[self.selector]
        return [q * p % MODULUS for p in self.polys(view)]


def _full_round(v: ColumnView) -> list:
    s = [sbox(v.cur[f"s{i}"] + v.cur[f"rc{i}"]) for i in range(3)]
    return [v.nxt[f"s{j}"] - _mds_row(j, s) for j in range(3)]


def _partial_round(v: ColumnView) -> list:
    s = [sbox(v.cur["s0"] + v.cur["rc0"]), v.cur["s1"] + v.cur["rc1"], v.cur["s2"] + v.cur["rc2"]]
    return [v.nxt[f"s{j}"] - _mds_row(j, s) for j in range(3)]


def _sponge_init(v: ColumnView) -> list:
    return [v.cur["s0"] - v.cur["const"], v.cur["s1"], v.cur["s2"]]


def _sponge_absorb(v: ColumnView) -> list:
    return [
        v.nxt["s0"] - v.cur["s0"],
        v.nxt["s1"] - v.cur["s1"] - v.cur["a"],
        v.nxt["s2"] - v.cur["s2"] - v.cur["b"],
    ]


def _sum(v: ColumnView) -> list:
    return [v.nxt["a"] - v.cur["a"] - v.cur["b"]]


def _range_top(v: ColumnView) -> list:
    return [v.nxt["b"] - v.cur["b"] * v.cur["const"]]


def _constant(v: ColumnView) -> list:
    return [v.cur["a"] - v.cur["const"]]


def _public_input(v: ColumnView) -> list:
    return [v.cur["a"] - v.pi]


def _path_bit(v: ColumnView) -> list:
    c = v.cur["s1"]
    return [c * (1 - c)]


def _path_swap(v: ColumnView) -> list:
    # (left, right) = (a, b) when the bit is 0, (b, a) when it is 1
    c = v.cur["s1"]
    return [
        v.nxt["a"] - v.cur["a"] - c * (v.cur["b"] - v.cur["a"]),
        v.nxt["b"] - v.cur["b"] - c * (v.cur["a"] - v.cur["b"]),
    ]


def build_gates(config: CircuitConfig) -> Tuple[Gate, ...]:
    radix = 1 << config.chunk_bits

    def _range_decompose(v: ColumnView) -> list:
        # z_i = chunk_i + 2^c * z_{i+1}
        return [v.cur["a"] - radix * v.nxt["a"] - v.cur["b"]]

    return (
        Gate("poseidon_full_round", "q_full", _full_round),
        Gate("poseidon_partial_round", "q_partial", _partial_round),
        Gate("sponge_init", "q_init", _sponge_init),
        Gate("sponge_absorb", "q_absorb", _sponge_absorb),
        Gate("sum", "q_add", _sum),
        Gate("range_decompose", "q_range", _range_decompose),
        Gate("range_top_chunk", "q_top", _range_top),
        Gate("constant", "q_const", _constant),
        Gate("public_input", "q_pub", _public_input),
        Gate("path_bit_bool", "q_swap", _path_bit),
        Gate("path_swap", "q_swap", _path_swap),
    )


# ============================================================================
# Copy constraints
# ============================================================================


def build_sigma(copies: Sequence[Tuple[Cell, Cell]], n: int) -> Dict[str, List[int]]:
    """
    Permutation polynomial values. Cells joined by copy constraints form
    cycles; each cell maps to the identity value of the next cell in its
    cycle, every other cell maps to itself.
    """
    omega_powers = powers(root_of_unity(n), n)
    index = {c: j for j, c in enumerate(EQUALITY_COLUMNS)}

    parent: Dict[Tuple[int, int], Tuple[int, int]] = {}

    def find(x):
        root = x
        while parent.get(root, root) != root:
            root = parent[root]
        while parent.get(x, x) != root:
            parent[x], x = root, parent[x]
        return root

    for a, b in copies:
        ka = (index[a.column], a.row)
        kb = (index[b.column], b.row)
        parent.setdefault(ka, ka)
        parent.setdefault(kb, kb)
        ra, rb = find(ka), find(kb)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    cycles: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
    for cell in parent:
        cycles.setdefault(find(cell), []).append(cell)

    sigma = [
        [PERMUTATION_SHIFTS[j] * w % MODULUS for w in omega_powers]
        for j in range(len(EQUALITY_COLUMNS))
    ]
    for members in cycles.values():
        members.sort()
        for t, (j, row) in enumerate(members):
            nj, nrow = members[(t + 1) % len(members)]
            sigma[j][row] = PERMUTATION_SHIFTS[nj] * omega_powers[nrow] % MODULUS

    return {name: sigma[j] for j, name in enumerate(SIGMA_COLUMNS)}


# ============================================================================
# Full constraint list (gates, permutation, lookup)
# ============================================================================


@dataclass(frozen=True)
class Challenges:
    beta: int
    gamma: int
    lookup: int


def permutation_constraints(view: ColumnView, ch: Challenges) -> list:
    """
    z(1) = 1 and z(wX) * prod(w_j + beta*sigma_j + gamma) = z(X) * prod(w_j + beta*k_j*X + gamma).

    The grand product wraps around the whole domain.
    """
    lhs = view.nxt["z"]
    rhs = view.cur["z"]
    for j, column in enumerate(EQUALITY_COLUMNS):
        w = view.cur[column]
        lhs = lhs * ((w + ch.beta * view.cur[SIGMA_COLUMNS[j]] + ch.gamma) % MODULUS) % MODULUS
        rhs = rhs * ((w + ch.beta * PERMUTATION_SHIFTS[j] * view.x + ch.gamma) % MODULUS) % MODULUS
    return [view.l0 * (view.cur["z"] - 1) % MODULUS, (lhs - rhs) % MODULUS]


def lookup_constraints(view: ColumnView, ch: Challenges) -> list:
    """
    logUp: phi(wX) - phi(X) = m / (lambda + t) - q_lookup / (lambda + b),
    cleared of denominators. The running sum wraps around the domain, so it
    closes only if every looked-up value is in the table.
    """
    fb = (ch.lookup + view.cur["b"]) % MODULUS
    ft = (ch.lookup + view.cur["table"]) % MODULUS
    step = (view.nxt["phi"] - view.cur["phi"]) * fb % MODULUS * ft % MODULUS
    expected = (view.cur["m"] * fb - view.cur["q_lookup"] * ft) % MODULUS
    return [(step - expected) % MODULUS]


def all_constraints(view: ColumnView, gates: Sequence[Gate], ch: Challenges) -> list:
    out = []
    for gate in gates:
        out.extend(gate.evaluate(view))
    out.extend(permutation_constraints(view, ch))
    out.extend(lookup_constraints(view, ch))
    return out


def combine(constraints: Sequence, alpha: int):
    """Horner-fold constraint values with powers of alpha."""
    acc = 0
    for c in constraints:
        acc = (acc * alpha + c) % MODULUS
    return acc


# ============================================================================
# Witness checker
# ============================================================================


def _row_view(assignment: CircuitAssignment, row: int, pi_values: Sequence[int]) -> ColumnView:
    n = assignment.n
    nxt_row = (row + 1) % n
    cur = {c: assignment.advice[c][row] for c in ADVICE_COLUMNS}
    cur.update({c: assignment.fixed[c][row] for c in FIXED_COLUMNS})
    nxt = {c: assignment.advice[c][nxt_row] for c in ADVICE_COLUMNS}
    return ColumnView(cur=cur, nxt=nxt, pi=pi_values[row])


def public_input_vector(assignment: CircuitAssignment, public_inputs: Sequence[int]) -> List[int]:
    if len(public_inputs) != len(assignment.public_rows):
        raise ShapeMismatch(
            f"expected {len(assignment.public_rows)} public inputs, got {len(public_inputs)}"
        )
    pi = [0] * assignment.n
    for row, value in zip(assignment.public_rows, public_inputs):
        pi[row] = value % MODULUS
    return pi


def find_failures(
    assignment: CircuitAssignment,
    gates: Sequence[Gate],
    public_inputs: Sequence[int],
    table_size: int,
    limit: Optional[int] = None,
) -> List[ConstraintFailure]:
    """Check every gate, lookup and copy constraint row by row."""
    failures: List[ConstraintFailure] = []
    pi = public_input_vector(assignment, public_inputs)

    for row in range(assignment.n):
        active = [g for g in gates if assignment.fixed[g.selector][row]]
        if active:
            view = _row_view(assignment, row, pi)
            for gate in active:
                for i, value in enumerate(gate.evaluate(view)):
                    if value % MODULUS:
                        failures.append(ConstraintFailure(gate.name, row, assignment.region_at(row), i))
        if assignment.fixed["q_lookup"][row] and assignment.advice["b"][row] >= table_size:
            failures.append(ConstraintFailure("lookup", row, assignment.region_at(row)))
        if limit is not None and len(failures) >= limit:
            return failures

    for a, b in assignment.copies:
        if assignment.advice[a.column][a.row] != assignment.advice[b.column][b.row]:
            failures.append(ConstraintFailure("copy", b.row, assignment.region_at(b.row)))

    return failures


def assert_satisfied(
    assignment: CircuitAssignment, gates: Sequence[Gate], public_inputs: Sequence[int], table_size: int
) -> None:
    failures = find_failures(assignment, gates, public_inputs, table_size)
    if failures:
        logger.error("circuit_unsatisfied", failures=len(failures), first=str(failures[0]))
        raise CircuitUnsatisfied("witness does not satisfy the circuit", failures)
