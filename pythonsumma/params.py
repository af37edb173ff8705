"""
Circuit configuration and shape.

A CircuitShape (circuit kind, tree depth, asset count, bit-widths, security
mode) fully determines the constraint layout, and therefore the proving and
verifying keys. Balances never influence it.
"""

import multiprocessing
import struct
from dataclasses import dataclass, field
from enum import Enum

from . import poseidon
from .errors import MalformedInput


MAX_WORKERS = multiprocessing.cpu_count()

# Sums must stay well below the 254-bit field modulus
MAX_VALUE_BITS = 252

SHAPE_MAGIC = b"PSUMSHP1"


class SecurityMode(Enum):
    STRICT = "strict"
    # Leaf and node range checks are omitted; proofs carry no balance guarantee
    UNSAFE_TESTING_ONLY = "unsafe_testing_only"


_MODE_CODES = {SecurityMode.STRICT: 0, SecurityMode.UNSAFE_TESTING_ONLY: 1}


class CircuitKind(Enum):
    # Every leaf summed and the total compared against declared assets
    SOLVENCY = "solvency"
    # One user's leaf carried up a private sibling path to the root
    INCLUSION = "inclusion"


_KIND_CODES = {CircuitKind.SOLVENCY: 0, CircuitKind.INCLUSION: 1}

SHAPE_FORMAT = ">HHHBHBB"


@dataclass(frozen=True)
class CircuitConfig:
    """Cryptographic parameters agreed between prover and verifier."""
    leaf_bits: int = 64
    chunk_bits: int = 8
    surplus_bits: int = 128
    mode: SecurityMode = SecurityMode.STRICT

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not 1 <= self.chunk_bits <= 16:
            raise ValueError(f"chunk_bits must be in [1, 16], got {self.chunk_bits}")
        if not 1 <= self.leaf_bits <= MAX_VALUE_BITS:
            raise ValueError(f"leaf_bits must be in [1, {MAX_VALUE_BITS}], got {self.leaf_bits}")
        if not 1 <= self.surplus_bits <= MAX_VALUE_BITS:
            raise ValueError(f"surplus_bits must be in [1, {MAX_VALUE_BITS}], got {self.surplus_bits}")
        if not isinstance(self.mode, SecurityMode):
            raise ValueError(f"unknown security mode {self.mode!r}")

    @property
    def table_size(self) -> int:
        return 1 << self.chunk_bits

    @property
    def range_checks_enabled(self) -> bool:
        return self.mode is SecurityMode.STRICT

    def range_chunks(self, bits: int) -> int:
        return (bits + self.chunk_bits - 1) // self.chunk_bits

    def range_rows(self, bits: int, enforce: bool = False) -> int:
        """Rows of one range-check region: one per chunk plus the zero row."""
        if not (enforce or self.range_checks_enabled):
            return 1
        return self.range_chunks(bits) + 1


@dataclass(frozen=True)
class CircuitShape:
    depth: int
    n_assets: int
    config: CircuitConfig = field(default_factory=CircuitConfig)
    kind: CircuitKind = CircuitKind.SOLVENCY

    def __post_init__(self):
        if self.depth < 1:
            raise ValueError(f"tree depth must be at least 1, got {self.depth}")
        if self.n_assets < 1:
            raise ValueError(f"at least one asset is required, got {self.n_assets}")
        if self.config.leaf_bits + self.depth > MAX_VALUE_BITS:
            raise ValueError("leaf_bits + depth exceeds the field capacity")
        if not isinstance(self.kind, CircuitKind):
            raise ValueError(f"unknown circuit kind {self.kind!r}")

    @classmethod
    def for_leaf_count(
        cls,
        leaf_count: int,
        n_assets: int,
        config: CircuitConfig = None,
        kind: CircuitKind = CircuitKind.SOLVENCY,
    ) -> "CircuitShape":
        depth = max(1, (leaf_count - 1).bit_length())
        return cls(depth=depth, n_assets=n_assets, config=config or CircuitConfig(), kind=kind)

    @property
    def n_leaves(self) -> int:
        return 1 << self.depth

    @property
    def n_public_inputs(self) -> int:
        # solvency: root hash, liabilities, assets
        # inclusion: leaf hash, leaf balances, root hash, assets
        if self.kind is CircuitKind.INCLUSION:
            return 2 + 2 * self.n_assets
        return 1 + 2 * self.n_assets

    def level_bits(self, level: int) -> int:
        """Bit-width of a node sum at `level`: a sum over 2^level leaves."""
        return self.config.leaf_bits + level

    @property
    def hash_inputs(self) -> int:
        return 2 + 2 * self.n_assets

    def node_rows(self, level: int) -> int:
        add_and_range = self.n_assets * (2 + self.config.range_rows(self.level_bits(level)))
        return add_and_range + poseidon.hash_rows(self.hash_inputs)

    def swap_rows(self) -> int:
        """One input row and one output row for the hash and every sum."""
        return 2 * (1 + self.n_assets)

    @property
    def public_rows(self) -> int:
        surplus = self.n_assets * self.config.range_rows(self.config.surplus_bits, enforce=True)
        return 1 + 2 * self.n_assets + surplus

    def _solvency_rows(self) -> int:
        total = self.n_leaves * self.n_assets * self.config.range_rows(self.config.leaf_bits)
        for level in range(1, self.depth + 1):
            total += (self.n_leaves >> level) * self.node_rows(level)
        return total

    def _inclusion_rows(self) -> int:
        c = self.config
        total = 1 + self.n_assets + self.n_assets * c.range_rows(c.leaf_bits)
        for level in range(1, self.depth + 1):
            sibling_range = self.n_assets * c.range_rows(self.level_bits(level - 1))
            total += self.swap_rows() + sibling_range + self.node_rows(level)
        return total

    @property
    def rows(self) -> int:
        if self.kind is CircuitKind.INCLUSION:
            return self._inclusion_rows() + self.public_rows
        return self._solvency_rows() + self.public_rows

    @property
    def min_k(self) -> int:
        k = max(1, (self.rows - 1).bit_length())
        return max(k, self.config.chunk_bits)

    def to_bytes(self) -> bytes:
        c = self.config
        return SHAPE_MAGIC + struct.pack(
            SHAPE_FORMAT,
            self.depth,
            self.n_assets,
            c.leaf_bits,
            c.chunk_bits,
            c.surplus_bits,
            _MODE_CODES[c.mode],
            _KIND_CODES[self.kind],
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "CircuitShape":
        size = cls.encoded_size()
        if len(data) < size or data[:len(SHAPE_MAGIC)] != SHAPE_MAGIC:
            raise MalformedInput("missing circuit shape header")
        depth, n_assets, leaf_bits, chunk_bits, surplus_bits, mode_code, kind_code = struct.unpack(
            SHAPE_FORMAT, data[len(SHAPE_MAGIC):size]
        )
        modes = {code: mode for mode, code in _MODE_CODES.items()}
        kinds = {code: kind for kind, code in _KIND_CODES.items()}
        if mode_code not in modes:
            raise MalformedInput(f"unknown security mode code {mode_code}")
        if kind_code not in kinds:
            raise MalformedInput(f"unknown circuit kind code {kind_code}")
        try:
            config = CircuitConfig(leaf_bits, chunk_bits, surplus_bits, modes[mode_code])
            return cls(depth=depth, n_assets=n_assets, config=config, kind=kinds[kind_code])
        except ValueError as e:
            raise MalformedInput(f"invalid circuit shape header: {e}") from e

    @staticmethod
    def encoded_size() -> int:
        return len(SHAPE_MAGIC) + struct.calcsize(SHAPE_FORMAT)

    def describe(self) -> str:
        c = self.config
        return (
            f"kind={self.kind.value} depth={self.depth} assets={self.n_assets} leaf_bits={c.leaf_bits} "
            f"chunk_bits={c.chunk_bits} surplus_bits={c.surplus_bits} mode={c.mode.value}"
        )
