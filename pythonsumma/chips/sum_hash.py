"""
Sum/hash chip: one Merkle sum tree node from its two children.

Per asset, an addition row proves parent = left + right and the result is
range-checked at the level's bit-width. The parent hash is the Poseidon
sponge over (left.hash, left.sums, right.hash, right.sums) with every input
copy-constrained from the children's cells.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from .. import poseidon
from ..constraint_system import AssignedCell, Layouter
from .poseidon import PoseidonChip
from .range_check import RangeCheckChip


@dataclass
class NodeCells:
    # Leaf hashes are identity commitments: plain private witnesses, not cells
    hash: Union[int, AssignedCell]
    sums: List[AssignedCell]

    @property
    def hash_value(self) -> int:
        return self.hash.value if isinstance(self.hash, AssignedCell) else self.hash


class SumHashChip:
    def __init__(self, range_chip: RangeCheckChip, poseidon_chip: PoseidonChip):
        self.range_chip = range_chip
        self.poseidon_chip = poseidon_chip

    def assign(
        self,
        layouter: Layouter,
        left: NodeCells,
        right: NodeCells,
        bits: int,
        name: str = "node",
        trace: Optional[List[List[int]]] = None,
    ) -> NodeCells:
        sums = []
        for asset, (l_cell, r_cell) in enumerate(zip(left.sums, right.sums)):
            region = layouter.region(f"{name} sum {asset}", 2)
            region.copy_advice(l_cell, "a", 0)
            region.copy_advice(r_cell, "b", 0)
            region.enable_selector("q_add", 0)
            total = region.assign_advice("a", 1, l_cell.value + r_cell.value)
            self.range_chip.assign(layouter, total, bits, name=f"{name} range {asset}")
            sums.append(total)

        inputs = poseidon.node_inputs(left.hash, left.sums, right.hash, right.sums)
        digest = self.poseidon_chip.hash(layouter, inputs, name=f"{name} hash", trace=trace)
        return NodeCells(hash=digest, sums=sums)
