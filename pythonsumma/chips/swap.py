"""
Path-direction swap for one level of an inclusion path.

For the node hash and each asset sum the region holds an input row
(a = running value, b = sibling value, s1 = direction bit, q_swap) followed by
an output row (a = left child, b = right child). The bit cells of one level
are copy-constrained together so every pair is ordered the same way.
"""

from typing import Tuple

from ..constraint_system import Layouter
from .sum_hash import NodeCells


class SwapChip:
    def assign(
        self,
        layouter: Layouter,
        current: NodeCells,
        sibling: NodeCells,
        bit: int,
        name: str = "swap",
    ) -> Tuple[NodeCells, NodeCells]:
        pairs = [(current.hash, sibling.hash)] + list(zip(current.sums, sibling.sums))
        region = layouter.region(name, 2 * len(pairs))

        bit_cell = None
        lefts, rights = [], []
        for j, (cur, sib) in enumerate(pairs):
            row = 2 * j
            cur_cell = region.assign_or_copy(cur, "a", row)
            sib_cell = region.assign_or_copy(sib, "b", row)
            if bit_cell is None:
                bit_cell = region.assign_advice("s1", row, bit)
            else:
                region.copy_advice(bit_cell, "s1", row)
            region.enable_selector("q_swap", row)

            # Any non-zero bit swaps; the bool constraint rejects values other than 1
            left, right = (sib_cell.value, cur_cell.value) if bit else (cur_cell.value, sib_cell.value)
            lefts.append(region.assign_advice("a", row + 1, left))
            rights.append(region.assign_advice("b", row + 1, right))

        return NodeCells(hash=lefts[0], sums=lefts[1:]), NodeCells(hash=rights[0], sums=rights[1:])
