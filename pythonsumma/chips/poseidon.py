"""
In-circuit Poseidon sponge, one permutation round per row.

For each absorbed pair the region holds an absorb row (inputs in a and b)
followed by TOTAL_ROUNDS round rows; the last row holds the final state and
the digest sits in s1.
"""

from typing import List, Optional, Sequence, Union

from .. import poseidon
from ..constraint_system import AssignedCell, Layouter


class PoseidonChip:
    def hash(
        self,
        layouter: Layouter,
        inputs: Sequence[Union[int, AssignedCell]],
        name: str = "poseidon",
        trace: Optional[List[List[int]]] = None,
    ) -> AssignedCell:
        """
        Hash inputs and return the digest cell. Cell inputs are copied into
        the absorb rows; plain ints are assigned as fresh private witnesses.
        """
        values = [x.value if isinstance(x, AssignedCell) else x for x in inputs]
        if trace is None:
            trace = poseidon.sponge_trace(values)
        height = poseidon.hash_rows(len(inputs))
        if len(trace) != height:
            raise ValueError(f"sponge trace has {len(trace)} rows, expected {height}")

        padded = list(inputs)
        if len(padded) % poseidon.RATE:
            padded.append(0)

        region = layouter.region(name, height)
        region.enable_selector("q_init", 0)
        region.assign_fixed("const", 0, len(inputs))

        block = poseidon.TOTAL_ROUNDS + 1
        for j in range(len(padded) // poseidon.RATE):
            absorb = j * block
            region.enable_selector("q_absorb", absorb)
            region.assign_or_copy(padded[2 * j], "a", absorb)
            region.assign_or_copy(padded[2 * j + 1], "b", absorb)
            for r in range(poseidon.TOTAL_ROUNDS):
                row = absorb + 1 + r
                region.enable_selector("q_full" if poseidon.is_full_round(r) else "q_partial", row)
                for i, rc in enumerate(poseidon.ROUND_CONSTANTS[r]):
                    region.assign_fixed(f"rc{i}", row, rc)

        digest = None
        for offset, state in enumerate(trace):
            region.assign_advice("s0", offset, state[0])
            cell = region.assign_advice("s1", offset, state[1])
            region.assign_advice("s2", offset, state[2])
            digest = cell
        return digest
