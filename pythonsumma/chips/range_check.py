"""
Lookup-table range check.

x is split into K = ceil(bits / c) chunks of c bits with a running sum
z_0 = x, z_{i+1} = (z_i - chunk_i) / 2^c. Every chunk is looked up in the
table [0, 2^c) and the final z_K is constrained to zero. When bits is not a
multiple of c the top chunk is also multiplied by 2^(c - bits mod c) and the
product looked up, so the top chunk is bounded by 2^(bits mod c).

Region layout (column a holds z_i, column b holds chunk_i):

    row  0 .. K-1   q_range, q_lookup         (q_top and const on row K-1)
    row  K          q_const (const = 0)        b = shifted top chunk, q_lookup
"""

from typing import List, Tuple, Union

from ..constraint_system import AssignedCell, Layouter
from ..field import MODULUS
from ..params import CircuitConfig


def decompose(value: int, bits: int, chunk_bits: int) -> Tuple[List[int], List[int]]:
    """
    Chunks and running sums of value, as an honest prover assigns them.

    Values outside [0, 2^bits) still decompose; they leave a non-zero final
    running sum or an oversized top chunk for the constraints to reject.
    """
    k = (bits + chunk_bits - 1) // chunk_bits
    mask = (1 << chunk_bits) - 1
    z = value % MODULUS
    chunks = []
    running = [z]
    for _ in range(k):
        chunks.append(z & mask)
        z >>= chunk_bits
        running.append(z)
    return chunks, running


class RangeCheckChip:
    def __init__(self, config: CircuitConfig):
        self.config = config
        self.chunk_bits = config.chunk_bits

    def load_table(self, layouter: Layouter) -> None:
        layouter.assign_table("table", range(self.config.table_size))

    def rows(self, bits: int, enforce: bool = False) -> int:
        return self.config.range_rows(bits, enforce)

    def assign(
        self,
        layouter: Layouter,
        value: Union[int, AssignedCell],
        bits: int,
        name: str = "range_check",
        enforce: bool = False,
    ) -> AssignedCell:
        """
        Constrain value to [0, 2^bits) and return the cell holding it.

        In unsafe testing mode only the value cell is placed, unless enforce
        is set for checks that must hold in every mode.
        """
        if not (enforce or self.config.range_checks_enabled):
            region = layouter.region(f"{name} (unchecked)", 1)
            return region.assign_or_copy(value, "a", 0)

        c = self.chunk_bits
        raw = value.value if isinstance(value, AssignedCell) else value % MODULUS
        chunks, running = decompose(raw, bits, c)
        k = len(chunks)
        top_bits = bits % c

        region = layouter.region(name, k + 1)
        x_cell = region.assign_or_copy(value, "a", 0)
        region.enable_selector("q_range", 0)
        region.enable_selector("q_lookup", 0)
        region.assign_advice("b", 0, chunks[0])

        for i in range(1, k):
            region.assign_advice("a", i, running[i])
            region.assign_advice("b", i, chunks[i])
            region.enable_selector("q_range", i)
            region.enable_selector("q_lookup", i)

        region.assign_advice("a", k, running[k])
        region.enable_selector("q_const", k)
        region.assign_fixed("const", k, 0)

        if top_bits:
            shift = 1 << (c - top_bits)
            region.enable_selector("q_top", k - 1)
            region.assign_fixed("const", k - 1, shift)
            region.assign_advice("b", k, chunks[k - 1] * shift)
            region.enable_selector("q_lookup", k)

        return x_cell
