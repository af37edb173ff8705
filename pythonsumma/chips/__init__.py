from .poseidon import PoseidonChip
from .range_check import RangeCheckChip, decompose
from .sum_hash import NodeCells, SumHashChip
from .swap import SwapChip

__all__ = ["PoseidonChip", "RangeCheckChip", "SumHashChip", "SwapChip", "NodeCells", "decompose"]
