"""
Sum/hash chip tests: one tree node from two leaves.
"""
from pythonsumma import poseidon
from pythonsumma.chips import NodeCells, PoseidonChip, RangeCheckChip, SumHashChip
from pythonsumma.constraint_system import Layouter, build_gates, find_failures
from pythonsumma.params import CircuitConfig

CONFIG = CircuitConfig()


def _node(left_balances, right_balances, bits=65, left_id=111, right_id=222):
    layouter = Layouter(512)
    range_chip = RangeCheckChip(CONFIG)
    chip = SumHashChip(range_chip, PoseidonChip())
    range_chip.load_table(layouter)

    def leaf(identity, balances, name):
        sums = [range_chip.assign(layouter, b, CONFIG.leaf_bits, name=f"{name} {i}") for i, b in enumerate(balances)]
        return NodeCells(hash=identity, sums=sums)

    left = leaf(left_id, left_balances, "left")
    right = leaf(right_id, right_balances, "right")
    parent = chip.assign(layouter, left, right, bits, name="node")
    return parent, layouter.finish()


class TestSumHashChip:
    def test_parent_values(self):
        parent, assignment = _node([10, 5], [20, 7])
        assert [c.value for c in parent.sums] == [30, 12]
        assert parent.hash_value == poseidon.hash_node(111, [10, 5], 222, [20, 7])
        assert find_failures(assignment, build_gates(CONFIG), [], CONFIG.table_size) == []

    def test_sum_at_level_bound(self):
        top = 2 ** 64 - 1
        parent, assignment = _node([top], [top])
        assert parent.sums[0].value == 2 ** 65 - 2
        assert find_failures(assignment, build_gates(CONFIG), [], CONFIG.table_size) == []

    def test_sum_over_level_bound_fails(self):
        top = 2 ** 64 - 1
        # a 64-bit level bound cannot hold the sum of two maximal leaves
        _, assignment = _node([top], [top], bits=64)
        failures = find_failures(assignment, build_gates(CONFIG), [], CONFIG.table_size)
        assert any(f.region == "node range 0" for f in failures)

    def test_tampered_sum_is_located(self):
        _, assignment = _node([10], [20])
        region = next(r for r in assignment.regions if r.name == "node sum 0")
        assignment.advice["a"][region.start + 1] += 1
        failures = find_failures(assignment, build_gates(CONFIG), [], CONFIG.table_size)
        assert any(f.constraint == "sum" and f.region == "node sum 0" for f in failures)

    def test_tampered_hash_input_breaks_copy(self):
        _, assignment = _node([10], [20])
        region = next(r for r in assignment.regions if r.name == "node hash")
        # second absorbed input is the left sum, copied from the leaf range check
        assignment.advice["b"][region.start] += 1
        failures = find_failures(assignment, build_gates(CONFIG), [], CONFIG.table_size)
        assert any(f.constraint == "copy" for f in failures)
