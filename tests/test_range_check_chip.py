"""
Lookup range-check chip tests, checked with the row-by-row witness checker.
"""
import pytest

from pythonsumma.chips import RangeCheckChip, decompose
from pythonsumma.constraint_system import Layouter, build_gates, find_failures
from pythonsumma.field import MODULUS
from pythonsumma.params import CircuitConfig, SecurityMode

SMALL = CircuitConfig(leaf_bits=16, chunk_bits=4)


def _check(value, bits, config=SMALL, enforce=False, n=64):
    layouter = Layouter(n)
    chip = RangeCheckChip(config)
    chip.load_table(layouter)
    cell = chip.assign(layouter, value, bits, name="value", enforce=enforce)
    assignment = layouter.finish()
    failures = find_failures(assignment, build_gates(config), [], config.table_size)
    return cell, assignment, failures


class TestDecompose:
    def test_chunks_and_running_sums(self):
        chunks, running = decompose(0x1234, 16, 8)
        assert chunks == [0x34, 0x12]
        assert running == [0x1234, 0x12, 0]

    def test_out_of_range_leaves_residue(self):
        _, running = decompose(1 << 16, 16, 8)
        assert running[-1] == 1


class TestStrictMode:
    @pytest.mark.parametrize("bits", [4, 8, 10, 16])
    def test_max_value_passes(self, bits):
        _, _, failures = _check((1 << bits) - 1, bits)
        assert failures == []

    @pytest.mark.parametrize("bits", [4, 8, 10, 16])
    def test_power_of_two_fails(self, bits):
        _, _, failures = _check(1 << bits, bits)
        assert failures

    def test_zero_passes(self):
        _, _, failures = _check(0, 10)
        assert failures == []

    def test_partial_top_chunk_uses_shifted_lookup(self):
        # 10 bits in 4-bit chunks: the top chunk may only hold 2 bits
        _, _, failures = _check(1 << 10, 10)
        assert any(f.constraint == "lookup" for f in failures)

    def test_exact_multiple_uses_zero_row(self):
        _, _, failures = _check(1 << 16, 16)
        assert [f.constraint for f in failures] == ["constant"]

    @pytest.mark.parametrize("value", [-1, MODULUS - 1])
    def test_wrapped_negative_rejected(self, value):
        _, _, failures = _check(value, 16)
        assert failures
        assert all(f.region == "value" for f in failures)

    def test_region_height(self):
        _, assignment, _ = _check(5, 10)
        assert assignment.rows_used == SMALL.range_rows(10) == 4

    def test_returns_value_cell(self):
        cell, assignment, _ = _check(0xABC, 12)
        assert cell.value == 0xABC
        assert assignment.advice["a"][cell.row] == 0xABC


class TestUnsafeMode:
    UNSAFE = CircuitConfig(leaf_bits=16, chunk_bits=4, mode=SecurityMode.UNSAFE_TESTING_ONLY)

    def test_only_value_row_placed(self):
        _, assignment, failures = _check(1 << 20, 16, config=self.UNSAFE)
        assert assignment.rows_used == 1
        assert failures == []

    def test_enforced_check_still_applies(self):
        _, _, failures = _check(1 << 16, 16, config=self.UNSAFE, enforce=True)
        assert failures
