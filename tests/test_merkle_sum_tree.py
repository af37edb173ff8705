"""
Merkle sum tree tests: construction, padding, validation and paths.
"""
import pytest

from pythonsumma import IndexOutOfRange, Leaf, MalformedInput, MerkleSumTree, Node
from pythonsumma.merkle_sum_tree import combine_nodes, identity_commitment, verify_path
from pythonsumma.field import MODULUS

from conftest import SCENARIO_BALANCES, make_leaves


class TestConstruction:
    def test_root_sum_is_total_liability(self, scenario_tree):
        assert scenario_tree.root.sums == (100,)
        assert scenario_tree.total_sums == (100,)

    def test_depth_and_levels(self, scenario_tree):
        assert scenario_tree.depth == 2
        assert [len(level) for level in scenario_tree.levels] == [4, 2, 1]

    def test_internal_nodes_combine_children(self, scenario_tree):
        levels = scenario_tree.levels
        assert levels[1][0] == combine_nodes(levels[0][0], levels[0][1])
        assert levels[1][0].sums == (30,)
        assert levels[1][1].sums == (70,)
        assert scenario_tree.root == combine_nodes(levels[1][0], levels[1][1])

    def test_padding_to_power_of_two(self):
        tree = MerkleSumTree(make_leaves([1, 2, 3]))
        assert len(tree) == 3
        assert tree.padded_count == 4
        assert tree.leaves[3] == Leaf.zero(1)
        assert tree.root.sums == (6,)

    def test_single_leaf_has_depth_one(self):
        tree = MerkleSumTree(make_leaves([5]))
        assert tree.depth == 1
        assert tree.root.sums == (5,)

    def test_multi_asset_sums(self):
        tree = MerkleSumTree(make_leaves([(1, 100), (2, 200), (3, 300)]))
        assert tree.n_assets == 2
        assert tree.root.sums == (6, 600)

    def test_parallel_and_sequential_builds_agree(self):
        leaves = make_leaves(range(1, 40))
        assert MerkleSumTree(leaves, max_workers=1).root == MerkleSumTree(leaves, max_workers=8).root

    def test_root_depends_on_leaf_order(self):
        assert MerkleSumTree(make_leaves([1, 2])).root != MerkleSumTree(make_leaves([2, 1])).root

    def test_metrics_recorded(self, scenario_tree):
        assert scenario_tree.last_metrics["total_hashes"] == 3

    def test_identity_commitment_uses_salt(self):
        assert identity_commitment("alice") != identity_commitment("alice", b"pepper")
        assert 0 <= identity_commitment("alice") < MODULUS


class TestValidation:
    def test_empty_leaves(self):
        with pytest.raises(MalformedInput, match="empty"):
            MerkleSumTree([])

    def test_negative_balance(self):
        with pytest.raises(MalformedInput, match="negative"):
            MerkleSumTree(make_leaves([1, -1]))

    def test_balance_over_bit_width(self):
        with pytest.raises(MalformedInput, match="exceeds"):
            MerkleSumTree(make_leaves([1, 2 ** 64]))

    def test_balance_at_bit_width_boundary(self):
        tree = MerkleSumTree(make_leaves([2 ** 64 - 1, 1]))
        assert tree.root.sums == (2 ** 64,)

    def test_inconsistent_asset_count(self):
        with pytest.raises(MalformedInput, match="expected 1 balances"):
            MerkleSumTree([Leaf.from_record("a", [1]), Leaf.from_record("b", [1, 2])])

    def test_non_integer_balance(self):
        with pytest.raises(MalformedInput):
            MerkleSumTree([Leaf.from_record("a", [1.5])])

    def test_identity_outside_field(self):
        with pytest.raises(MalformedInput, match="identity"):
            MerkleSumTree([Leaf(identity=MODULUS, balances=(1,))])


class TestInclusionPath:
    def test_path_length_equals_depth(self, scenario_tree):
        path = scenario_tree.inclusion_path(1)
        assert len(path.steps) == 2
        assert path.leaf.balances == (20,)

    def test_directions_spell_index(self, scenario_tree):
        path = scenario_tree.inclusion_path(2)
        assert [s.direction for s in path.steps] == [0, 1]

    def test_every_path_reaches_root(self, scenario_tree):
        for i in range(len(SCENARIO_BALANCES)):
            assert verify_path(scenario_tree.inclusion_path(i), scenario_tree.root)

    def test_wrong_root_rejected(self, scenario_tree):
        other = Node(hash=scenario_tree.root.hash, sums=(101,))
        assert not verify_path(scenario_tree.inclusion_path(0), other)

    @pytest.mark.parametrize("index", [-1, 4, 100])
    def test_out_of_range(self, scenario_tree, index):
        with pytest.raises(IndexOutOfRange):
            scenario_tree.inclusion_path(index)

    def test_node_accessor_out_of_range(self, scenario_tree):
        with pytest.raises(IndexOutOfRange):
            scenario_tree.node(3, 0)
        with pytest.raises(IndexOutOfRange):
            scenario_tree.node(1, 2)
