"""
Inclusion bundle issuance and user-side verification tests.
"""
import dataclasses
import json

import pytest

from pythonsumma import (
    IndexOutOfRange,
    InclusionBundle,
    MalformedInput,
    MerkleSumTree,
    Node,
    issue,
    issue_all,
    self_verify,
)
from pythonsumma.inclusion import binding_digest

from conftest import make_leaves


def _with_leaf_balance(bundle, balance, rebind=False):
    leaf = dataclasses.replace(bundle.path.leaf, balances=(balance,))
    path = dataclasses.replace(bundle.path, leaf=leaf)
    binding = binding_digest(path, bundle.root) if rebind else bundle.binding
    return InclusionBundle(path=path, root=bundle.root, binding=binding)


class TestIssue:
    def test_bundle_for_index_one(self, scenario_tree):
        bundle = issue(scenario_tree, 1)
        assert len(bundle.path.steps) == 2
        assert bundle.leaf.balances == (20,)
        assert bundle.root == scenario_tree.root
        assert bundle.path.compute_root().sums == (100,)
        assert self_verify(bundle, scenario_tree.root)

    def test_accepts_root_hash_only(self, scenario_tree):
        assert self_verify(issue(scenario_tree, 3), scenario_tree.root.hash)

    def test_issue_all_covers_real_leaves(self):
        tree = MerkleSumTree(make_leaves([1, 2, 3]))
        bundles = issue_all(tree)
        assert [b.leaf_index for b in bundles] == [0, 1, 2]
        assert all(self_verify(b, tree.root) for b in bundles)

    def test_out_of_range(self, scenario_tree):
        with pytest.raises(IndexOutOfRange):
            issue(scenario_tree, 4)


class TestTampering:
    def test_tampered_balance_rejected(self, scenario_tree):
        bundle = _with_leaf_balance(issue(scenario_tree, 1), 25)
        assert not self_verify(bundle, scenario_tree.root)

    def test_tampered_balance_with_fresh_binding_rejected(self, scenario_tree):
        bundle = _with_leaf_balance(issue(scenario_tree, 1), 25, rebind=True)
        assert not self_verify(bundle, scenario_tree.root)

    def test_wrong_root_rejected(self, scenario_tree):
        other = Node(hash=(scenario_tree.root.hash + 1), sums=scenario_tree.root.sums)
        assert not self_verify(issue(scenario_tree, 0), other)

    def test_wrong_root_sums_rejected(self, scenario_tree):
        other = Node(hash=scenario_tree.root.hash, sums=(99,))
        assert not self_verify(issue(scenario_tree, 0), other)

    @pytest.mark.parametrize("level", [0, 1])
    @pytest.mark.parametrize("field", ["sibling_hash", "sibling_sums"])
    def test_tampered_sibling_rejected(self, scenario_tree, level, field):
        bundle = issue(scenario_tree, 1)
        step = bundle.path.steps[level]
        if field == "sibling_hash":
            step = dataclasses.replace(step, sibling_hash=step.sibling_hash + 1)
        else:
            step = dataclasses.replace(step, sibling_sums=(step.sibling_sums[0] + 1,))
        steps = list(bundle.path.steps)
        steps[level] = step
        path = dataclasses.replace(bundle.path, steps=tuple(steps))
        forged = InclusionBundle(path=path, root=bundle.root, binding=binding_digest(path, bundle.root))
        assert not self_verify(forged, scenario_tree.root)

    def test_swapped_leaf_index_rejected(self, scenario_tree):
        bundle = issue(scenario_tree, 1)
        path = dataclasses.replace(bundle.path, leaf_index=0)
        forged = InclusionBundle(path=path, root=bundle.root, binding=binding_digest(path, bundle.root))
        assert not self_verify(forged, scenario_tree.root)


class TestSerialization:
    def test_dict_is_json_friendly(self, scenario_tree):
        data = issue(scenario_tree, 2).to_dict()
        restored = InclusionBundle.from_dict(json.loads(json.dumps(data)))
        assert restored == issue(scenario_tree, 2)
        assert self_verify(restored, scenario_tree.root)

    def test_balances_are_decimal_strings(self, scenario_tree):
        data = issue(scenario_tree, 0).to_dict()
        assert data["balances"] == ["10"]
        assert data["root"]["sums"] == ["100"]

    def test_malformed_dict(self, scenario_tree):
        data = issue(scenario_tree, 0).to_dict()
        del data["siblings"]
        with pytest.raises(MalformedInput):
            InclusionBundle.from_dict(data)
