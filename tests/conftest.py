"""
Shared fixtures.

SRS generation, key generation and proving are expensive in pure Python, so
they are built once per session on seeded (insecure, reproducible) setups.
"""

import pytest

from pythonsumma import (
    CircuitConfig,
    CircuitKind,
    CircuitShape,
    InclusionCircuit,
    Leaf,
    MerkleSumTree,
    SecurityMode,
    SolvencyCircuit,
    keygen,
    prove,
    setup,
)

SRS_SEED = b"pythonsumma-test-srs"

SCENARIO_BALANCES = [10, 20, 30, 40]


def make_leaves(balances, prefix="user"):
    """One leaf per entry; entries are ints (single asset) or sequences."""
    leaves = []
    for i, b in enumerate(balances):
        per_asset = [b] if isinstance(b, int) else list(b)
        leaves.append(Leaf.from_record(f"{prefix}{i}", per_asset))
    return leaves


@pytest.fixture(scope="session")
def scenario_tree():
    return MerkleSumTree(make_leaves(SCENARIO_BALANCES))


@pytest.fixture(scope="session")
def scenario_shape():
    return CircuitShape(depth=2, n_assets=1)


@pytest.fixture(scope="session")
def srs9():
    return setup(9, seed=SRS_SEED)


@pytest.fixture(scope="session")
def srs8():
    return setup(8, seed=SRS_SEED)


@pytest.fixture(scope="session")
def scenario_keys(srs9, scenario_shape):
    return keygen(srs9, scenario_shape)


@pytest.fixture(scope="session")
def solvent_circuit(scenario_tree):
    return SolvencyCircuit.init_from_tree(scenario_tree, [150])


@pytest.fixture(scope="session")
def scenario_proof(scenario_keys, solvent_circuit):
    pk, _ = scenario_keys
    return prove(pk, solvent_circuit)


# Depth-1 circuits fit the k = 8 setup

PAIR_BALANCES = [7, 9]

UNSAFE_CONFIG = CircuitConfig(mode=SecurityMode.UNSAFE_TESTING_ONLY)


@pytest.fixture(scope="session")
def pair_tree():
    return MerkleSumTree(make_leaves(PAIR_BALANCES))


@pytest.fixture(scope="session")
def pair_keys(srs8):
    return keygen(srs8, CircuitShape(depth=1, n_assets=1))


@pytest.fixture(scope="session")
def unsafe_keys(srs8):
    return keygen(srs8, CircuitShape(depth=1, n_assets=1, config=UNSAFE_CONFIG))


@pytest.fixture(scope="session")
def unsafe_circuit(pair_tree):
    return SolvencyCircuit.init_from_tree(pair_tree, [16], config=UNSAFE_CONFIG)


@pytest.fixture(scope="session")
def unsafe_proof(unsafe_keys, unsafe_circuit):
    pk, _ = unsafe_keys
    return prove(pk, unsafe_circuit, allow_unsafe=True)


@pytest.fixture(scope="session")
def inclusion_keys(srs8):
    return keygen(srs8, CircuitShape(depth=1, n_assets=1, kind=CircuitKind.INCLUSION))


@pytest.fixture(scope="session")
def inclusion_circuit(pair_tree):
    return InclusionCircuit.init_from_tree(pair_tree, 1, [16])


@pytest.fixture(scope="session")
def inclusion_proof(inclusion_keys, inclusion_circuit):
    pk, _ = inclusion_keys
    return prove(pk, inclusion_circuit)
