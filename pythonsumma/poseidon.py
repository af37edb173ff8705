"""
Poseidon permutation and sponge over the BN254 scalar field.

Width 3 (rate 2, capacity 1), 8 full rounds split around 57 partial rounds,
x^5 S-box. Round constants are expanded from a fixed seed with SHA-256 and the
MDS matrix is the Cauchy matrix 1 / (i + j + WIDTH). The in-circuit chip uses
exactly these tables, one round per row.
"""

import hashlib
import struct
from typing import List, Sequence, Tuple

from .field import MODULUS, inv


WIDTH = 3
RATE = 2
FULL_ROUNDS = 8
PARTIAL_ROUNDS = 57
TOTAL_ROUNDS = FULL_ROUNDS + PARTIAL_ROUNDS
ALPHA = 5

ROUND_CONSTANT_SEED = b"pythonsumma.poseidon.bn254.t3"


def _round_constants() -> Tuple[Tuple[int, ...], ...]:
    constants = []
    for r in range(TOTAL_ROUNDS):
        row = []
        for i in range(WIDTH):
            digest = hashlib.sha256(ROUND_CONSTANT_SEED + struct.pack(">II", r, i)).digest()
            row.append(int.from_bytes(digest, "big") % MODULUS)
        constants.append(tuple(row))
    return tuple(constants)


def _mds_matrix() -> Tuple[Tuple[int, ...], ...]:
    return tuple(
        tuple(inv(i + j + WIDTH) for j in range(WIDTH))
        for i in range(WIDTH)
    )


ROUND_CONSTANTS = _round_constants()
MDS = _mds_matrix()


def is_full_round(r: int) -> bool:
    half = FULL_ROUNDS // 2
    return r < half or r >= half + PARTIAL_ROUNDS


def sbox(x: int) -> int:
    return pow(x, ALPHA, MODULUS)


def apply_round(state: Sequence[int], r: int) -> List[int]:
    rc = ROUND_CONSTANTS[r]
    s = [(state[i] + rc[i]) % MODULUS for i in range(WIDTH)]
    if is_full_round(r):
        s = [sbox(x) for x in s]
    else:
        s[0] = sbox(s[0])
    return [sum(MDS[i][j] * s[j] for j in range(WIDTH)) % MODULUS for i in range(WIDTH)]


def permute(state: Sequence[int]) -> List[int]:
    if len(state) != WIDTH:
        raise ValueError(f"Poseidon state must have {WIDTH} elements")
    s = [x % MODULUS for x in state]
    for r in range(TOTAL_ROUNDS):
        s = apply_round(s, r)
    return s


def _pairs(inputs: Sequence[int]) -> List[Tuple[int, int]]:
    values = [x % MODULUS for x in inputs]
    if len(values) % RATE:
        values.append(0)
    return [(values[i], values[i + 1]) for i in range(0, len(values), RATE)]


def hash_elements(inputs: Sequence[int]) -> int:
    """
    Sponge hash. The capacity element is initialised with the input length,
    so inputs of different lengths never collide through zero padding.
    """
    if not inputs:
        raise ValueError("cannot hash an empty input")
    state = [len(inputs) % MODULUS, 0, 0]
    for x0, x1 in _pairs(inputs):
        state = permute([state[0], (state[1] + x0) % MODULUS, (state[2] + x1) % MODULUS])
    return state[1]


def sponge_trace(inputs: Sequence[int]) -> List[List[int]]:
    """
    Every intermediate state of hash_elements, one per circuit row.

    For each absorbed pair: the state before absorption, then the state before
    each of the TOTAL_ROUNDS rounds. The final entry holds the output in
    position 1.
    """
    if not inputs:
        raise ValueError("cannot hash an empty input")
    state = [len(inputs) % MODULUS, 0, 0]
    rows = []
    for x0, x1 in _pairs(inputs):
        rows.append(state)
        state = [state[0], (state[1] + x0) % MODULUS, (state[2] + x1) % MODULUS]
        for r in range(TOTAL_ROUNDS):
            rows.append(state)
            state = apply_round(state, r)
    rows.append(state)
    return rows


def hash_rows(n_inputs: int) -> int:
    """Rows occupied by an in-circuit hash of n_inputs elements."""
    pairs = (n_inputs + RATE - 1) // RATE
    return pairs * (TOTAL_ROUNDS + 1) + 1


def node_inputs(left_hash: int, left_sums: Sequence[int], right_hash: int, right_sums: Sequence[int]) -> List[int]:
    return [left_hash, *left_sums, right_hash, *right_sums]


def hash_node(left_hash: int, left_sums: Sequence[int], right_hash: int, right_sums: Sequence[int]) -> int:
    """H(left.hash, left.sum, right.hash, right.sum) for a Merkle sum tree node."""
    return hash_elements(node_inputs(left_hash, left_sums, right_hash, right_sums))
