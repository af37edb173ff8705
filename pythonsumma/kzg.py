"""
KZG polynomial commitments on BN254.

The structured reference string holds [tau^i]G1 in monomial form, the
Lagrange basis [L_i(tau)]G1 over the 2^k subgroup and [tau]G2. Advice columns
are committed from their evaluations through the Lagrange basis, so small
witness values cost only a few point additions.
"""

import secrets
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog
from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    G1,
    G2,
    Z1,
    Z2,
    add,
    b,
    b2,
    double,
    field_modulus,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from .errors import MalformedInput
from .field import FIELD_BYTES, MODULUS, batch_inverse, powers, root_of_unity
from .transcript import hash_to_field

logger = structlog.get_logger(__name__)

G1_BYTES = 2 * FIELD_BYTES
G2_BYTES = 4 * FIELD_BYTES

# Largest supported domain; keeps setup inside the field's two-adicity
MAX_K = 20


# ============================================================================
# Point encoding
# ============================================================================


def _as_int(c) -> int:
    return c.n if isinstance(c, FQ) else int(c)


def g1_to_bytes(pt) -> bytes:
    if is_inf(pt):
        return b"\x00" * G1_BYTES
    x, y = normalize(pt)
    return _as_int(x).to_bytes(FIELD_BYTES, "big") + _as_int(y).to_bytes(FIELD_BYTES, "big")


def g1_from_bytes(data: bytes):
    if len(data) != G1_BYTES:
        raise MalformedInput(f"G1 point must be {G1_BYTES} bytes, got {len(data)}")
    if data == b"\x00" * G1_BYTES:
        return Z1
    x = int.from_bytes(data[:FIELD_BYTES], "big")
    y = int.from_bytes(data[FIELD_BYTES:], "big")
    if x >= field_modulus or y >= field_modulus:
        raise MalformedInput("G1 coordinate outside the base field")
    pt = (FQ(x), FQ(y), FQ.one())
    if not is_on_curve(pt, b):
        raise MalformedInput("G1 point is not on the curve")
    return pt


def g2_to_bytes(pt) -> bytes:
    if is_inf(pt):
        return b"\x00" * G2_BYTES
    x, y = normalize(pt)
    out = b""
    for c in (*x.coeffs, *y.coeffs):
        out += _as_int(c).to_bytes(FIELD_BYTES, "big")
    return out


def g2_from_bytes(data: bytes):
    if len(data) != G2_BYTES:
        raise MalformedInput(f"G2 point must be {G2_BYTES} bytes, got {len(data)}")
    if data == b"\x00" * G2_BYTES:
        return Z2
    words = [int.from_bytes(data[i:i + FIELD_BYTES], "big") for i in range(0, G2_BYTES, FIELD_BYTES)]
    if any(w >= field_modulus for w in words):
        raise MalformedInput("G2 coordinate outside the base field")
    pt = (FQ2(words[0:2]), FQ2(words[2:4]), FQ2.one())
    if not is_on_curve(pt, b2):
        raise MalformedInput("G2 point is not on the twisted curve")
    return pt


def scalar_to_bytes(value: int) -> bytes:
    return (value % MODULUS).to_bytes(FIELD_BYTES, "big")


def scalar_from_bytes(data: bytes) -> int:
    value = int.from_bytes(data, "big")
    if value >= MODULUS:
        raise MalformedInput("scalar outside the field")
    return value


def is_valid_g1(pt) -> bool:
    try:
        return len(pt) == 3 and is_on_curve(pt, b)
    except (TypeError, AttributeError, ValueError, ZeroDivisionError):
        return False


# ============================================================================
# Fixed-base and multi-scalar multiplication
# ============================================================================


class FixedBaseTable:
    """Precomputed d * 2^(w*window) * base for every window digit d."""

    def __init__(self, base, window: int = 8, scalar_bits: int = 256):
        self.window = window
        self.n_windows = (scalar_bits + window - 1) // window
        self.table: List[list] = []
        current = base
        for _ in range(self.n_windows):
            row = [Z1, current]
            for _ in range(2, 1 << window):
                row.append(add(row[-1], current))
            self.table.append(row)
            for _ in range(window):
                current = double(current)

    def multiply(self, scalar: int):
        scalar %= MODULUS
        mask = (1 << self.window) - 1
        acc = Z1
        w = 0
        while scalar:
            digit = scalar & mask
            if digit:
                acc = add(acc, self.table[w][digit])
            scalar >>= self.window
            w += 1
        return acc


def msm(points: Sequence, scalars: Sequence[int]):
    """Pippenger bucket multi-scalar multiplication, zero scalars skipped."""
    pairs = []
    for pt, s in zip(points, scalars):
        s = int(s) % MODULUS
        if s:
            pairs.append((pt, s))
    if not pairs:
        return Z1
    if len(pairs) == 1:
        return multiply(pairs[0][0], pairs[0][1])

    c = max(1, len(pairs).bit_length() - 3)
    max_bits = max(s.bit_length() for _, s in pairs)
    n_windows = (max_bits + c - 1) // c
    mask = (1 << c) - 1

    result = Z1
    for w in range(n_windows - 1, -1, -1):
        for _ in range(c):
            result = double(result)
        buckets: List[Optional[tuple]] = [None] * (mask + 1)
        shift = w * c
        for pt, s in pairs:
            digit = (s >> shift) & mask
            if digit:
                buckets[digit] = pt if buckets[digit] is None else add(buckets[digit], pt)
        running = Z1
        window_sum = Z1
        for digit in range(mask, 0, -1):
            if buckets[digit] is not None:
                running = add(running, buckets[digit])
            window_sum = add(window_sum, running)
        result = add(result, window_sum)
    return result


# ============================================================================
# Structured reference string
# ============================================================================


@dataclass(frozen=True)
class StructuredReferenceString:
    k: int
    g1_powers: Tuple[tuple, ...]
    g1_lagrange: Tuple[tuple, ...]
    g2_tau: tuple

    @property
    def n(self) -> int:
        return 1 << self.k

    def commit(self, coeffs: Sequence[int]):
        """Commit to a polynomial given in coefficient form."""
        if len(coeffs) > len(self.g1_powers):
            raise ValueError(f"polynomial of {len(coeffs)} coefficients exceeds the SRS")
        return msm(self.g1_powers[:len(coeffs)], coeffs)

    def commit_lagrange(self, evaluations: Sequence[int]):
        """Commit to the interpolant of evaluations over the 2^k subgroup."""
        if len(evaluations) > self.n:
            raise ValueError(f"{len(evaluations)} evaluations exceed the domain of {self.n}")
        return msm(self.g1_lagrange[:len(evaluations)], evaluations)

    def commit_blinding(self, blinds: Sequence[int]):
        """Commitment to (b0 + b1 X + ...) * (X^n - 1)."""
        n = self.n
        high = msm(self.g1_powers[n:n + len(blinds)], blinds)
        low = msm(self.g1_powers[:len(blinds)], blinds)
        return add(high, neg(low))


def setup(k: int, seed: Optional[bytes] = None, blinding_degree: int = 3) -> StructuredReferenceString:
    """
    One-time powers-of-tau setup for circuits of up to 2^k rows.

    Without a seed tau comes from the OS CSPRNG and is discarded; a seed gives
    a reproducible (and therefore insecure) SRS for tests.
    """
    if not 1 <= k <= MAX_K:
        raise ValueError(f"k must be in [1, {MAX_K}], got {k}")

    start = time.perf_counter()
    if seed is None:
        tau = secrets.randbelow(MODULUS - 2) + 2
    else:
        tau = hash_to_field(b"pythonsumma.srs" + seed)

    n = 1 << k
    omega = root_of_unity(n)
    omega_powers = powers(omega, n)
    if pow(tau, n, MODULUS) == 1:
        raise ValueError("tau lies in the evaluation domain; choose another seed")

    # L_i(tau) = omega^i (tau^n - 1) / (n (tau - omega^i))
    zh_tau = (pow(tau, n, MODULUS) - 1) % MODULUS
    denominators = batch_inverse([n * (tau - w) % MODULUS for w in omega_powers])
    lagrange_scalars = [w * zh_tau % MODULUS * d % MODULUS for w, d in zip(omega_powers, denominators)]

    table = FixedBaseTable(G1)
    g1_powers = tuple(table.multiply(t) for t in powers(tau, n + blinding_degree))
    g1_lagrange = tuple(table.multiply(s) for s in lagrange_scalars)
    g2_tau = multiply(G2, tau)

    logger.info("srs_generated", k=k, n=n, seeded=seed is not None, time_sec=time.perf_counter() - start)
    return StructuredReferenceString(k=k, g1_powers=g1_powers, g1_lagrange=g1_lagrange, g2_tau=g2_tau)


def pairing_check(lhs, rhs, g2_tau) -> bool:
    """e(lhs, [tau]G2) == e(rhs, G2)."""
    return pairing(g2_tau, lhs) == pairing(G2, rhs)
