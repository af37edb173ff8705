"""
BN254 scalar field arithmetic and number-theoretic transforms.

Field elements are plain Python ints in [0, MODULUS). Vectors of field
elements are numpy object arrays so that whole-column arithmetic stays
vectorized while keeping exact 254-bit values.
"""

from typing import Dict, Iterable, List, Sequence

import numpy as np
from numba import njit


# ============================================================================
# Field configuration (BN254 scalar field, the group order of alt_bn128)
# ============================================================================

MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
GENERATOR = 5
TWO_ADICITY = 28

# Coset shift of the extended evaluation domain
COSET_SHIFT = GENERATOR

FIELD_BYTES = 32


def to_field(value: int) -> int:
    return value % MODULUS


def is_field_element(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < MODULUS


def inv(a: int) -> int:
    a %= MODULUS
    if a == 0:
        raise ZeroDivisionError("inverse of zero in the scalar field")
    return pow(a, MODULUS - 2, MODULUS)


def batch_inverse(values: Sequence[int]) -> List[int]:
    """Montgomery batch inversion: one exponentiation for the whole vector."""
    n = len(values)
    if n == 0:
        return []
    prefix = [0] * n
    acc = 1
    for i, v in enumerate(values):
        prefix[i] = acc
        acc = acc * v % MODULUS
    acc_inv = inv(acc)
    out = [0] * n
    for i in range(n - 1, -1, -1):
        out[i] = acc_inv * prefix[i] % MODULUS
        acc_inv = acc_inv * values[i] % MODULUS
    return out


def powers(base: int, count: int) -> List[int]:
    out = [0] * count
    acc = 1
    for i in range(count):
        out[i] = acc
        acc = acc * base % MODULUS
    return out


def evaluate_polynomial(coeffs: Iterable[int], x: int) -> int:
    """Horner evaluation of a polynomial given low-to-high coefficients."""
    acc = 0
    for c in reversed(list(coeffs)):
        acc = (acc * x + int(c)) % MODULUS
    return acc


def divide_by_linear(coeffs: Sequence[int], z: int) -> List[int]:
    """Quotient q with f(X) - f(z) = q(X) * (X - z)."""
    n = len(coeffs)
    if n <= 1:
        return [0]
    q = [0] * (n - 1)
    acc = 0
    for i in range(n - 1, 0, -1):
        acc = (acc * z + int(coeffs[i])) % MODULUS
        q[i - 1] = acc
    return q


def field_vector(values: Iterable[int], size: int = 0) -> np.ndarray:
    values = [int(v) % MODULUS for v in values]
    if size and len(values) < size:
        values.extend([0] * (size - len(values)))
    out = np.empty(len(values), dtype=object)
    out[:] = values
    return out


# ============================================================================
# FFT cache and NTT implementation
# ============================================================================


def root_of_unity(n: int) -> int:
    if n & (n - 1) != 0 or n < 1:
        raise ValueError(f"domain size must be a power of two, got {n}")
    if n.bit_length() - 1 > TWO_ADICITY:
        raise ValueError(f"domain size 2^{n.bit_length() - 1} exceeds the field two-adicity")
    omega = pow(GENERATOR, (MODULUS - 1) // n, MODULUS)
    if n > 1 and pow(omega, n // 2, MODULUS) == 1:
        raise ValueError("generator does not yield a primitive root of unity")
    return omega


@njit(cache=True)
def bit_reverse_indices(n):
    bits = 0
    while (1 << bits) < n:
        bits += 1
    out = np.empty(n, dtype=np.int64)
    for i in range(n):
        rev = 0
        x = i
        for _ in range(bits):
            rev = (rev << 1) | (x & 1)
            x >>= 1
        out[i] = rev
    return out


class FFTCache:
    """Cache for roots of unity, twiddle factors and coset shift powers."""

    def __init__(self):
        self.omega_cache: Dict[int, int] = {}
        self.twiddle_cache: Dict[int, np.ndarray] = {}
        self.inverse_twiddle_cache: Dict[int, np.ndarray] = {}
        self.reverse_cache: Dict[int, np.ndarray] = {}
        self.shift_cache: Dict[tuple, np.ndarray] = {}

    def get_omega(self, n: int) -> int:
        if n not in self.omega_cache:
            self.omega_cache[n] = root_of_unity(n)
        return self.omega_cache[n]

    def get_twiddles(self, n: int) -> np.ndarray:
        if n not in self.twiddle_cache:
            self.twiddle_cache[n] = field_vector(powers(self.get_omega(n), n))
        return self.twiddle_cache[n]

    def get_inverse_twiddles(self, n: int) -> np.ndarray:
        if n not in self.inverse_twiddle_cache:
            twiddles = self.get_twiddles(n)
            # omega^-i == omega^(n - i)
            inverse = np.empty(n, dtype=object)
            inverse[0] = 1
            inverse[1:] = twiddles[:0:-1]
            self.inverse_twiddle_cache[n] = inverse
        return self.inverse_twiddle_cache[n]

    def get_bit_reversal(self, n: int) -> np.ndarray:
        if n not in self.reverse_cache:
            self.reverse_cache[n] = bit_reverse_indices(n)
        return self.reverse_cache[n]

    def get_shift_powers(self, shift: int, n: int) -> np.ndarray:
        key = (shift, n)
        if key not in self.shift_cache:
            self.shift_cache[key] = field_vector(powers(shift, n))
        return self.shift_cache[key]


FFT_CACHE = FFTCache()


def _ntt(values: np.ndarray, twiddles: np.ndarray) -> np.ndarray:
    n = len(values)
    result = values[FFT_CACHE.get_bit_reversal(n)]

    length = 2
    while length <= n:
        half = length >> 1
        step = n // length
        w = twiddles[0:half * step:step]
        blocks = result.reshape(-1, length)
        upper = blocks[:, :half].copy()
        t = blocks[:, half:] * w % MODULUS
        blocks[:, :half] = (upper + t) % MODULUS
        blocks[:, half:] = (upper - t) % MODULUS
        length <<= 1

    return result


def ntt_forward(values) -> np.ndarray:
    """Evaluate coefficients over the subgroup of size len(values)."""
    values = np.asarray(values, dtype=object)
    n = len(values)
    if n == 1:
        return values.copy()
    return _ntt(values, FFT_CACHE.get_twiddles(n))


def ntt_inverse(values) -> np.ndarray:
    """Interpolate subgroup evaluations back to coefficients."""
    values = np.asarray(values, dtype=object)
    n = len(values)
    if n == 1:
        return values.copy()
    result = _ntt(values, FFT_CACHE.get_inverse_twiddles(n))
    return result * inv(n) % MODULUS


def coset_evaluations(coeffs, size: int, shift: int = COSET_SHIFT) -> np.ndarray:
    """Evaluate a polynomial over the coset shift * <omega_size>."""
    coeffs = np.asarray(coeffs, dtype=object)
    if len(coeffs) > size:
        raise ValueError(f"polynomial of {len(coeffs)} coefficients does not fit a domain of {size}")
    padded = np.zeros(size, dtype=object)
    padded[:len(coeffs)] = coeffs * FFT_CACHE.get_shift_powers(shift, len(coeffs)) % MODULUS
    return ntt_forward(padded)


def coset_interpolate(evals, shift: int = COSET_SHIFT) -> np.ndarray:
    coeffs = ntt_inverse(evals)
    return coeffs * FFT_CACHE.get_shift_powers(inv(shift), len(coeffs)) % MODULUS


def coset_points(size: int, shift: int = COSET_SHIFT) -> np.ndarray:
    return FFT_CACHE.get_twiddles(size) * shift % MODULUS


def lagrange_at(x: int, row: int, n: int) -> int:
    """L_row(x) over the subgroup of size n."""
    omega_i = pow(FFT_CACHE.get_omega(n), row, MODULUS)
    numerator = omega_i * (pow(x, n, MODULUS) - 1) % MODULUS
    return numerator * inv(n * (x - omega_i)) % MODULUS
