"""
Proving and verifying keys.

Both are derived from the circuit shape and the SRS alone: the fixed columns
and copy constraints of an empty circuit of that shape are interpolated,
committed and (for the prover) pre-evaluated over the extended coset.
"""

import struct
import time
from dataclasses import dataclass
from typing import Dict, Tuple

import blake3
import numpy as np
import structlog

from .circuit import circuit_type
from .constraint_system import FIXED_COLUMNS, SIGMA_COLUMNS, build_sigma
from .errors import MalformedInput, ShapeMismatch
from .field import MODULUS, batch_inverse, coset_evaluations, coset_points, field_vector, ntt_inverse
from .kzg import G1_BYTES, G2_BYTES, StructuredReferenceString, g1_from_bytes, g1_to_bytes, g2_from_bytes, g2_to_bytes
from .params import CircuitShape

logger = structlog.get_logger(__name__)

VK_MAGIC = b"PSUMVK01"

# The quotient has degree below QUOTIENT_CHUNKS * n; the extended domain
# must hold every constraint numerator
QUOTIENT_CHUNKS = 6
EXTENSION = 8


@dataclass(frozen=True)
class VerifyingKey:
    shape: CircuitShape
    k: int
    public_rows: Tuple[int, ...]
    fixed_commitments: Tuple[tuple, ...]
    sigma_commitments: Tuple[tuple, ...]
    g2_tau: tuple

    @property
    def n(self) -> int:
        return 1 << self.k

    def to_bytes(self) -> bytes:
        out = bytearray(VK_MAGIC)
        out += self.shape.to_bytes()
        out += struct.pack(">BH", self.k, len(self.public_rows))
        out += b"".join(struct.pack(">I", r) for r in self.public_rows)
        for pt in self.fixed_commitments + self.sigma_commitments:
            out += g1_to_bytes(pt)
        out += g2_to_bytes(self.g2_tau)
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "VerifyingKey":
        if data[:len(VK_MAGIC)] != VK_MAGIC:
            raise MalformedInput("not a verifying key")
        pos = len(VK_MAGIC)
        shape = CircuitShape.from_bytes(data[pos:])
        pos += CircuitShape.encoded_size()
        if len(data) < pos + 3:
            raise MalformedInput("truncated verifying key")
        k, n_public = struct.unpack(">BH", data[pos:pos + 3])
        pos += 3
        expected = pos + 4 * n_public + G1_BYTES * (len(FIXED_COLUMNS) + len(SIGMA_COLUMNS)) + G2_BYTES
        if len(data) != expected:
            raise MalformedInput(f"verifying key must be {expected} bytes, got {len(data)}")
        public_rows = tuple(struct.unpack(">I", data[pos + 4 * i:pos + 4 * i + 4])[0] for i in range(n_public))
        pos += 4 * n_public
        points = []
        for _ in range(len(FIXED_COLUMNS) + len(SIGMA_COLUMNS)):
            points.append(g1_from_bytes(data[pos:pos + G1_BYTES]))
            pos += G1_BYTES
        g2_tau = g2_from_bytes(data[pos:pos + G2_BYTES])
        return cls(
            shape=shape,
            k=k,
            public_rows=public_rows,
            fixed_commitments=tuple(points[:len(FIXED_COLUMNS)]),
            sigma_commitments=tuple(points[len(FIXED_COLUMNS):]),
            g2_tau=g2_tau,
        )

    @property
    def digest(self) -> bytes:
        return blake3.blake3(self.to_bytes()).digest()


@dataclass(frozen=True)
class ProvingKey:
    vk: VerifyingKey
    srs: StructuredReferenceString
    fixed_values: Dict[str, list]
    sigma_values: Dict[str, list]
    # coefficient form of every fixed and sigma polynomial
    coeffs: Dict[str, np.ndarray]
    # evaluations over the extended coset, plus l0 and the coset points "x"
    coset: Dict[str, np.ndarray]
    # 1 / Z_H over the extended coset; Z_H takes only EXTENSION distinct values there
    zh_inv: np.ndarray

    @property
    def shape(self) -> CircuitShape:
        return self.vk.shape

    @property
    def n(self) -> int:
        return self.vk.n


def keygen(srs: StructuredReferenceString, shape: CircuitShape) -> Tuple[ProvingKey, VerifyingKey]:
    """Deterministic key generation for every circuit of `shape` on `srs`."""
    if shape.min_k > srs.k:
        raise ShapeMismatch(f"circuit needs k >= {shape.min_k} ({shape.rows} rows), SRS has k = {srs.k}")

    start = time.perf_counter()
    n = srs.n
    extended = EXTENSION * n

    assignment = circuit_type(shape).init_empty(shape).synthesize(n)
    sigma_values = build_sigma(assignment.copies, n)
    t_synth = time.perf_counter()

    fixed_commitments = tuple(srs.commit_lagrange(assignment.fixed[c]) for c in FIXED_COLUMNS)
    sigma_commitments = tuple(srs.commit_lagrange(sigma_values[c]) for c in SIGMA_COLUMNS)
    t_commit = time.perf_counter()

    coeffs = {}
    coset = {}
    for name, values in list(assignment.fixed.items()) + list(sigma_values.items()):
        coeffs[name] = ntt_inverse(field_vector(values))
        coset[name] = coset_evaluations(coeffs[name], extended)

    # L_0 has every coefficient equal to 1/n
    l0_coeffs = ntt_inverse(field_vector([1], size=n))
    coset["l0"] = coset_evaluations(l0_coeffs, extended)
    coset["x"] = coset_points(extended)

    zh = [(pow(int(x), n, MODULUS) - 1) % MODULUS for x in coset["x"][:EXTENSION]]
    zh_inv_period = batch_inverse(zh)
    zh_inv = field_vector(zh_inv_period * n)

    vk = VerifyingKey(
        shape=shape,
        k=srs.k,
        public_rows=tuple(assignment.public_rows),
        fixed_commitments=fixed_commitments,
        sigma_commitments=sigma_commitments,
        g2_tau=srs.g2_tau,
    )
    pk = ProvingKey(
        vk=vk,
        srs=srs,
        fixed_values={c: list(assignment.fixed[c]) for c in FIXED_COLUMNS},
        sigma_values=sigma_values,
        coeffs=coeffs,
        coset=coset,
        zh_inv=zh_inv,
    )

    logger.info(
        "keygen_complete",
        shape=shape.describe(),
        k=srs.k,
        rows_used=assignment.rows_used,
        time_synthesize=t_synth - start,
        time_commit=t_commit - t_synth,
        time_total=time.perf_counter() - start,
    )
    return pk, vk
