"""
Proof artifact: shape header, public inputs and the constant-size proof body.
"""

import struct
from dataclasses import dataclass
from typing import Tuple

from .circuit import PublicInputVector, circuit_type
from .constraint_system import FIXED_COLUMNS, ROTATED_COLUMNS, SIGMA_COLUMNS, WITNESS_COLUMNS
from .errors import MalformedInput
from .field import FIELD_BYTES
from .keys import QUOTIENT_CHUNKS
from .kzg import G1_BYTES, g1_from_bytes, g1_to_bytes, scalar_from_bytes, scalar_to_bytes
from .params import CircuitShape

PROOF_MAGIC = b"PSUMPRF1"

# Polynomials opened at zeta, in transcript order
ZETA_OPENINGS = WITNESS_COLUMNS + ("z", "phi") + FIXED_COLUMNS + SIGMA_COLUMNS + tuple(
    f"t{j}" for j in range(QUOTIENT_CHUNKS)
)
# Polynomials opened at zeta * omega
ZETA_OMEGA_OPENINGS = ROTATED_COLUMNS


@dataclass(frozen=True)
class Proof:
    shape: CircuitShape
    k: int
    public_inputs: PublicInputVector
    witness_commitments: Tuple[tuple, ...]
    z_commitment: tuple
    phi_commitment: tuple
    quotient_commitments: Tuple[tuple, ...]
    evals_zeta: Tuple[int, ...]
    evals_zeta_omega: Tuple[int, ...]
    w_zeta: tuple
    w_zeta_omega: tuple

    def evaluations(self):
        """(column -> value at zeta, column -> value at zeta*omega)."""
        return dict(zip(ZETA_OPENINGS, self.evals_zeta)), dict(zip(ZETA_OMEGA_OPENINGS, self.evals_zeta_omega))

    def body_points(self) -> Tuple[tuple, ...]:
        return (
            *self.witness_commitments,
            self.z_commitment,
            self.phi_commitment,
            *self.quotient_commitments,
            self.w_zeta,
            self.w_zeta_omega,
        )

    def to_bytes(self) -> bytes:
        out = bytearray(PROOF_MAGIC)
        out += self.shape.to_bytes()
        out += struct.pack(">B", self.k)
        out += self.public_inputs.to_bytes()
        for pt in self.body_points():
            out += g1_to_bytes(pt)
        for v in self.evals_zeta + self.evals_zeta_omega:
            out += scalar_to_bytes(v)
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Proof":
        if data[:len(PROOF_MAGIC)] != PROOF_MAGIC:
            raise MalformedInput("not a pythonsumma proof")
        pos = len(PROOF_MAGIC)
        shape = CircuitShape.from_bytes(data[pos:])
        pos += CircuitShape.encoded_size()
        if len(data) < pos + 1:
            raise MalformedInput("truncated proof")
        k = data[pos]
        pos += 1

        n_public = FIELD_BYTES * shape.n_public_inputs
        n_points = len(WITNESS_COLUMNS) + 2 + QUOTIENT_CHUNKS + 2
        n_scalars = len(ZETA_OPENINGS) + len(ZETA_OMEGA_OPENINGS)
        expected = pos + n_public + G1_BYTES * n_points + FIELD_BYTES * n_scalars
        if len(data) != expected:
            raise MalformedInput(f"proof must be {expected} bytes for its shape, got {len(data)}")

        public_inputs = circuit_type(shape).public_inputs_type.from_bytes(data[pos:pos + n_public], shape.n_assets)
        pos += n_public
        points = []
        for _ in range(n_points):
            points.append(g1_from_bytes(data[pos:pos + G1_BYTES]))
            pos += G1_BYTES
        scalars = []
        for _ in range(n_scalars):
            scalars.append(scalar_from_bytes(data[pos:pos + FIELD_BYTES]))
            pos += FIELD_BYTES

        w = len(WITNESS_COLUMNS)
        return cls(
            shape=shape,
            k=k,
            public_inputs=public_inputs,
            witness_commitments=tuple(points[:w]),
            z_commitment=points[w],
            phi_commitment=points[w + 1],
            quotient_commitments=tuple(points[w + 2:w + 2 + QUOTIENT_CHUNKS]),
            evals_zeta=tuple(scalars[:len(ZETA_OPENINGS)]),
            evals_zeta_omega=tuple(scalars[len(ZETA_OPENINGS):]),
            w_zeta=points[-2],
            w_zeta_omega=points[-1],
        )

    @property
    def size(self) -> int:
        return len(self.to_bytes())
