"""
Verifier for solvency and inclusion proofs.

Work is independent of the number of users: a fixed number of field
operations over the claimed evaluations, two small multi-scalar
multiplications and one pairing check.
"""

import time
from typing import Sequence, Union

import structlog

from .circuit import PublicInputVector, circuit_type
from .constraint_system import (
    FIXED_COLUMNS,
    SIGMA_COLUMNS,
    WITNESS_COLUMNS,
    Challenges,
    ColumnView,
    all_constraints,
    build_gates,
    combine,
)
from .errors import MalformedInput, ShapeMismatch, UnsafeConfiguration, VerificationFailed
from .field import MODULUS, lagrange_at, powers, root_of_unity
from .keys import QUOTIENT_CHUNKS, VerifyingKey
from .kzg import G1, g1_to_bytes, is_valid_g1, msm, pairing_check
from .params import SecurityMode
from .proof import ZETA_OMEGA_OPENINGS, ZETA_OPENINGS, Proof
from .transcript import Transcript

logger = structlog.get_logger(__name__)


class SolvencyVerifier:
    def __init__(self, vk: VerifyingKey, allow_unsafe: bool = False):
        self.vk = vk
        self.allow_unsafe = allow_unsafe
        self.gates = build_gates(vk.shape.config)
        self.last_metrics = {}

    def _public_inputs(self, public_inputs) -> PublicInputVector:
        shape = self.vk.shape
        expected = circuit_type(shape).public_inputs_type
        if isinstance(public_inputs, PublicInputVector):
            if not isinstance(public_inputs, expected):
                raise ShapeMismatch(
                    f"{type(public_inputs).__name__} given for a {shape.kind.value} circuit"
                )
            if public_inputs.n_assets != shape.n_assets:
                raise ShapeMismatch(
                    f"expected {shape.n_public_inputs} public inputs, got {len(public_inputs.to_list())}"
                )
            return public_inputs
        return expected.from_list(list(public_inputs), shape.n_assets)

    def _reject(self, reason: str, start: float) -> bool:
        self.last_metrics = {"time_total": time.perf_counter() - start, "accepted": False, "reason": reason}
        logger.warning("proof_rejected", reason=reason, shape=self.vk.shape.describe())
        return False

    def verify(self, public_inputs: Union[PublicInputVector, Sequence[int]], proof: Union[Proof, bytes]) -> bool:
        start = time.perf_counter()
        vk = self.vk
        shape = vk.shape
        if shape.config.mode is SecurityMode.UNSAFE_TESTING_ONLY and not self.allow_unsafe:
            raise UnsafeConfiguration("verifying in UNSAFE_TESTING_ONLY mode requires allow_unsafe=True")

        public = self._public_inputs(public_inputs)

        if isinstance(proof, (bytes, bytearray)):
            try:
                proof = Proof.from_bytes(bytes(proof))
            except MalformedInput as e:
                return self._reject(f"undecodable proof: {e}", start)

        if proof.shape != shape or proof.k != vk.k:
            raise ShapeMismatch(
                f"proof for ({proof.shape.describe()}, k={proof.k}) "
                f"does not match key ({shape.describe()}, k={vk.k})"
            )
        if proof.public_inputs != public:
            return self._reject("public inputs differ from those bound in the proof", start)
        if not all(is_valid_g1(pt) for pt in proof.body_points()):
            return self._reject("proof point not on the curve", start)
        if len(proof.evals_zeta) != len(ZETA_OPENINGS) or len(proof.evals_zeta_omega) != len(ZETA_OMEGA_OPENINGS):
            return self._reject("wrong number of evaluations", start)

        n = vk.n
        values = public.to_list()

        # Replay the transcript
        transcript = Transcript()
        transcript.append(b"vk", vk.digest)
        transcript.append_scalars(b"public_inputs", values)
        for c, comm in zip(WITNESS_COLUMNS, proof.witness_commitments):
            transcript.append(b"commit_" + c.encode(), g1_to_bytes(comm))
        ch = Challenges(
            beta=transcript.challenge(b"beta"),
            gamma=transcript.challenge(b"gamma"),
            lookup=transcript.challenge(b"lambda"),
        )
        transcript.append(b"commit_z", g1_to_bytes(proof.z_commitment))
        transcript.append(b"commit_phi", g1_to_bytes(proof.phi_commitment))
        alpha = transcript.challenge(b"alpha")
        for j, comm in enumerate(proof.quotient_commitments):
            transcript.append(b"commit_t%d" % j, g1_to_bytes(comm))
        zeta = transcript.challenge(b"zeta")
        transcript.append_scalars(b"evals_zeta", proof.evals_zeta)
        transcript.append_scalars(b"evals_zeta_omega", proof.evals_zeta_omega)
        v = transcript.challenge(b"v")
        transcript.append(b"w_zeta", g1_to_bytes(proof.w_zeta))
        transcript.append(b"w_zeta_omega", g1_to_bytes(proof.w_zeta_omega))
        u = transcript.challenge(b"u")

        # Constraint identity at zeta
        zeta_n = pow(zeta, n, MODULUS)
        zh_zeta = (zeta_n - 1) % MODULUS
        if zh_zeta == 0:
            return self._reject("challenge fell on the evaluation domain", start)

        at_zeta, at_zeta_omega = proof.evaluations()
        pi_zeta = 0
        for row, value in zip(vk.public_rows, values):
            pi_zeta = (pi_zeta + value * lagrange_at(zeta, row, n)) % MODULUS
        view = ColumnView(cur=at_zeta, nxt=at_zeta_omega, x=zeta, l0=lagrange_at(zeta, 0, n), pi=pi_zeta)
        numerator = combine(all_constraints(view, self.gates, ch), alpha)

        t_zeta = 0
        for j, chunk_power in enumerate(powers(zeta_n, QUOTIENT_CHUNKS)):
            t_zeta = (t_zeta + at_zeta[f"t{j}"] * chunk_power) % MODULUS
        if numerator != t_zeta * zh_zeta % MODULUS:
            return self._reject("constraint identity does not hold at zeta", start)
        t_identity = time.perf_counter()

        # Batched KZG openings
        commitments = dict(zip(WITNESS_COLUMNS, proof.witness_commitments))
        commitments["z"] = proof.z_commitment
        commitments["phi"] = proof.phi_commitment
        commitments.update(zip(FIXED_COLUMNS, vk.fixed_commitments))
        commitments.update(zip(SIGMA_COLUMNS, vk.sigma_commitments))
        commitments.update({f"t{j}": comm for j, comm in enumerate(proof.quotient_commitments)})

        v_zeta = powers(v, len(ZETA_OPENINGS))
        v_zeta_omega = powers(v, len(ZETA_OMEGA_OPENINGS))
        f_zeta = msm([commitments[c] for c in ZETA_OPENINGS], v_zeta)
        f_zeta_omega = msm([commitments[c] for c in ZETA_OMEGA_OPENINGS], v_zeta_omega)
        e_zeta = sum(a * b for a, b in zip(v_zeta, proof.evals_zeta)) % MODULUS
        e_zeta_omega = sum(a * b for a, b in zip(v_zeta_omega, proof.evals_zeta_omega)) % MODULUS

        zeta_omega = zeta * root_of_unity(n) % MODULUS
        lhs = msm([proof.w_zeta, proof.w_zeta_omega], [1, u])
        rhs = msm(
            [proof.w_zeta, proof.w_zeta_omega, f_zeta, G1, f_zeta_omega],
            [zeta, u * zeta_omega, 1, -(e_zeta + u * e_zeta_omega), u],
        )
        if not pairing_check(lhs, rhs, vk.g2_tau):
            return self._reject("opening proof does not verify", start)

        end = time.perf_counter()
        self.last_metrics = {
            "time_total": end - start,
            "time_identity": t_identity - start,
            "time_pairing": end - t_identity,
            "accepted": True,
        }
        logger.info("proof_verified", shape=shape.describe(), time_sec=self.last_metrics["time_total"])
        return True


def verify(
    vk: VerifyingKey,
    public_inputs: Union[PublicInputVector, Sequence[int]],
    proof: Union[Proof, bytes],
    allow_unsafe: bool = False,
) -> bool:
    return SolvencyVerifier(vk, allow_unsafe=allow_unsafe).verify(public_inputs, proof)


def verify_or_raise(
    vk: VerifyingKey,
    public_inputs: Union[PublicInputVector, Sequence[int]],
    proof: Union[Proof, bytes],
    allow_unsafe: bool = False,
) -> None:
    verifier = SolvencyVerifier(vk, allow_unsafe=allow_unsafe)
    if not verifier.verify(public_inputs, proof):
        raise VerificationFailed(f"proof rejected: {verifier.last_metrics.get('reason')}")
