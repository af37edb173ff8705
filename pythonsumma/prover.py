"""
Prover for solvency and inclusion circuits.

Rounds, mirrored by the verifier's transcript:

  1. commit the blinded witness columns and lookup multiplicities
  2. commit the permutation grand product z and the logUp running sum phi
  3. commit the quotient, split into QUOTIENT_CHUNKS pieces of n coefficients
     with random carries between neighbouring pieces
  4. evaluate every polynomial at zeta (and the rotated ones at zeta * omega)
  5. open both batches with one KZG witness each
"""

import secrets
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Sequence

import numpy as np
import structlog
from numba import njit
from py_ecc.optimized_bn128 import add

from .circuit import CircuitBase
from .constraint_system import (
    ADVICE_COLUMNS,
    EQUALITY_COLUMNS,
    FIXED_COLUMNS,
    PERMUTATION_SHIFTS,
    ROTATED_COLUMNS,
    SIGMA_COLUMNS,
    WITNESS_COLUMNS,
    Challenges,
    ColumnView,
    all_constraints,
    assert_satisfied,
    build_gates,
    combine,
)
from .errors import CircuitUnsatisfied, ShapeMismatch, UnsafeConfiguration
from .field import (
    MODULUS,
    batch_inverse,
    coset_evaluations,
    coset_interpolate,
    divide_by_linear,
    evaluate_polynomial,
    field_vector,
    ntt_inverse,
    powers,
    root_of_unity,
)
from .keys import EXTENSION, QUOTIENT_CHUNKS, ProvingKey
from .kzg import g1_to_bytes
from .params import MAX_WORKERS, SecurityMode
from .proof import ZETA_OMEGA_OPENINGS, ZETA_OPENINGS, Proof
from .transcript import Transcript

logger = structlog.get_logger(__name__)

# Random coefficients of the (b0 + b1 X + b2 X^2) * Z_H blinding term
BLINDING_FACTORS = 3


@njit(cache=True)
def count_lookups(values, table_size):
    counts = np.zeros(table_size, dtype=np.int64)
    for i in range(values.shape[0]):
        counts[values[i]] += 1
    return counts


class SolvencyProver:
    def __init__(self, pk: ProvingKey, allow_unsafe: bool = False, max_workers: int = MAX_WORKERS):
        self.pk = pk
        self.allow_unsafe = allow_unsafe
        self.max_workers = max_workers
        self.gates = build_gates(pk.shape.config)
        self.last_metrics = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _commit_blinded(self, values: Sequence[int]):
        """Interpolate values, add a random multiple of Z_H and commit."""
        srs = self.pk.srs
        n = self.pk.n
        coeffs = ntt_inverse(field_vector(values, size=n))
        blinds = [secrets.randbelow(MODULUS) for _ in range(BLINDING_FACTORS)]

        poly = np.zeros(n + BLINDING_FACTORS, dtype=object)
        poly[:n] = coeffs
        for i, b in enumerate(blinds):
            poly[i] = (poly[i] - b) % MODULUS
            poly[n + i] = (poly[n + i] + b) % MODULUS

        commitment = add(srs.commit_lagrange(values), srs.commit_blinding(blinds))
        return poly, commitment

    def _multiplicities(self, assignment) -> List[int]:
        table_size = self.pk.shape.config.table_size
        q = self.pk.fixed_values["q_lookup"]
        b = assignment.advice["b"]
        looked_up = np.array([b[i] for i in range(self.pk.n) if q[i]], dtype=np.int64)
        counts = count_lookups(looked_up, table_size)
        m = [0] * self.pk.n
        # table row v holds the value v
        for v in range(table_size):
            m[v] = int(counts[v])
        return m

    def _grand_product(self, witness: Dict[str, List[int]], beta: int, gamma: int) -> List[int]:
        n = self.pk.n
        omega_powers = field_vector(powers(root_of_unity(n), n))
        numerator = np.ones(n, dtype=object)
        denominator = np.ones(n, dtype=object)
        for j, column in enumerate(EQUALITY_COLUMNS):
            w = field_vector(witness[column])
            sigma = field_vector(self.pk.sigma_values[SIGMA_COLUMNS[j]])
            numerator = numerator * ((w + beta * PERMUTATION_SHIFTS[j] * omega_powers + gamma) % MODULUS) % MODULUS
            denominator = denominator * ((w + beta * sigma + gamma) % MODULUS) % MODULUS

        ratios = [int(a) * d % MODULUS for a, d in zip(numerator, batch_inverse([int(d) for d in denominator]))]
        z = [1] * n
        for i in range(n - 1):
            z[i + 1] = z[i] * ratios[i] % MODULUS
        if z[n - 1] * ratios[n - 1] % MODULUS != 1:
            raise CircuitUnsatisfied("copy constraints do not close the permutation")
        return z

    def _running_sum(self, witness: Dict[str, List[int]], lam: int) -> List[int]:
        n = self.pk.n
        table = self.pk.fixed_values["table"]
        q = self.pk.fixed_values["q_lookup"]
        b = witness["b"]
        m = witness["m"]
        inv_t = batch_inverse([(lam + t) % MODULUS for t in table])
        inv_b = batch_inverse([(lam + v) % MODULUS for v in b])

        steps = [(m[i] * inv_t[i] - q[i] * inv_b[i]) % MODULUS for i in range(n)]
        phi = [0] * n
        for i in range(n - 1):
            phi[i + 1] = (phi[i] + steps[i]) % MODULUS
        if (phi[n - 1] + steps[n - 1]) % MODULUS != 0:
            raise CircuitUnsatisfied("lookup running sum does not close")
        return phi

    def _quotient(self, polys: Dict[str, np.ndarray], public: Sequence[int], ch: Challenges, alpha: int) -> np.ndarray:
        pk = self.pk
        n = pk.n
        extended = EXTENSION * n

        ext = {name: coset_evaluations(poly, extended) for name, poly in polys.items()}
        pi = [0] * n
        for row, value in zip(pk.vk.public_rows, public):
            pi[row] = value
        pi_ext = coset_evaluations(ntt_inverse(field_vector(pi)), extended)

        cur = {c: pk.coset[c] for c in FIXED_COLUMNS + SIGMA_COLUMNS}
        cur.update(ext)
        # p(omega * x) over the coset is a shift by EXTENSION positions
        nxt = {c: np.roll(ext[c], -EXTENSION) for c in ROTATED_COLUMNS}
        view = ColumnView(cur=cur, nxt=nxt, x=pk.coset["x"], l0=pk.coset["l0"], pi=pi_ext)

        numerator = combine(all_constraints(view, self.gates, ch), alpha)
        t_coeffs = coset_interpolate(numerator * pk.zh_inv % MODULUS)
        if any(int(c) for c in t_coeffs[QUOTIENT_CHUNKS * n:]):
            raise CircuitUnsatisfied("quotient exceeds its degree bound")
        return t_coeffs[:QUOTIENT_CHUNKS * n]

    def _split_quotient(self, t_coeffs: np.ndarray) -> List[np.ndarray]:
        """
        Chunks t_j of n + 1 coefficients with sum(X^(j n) t_j) = t. Chunk j
        gains b_j X^n and chunk j + 1 loses b_j, hiding the individual chunks.
        """
        n = self.pk.n
        chunks = []
        for j in range(QUOTIENT_CHUNKS):
            chunk = np.zeros(n + 1, dtype=object)
            chunk[:n] = t_coeffs[j * n:(j + 1) * n]
            chunks.append(chunk)
        for j in range(QUOTIENT_CHUNKS - 1):
            b = secrets.randbelow(MODULUS)
            chunks[j][n] = b
            chunks[j + 1][0] = (chunks[j + 1][0] - b) % MODULUS
        return chunks

    def _open(self, polys: Sequence[np.ndarray], v: int, point: int):
        size = max(len(p) for p in polys)
        combined = np.zeros(size, dtype=object)
        scale = 1
        for p in polys:
            combined[:len(p)] = (combined[:len(p)] + np.asarray(p, dtype=object) * scale) % MODULUS
            scale = scale * v % MODULUS
        return self.pk.srs.commit(divide_by_linear(list(combined), point))

    # ------------------------------------------------------------------
    # Proof generation
    # ------------------------------------------------------------------

    def prove(self, circuit: CircuitBase) -> Proof:
        pk = self.pk
        shape = pk.shape
        if circuit.shape != shape:
            raise ShapeMismatch(f"circuit shape ({circuit.shape.describe()}) differs from key ({shape.describe()})")
        if shape.config.mode is SecurityMode.UNSAFE_TESTING_ONLY:
            if not self.allow_unsafe:
                raise UnsafeConfiguration("proving in UNSAFE_TESTING_ONLY mode requires allow_unsafe=True")
            logger.warning("unsafe_mode_proof", shape=shape.describe())

        start_total = time.perf_counter()
        n = pk.n

        assignment = circuit.synthesize(n)
        if tuple(assignment.public_rows) != pk.vk.public_rows or any(
            assignment.fixed[c] != pk.fixed_values[c] for c in FIXED_COLUMNS
        ):
            raise ShapeMismatch("circuit layout differs from the proving key")
        public = circuit.public_inputs.to_list()
        assert_satisfied(assignment, self.gates, public, shape.config.table_size)
        t_synth = time.perf_counter()

        transcript = Transcript()
        transcript.append(b"vk", pk.vk.digest)
        transcript.append_scalars(b"public_inputs", public)

        # Round 1: witness columns
        witness = {c: assignment.advice[c] for c in ADVICE_COLUMNS}
        witness["m"] = self._multiplicities(assignment)
        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as executor:
            committed = list(executor.map(lambda c: self._commit_blinded(witness[c]), WITNESS_COLUMNS))
        polys = {c: poly for c, (poly, _) in zip(WITNESS_COLUMNS, committed)}
        witness_commitments = tuple(comm for _, comm in committed)
        for c, comm in zip(WITNESS_COLUMNS, witness_commitments):
            transcript.append(b"commit_" + c.encode(), g1_to_bytes(comm))
        ch = Challenges(
            beta=transcript.challenge(b"beta"),
            gamma=transcript.challenge(b"gamma"),
            lookup=transcript.challenge(b"lambda"),
        )
        t_round1 = time.perf_counter()

        # Round 2: permutation and lookup accumulators
        polys["z"], z_commitment = self._commit_blinded(self._grand_product(witness, ch.beta, ch.gamma))
        polys["phi"], phi_commitment = self._commit_blinded(self._running_sum(witness, ch.lookup))
        transcript.append(b"commit_z", g1_to_bytes(z_commitment))
        transcript.append(b"commit_phi", g1_to_bytes(phi_commitment))
        alpha = transcript.challenge(b"alpha")
        t_round2 = time.perf_counter()

        # Round 3: quotient
        chunks = self._split_quotient(self._quotient(polys, public, ch, alpha))
        quotient_commitments = tuple(pk.srs.commit(chunk) for chunk in chunks)
        for j, comm in enumerate(quotient_commitments):
            transcript.append(b"commit_t%d" % j, g1_to_bytes(comm))
        zeta = transcript.challenge(b"zeta")
        t_round3 = time.perf_counter()

        # Round 4: evaluations
        all_polys = dict(polys)
        all_polys.update(pk.coeffs)
        all_polys.update({f"t{j}": chunk for j, chunk in enumerate(chunks)})
        zeta_omega = zeta * root_of_unity(n) % MODULUS
        evals_zeta = tuple(evaluate_polynomial(all_polys[name], zeta) for name in ZETA_OPENINGS)
        evals_zeta_omega = tuple(evaluate_polynomial(all_polys[name], zeta_omega) for name in ZETA_OMEGA_OPENINGS)
        transcript.append_scalars(b"evals_zeta", evals_zeta)
        transcript.append_scalars(b"evals_zeta_omega", evals_zeta_omega)
        v = transcript.challenge(b"v")

        # Round 5: batched openings
        w_zeta = self._open([all_polys[name] for name in ZETA_OPENINGS], v, zeta)
        w_zeta_omega = self._open([all_polys[name] for name in ZETA_OMEGA_OPENINGS], v, zeta_omega)
        t_round5 = time.perf_counter()

        proof = Proof(
            shape=shape,
            k=pk.vk.k,
            public_inputs=circuit.public_inputs,
            witness_commitments=witness_commitments,
            z_commitment=z_commitment,
            phi_commitment=phi_commitment,
            quotient_commitments=quotient_commitments,
            evals_zeta=evals_zeta,
            evals_zeta_omega=evals_zeta_omega,
            w_zeta=w_zeta,
            w_zeta_omega=w_zeta_omega,
        )

        self.last_metrics = {
            "time_total": t_round5 - start_total,
            "time_synthesize_and_check": t_synth - start_total,
            "time_witness_commit": t_round1 - t_synth,
            "time_accumulators": t_round2 - t_round1,
            "time_quotient": t_round3 - t_round2,
            "time_openings": t_round5 - t_round3,
            "rows_used": assignment.rows_used,
        }
        logger.info("proof_generated", shape=shape.describe(), time_sec=self.last_metrics["time_total"])
        return proof


def prove(pk: ProvingKey, circuit: CircuitBase, allow_unsafe: bool = False) -> Proof:
    return SolvencyProver(pk, allow_unsafe=allow_unsafe).prove(circuit)
