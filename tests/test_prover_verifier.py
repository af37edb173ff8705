"""
End-to-end proving and verification tests.

The solvent scenario (balances 10, 20, 30, 40 against assets of 150) is
proved once per session; rejection cases reuse that proof.
"""
import dataclasses

import pytest
from py_ecc.optimized_bn128 import G1

from pythonsumma import (
    CircuitConfig,
    CircuitShape,
    CircuitUnsatisfied,
    MalformedInput,
    MerkleSumTree,
    Proof,
    ProvingKey,
    PublicInputs,
    SecurityMode,
    ShapeMismatch,
    SolvencyCircuit,
    SolvencyProver,
    SolvencyVerifier,
    UnsafeConfiguration,
    VerificationFailed,
    VerifyingKey,
    keygen,
    prove,
    verify,
    verify_or_raise,
)
from pythonsumma.field import MODULUS, evaluate_polynomial, field_vector
from pythonsumma.keys import QUOTIENT_CHUNKS
from pythonsumma.kzg import g1_to_bytes

from conftest import make_leaves


class TestSolventScenario:
    def test_proof_verifies(self, scenario_keys, scenario_proof, scenario_tree):
        _, vk = scenario_keys
        public = [scenario_tree.root.hash, 100, 150]
        assert verify(vk, public, scenario_proof)

    def test_accepts_public_inputs_object(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        verifier = SolvencyVerifier(vk)
        assert verifier.verify(solvent_circuit.public_inputs, scenario_proof)
        assert verifier.last_metrics["accepted"]

    def test_proof_bytes_round_trip(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        data = scenario_proof.to_bytes()
        assert Proof.from_bytes(data).to_bytes() == data
        assert scenario_proof.size == len(data)
        assert verify(vk, solvent_circuit.public_inputs, data)

    def test_repeated_verification_is_stable(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        results = [verify(vk, solvent_circuit.public_inputs, scenario_proof) for _ in range(2)]
        assert results == [True, True]

    def test_verify_or_raise_passes(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        verify_or_raise(vk, solvent_circuit.public_inputs, scenario_proof)

    def test_fresh_blinding_per_run(self, scenario_keys, scenario_proof, solvent_circuit):
        pk, vk = scenario_keys
        prover = SolvencyProver(pk)
        second = prover.prove(solvent_circuit)
        assert [g1_to_bytes(p) for p in second.witness_commitments] != [
            g1_to_bytes(p) for p in scenario_proof.witness_commitments
        ]
        assert second.size == scenario_proof.size
        assert verify(vk, solvent_circuit.public_inputs, second)
        assert prover.last_metrics["rows_used"] == 491


class TestInsolventScenario:
    def test_prove_raises(self, scenario_keys, scenario_tree):
        pk, _ = scenario_keys
        circuit = SolvencyCircuit.init_from_tree(scenario_tree, [90])
        with pytest.raises(CircuitUnsatisfied) as exc:
            prove(pk, circuit)
        assert exc.value.failures
        assert all(f.region == "solvency 0" for f in exc.value.failures)


class TestTampering:
    @pytest.mark.parametrize("position", [0, 1, 2])
    def test_tampered_public_input_rejected(self, scenario_keys, scenario_proof, solvent_circuit, position):
        _, vk = scenario_keys
        public = solvent_circuit.public_inputs.to_list()
        public[position] = (public[position] + 1) % MODULUS
        assert not verify(vk, public, scenario_proof)

    def test_rebound_public_inputs_rejected(self, scenario_keys, scenario_proof, scenario_tree):
        # claiming more assets inside the proof itself breaks the transcript
        _, vk = scenario_keys
        forged_inputs = PublicInputs(root_hash=scenario_tree.root.hash, liabilities=(100,), assets=(1000,))
        forged = dataclasses.replace(scenario_proof, public_inputs=forged_inputs)
        verifier = SolvencyVerifier(vk)
        assert not verifier.verify(forged_inputs, forged)
        assert verifier.last_metrics["reason"] == "constraint identity does not hold at zeta"

    def test_tampered_evaluation_rejected(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        evals = list(scenario_proof.evals_zeta)
        evals[0] = (evals[0] + 1) % MODULUS
        forged = dataclasses.replace(scenario_proof, evals_zeta=tuple(evals))
        assert not verify(vk, solvent_circuit.public_inputs, forged)

    def test_tampered_opening_rejected(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        forged = dataclasses.replace(scenario_proof, w_zeta=G1)
        assert not verify(vk, solvent_circuit.public_inputs, forged)

    def test_tampered_bytes_rejected(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        data = bytearray(scenario_proof.to_bytes())
        data[-1] ^= 1
        assert not verify(vk, solvent_circuit.public_inputs, bytes(data))

    def test_truncated_bytes_rejected(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        assert not verify(vk, solvent_circuit.public_inputs, scenario_proof.to_bytes()[:-1])

    def test_verify_or_raise_raises(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        public = solvent_circuit.public_inputs.to_list()
        public[2] += 1
        with pytest.raises(VerificationFailed):
            verify_or_raise(vk, public, scenario_proof)


class TestShapeChecks:
    def test_public_input_length(self, scenario_keys, scenario_proof):
        _, vk = scenario_keys
        with pytest.raises(ShapeMismatch):
            verify(vk, [1, 2], scenario_proof)

    def test_public_input_outside_field(self, scenario_keys, scenario_proof):
        _, vk = scenario_keys
        with pytest.raises(MalformedInput):
            verify(vk, [MODULUS, 100, 150], scenario_proof)

    def test_proof_for_other_shape(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        forged = dataclasses.replace(scenario_proof, shape=CircuitShape(depth=3, n_assets=1))
        with pytest.raises(ShapeMismatch):
            verify(vk, solvent_circuit.public_inputs, forged)

    def test_circuit_for_other_shape(self, scenario_keys):
        pk, _ = scenario_keys
        circuit = SolvencyCircuit.init_from_tree(MerkleSumTree(make_leaves([1, 2])), [3])
        with pytest.raises(ShapeMismatch):
            prove(pk, circuit)

    def test_keygen_needs_large_enough_srs(self, srs8, scenario_shape):
        with pytest.raises(ShapeMismatch):
            keygen(srs8, scenario_shape)


class TestKeys:
    def test_keygen_is_deterministic(self, srs8):
        shape = CircuitShape(depth=1, n_assets=1)
        _, vk1 = keygen(srs8, shape)
        _, vk2 = keygen(srs8, shape)
        assert vk1.to_bytes() == vk2.to_bytes()
        assert vk1.digest == vk2.digest

    def test_verifying_key_bytes_round_trip(self, scenario_keys):
        pk, vk = scenario_keys
        assert pk.vk is vk
        restored = VerifyingKey.from_bytes(vk.to_bytes())
        assert restored.to_bytes() == vk.to_bytes()
        assert restored.public_rows == vk.public_rows

    def test_verifying_key_rejects_garbage(self):
        with pytest.raises(MalformedInput):
            VerifyingKey.from_bytes(b"not a key")

    def test_restored_key_verifies(self, scenario_keys, scenario_proof, solvent_circuit):
        _, vk = scenario_keys
        restored = VerifyingKey.from_bytes(vk.to_bytes())
        assert verify(restored, solvent_circuit.public_inputs, scenario_proof.to_bytes())


class TestUnsafeMode:
    CONFIG = CircuitConfig(mode=SecurityMode.UNSAFE_TESTING_ONLY)

    def _keys(self, shape):
        vk = VerifyingKey(
            shape=shape, k=9, public_rows=(), fixed_commitments=(), sigma_commitments=(), g2_tau=None
        )
        pk = ProvingKey(
            vk=vk, srs=None, fixed_values={}, sigma_values={}, coeffs={}, coset={}, zh_inv=None
        )
        return pk, vk

    def test_prover_refuses_without_flag(self, scenario_tree):
        circuit = SolvencyCircuit.init_from_tree(scenario_tree, [150], config=self.CONFIG)
        pk, _ = self._keys(circuit.shape)
        with pytest.raises(UnsafeConfiguration):
            prove(pk, circuit)

    def test_verifier_refuses_without_flag(self, scenario_proof):
        _, vk = self._keys(CircuitShape(depth=2, n_assets=1, config=self.CONFIG))
        with pytest.raises(UnsafeConfiguration):
            verify(vk, [1, 2, 3], scenario_proof)

    def test_proves_and_verifies_with_flag(self, unsafe_keys, unsafe_circuit, unsafe_proof):
        _, vk = unsafe_keys
        assert unsafe_proof.shape.config.mode is SecurityMode.UNSAFE_TESTING_ONLY
        assert verify(vk, unsafe_circuit.public_inputs, unsafe_proof, allow_unsafe=True)
        assert verify(vk, unsafe_circuit.public_inputs, unsafe_proof.to_bytes(), allow_unsafe=True)

    def test_real_key_refuses_without_flag(self, unsafe_keys, unsafe_circuit, unsafe_proof):
        pk, vk = unsafe_keys
        with pytest.raises(UnsafeConfiguration):
            verify(vk, unsafe_circuit.public_inputs, unsafe_proof)
        with pytest.raises(UnsafeConfiguration):
            prove(pk, unsafe_circuit)

    def test_insolvent_still_unprovable(self, unsafe_keys, pair_tree):
        pk, _ = unsafe_keys
        circuit = SolvencyCircuit.init_from_tree(pair_tree, [15], config=self.CONFIG)
        with pytest.raises(CircuitUnsatisfied) as exc:
            prove(pk, circuit, allow_unsafe=True)
        assert exc.value.failures
        assert all(f.region == "solvency 0" for f in exc.value.failures)

    def test_tampered_public_input_rejected(self, unsafe_keys, unsafe_circuit, unsafe_proof):
        _, vk = unsafe_keys
        public = unsafe_circuit.public_inputs.to_list()
        public[2] += 1
        assert not verify(vk, public, unsafe_proof, allow_unsafe=True)

    def test_strict_key_rejects_unsafe_proof(self, pair_keys, unsafe_circuit, unsafe_proof):
        _, strict_vk = pair_keys
        with pytest.raises(ShapeMismatch):
            verify(strict_vk, unsafe_circuit.public_inputs, unsafe_proof)
        with pytest.raises(ShapeMismatch):
            verify(strict_vk, unsafe_circuit.public_inputs, unsafe_proof, allow_unsafe=True)

    def test_unsafe_key_rejects_strict_circuit(self, unsafe_keys, pair_tree):
        pk, _ = unsafe_keys
        with pytest.raises(ShapeMismatch):
            prove(pk, SolvencyCircuit.init_from_tree(pair_tree, [16]), allow_unsafe=True)


class TestQuotientSplit:
    def test_chunks_recombine(self, pair_keys):
        pk, _ = pair_keys
        n = pk.n
        t = field_vector(range(1, QUOTIENT_CHUNKS * n + 1))
        chunks = SolvencyProver(pk)._split_quotient(t)
        assert len(chunks) == QUOTIENT_CHUNKS
        assert all(len(chunk) == n + 1 for chunk in chunks)
        x = 123456789
        combined = sum(evaluate_polynomial(c, x) * pow(x, j * n, MODULUS) for j, c in enumerate(chunks)) % MODULUS
        assert combined == evaluate_polynomial(t, x)

    def test_chunks_are_blinded(self, pair_keys):
        pk, _ = pair_keys
        n = pk.n
        t = field_vector(range(QUOTIENT_CHUNKS * n))
        first = SolvencyProver(pk)._split_quotient(t)
        second = SolvencyProver(pk)._split_quotient(t)
        assert [int(c[n]) for c in first[:-1]] != [int(c[n]) for c in second[:-1]]
        assert int(first[-1][n]) == 0
