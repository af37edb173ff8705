"""
pythonsumma: zero-knowledge proof of solvency over a Merkle sum tree.

A custodian commits to every user balance in a Merkle sum tree, proves with a
PLONKish circuit and KZG commitments that the committed liabilities do not
exceed its declared assets, and hands each user an inclusion bundle they can
check against the published root, or a zero-knowledge proof of their own
inclusion that keeps the rest of the tree private.
"""

from .circuit import InclusionCircuit, InclusionPublicInputs, PublicInputs, SolvencyCircuit
from .errors import (
    CircuitUnsatisfied,
    ConstraintFailure,
    IndexOutOfRange,
    MalformedInput,
    ShapeMismatch,
    SolvencyError,
    UnsafeConfiguration,
    VerificationFailed,
    WitnessInconsistent,
)
from .inclusion import InclusionBundle, issue, issue_all, self_verify
from .keys import ProvingKey, VerifyingKey, keygen
from .kzg import StructuredReferenceString, setup
from .log import configure_logging
from .merkle_sum_tree import InclusionPath, Leaf, MerkleSumTree, Node, identity_commitment
from .params import CircuitConfig, CircuitKind, CircuitShape, SecurityMode
from .proof import Proof
from .prover import SolvencyProver, prove
from .records import UserRecords, parse_rows, read_csv
from .registry import SHARED_PARAMS, ParamsRegistry
from .verifier import SolvencyVerifier, verify, verify_or_raise

__version__ = "0.1.0"

__all__ = [
    "CircuitConfig",
    "CircuitKind",
    "CircuitShape",
    "CircuitUnsatisfied",
    "ConstraintFailure",
    "InclusionBundle",
    "InclusionCircuit",
    "InclusionPath",
    "InclusionPublicInputs",
    "IndexOutOfRange",
    "Leaf",
    "MalformedInput",
    "MerkleSumTree",
    "Node",
    "ParamsRegistry",
    "Proof",
    "ProvingKey",
    "PublicInputs",
    "SHARED_PARAMS",
    "SecurityMode",
    "ShapeMismatch",
    "SolvencyCircuit",
    "SolvencyError",
    "SolvencyProver",
    "SolvencyVerifier",
    "StructuredReferenceString",
    "UnsafeConfiguration",
    "UserRecords",
    "VerificationFailed",
    "VerifyingKey",
    "WitnessInconsistent",
    "configure_logging",
    "identity_commitment",
    "issue",
    "issue_all",
    "keygen",
    "parse_rows",
    "prove",
    "read_csv",
    "self_verify",
    "setup",
    "verify",
    "verify_or_raise",
]
