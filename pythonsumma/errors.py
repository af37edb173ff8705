"""
Error taxonomy for the solvency prover.

MalformedInput, IndexOutOfRange, ShapeMismatch and VerificationFailed are
ordinary, recoverable outcomes reported to the caller. CircuitUnsatisfied and
WitnessInconsistent signal an integrity defect and abort the proving run.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence


class SolvencyError(Exception):
    """Base class for every error raised by pythonsumma."""


class MalformedInput(SolvencyError, ValueError):
    """Bad source data: balances, identities, records or serialized blobs."""

    def __init__(self, message: str, row: Optional[int] = None):
        if row is not None:
            message = f"row {row}: {message}"
        super().__init__(message)
        self.row = row


class IndexOutOfRange(SolvencyError, IndexError):
    """Inclusion path requested for a leaf that does not exist."""


class ShapeMismatch(SolvencyError):
    """Key, proof, circuit or public input vector of a different shape."""


class VerificationFailed(SolvencyError):
    """Proof is cryptographically invalid or was tampered with."""


class UnsafeConfiguration(SolvencyError):
    """Unsafe testing mode used without being explicitly allowed."""


@dataclass(frozen=True)
class ConstraintFailure:
    constraint: str
    row: int
    region: str
    index: int = 0

    def __str__(self) -> str:
        return f"{self.constraint}[{self.index}] at row {self.row} ({self.region})"


class CircuitUnsatisfied(SolvencyError):
    """The witness violates at least one constraint of the circuit."""

    def __init__(self, message: str, failures: Sequence[ConstraintFailure] = ()):
        self.failures: List[ConstraintFailure] = list(failures)
        if self.failures:
            shown = ", ".join(str(f) for f in self.failures[:5])
            more = len(self.failures) - 5
            if more > 0:
                shown += f" (+{more} more)"
            message = f"{message}: {shown}"
        super().__init__(message)


class WitnessInconsistent(CircuitUnsatisfied):
    """The tree handed to the circuit contradicts its own sums or hashes."""
