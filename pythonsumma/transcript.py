"""
Fiat-Shamir transcript over blake3.

Prover and verifier feed the same labelled messages in the same order and
draw identical challenges from the running state.
"""

import struct

import blake3

from .field import FIELD_BYTES, MODULUS


def secure_hash(data: bytes) -> bytes:
    return blake3.blake3(data).digest()


def hash_to_field(data: bytes) -> int:
    # 64 bytes of XOF output keep the modular bias negligible
    wide = blake3.blake3(data).digest(length=64)
    return int.from_bytes(wide, "big") % MODULUS


class Transcript:
    """Fiat-Shamir transcript with domain separation and a challenge counter."""

    def __init__(self, seed: bytes = b"PYTHONSUMMA_PLONK_V01"):
        self.domain_separator = secure_hash(seed + b"_domain")[:16]
        self.state = secure_hash(seed)
        self.challenge_count = 0

    def append(self, label: bytes, data: bytes) -> None:
        domain_label = self.domain_separator + label
        self.state = secure_hash(self.state + domain_label + struct.pack(">I", len(data)) + data)

    def append_scalar(self, label: bytes, value: int) -> None:
        self.append(label, (value % MODULUS).to_bytes(FIELD_BYTES, "big"))

    def append_scalars(self, label: bytes, values) -> None:
        self.append(label, b"".join((v % MODULUS).to_bytes(FIELD_BYTES, "big") for v in values))

    def challenge(self, label: bytes) -> int:
        payload = self.state + self.domain_separator + label + struct.pack(">I", self.challenge_count)
        self.challenge_count += 1
        value = hash_to_field(payload)
        # Chain the challenge into the state so later challenges depend on it
        self.state = secure_hash(self.state + payload)
        return value
