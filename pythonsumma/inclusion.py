"""
Per-user inclusion bundles.

A bundle is self-contained: the leaf, its sibling path, the root it was issued
against and a blake3 digest binding all of them together. A user checks it
offline against the published root with nothing but the hash function.
"""

import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Union

import blake3
import structlog

from .errors import MalformedInput
from .field import FIELD_BYTES, MODULUS
from .merkle_sum_tree import InclusionPath, Leaf, MerkleSumTree, Node, PathStep, verify_path

logger = structlog.get_logger(__name__)

BUNDLE_DOMAIN = b"pythonsumma.inclusion.v1"


def _word(value: int) -> bytes:
    return (value % MODULUS).to_bytes(FIELD_BYTES, "big")


def _encode(path: InclusionPath, root: Node) -> bytes:
    out = bytearray(BUNDLE_DOMAIN)
    out += struct.pack(">QHH", path.leaf_index, len(path.leaf.balances), len(path.steps))
    out += _word(path.leaf.identity)
    for balance in path.leaf.balances:
        out += _word(balance)
    for step in path.steps:
        out += bytes([step.direction & 0xFF])
        out += _word(step.sibling_hash)
        for s in step.sibling_sums:
            out += _word(s)
    out += _word(root.hash)
    for s in root.sums:
        out += _word(s)
    return bytes(out)


def binding_digest(path: InclusionPath, root: Node) -> bytes:
    return blake3.blake3(_encode(path, root)).digest()


@dataclass(frozen=True)
class InclusionBundle:
    path: InclusionPath
    root: Node
    binding: bytes

    @property
    def leaf(self) -> Leaf:
        return self.path.leaf

    @property
    def leaf_index(self) -> int:
        return self.path.leaf_index

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form: hashes in hex, balances in decimal."""
        return {
            "leaf_index": self.path.leaf_index,
            "identity": hex(self.path.leaf.identity),
            "balances": [str(b) for b in self.path.leaf.balances],
            "siblings": [
                {
                    "hash": hex(step.sibling_hash),
                    "sums": [str(s) for s in step.sibling_sums],
                    "direction": step.direction,
                }
                for step in self.path.steps
            ],
            "root": {"hash": hex(self.root.hash), "sums": [str(s) for s in self.root.sums]},
            "binding": self.binding.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InclusionBundle":
        try:
            leaf = Leaf(identity=int(data["identity"], 16), balances=tuple(int(b) for b in data["balances"]))
            steps = tuple(
                PathStep(
                    sibling_hash=int(s["hash"], 16),
                    sibling_sums=tuple(int(v) for v in s["sums"]),
                    direction=int(s["direction"]),
                )
                for s in data["siblings"]
            )
            root = Node(hash=int(data["root"]["hash"], 16), sums=tuple(int(v) for v in data["root"]["sums"]))
            path = InclusionPath(leaf_index=int(data["leaf_index"]), leaf=leaf, steps=steps)
            return cls(path=path, root=root, binding=bytes.fromhex(data["binding"]))
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedInput(f"invalid inclusion bundle: {e}") from e


def issue(tree: MerkleSumTree, leaf_index: int) -> InclusionBundle:
    path = tree.inclusion_path(leaf_index)
    root = tree.root
    return InclusionBundle(path=path, root=root, binding=binding_digest(path, root))


def issue_all(tree: MerkleSumTree) -> List[InclusionBundle]:
    """Bundles for every real (non-padding) leaf."""
    return [issue(tree, i) for i in range(tree.leaf_count)]


def self_verify(bundle: InclusionBundle, claimed_root: Union[Node, int]) -> bool:
    """
    User-side check of an inclusion bundle.

    claimed_root is the published root node, or just its hash. The bundle must
    have been issued against that root, must be internally bound and its path
    must hash up to the root.
    """
    root_hash = claimed_root.hash if isinstance(claimed_root, Node) else claimed_root
    if bundle.root.hash != root_hash:
        logger.info("inclusion_rejected", reason="root_mismatch", leaf_index=bundle.leaf_index)
        return False
    if isinstance(claimed_root, Node) and bundle.root.sums != claimed_root.sums:
        logger.info("inclusion_rejected", reason="root_sums_mismatch", leaf_index=bundle.leaf_index)
        return False
    if binding_digest(bundle.path, bundle.root) != bundle.binding:
        logger.info("inclusion_rejected", reason="binding_mismatch", leaf_index=bundle.leaf_index)
        return False
    if any(b < 0 for b in bundle.leaf.balances):
        return False
    if not verify_path(bundle.path, bundle.root):
        logger.info("inclusion_rejected", reason="path_mismatch", leaf_index=bundle.leaf_index)
        return False
    # direction bits must spell out the claimed leaf index
    index_bits = sum(step.direction << level for level, step in enumerate(bundle.path.steps))
    return index_bits == bundle.leaf_index
