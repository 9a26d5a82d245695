"""
Hashing & commitment — certificate content hashes and batch Merkle trees.

Field hashing: every canonical field value is SHA-256 hashed on its own,
the ``{field: hash}`` mapping is serialised as compact JSON in the fixed
field order below and hashed again. Field order is fixed here, never taken
from the caller, so the same values always produce the same hash.

Merkle tree: the OpenZeppelin standard tree over single ``string`` values.
A leaf is keccak(keccak(abi.encode(value))), node pairs are hashed in
sorted order, so a proof verifies without the leaf position, the way
``verifyBatchCertification`` checks it on-chain. Leaves keep row order
(they are not sorted), so a reordering that changes how rows pair up
changes the root; callers keep ingestion order up to proof assignment.

    tree = build_merkle_tree([hash_batch_row(row) for row in rows]).value()
    proof = proof_for(tree, 2)
    assert verify_membership(tree.root, tree.leaves[2], proof.siblings)
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from eth_abi import encode as abi_encode
from eth_utils import keccak
from railway import ErrorCode, Result

from cert_ledger.domain import messages
from cert_ledger.domain.models import NEVER_EXPIRES, CertificateDraft

CANONICAL_FIELDS = (
    "Certificate_Number",
    "name",
    "courseName",
    "Grant_Date",
    "Expiration_Date",
)


def sha256_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


# ─────────────────────── Content hashes ───────────────────────


def canonical_fields(draft: CertificateDraft) -> dict[str, str]:
    return {
        "Certificate_Number": draft.certificate_number,
        "name": draft.name,
        "courseName": draft.course,
        "Grant_Date": draft.grant_date,
        "Expiration_Date": draft.expiration_date,
    }


def hash_fields(fields: Mapping[str, str]) -> str:
    """
    Content hash of a certificate's canonical field set.

    Raises KeyError when a canonical field is missing; extra keys are ignored.
    """
    hashed = {name: sha256_hex(str(fields[name])) for name in CANONICAL_FIELDS}
    return sha256_hex(json.dumps(hashed, separators=(",", ":")))


def hash_certificate(draft: CertificateDraft) -> str:
    return hash_fields(canonical_fields(draft))


def hash_batch_row(values: Sequence[object]) -> str:
    """Leaf hash of a batch row: missing values read as the sentinel, then concatenated."""
    text = "".join(NEVER_EXPIRES if value is None else str(value) for value in values)
    return sha256_hex(text)


# ─────────────────────── Merkle tree ───────────────────────


@dataclass(frozen=True, slots=True)
class MerkleTree:
    """
    Complete binary tree in array form: ``nodes[0]`` is the root, children
    of ``i`` sit at ``2i + 1`` and ``2i + 2``.

    ``leaves`` keeps the leaf values in row order; leaf ``i`` is stored at
    ``nodes[len(nodes) - 1 - i]``.
    """

    leaves: tuple[str, ...]
    nodes: tuple[bytes, ...]

    @property
    def root(self) -> bytes:
        return self.nodes[0]

    @property
    def hex_root(self) -> str:
        return "0x" + self.root.hex()

    def __len__(self) -> int:
        return len(self.leaves)


@dataclass(frozen=True, slots=True)
class MerkleProof:
    """Sibling path for one leaf. ``leaf_index`` is the row position; verification does not need it."""

    leaf_index: int
    siblings: tuple[bytes, ...]

    def hex_siblings(self) -> tuple[str, ...]:
        return tuple("0x" + s.hex() for s in self.siblings)


def _node_bytes(node: str | bytes) -> bytes:
    if isinstance(node, bytes):
        return node
    text = node[2:] if node.startswith("0x") else node
    return bytes.fromhex(text)


def hash_leaf(leaf: str) -> bytes:
    """Standard leaf hash: keccak twice over the ABI-encoded string."""
    return keccak(keccak(abi_encode(["string"], [leaf])))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Commutative node hash; the smaller child goes first."""
    return keccak(a + b) if a <= b else keccak(b + a)


def build_merkle_tree(leaf_hashes: Sequence[str]) -> Result[MerkleTree]:
    """
    Build a Merkle tree over the leaves in the given order.

    Leaves are the batch rows' certificate hashes as text. An empty
    sequence is a VALIDATION_ERROR.
    """
    if not leaf_hashes:
        return Result.failure(ErrorCode.VALIDATION_ERROR, messages.EMPTY_BATCH)
    return Result.success(_build(tuple(leaf_hashes)))


def _build(leaves: tuple[str, ...]) -> MerkleTree:
    size = 2 * len(leaves) - 1
    nodes: list[bytes] = [b""] * size
    for index, leaf in enumerate(leaves):
        nodes[size - 1 - index] = hash_leaf(leaf)
    for i in range(size - 1 - len(leaves), -1, -1):
        nodes[i] = hash_pair(nodes[2 * i + 1], nodes[2 * i + 2])
    return MerkleTree(leaves=leaves, nodes=tuple(nodes))


def proof_for(tree: MerkleTree, index: int) -> MerkleProof:
    """Sibling path for leaf ``index``. Raises IndexError for an out-of-range index."""
    if not 0 <= index < len(tree):
        raise IndexError(f"Leaf index {index} out of range for {len(tree)} leaves")
    siblings: list[bytes] = []
    position = len(tree.nodes) - 1 - index
    while position > 0:
        siblings.append(tree.nodes[position + 1 if position % 2 else position - 1])
        position = (position - 1) // 2
    return MerkleProof(leaf_index=index, siblings=tuple(siblings))


def encode_proof(proof: MerkleProof) -> str:
    """Compact lookup key for a proof: SHA-256 over the concatenated sibling bytes."""
    return "0x" + sha256_hex(b"".join(proof.siblings))


def verify_membership(root: bytes, leaf: str, siblings: Sequence[str | bytes]) -> bool:
    """Fold the sibling path into the leaf hash and compare with the root, as the contract does."""
    node = hash_leaf(leaf)
    for sibling in siblings:
        node = hash_pair(node, _node_bytes(sibling))
    return node == root
