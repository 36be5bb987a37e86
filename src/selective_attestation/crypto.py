"""
selective_attestation/crypto.py
Hash primitives for leaves and internal nodes.
"""
import hashlib
import hmac
import json
from typing import Any

# Security constants
HASH_ALGORITHM = 'sha256'
DIGEST_SIZE = 32  # 256-bit digests for leaves, nodes and roots
INDEX_SIZE = 4  # leaf index encoded as u32 big-endian
MAX_INDEX = (1 << (8 * INDEX_SIZE)) - 1


def sha256(data: bytes) -> bytes:
    """Return the raw SHA-256 digest of data."""
    return hashlib.new(HASH_ALGORITHM, data).digest()


def index_bytes(index: int) -> bytes:
    """Encode a leaf position as a fixed-width u32.

    Raises:
        ValueError: If index is negative or does not fit in 32 bits
    """
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValueError(f"Leaf index must be an int, got {type(index).__name__}")
    if index < 0 or index > MAX_INDEX:
        raise ValueError(f"Leaf index out of u32 range: {index}")
    return index.to_bytes(INDEX_SIZE, 'big')


def hash_leaf(index: int, encoding: bytes) -> bytes:
    """Hash a canonical field encoding at its record position.

    Format: SHA256(u32be(index) || encoding)

    The index is mixed into the leaf itself, so two records that share
    one field encoding at different positions never share a leaf digest.

    Args:
        index: Position of the field in its record
        encoding: Canonical encoding of the field

    Returns:
        32-byte SHA-256 hash
    """
    return sha256(index_bytes(index) + bytes(encoding))


def hash_internal(left: bytes, right: bytes) -> bytes:
    """Hash an internal node from two children.

    Format: SHA256(left_hash || right_hash)

    Args:
        left: 32-byte hash of left child
        right: 32-byte hash of right child

    Returns:
        32-byte SHA-256 hash
    """
    return sha256(left + right)


def canonical_json(data: Any) -> bytes:
    """Produce deterministic JSON for hashing and signing payloads.

    Sorted keys and compact separators, so identical input always
    produces identical bytes regardless of dict ordering.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False
    ).encode('utf-8')


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """Compare two byte strings in constant time.

    Always use this for digest comparisons; == leaks how many
    leading bytes matched.
    """
    return hmac.compare_digest(a, b)


def short_hex(digest: bytes) -> str:
    """First 16 hex characters of a digest, for log lines."""
    return digest.hex()[:16]
