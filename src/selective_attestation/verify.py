"""
selective_attestation/verify.py
Proof verification - needs only the proof and a root, never the hidden fields.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from .crypto import DIGEST_SIZE, constant_time_compare, hash_internal, hash_leaf
from .errors import (
    AttestationError,
    InputError,
    MalformedProofError,
    ProofError,
    RootMismatchError,
    RootNotPublishedError,
)
from .fields import encode_value
from .ledger import LedgerReader, utc_now
from .merkle import MerkleProof, MerkleTree, PathStep, RevealedField
from .schemas import RecordSchema
from .signing import verify_signature

BUNDLE_VERSION = '1.0.0'


@dataclass
class VerificationResult:
    """Outcome of verifying a proof: overall and per revealed field."""
    is_valid: bool
    fields: Dict[str, bool] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)
    error_message: str = ""


RootLike = Union[bytes, str]


def as_digest(value: RootLike, what: str = "root") -> bytes:
    """Return a 32-byte digest given as bytes or (0x-)hex text.

    Raises:
        MalformedProofError: If value is not a well-formed digest
    """
    if isinstance(value, str):
        text = value[2:] if value.startswith('0x') else value
        try:
            value = bytes.fromhex(text)
        except ValueError:
            raise MalformedProofError(f"Invalid {what}: not hex") from None
    if not isinstance(value, (bytes, bytearray)):
        raise MalformedProofError(f"Invalid {what}: {type(value).__name__}")
    if len(value) != DIGEST_SIZE:
        raise MalformedProofError(f"Invalid {what}: expected {DIGEST_SIZE} bytes")
    return bytes(value)


def level_sizes(leaf_count: int) -> List[int]:
    """Node count of every level from the leaves up to the root."""
    sizes = [leaf_count]
    while sizes[-1] > 1:
        sizes.append((sizes[-1] + 1) // 2)
    return sizes


def fold_path(leaf_digest: bytes, path: Sequence[PathStep]) -> bytes:
    """Recompute a root from a leaf digest and its authentication path."""
    current = leaf_digest
    for step in path:
        if step.sibling_is_right:
            current = hash_internal(current, step.sibling)
        else:
            current = hash_internal(step.sibling, current)
    return current


def _check_path_shape(
    index: int,
    leaf_count: int,
    leaf_digest: bytes,
    path: Sequence[PathStep]
) -> None:
    """Check that a path has the exact shape the tree builder produces.

    The last node of an odd level is paired with itself: its step must sit
    on the right and repeat the running digest.
    """
    sizes = level_sizes(leaf_count)
    if len(path) != len(sizes) - 1:
        raise MalformedProofError(
            f"Path length {len(path)} does not match a tree of {leaf_count} leaves"
        )

    current = leaf_digest
    for step, size in zip(path, sizes):
        is_left_child = index % 2 == 0
        if step.sibling_is_right != is_left_child:
            raise MalformedProofError(f"Sibling on wrong side at position {index}")
        if is_left_child and index == size - 1:
            if not constant_time_compare(step.sibling, current):
                raise MalformedProofError(f"Expected duplicated node at position {index}")
        current = fold_path(current, [step])
        index //= 2


def _check_schema(item: RevealedField, schema: RecordSchema) -> None:
    leaf = item.leaf
    try:
        declared = schema.get_field(leaf.name)
    except InputError:
        raise MalformedProofError(
            f"Field {leaf.name} is not part of schema {schema.name}"
        ) from None
    if declared.index != leaf.index or declared.field_type != leaf.field_type:
        raise MalformedProofError(
            f"Field {leaf.name} is declared as {declared.field_type.value} "
            f"at index {declared.index}"
        )


def check_field(
    item: RevealedField,
    proof: MerkleProof,
    schema: Optional[RecordSchema] = None
) -> None:
    """Recompute one revealed leaf and fold it to the proof root.

    The leaf digest is always recomputed from (index, type, value); the
    digest carried in the proof is ignored.

    Raises:
        MalformedProofError: Bad index, value, path shape or schema binding
        RootMismatchError: The leaf does not fold to proof.root
    """
    leaf = item.leaf
    if schema is not None:
        _check_schema(item, schema)
    if isinstance(leaf.index, bool) or not isinstance(leaf.index, int):
        raise MalformedProofError(f"Invalid leaf index: {leaf.index!r}")
    if not 0 <= leaf.index < proof.leaf_count:
        raise MalformedProofError(
            f"Leaf index {leaf.index} outside a tree of {proof.leaf_count} leaves"
        )

    try:
        digest = hash_leaf(leaf.index, encode_value(leaf.field_type, leaf.value))
    except (InputError, ValueError) as exc:
        raise MalformedProofError(f"Cannot encode field {leaf.name}: {exc}") from exc

    _check_path_shape(leaf.index, proof.leaf_count, digest, item.path)

    if not constant_time_compare(fold_path(digest, item.path), proof.root):
        raise RootMismatchError(f"Field {leaf.name} does not fold to the proof root")


def _require_digest(value: object, what: str) -> None:
    if not isinstance(value, bytes) or len(value) != DIGEST_SIZE:
        raise MalformedProofError(f"Invalid {what}: expected {DIGEST_SIZE} bytes")


def _check_structure(proof: MerkleProof) -> None:
    if not proof.revealed:
        raise MalformedProofError("Proof must reveal at least one field")
    _require_digest(proof.root, "proof root")
    for item in proof.revealed:
        for step in item.path:
            _require_digest(step.sibling, "sibling digest")
            if not isinstance(step.sibling_is_right, bool):
                raise MalformedProofError("Invalid sibling position")
    if isinstance(proof.leaf_count, bool) or not isinstance(proof.leaf_count, int) \
            or proof.leaf_count < 1:
        raise MalformedProofError(f"Invalid leaf count: {proof.leaf_count!r}")
    indices = [item.leaf.index for item in proof.revealed]
    if len(set(indices)) != len(indices):
        raise MalformedProofError("Proof reveals the same leaf index twice")
    names = [item.leaf.name for item in proof.revealed]
    if len(set(names)) != len(names):
        raise MalformedProofError("Proof reveals the same field name twice")


def check_proof(
    proof: MerkleProof,
    expected_root: RootLike,
    schema: Optional[RecordSchema] = None
) -> None:
    """Validate a proof against an externally known root, raising on failure.

    Raises:
        MalformedProofError: Structural problems with the proof
        RootMismatchError: A revealed leaf does not fold to proof.root
        RootNotPublishedError: proof.root is not expected_root
    """
    expected_root = as_digest(expected_root, "expected root")
    _check_structure(proof)
    for item in proof.revealed:
        check_field(item, proof, schema)
    if not constant_time_compare(proof.root, expected_root):
        raise RootNotPublishedError("Proof root does not match the published root")


def verify_proof(proof: MerkleProof, expected_root: RootLike) -> bool:
    """Verify a selective-disclosure proof. Fails closed.

    Uses constant-time comparison for every digest check.

    Args:
        proof: MerkleProof with revealed leaves and their paths
        expected_root: Root obtained independently of the proof, as bytes
            or (0x-)hex

    Returns:
        True only if every revealed field belongs to the tree with that root
    """
    try:
        check_proof(proof, expected_root)
    except ProofError:
        return False
    return True


def verify_proof_detailed(
    proof: MerkleProof,
    expected_root: RootLike,
    schema: Optional[RecordSchema] = None
) -> VerificationResult:
    """Verify a proof and report validity per revealed field.

    With a schema, each revealed name and type must also match the index
    the schema declares for it.
    """
    try:
        expected_root = as_digest(expected_root, "expected root")
        _check_structure(proof)
    except ProofError as e:
        return VerificationResult(is_valid=False, error_message=str(e))

    root_matches = constant_time_compare(proof.root, expected_root)
    errors = []
    result = VerificationResult(is_valid=False)

    for item in proof.revealed:
        result.values[item.leaf.name] = item.leaf.value
        try:
            check_field(item, proof, schema)
            result.fields[item.leaf.name] = root_matches
        except ProofError as e:
            result.fields[item.leaf.name] = False
            errors.append(str(e))

    if not root_matches:
        errors.append("Proof root does not match the published root")

    result.is_valid = not errors
    result.error_message = "; ".join(errors)
    return result


def verify_published(
    proof: MerkleProof,
    uid: str,
    reader: LedgerReader,
    now: Optional[datetime] = None,
    schema: Optional[RecordSchema] = None
) -> VerificationResult:
    """Verify a proof against the root published for uid.

    Unknown, revoked or expired attestations never verify.
    """
    entry = reader.fetch_record(uid)
    if entry is None:
        return VerificationResult(
            is_valid=False,
            error_message=f"Attestation not published: {uid}"
        )
    if entry.revoked:
        return VerificationResult(is_valid=False, error_message=f"Attestation revoked: {uid}")
    if entry.is_expired(now or utc_now()):
        return VerificationResult(is_valid=False, error_message=f"Attestation expired: {uid}")
    return verify_proof_detailed(proof, entry.root, schema)


def create_disclosure_bundle(
    tree: MerkleTree,
    fields_to_disclose: Sequence[str],
    uid: Optional[str] = None,
    schema_id: Optional[str] = None,
    signature: Optional[bytes] = None
) -> Dict[str, Any]:
    """Create a self-contained bundle for sharing a disclosure.

    The bundle carries the proof and, for witnessed records, the
    witness signature over the root.

    Returns:
        Dict ready for JSON serialization
    """
    proof = tree.generate_proof(fields_to_disclose)
    return {
        'version': BUNDLE_VERSION,
        'merkle_root': tree.root.hex(),
        'uid': uid,
        'schema_id': schema_id,
        'signature': signature.hex() if signature is not None else None,
        'proof': proof.to_dict(),
    }


def verify_bundle(
    bundle_json: Union[str, Dict[str, Any]],
    expected_root: Optional[RootLike] = None,
    public_key: Union[bytes, str, None] = None
) -> VerificationResult:
    """Verify a disclosure bundle offline.

    With expected_root, the proof must match that root. With public_key,
    the bundle's Ed25519 signature over its root must also verify. With
    neither, only internal consistency is checked.
    """
    try:
        bundle = json.loads(bundle_json) if isinstance(bundle_json, str) else bundle_json
        proof = MerkleProof.from_dict(bundle['proof'])
        bundle_root = bytes.fromhex(bundle['merkle_root'])
    except (AttestationError, KeyError, TypeError, ValueError) as e:
        return VerificationResult(is_valid=False, error_message=str(e))

    if not constant_time_compare(proof.root, bundle_root):
        return VerificationResult(
            is_valid=False,
            error_message="Bundle root does not match proof root"
        )

    if public_key is not None:
        signature = bundle.get('signature')
        if not signature or not verify_signature(bundle_root, signature, public_key):
            return VerificationResult(
                is_valid=False,
                values=proof.revealed_values(),
                error_message="Signature verification failed"
            )

    root = expected_root if expected_root is not None else bundle_root
    return verify_proof_detailed(proof, root)
