"""
selective-attestation: Selective-disclosure attestations over indexed Merkle trees.

Commit to a record of typed fields with a single root, publish the root,
and later prove any subset of the fields without revealing the rest.
"""

from .crypto import (
    hash_leaf,
    hash_internal,
    constant_time_compare,
    DIGEST_SIZE,
)

from .errors import (
    AttestationError,
    InputError,
    TypeMismatchError,
    UnsupportedTypeError,
    EmptyRecordError,
    DuplicateFieldError,
    FieldNotFoundError,
    SchemaMismatchError,
    EmptyBatchError,
    BatchDisclosureError,
    ProofError,
    MalformedProofError,
    RootMismatchError,
    RootNotPublishedError,
    LifecycleError,
    NotRevocableError,
    AlreadyRevokedError,
    SchemaNotConfiguredError,
    NotFoundError,
    CollaboratorError,
    PublicationError,
    SigningError,
)

from .fields import (
    Field,
    FieldType,
    canonical_encoding,
    encode_value,
)

from .schemas import (
    RecordSchema,
    BUILTIN_SCHEMAS,
    FORECAST,
    CALIBRATION,
    IDENTITY,
    SUPERFORECASTER,
    REPUTATION,
    PRIVATE_DATA,
)

from .merkle import (
    MerkleLeaf,
    MerkleProof,
    MerkleTree,
    PathStep,
    RecordBuilder,
    RevealedField,
    build_record,
    generate_proof,
)

from .verify import (
    VerificationResult,
    check_proof,
    verify_proof,
    verify_proof_detailed,
    verify_published,
    create_disclosure_bundle,
    verify_bundle,
)

from .tiers import (
    DisclosureLevel,
    DisclosurePolicy,
    PolicyProofBundle,
)

from .signing import (
    MessageSigner,
    Ed25519Signer,
    verify_signature,
)

from .ledger import (
    InMemoryLedger,
    LedgerEntry,
    LedgerPublisher,
    LedgerReader,
    PublishRequest,
)

from .config import AttestationConfig

from .lifecycle import (
    AttestationManager,
    AttestationRecord,
    AttestationRequest,
    AttestationStatus,
    RecordStore,
)

__version__ = "0.1.0"

__all__ = [
    # Crypto
    "hash_leaf",
    "hash_internal",
    "constant_time_compare",
    "DIGEST_SIZE",
    # Errors
    "AttestationError",
    "InputError",
    "TypeMismatchError",
    "UnsupportedTypeError",
    "EmptyRecordError",
    "DuplicateFieldError",
    "FieldNotFoundError",
    "SchemaMismatchError",
    "EmptyBatchError",
    "BatchDisclosureError",
    "ProofError",
    "MalformedProofError",
    "RootMismatchError",
    "RootNotPublishedError",
    "LifecycleError",
    "NotRevocableError",
    "AlreadyRevokedError",
    "SchemaNotConfiguredError",
    "NotFoundError",
    "CollaboratorError",
    "PublicationError",
    "SigningError",
    # Fields
    "Field",
    "FieldType",
    "canonical_encoding",
    "encode_value",
    # Schemas
    "RecordSchema",
    "BUILTIN_SCHEMAS",
    "FORECAST",
    "CALIBRATION",
    "IDENTITY",
    "SUPERFORECASTER",
    "REPUTATION",
    "PRIVATE_DATA",
    # Merkle
    "MerkleLeaf",
    "MerkleProof",
    "MerkleTree",
    "PathStep",
    "RecordBuilder",
    "RevealedField",
    "build_record",
    "generate_proof",
    # Verify
    "VerificationResult",
    "check_proof",
    "verify_proof",
    "verify_proof_detailed",
    "verify_published",
    "create_disclosure_bundle",
    "verify_bundle",
    # Tiers
    "DisclosureLevel",
    "DisclosurePolicy",
    "PolicyProofBundle",
    # Signing
    "MessageSigner",
    "Ed25519Signer",
    "verify_signature",
    # Ledger
    "InMemoryLedger",
    "LedgerEntry",
    "LedgerPublisher",
    "LedgerReader",
    "PublishRequest",
    # Lifecycle
    "AttestationConfig",
    "AttestationManager",
    "AttestationRecord",
    "AttestationRequest",
    "AttestationStatus",
    "RecordStore",
    # Meta
    "__version__",
]
