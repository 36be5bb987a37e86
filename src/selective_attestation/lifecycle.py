"""
selective_attestation/lifecycle.py
Attestation lifecycle: create, revoke, batch operations and queries.

Trees are always fully built before anything is handed to the ledger, and
local state changes only after the ledger confirms.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .config import AttestationConfig
from .crypto import canonical_json, sha256, short_hex
from .errors import (
    AlreadyRevokedError,
    BatchDisclosureError,
    EmptyBatchError,
    InputError,
    NotFoundError,
    NotRevocableError,
    PublicationError,
    SigningError,
)
from .fields import Field
from .ledger import Clock, LedgerPublisher, PublishRequest, utc_now
from .merkle import MerkleTree
from .signing import MessageSigner
from .tiers import DisclosureLevel

logger = logging.getLogger(__name__)


class AttestationStatus(Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class AttestationRecord:
    """Metadata of one issued attestation. The field values are not kept here."""
    uid: str
    schema_id: str
    subject: str
    issued_at: datetime
    revocable: bool
    root: bytes
    field_count: int
    record_type: str = ""
    expiration_time: int = 0  # unix seconds, 0 = never
    revoked_at: Optional[datetime] = None
    witness_signature: Optional[bytes] = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def witnessed(self) -> bool:
        return self.witness_signature is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_time != 0 and now.timestamp() >= self.expiration_time

    def status(self, now: Optional[datetime] = None) -> AttestationStatus:
        if self.revoked:
            return AttestationStatus.REVOKED
        if self.is_expired(now or utc_now()):
            return AttestationStatus.EXPIRED
        return AttestationStatus.ACTIVE

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.status(now) is AttestationStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'uid': self.uid,
            'schema_id': self.schema_id,
            'subject': self.subject,
            'record_type': self.record_type,
            'issued_at': self.issued_at.isoformat(),
            'revocable': self.revocable,
            'revoked': self.revoked,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
            'expiration_time': self.expiration_time,
            'root': self.root.hex(),
            'field_count': self.field_count,
            'witness_signature': (
                self.witness_signature.hex() if self.witness_signature else None
            ),
        }


@dataclass(frozen=True)
class AttestationRequest:
    """One record to attest in a batch."""
    record_type: str
    subject: str
    fields: Sequence[Field]
    revocable: Optional[bool] = None  # None = schema default
    expiration_time: Optional[int] = None
    disclosure: DisclosureLevel = DisclosureLevel.PUBLIC


@dataclass(frozen=True)
class PreparedRecord:
    """A validated record with its tree, ready for publication or signing."""
    schema_id: str
    tree: MerkleTree
    revocable: bool
    expiration_time: int


class RecordStore:
    """Append-only, thread-safe store of attestation records.

    Records are never deleted. revoked_at moves from None to a timestamp
    exactly once, under the store lock.
    """

    def __init__(self):
        self._records: Dict[str, AttestationRecord] = {}
        self._lock = threading.Lock()
        self._uid_locks: Dict[str, Tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, uid: str) -> Optional[AttestationRecord]:
        with self._lock:
            return self._records.get(uid)

    def insert(self, record: AttestationRecord) -> AttestationRecord:
        """Store a new record; an existing uid keeps its stored record."""
        with self._lock:
            return self._records.setdefault(record.uid, record)

    def mark_revoked(self, uid: str, revoked_at: datetime) -> AttestationRecord:
        """Compare-and-swap revoked_at from None to revoked_at.

        Raises:
            NotFoundError: Unknown uid
            AlreadyRevokedError: revoked_at was already set
        """
        with self._lock:
            record = self._records.get(uid)
            if record is None:
                raise NotFoundError(f"Attestation not found: {uid}")
            if record.revoked_at is not None:
                raise AlreadyRevokedError(f"Attestation already revoked: {uid}")
            updated = replace(record, revoked_at=revoked_at)
            self._records[uid] = updated
            return updated

    @contextmanager
    def locked(self, uids: Sequence[str]) -> Iterator[None]:
        """Hold the per-uid locks for uids, acquired in sorted order.

        A uid's lock lives only while some caller holds or waits for it.
        """
        keys = sorted(set(uids))
        with self._lock:
            locks = []
            for uid in keys:
                lock, users = self._uid_locks.get(uid, (threading.Lock(), 0))
                self._uid_locks[uid] = (lock, users + 1)
                locks.append(lock)
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            with self._lock:
                for uid in keys:
                    lock, users = self._uid_locks[uid]
                    if users == 1:
                        del self._uid_locks[uid]
                    else:
                        self._uid_locks[uid] = (lock, users - 1)

    @property
    def lock_count(self) -> int:
        """Number of per-uid locks currently held or waited on."""
        with self._lock:
            return len(self._uid_locks)


def witness_uid(
    schema_id: str,
    subject: str,
    root: bytes,
    issued_at: datetime,
    revocable: bool,
    expiration_time: int
) -> str:
    """uid of a witnessed record: hash of its canonical attestation payload."""
    payload = canonical_json({
        'expiration_time': expiration_time,
        'issued_at': int(issued_at.timestamp()),
        'revocable': revocable,
        'root': root.hex(),
        'schema': schema_id,
        'subject': subject,
    })
    return '0x' + sha256(payload).hex()


class AttestationManager:
    """Issues, revokes and looks up attestations.

    Publication goes through a LedgerPublisher; witnessed records go
    through a MessageSigner instead. Collaborator failures are raised as
    PublicationError or SigningError with the cause chained, and are never
    retried here.

    Example:
        manager = AttestationManager(
            AttestationConfig(schema_ids={"FORECAST": "0xbeeb..."}),
            publisher=InMemoryLedger(),
        )
        record = manager.create("FORECAST", subject, fields)
        proof = build_record(fields).generate_proof(["probability"])
    """

    def __init__(
        self,
        config: AttestationConfig,
        publisher: LedgerPublisher,
        store: Optional[RecordStore] = None,
        signer: Optional[MessageSigner] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config
        self.publisher = publisher
        self.store = store if store is not None else RecordStore()
        self.signer = signer
        self._clock = clock or utc_now

    def _expiration(self, expiration_time: Optional[int]) -> int:
        if expiration_time is None:
            return self.config.default_expiration
        if expiration_time < 0:
            raise InputError("expiration_time must be >= 0")
        return expiration_time

    def _record(
        self,
        uid: str,
        record_type: str,
        subject: str,
        prepared: PreparedRecord,
        issued_at: datetime,
        witness_signature: Optional[bytes] = None
    ) -> AttestationRecord:
        return AttestationRecord(
            uid=uid,
            schema_id=prepared.schema_id,
            subject=subject,
            issued_at=issued_at,
            revocable=prepared.revocable,
            root=prepared.tree.root,
            field_count=prepared.tree.leaf_count,
            record_type=record_type.upper(),
            expiration_time=prepared.expiration_time,
            witness_signature=witness_signature,
        )

    def _revocable(self, record_type: str, revocable: Optional[bool]) -> bool:
        schema = self.config.schema_for(record_type)
        if schema is None or schema.revocable:
            return True if revocable is None else revocable
        if revocable:
            raise InputError(f"{record_type} attestations cannot be revocable")
        return False

    def _prepare(
        self,
        record_type: str,
        fields: Sequence[Field],
        revocable: Optional[bool],
        expiration_time: Optional[int]
    ) -> PreparedRecord:
        """Validate a record against its configuration and build its tree.

        Nothing external is called here; every input error surfaces first.
        """
        schema_id = self.config.schema_id_for(record_type)
        resolved = self._revocable(record_type, revocable)
        expiration = self._expiration(expiration_time)
        tree = MerkleTree.from_fields(fields)
        schema = self.config.schema_for(record_type)
        if schema is not None:
            schema.check_fields(fields)
        return PreparedRecord(schema_id, tree, resolved, expiration)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        record_type: str,
        subject: str,
        fields: Sequence[Field],
        revocable: Optional[bool] = None,
        expiration_time: Optional[int] = None
    ) -> AttestationRecord:
        """Commit to a record and publish its root.

        Retrying after a timeout republishes the same root, which the
        ledger treats as the idempotency key.

        The field values stay with the caller; rebuild the tree with
        build_record(fields) to generate proofs later.

        Args:
            record_type: Logical record type, e.g. "FORECAST"
            subject: Address or identifier the record is about
            fields: Record fields, in the schema's declared order when the
                type has a registered schema
            revocable: None takes the schema's default; True is refused for
                permanent record types
            expiration_time: Unix seconds, 0 = never; None takes the
                configured default

        Raises:
            SchemaNotConfiguredError: No schema registered for record_type
            SchemaMismatchError: Fields do not follow the declared layout
            EmptyRecordError, TypeMismatchError, DuplicateFieldError: Bad fields
            InputError: revocable=True for a permanent record type
            PublicationError: The ledger call failed; nothing is stored
        """
        prepared = self._prepare(record_type, fields, revocable, expiration_time)
        tree = prepared.tree

        try:
            uid = self.publisher.publish(
                prepared.schema_id, subject, tree.root,
                prepared.revocable, prepared.expiration_time,
            )
        except Exception as exc:
            logger.warning(
                "Publication failed for %s root=%s: %s",
                record_type, short_hex(tree.root), exc,
            )
            raise PublicationError(f"Failed to publish {record_type} attestation") from exc

        record = self.store.insert(self._record(
            uid, record_type, subject, prepared, self._clock(),
        ))
        logger.info(
            "Attestation %s created: type=%s subject=%s fields=%d root=%s",
            uid, record.record_type, subject, tree.leaf_count, short_hex(tree.root),
        )
        return record

    def create_witnessed(
        self,
        record_type: str,
        subject: str,
        fields: Sequence[Field],
        revocable: Optional[bool] = None,
        expiration_time: Optional[int] = None
    ) -> AttestationRecord:
        """Commit to a record witnessed by a signature over its root.

        No ledger publication happens; the signer's signature over the root
        stands in for it. Validation is the same as for create().

        Raises:
            SchemaNotConfiguredError: No schema registered for record_type
            SigningError: No signer configured, or the signer failed
        """
        prepared = self._prepare(record_type, fields, revocable, expiration_time)
        tree = prepared.tree

        if self.signer is None:
            raise SigningError("No message signer configured for witnessed attestations")
        try:
            signature = self.signer.sign(tree.root)
        except Exception as exc:
            raise SigningError(f"Signer rejected {record_type} root") from exc

        issued_at = self._clock()
        uid = witness_uid(
            prepared.schema_id, subject, tree.root, issued_at,
            prepared.revocable, prepared.expiration_time,
        )
        record = self.store.insert(self._record(
            uid, record_type, subject, prepared, issued_at, witness_signature=signature,
        ))
        logger.info(
            "Witnessed attestation %s created: type=%s subject=%s root=%s",
            uid, record.record_type, subject, short_hex(tree.root),
        )
        return record

    def batch_create(
        self,
        requests: Sequence[AttestationRequest]
    ) -> List[AttestationRecord]:
        """Publish several records in one all-or-nothing ledger call.

        Only fully public records can be batched. Every request is
        validated before the ledger is called.

        Raises:
            EmptyBatchError: requests is empty
            BatchDisclosureError: A request asks for non-public disclosure
            PublicationError: The publisher is not atomic, or the call failed
        """
        if not requests:
            raise EmptyBatchError("No attestations provided")

        prepared = []
        for request in requests:
            if request.disclosure != DisclosureLevel.PUBLIC:
                logger.warning(
                    "Rejected batch: %s request asks for %s disclosure",
                    request.record_type, request.disclosure.value,
                )
                raise BatchDisclosureError(
                    "Batch attestations only support public attestations"
                )
            prepared.append((request, self._prepare(
                request.record_type, request.fields,
                request.revocable, request.expiration_time,
            )))

        self._require_atomic_batches()
        publish_requests = [
            PublishRequest(
                item.schema_id, request.subject, item.tree.root,
                item.revocable, item.expiration_time,
            )
            for request, item in prepared
        ]
        try:
            uids = self.publisher.batch_publish(publish_requests)
        except Exception as exc:
            logger.warning("Batch publication of %d attestations failed: %s", len(prepared), exc)
            raise PublicationError("Failed to publish attestation batch") from exc
        if len(uids) != len(prepared):
            raise PublicationError(
                f"Publisher returned {len(uids)} uids for {len(prepared)} attestations"
            )

        issued_at = self._clock()
        results = []
        for uid, (request, item) in zip(uids, prepared):
            record = self.store.insert(self._record(
                uid, request.record_type, request.subject, item, issued_at,
            ))
            results.append(record)
        logger.info("Batch of %d attestations created", len(results))
        return results

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def _check_revocable(self, uid: str) -> AttestationRecord:
        record = self.query(uid)
        if not record.revocable:
            raise NotRevocableError(f"Attestation is not revocable: {uid}")
        if record.revoked:
            raise AlreadyRevokedError(f"Attestation already revoked: {uid}")
        return record

    def revoke(self, uid: str) -> AttestationRecord:
        """Revoke one attestation.

        Concurrent revokes of one uid are serialized; exactly one succeeds
        and the rest raise AlreadyRevokedError.

        Raises:
            NotFoundError: Unknown uid
            NotRevocableError: Created with revocable=False
            AlreadyRevokedError: Already revoked
            PublicationError: The ledger call failed; nothing is changed
        """
        with self.store.locked([uid]):
            record = self._check_revocable(uid)
            if not record.witnessed:
                try:
                    self.publisher.revoke_on_ledger(uid)
                except Exception as exc:
                    logger.warning("Ledger revocation of %s failed: %s", uid, exc)
                    raise PublicationError(f"Failed to revoke {uid} on ledger") from exc
            updated = self.store.mark_revoked(uid, self._clock())

        logger.info("Attestation %s revoked", uid)
        return updated

    def batch_revoke(self, uids: Sequence[str]) -> List[AttestationRecord]:
        """Revoke several attestations in one all-or-nothing ledger call.

        Every uid is checked before the ledger is called.

        Raises:
            EmptyBatchError: uids is empty
            InputError: A uid appears twice
            NotFoundError, NotRevocableError, AlreadyRevokedError: For any uid
            PublicationError: The publisher is not atomic, or the call failed
        """
        if not uids:
            raise EmptyBatchError("No UIDs provided for revocation")
        if len(set(uids)) != len(uids):
            raise InputError("Duplicate uid in batch revocation")

        with self.store.locked(uids):
            records = [self._check_revocable(uid) for uid in uids]
            ledger_uids = [record.uid for record in records if not record.witnessed]
            if ledger_uids:
                self._require_atomic_batches()
                try:
                    self.publisher.batch_revoke(ledger_uids)
                except Exception as exc:
                    logger.warning("Batch revocation of %d attestations failed: %s", len(uids), exc)
                    raise PublicationError("Failed to revoke attestation batch") from exc

            revoked_at = self._clock()
            updated = [self.store.mark_revoked(uid, revoked_at) for uid in uids]

        logger.info("Batch of %d attestations revoked", len(updated))
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, uid: str) -> AttestationRecord:
        """Return the stored record for uid.

        Raises:
            NotFoundError: Unknown uid
        """
        record = self.store.get(uid)
        if record is None:
            raise NotFoundError(f"Attestation not found: {uid}")
        return record

    def is_valid(self, uid: str, now: Optional[datetime] = None) -> bool:
        """True if uid exists, is not revoked and has not expired."""
        record = self.store.get(uid)
        return record is not None and record.is_active(now or self._clock())

    def _require_atomic_batches(self) -> None:
        if not getattr(self.publisher, 'supports_atomic_batches', False):
            raise PublicationError("Ledger publisher does not support atomic batches")
