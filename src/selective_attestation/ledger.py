"""
selective_attestation/ledger.py
Ledger collaborator interfaces and an in-memory ledger.

The engine never talks to a chain directly. A LedgerPublisher publishes
roots and revocations; a LedgerReader returns what was published.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .crypto import canonical_json, sha256, short_hex

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PublishRequest:
    """One root to publish, as handed to the ledger."""
    schema_id: str
    subject: str
    root: bytes
    revocable: bool
    expiration_time: int = 0  # unix seconds, 0 = never


@dataclass(frozen=True)
class LedgerEntry:
    """Published state of one attestation, as read back from the ledger."""
    uid: str
    schema_id: str
    subject: str
    root: bytes
    revocable: bool
    expiration_time: int
    published_at: datetime
    revoked_at: Optional[datetime] = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_time != 0 and now.timestamp() >= self.expiration_time


class LedgerPublisher(Protocol):
    """Publishes attestation roots and revocations.

    batch_publish and batch_revoke must either apply every item or fail
    the whole call; supports_atomic_batches advertises that guarantee.
    """
    supports_atomic_batches: bool

    def publish(
        self,
        schema_id: str,
        subject: str,
        root: bytes,
        revocable: bool,
        expiration_time: int
    ) -> str:
        ...

    def revoke_on_ledger(self, uid: str) -> None:
        ...

    def batch_publish(self, requests: Sequence[PublishRequest]) -> List[str]:
        ...

    def batch_revoke(self, uids: Sequence[str]) -> None:
        ...


class LedgerReader(Protocol):
    """Reads back published attestations."""

    def fetch_record(self, uid: str) -> Optional[LedgerEntry]:
        ...


def publication_uid(schema_id: str, subject: str, root: bytes) -> str:
    """Deterministic uid for a publication; the root is the idempotency key."""
    payload = canonical_json({
        'root': root.hex(),
        'schema': schema_id,
        'subject': subject,
    })
    return '0x' + sha256(payload).hex()


class LedgerRejected(RuntimeError):
    """The in-memory ledger refused an operation."""


class InMemoryLedger:
    """Thread-safe in-memory LedgerPublisher and LedgerReader.

    Publishing the same (schema, subject, root) twice returns the same uid,
    so retried publications are idempotent. Batch calls validate every item
    before applying any.

    Attributes:
        calls: (operation, argument count) for every call received
        fail_with: if set, the next call raises this exception and clears it
    """

    supports_atomic_batches = True

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._entries: Dict[str, LedgerEntry] = {}
        self._lock = threading.Lock()
        self.calls: List[Tuple[str, int]] = []
        self.fail_with: Optional[BaseException] = None

    def _record_call(self, operation: str, count: int = 1) -> None:
        self.calls.append((operation, count))
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    def _new_entry(self, request: PublishRequest) -> LedgerEntry:
        return LedgerEntry(
            uid=publication_uid(request.schema_id, request.subject, request.root),
            schema_id=request.schema_id,
            subject=request.subject,
            root=request.root,
            revocable=request.revocable,
            expiration_time=request.expiration_time,
            published_at=self._clock(),
        )

    def _check_revocable(self, uid: str) -> LedgerEntry:
        entry = self._entries.get(uid)
        if entry is None:
            raise LedgerRejected(f"Unknown attestation: {uid}")
        if not entry.revocable:
            raise LedgerRejected(f"Attestation is not revocable: {uid}")
        if entry.revoked:
            raise LedgerRejected(f"Attestation already revoked: {uid}")
        return entry

    def publish(
        self,
        schema_id: str,
        subject: str,
        root: bytes,
        revocable: bool,
        expiration_time: int = 0
    ) -> str:
        with self._lock:
            self._record_call('publish')
            entry = self._new_entry(
                PublishRequest(schema_id, subject, root, revocable, expiration_time)
            )
            self._entries.setdefault(entry.uid, entry)
            logger.debug("Published %s root=%s", entry.uid, short_hex(root))
            return entry.uid

    def revoke_on_ledger(self, uid: str) -> None:
        with self._lock:
            self._record_call('revoke')
            entry = self._check_revocable(uid)
            self._entries[uid] = replace(entry, revoked_at=self._clock())

    def batch_publish(self, requests: Sequence[PublishRequest]) -> List[str]:
        with self._lock:
            self._record_call('batch_publish', len(requests))
            entries = [self._new_entry(request) for request in requests]
            for entry in entries:
                self._entries.setdefault(entry.uid, entry)
            return [entry.uid for entry in entries]

    def batch_revoke(self, uids: Sequence[str]) -> None:
        with self._lock:
            self._record_call('batch_revoke', len(uids))
            if len(set(uids)) != len(uids):
                raise LedgerRejected("Duplicate uid in batch revocation")
            entries = [self._check_revocable(uid) for uid in uids]
            now = self._clock()
            for entry in entries:
                self._entries[entry.uid] = replace(entry, revoked_at=now)

    def fetch_record(self, uid: str) -> Optional[LedgerEntry]:
        with self._lock:
            return self._entries.get(uid)
