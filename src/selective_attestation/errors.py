"""
selective_attestation/errors.py
Exception taxonomy shared by every layer of the engine.
"""


class AttestationError(Exception):
    """Base class for all errors raised by selective_attestation."""


# Input errors: caller must correct the input, never retried.

class InputError(AttestationError, ValueError):
    """Invalid input rejected before any hashing or ledger activity."""


class TypeMismatchError(InputError):
    """A field value does not match its declared type."""


class UnsupportedTypeError(InputError):
    """A declared type is outside the supported set."""


class EmptyRecordError(InputError):
    """A record must commit to at least one field."""


class DuplicateFieldError(InputError):
    """A field name appears more than once in a record."""


class FieldNotFoundError(InputError, KeyError):
    """A requested field is not part of the tree."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class SchemaMismatchError(InputError):
    """Record fields do not follow the layout the schema declares."""


class EmptyBatchError(InputError):
    """A batch operation was called with no items."""


class BatchDisclosureError(InputError):
    """A batch request asked for non-public disclosure."""


# Structural / cryptographic errors: verification fails closed.

class ProofError(AttestationError):
    """A proof could not be validated."""


class MalformedProofError(ProofError):
    """Proof structure is inconsistent (empty, duplicate indices, bad path)."""


class RootMismatchError(ProofError):
    """A revealed leaf does not fold to the proof root."""


class RootNotPublishedError(ProofError):
    """The proof root is not the externally known root."""


# Lifecycle errors: terminal for the call, never mutate local state.

class LifecycleError(AttestationError):
    """An attestation lifecycle transition was refused."""


class NotRevocableError(LifecycleError):
    """The attestation was created with revocable=False."""


class AlreadyRevokedError(LifecycleError):
    """The attestation has already been revoked."""


class SchemaNotConfiguredError(LifecycleError):
    """No schema identifier is registered for a logical record type."""


class NotFoundError(LifecycleError, LookupError):
    """No attestation exists with the given uid."""


# Collaborator errors: surfaced with the underlying cause chained.

class CollaboratorError(AttestationError):
    """An external collaborator failed."""


class PublicationError(CollaboratorError):
    """The ledger publisher failed or timed out."""


class SigningError(CollaboratorError):
    """The message signer refused or failed to sign."""
