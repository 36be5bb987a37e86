"""
selective_attestation/config.py
Explicit configuration for the attestation lifecycle manager.
"""
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from .errors import InputError, SchemaNotConfiguredError
from .schemas import BUILTIN_SCHEMAS, RecordSchema

SCHEMA_ENV_PREFIX = "ATTEST_SCHEMA_"
EXPIRATION_ENV = "ATTEST_DEFAULT_EXPIRATION"


@dataclass(frozen=True)
class AttestationConfig:
    """Schema registrations and defaults, passed to the manager at construction.

    schema_ids maps a logical record type ("FORECAST", "IDENTITY", ...) to
    the schema identifier registered on the ledger. record_schemas maps a record
    type to its declared field layout; types without one accept any layout.
    Record types are case-insensitive.
    """
    schema_ids: Mapping[str, str] = field(default_factory=dict)
    default_expiration: int = 0  # unix seconds, 0 = never expires
    record_schemas: Mapping[str, RecordSchema] = field(
        default_factory=lambda: dict(BUILTIN_SCHEMAS)
    )

    def __post_init__(self):
        normalized = {}
        for record_type, schema_id in self.schema_ids.items():
            if not schema_id:
                raise InputError(f"Empty schema identifier for {record_type}")
            normalized[record_type.upper()] = schema_id
        object.__setattr__(self, 'schema_ids', MappingProxyType(normalized))
        object.__setattr__(self, 'record_schemas', MappingProxyType(
            {record_type.upper(): schema for record_type, schema in self.record_schemas.items()}
        ))
        if self.default_expiration < 0:
            raise InputError("default_expiration must be >= 0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> 'AttestationConfig':
        """Build from a plain dict, e.g. parsed JSON.

        Example:
            {"schemas": {"FORECAST": "0xbeeb..."}, "default_expiration": 0}
        """
        return cls(
            schema_ids=dict(data.get('schemas', {})),
            default_expiration=int(data.get('default_expiration', 0)),
        )

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = SCHEMA_ENV_PREFIX
    ) -> 'AttestationConfig':
        """Read ATTEST_SCHEMA_<TYPE>=<schema id> variables."""
        environ = os.environ if environ is None else environ
        schema_ids = {
            key[len(prefix):]: value
            for key, value in environ.items()
            if key.startswith(prefix) and value
        }
        return cls(
            schema_ids=schema_ids,
            default_expiration=int(environ.get(EXPIRATION_ENV, "0")),
        )

    def is_configured(self, record_type: str) -> bool:
        return record_type.upper() in self.schema_ids

    def schema_for(self, record_type: str) -> Optional[RecordSchema]:
        """Declared layout for a record type, or None if it has none."""
        return self.record_schemas.get(record_type.upper())

    def schema_id_for(self, record_type: str) -> str:
        """Schema identifier for a logical record type.

        Raises:
            SchemaNotConfiguredError: If the type has no registered schema
        """
        try:
            return self.schema_ids[record_type.upper()]
        except KeyError:
            raise SchemaNotConfiguredError(
                f"{record_type} schema UID not configured"
            ) from None
