"""
selective_attestation/schemas.py
Record schemas: ordered field declarations for each logical record type.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from .errors import FieldNotFoundError, InputError, SchemaMismatchError
from .fields import Field, FieldType


@dataclass(frozen=True)
class SchemaField:
    """One declared field: position, name and type."""
    index: int
    name: str
    field_type: FieldType


@dataclass(frozen=True)
class RecordSchema:
    """Declared field layout of a logical record type.

    The definition uses the ledger schema syntax, a comma-separated list
    of "<type> <name>" pairs. Declaration order fixes the leaf index of
    every field.

    Example:
        schema = RecordSchema.parse(
            "Forecast", "uint256 probability,string marketId,string platform"
        )
        fields = schema.fields_from_mapping(
            {"probability": 7500, "marketId": "market-123", "platform": "POLYMARKET"}
        )
    """
    name: str
    definition: str
    revocable: bool = True
    description: str = ""
    fields: Tuple[SchemaField, ...] = field(default=(), compare=False)

    @classmethod
    def parse(
        cls,
        name: str,
        definition: str,
        revocable: bool = True,
        description: str = ""
    ) -> 'RecordSchema':
        """Parse a schema definition string.

        Raises:
            InputError: If the definition is empty, malformed or repeats a name
            UnsupportedTypeError: If a declared type is unknown
        """
        declared: List[SchemaField] = []
        seen = set()
        for index, part in enumerate(p.strip() for p in definition.split(',')):
            pieces = part.split()
            if len(pieces) != 2:
                raise InputError(f"Malformed schema entry: {part!r}")
            type_name, field_name = pieces
            if field_name in seen:
                raise InputError(f"Duplicate field name in schema: {field_name}")
            seen.add(field_name)
            declared.append(SchemaField(index, field_name, FieldType.parse(type_name)))

        return cls(
            name=name,
            definition=definition,
            revocable=revocable,
            description=description,
            fields=tuple(declared)
        )

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> SchemaField:
        for declared in self.fields:
            if declared.name == name:
                return declared
        raise FieldNotFoundError(f"Field not in schema {self.name}: {name}")

    def index_of(self, name: str) -> int:
        return self.get_field(name).index

    def fields_from_mapping(self, data: Mapping[str, Any]) -> List[Field]:
        """Order a name -> value mapping by declaration.

        Raises:
            InputError: If a declared field is missing or an extra key is present
            TypeMismatchError: If a value does not fit its declared type
        """
        missing = [name for name in self.field_names if name not in data]
        if missing:
            raise InputError(f"Missing fields for schema {self.name}: {', '.join(missing)}")
        extra = sorted(set(data) - set(self.field_names))
        if extra:
            raise InputError(f"Unknown fields for schema {self.name}: {', '.join(extra)}")
        return [Field.of(f.name, f.field_type, data[f.name]) for f in self.fields]

    def check_fields(self, fields: Sequence[Field]) -> None:
        """Check that fields follow the declared names, types and order.

        Raises:
            SchemaMismatchError: On a missing, extra, renamed, retyped or
                reordered field
        """
        if len(fields) != len(self.fields):
            raise SchemaMismatchError(
                f"Schema {self.name} declares {len(self.fields)} fields, got {len(fields)}"
            )
        for declared, given in zip(self.fields, fields):
            if given.name != declared.name or given.field_type != declared.field_type:
                raise SchemaMismatchError(
                    f"Schema {self.name} expects {declared.field_type.value} "
                    f"{declared.name} at index {declared.index}, "
                    f"got {given.field_type.value} {given.name}"
                )


FORECAST = RecordSchema.parse(
    "Forecast",
    "uint256 probability,string marketId,string platform,"
    "uint256 confidence,string reasoning,bool isPublic",
    revocable=True,
    description="A user probability forecast on a prediction market",
)

CALIBRATION = RecordSchema.parse(
    "CalibrationScore",
    "uint256 brierScore,uint256 totalForecasts,uint256 timeWeightedScore,"
    "uint256 period,string category",
    revocable=False,  # scores are permanent records
    description="Aggregated calibration metrics over a period",
)

IDENTITY = RecordSchema.parse(
    "Identity",
    "string platform,string platformUserId,bytes32 proofHash,bool verified,uint256 verifiedAt",
    revocable=True,
    description="Links a platform identity to a subject",
)

SUPERFORECASTER = RecordSchema.parse(
    "Superforecaster",
    "string tier,uint256 score,uint256 period,string category,uint256 rank",
    revocable=False,
    description="Badge for superforecaster tier achievement",
)

REPUTATION = RecordSchema.parse(
    "Reputation",
    "string platform,uint256 totalVolume,uint256 winRate,int256 profitLoss,"
    "string verificationLevel",
    revocable=True,
    description="Aggregated reputation from a prediction platform",
)

PRIVATE_DATA = RecordSchema.parse(
    "PrivateData",
    "bytes32 merkleRoot,string dataType,uint256 fieldCount",
    revocable=True,
    description="Merkle root committing to a private record",
)

# Logical record type -> schema
BUILTIN_SCHEMAS: Dict[str, RecordSchema] = {
    "FORECAST": FORECAST,
    "CALIBRATION": CALIBRATION,
    "IDENTITY": IDENTITY,
    "SUPERFORECASTER": SUPERFORECASTER,
    "REPUTATION": REPUTATION,
    "PRIVATE_DATA": PRIVATE_DATA,
}
