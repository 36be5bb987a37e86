"""
selective_attestation/merkle.py
Indexed Merkle tree over typed record fields, with selective-disclosure proofs.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .crypto import hash_leaf, hash_internal
from .errors import (
    DuplicateFieldError,
    EmptyRecordError,
    FieldNotFoundError,
    InputError,
    MalformedProofError,
)
from .fields import (
    Field,
    FieldType,
    canonical_encoding,
    encode_value,
    from_json_value,
    to_json_value,
)
from .schemas import RecordSchema


@dataclass(frozen=True)
class MerkleLeaf:
    """A hashed, indexed commitment to one field of a record."""
    index: int
    name: str
    field_type: FieldType
    value: Any
    encoding: bytes
    digest: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'name': self.name,
            'type': self.field_type.value,
            'value': to_json_value(self.field_type, self.value),
            'digest': self.digest.hex(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MerkleLeaf':
        field_type = FieldType.parse(data['type'])
        value = from_json_value(field_type, data['value'])
        return cls(
            index=data['index'],
            name=data['name'],
            field_type=field_type,
            value=value,
            encoding=encode_value(field_type, value),
            digest=bytes.fromhex(data['digest']),
        )


@dataclass(frozen=True)
class PathStep:
    """One level of an authentication path."""
    sibling: bytes
    sibling_is_right: bool

    def to_dict(self) -> Dict[str, str]:
        return {
            'position': 'right' if self.sibling_is_right else 'left',
            'hash': self.sibling.hex(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> 'PathStep':
        position = data['position']
        if position not in ('left', 'right'):
            raise MalformedProofError(f"Invalid sibling position: {position!r}")
        return cls(sibling=bytes.fromhex(data['hash']), sibling_is_right=position == 'right')


AuthenticationPath = Tuple[PathStep, ...]


@dataclass(frozen=True)
class RevealedField:
    """A disclosed leaf with the path that links it to the root."""
    leaf: MerkleLeaf
    path: AuthenticationPath


@dataclass(frozen=True)
class MerkleProof:
    """Selective-disclosure proof over one or more fields of a record.

    Undisclosed fields appear only as sibling digests inside the paths.
    """
    root: bytes
    leaf_count: int
    revealed: Tuple[RevealedField, ...]

    def __post_init__(self):
        if not self.revealed:
            raise MalformedProofError("Proof must reveal at least one field")
        indices = [item.leaf.index for item in self.revealed]
        if len(set(indices)) != len(indices):
            raise MalformedProofError("Proof reveals the same leaf index twice")

    @property
    def field_names(self) -> List[str]:
        return [item.leaf.name for item in self.revealed]

    def revealed_values(self) -> Dict[str, Any]:
        return {item.leaf.name: item.leaf.value for item in self.revealed}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root': self.root.hex(),
            'leaf_count': self.leaf_count,
            'revealed': [
                {
                    'leaf': item.leaf.to_dict(),
                    'path': [step.to_dict() for step in item.path],
                }
                for item in self.revealed
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MerkleProof':
        """Rebuild a proof from its transport form.

        Raises:
            MalformedProofError: If any part of the structure is missing or invalid
        """
        try:
            revealed = tuple(
                RevealedField(
                    leaf=MerkleLeaf.from_dict(item['leaf']),
                    path=tuple(PathStep.from_dict(step) for step in item['path']),
                )
                for item in data['revealed']
            )
            return cls(
                root=bytes.fromhex(data['root']),
                leaf_count=int(data['leaf_count']),
                revealed=revealed,
            )
        except MalformedProofError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedProofError(f"Malformed proof: {exc}") from exc

    @classmethod
    def from_json(cls, proof_json: str) -> 'MerkleProof':
        try:
            data = json.loads(proof_json)
        except ValueError as exc:
            raise MalformedProofError(f"Malformed proof JSON: {exc}") from exc
        return cls.from_dict(data)


def build_leaves(fields: Sequence[Field]) -> List[MerkleLeaf]:
    """Encode and hash fields in declaration order.

    Every field is validated and encoded before any hashing starts.

    Raises:
        EmptyRecordError: If fields is empty
        DuplicateFieldError: If a field name repeats
        TypeMismatchError: If a value does not fit its declared type
    """
    if not fields:
        raise EmptyRecordError("Cannot build a record with no fields")

    seen = set()
    encodings = []
    for field in fields:
        if field.name in seen:
            raise DuplicateFieldError(f"Duplicate field name: {field.name}")
        seen.add(field.name)
        encodings.append(canonical_encoding(field))

    return [
        MerkleLeaf(
            index=index,
            name=field.name,
            field_type=field.field_type,
            value=field.value,
            encoding=encoding,
            digest=hash_leaf(index, encoding),
        )
        for index, (field, encoding) in enumerate(zip(fields, encodings))
    ]


def build_levels(leaf_digests: Sequence[bytes]) -> List[Tuple[bytes, ...]]:
    """Fold leaf digests into tree levels, bottom-up.

    An odd trailing node at any level is paired with itself. Existing
    published roots depend on this exact rule.
    """
    levels = [tuple(leaf_digests)]
    current = list(leaf_digests)

    while len(current) > 1:
        if len(current) % 2 == 1:
            current.append(current[-1])
        next_level = [
            hash_internal(current[i], current[i + 1])
            for i in range(0, len(current), 2)
        ]
        levels.append(tuple(next_level))
        current = next_level

    return levels


class MerkleTree:
    """Immutable Merkle tree over the fields of one record.

    Leaves are ordered by declaration index, and each leaf digest mixes in
    its index, so reordering fields changes the root.

    Example:
        tree = MerkleTree.from_fields([
            Field("probability", FieldType.UINT, 7500),
            Field("marketId", FieldType.STRING, "market-123"),
            Field("platform", FieldType.STRING, "POLYMARKET"),
        ])
        proof = tree.generate_proof(["probability"])
        assert verify_proof(proof, tree.root)
    """

    def __init__(self, leaves: Sequence[MerkleLeaf]):
        if not leaves:
            raise EmptyRecordError("Cannot build a record with no fields")
        for position, leaf in enumerate(leaves):
            if leaf.index != position:
                raise InputError(
                    f"Leaves must be contiguous from 0; found index {leaf.index} "
                    f"at position {position}"
                )
        self._leaves: Tuple[MerkleLeaf, ...] = tuple(leaves)
        self._field_index: Dict[str, int] = {}
        for leaf in self._leaves:
            if leaf.name in self._field_index:
                raise DuplicateFieldError(f"Duplicate field name: {leaf.name}")
            self._field_index[leaf.name] = leaf.index
        self._levels = tuple(build_levels([leaf.digest for leaf in self._leaves]))

    @classmethod
    def from_fields(cls, fields: Sequence[Field]) -> 'MerkleTree':
        return cls(build_leaves(fields))

    @classmethod
    def from_mapping(cls, schema: RecordSchema, data: Mapping[str, Any]) -> 'MerkleTree':
        """Build a tree from a name -> value mapping in schema order."""
        return cls.from_fields(schema.fields_from_mapping(data))

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    @property
    def leaves(self) -> Tuple[MerkleLeaf, ...]:
        return self._leaves

    @property
    def levels(self) -> Tuple[Tuple[bytes, ...], ...]:
        return self._levels

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    @property
    def field_names(self) -> List[str]:
        return [leaf.name for leaf in self._leaves]

    def get_leaf(self, field_name: str) -> MerkleLeaf:
        if field_name not in self._field_index:
            raise FieldNotFoundError(f"Field not found: {field_name}")
        return self._leaves[self._field_index[field_name]]

    def authentication_path(self, index: int) -> AuthenticationPath:
        """Sibling digests from leaf index up to (not including) the root."""
        if index < 0 or index >= len(self._leaves):
            raise IndexError(f"Leaf index out of range: {index}")

        path = []
        for level in self._levels[:-1]:
            if index % 2 == 0:
                # last node of an odd level is its own sibling
                sibling_index = index + 1 if index + 1 < len(level) else index
                path.append(PathStep(level[sibling_index], sibling_is_right=True))
            else:
                path.append(PathStep(level[index - 1], sibling_is_right=False))
            index //= 2

        return tuple(path)

    def generate_proof(self, field_names: Union[str, Iterable[str]]) -> MerkleProof:
        """Generate a proof revealing the named fields only.

        Args:
            field_names: One field name or an iterable of names

        Returns:
            MerkleProof with one revealed field per distinct name, ordered by index

        Raises:
            MalformedProofError: If no field names are given
            FieldNotFoundError: If a name is not in the tree
        """
        if isinstance(field_names, str):
            field_names = [field_names]
        leaves = {}
        for name in field_names:
            leaf = self.get_leaf(name)
            leaves[leaf.index] = leaf
        if not leaves:
            raise MalformedProofError("Proof must reveal at least one field")

        return MerkleProof(
            root=self.root,
            leaf_count=self.leaf_count,
            revealed=tuple(
                RevealedField(leaf=leaf, path=self.authentication_path(index))
                for index, leaf in sorted(leaves.items())
            ),
        )

    def to_json(self) -> str:
        """Serialize the full record for the holder's own storage.

        NOTE: This includes every field value. Store securely!
        """
        return json.dumps({
            'root': self.root.hex(),
            'leaves': [leaf.to_dict() for leaf in self._leaves],
        }, sort_keys=True, indent=2)

    @classmethod
    def from_json(cls, tree_json: str) -> 'MerkleTree':
        """Rebuild a tree written by to_json, checking the stored root."""
        data = json.loads(tree_json)
        fields = []
        for item in sorted(data['leaves'], key=lambda leaf: leaf['index']):
            field_type = FieldType.parse(item['type'])
            fields.append(Field(item['name'], field_type, from_json_value(field_type, item['value'])))
        tree = cls.from_fields(fields)
        if tree.root.hex() != data['root']:
            raise InputError("Stored root does not match the rebuilt tree")
        return tree


class RecordBuilder:
    """Incremental record assembly; fields keep the order they are added.

    Example:
        builder = RecordBuilder()
        builder.add_field("probability", "uint256", 7500)
        builder.add_field("marketId", "string", "market-123")
        tree = builder.build()
    """

    def __init__(self):
        self._fields: List[Field] = []
        self._names = set()
        self._tree: Optional[MerkleTree] = None

    def add_field(
        self,
        name: str,
        field_type: Union[FieldType, str],
        value: Any
    ) -> int:
        """Add a field and return its leaf index.

        Raises:
            InputError: If the record is already built
            DuplicateFieldError: If name was already added
            TypeMismatchError: If value does not fit field_type
        """
        if self._tree is not None:
            raise InputError("Cannot add fields after record is built")
        if name in self._names:
            raise DuplicateFieldError(f"Duplicate field name: {name}")

        self._fields.append(Field.of(name, field_type, value))
        self._names.add(name)
        return len(self._fields) - 1

    def build(self) -> MerkleTree:
        """Build the tree once; later calls return the same tree."""
        if self._tree is None:
            self._tree = MerkleTree.from_fields(self._fields)
        return self._tree


def build_record(fields: Sequence[Field]) -> MerkleTree:
    """Build the Merkle tree committing to a record's fields."""
    return MerkleTree.from_fields(fields)


def generate_proof(tree: MerkleTree, field_names: Union[str, Iterable[str]]) -> MerkleProof:
    """Generate a selective-disclosure proof over the named fields."""
    return tree.generate_proof(field_names)
