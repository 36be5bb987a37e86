"""
selective_attestation/fields.py
Typed record fields and their canonical byte encoding.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .errors import InputError, TypeMismatchError, UnsupportedTypeError

WORD_SIZE = 32  # fixed width for uint/int payloads
ADDRESS_SIZE = 20
LENGTH_PREFIX_SIZE = 4

UINT_MAX = (1 << (8 * WORD_SIZE)) - 1
INT_MIN = -(1 << (8 * WORD_SIZE - 1))
INT_MAX = (1 << (8 * WORD_SIZE - 1)) - 1
LENGTH_MAX = (1 << (8 * LENGTH_PREFIX_SIZE)) - 1

_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')


class FieldType(Enum):
    """Closed set of field types a record may declare."""
    UINT = "uint"
    INT = "int"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    ADDRESS = "address"

    @property
    def tag(self) -> int:
        return TYPE_TAGS[self]

    @classmethod
    def parse(cls, declared: Union["FieldType", str]) -> "FieldType":
        """Resolve a declared type name, accepting Solidity-style aliases.

        Raises:
            UnsupportedTypeError: If the name is not a supported type
        """
        if isinstance(declared, cls):
            return declared
        if not isinstance(declared, str):
            raise UnsupportedTypeError(f"Unsupported type: {declared!r}")
        name = declared.strip().lower()
        if name in _ALIASES:
            return _ALIASES[name]
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedTypeError(f"Unsupported type: {declared}") from None


TYPE_TAGS = {
    FieldType.UINT: 0x01,
    FieldType.INT: 0x02,
    FieldType.BOOL: 0x03,
    FieldType.STRING: 0x04,
    FieldType.BYTES: 0x05,
    FieldType.ADDRESS: 0x06,
}

_ALIASES = {
    "uint256": FieldType.UINT,
    "int256": FieldType.INT,
    "boolean": FieldType.BOOL,
    "str": FieldType.STRING,
    "bytes32": FieldType.BYTES,
}


@dataclass(frozen=True)
class Field:
    """A named, typed value inside a record."""
    name: str
    field_type: FieldType
    value: Any

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise InputError("Field name must be a non-empty string")
        object.__setattr__(self, 'field_type', FieldType.parse(self.field_type))

    @classmethod
    def of(cls, name: str, field_type: Union[FieldType, str], value: Any) -> "Field":
        """Build a field and check its value against the declared type."""
        field = cls(name, field_type, value)
        encode_value(field.field_type, value)
        return field


def _mismatch(field_type: FieldType, value: Any, detail: str = "") -> TypeMismatchError:
    message = f"Value {value!r} does not match type {field_type.value}"
    if detail:
        message = f"{message}: {detail}"
    return TypeMismatchError(message)


def _is_integer(value: Any) -> bool:
    # bool is an int subclass but never a numeric field value
    return isinstance(value, int) and not isinstance(value, bool)


def _length_prefixed(data: bytes) -> bytes:
    if len(data) > LENGTH_MAX:
        raise TypeMismatchError(f"Value too long to encode: {len(data)} bytes")
    return len(data).to_bytes(LENGTH_PREFIX_SIZE, 'big') + data


def address_bytes(value: Any) -> bytes:
    """Return the 20 raw bytes of an address given as 0x-hex or bytes.

    Raises:
        TypeMismatchError: If the value is not a well-formed address
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != ADDRESS_SIZE:
            raise _mismatch(FieldType.ADDRESS, value, f"expected {ADDRESS_SIZE} bytes")
        return bytes(value)
    if isinstance(value, str) and _ADDRESS_RE.match(value):
        return bytes.fromhex(value[2:])
    raise _mismatch(FieldType.ADDRESS, value, "expected 0x-prefixed 40 hex digits")


def encode_value(field_type: Union[FieldType, str], value: Any) -> bytes:
    """Encode a typed value: type tag followed by its payload.

    Fixed-width big-endian payloads for uint, int, bool and address;
    4-byte length-prefixed payloads for string and bytes.

    Args:
        field_type: Declared field type (enum or type name)
        value: Runtime value, checked against the declared type

    Returns:
        Canonical encoding bytes

    Raises:
        UnsupportedTypeError: If the declared type is unknown
        TypeMismatchError: If the value does not fit the declared type
    """
    field_type = FieldType.parse(field_type)
    tag = bytes([field_type.tag])

    if field_type is FieldType.UINT:
        if not _is_integer(value):
            raise _mismatch(field_type, value)
        if value < 0 or value > UINT_MAX:
            raise _mismatch(field_type, value, "out of range")
        return tag + value.to_bytes(WORD_SIZE, 'big')

    if field_type is FieldType.INT:
        if not _is_integer(value):
            raise _mismatch(field_type, value)
        if value < INT_MIN or value > INT_MAX:
            raise _mismatch(field_type, value, "out of range")
        return tag + value.to_bytes(WORD_SIZE, 'big', signed=True)

    if field_type is FieldType.BOOL:
        if not isinstance(value, bool):
            raise _mismatch(field_type, value)
        return tag + (b'\x01' if value else b'\x00')

    if field_type is FieldType.STRING:
        if not isinstance(value, str):
            raise _mismatch(field_type, value)
        return tag + _length_prefixed(value.encode('utf-8'))

    if field_type is FieldType.BYTES:
        if not isinstance(value, (bytes, bytearray)):
            raise _mismatch(field_type, value)
        return tag + _length_prefixed(bytes(value))

    return tag + address_bytes(value)


def canonical_encoding(field: Field) -> bytes:
    """Canonical encoding of a field; pure in (declared type, value)."""
    return encode_value(field.field_type, field.value)


def to_json_value(field_type: FieldType, value: Any) -> Any:
    """Render a field value for JSON transport.

    bytes become 0x-hex; addresses are lower-cased 0x-hex.
    """
    if field_type is FieldType.BYTES:
        return '0x' + bytes(value).hex()
    if field_type is FieldType.ADDRESS:
        return '0x' + address_bytes(value).hex()
    return value


def from_json_value(field_type: FieldType, value: Any) -> Any:
    """Inverse of to_json_value."""
    if field_type is FieldType.BYTES:
        if not isinstance(value, str) or not value.startswith('0x'):
            raise _mismatch(field_type, value, "expected 0x-hex string")
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise _mismatch(field_type, value, "invalid hex") from None
    return value
