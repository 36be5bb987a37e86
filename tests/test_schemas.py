"""
tests/test_schemas.py
Unit tests for record schemas.
"""
import pytest
from selective_attestation.errors import (
    FieldNotFoundError,
    InputError,
    SchemaMismatchError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from selective_attestation.fields import Field, FieldType
from selective_attestation.schemas import (
    BUILTIN_SCHEMAS,
    CALIBRATION,
    FORECAST,
    REPUTATION,
    RecordSchema,
)


class TestSchemaParse:
    """Tests for parsing schema definitions."""

    def test_declaration_order_sets_index(self):
        """Fields should be indexed in declaration order."""
        schema = RecordSchema.parse("T", "uint256 a, string b ,bool c")
        assert schema.field_names == ["a", "b", "c"]
        assert schema.index_of("c") == 2
        assert schema.get_field("b").field_type is FieldType.STRING

    def test_malformed_entry_rejected(self):
        """Entries without exactly a type and a name should raise InputError."""
        with pytest.raises(InputError, match="Malformed schema entry"):
            RecordSchema.parse("T", "uint256 a,string")

    def test_duplicate_name_rejected(self):
        """Repeated field names should raise InputError."""
        with pytest.raises(InputError, match="Duplicate field name"):
            RecordSchema.parse("T", "uint256 a,string a")

    def test_unknown_type_rejected(self):
        """Unsupported types should raise UnsupportedTypeError."""
        with pytest.raises(UnsupportedTypeError):
            RecordSchema.parse("T", "float a")

    def test_missing_field_lookup(self):
        """Looking up an undeclared name should raise FieldNotFoundError."""
        with pytest.raises(FieldNotFoundError, match="nope"):
            FORECAST.get_field("nope")


class TestFieldsFromMapping:
    """Tests for turning a mapping into ordered fields."""

    def test_orders_by_schema(self):
        """Mapping key order should not matter."""
        schema = RecordSchema.parse("T", "uint256 a,string b")
        fields = schema.fields_from_mapping({"b": "x", "a": 1})
        assert [f.name for f in fields] == ["a", "b"]

    def test_missing_key_rejected(self):
        """Missing declared fields should raise InputError."""
        schema = RecordSchema.parse("T", "uint256 a,string b")
        with pytest.raises(InputError, match="Missing fields.*b"):
            schema.fields_from_mapping({"a": 1})

    def test_extra_key_rejected(self):
        """Undeclared keys should raise InputError."""
        schema = RecordSchema.parse("T", "uint256 a")
        with pytest.raises(InputError, match="Unknown fields.*z"):
            schema.fields_from_mapping({"a": 1, "z": 2})

    def test_value_checked(self):
        """Values should be checked against declared types."""
        schema = RecordSchema.parse("T", "uint256 a")
        with pytest.raises(TypeMismatchError):
            schema.fields_from_mapping({"a": "one"})


class TestCheckFields:
    """Tests for checking built fields against a declared layout."""

    def test_matching_layout_passes(self):
        """Fields built from the schema should pass unchanged."""
        schema = RecordSchema.parse("T", "uint256 a,string b")
        schema.check_fields(schema.fields_from_mapping({"a": 1, "b": "x"}))

    def test_count_mismatch(self):
        """A different number of fields should raise SchemaMismatchError."""
        schema = RecordSchema.parse("T", "uint256 a,string b")
        with pytest.raises(SchemaMismatchError, match="declares 2 fields, got 1"):
            schema.check_fields([Field("a", FieldType.UINT, 1)])

    def test_swapped_order(self):
        """Declared fields in another order should be rejected."""
        schema = RecordSchema.parse("T", "uint256 a,string b")
        swapped = [Field("b", FieldType.STRING, "x"), Field("a", FieldType.UINT, 1)]
        with pytest.raises(SchemaMismatchError, match="expects uint a at index 0"):
            schema.check_fields(swapped)

    def test_wrong_type(self):
        """A declared name under another type should be rejected."""
        schema = RecordSchema.parse("T", "uint256 a")
        with pytest.raises(SchemaMismatchError, match="got int a"):
            schema.check_fields([Field("a", FieldType.INT, 1)])

    def test_is_input_error(self):
        """Layout mismatches belong to the input error family."""
        assert issubclass(SchemaMismatchError, InputError)


class TestBuiltinSchemas:
    """Tests for the built-in record types."""

    def test_forecast_layout(self):
        """Forecast should lead with probability, marketId and platform."""
        assert FORECAST.field_names[:3] == ["probability", "marketId", "platform"]
        assert FORECAST.revocable is True

    def test_calibration_permanent(self):
        """Calibration scores should not be revocable."""
        assert CALIBRATION.revocable is False

    def test_reputation_signed_pnl(self):
        """Profit/loss should be a signed integer."""
        assert REPUTATION.get_field("profitLoss").field_type is FieldType.INT

    def test_registry_keys(self):
        """Every built-in schema should be registered by record type."""
        assert set(BUILTIN_SCHEMAS) == {
            "FORECAST", "CALIBRATION", "IDENTITY",
            "SUPERFORECASTER", "REPUTATION", "PRIVATE_DATA",
        }
