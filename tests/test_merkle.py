"""
tests/test_merkle.py
Unit tests for the indexed Merkle tree and proof extraction.
"""
import json
import pytest
from selective_attestation.crypto import hash_internal, hash_leaf
from selective_attestation.errors import (
    DuplicateFieldError,
    EmptyRecordError,
    FieldNotFoundError,
    InputError,
    MalformedProofError,
    TypeMismatchError,
)
from selective_attestation.fields import Field, FieldType, encode_value
from selective_attestation.merkle import (
    MerkleProof,
    MerkleTree,
    RecordBuilder,
    build_record,
    generate_proof,
)
from selective_attestation.schemas import FORECAST


@pytest.fixture
def forecast_fields():
    """The three headline forecast fields."""
    return [
        Field("probability", FieldType.UINT, 7500),
        Field("marketId", FieldType.STRING, "market-123"),
        Field("platform", FieldType.STRING, "POLYMARKET"),
    ]


@pytest.fixture
def tree(forecast_fields):
    """Tree over the three forecast fields."""
    return build_record(forecast_fields)


def make_fields(count):
    return [Field(f"field{i}", FieldType.UINT, i) for i in range(count)]


class TestRecordBuilder:
    """Tests for incremental record assembly."""

    def test_add_returns_index(self):
        """add_field should return the leaf index."""
        builder = RecordBuilder()
        assert builder.add_field("probability", "uint256", 7500) == 0
        assert builder.add_field("marketId", "string", "market-123") == 1

    def test_duplicate_field_rejected(self):
        """Duplicate field names should raise error."""
        builder = RecordBuilder()
        builder.add_field("field", FieldType.UINT, 1)
        with pytest.raises(DuplicateFieldError, match="Duplicate field name"):
            builder.add_field("field", FieldType.UINT, 2)

    def test_add_after_build_rejected(self):
        """Adding fields after build should raise error."""
        builder = RecordBuilder()
        builder.add_field("field", FieldType.UINT, 1)
        builder.build()
        with pytest.raises(InputError, match="Cannot add fields after record is built"):
            builder.add_field("field2", FieldType.UINT, 2)

    def test_build_empty_rejected(self):
        """Building an empty record should raise EmptyRecordError."""
        with pytest.raises(EmptyRecordError):
            RecordBuilder().build()

    def test_build_twice_same_tree(self):
        """A second build should return the same tree."""
        builder = RecordBuilder()
        builder.add_field("field", FieldType.BOOL, True)
        assert builder.build() is builder.build()

    def test_value_checked_on_add(self):
        """Mismatched values should fail at add time."""
        with pytest.raises(TypeMismatchError):
            RecordBuilder().add_field("flag", FieldType.BOOL, "true")

    def test_matches_build_record(self, forecast_fields, tree):
        """Builder and build_record should agree on the root."""
        builder = RecordBuilder()
        for field in forecast_fields:
            builder.add_field(field.name, field.field_type, field.value)
        assert builder.build().root == tree.root


class TestTreeConstruction:
    """Tree building tests."""

    def test_root_is_32_bytes(self, tree):
        """Root should be a 32-byte digest."""
        assert isinstance(tree.root, bytes)
        assert len(tree.root) == 32

    def test_deterministic(self, forecast_fields):
        """Same fields should always produce the same root."""
        assert build_record(forecast_fields).root == build_record(list(forecast_fields)).root

    def test_order_sensitive(self, forecast_fields):
        """Swapping two fields should change the root."""
        swapped = [forecast_fields[1], forecast_fields[0], forecast_fields[2]]
        assert build_record(swapped).root != build_record(forecast_fields).root

    def test_order_sensitive_equal_encodings(self):
        """Swapping fields with identical encodings still changes the root."""
        a = [Field("x", FieldType.UINT, 1), Field("y", FieldType.UINT, 2)]
        b = [Field("x", FieldType.UINT, 2), Field("y", FieldType.UINT, 1)]
        assert build_record(a).root != build_record(b).root

    def test_value_changes_root(self, forecast_fields):
        """Changing one value should change the root."""
        changed = list(forecast_fields)
        changed[0] = Field("probability", FieldType.UINT, 7501)
        assert build_record(changed).root != build_record(forecast_fields).root

    def test_empty_rejected(self):
        """Empty field list should raise EmptyRecordError."""
        with pytest.raises(EmptyRecordError):
            build_record([])

    def test_duplicate_rejected(self):
        """Duplicate names should raise DuplicateFieldError."""
        with pytest.raises(DuplicateFieldError):
            build_record([Field("a", FieldType.UINT, 1), Field("a", FieldType.UINT, 2)])

    def test_mismatch_rejected_before_hashing(self):
        """A bad value anywhere should fail the whole build."""
        fields = [Field("a", FieldType.UINT, 1), Field("b", FieldType.UINT, -5)]
        with pytest.raises(TypeMismatchError):
            build_record(fields)

    def test_single_field_root_is_leaf(self):
        """Single-field root should equal that field's leaf digest."""
        tree = build_record([Field("probability", FieldType.UINT, 7500)])
        expected = hash_leaf(0, encode_value(FieldType.UINT, 7500))
        assert tree.root == expected
        assert tree.depth == 0
        assert tree.authentication_path(0) == ()

    def test_three_leaves_duplicate_last(self, tree):
        """Odd level should pair the last node with itself."""
        d0, d1, d2 = (leaf.digest for leaf in tree.leaves)
        expected = hash_internal(hash_internal(d0, d1), hash_internal(d2, d2))
        assert tree.root == expected

    @pytest.mark.parametrize("count,depth", [(1, 0), (2, 1), (3, 2), (4, 2), (5, 3), (8, 3), (9, 4)])
    def test_depth(self, count, depth):
        """Depth should be ceil(log2(n))."""
        assert build_record(make_fields(count)).depth == depth

    def test_leaf_digest_uses_index(self, tree):
        """Leaf digests should bind the field index."""
        leaf = tree.get_leaf("platform")
        assert leaf.index == 2
        assert leaf.digest == hash_leaf(2, encode_value(FieldType.STRING, "POLYMARKET"))

    def test_from_mapping(self):
        """Building from a schema mapping should follow declaration order."""
        data = {
            "isPublic": False,
            "reasoning": "",
            "confidence": 80,
            "platform": "POLYMARKET",
            "marketId": "market-123",
            "probability": 7500,
        }
        tree = MerkleTree.from_mapping(FORECAST, data)
        assert tree.field_names == FORECAST.field_names

    def test_json_roundtrip(self, tree):
        """Tree JSON should rebuild to the same root."""
        assert MerkleTree.from_json(tree.to_json()).root == tree.root

    def test_json_tampered_root_rejected(self, tree):
        """A stored root that no longer matches should be rejected."""
        data = json.loads(tree.to_json())
        data['leaves'][0]['value'] = 1
        with pytest.raises(InputError, match="Stored root"):
            MerkleTree.from_json(json.dumps(data))


class TestProofGeneration:
    """Proof generation tests."""

    def test_single_field_proof(self, tree):
        """Forecast proof should reveal one field with a 2-step path."""
        proof = generate_proof(tree, ["probability"])
        assert len(proof.revealed) == 1
        assert proof.revealed[0].leaf.value == 7500
        assert len(proof.revealed[0].path) == 2
        assert proof.root == tree.root
        assert proof.leaf_count == 3

    def test_string_argument(self, tree):
        """A single name should be accepted as a string."""
        assert tree.generate_proof("marketId").field_names == ["marketId"]

    def test_ordered_by_index(self, tree):
        """Revealed fields should come back in index order."""
        proof = tree.generate_proof(["platform", "probability"])
        assert proof.field_names == ["probability", "platform"]

    def test_duplicate_names_collapsed(self, tree):
        """Repeated names should reveal the field once."""
        proof = tree.generate_proof(["marketId", "marketId"])
        assert proof.field_names == ["marketId"]

    def test_unknown_field_rejected(self, tree):
        """Unknown field names should raise FieldNotFoundError."""
        with pytest.raises(FieldNotFoundError, match="Field not found"):
            tree.generate_proof(["nonexistent"])

    def test_empty_request_rejected(self, tree):
        """Empty request should raise MalformedProofError."""
        with pytest.raises(MalformedProofError):
            tree.generate_proof([])

    def test_duplicated_node_sibling(self, tree):
        """The last leaf of an odd level should be its own right sibling."""
        path = tree.authentication_path(2)
        assert path[0].sibling == tree.get_leaf("platform").digest
        assert path[0].sibling_is_right is True

    def test_minimality(self):
        """Only requested values should appear in plaintext."""
        secret = "do-not-leak-this"
        fields = [
            Field("probability", FieldType.UINT, 7500),
            Field("reasoning", FieldType.STRING, secret),
            Field("confidence", FieldType.UINT, 80),
        ]
        proof = build_record(fields).generate_proof(["probability", "confidence"])
        assert proof.field_names == ["probability", "confidence"]
        assert secret not in proof.to_json()
        assert "reasoning" not in proof.to_json()

    def test_out_of_range_path(self, tree):
        """Paths for nonexistent indices should raise IndexError."""
        with pytest.raises(IndexError):
            tree.authentication_path(3)


class TestProofSerialization:
    """Proof transport tests."""

    def test_roundtrip(self, tree):
        """Proof should survive to_json/from_json unchanged."""
        proof = tree.generate_proof(["probability", "platform"])
        restored = MerkleProof.from_json(proof.to_json())
        assert restored.root == proof.root
        assert restored.leaf_count == proof.leaf_count
        assert restored.revealed_values() == proof.revealed_values()
        assert [item.path for item in restored.revealed] == [item.path for item in proof.revealed]

    def test_path_positions(self, tree):
        """Path steps should serialize as left/right positions."""
        data = tree.generate_proof("marketId").to_dict()
        positions = [step['position'] for step in data['revealed'][0]['path']]
        assert positions == ['left', 'right']

    def test_bytes_value_roundtrip(self):
        """bytes values should survive JSON transport."""
        tree = build_record([Field("proofHash", FieldType.BYTES, b'\x00\xff')])
        restored = MerkleProof.from_json(tree.generate_proof("proofHash").to_json())
        assert restored.revealed[0].leaf.value == b'\x00\xff'

    def test_missing_key_rejected(self):
        """Incomplete proof dicts should raise MalformedProofError."""
        with pytest.raises(MalformedProofError):
            MerkleProof.from_dict({'root': '00' * 32})

    def test_bad_position_rejected(self, tree):
        """Unknown sibling positions should raise MalformedProofError."""
        data = tree.generate_proof("probability").to_dict()
        data['revealed'][0]['path'][0]['position'] = 'up'
        with pytest.raises(MalformedProofError, match="Invalid sibling position"):
            MerkleProof.from_dict(data)

    def test_bad_json_rejected(self):
        """Invalid JSON should raise MalformedProofError."""
        with pytest.raises(MalformedProofError):
            MerkleProof.from_json("{not json")

    def test_empty_reveal_rejected(self, tree):
        """A proof revealing nothing should not be constructible."""
        with pytest.raises(MalformedProofError):
            MerkleProof(root=tree.root, leaf_count=3, revealed=())
