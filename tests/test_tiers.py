"""
tests/test_tiers.py
Unit tests for disclosure levels and policy bundles.
"""
from dataclasses import replace

import pytest
from selective_attestation.errors import FieldNotFoundError, InputError
from selective_attestation.fields import Field, FieldType
from selective_attestation.merkle import build_record
from selective_attestation.schemas import FORECAST
from selective_attestation.tiers import (
    FORECAST_DISCLOSURE_MAPPING,
    DisclosureLevel,
    DisclosurePolicy,
    PolicyProofBundle,
)


@pytest.fixture
def forecast_tree():
    """Tree over a full forecast record."""
    return build_record(FORECAST.fields_from_mapping({
        "probability": 6200,
        "marketId": "market-456",
        "platform": "KALSHI",
        "confidence": 70,
        "reasoning": "Private notes",
        "isPublic": False,
    }))


@pytest.fixture
def policy(forecast_tree):
    """Disclosure policy with the forecast mapping."""
    return DisclosurePolicy(forecast_tree)


class TestDisclosureLevel:
    """Tests for level values."""

    def test_values(self):
        """Levels should carry their preference names."""
        assert DisclosureLevel.PUBLIC.value == "public"
        assert DisclosureLevel.PROBABILITY_ONLY.value == "probability_only"
        assert DisclosureLevel.MERKLE.value == "merkle"
        assert DisclosureLevel.PRIVATE.value == "private"

    def test_probability_only_mapping(self):
        """PROBABILITY_ONLY should cover the headline fields."""
        assert FORECAST_DISCLOSURE_MAPPING[DisclosureLevel.PROBABILITY_ONLY] == {
            "probability", "marketId", "platform",
        }


class TestFieldsFor:
    """Tests for resolving a level to field names."""

    def test_public_is_everything(self, policy, forecast_tree):
        """PUBLIC should disclose every field."""
        assert policy.fields_for(DisclosureLevel.PUBLIC) == forecast_tree.field_names

    def test_private_rejected(self, policy):
        """PRIVATE should raise InputError."""
        with pytest.raises(InputError, match="PRIVATE"):
            policy.fields_for(DisclosureLevel.PRIVATE)

    def test_merkle_requires_request(self, policy):
        """MERKLE without a requested subset should raise InputError."""
        with pytest.raises(InputError, match="requires the fields"):
            policy.fields_for(DisclosureLevel.MERKLE)

    def test_merkle_uses_request(self, policy):
        """MERKLE should disclose exactly the requested names."""
        assert policy.fields_for(DisclosureLevel.MERKLE, ["confidence"]) == ["confidence"]


class TestGenerateBundle:
    """Tests for policy proof bundles."""

    def test_probability_only(self, policy, forecast_tree):
        """PROBABILITY_ONLY should reveal exactly the headline fields."""
        bundle = policy.generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
        assert isinstance(bundle, PolicyProofBundle)
        assert bundle.fields_disclosed == ["probability", "marketId", "platform"]
        assert bundle.fields_not_found == []
        assert bundle.merkle_root == forecast_tree.root.hex()
        assert "reasoning" not in bundle.proof.to_json()

    def test_public(self, policy, forecast_tree):
        """PUBLIC should reveal every field."""
        bundle = policy.generate_bundle(DisclosureLevel.PUBLIC)
        assert bundle.fields_disclosed == forecast_tree.field_names

    def test_merkle_reports_missing(self, policy):
        """Unknown requested names should be reported, not fatal."""
        bundle = policy.generate_bundle(DisclosureLevel.MERKLE, ["confidence", "bogus"])
        assert bundle.fields_disclosed == ["confidence"]
        assert bundle.fields_not_found == ["bogus"]

    def test_nothing_available(self):
        """A level with no fields in the record should raise FieldNotFoundError."""
        tree = build_record([Field("score", FieldType.UINT, 1)])
        with pytest.raises(FieldNotFoundError, match="No fields for level"):
            DisclosurePolicy(tree).generate_bundle(DisclosureLevel.PROBABILITY_ONLY)

    def test_partial_record(self):
        """Fields a record lacks should land in fields_not_found."""
        tree = build_record([
            Field("probability", FieldType.UINT, 5000),
            Field("platform", FieldType.STRING, "MANIFOLD"),
        ])
        bundle = DisclosurePolicy(tree).generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
        assert bundle.fields_disclosed == ["probability", "platform"]
        assert bundle.fields_not_found == ["marketId"]

    def test_custom_mapping(self, forecast_tree):
        """A custom mapping should override the forecast default."""
        policy = DisclosurePolicy(
            forecast_tree,
            {DisclosureLevel.PROBABILITY_ONLY: {"probability"}},
        )
        bundle = policy.generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
        assert bundle.fields_disclosed == ["probability"]


class TestVerifyBundle:
    """Tests for bundle verification."""

    def test_valid(self, policy):
        """Generated bundles should verify."""
        bundle = policy.generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
        assert DisclosurePolicy.verify_bundle(bundle) is True

    def test_listed_fields_must_match(self, policy):
        """A bundle listing fields its proof does not reveal should fail."""
        bundle = policy.generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
        inflated = replace(bundle, fields_disclosed=bundle.fields_disclosed + ["reasoning"])
        assert DisclosurePolicy.verify_bundle(inflated) is False

    def test_foreign_root(self, policy):
        """A bundle pointing at another root should fail."""
        bundle = policy.generate_bundle(DisclosureLevel.PUBLIC)
        assert DisclosurePolicy.verify_bundle(replace(bundle, merkle_root="00" * 32)) is False
