"""
selective_attestation/tiers.py
Disclosure levels and policy-driven proof bundles.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .errors import FieldNotFoundError, InputError
from .merkle import MerkleTree, MerkleProof
from .verify import verify_proof


class DisclosureLevel(Enum):
    """How much of a record its holder discloses."""
    PUBLIC = "public"  # every field
    PROBABILITY_ONLY = "probability_only"  # headline forecast fields only
    MERKLE = "merkle"  # holder-chosen subset, per request
    PRIVATE = "private"  # nothing (never disclosed via proofs)


# Fields disclosed at fixed levels; PUBLIC means the whole record
FORECAST_DISCLOSURE_MAPPING: Dict[DisclosureLevel, Set[str]] = {
    DisclosureLevel.PROBABILITY_ONLY: {
        "probability",
        "marketId",
        "platform",
    },
}


@dataclass
class PolicyProofBundle:
    """One proof covering every field a disclosure level allows."""
    level: DisclosureLevel
    proof: MerkleProof
    merkle_root: str
    fields_disclosed: List[str]
    fields_not_found: List[str]  # allowed by the level but absent from the record


class DisclosurePolicy:
    """Turns a disclosure level into a selective-disclosure proof."""

    def __init__(
        self,
        tree: MerkleTree,
        level_mapping: Optional[Dict[DisclosureLevel, Set[str]]] = None
    ):
        self.tree = tree
        self.level_mapping = level_mapping or FORECAST_DISCLOSURE_MAPPING

    def fields_for(
        self,
        level: DisclosureLevel,
        requested: Optional[Iterable[str]] = None
    ) -> List[str]:
        """Field names a level allows, in no particular order.

        Raises:
            InputError: For PRIVATE, or MERKLE without a requested subset
        """
        if level == DisclosureLevel.PRIVATE:
            raise InputError("Cannot generate proofs for PRIVATE level")
        if level == DisclosureLevel.PUBLIC:
            return self.tree.field_names
        if level == DisclosureLevel.MERKLE:
            if requested is None:
                raise InputError("MERKLE disclosure requires the fields to reveal")
            return list(requested)
        return sorted(self.level_mapping.get(level, set()))

    def generate_bundle(
        self,
        level: DisclosureLevel,
        requested: Optional[Iterable[str]] = None
    ) -> PolicyProofBundle:
        """Generate one proof over every available field of a level.

        Raises:
            InputError: If requesting PRIVATE level
            FieldNotFoundError: If none of the level's fields are in the record
        """
        disclosed = []
        not_found = []
        for name in self.fields_for(level, requested):
            try:
                self.tree.get_leaf(name)
                disclosed.append(name)
            except FieldNotFoundError:
                not_found.append(name)

        if not disclosed:
            raise FieldNotFoundError(f"No fields for level {level.value} in record")

        proof = self.tree.generate_proof(disclosed)
        return PolicyProofBundle(
            level=level,
            proof=proof,
            merkle_root=self.tree.root.hex(),
            fields_disclosed=proof.field_names,
            fields_not_found=not_found
        )

    @staticmethod
    def verify_bundle(bundle: PolicyProofBundle) -> bool:
        """Verify a bundle's proof and that it reveals exactly the listed fields."""
        if sorted(bundle.proof.field_names) != sorted(bundle.fields_disclosed):
            return False
        return verify_proof(bundle.proof, bundle.merkle_root)
