"""
examples/complete_workflow.py
End-to-end example: Commit → Publish → Disclose → Verify → Revoke
"""
import json
import logging
import sys
import os

# Add src to path for development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from selective_attestation import (
    FORECAST,
    AttestationConfig,
    AttestationManager,
    DisclosureLevel,
    DisclosurePolicy,
    Ed25519Signer,
    InMemoryLedger,
    build_record,
    create_disclosure_bundle,
    verify_bundle,
    verify_proof,
    verify_published,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# ============================================================
# STEP 1: FORECASTER - Assemble the record
# ============================================================

subject = "0x1111111111111111111111111111111111111111"
forecast = {
    "probability": 7500,
    "marketId": "market-123",
    "platform": "POLYMARKET",
    "confidence": 80,
    "reasoning": "Polling trend plus base rate",
    "isPublic": False,
}
fields = FORECAST.fields_from_mapping(forecast)

print("=" * 60)
print("SELECTIVE ATTESTATION: Prove part of a forecast")
print("=" * 60)
print()

tree = build_record(fields)
print(f"✓ Merkle Root: {tree.root.hex()}")
print(f"✓ Record commits to {tree.leaf_count} fields")

# ============================================================
# STEP 2: Publish the root
# ============================================================

ledger = InMemoryLedger()
config = AttestationConfig(schema_ids={
    "FORECAST": "0x" + "be" * 32,
})
signer = Ed25519Signer.generate()
manager = AttestationManager(config, publisher=ledger, signer=signer)

record = manager.create("FORECAST", subject, fields)
print(f"✓ Attestation published: {record.uid}")
print(f"✓ Status: {record.status().value}")

# ============================================================
# STEP 3: HOLDER - Disclose the headline numbers only
# ============================================================

print()
print("-" * 60)
print("SELECTIVE DISCLOSURE")
print("-" * 60)

proof = tree.generate_proof(["probability", "marketId"])
print(f"\n✓ Proof reveals: {', '.join(proof.field_names)}")
print(f"  - Path length: {len(proof.revealed[0].path)} hashes")

policy = DisclosurePolicy(tree)
headline = policy.generate_bundle(DisclosureLevel.PROBABILITY_ONLY)
print(f"\n✓ PROBABILITY_ONLY level discloses {len(headline.fields_disclosed)} fields")

# ============================================================
# STEP 4: VERIFIER - Check against the published root
# ============================================================

print()
print("-" * 60)
print("VERIFICATION")
print("-" * 60)

proof_json = proof.to_json()
entry = ledger.fetch_record(record.uid)
print(f"\n✓ Proof valid against published root: {verify_proof(proof, entry.root)}")

result = verify_published(proof, record.uid, ledger, schema=FORECAST)
print(f"✓ Published-record check: {result.is_valid}")
for name, value in result.values.items():
    print(f"    • {name} = {value}")

# ============================================================
# STEP 5: Witnessed bundle, verified offline
# ============================================================

witnessed = manager.create_witnessed("FORECAST", subject, fields)
bundle = create_disclosure_bundle(
    tree,
    ["probability"],
    uid=witnessed.uid,
    schema_id=witnessed.schema_id,
    signature=witnessed.witness_signature,
)
bundle_result = verify_bundle(json.dumps(bundle), public_key=signer.public_key_bytes())
print(f"\n✓ Witnessed bundle valid: {bundle_result.is_valid}")

# ============================================================
# STEP 6: Revoke
# ============================================================

manager.revoke(record.uid)
after = verify_published(proof, record.uid, ledger)
print(f"\n✓ After revocation: valid={after.is_valid} ({after.error_message})")

print()
print("=" * 60)
print("COMPLETE WORKFLOW SUCCESSFUL")
print("=" * 60)
