"""
selective_attestation/signing.py
Message signing for witnessed attestations (signature over the root
instead of ledger publication).
"""
from typing import Protocol, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


class MessageSigner(Protocol):
    """Signs raw bytes on behalf of a witnessing party."""

    def sign(self, message: bytes) -> bytes:
        ...

    def public_key_bytes(self) -> bytes:
        ...


class Ed25519Signer:
    """MessageSigner backed by an Ed25519 private key.

    Example:
        signer = Ed25519Signer.generate()
        signature = signer.sign(tree.root)
        assert verify_signature(tree.root, signature, signer.public_key_bytes())
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key

    @classmethod
    def generate(cls) -> 'Ed25519Signer':
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> 'Ed25519Signer':
        """Load a signer from a 32-byte raw private key."""
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )


def normalize_public_key(public_key: Union[bytes, str]) -> bytes:
    """Normalize a cached public key into raw bytes.

    Accepts raw bytes or a hex-encoded string.
    """
    if isinstance(public_key, bytes):
        return public_key
    if isinstance(public_key, str):
        return bytes.fromhex(public_key[2:] if public_key.startswith('0x') else public_key)
    raise TypeError("public_key must be bytes or hex string")


def verify_signature(
    message: bytes,
    signature: Union[bytes, str],
    public_key: Union[bytes, str]
) -> bool:
    """Verify an Ed25519 signature over the message bytes.

    Returns False for any invalid signature or malformed key.
    """
    try:
        if isinstance(signature, str):
            signature = bytes.fromhex(signature)
        key = Ed25519PublicKey.from_public_bytes(normalize_public_key(public_key))
        key.verify(signature, message)
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False

