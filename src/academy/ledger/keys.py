"""Ed25519 public keys and keypairs for ledger accounts."""

from __future__ import annotations

import json

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from academy.ledger._base58 import b58decode, b58encode

PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 64
SIGNATURE_LENGTH = 64


class PublicKey:
    """A 32-byte account address, rendered as base58."""

    __slots__ = ("_bytes",)

    def __init__(self, value: bytes | str) -> None:
        raw = b58decode(value) if isinstance(value, str) else bytes(value)
        if len(raw) != PUBLIC_KEY_LENGTH:
            msg = f"Public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(raw)}"
            raise ValueError(msg)
        self._bytes = raw

    def __bytes__(self) -> bytes:
        return self._bytes

    def __str__(self) -> str:
        return b58encode(self._bytes)

    def __repr__(self) -> str:
        return f"PublicKey({self})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PublicKey) and other._bytes == self._bytes

    def __hash__(self) -> int:
        return hash(self._bytes)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Check an ed25519 signature made over message by this key."""
        try:
            VerifyKey(self._bytes).verify(message, signature)
        except (BadSignatureError, ValueError):
            return False
        return True


def is_valid_public_key(value: str) -> bool:
    """True if value decodes as a 32-byte base58 public key."""
    try:
        PublicKey(value)
    except ValueError:
        return False
    return True


class Keypair:
    """Ed25519 signing keypair."""

    def __init__(self, signing_key: SigningKey) -> None:
        self._signing_key = signing_key
        self.public_key = PublicKey(bytes(signing_key.verify_key))

    @classmethod
    def generate(cls) -> Keypair:
        return cls(SigningKey.generate())

    @classmethod
    def from_secret_key(cls, secret: bytes) -> Keypair:
        """Build from the 64-byte form: 32-byte seed followed by the public key."""
        if len(secret) != SECRET_KEY_LENGTH:
            msg = f"Secret key must be {SECRET_KEY_LENGTH} bytes, got {len(secret)}"
            raise ValueError(msg)
        keypair = cls(SigningKey(secret[:32]))
        if bytes(keypair.public_key) != secret[32:]:
            msg = "Secret key does not match its embedded public key"
            raise ValueError(msg)
        return keypair

    @classmethod
    def from_json(cls, raw: str) -> Keypair:
        """Parse a JSON array of 64 integers, the usual keypair file format."""
        try:
            values = json.loads(raw)
        except json.JSONDecodeError as e:
            msg = "Secret key is not valid JSON"
            raise ValueError(msg) from e
        if not isinstance(values, list) or not all(isinstance(v, int) and 0 <= v < 256 for v in values):
            msg = "Secret key must be a JSON array of byte values"
            raise ValueError(msg)
        return cls.from_secret_key(bytes(values))

    @property
    def secret_key(self) -> bytes:
        return bytes(self._signing_key) + bytes(self.public_key)

    def sign(self, message: bytes) -> bytes:
        """Detached 64-byte signature over message."""
        return self._signing_key.sign(message).signature
