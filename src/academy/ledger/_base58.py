"""
Base58 encoding and decoding (Bitcoin alphabet).

Minimal pure-Python implementation used for ledger addresses, public keys
and transaction signatures. No checksum variant is needed.
"""

from __future__ import annotations

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: i for i, char in enumerate(ALPHABET)}


def b58encode(data: bytes) -> str:
    """Encode bytes to a base58 string, preserving leading zero bytes as '1'."""
    n = int.from_bytes(data, "big")
    result = ""
    while n > 0:
        n, remainder = divmod(n, 58)
        result = ALPHABET[remainder] + result
    # Preserve leading zeros
    for byte in data:
        if byte == 0:
            result = "1" + result
        else:
            break
    return result


def b58decode(value: str) -> bytes:
    """Decode a base58 string. Raises ValueError on characters outside the alphabet."""
    n = 0
    for char in value:
        try:
            n = n * 58 + _INDEX[char]
        except KeyError:
            msg = f"Invalid base58 character: {char!r}"
            raise ValueError(msg) from None
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + body
