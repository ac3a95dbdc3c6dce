"""Legacy transaction wire format: message compilation, partial signing, serialization.

Layout::

    shortvec(num_signatures) || signature[64] * num_signatures || message

    message = header[3] || shortvec(num_keys) || key[32] * num_keys
              || recent_blockhash[32] || shortvec(num_ix) || instruction * num_ix

    instruction = program_index[u8] || shortvec(num_accounts) || account_index[u8] * n
                  || shortvec(len(data)) || data

Unfilled signature slots are serialized as 64 zero bytes so the remaining
signer can fill its slot later without re-encoding the message.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field

from academy.ledger._base58 import b58decode, b58encode
from academy.ledger.instructions import Instruction
from academy.ledger.keys import SIGNATURE_LENGTH, Keypair, PublicKey

_EMPTY_SIGNATURE = bytes(SIGNATURE_LENGTH)


def encode_shortvec(value: int) -> bytes:
    """Compact-u16 length prefix: 7 bits per byte, high bit set on continuation."""
    if not 0 <= value <= 0xFFFF:
        msg = f"shortvec value out of range: {value}"
        raise ValueError(msg)
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_shortvec(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Return (value, new_offset)."""
    value = 0
    for i in range(3):
        byte = data[offset + i]
        value |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return value, offset + i + 1
    msg = "shortvec longer than 3 bytes"
    raise ValueError(msg)


@dataclass
class _KeyFlags:
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Message:
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    account_keys: tuple[PublicKey, ...]
    recent_blockhash: str
    instructions: tuple[Instruction, ...]

    def serialize(self) -> bytes:
        index = {key: i for i, key in enumerate(self.account_keys)}
        out = bytearray(
            [self.num_required_signatures, self.num_readonly_signed, self.num_readonly_unsigned]
        )
        out += encode_shortvec(len(self.account_keys))
        for key in self.account_keys:
            out += bytes(key)
        blockhash = b58decode(self.recent_blockhash)
        if len(blockhash) != 32:
            msg = "Recent blockhash must decode to 32 bytes"
            raise ValueError(msg)
        out += blockhash
        out += encode_shortvec(len(self.instructions))
        for ix in self.instructions:
            out.append(index[ix.program_id])
            out += encode_shortvec(len(ix.accounts))
            out += bytes(index[meta.pubkey] for meta in ix.accounts)
            out += encode_shortvec(len(ix.data))
            out += ix.data
        return bytes(out)

    @property
    def signers(self) -> tuple[PublicKey, ...]:
        return self.account_keys[: self.num_required_signatures]


def compile_message(fee_payer: PublicKey, instructions: list[Instruction], recent_blockhash: str) -> Message:
    """Order account keys: fee payer, signer-writable, signer-readonly, writable, readonly.

    Within each group keys keep the order in which instructions first reference them.
    """
    flags: dict[PublicKey, _KeyFlags] = {fee_payer: _KeyFlags(is_signer=True, is_writable=True)}
    for ix in instructions:
        for meta in ix.accounts:
            entry = flags.setdefault(meta.pubkey, _KeyFlags())
            entry.is_signer |= meta.is_signer
            entry.is_writable |= meta.is_writable
        flags.setdefault(ix.program_id, _KeyFlags())

    others = [key for key in flags if key != fee_payer]

    def group(signer: bool, writable: bool) -> list[PublicKey]:
        return [k for k in others if flags[k].is_signer == signer and flags[k].is_writable == writable]

    signed_writable = group(True, True)
    signed_readonly = group(True, False)
    unsigned_writable = group(False, True)
    unsigned_readonly = group(False, False)

    return Message(
        num_required_signatures=1 + len(signed_writable) + len(signed_readonly),
        num_readonly_signed=len(signed_readonly),
        num_readonly_unsigned=len(unsigned_readonly),
        account_keys=(fee_payer, *signed_writable, *signed_readonly, *unsigned_writable, *unsigned_readonly),
        recent_blockhash=recent_blockhash,
        instructions=tuple(instructions),
    )


@dataclass
class Transaction:
    """A legacy transaction with one signature slot per required signer."""

    message: Message
    signatures: dict[PublicKey, bytes] = field(default_factory=dict)

    @classmethod
    def build(cls, fee_payer: PublicKey, instructions: list[Instruction], recent_blockhash: str) -> Transaction:
        return cls(message=compile_message(fee_payer, instructions, recent_blockhash))

    @property
    def fee_payer(self) -> PublicKey:
        return self.message.account_keys[0]

    def partial_sign(self, *keypairs: Keypair) -> None:
        """Fill the signature slots belonging to ``keypairs``.

        Raises ValueError if a keypair is not a required signer of the message.
        """
        payload = self.message.serialize()
        signers = set(self.message.signers)
        for keypair in keypairs:
            if keypair.public_key not in signers:
                msg = f"{keypair.public_key} is not a required signer"
                raise ValueError(msg)
            self.signatures[keypair.public_key] = keypair.sign(payload)

    def add_signature(self, pubkey: PublicKey, signature: bytes) -> None:
        if pubkey not in self.message.signers:
            msg = f"{pubkey} is not a required signer"
            raise ValueError(msg)
        if len(signature) != SIGNATURE_LENGTH:
            msg = "Signature must be 64 bytes"
            raise ValueError(msg)
        self.signatures[pubkey] = signature

    def missing_signers(self) -> list[PublicKey]:
        return [key for key in self.message.signers if key not in self.signatures]

    def verify_signatures(self) -> bool:
        """True if every filled slot holds a valid signature over the message."""
        payload = self.message.serialize()
        return all(key.verify(payload, sig) for key, sig in self.signatures.items())

    @property
    def signature(self) -> str | None:
        """Base58 fee-payer signature, which doubles as the transaction id."""
        sig = self.signatures.get(self.fee_payer)
        return b58encode(sig) if sig is not None else None

    def serialize(self, *, require_all_signatures: bool = True) -> bytes:
        if require_all_signatures and self.missing_signers():
            missing = ", ".join(str(k) for k in self.missing_signers())
            msg = f"Transaction is missing signatures for: {missing}"
            raise ValueError(msg)
        out = bytearray(encode_shortvec(self.message.num_required_signatures))
        for key in self.message.signers:
            out += self.signatures.get(key, _EMPTY_SIGNATURE)
        out += self.message.serialize()
        return bytes(out)

    def to_base64(self, *, require_all_signatures: bool = True) -> str:
        return base64.b64encode(self.serialize(require_all_signatures=require_all_signatures)).decode("ascii")
