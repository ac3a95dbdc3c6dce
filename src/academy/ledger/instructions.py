"""Fixed-layout instruction encoders for the system and token programs.

Each builder returns an ``Instruction`` whose data bytes match the on-chain
program's expected layout exactly. Integers are little-endian.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from academy.ledger.keys import PublicKey

SYSTEM_PROGRAM_ID = PublicKey("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = PublicKey("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
RENT_SYSVAR_ID = PublicKey("SysvarRent111111111111111111111111111111111")

MINT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165

# System program instruction index
_SYSTEM_CREATE_ACCOUNT = 0

# Token program instruction tags
_TOKEN_INITIALIZE_MINT = 0
_TOKEN_INITIALIZE_ACCOUNT = 1
_TOKEN_MINT_TO = 7


@dataclass(frozen=True)
class AccountMeta:
    pubkey: PublicKey
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True)
class Instruction:
    program_id: PublicKey
    accounts: tuple[AccountMeta, ...]
    data: bytes


def create_account(
    funder: PublicKey,
    new_account: PublicKey,
    lamports: int,
    space: int,
    owner: PublicKey,
) -> Instruction:
    """System program: allocate and fund ``new_account``, assigning it to ``owner``."""
    data = struct.pack("<IQQ", _SYSTEM_CREATE_ACCOUNT, lamports, space) + bytes(owner)
    return Instruction(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=(
            AccountMeta(funder, is_signer=True, is_writable=True),
            AccountMeta(new_account, is_signer=True, is_writable=True),
        ),
        data=data,
    )


def initialize_mint(
    mint: PublicKey,
    decimals: int,
    mint_authority: PublicKey,
    freeze_authority: PublicKey | None = None,
) -> Instruction:
    """Token program: initialize a mint. The freeze authority is an optional field."""
    data = struct.pack("<BB", _TOKEN_INITIALIZE_MINT, decimals) + bytes(mint_authority)
    if freeze_authority is None:
        data += b"\x00" + bytes(32)
    else:
        data += b"\x01" + bytes(freeze_authority)
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=(
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(RENT_SYSVAR_ID, is_signer=False, is_writable=False),
        ),
        data=data,
    )


def initialize_account(account: PublicKey, mint: PublicKey, owner: PublicKey) -> Instruction:
    """Token program: bind a token account to a mint and an owner."""
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=(
            AccountMeta(account, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(RENT_SYSVAR_ID, is_signer=False, is_writable=False),
        ),
        data=bytes([_TOKEN_INITIALIZE_ACCOUNT]),
    )


def mint_to(mint: PublicKey, destination: PublicKey, authority: PublicKey, amount: int) -> Instruction:
    """Token program: mint ``amount`` base units into ``destination``."""
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=(
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ),
        data=struct.pack("<BQ", _TOKEN_MINT_TO, amount),
    )
