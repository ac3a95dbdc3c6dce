"""Certificate mint transaction construction.

Every attempt generates a fresh mint keypair and token-account keypair, so
an abandoned or failed attempt leaves nothing another attempt can collide
with. The transaction holds, in order:

1. create the mint account, funded by the issuer
2. initialize the mint (0 decimals, the mint itself as authority, no freeze authority)
3. create the token account, funded by the issuer
4. initialize the token account for the learner
5. mint exactly one unit into it, authorized by the issuer
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from academy.ledger.client import ConfirmationResult
from academy.ledger.instructions import (
    MINT_SIZE,
    TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
    Instruction,
    create_account,
    initialize_account,
    initialize_mint,
    mint_to,
)
from academy.ledger.keys import Keypair, PublicKey
from academy.ledger.transaction import Transaction

CERTIFICATE_SUPPLY = 1
CERTIFICATE_DECIMALS = 0


class Ledger(Protocol):
    async def get_rent_exempt_minimum(self, account_size: int) -> int: ...

    async def get_latest_blockhash(self) -> str: ...

    async def send_transaction(self, signed: bytes) -> str: ...

    async def confirm_transaction(self, signature: str, commitment: str = "finalized") -> ConfirmationResult: ...


class IssuanceMode(str, enum.Enum):
    """Who pays for and submits the mint transaction."""

    # Learner is fee payer and co-signs in their wallet (prepare, then confirm)
    WALLET_SIGNED = "wallet"
    # Issuer pays, signs and submits directly
    CUSTODIAL = "custodial"


@dataclass
class MintAttempt:
    transaction: Transaction
    mint: Keypair
    token_account: Keypair
    mode: IssuanceMode

    @property
    def mint_address(self) -> str:
        return str(self.mint.public_key)

    @property
    def token_account_address(self) -> str:
        return str(self.token_account.public_key)


def certificate_instructions(
    issuer: PublicKey,
    recipient: PublicKey,
    mint: PublicKey,
    token_account: PublicKey,
    mint_rent: int,
    token_account_rent: int,
) -> list[Instruction]:
    return [
        create_account(issuer, mint, mint_rent, MINT_SIZE, TOKEN_PROGRAM_ID),
        initialize_mint(mint, CERTIFICATE_DECIMALS, mint_authority=mint),
        create_account(issuer, token_account, token_account_rent, TOKEN_ACCOUNT_SIZE, TOKEN_PROGRAM_ID),
        initialize_account(token_account, mint, recipient),
        mint_to(mint, token_account, issuer, CERTIFICATE_SUPPLY),
    ]


async def build_mint_attempt(
    ledger: Ledger,
    issuer: Keypair,
    recipient: PublicKey,
    mode: IssuanceMode,
) -> MintAttempt:
    """Build the certificate transaction and sign it with every key held here.

    In wallet-signed mode the learner's fee-payer slot stays empty. In
    custodial mode the issuer pays and the transaction is fully signed.
    """
    mint = Keypair.generate()
    token_account = Keypair.generate()

    mint_rent = await ledger.get_rent_exempt_minimum(MINT_SIZE)
    token_account_rent = await ledger.get_rent_exempt_minimum(TOKEN_ACCOUNT_SIZE)
    blockhash = await ledger.get_latest_blockhash()

    fee_payer = recipient if mode is IssuanceMode.WALLET_SIGNED else issuer.public_key
    transaction = Transaction.build(
        fee_payer,
        certificate_instructions(
            issuer.public_key,
            recipient,
            mint.public_key,
            token_account.public_key,
            mint_rent,
            token_account_rent,
        ),
        blockhash,
    )
    transaction.partial_sign(issuer, mint, token_account)
    return MintAttempt(transaction=transaction, mint=mint, token_account=token_account, mode=mode)
