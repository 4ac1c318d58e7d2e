"""
Unsigned USDC transfer transactions for checkout payments.

The built transaction contains, in order:

1. associated token account creation for the payer, if missing,
2. associated token account creation for the payee, if missing,
3. ``transfer_checked`` of the total in base units, with the payment
   reference attached as a read-only key,
4. a memo carrying ``SolaPay:<payment id>``.

The payer is the fee payer and funds any account creation. Nothing is
signed or sent from here.
"""

import base64
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import List

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.memo.instructions import MemoParams, create_memo
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from solapay.config import USDC_DECIMALS, get_platform_wallet, get_usdc_mint
from solapay.exceptions import (
    ConfigurationMissing,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidState,
)
from solapay.reference import reference_for_payment
from solapay.solana_service import account_exists, get_latest_blockhash, get_token_balance

logger = logging.getLogger(__name__)

MEMO_PREFIX = "SolaPay"


@dataclass
class BuiltTransaction:
    transaction: Transaction
    instructions: List[Instruction]
    reference: Pubkey
    amount_base_units: int
    blockhash: Hash
    last_valid_block_height: int

    def serialize(self) -> str:
        """Base64 wire bytes with empty signature slots, ready for a wallet to sign."""
        return base64.b64encode(bytes(self.transaction)).decode("ascii")


def parse_address(address: str) -> Pubkey:
    try:
        pubkey = Pubkey.from_string(address)
    except (ValueError, TypeError):
        raise InvalidAddress(f"Invalid account public key: {address!r}")
    if not pubkey.is_on_curve():
        raise InvalidAddress(f"Account {address} cannot sign transactions")
    return pubkey


def _config_pubkey(getter, name: str) -> Pubkey:
    value = getter()
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise ConfigurationMissing(f"{name} is not a valid address: {value!r}")


def to_base_units(amount: Decimal, decimals: int = USDC_DECIMALS) -> int:
    """Convert a token amount to base units, dropping any sub-unit remainder."""
    scaled = Decimal(amount).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def memo_for_payment(external_id: str) -> bytes:
    return f"{MEMO_PREFIX}:{external_id}".encode("utf-8")


async def build_transfer(payer_address: str, payment) -> BuiltTransaction:
    payer = parse_address(payer_address)

    if not payment.is_pending:
        raise InvalidState(f"Payment already {payment.status}")

    payee = _config_pubkey(get_platform_wallet, "PLATFORM_WALLET_ADDRESS")
    mint = _config_pubkey(get_usdc_mint, "USDC_MINT_ADDRESS")

    total = payment.total_amount
    if total <= 0:
        raise InvalidAmount(f"Total payable must be positive, got {total}")
    amount = to_base_units(total)
    if amount <= 0:
        raise InvalidAmount(f"Total payable {total} is below the smallest USDC unit")

    payer_token_account = get_associated_token_address(payer, mint)
    payee_token_account = get_associated_token_address(payee, mint)

    instructions = []

    if await account_exists(payer_token_account):
        balance = await get_token_balance(payer_token_account)
        if balance < amount:
            raise InsufficientFunds(
                "Insufficient USDC balance",
                {
                    "required": str(Decimal(amount).scaleb(-USDC_DECIMALS)),
                    "available": str(Decimal(balance).scaleb(-USDC_DECIMALS)),
                },
            )
    else:
        logger.info("Payer token account %s missing, adding creation instruction", payer_token_account)
        instructions.append(create_associated_token_account(payer, payer, mint))

    if not await account_exists(payee_token_account):
        logger.info("Payee token account %s missing, payer funds its creation", payee_token_account)
        instructions.append(create_associated_token_account(payer, payee, mint))

    reference = reference_for_payment(payment.external_id)
    transfer = transfer_checked(
        TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=payer_token_account,
            mint=mint,
            dest=payee_token_account,
            owner=payer,
            amount=amount,
            decimals=USDC_DECIMALS,
        )
    )
    instructions.append(
        Instruction(
            transfer.program_id,
            transfer.data,
            list(transfer.accounts) + [AccountMeta(reference, is_signer=False, is_writable=False)],
        )
    )
    instructions.append(
        create_memo(MemoParams(program_id=MEMO_PROGRAM_ID, signer=payer, message=memo_for_payment(payment.external_id)))
    )

    latest = await get_latest_blockhash()
    message = Message.new_with_blockhash(instructions, payer, latest.blockhash)

    logger.info(
        "Built transfer for payment %s: %s base units from %s, %d instructions",
        payment.external_id, amount, payer, len(instructions),
    )

    return BuiltTransaction(
        transaction=Transaction.new_unsigned(message),
        instructions=instructions,
        reference=reference,
        amount_base_units=amount,
        blockhash=latest.blockhash,
        last_valid_block_height=latest.last_valid_block_height,
    )
