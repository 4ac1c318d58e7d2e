"""
Independent verification of a payment transaction against ledger data.

The verdict is derived only from the transaction as recorded on chain:
the payee's token balance before and after the transaction gives the
amount received, the fee payer (first account key) is the sender, and the
payment's reference key ties the transaction to one checkout. Nothing
reported by the paying client is consulted.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from solapay.config import get_amount_tolerance, get_platform_wallet, get_usdc_mint
from solapay.solana_service import get_transaction

logger = logging.getLogger(__name__)

ERROR_NOT_FOUND = "Transaction not found"
ERROR_ON_CHAIN = "Transaction failed on-chain"
ERROR_BALANCES = "Token balances unavailable"
ERROR_REFERENCE = "Reference mismatch"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    amount: Optional[Decimal] = None
    recipient: Optional[str] = None
    sender: Optional[str] = None
    error: Optional[str] = None


def _balance_for(balances, owner: str, mint: str):
    for balance in balances:
        if balance.owner == owner and balance.mint == mint:
            return balance
    return None


def amount_matches(observed: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    return abs(observed - expected) <= tolerance


async def verify_transaction(signature: str, expected_amount, expected_payee: Optional[str] = None,
                             reference: Optional[str] = None) -> VerificationResult:
    """Check that ``signature`` moved ``expected_amount`` USDC to the payee.

    When ``reference`` is given, the transaction must list it among its
    account keys; otherwise it pays for something else and is reported as
    a reference mismatch before any other check.

    Raises LedgerUnavailable on RPC failure; a network problem is never
    reported as a failed verification.
    """
    payee = expected_payee or get_platform_wallet()
    mint = get_usdc_mint()
    expected = Decimal(expected_amount)

    tx = await get_transaction(signature)
    if tx is None:
        return VerificationResult(verified=False, error=ERROR_NOT_FOUND)

    if reference is not None and reference not in tx.account_keys:
        return VerificationResult(verified=False, recipient=payee, error=ERROR_REFERENCE)

    if tx.err is not None:
        logger.warning("Transaction %s carries execution error %s", signature, tx.err)
        return VerificationResult(verified=False, error=ERROR_ON_CHAIN)

    pre = _balance_for(tx.pre_token_balances, payee, mint)
    post = _balance_for(tx.post_token_balances, payee, mint)
    if pre is None or post is None:
        return VerificationResult(verified=False, recipient=payee, error=ERROR_BALANCES)

    received = Decimal(post.amount - pre.amount).scaleb(-post.decimals)

    if not amount_matches(received, expected, get_amount_tolerance()):
        return VerificationResult(
            verified=False,
            amount=received,
            recipient=payee,
            error=f"Amount mismatch: expected {expected}, got {received}",
        )

    return VerificationResult(
        verified=True,
        amount=received,
        recipient=payee,
        sender=tx.fee_payer,
    )
