"""
Settlement of checkout payments from client-reported signatures.

``confirm_payment`` is the only code path that moves a payment out of
``pending``. A terminal payment is answered from its stored record and
never touches the ledger again, whatever signature the caller sends.
A transaction that does not carry the payment's reference key belongs to
some other checkout and is rejected without recording anything.

Store calls are blocking SQLAlchemy round-trips and run in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from solders.signature import Signature

from solapay.config import get_platform_wallet
from solapay.confirmation import ConfirmationState, poll_confirmation
from solapay.exceptions import (
    ConfirmationTimeout,
    InvalidSignature,
    PaymentNotFound,
    ReferenceMismatch,
    SignatureAlreadyUsed,
)
from solapay.models import Payment, PaymentStatus
from solapay.reference import reference_for_payment
from solapay.repository import PaymentStore
from solapay.verification import ERROR_REFERENCE, verify_transaction

logger = logging.getLogger(__name__)


@dataclass
class SettlementOutcome:
    success: bool
    payment: Payment
    transitioned: bool = False
    observed_amount: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def observed_payer(self) -> Optional[str]:
        return self.payment.customer_wallet


def _validate_signature(signature: str) -> None:
    try:
        Signature.from_string(signature)
    except (ValueError, TypeError):
        raise InvalidSignature(f"Invalid transaction signature: {signature!r}")


def recorded_outcome(payment: Payment) -> SettlementOutcome:
    completed = payment.status == PaymentStatus.COMPLETED.value
    return SettlementOutcome(
        success=completed,
        payment=payment,
        observed_amount=payment.amount_received,
        error=None if completed else payment.failure_reason,
    )


async def confirm_payment(payment_id: str, signature: str, store: Optional[PaymentStore] = None) -> SettlementOutcome:
    store = store or PaymentStore()
    _validate_signature(signature)

    payment = await asyncio.to_thread(store.find_by_external_id, payment_id)
    if payment is None:
        raise PaymentNotFound("Payment not found")

    if not payment.is_pending:
        if payment.tx_signature != signature:
            logger.warning(
                "Payment %s is already %s with %s; ignoring signature %s",
                payment_id, payment.status, payment.tx_signature, signature,
            )
        return recorded_outcome(payment)

    owner = await asyncio.to_thread(store.find_by_signature, signature)
    if owner is not None and owner.id != payment.id:
        raise SignatureAlreadyUsed(
            "Transaction signature is already recorded for another payment",
            {"signature": signature},
        )

    state = await poll_confirmation(signature)
    if state is ConfirmationState.EXHAUSTED:
        raise ConfirmationTimeout(
            "Transaction confirmation timeout",
            {"payment_id": payment_id, "signature": signature},
        )

    expected = payment.total_amount
    reference = str(reference_for_payment(payment.external_id))
    result = await verify_transaction(signature, expected, get_platform_wallet(), reference=reference)

    if not result.verified and result.error == ERROR_REFERENCE:
        logger.warning("Signature %s does not reference payment %s", signature, payment_id)
        raise ReferenceMismatch(
            "Transaction does not belong to this payment",
            {"details": ERROR_REFERENCE, "status": payment.status, "signature": signature},
        )

    if result.verified:
        won = await asyncio.to_thread(store.mark_completed, payment.id, signature, result)
    else:
        logger.error(
            "Verification failed for payment %s (signature %s): %s",
            payment_id, signature, result.error,
        )
        won = await asyncio.to_thread(
            store.mark_failed, payment.id, signature, result.error, observed_amount=result.amount)

    current = await asyncio.to_thread(store.find, payment.id)
    if not won:
        logger.info("Payment %s was settled concurrently as %s", payment_id, current.status)
        return recorded_outcome(current)

    if result.verified:
        logger.info(
            "Payment %s completed: %s USDC from %s (signature %s)",
            payment_id, result.amount, result.sender, signature,
        )
        return SettlementOutcome(
            success=True,
            payment=current,
            transitioned=True,
            observed_amount=result.amount,
        )

    return SettlementOutcome(
        success=False,
        payment=current,
        transitioned=True,
        observed_amount=result.amount,
        error=result.error,
    )
