"""
Payment intent store.

All status writes go through ``mark_completed`` / ``mark_failed``, which
issue a single conditional UPDATE guarded by ``status = 'pending'``. The
database decides the winner when several confirmations race for the same
payment: exactly one statement matches the row, every other caller sees a
rowcount of zero and re-reads the terminal state.
"""

import logging
import secrets
import time

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from solapay.database import SessionLocal
from solapay.exceptions import InvalidState, PaymentNotFound, SignatureAlreadyUsed
from solapay.invoice import generate_invoice_number
from solapay.models import Payment, PaymentStatus, utcnow

logger = logging.getLogger(__name__)

# Fields a caller may change on a pending intent. Amount, ids, status and
# settlement data are not in this list.
MUTABLE_FIELDS = {"description", "redirect_url", "tax_amount", "tax_rate", "tax_country"}

# Fields that change the total payable; frozen once the payment is quoted.
AMOUNT_FIELDS = {"tax_amount", "tax_rate", "tax_country"}


def new_external_id() -> str:
    return f"sp_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class PaymentStore:

    def find(self, payment_id):
        db = SessionLocal()
        try:
            return db.get(Payment, payment_id)
        finally:
            db.close()

    def find_by_external_id(self, external_id):
        db = SessionLocal()
        try:
            return db.query(Payment).filter_by(external_id=external_id).first()
        finally:
            db.close()

    def find_by_signature(self, signature):
        db = SessionLocal()
        try:
            return db.query(Payment).filter_by(tx_signature=signature).first()
        finally:
            db.close()

    def create(self, **fields):
        fields.setdefault("external_id", new_external_id())
        fields.setdefault("invoice_number", generate_invoice_number())
        payment = Payment(status=PaymentStatus.PENDING.value, **fields)

        db = SessionLocal()
        try:
            db.add(payment)
            db.commit()
            db.refresh(payment)
        finally:
            db.close()

        logger.info("Created payment %s for %s USDC", payment.external_id, payment.amount_usdc)
        return payment

    def update(self, payment_id, **fields):
        """Apply a partial update to a pending intent."""
        forbidden = set(fields) - MUTABLE_FIELDS
        if forbidden:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(forbidden))}")

        changes_amount = bool(AMOUNT_FIELDS & set(fields))

        db = SessionLocal()
        try:
            query = db.query(Payment).filter(
                Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            if changes_amount:
                query = query.filter(Payment.quoted_at.is_(None))
            updated = query.update(fields, synchronize_session=False)
            db.commit()
            if not updated:
                payment = db.get(Payment, payment_id)
                if payment is None:
                    raise PaymentNotFound("Payment not found")
                if payment.is_pending:
                    raise InvalidState("Payment amount is locked once a transaction has been requested")
                raise InvalidState(f"Payment is {payment.status}")
            return db.get(Payment, payment_id)
        finally:
            db.close()

    def lock_amount(self, payment_id):
        """Freeze the total of a pending intent before it is handed to a wallet."""
        db = SessionLocal()
        try:
            updated = (
                db.query(Payment)
                .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
                .update({Payment.quoted_at: func.coalesce(Payment.quoted_at, utcnow())},
                        synchronize_session=False)
            )
            db.commit()
            if not updated:
                payment = db.get(Payment, payment_id)
                if payment is None:
                    raise PaymentNotFound("Payment not found")
                raise InvalidState(f"Payment already {payment.status}", {"status": payment.status})
            return db.get(Payment, payment_id)
        finally:
            db.close()

    def mark_completed(self, payment_id, signature, verification) -> bool:
        """Settle a pending intent from a verified ledger read. Returns True if this call won."""
        if not verification.verified:
            raise ValueError("Only a verified result can complete a payment")
        return self._transition(payment_id, signature, {
            Payment.status: PaymentStatus.COMPLETED.value,
            Payment.customer_wallet: verification.sender,
            Payment.amount_received: verification.amount,
            Payment.completed_at: utcnow(),
            Payment.invoice_number: func.coalesce(Payment.invoice_number, generate_invoice_number()),
        })

    def mark_failed(self, payment_id, signature, reason, observed_amount=None) -> bool:
        return self._transition(payment_id, signature, {
            Payment.status: PaymentStatus.FAILED.value,
            Payment.failure_reason: reason,
            Payment.amount_received: observed_amount,
        })

    def _transition(self, payment_id, signature, values) -> bool:
        values[Payment.tx_signature] = signature

        db = SessionLocal()
        try:
            matched = (
                db.query(Payment)
                .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
                .update(values, synchronize_session=False)
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise SignatureAlreadyUsed(
                "Transaction signature is already recorded for another payment",
                {"signature": signature},
            ) from exc
        finally:
            db.close()

        return matched == 1
