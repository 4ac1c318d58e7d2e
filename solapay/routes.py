import asyncio
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from solapay.auth import verify_token
from solapay.config import get_base_url, get_platform_wallet, get_usdc_mint
from solapay.exceptions import InvalidState, MissingFields, PaymentNotFound, VerificationFailed
from solapay.invoice import build_invoice
from solapay.models import PaymentStatus
from solapay.reference import reference_for_payment
from solapay.repository import PaymentStore
from solapay.settlement import confirm_payment
from solapay.solana_pay import encode_transfer_url, qr_data_url
from solapay.taxes import calculate_tax, get_tax_info
from solapay.transaction_builder import build_transfer, to_base_units

router = APIRouter(prefix="/payments")
store = PaymentStore()

CHECKOUT_LABEL = "SolaPay Checkout"


class PaymentLinkRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=6)
    description: Optional[str] = Field(default=None, max_length=500)
    redirect_url: Optional[str] = None


class TaxRequest(BaseModel):
    country: str = Field(min_length=2, max_length=2)


class BuildTransactionRequest(BaseModel):
    payment_id: Optional[str] = None
    account: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    payment_id: Optional[str] = None
    signature: Optional[str] = None


def _get_payment(payment_id: str):
    payment = store.find_by_external_id(payment_id)
    if payment is None:
        raise PaymentNotFound("Payment not found")
    return payment


def _get_pending_payment(payment_id: str):
    payment = _get_payment(payment_id)
    if not payment.is_pending:
        raise InvalidState(f"Payment already {payment.status}", {"status": payment.status})
    return payment


def _amount(value):
    return str(value) if value is not None else None


def _tax_payload(calculation):
    return {
        "subtotal": _amount(calculation.subtotal),
        "tax_amount": _amount(calculation.tax_amount),
        "tax_rate": _amount(calculation.tax_rate),
        "tax_name": calculation.tax_name,
        "tax_country": calculation.country,
        "total": _amount(calculation.total),
    }


@router.post("")
def create_payment_link(request: PaymentLinkRequest, claims=Depends(verify_token)):
    payment = store.create(
        merchant_id=claims["sub"],
        amount_usdc=request.amount,
        description=request.description,
        redirect_url=request.redirect_url or None,
    )
    base_url = get_base_url()
    return {
        "payment": {
            "id": payment.external_id,
            "checkout_url": f"{base_url}/checkout/{payment.external_id}",
            "receipt_url": f"{base_url}/receipt/{payment.external_id}",
            "invoice_number": payment.invoice_number,
            "amount": _amount(payment.amount_usdc),
            "description": payment.description,
            "status": payment.status,
            "created_at": payment.created_at.isoformat(),
        }
    }


async def _build(payment_id, account):
    if not payment_id or not account:
        raise MissingFields("Missing payment_id or account")
    payment = await asyncio.to_thread(_get_pending_payment, payment_id)
    built = await build_transfer(account, payment)

    locked = await asyncio.to_thread(store.lock_amount, payment.id)
    if to_base_units(locked.total_amount) != built.amount_base_units:
        raise InvalidState("Payment amount changed, request a new transaction")

    return {
        "transaction": built.serialize(),
        "message": f"Pay {locked.total_amount} USDC",
        "reference": str(built.reference),
        "last_valid_block_height": built.last_valid_block_height,
    }


@router.post("/build-transaction")
async def build_transaction(request: BuildTransactionRequest):
    return await _build(request.payment_id, request.account)


@router.get("/build-transaction")
async def build_transaction_query(payment_id: Optional[str] = None, account: Optional[str] = None):
    # Some wallets only issue GET transaction requests
    return await _build(payment_id, account)


@router.post("/confirm")
async def confirm(request: ConfirmPaymentRequest):
    if not request.payment_id or not request.signature:
        raise MissingFields("Missing payment_id or signature")

    outcome = await confirm_payment(request.payment_id, request.signature, store=store)
    payment = outcome.payment

    if not outcome.success:
        raise VerificationFailed(
            "Transaction verification failed",
            {
                "details": outcome.error,
                "status": payment.status,
                "expected_amount": _amount(payment.total_amount),
                "observed_amount": _amount(outcome.observed_amount),
                "tx_signature": payment.tx_signature,
            },
        )

    return {
        "success": True,
        "status": payment.status,
        "observed_amount": _amount(outcome.observed_amount),
        "observed_payer": outcome.observed_payer,
        "invoice_number": payment.invoice_number,
        "tx_signature": payment.tx_signature,
        "completed_at": payment.completed_at.isoformat() if payment.completed_at else None,
    }


@router.get("/{payment_id}")
def checkout_details(payment_id: str):
    payment = _get_pending_payment(payment_id)
    # Without a recorded country the default rate is shown; nothing is stored
    calculation = calculate_tax(payment.amount_usdc, payment.tax_country)
    return {
        "payment": {
            "id": payment.external_id,
            "amount": _amount(payment.amount_usdc),
            "description": payment.description or "Payment",
            "status": payment.status,
            "created_at": payment.created_at.isoformat(),
            "amount_locked": payment.quoted_at is not None,
        },
        "tax": _tax_payload(calculation),
    }


@router.post("/{payment_id}/tax")
def record_tax(payment_id: str, request: TaxRequest):
    payment = _get_pending_payment(payment_id)
    calculation = calculate_tax(payment.amount_usdc, request.country)
    store.update(
        payment.id,
        tax_amount=calculation.tax_amount,
        tax_rate=calculation.tax_rate,
        tax_country=calculation.country,
    )
    return {"tax": _tax_payload(calculation)}


@router.get("/{payment_id}/solana-pay-url")
def solana_pay_url(payment_id: str):
    payment = _get_pending_payment(payment_id)
    payment = store.lock_amount(payment.id)
    reference = reference_for_payment(payment.external_id)
    url = encode_transfer_url(
        recipient=get_platform_wallet(),
        amount=payment.total_amount,
        spl_token=get_usdc_mint(),
        reference=reference,
        label=CHECKOUT_LABEL,
        message=payment.description or f"Payment {payment.external_id}",
    )
    return {"url": url, "reference": str(reference), "qr_code": qr_data_url(url)}


@router.get("/{payment_id}/receipt")
def receipt(payment_id: str):
    payment = _get_payment(payment_id)
    if payment.status != PaymentStatus.COMPLETED.value:
        raise InvalidState(f"Payment is {payment.status}", {"status": payment.status})
    return {"invoice": build_invoice(payment, tax_name=get_tax_info(payment.tax_country).name)}
