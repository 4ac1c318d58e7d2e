import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal

_ALPHABET = string.ascii_uppercase + string.digits


def generate_invoice_number(now=None) -> str:
    """INV-YYYYMMDD-XXXXX, five random uppercase alphanumerics."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(5))
    return f"INV-{now:%Y%m%d}-{suffix}"


def _iso(value):
    return value.isoformat() if value else None


def build_invoice(payment, tax_name: str = "Tax") -> dict:
    """Receipt payload for a payment row; amounts are returned as strings."""
    subtotal = Decimal(payment.amount_usdc)
    tax_amount = Decimal(payment.tax_amount or 0)
    tax_rate = Decimal(payment.tax_rate or 0)

    return {
        "invoice_number": payment.invoice_number,
        "date": _iso(payment.created_at),
        "paid_date": _iso(payment.completed_at),
        "status": payment.status,
        "customer": {
            "wallet": payment.customer_wallet or "Not provided",
            "country": payment.tax_country or "Unknown",
        },
        "line_items": [
            {
                "description": payment.description or "Payment",
                "quantity": 1,
                "unit_price": str(subtotal),
                "amount": str(subtotal),
            }
        ],
        "subtotal": str(subtotal),
        "tax_name": tax_name,
        "tax_rate": str(tax_rate),
        "tax_amount": str(tax_amount),
        "total": str(subtotal + tax_amount),
        "currency": "USDC",
        "tx_signature": payment.tx_signature,
    }
