"""
Error taxonomy for the checkout service.

Every error raised by the payment core derives from PaymentError and
carries the HTTP status the API layer answers with. ``extra`` holds
structured context (amounts, signatures) that is merged into the JSON
error body next to ``detail``.

    PaymentError
    ├── InvalidAddress, InvalidSignature, InvalidAmount,
    │   InsufficientFunds, MissingFields          (400)
    ├── VerificationFailed                        (400, terminal)
    ├── PaymentNotFound                           (404)
    ├── ConfirmationTimeout                       (408, retryable)
    ├── InvalidState, SignatureAlreadyUsed        (409)
    ├── ConfigurationMissing                      (500)
    └── LedgerUnavailable                         (503, retryable)
"""

from typing import Any, Dict, Optional


class PaymentError(Exception):
    status_code = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, **self.extra}


class MissingFields(PaymentError):
    status_code = 400


class InvalidAddress(PaymentError):
    status_code = 400


class InvalidSignature(PaymentError):
    status_code = 400


class InvalidAmount(PaymentError):
    status_code = 400


class InsufficientFunds(PaymentError):
    status_code = 400


class VerificationFailed(PaymentError):
    status_code = 400


class ReferenceMismatch(VerificationFailed):
    """The transaction does not carry this payment's reference key; nothing is recorded."""


class PaymentNotFound(PaymentError):
    status_code = 404


class ConfirmationTimeout(PaymentError):
    status_code = 408


class InvalidState(PaymentError):
    status_code = 409


class SignatureAlreadyUsed(PaymentError):
    status_code = 409


class ConfigurationMissing(PaymentError):
    status_code = 500


class LedgerUnavailable(PaymentError):
    status_code = 503
