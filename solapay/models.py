import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from solapay.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value)


def utcnow():
    return datetime.now(timezone.utc)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String, unique=True, index=True, nullable=False)  # public payment id, memo payload
    merchant_id = Column(String, index=True)
    amount_usdc = Column(Numeric(18, 6), nullable=False)
    tax_amount = Column(Numeric(18, 6))
    tax_rate = Column(Numeric(9, 6))
    tax_country = Column(String(2))
    description = Column(String)
    redirect_url = Column(String)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    tx_signature = Column(String, unique=True)
    customer_wallet = Column(String)
    amount_received = Column(Numeric(18, 6))
    failure_reason = Column(String)
    invoice_number = Column(String, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True))
    quoted_at = Column(DateTime(timezone=True))  # set once a payable transaction or URL was handed out

    @property
    def total_amount(self) -> Decimal:
        return Decimal(self.amount_usdc) + Decimal(self.tax_amount or 0)

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value
