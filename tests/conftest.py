import os
from decimal import Decimal

import pytest
from solders.keypair import Keypair
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def keypair(n):
    return Keypair.from_seed(bytes([n]) * 32)


def signature(n, message=b"solapay-test"):
    return str(keypair(n).sign_message(message))


PLATFORM_WALLET = str(keypair(1).pubkey())
PAYER_WALLET = str(keypair(2).pubkey())
USDC_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

# Must be in place before solapay.database is imported
os.environ["DATABASE_URL"] = "sqlite:///./test_solapay.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PLATFORM_WALLET_ADDRESS"] = PLATFORM_WALLET
os.environ["USDC_MINT_ADDRESS"] = USDC_MINT
os.environ["SOLANA_NETWORK"] = "devnet"
os.environ["SOLANA_COMMITMENT"] = "confirmed"
os.environ["CONFIRMATION_MAX_ATTEMPTS"] = "3"
os.environ["CONFIRMATION_RETRY_DELAY"] = "0"
os.environ["PAYMENT_AMOUNT_TOLERANCE"] = "0.000001"

from solapay.database import Base  # noqa: E402
from solapay.models import Payment, PaymentStatus  # noqa: E402
from solapay.reference import reference_for_payment  # noqa: E402
from solapay.solana_service import LedgerTransaction, TokenBalance  # noqa: E402

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_solapay_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    monkeypatch.setattr("solapay.repository.SessionLocal", TestingSessionLocal)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def make_payment():
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        fields.setdefault("external_id", f"sp_test_{counter['n']}")
        fields.setdefault("merchant_id", "merchant-1")
        fields.setdefault("amount_usdc", Decimal("10.00"))
        fields.setdefault("status", PaymentStatus.PENDING.value)
        fields.setdefault("invoice_number", f"INV-20260101-T{counter['n']:04d}")
        db = TestingSessionLocal()
        payment = Payment(**fields)
        db.add(payment)
        db.commit()
        db.refresh(payment)
        db.close()
        return payment

    return _make


def load_payment(external_id):
    db = TestingSessionLocal()
    payment = db.query(Payment).filter_by(external_id=external_id).first()
    db.close()
    return payment


def ledger_transaction(received, sig="sig", payer=PAYER_WALLET, payee=PLATFORM_WALLET,
                       mint=USDC_MINT, err=None, pre_base=5_000_000, include_pre=True, include_post=True,
                       payment_id=None):
    """A confirmed transfer as the ledger client reports it, `received` in USDC.

    With `payment_id`, the payment's reference key is among the account keys.
    """
    received_base = int(Decimal(received).scaleb(6))
    pre = [TokenBalance(account_index=1, mint=mint, owner=payer, amount=50_000_000, decimals=6)]
    post = [TokenBalance(account_index=1, mint=mint, owner=payer, amount=50_000_000 - received_base, decimals=6)]
    if include_pre:
        pre.append(TokenBalance(account_index=2, mint=mint, owner=payee, amount=pre_base, decimals=6))
    if include_post:
        post.append(TokenBalance(account_index=2, mint=mint, owner=payee, amount=pre_base + received_base, decimals=6))
    keys = [payer, "tokenacct1", "tokenacct2", USDC_MINT]
    if payment_id is not None:
        keys.append(str(reference_for_payment(payment_id)))
    return LedgerTransaction(
        signature=sig,
        slot=1234,
        err=err,
        account_keys=keys,
        pre_token_balances=pre,
        post_token_balances=post,
    )
