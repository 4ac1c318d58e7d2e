from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from solders.hash import Hash

from conftest import PAYER_WALLET, PLATFORM_WALLET, USDC_MINT, load_payment, signature
from solapay.confirmation import ConfirmationState
from solapay.main import app as fastapi_app
from solapay.solana_service import Blockhash
from solapay.verification import VerificationResult
import solapay.auth

SIG = signature(30)


@pytest.fixture
def client():
    fastapi_app.dependency_overrides[solapay.auth.verify_token] = lambda: {"sub": "merchant-1"}
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def ledger(mocker):
    mocker.patch("solapay.transaction_builder.account_exists", new_callable=mocker.AsyncMock, return_value=True)
    mocker.patch("solapay.transaction_builder.get_token_balance", new_callable=mocker.AsyncMock,
                 return_value=100_000_000)
    mocker.patch("solapay.transaction_builder.get_latest_blockhash", new_callable=mocker.AsyncMock,
                 return_value=Blockhash(blockhash=Hash(bytes([3]) * 32), last_valid_block_height=77))


def test_create_payment_link(client):
    response = client.post("/payments", json={"amount": 25.5, "description": "Logo design"})

    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["id"].startswith("sp_")
    assert payment["checkout_url"].endswith(f"/checkout/{payment['id']}")
    assert payment["invoice_number"].startswith("INV-")
    assert payment["status"] == "pending"
    assert load_payment(payment["id"]).merchant_id == "merchant-1"


def test_create_payment_link_rejects_non_positive_amount(client):
    response = client.post("/payments", json={"amount": 0})

    assert response.status_code == 422


def test_create_payment_link_requires_token():
    with TestClient(fastapi_app) as c:
        response = c.post("/payments", json={"amount": 5}, headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing token"


def test_create_payment_link_with_real_token():
    token = jwt.encode({"sub": "merchant-42"}, "test-secret", algorithm="HS256")
    with TestClient(fastapi_app) as c:
        response = c.post("/payments", json={"amount": 5}, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert load_payment(response.json()["payment"]["id"]).merchant_id == "merchant-42"


def test_checkout_details_and_tax(client, make_payment):
    make_payment(external_id="sp_checkout", amount_usdc=Decimal("20.00"))

    details = client.get("/payments/sp_checkout")
    assert details.status_code == 200
    assert details.json()["tax"]["tax_country"] == "US"
    assert Decimal(details.json()["tax"]["total"]) == Decimal("20.00")

    tax = client.post("/payments/sp_checkout/tax", json={"country": "de"})
    assert tax.status_code == 200
    assert tax.json()["tax"]["tax_country"] == "DE"
    assert tax.json()["tax"]["tax_name"] == "VAT"
    assert Decimal(tax.json()["tax"]["tax_rate"]) == Decimal("19")
    assert Decimal(tax.json()["tax"]["total"]) == Decimal("23.80")

    details = client.get("/payments/sp_checkout")
    assert Decimal(details.json()["tax"]["total"]) == Decimal("23.80")
    assert load_payment("sp_checkout").total_amount == Decimal("23.80")


def test_tax_is_computed_server_side(client, make_payment):
    make_payment(external_id="sp_taxfree", amount_usdc=Decimal("10.00"))

    response = client.post("/payments/sp_taxfree/tax",
                           json={"country": "DE", "tax_amount": 0, "tax_rate": 0})

    assert response.status_code == 200
    stored = load_payment("sp_taxfree")
    assert stored.tax_amount == Decimal("1.90")
    assert stored.tax_rate == Decimal("19")
    assert stored.total_amount == Decimal("11.90")


def test_tax_for_unknown_country_is_zero(client, make_payment):
    make_payment(external_id="sp_zz")

    response = client.post("/payments/sp_zz/tax", json={"country": "ZZ"})

    assert response.status_code == 200
    assert Decimal(response.json()["tax"]["tax_amount"]) == Decimal("0")
    assert client.post("/payments/sp_zz/tax", json={"country": "DEU"}).status_code == 422


def test_checkout_details_for_completed_payment(client, make_payment):
    make_payment(external_id="sp_done", status="completed")

    assert client.get("/payments/sp_done").status_code == 409
    assert client.post("/payments/sp_done/tax", json={"country": "FR"}).status_code == 409
    assert client.get("/payments/sp_unknown").status_code == 404


def test_solana_pay_url(client, make_payment):
    make_payment(external_id="sp_url", amount_usdc=Decimal("12.50"))

    response = client.get("/payments/sp_url/solana-pay-url")

    assert response.status_code == 200
    body = response.json()
    assert body["url"].startswith(f"solana:{PLATFORM_WALLET}?amount=12.5&spl-token={USDC_MINT}")
    assert f"reference={body['reference']}" in body["url"]
    assert body["qr_code"].startswith("data:image/svg+xml;base64,")

    # Handing out the URL fixes the amount it encodes
    assert client.post("/payments/sp_url/tax", json={"country": "FR"}).status_code == 409
    assert load_payment("sp_url").quoted_at is not None


def test_build_transaction(client, make_payment, ledger):
    make_payment(external_id="sp_build")

    response = client.post("/payments/build-transaction", json={"payment_id": "sp_build", "account": PAYER_WALLET})

    assert response.status_code == 200
    body = response.json()
    assert body["transaction"]
    assert body["last_valid_block_height"] == 77
    assert body["message"] == "Pay 10.000000 USDC"
    assert load_payment("sp_build").quoted_at is not None


def test_build_transaction_via_query(client, make_payment, ledger):
    make_payment(external_id="sp_get")

    response = client.get("/payments/build-transaction", params={"payment_id": "sp_get", "account": PAYER_WALLET})

    assert response.status_code == 200


@pytest.mark.parametrize("payload,status", [
    ({"payment_id": "sp_err"}, 400),
    ({"payment_id": "sp_err", "account": "garbage"}, 400),
    ({"payment_id": "sp_nope", "account": PAYER_WALLET}, 404),
])
def test_build_transaction_errors(client, make_payment, ledger, payload, status):
    make_payment(external_id="sp_err")

    response = client.post("/payments/build-transaction", json=payload)

    assert response.status_code == status


def test_build_transaction_for_completed_payment(client, make_payment, ledger):
    make_payment(external_id="sp_completed", status="completed")

    response = client.post("/payments/build-transaction",
                           json={"payment_id": "sp_completed", "account": PAYER_WALLET})

    assert response.status_code == 409
    assert response.json()["status"] == "completed"


def test_build_transaction_without_payee_config(client, make_payment, ledger, monkeypatch):
    make_payment(external_id="sp_cfg")
    monkeypatch.delenv("PLATFORM_WALLET_ADDRESS")

    response = client.post("/payments/build-transaction", json={"payment_id": "sp_cfg", "account": PAYER_WALLET})

    assert response.status_code == 500
    assert response.json()["detail"] == "PLATFORM_WALLET_ADDRESS is not set"


def test_confirm_payment_success(client, make_payment, mocker):
    make_payment(external_id="sp_ok")
    mocker.patch("solapay.settlement.poll_confirmation", new_callable=mocker.AsyncMock,
                 return_value=ConfirmationState.CONFIRMED)
    mocker.patch("solapay.settlement.verify_transaction", new_callable=mocker.AsyncMock,
                 return_value=VerificationResult(verified=True, amount=Decimal("10.000000"),
                                                 recipient=PLATFORM_WALLET, sender=PAYER_WALLET))

    response = client.post("/payments/confirm", json={"payment_id": "sp_ok", "signature": SIG})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "completed"
    assert body["observed_payer"] == PAYER_WALLET
    assert Decimal(body["observed_amount"]) == Decimal("10")
    assert body["tx_signature"] == SIG


def test_confirm_payment_timeout(client, make_payment, mocker):
    make_payment(external_id="sp_slow")
    mocker.patch("solapay.settlement.poll_confirmation", new_callable=mocker.AsyncMock,
                 return_value=ConfirmationState.EXHAUSTED)

    response = client.post("/payments/confirm", json={"payment_id": "sp_slow", "signature": SIG})

    assert response.status_code == 408
    assert response.json()["detail"] == "Transaction confirmation timeout"
    assert load_payment("sp_slow").status == "pending"


def test_confirm_payment_verification_failure(client, make_payment, mocker):
    make_payment(external_id="sp_short")
    mocker.patch("solapay.settlement.poll_confirmation", new_callable=mocker.AsyncMock,
                 return_value=ConfirmationState.CONFIRMED)
    mocker.patch("solapay.settlement.verify_transaction", new_callable=mocker.AsyncMock,
                 return_value=VerificationResult(verified=False, amount=Decimal("9.500000"),
                                                 error="Amount mismatch: expected 10.000000, got 9.500000"))

    response = client.post("/payments/confirm", json={"payment_id": "sp_short", "signature": SIG})

    assert response.status_code == 400
    body = response.json()
    assert body["detail"] == "Transaction verification failed"
    assert body["status"] == "failed"
    assert Decimal(body["expected_amount"]) == Decimal("10")
    assert Decimal(body["observed_amount"]) == Decimal("9.5")


@pytest.mark.parametrize("payload,status", [
    ({"payment_id": "sp_x"}, 400),
    ({"signature": SIG}, 400),
    ({"payment_id": "sp_x", "signature": "bad"}, 400),
    ({"payment_id": "sp_missing", "signature": SIG}, 404),
])
def test_confirm_payment_input_errors(client, make_payment, payload, status):
    make_payment(external_id="sp_x")

    assert client.post("/payments/confirm", json=payload).status_code == status


def test_receipt(client, make_payment):
    make_payment(external_id="sp_receipt", status="completed", tx_signature=SIG,
                 customer_wallet=PAYER_WALLET, tax_amount=Decimal("1.00"), tax_country="US")
    make_payment(external_id="sp_open")

    response = client.get("/payments/sp_receipt/receipt")

    assert response.status_code == 200
    invoice = response.json()["invoice"]
    assert invoice["customer"]["wallet"] == PAYER_WALLET
    assert Decimal(invoice["total"]) == Decimal("11.00")
    assert client.get("/payments/sp_open/receipt").status_code == 409
