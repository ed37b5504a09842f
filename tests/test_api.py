"""
Integration tests for the payments API
"""

import base64
import json

from fastapi.testclient import TestClient

from arcadia.escrow.abi import encode_process_payment, encode_request_refund
from arcadia.models import PaymentStatus
from arcadia.payments.webhooks import SIGNATURE_HEADER
from tests.helpers import BASIC_PRICE, CONTRACT, PREMIUM_PRICE, TREASURY, signed_webhook, webhook_payload


def request_payment(client: TestClient, **overrides) -> dict:
    body = {"promptType": "premium_prompt", "brandId": "brand_1", "briefId": "brief_1"}
    body.update(overrides)
    response = client.post("/api/payments/request", json=body)
    assert response.status_code == 402
    return response.json()


class TestGeneralEndpoints:
    """Test root, health and manifest"""

    def test_root_endpoint(self, client: TestClient):
        """Test root endpoint returns basic info"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Arcadia Payments"
        assert data["x402_manifest"] == "/x402.json"

    def test_health_check(self, client: TestClient):
        """Test health check endpoint"""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["network"] == "scroll-sepolia"
        assert data["chain_mode"] == "simulated"

    def test_x402_manifest(self, client: TestClient):
        """Test x402 manifest lists tiers and endpoints"""
        response = client.get("/x402.json")
        assert response.status_code == 200
        manifest = response.json()
        assert manifest["name"] == "Arcadia"
        assert "x402-eth-escrow" in manifest["payment_methods"]
        assert manifest["escrow_contract"] == CONTRACT
        assert manifest["tiers"]["PREMIUM"] == str(PREMIUM_PRICE)
        assert manifest["endpoints"]["verify"] == "/api/payments/verify"


class TestPaymentRequestEndpoint:
    """Test POST /api/payments/request"""

    def test_request_payment(self, client: TestClient):
        """Test a payment request responds 402 with payment details"""
        response = client.post(
            "/api/payments/request",
            json={"promptType": "premium_prompt", "brandId": "brand_1"},
        )

        assert response.status_code == 402
        data = response.json()
        assert data["amount"] == str(PREMIUM_PRICE)
        assert data["tier"] == "PREMIUM"
        assert data["recipient"] == CONTRACT
        assert data["status"] == "PENDING"
        assert data["qrCode"].endswith("?format=qr")
        assert data["instructions"]["title"] == "Complete Payment to Generate Veo Prompt"

        required = json.loads(base64.b64decode(response.headers["X-Payment-Required"]))
        assert required["x402Version"] == "1"
        assert required["payment_id"] == data["paymentId"]
        assert required["accepts"][0]["amount"] == str(PREMIUM_PRICE)
        assert required["accepts"][0]["recipient"] == CONTRACT

    def test_unknown_tier(self, client: TestClient):
        """Test unknown tiers are rejected with details"""
        response = client.post("/api/payments/request", json={"promptType": "gold", "brandId": "brand_1"})

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert "Unknown tier: gold" in data["details"]

    def test_missing_brand(self, client: TestClient):
        """Test brand id is required"""
        response = client.post("/api/payments/request", json={"promptType": "basic_prompt"})

        assert response.status_code == 400
        assert "brand_id is required" in response.json()["details"]

    def test_missing_tier(self, client: TestClient):
        """Test FastAPI body validation for a missing tier"""
        response = client.post("/api/payments/request", json={"brandId": "brand_1"})

        assert response.status_code == 422


class TestPaymentStatusEndpoints:
    """Test status polling endpoints"""

    def test_get_status(self, client: TestClient):
        """Test status of a fresh request"""
        created = request_payment(client)

        response = client.get(f"/api/payments/{created['paymentId']}")

        assert response.status_code == 200
        data = response.json()
        assert data["paymentId"] == created["paymentId"]
        assert data["status"] == "PENDING"
        assert data["amount"] == str(PREMIUM_PRICE)

    def test_get_status_by_query(self, client: TestClient):
        """Test the query-parameter form"""
        created = request_payment(client)

        response = client.get("/api/payments/request", params={"paymentId": created["paymentId"]})

        assert response.status_code == 200
        assert response.json()["paymentId"] == created["paymentId"]

    def test_query_form_requires_id(self, client: TestClient):
        """Test a missing paymentId is a 400"""
        response = client.get("/api/payments/request")

        assert response.status_code == 400

    def test_unknown_payment(self, client: TestClient):
        """Test unknown ids are 404"""
        response = client.get("/api/payments/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_list_brand_payments(self, client: TestClient, clock):
        """Test listing a brand's payments newest first"""
        first = request_payment(client, brandId="brand_list")
        clock.advance(5)
        second = request_payment(client, brandId="brand_list")
        request_payment(client, brandId="other_brand")

        response = client.get("/api/payments", params={"brandId": "brand_list"})

        assert response.status_code == 200
        assert [p["paymentId"] for p in response.json()] == [second["paymentId"], first["paymentId"]]


class TestVerifyEndpoint:
    """Test POST /api/payments/verify"""

    def test_verify_valid_payment(self, client: TestClient, chain, payer, generation):
        """Test a valid transaction completes the payment"""
        created = request_payment(client)
        tx_hash = chain.send_transaction(
            sender=payer,
            to=CONTRACT,
            value=PREMIUM_PRICE,
            data=encode_process_payment(created["paymentId"], "PREMIUM"),
        )

        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": tx_hash},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["verified"] is True
        assert data["status"] == "COMPLETED"
        assert data["blockNumber"] == 1
        assert generation.calls == [created["paymentId"]]

    def test_verify_not_mined(self, client: TestClient, chain, payer):
        """Test an unmined transaction is accepted for later (202)"""
        created = request_payment(client, promptType="basic_prompt")
        tx_hash = chain.send_transaction(payer, CONTRACT, value=BASIC_PRICE, data="0x", mine=False)

        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": tx_hash},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["verified"] is False
        assert data["status"] == "PROCESSING"
        assert data["retryable"] is True
        assert client.get(f"/api/payments/{created['paymentId']}").json()["status"] == "PROCESSING"

    def test_verify_wrong_transaction(self, client: TestClient, chain, payer):
        """Test a transaction without the payment id fails the payment (422)"""
        created = request_payment(client, promptType="basic_prompt")
        tx_hash = chain.send_transaction(payer, CONTRACT, value=BASIC_PRICE)

        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": tx_hash},
        )

        assert response.status_code == 422
        data = response.json()
        assert data["verified"] is False
        assert data["status"] == "FAILED"
        assert data["reason"] == "Transaction does not match this payment"

    def test_verify_expired(self, client: TestClient, clock):
        """Test verification after expiry is 410"""
        created = request_payment(client)
        clock.advance(24 * 60 * 60 + 1)

        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": "0x" + "11" * 32},
        )

        assert response.status_code == 410
        assert response.json()["status"] == "EXPIRED"

    def test_verify_after_expiry_sweep(self, client: TestClient, chain, payer, clock):
        """Test verifying a request already marked EXPIRED is still 410"""
        created = request_payment(client)
        tx_hash = chain.send_transaction(
            payer, CONTRACT, value=PREMIUM_PRICE, data=encode_process_payment(created["paymentId"], "PREMIUM")
        )
        body, signature = signed_webhook(webhook_payload(created["paymentId"], "EXPIRED", clock))
        client.post("/api/payments/webhook", content=body, headers={SIGNATURE_HEADER: signature})

        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": tx_hash},
        )

        assert response.status_code == 410
        assert response.json()["status"] == "EXPIRED"

        body, signature = signed_webhook(
            webhook_payload(created["paymentId"], "COMPLETED", clock, transactionHash=tx_hash)
        )
        webhook = client.post("/api/payments/webhook", content=body, headers={SIGNATURE_HEADER: signature})

        assert webhook.status_code == 200
        assert webhook.json()["status"] == "EXPIRED"

    def test_verify_unknown_payment(self, client: TestClient):
        """Test verification of an unknown id is 404"""
        response = client.post(
            "/api/payments/verify",
            json={"paymentId": "missing", "transactionHash": "0x" + "11" * 32},
        )

        assert response.status_code == 404

    def test_verify_requires_fields(self, client: TestClient):
        """Test empty fields fail body validation"""
        response = client.post("/api/payments/verify", json={"paymentId": "", "transactionHash": ""})

        assert response.status_code == 422


class TestWebhookEndpoint:
    """Test /api/payments/webhook"""

    def test_webhook_health(self, client: TestClient):
        """Test the webhook health check"""
        response = client.get("/api/payments/webhook")

        assert response.status_code == 200
        assert response.json()["service"] == "x402-webhook"

    def test_signed_webhook(self, client: TestClient, clock):
        """Test a signed FAILED notice is applied"""
        created = request_payment(client)
        body, signature = signed_webhook(
            webhook_payload(created["paymentId"], "FAILED", clock, reason="User rejected transaction")
        )

        response = client.post(
            "/api/payments/webhook",
            content=body,
            headers={SIGNATURE_HEADER: signature, "content-type": "application/json"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["paymentId"] == created["paymentId"]
        assert data["status"] == "FAILED"

    def test_unsigned_webhook(self, client: TestClient, clock):
        """Test a missing signature is 401 and changes nothing"""
        created = request_payment(client)
        body, _ = signed_webhook(webhook_payload(created["paymentId"], "FAILED", clock))

        response = client.post("/api/payments/webhook", content=body)

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid signature"
        assert client.get(f"/api/payments/{created['paymentId']}").json()["status"] == "PENDING"

    def test_malformed_webhook(self, client: TestClient):
        """Test a signed but malformed body is 400"""
        body, signature = signed_webhook({"status": "FAILED"})

        response = client.post("/api/payments/webhook", content=body, headers={SIGNATURE_HEADER: signature})

        assert response.status_code == 400

    def test_illegal_transition_webhook(self, client: TestClient, clock):
        """Test a status change outside the graph is 409"""
        created = request_payment(client)
        for status in ("FAILED", "PROCESSING"):
            body, signature = signed_webhook(webhook_payload(created["paymentId"], status, clock))
            response = client.post("/api/payments/webhook", content=body, headers={SIGNATURE_HEADER: signature})

        assert response.status_code == 409
        assert response.json()["code"] == "ILLEGAL_TRANSITION"


class TestRefundEndpoint:
    """Test POST /api/payments/{payment_id}/refund"""

    def _complete(self, client, chain, payer):
        created = request_payment(client, promptType="basic_prompt")
        tx_hash = chain.send_transaction(
            payer,
            CONTRACT,
            value=BASIC_PRICE,
            data=encode_process_payment(created["paymentId"], "BASIC"),
        )
        response = client.post(
            "/api/payments/verify",
            json={"paymentId": created["paymentId"], "transactionHash": tx_hash},
        )
        assert response.status_code == 200
        return created["paymentId"]

    def test_refund(self, client: TestClient, chain, payer):
        """Test recording an executed on-chain refund"""
        payment_id = self._complete(client, chain, payer)
        chain.send_transaction(TREASURY, CONTRACT, value=BASIC_PRICE)
        refund_tx = chain.send_transaction(payer, CONTRACT, data=encode_request_refund(payment_id))

        response = client.post(f"/api/payments/{payment_id}/refund", json={"transactionHash": refund_tx})

        assert response.status_code == 200
        assert response.json()["status"] == PaymentStatus.REFUNDED.value

    def test_refund_not_executed(self, client: TestClient, chain, payer):
        """Test a refund that did not happen on-chain is rejected"""
        payment_id = self._complete(client, chain, payer)

        response = client.post(f"/api/payments/{payment_id}/refund")

        assert response.status_code == 422
        assert client.get(f"/api/payments/{payment_id}").json()["status"] == "COMPLETED"

    def test_refund_pending_payment(self, client: TestClient):
        """Test refunds of unpaid requests are 409"""
        created = request_payment(client)

        response = client.post(f"/api/payments/{created['paymentId']}/refund")

        assert response.status_code == 409

    def test_refunds_disabled(self, client: TestClient, config):
        """Test the refunds switch maps to 403"""
        config.refunds_enabled = False
        created = request_payment(client)

        response = client.post(f"/api/payments/{created['paymentId']}/refund")

        assert response.status_code == 403
        assert response.json()["code"] == "REFUNDS_DISABLED"
