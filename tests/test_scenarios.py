"""
End-to-end payment scenarios over the API and a simulated chain
"""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from arcadia.api.server import create_app
from arcadia.api.services import build_services
from arcadia.escrow.abi import encode_process_payment, encode_request_refund
from arcadia.payments.webhooks import SIGNATURE_HEADER
from tests.helpers import (
    BASIC_PRICE,
    CONTRACT,
    TREASURY,
    RecordingGenerationTrigger,
    signed_webhook,
    webhook_payload,
)


def create_basic_request(client: TestClient, **extra) -> str:
    response = client.post(
        "/api/payments/request",
        json={"promptType": "basic_prompt", "brandId": "brand_scenarios", **extra},
    )
    assert response.status_code == 402
    return response.json()["paymentId"]


class TestPaymentScenarios:
    """Full request -> pay -> verify -> status flows"""

    def test_basic_payment_completes(self, client: TestClient, chain, payer, generation):
        """Scenario: exact BASIC payment completes and triggers generation once"""
        payment_id = create_basic_request(client)
        tx_hash = chain.send_transaction(
            payer, CONTRACT, value=BASIC_PRICE, data=encode_process_payment(payment_id, "BASIC")
        )

        verify = client.post("/api/payments/verify", json={"paymentId": payment_id, "transactionHash": tx_hash})
        status = client.get(f"/api/payments/{payment_id}").json()

        assert verify.status_code == 200
        assert status["status"] == "COMPLETED"
        assert status["generationStatus"] == "SUCCEEDED"
        assert status["amount"] == str(BASIC_PRICE)
        assert generation.calls == [payment_id]
        assert chain.ledger.balance_of(TREASURY) == 10 ** 18 + BASIC_PRICE

    def test_wrong_amount_never_completes(self, client: TestClient, chain, payer, generation):
        """Scenario: an underpayment reverts on-chain and the request never completes"""
        payment_id = create_basic_request(client)
        tx_hash = chain.send_transaction(
            payer, CONTRACT, value=4 * 10 ** 15, data=encode_process_payment(payment_id, "BASIC")
        )

        assert chain.revert_reason(tx_hash) is not None
        verify = client.post("/api/payments/verify", json={"paymentId": payment_id, "transactionHash": tx_hash})
        status = client.get(f"/api/payments/{payment_id}").json()

        assert verify.status_code == 422
        assert status["status"] == "FAILED"
        assert generation.calls == []
        assert chain.contract.get_payment(payment_id) is None

    def test_quick_request_expires(self, client: TestClient, clock):
        """Scenario: a 30-minute request with no payment reads EXPIRED afterwards"""
        payment_id = create_basic_request(client, quick=True)

        clock.advance(29 * 60)
        assert client.get(f"/api/payments/{payment_id}").json()["status"] == "PENDING"

        clock.advance(2 * 60)
        assert client.get(f"/api/payments/{payment_id}").json()["status"] == "EXPIRED"

    def test_refund_within_window(self, client: TestClient, chain, payer, clock):
        """Scenario: a refund one hour after payment moves COMPLETED to REFUNDED"""
        payment_id = create_basic_request(client)
        tx_hash = chain.send_transaction(
            payer, CONTRACT, value=BASIC_PRICE, data=encode_process_payment(payment_id, "BASIC")
        )
        client.post("/api/payments/verify", json={"paymentId": payment_id, "transactionHash": tx_hash})
        balance_after_payment = chain.ledger.balance_of(payer)

        clock.advance(60 * 60)
        # Treasury pre-funds the contract so the refund can be paid out
        chain.send_transaction(TREASURY, CONTRACT, value=BASIC_PRICE)
        refund_tx = chain.send_transaction(payer, CONTRACT, data=encode_request_refund(payment_id))
        response = client.post(f"/api/payments/{payment_id}/refund", json={"transactionHash": refund_tx})

        assert response.status_code == 200
        assert response.json()["status"] == "REFUNDED"
        assert chain.ledger.balance_of(payer) == balance_after_payment + BASIC_PRICE


class TestConcurrentWebhooks:
    """Two deliveries of the same COMPLETED webhook racing each other"""

    @pytest.mark.asyncio
    async def test_concurrent_completed_webhooks(self, config, chain, store, clock, payer):
        """Scenario: concurrent deliveries trigger generation once and both report COMPLETED"""
        generation = RecordingGenerationTrigger(delay=0.01)
        services = build_services(config, chain=chain, store=store, generation=generation, clock=clock.now)
        app = create_app(config=config, services=services, run_maintenance=False)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://arcadia.test") as http:
            created = await http.post(
                "/api/payments/request",
                json={"promptType": "basic_prompt", "brandId": "brand_race"},
            )
            payment_id = created.json()["paymentId"]
            tx_hash = chain.send_transaction(
                payer, CONTRACT, value=BASIC_PRICE, data=encode_process_payment(payment_id, "BASIC")
            )
            body, signature = signed_webhook(
                webhook_payload(payment_id, "COMPLETED", clock, transactionHash=tx_hash)
            )

            responses = await asyncio.gather(*[
                http.post("/api/payments/webhook", content=body, headers={SIGNATURE_HEADER: signature})
                for _ in range(2)
            ])

        assert [r.status_code for r in responses] == [200, 200]
        assert [r.json()["status"] for r in responses] == ["COMPLETED", "COMPLETED"]
        assert generation.calls == [payment_id]
