"""
Tests for the checkout, payment webhook and credits endpoints.
"""

import json
from decimal import Decimal

import pytest
from httpx import AsyncClient

from conftest import TEST_USER_ID, WEBHOOK_SIGNATURE, give_credits
from rally.core.errors import PaymentGatewayError
from rally.schemas.checkout import PurchaseIntent
from rally.services import attendance_service
from rally.services.intent_builder import PurchaseIntentBuilder


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_rewards_require_auth(client: AsyncClient, paid_event):
    response = await client.get(f"/api/v1/checkout/events/{paid_event.id}/rewards")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_rewards(client: AsyncClient, auth_headers, club, paid_event, rewards):
    await give_credits(club, 60)

    response = await client.get(f"/api/v1/checkout/events/{paid_event.id}/rewards", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["available_credits"] == 60
    assert [item["reward"]["name"] for item in data["rewards"]] == ["$25 off", "10% off"]
    assert data["rewards"][1]["description"] == "10% off (Event Discount)"


@pytest.mark.asyncio
async def test_list_rewards_unknown_event(client: AsyncClient, auth_headers):
    response = await client.get("/api/v1/checkout/events/9999/rewards", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["kind"] == "EventNotFound"


@pytest.mark.asyncio
async def test_quote_with_reward(client: AsyncClient, auth_headers, club, paid_event, rewards):
    await give_credits(club, 50)

    response = await client.post(
        "/api/v1/checkout/quote",
        json={"event_id": paid_event.id, "reward_id": rewards["ten_percent"].id},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["intent"]["discounted_price"] == "18.00"
    assert data["intent"]["is_free"] is False
    assert data["fees"]["processing_fee"] == "1.49"
    assert data["fees"]["total_amount"] == "19.49"
    assert data["fees"]["club_receives"] == "18.00"


@pytest.mark.asyncio
async def test_quote_free_ticket_has_no_fees(client: AsyncClient, auth_headers, club, cheap_event, rewards):
    await give_credits(club, 30)

    response = await client.post(
        "/api/v1/checkout/quote",
        json={"event_id": cheap_event.id, "reward_id": rewards["twenty_five_off"].id},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["intent"]["is_free"] is True
    assert data["intent"]["applied_reward"]["discount_amount"] == "10.00"
    assert data["fees"] is None


@pytest.mark.asyncio
async def test_quote_insufficient_credits(client: AsyncClient, auth_headers, club, paid_event, rewards):
    await give_credits(club, 80)

    response = await client.post(
        "/api/v1/checkout/quote",
        json={"event_id": paid_event.id, "reward_id": rewards["free_admission"].id},
        headers=auth_headers,
    )

    assert response.status_code == 409
    data = response.json()
    assert data["kind"] == "InsufficientCredits"
    assert data["available_credits"] == 80
    assert data["required_credits"] == 100


@pytest.mark.asyncio
async def test_pay_by_card(client: AsyncClient, auth_headers, gateway, club, paid_event, rewards):
    await give_credits(club, 50)

    response = await client.post(
        "/api/v1/checkout/pay",
        json={
            "event_id": paid_event.id,
            "reward_id": rewards["ten_percent"].id,
            "rail": "card",
            "payment_method_id": "pm_card_visa",
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "settled"
    assert data["status"] == "settled"
    assert data["payment_ref"] == "pi_test_1"
    assert gateway.intents["pi_test_1"].amount_minor == 1949


@pytest.mark.asyncio
async def test_pay_declined(client: AsyncClient, auth_headers, gateway, paid_event):
    gateway.confirm_error = PaymentGatewayError("Your card has insufficient funds.", actionable=True)

    response = await client.post(
        "/api/v1/checkout/pay",
        json={"event_id": paid_event.id, "rail": "card", "payment_method_id": "pm_card_chargeDeclined"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "failed"
    assert data["message"] == "Your card has insufficient funds."


@pytest.mark.asyncio
async def test_pay_unsupported_rail(client: AsyncClient, auth_headers, paid_event):
    response = await client.post(
        "/api/v1/checkout/pay",
        json={"event_id": paid_event.id, "rail": "apple_pay"},
        headers=auth_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_pay_free_event(client: AsyncClient, auth_headers, db_session, gateway, free_event):
    response = await client.post("/api/v1/checkout/pay", json={"event_id": free_event.id}, headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "free_claimed"
    assert data["payment_ref"].startswith("free:")
    assert gateway.sessions == {}
    assert await attendance_service.is_attending(db_session, free_event.id, TEST_USER_ID)

    again = await client.post("/api/v1/checkout/pay", json={"event_id": free_event.id}, headers=auth_headers)
    assert again.status_code == 409
    assert again.json()["kind"] == "AlreadyAttending"


@pytest.mark.asyncio
async def test_pay_again_after_purchase(client: AsyncClient, auth_headers, gateway, paid_event):
    body = {"event_id": paid_event.id, "rail": "card", "payment_method_id": "pm_card_visa"}

    first = await client.post("/api/v1/checkout/pay", json=body, headers=auth_headers)
    assert first.json()["outcome"] == "settled"

    again = await client.post("/api/v1/checkout/pay", json=body, headers=auth_headers)

    assert again.status_code == 409
    assert again.json()["kind"] == "AlreadyAttending"
    assert list(gateway.intents) == ["pi_test_1"]


@pytest.mark.asyncio
async def test_redirect_then_confirm(client: AsyncClient, auth_headers, gateway, club, paid_event, rewards):
    await give_credits(club, 50)

    response = await client.post(
        "/api/v1/checkout/pay",
        json={"event_id": paid_event.id, "reward_id": rewards["ten_percent"].id, "rail": "redirect"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "pending"
    assert data["checkout_url"] == "https://checkout.test/cs_test_1"

    payment_ref = gateway.complete_checkout("cs_test_1")
    confirm = await client.post("/api/v1/checkout/confirm", json={"payment_ref": "cs_test_1"}, headers=auth_headers)

    assert confirm.status_code == 200
    settlement = confirm.json()
    assert settlement["payment_ref"] == payment_ref
    assert settlement["status"] == "settled"
    assert settlement["debit_status"] == "debited"


@pytest.mark.asyncio
async def test_confirm_unpaid(client: AsyncClient, auth_headers, gateway, paid_event):
    await client.post(
        "/api/v1/checkout/pay",
        json={"event_id": paid_event.id, "rail": "redirect"},
        headers=auth_headers,
    )

    response = await client.post("/api/v1/checkout/confirm", json={"payment_ref": "cs_test_1"}, headers=auth_headers)

    # The hosted page was never completed
    assert response.status_code == 402


@pytest.mark.asyncio
async def test_webhook_settles_payment(client: AsyncClient, db_session, gateway, club, paid_event, rewards):
    # Paid outside any checkout session, e.g. on another device
    intent = PurchaseIntent(
        event_id=paid_event.id, club_id=club.id, user_id=TEST_USER_ID, currency="usd",
        original_price=Decimal("20.00"), discounted_price=Decimal("20.00"), is_free=False,
    )
    created = await gateway.create_intent(PurchaseIntentBuilder().build(intent))
    gateway.paid.add(created.payment_ref)

    response = await client.post(
        "/api/v1/payments/webhook",
        content=gateway.webhook_payload(created.payment_ref),
        headers={"stripe-signature": WEBHOOK_SIGNATURE},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["settlement"]["status"] == "settled"
    assert await attendance_service.is_attending(db_session, paid_event.id, TEST_USER_ID)


@pytest.mark.asyncio
async def test_webhook_bad_signature(client: AsyncClient):
    response = await client.post(
        "/api/v1/payments/webhook",
        content=b"{}",
        headers={"stripe-signature": "forged"},
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidWebhookSignature"


@pytest.mark.asyncio
async def test_webhook_ignores_other_events(client: AsyncClient):
    payload = json.dumps({"type": "customer.created", "data": {"object": {"id": "cus_1"}}}).encode()

    response = await client.post(
        "/api/v1/payments/webhook",
        content=payload,
        headers={"stripe-signature": WEBHOOK_SIGNATURE},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_reconcile_requires_admin_key(client: AsyncClient):
    response = await client.post("/api/v1/credits/reconcile")
    assert response.status_code == 403

    response = await client.post("/api/v1/credits/reconcile", headers={"X-Admin-Key": "test-admin-key"})
    assert response.status_code == 200
    assert response.json()["processed"] == 0
