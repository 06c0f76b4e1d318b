"""
Stripe Webhook Endpoint Tests
=============================

End-to-end tests for ``/stripe-webhook``:
- signature verification and the unconfigured-secret guard
- checkout completion, subscription sync and deletion
- Stripe status mapping
- malformed events and upstream failures
"""

import pytest
from httpx import AsyncClient

from app.services.stripe_billing import map_stripe_status

STRIPE_URL = "/stripe-webhook"

PERIOD_START = 1700000000
PERIOD_END = 1702592000


def _checkout_event(**session) -> dict:
    obj = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": "cus_1",
        "subscription": "sub_1",
        "client_reference_id": "u1",
        "metadata": {"plan_id": "premium_monthly"},
    }
    obj.update(session)
    return {
        "id": "evt_checkout",
        "object": "event",
        "type": "checkout.session.completed",
        "livemode": False,
        "data": {"object": obj},
    }


def _subscription_event(event_type: str, **subscription) -> dict:
    obj = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_1",
        "status": "active",
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": False,
        "metadata": {},
    }
    obj.update(subscription)
    return {
        "id": "evt_subscription",
        "object": "event",
        "type": event_type,
        "livemode": True,
        "data": {"object": obj},
    }


def _link_subscription(store, user_id: str = "u1", status: str = "active") -> None:
    store.add_user(user_id, is_premium=status == "active")
    store.subscriptions[user_id] = {
        "user_id": user_id,
        "status": status,
        "stripe_subscription_id": "sub_1",
        "stripe_customer_id": "cus_1",
    }


class TestSignature:
    """Requests rejected before the body is trusted."""

    @pytest.mark.asyncio
    async def test_missing_signature_header(self, client: AsyncClient, store):
        response = await client.post(STRIPE_URL, json=_checkout_event())

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_005"
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_signed_with_wrong_secret(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        body, headers = stripe_request(_checkout_event(), secret="whsec_someone_else")

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_005"
        assert store.write_calls == 0
        assert store.premium_of("u1") is False

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, client: AsyncClient, store, stripe_request):
        body, headers = stripe_request(_checkout_event(), timestamp=1000000000)

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 400
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_body_changed_after_signing(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        body, headers = stripe_request(_checkout_event(client_reference_id="u2"))

        response = await client.post(
            STRIPE_URL,
            content=body.replace(b'"u2"', b'"u1"'),
            headers=headers,
        )

        assert response.status_code == 400
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_unconfigured_secret_returns_500(
        self, client: AsyncClient, store, stripe_request, test_settings, monkeypatch,
    ):
        monkeypatch.setattr(test_settings, "STRIPE_WEBHOOK_SECRET", "")
        body, headers = stripe_request(_checkout_event())

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_004"
        assert store.write_calls == 0


class TestCheckoutCompleted:
    """checkout.session.completed links the Stripe subscription to a user."""

    @pytest.mark.asyncio
    async def test_client_reference_id(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        body, headers = stripe_request(_checkout_event())

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True}
        row = store.subscriptions["u1"]
        assert row["status"] == "active"
        assert row["stripe_subscription_id"] == "sub_1"
        assert row["stripe_customer_id"] == "cus_1"
        assert row["product_id"] == "premium_monthly"
        assert store.premium_of("u1") is True
        assert store.history[-1]["event_type"] == "checkout.session.completed"
        assert store.history[-1]["environment"] == "SANDBOX"
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_email_lookup(self, client: AsyncClient, store, stripe_request):
        store.add_user("u7", email="buyer@example.com")
        body, headers = stripe_request(
            _checkout_event(client_reference_id=None, customer_email="buyer@example.com")
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u7") == "active"
        assert store.premium_of("u7") is True

    @pytest.mark.asyncio
    async def test_metadata_user_id(self, client: AsyncClient, store, stripe_request):
        store.add_user("u3")
        body, headers = stripe_request(
            _checkout_event(client_reference_id=None, metadata={"user_id": "u3"})
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u3") == "active"

    @pytest.mark.asyncio
    async def test_unknown_user_is_acknowledged(self, client: AsyncClient, store, stripe_request):
        body, headers = stripe_request(
            _checkout_event(client_reference_id=None, customer_email="nobody@example.com")
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_one_time_payment_is_ignored(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        body, headers = stripe_request(_checkout_event(mode="payment", subscription=None))

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_checkout_after_update_keeps_period(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", status="trialing")
        )
        await client.post(STRIPE_URL, content=body, headers=headers)

        body, headers = stripe_request(_checkout_event())
        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        record = (await store.get_subscription("u1")).to_dict()
        assert record["current_period_start"] == "2023-11-14T22:13:20.000Z"
        assert record["current_period_end"] == "2023-12-14T22:13:20.000Z"


class TestSubscriptionSync:
    """customer.subscription.created / updated / deleted."""

    @pytest.mark.asyncio
    async def test_update_syncs_period(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", cancel_at_period_end=True)
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        record = (await store.get_subscription("u1")).to_dict()
        assert record["status"] == "active"
        assert record["current_period_start"] == "2023-11-14T22:13:20.000Z"
        assert record["current_period_end"] == "2023-12-14T22:13:20.000Z"
        assert record["cancel_at_period_end"] is True
        assert store.premium_of("u1") is True
        assert store.history[-1]["environment"] == "PRODUCTION"

    @pytest.mark.asyncio
    async def test_period_read_from_subscription_item(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        event = _subscription_event(
            "customer.subscription.updated",
            current_period_start=None,
            current_period_end=None,
            items={"object": "list", "data": [
                {"id": "si_1", "current_period_start": PERIOD_START, "current_period_end": PERIOD_END},
            ]},
        )
        body, headers = stripe_request(event)

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        record = (await store.get_subscription("u1")).to_dict()
        assert record["current_period_end"] == "2023-12-14T22:13:20.000Z"

    @pytest.mark.asyncio
    async def test_created_uses_metadata_user(self, client: AsyncClient, store, stripe_request):
        store.add_user("u2")
        body, headers = stripe_request(
            _subscription_event("customer.subscription.created", metadata={"user_id": "u2"})
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.subscriptions["u2"]["stripe_subscription_id"] == "sub_1"
        assert store.premium_of("u2") is True

    @pytest.mark.asyncio
    async def test_past_due_is_stored_and_not_premium(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", status="past_due")
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u1") == "past_due"
        assert store.premium_of("u1") is False

    @pytest.mark.asyncio
    async def test_past_due_row_is_readable(
        self, client: AsyncClient, store, stripe_request, make_token,
    ):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", status="past_due")
        )
        await client.post(STRIPE_URL, content=body, headers=headers)

        response = await client.get(
            "/api/v1/subscription/status",
            headers={"Authorization": f"Bearer {make_token()}"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["subscription"]["status"] == "past_due"

    @pytest.mark.asyncio
    async def test_canceled_status_is_normalized(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", status="canceled")
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u1") == "cancelled"
        assert store.premium_of("u1") is False

    @pytest.mark.asyncio
    async def test_unlinked_subscription_is_acknowledged(self, client: AsyncClient, store, stripe_request):
        body, headers = stripe_request(_subscription_event("customer.subscription.updated"))

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_deleted_cancels_and_clears_premium(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.deleted", status="canceled")
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u1") == "cancelled"
        assert store.premium_of("u1") is False
        assert store.history[-1]["previous_status"] == "active"
        assert store.history[-1]["new_status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unhandled_type_is_acknowledged(self, client: AsyncClient, store, stripe_request):
        body, headers = stripe_request({
            "id": "evt_invoice",
            "type": "invoice.paid",
            "data": {"object": {"id": "in_1"}},
        })

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.write_calls == 0


class TestMalformedEvents:
    """Signed bodies that still can't be applied."""

    @pytest.mark.asyncio
    async def test_subscription_without_status(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        event = _subscription_event("customer.subscription.updated")
        del event["data"]["object"]["status"]
        body, headers = stripe_request(event)

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "WEBHOOK_002"
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_period_out_of_range(self, client: AsyncClient, store, stripe_request):
        _link_subscription(store)
        body, headers = stripe_request(
            _subscription_event("customer.subscription.updated", current_period_end=10**17)
        )

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 422
        assert store.write_calls == 0

    @pytest.mark.asyncio
    async def test_event_without_data(self, client: AsyncClient, store, stripe_request):
        body, headers = stripe_request({"id": "evt_1", "type": "checkout.session.completed"})

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 422
        assert store.write_calls == 0


class TestUpstreamFailures:
    """Data store errors make Stripe retry."""

    @pytest.mark.asyncio
    async def test_write_failure_returns_500(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        store.fail_subscription_writes = True
        body, headers = stripe_request(_checkout_event())

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_003"
        assert store.rollbacks == 1
        assert store.commits == 0
        assert store.premium_of("u1") is False

    @pytest.mark.asyncio
    async def test_flag_failure_still_returns_200(self, client: AsyncClient, store, stripe_request):
        store.add_user("u1")
        store.fail_premium_flag = True
        body, headers = stripe_request(_checkout_event())

        response = await client.post(STRIPE_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert store.status_of("u1") == "active"
        assert store.commits == 1


@pytest.mark.parametrize(
    "stripe_status, expected",
    [
        ("active", "active"),
        ("trialing", "active"),
        ("canceled", "cancelled"),
        ("unpaid", "cancelled"),
        ("incomplete_expired", "cancelled"),
        ("past_due", "past_due"),
        ("incomplete", "incomplete"),
        ("paused", "paused"),
    ],
)
def test_map_stripe_status(stripe_status, expected):
    assert map_stripe_status(stripe_status) == expected
