"""
Shared Test Fixtures
====================

Provides an in-memory subscription store, test settings, token helpers and
an HTTP client wired to the FastAPI app with dependencies overridden.
"""

import copy
import hashlib
import hmac
import json
import time
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from app.config import Settings, get_settings
from app.dependencies import get_subscription_store
from app.main import app
from app.models.subscription import SubscriptionStatus, UserSubscription
from app.services.subscription_store import (
    StripeSubscriptionUpsert,
    SubscriptionStore,
    SubscriptionStoreError,
    SubscriptionUpsert,
)

WEBHOOK_SECRET = "rc-test-webhook-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "supabase-test-jwt-secret-with-enough-length"


class InMemorySubscriptionStore(SubscriptionStore):
    """
    Dict-backed store with commit/rollback semantics.

    The first write after a commit snapshots state; ``rollback`` restores it.
    ``fail_subscription_writes`` and ``fail_premium_flag`` simulate upstream
    failures of the respective writes.
    """

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.history: list[dict[str, Any]] = []
        self.write_calls = 0
        self.commits = 0
        self.rollbacks = 0
        self.fail_subscription_writes = False
        self.fail_premium_flag = False
        self._snapshot: Optional[tuple] = None

    # -- test helpers ---------------------------------------------------------

    def add_user(self, user_id: str, is_premium: bool = False, email: Optional[str] = None) -> None:
        self.users[user_id] = {"is_premium": is_premium, "premium_updated_at": None, "email": email}

    def status_of(self, user_id: str) -> Optional[str]:
        row = self.subscriptions.get(user_id)
        return row["status"] if row else None

    def premium_of(self, user_id: str) -> Optional[bool]:
        user = self.users.get(user_id)
        return user["is_premium"] if user else None

    def _begin(self) -> None:
        if self._snapshot is None:
            self._snapshot = copy.deepcopy((self.subscriptions, self.users, self.history))

    # -- SubscriptionStore ----------------------------------------------------

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        row = self.subscriptions.get(user_id)
        return UserSubscription(**row) if row else None

    async def get_premium_flag(self, user_id: str) -> Optional[bool]:
        return self.premium_of(user_id)

    def _upsert(self, row: dict[str, Any]) -> Optional[str]:
        self.write_calls += 1
        if self.fail_subscription_writes:
            raise SubscriptionStoreError("simulated upsert failure")
        self._begin()
        previous = self.status_of(row["user_id"])
        # ON CONFLICT DO UPDATE only touches the columns in the row
        self.subscriptions.setdefault(row["user_id"], {}).update(row)
        return previous

    async def upsert_active_subscription(self, values: SubscriptionUpsert) -> Optional[str]:
        return self._upsert(values.to_row())

    async def upsert_stripe_subscription(self, values: StripeSubscriptionUpsert) -> Optional[str]:
        return self._upsert(values.to_row())

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        for user_id, user in self.users.items():
            if user["email"] == email:
                return user_id
        return None

    async def find_user_id_by_stripe_subscription(self, stripe_subscription_id: str) -> Optional[str]:
        for user_id, row in self.subscriptions.items():
            if row.get("stripe_subscription_id") == stripe_subscription_id:
                return user_id
        return None

    async def mark_subscription_cancelled(self, user_id: str) -> Optional[str]:
        self.write_calls += 1
        if self.fail_subscription_writes:
            raise SubscriptionStoreError("simulated cancel failure")
        previous = self.status_of(user_id)
        if previous is None:
            return None
        self._begin()
        self.subscriptions[user_id]["status"] = SubscriptionStatus.CANCELLED.value
        return previous

    async def set_premium_flag(self, user_id: str, is_premium: bool) -> bool:
        self.write_calls += 1
        if self.fail_premium_flag:
            raise SubscriptionStoreError("simulated flag failure")
        if user_id not in self.users:
            return False
        self._begin()
        self.users[user_id]["is_premium"] = is_premium
        self.users[user_id]["premium_updated_at"] = time.time()
        return True

    async def record_history(
        self,
        user_id: str,
        event_type: str,
        previous_status: Optional[str],
        new_status: str,
        product_id: Optional[str] = None,
        environment: Optional[str] = None,
        event_data: Optional[dict[str, Any]] = None,
    ) -> None:
        self.write_calls += 1
        self._begin()
        self.history.append({
            "user_id": user_id,
            "event_type": event_type,
            "previous_status": previous_status,
            "new_status": new_status,
            "product_id": product_id,
            "environment": environment,
            "event_data": event_data,
        })

    async def commit(self) -> None:
        self.commits += 1
        self._snapshot = None

    async def rollback(self) -> None:
        self.rollbacks += 1
        if self._snapshot is not None:
            self.subscriptions, self.users, self.history = self._snapshot
            self._snapshot = None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        REVENUECAT_WEBHOOK_AUTH="enforced",
        REVENUECAT_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_WEBHOOK_SECRET=STRIPE_WEBHOOK_SECRET,
        SUPABASE_JWT_SECRET=JWT_SECRET,
    )


@pytest.fixture
def webhook_headers() -> dict[str, str]:
    return {"x-revenuecat-secret": WEBHOOK_SECRET}


@pytest.fixture
def stripe_request():
    """Factory for a Stripe event body and its signed ``stripe-signature`` header."""

    def _stripe_request(
        event: dict[str, Any],
        secret: str = STRIPE_WEBHOOK_SECRET,
        timestamp: Optional[int] = None,
    ) -> tuple[bytes, dict[str, str]]:
        body = json.dumps(event).encode("utf-8")
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode("utf-8") + body
        signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        headers = {
            "stripe-signature": f"t={timestamp},v1={signature}",
            "content-type": "application/json",
        }
        return body, headers

    return _stripe_request


@pytest.fixture
def make_token():
    """Factory for Supabase-style access tokens."""

    def _make_token(
        sub: Optional[str] = "u1",
        audience: Optional[str] = "authenticated",
        secret: str = JWT_SECRET,
        expires_in: int = 3600,
    ) -> str:
        claims: dict[str, Any] = {"exp": int(time.time()) + expires_in, "role": "authenticated"}
        if sub is not None:
            claims["sub"] = sub
        if audience is not None:
            claims["aud"] = audience
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make_token


@pytest_asyncio.fixture
async def client(store: InMemorySubscriptionStore, test_settings: Settings):
    """HTTP client against the app with the store and settings overridden."""
    app.dependency_overrides[get_subscription_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
