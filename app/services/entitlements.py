"""
Entitlement Service
===================

Read side of subscription state: answers "is this user premium, and what
can they do?" from the locally cached subscription and premium flag.
"""

from typing import Any

from app.core.feature_access import get_features, has_feature
from app.services.subscription_store import SubscriptionStore


class EntitlementService:
    """Service for premium status lookups."""

    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def get_status(self, user_id: str) -> dict[str, Any]:
        """
        Get premium status, subscription and features for a user.

        The stored ``users.is_premium`` flag wins. When the user row is
        missing the flag is derived from the subscription status instead.
        """
        subscription = await self.store.get_subscription(user_id)
        flag = await self.store.get_premium_flag(user_id)

        if flag is None:
            is_premium = bool(subscription is not None and subscription.is_active)
        else:
            is_premium = flag

        return {
            "user_id": user_id,
            "is_premium": is_premium,
            "subscription": subscription.to_dict() if subscription else None,
            "features": get_features(is_premium),
        }

    async def has_feature_access(self, user_id: str, feature: str) -> bool:
        """Check whether a user can use a specific feature."""
        status = await self.get_status(user_id)
        return has_feature(status["is_premium"], feature)
