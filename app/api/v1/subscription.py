"""
Subscription API Endpoints
==========================

Premium status and feature access for the authenticated user.
"""

import logging

from fastapi import APIRouter

from app.core.errors import ServiceUnavailableError
from app.dependencies import CurrentUserId, SubscriptionStoreDep
from app.schemas.subscription import SubscriptionStatusResponse
from app.services.entitlements import EntitlementService
from app.services.subscription_store import SubscriptionStoreError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user_id: CurrentUserId,
    store: SubscriptionStoreDep,
):
    """
    Get current subscription status.

    Returns the premium flag, the cached RevenueCat subscription (if any)
    and the features the user is entitled to.
    """
    try:
        data = await EntitlementService(store).get_status(user_id)
    except SubscriptionStoreError:
        logger.exception("Failed to load subscription status for user=%s", user_id)
        raise ServiceUnavailableError(message="Subscription status unavailable")

    return {"success": True, "data": data}


@router.get("/features/{feature}")
async def check_feature_access(
    feature: str,
    user_id: CurrentUserId,
    store: SubscriptionStoreDep,
):
    """Check whether the user's entitlement includes a feature."""
    try:
        has_access = await EntitlementService(store).has_feature_access(user_id, feature)
    except SubscriptionStoreError:
        logger.exception("Failed to check feature %s for user=%s", feature, user_id)
        raise ServiceUnavailableError(message="Subscription status unavailable")

    return {
        "success": True,
        "data": {
            "feature": feature,
            "has_access": has_access,
        },
    }
