"""
Subscription Schemas
====================

Pydantic schemas for the subscription status endpoint.
"""

from typing import Optional

from pydantic import BaseModel


class SubscriptionRecordOut(BaseModel):
    """Serialized ``user_subscriptions`` row."""

    user_id: str
    product_id: Optional[str] = None
    status: str
    current_period_start: Optional[str] = None
    current_period_end: Optional[str] = None
    revenuecat_store: Optional[str] = None
    revenuecat_environment: Optional[str] = None
    revenuecat_period_type: Optional[str] = None
    cancel_at_period_end: Optional[bool] = None
    updated_at: Optional[str] = None


class SubscriptionStatusData(BaseModel):
    """Premium status for the current user."""

    user_id: str
    is_premium: bool
    subscription: Optional[SubscriptionRecordOut] = None
    features: list[str]


class SubscriptionStatusResponse(BaseModel):
    """Response schema for subscription status."""

    success: bool = True
    data: SubscriptionStatusData
