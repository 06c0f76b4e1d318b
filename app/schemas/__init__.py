"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from app.schemas.common import (
    ErrorResponse,
    MessageResponse,
)
from app.schemas.revenuecat import RevenueCatWebhookPayload
from app.schemas.subscription import SubscriptionStatusResponse

__all__ = [
    "ErrorResponse",
    "MessageResponse",
    "RevenueCatWebhookPayload",
    "SubscriptionStatusResponse",
]
