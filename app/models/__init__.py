"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata.
"""

from app.models.user import User
from app.models.subscription import (
    SubscriptionHistory,
    SubscriptionStatus,
    UserSubscription,
)

__all__ = [
    # User
    "User",
    # Subscription
    "UserSubscription",
    "SubscriptionHistory",
    "SubscriptionStatus",
]
