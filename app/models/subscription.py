"""
Subscription Models
===================

SQLAlchemy models for RevenueCat- and Stripe-backed subscriptions.

The tables are owned by the hosted backend's migrations; these mappings
only describe the columns this service reads and writes.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Identity,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType, TimestampMixin
from app.utils.helpers import format_iso_millis


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class UserSubscription(Base, TimestampMixin):
    """
    Locally cached subscription state for a user.

    The billing provider is the source of truth. RevenueCat upserts this row
    on every purchase-type webhook and flips it to ``cancelled`` on
    termination; Stripe subscription events sync it the same way.
    Rows are never deleted.
    """

    __tablename__ = "user_subscriptions"

    # Upsert key: the RevenueCat app_user_id (our user id)
    user_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    product_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    # Plain text: rows written by other billing paths may carry provider
    # statuses (past_due, trialing, ...) besides the two we set.
    status: Mapped[str] = mapped_column(
        String(50),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )
    current_period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # RevenueCat metadata
    revenuecat_user_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    revenuecat_product_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    revenuecat_store: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    revenuecat_environment: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    revenuecat_period_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    revenuecat_attributes: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    # Stripe metadata
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    cancel_at_period_end: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
    )

    __table_args__ = (
        Index("idx_user_subscriptions_status", "status"),
        Index("idx_user_subscriptions_stripe_subscription", "stripe_subscription_id"),
    )

    def __repr__(self) -> str:
        return f"<UserSubscription(user_id={self.user_id}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if subscription is currently active."""
        return self.status == SubscriptionStatus.ACTIVE.value

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the API shape (JS-style ISO timestamps)."""
        return {
            "user_id": self.user_id,
            "product_id": self.product_id,
            "status": self.status,
            "current_period_start": format_iso_millis(self.current_period_start),
            "current_period_end": format_iso_millis(self.current_period_end),
            "revenuecat_store": self.revenuecat_store,
            "revenuecat_environment": self.revenuecat_environment,
            "revenuecat_period_type": self.revenuecat_period_type,
            "cancel_at_period_end": self.cancel_at_period_end,
            "updated_at": format_iso_millis(getattr(self, "updated_at", None)),
        }


class SubscriptionHistory(Base):
    """
    Subscription history model.

    Append-only audit trail of every webhook that changed subscription state.
    """

    __tablename__ = "subscription_history"

    history_id: Mapped[int] = mapped_column(
        BigInteger,
        Identity(),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Event details
    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    previous_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    new_status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    product_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    environment: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    # Raw RevenueCat event
    revenuecat_event_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_sub_history_user_event", "user_id", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionHistory(user_id={self.user_id}, event={self.event_type})>"
