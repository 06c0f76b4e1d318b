"""
Subscription Store
==================

Data access for RevenueCat- and Stripe-driven subscription state.

``SubscriptionStore`` is the seam between webhook processing and the hosted
Postgres database. ``SqlAlchemySubscriptionStore`` is the production
implementation; it is constructed per request around the session from
``get_db`` and never commits on its own: the caller decides when the unit of
work is complete.

Write semantics:
- The subscription row is upserted keyed on ``user_id`` alone, so a user has
  at most one row and a later product overwrites an earlier one.
- The premium flag is written inside a SAVEPOINT. If it fails, only the
  savepoint is rolled back and the subscription write survives.
- Stripe upserts only overwrite the columns the event carries, so a
  checkout that arrives after a subscription update keeps its periods.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import Insert, insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import (
    SubscriptionHistory,
    SubscriptionStatus,
    UserSubscription,
)
from app.models.user import User
from app.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class SubscriptionStoreError(Exception):
    """Raised when the data store rejects or fails a read or write."""


@dataclass(frozen=True)
class SubscriptionUpsert:
    """Values written when a purchase-type event activates a subscription."""

    user_id: str
    product_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    store: Optional[str] = None
    environment: Optional[str] = None
    period_type: Optional[str] = None
    attributes: Optional[dict[str, Any]] = None

    def to_row(self) -> dict[str, Any]:
        # Every provider column is written, so absent fields clear stale values
        return {
            "user_id": self.user_id,
            "product_id": self.product_id,
            "status": SubscriptionStatus.ACTIVE.value,
            "current_period_start": self.current_period_start,
            "current_period_end": self.current_period_end,
            "revenuecat_user_id": self.user_id,
            "revenuecat_product_id": self.product_id,
            "revenuecat_store": self.store,
            "revenuecat_environment": self.environment,
            "revenuecat_period_type": self.period_type,
            "revenuecat_attributes": self.attributes,
        }


@dataclass(frozen=True)
class StripeSubscriptionUpsert:
    """Values written when a Stripe checkout or subscription event syncs a row."""

    user_id: str
    status: str
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None

    def to_row(self) -> dict[str, Any]:
        row = {
            "user_id": self.user_id,
            "status": self.status,
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_customer_id": self.stripe_customer_id,
            "product_id": self.product_id,
            "current_period_start": self.current_period_start,
            "current_period_end": self.current_period_end,
            "cancel_at_period_end": self.cancel_at_period_end,
        }
        return {key: value for key, value in row.items() if value is not None}


class SubscriptionStore(ABC):
    """Abstract data access for subscriptions and the premium flag."""

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        """Get the subscription row for a user."""

    @abstractmethod
    async def get_premium_flag(self, user_id: str) -> Optional[bool]:
        """Get ``users.is_premium``, or None if the user row doesn't exist."""

    @abstractmethod
    async def upsert_active_subscription(self, values: SubscriptionUpsert) -> Optional[str]:
        """
        Insert or overwrite the user's subscription as ``active``.

        Returns:
            The status before the write, or None if the row was created.
        """

    @abstractmethod
    async def upsert_stripe_subscription(self, values: StripeSubscriptionUpsert) -> Optional[str]:
        """
        Insert or update the user's subscription from a Stripe event.

        Returns:
            The status before the write, or None if the row was created.
        """

    @abstractmethod
    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        """Get the id of the user with this email, if any."""

    @abstractmethod
    async def find_user_id_by_stripe_subscription(self, stripe_subscription_id: str) -> Optional[str]:
        """Get the owner of a Stripe subscription, if we have recorded it."""

    @abstractmethod
    async def mark_subscription_cancelled(self, user_id: str) -> Optional[str]:
        """
        Set the user's subscription status to ``cancelled``.

        Returns:
            The status before the write, or None if no row exists.
        """

    @abstractmethod
    async def set_premium_flag(self, user_id: str, is_premium: bool) -> bool:
        """
        Write ``users.is_premium`` and ``premium_updated_at``.

        Returns:
            True if a user row was updated.
        """

    @abstractmethod
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
        """Append an audit row for an applied event."""

    @abstractmethod
    async def commit(self) -> None:
        """Make all writes since the last commit durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard all writes since the last commit."""


async def update_premium_flag(store: SubscriptionStore, user_id: str, is_premium: bool) -> bool:
    """
    Write the user's premium flag without failing the webhook.

    A failure here leaves the subscription row and the flag out of step
    until the next event for this user.

    Returns:
        True if a user row was updated.
    """
    try:
        updated = await store.set_premium_flag(user_id, is_premium)
    except SubscriptionStoreError:
        logger.exception(
            "Error updating user premium status: user=%s is_premium=%s",
            user_id,
            is_premium,
        )
        return False

    if not updated:
        logger.warning(
            "Premium flag not written: no users row for id=%s",
            user_id,
        )
    return updated


def build_subscription_upsert(
    values: Union[SubscriptionUpsert, StripeSubscriptionUpsert],
    now: datetime,
) -> Insert:
    """
    Build ``INSERT ... ON CONFLICT (user_id) DO UPDATE`` for a sync.

    Every column in ``values.to_row()`` is overwritten on conflict (provider
    data is authoritative), except ``user_id``. ``created_at`` is never
    touched.
    """
    row = {**values.to_row(), "updated_at": now}
    stmt = pg_insert(UserSubscription).values(**row)
    return stmt.on_conflict_do_update(
        index_elements=[UserSubscription.user_id],
        set_={key: stmt.excluded[key] for key in row if key != "user_id"},
    )


class SqlAlchemySubscriptionStore(SubscriptionStore):
    """Subscription store backed by the Supabase Postgres database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _current_status(self, user_id: str) -> Optional[str]:
        """Read and lock the current status for the rest of the transaction."""
        stmt = (
            select(UserSubscription.status)
            .where(UserSubscription.user_id == user_id)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        try:
            result = await self.db.execute(
                select(UserSubscription).where(UserSubscription.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to load subscription for user {user_id}"
            ) from exc
        return result.scalar_one_or_none()

    async def get_premium_flag(self, user_id: str) -> Optional[bool]:
        try:
            result = await self.db.execute(
                select(User.is_premium).where(User.id == user_id)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to load premium flag for user {user_id}"
            ) from exc
        return result.scalar_one_or_none()

    async def upsert_active_subscription(self, values: SubscriptionUpsert) -> Optional[str]:
        try:
            previous = await self._current_status(values.user_id)
            await self.db.execute(build_subscription_upsert(values, utc_now()))
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to upsert subscription for user {values.user_id}"
            ) from exc
        return previous

    async def upsert_stripe_subscription(self, values: StripeSubscriptionUpsert) -> Optional[str]:
        try:
            previous = await self._current_status(values.user_id)
            await self.db.execute(build_subscription_upsert(values, utc_now()))
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to sync Stripe subscription for user {values.user_id}"
            ) from exc
        return previous

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        try:
            result = await self.db.execute(
                select(User.id).where(User.email == email).limit(1)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError("Failed to look up user by email") from exc
        return result.scalar_one_or_none()

    async def find_user_id_by_stripe_subscription(self, stripe_subscription_id: str) -> Optional[str]:
        try:
            result = await self.db.execute(
                select(UserSubscription.user_id)
                .where(UserSubscription.stripe_subscription_id == stripe_subscription_id)
                .limit(1)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to look up Stripe subscription {stripe_subscription_id}"
            ) from exc
        return result.scalar_one_or_none()

    async def mark_subscription_cancelled(self, user_id: str) -> Optional[str]:
        try:
            previous = await self._current_status(user_id)
            if previous is None:
                return None
            await self.db.execute(
                update(UserSubscription)
                .where(UserSubscription.user_id == user_id)
                .values(status=SubscriptionStatus.CANCELLED.value, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to cancel subscription for user {user_id}"
            ) from exc
        return previous

    async def set_premium_flag(self, user_id: str, is_premium: bool) -> bool:
        try:
            async with self.db.begin_nested():
                result = await self.db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(is_premium=is_premium, premium_updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to update premium flag for user {user_id}"
            ) from exc
        return result.rowcount > 0

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
        self.db.add(
            SubscriptionHistory(
                user_id=user_id,
                event_type=event_type,
                previous_status=previous_status,
                new_status=new_status,
                product_id=product_id,
                environment=environment,
                revenuecat_event_data=event_data,
            )
        )
        try:
            await self.db.flush()
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(
                f"Failed to record subscription history for user {user_id}"
            ) from exc

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError("Failed to commit subscription changes") from exc

    async def rollback(self) -> None:
        await self.db.rollback()
