"""
Stripe Billing Service
======================

Applies Stripe subscription webhooks to the same local subscription state
RevenueCat drives.

Event handling:
- checkout.session.completed (subscription mode): link the Stripe
  subscription to the user and mark it ``active``
- customer.subscription.created / updated: sync status, billing period and
  ``cancel_at_period_end``
- customer.subscription.deleted: mark ``cancelled`` and clear premium
- anything else: logged, no writes

Stripe statuses are mapped onto ours: ``active`` and ``trialing`` grant
premium and are stored as ``active``; ``canceled``, ``unpaid`` and
``incomplete_expired`` are stored as ``cancelled``. Transitional statuses
(``past_due``, ``incomplete``, ``paused``) are stored as Stripe sends them
and do not grant premium.
"""

import logging
from typing import Optional

from app.models.subscription import SubscriptionStatus
from app.schemas.stripe_events import (
    StripeCheckoutSession,
    StripeSubscription,
    StripeWebhookEvent,
)
from app.services.revenuecat import WebhookOutcome
from app.services.subscription_store import (
    StripeSubscriptionUpsert,
    SubscriptionStore,
    update_premium_flag,
)
from app.utils.helpers import from_epoch_seconds

logger = logging.getLogger(__name__)

STRIPE_PREMIUM_STATUSES = frozenset({"active", "trialing"})
STRIPE_ENDED_STATUSES = frozenset({"canceled", "unpaid", "incomplete_expired"})


def map_stripe_status(stripe_status: str) -> str:
    """Map a Stripe subscription status onto the stored status."""
    if stripe_status in STRIPE_PREMIUM_STATUSES:
        return SubscriptionStatus.ACTIVE.value
    if stripe_status in STRIPE_ENDED_STATUSES:
        return SubscriptionStatus.CANCELLED.value
    return stripe_status


class StripeWebhookProcessor:
    """Maps verified Stripe events onto the subscription store."""

    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def process_event(self, event: StripeWebhookEvent) -> WebhookOutcome:
        """
        Apply a single verified Stripe event.

        Raises ``pydantic.ValidationError`` if the event object is malformed
        (before any write) and ``SubscriptionStoreError`` if a subscription
        write fails.
        """
        if event.type == "checkout.session.completed":
            session = StripeCheckoutSession.model_validate(event.data.object)
            return await self._handle_checkout_completed(event, session)

        if event.type in ("customer.subscription.created", "customer.subscription.updated"):
            subscription = StripeSubscription.model_validate(event.data.object)
            return await self._handle_subscription_updated(event, subscription)

        if event.type == "customer.subscription.deleted":
            subscription = StripeSubscription.model_validate(event.data.object)
            return await self._handle_subscription_deleted(event, subscription)

        logger.info("Unhandled Stripe event type: %s", event.type)
        return WebhookOutcome(event_type=event.type, action="ignored")

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _handle_checkout_completed(
        self,
        event: StripeWebhookEvent,
        session: StripeCheckoutSession,
    ) -> WebhookOutcome:
        if session.mode != "subscription" or not session.subscription:
            logger.info("Checkout %s is not a subscription checkout, skipping", session.id)
            return WebhookOutcome(event_type=event.type, action="ignored")

        user_id = await self._resolve_checkout_user(session)
        if user_id is None:
            logger.error(
                "Checkout %s: no user found (client_reference_id=%s email=%s)",
                session.id,
                session.client_reference_id,
                session.customer_email,
            )
            return WebhookOutcome(event_type=event.type, action="ignored")

        values = StripeSubscriptionUpsert(
            user_id=user_id,
            status=SubscriptionStatus.ACTIVE.value,
            stripe_subscription_id=session.subscription,
            stripe_customer_id=session.customer,
            product_id=session.metadata.get("plan_id"),
        )
        return await self._apply_sync(event, values, is_premium=True)

    async def _handle_subscription_updated(
        self,
        event: StripeWebhookEvent,
        subscription: StripeSubscription,
    ) -> WebhookOutcome:
        user_id = await self._resolve_subscription_user(subscription)
        if user_id is None:
            logger.warning(
                "%s: no user linked to Stripe subscription %s",
                event.type,
                subscription.id,
            )
            return WebhookOutcome(event_type=event.type, action="ignored")

        status = map_stripe_status(subscription.status)
        values = StripeSubscriptionUpsert(
            user_id=user_id,
            status=status,
            stripe_subscription_id=subscription.id,
            stripe_customer_id=subscription.customer,
            product_id=subscription.metadata.get("plan_id"),
            current_period_start=from_epoch_seconds(subscription.period_start),
            current_period_end=from_epoch_seconds(subscription.period_end),
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
        if subscription.cancel_at_period_end:
            logger.info(
                "Stripe subscription %s will be cancelled at period end (%s)",
                subscription.id,
                values.current_period_end,
            )
        return await self._apply_sync(
            event,
            values,
            is_premium=subscription.status in STRIPE_PREMIUM_STATUSES,
        )

    async def _handle_subscription_deleted(
        self,
        event: StripeWebhookEvent,
        subscription: StripeSubscription,
    ) -> WebhookOutcome:
        user_id = await self._resolve_subscription_user(subscription)
        if user_id is None:
            logger.warning(
                "%s: no user linked to Stripe subscription %s",
                event.type,
                subscription.id,
            )
            return WebhookOutcome(event_type=event.type, action="ignored")

        previous = await self.store.mark_subscription_cancelled(user_id)
        if previous is not None:
            await self.store.record_history(
                user_id=user_id,
                event_type=event.type,
                previous_status=previous,
                new_status=SubscriptionStatus.CANCELLED.value,
                environment=_environment(event),
                event_data=event.model_dump(mode="json"),
            )
        logger.info(
            "Stripe subscription %s deleted: user=%s (was %s)",
            subscription.id,
            user_id,
            previous,
        )

        flag_updated = await update_premium_flag(self.store, user_id, False)
        return WebhookOutcome(
            event_type=event.type,
            action="cancelled",
            user_id=user_id,
            previous_status=previous,
            premium_flag_updated=flag_updated,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _apply_sync(
        self,
        event: StripeWebhookEvent,
        values: StripeSubscriptionUpsert,
        is_premium: bool,
    ) -> WebhookOutcome:
        previous = await self.store.upsert_stripe_subscription(values)
        await self.store.record_history(
            user_id=values.user_id,
            event_type=event.type,
            previous_status=previous,
            new_status=values.status,
            product_id=values.product_id,
            environment=_environment(event),
            event_data=event.model_dump(mode="json"),
        )
        logger.info(
            "Stripe %s: user=%s subscription=%s status=%s (was %s)",
            event.type,
            values.user_id,
            values.stripe_subscription_id,
            values.status,
            previous or "new",
        )

        flag_updated = await update_premium_flag(self.store, values.user_id, is_premium)
        return WebhookOutcome(
            event_type=event.type,
            action="activated" if is_premium else "synced",
            user_id=values.user_id,
            previous_status=previous,
            premium_flag_updated=flag_updated,
        )

    async def _resolve_checkout_user(self, session: StripeCheckoutSession) -> Optional[str]:
        user_id = session.client_reference_id or session.metadata.get("user_id")
        if user_id:
            return user_id
        if session.customer_email:
            return await self.store.find_user_id_by_email(session.customer_email)
        return None

    async def _resolve_subscription_user(self, subscription: StripeSubscription) -> Optional[str]:
        user_id = await self.store.find_user_id_by_stripe_subscription(subscription.id)
        return user_id or subscription.metadata.get("user_id")


def _environment(event: StripeWebhookEvent) -> str:
    return "PRODUCTION" if event.livemode else "SANDBOX"
