"""
RevenueCat Service
==================

Applies RevenueCat webhook events to local subscription state.

Event handling:
- INITIAL_PURCHASE / NON_RENEWING_PURCHASE / RENEWAL: upsert the
  subscription as ``active`` and set the user's premium flag
- CANCELLATION / EXPIRATION: mark the subscription ``cancelled`` and clear
  the premium flag
- TEST: acknowledged, no writes
- anything else: logged, no writes

No transition checks prior state, and the provider timestamps are written
as-is. A late RENEWAL can overwrite a newer CANCELLATION; the next delivery
for that user corrects it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.models.subscription import SubscriptionStatus
from app.schemas.revenuecat import (
    DashboardTestEvent,
    PurchaseEvent,
    RevenueCatEvent,
    TerminationEvent,
)
from app.services.subscription_store import (
    SubscriptionStore,
    SubscriptionUpsert,
    update_premium_flag,
)
from app.utils.helpers import from_epoch_ms

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    """What processing an event did, for logging and tests."""

    event_type: str
    action: str  # "activated", "synced", "cancelled" or "ignored"
    user_id: Optional[str] = None
    previous_status: Optional[str] = None
    premium_flag_updated: Optional[bool] = None


class RevenueCatWebhookProcessor:
    """Maps classified RevenueCat events onto the subscription store."""

    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def process_event(self, event: RevenueCatEvent) -> WebhookOutcome:
        """
        Apply a single webhook event.

        Subscription writes propagate ``SubscriptionStoreError`` so the caller
        can roll back and answer 500 (RevenueCat retries on non-2xx). The
        premium flag write is best-effort and never raises.

        Args:
            event: The decoded ``event`` object from the webhook body.

        Returns:
            WebhookOutcome describing what was applied.
        """
        if isinstance(event, PurchaseEvent):
            return await self._handle_purchase(event)

        if isinstance(event, TerminationEvent):
            return await self._handle_termination(event)

        if isinstance(event, DashboardTestEvent):
            logger.info("Test webhook received - no action needed")
            return WebhookOutcome(
                event_type=event.type,
                action="ignored",
                user_id=event.app_user_id,
            )

        logger.info(
            "Unknown event type: %s (app_user_id=%s)",
            event.type,
            event.app_user_id,
        )
        return WebhookOutcome(
            event_type=event.type,
            action="ignored",
            user_id=event.app_user_id,
        )

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _handle_purchase(self, event: PurchaseEvent) -> WebhookOutcome:
        user_id = event.app_user_id
        values = SubscriptionUpsert(
            user_id=user_id,
            product_id=event.product_id,
            current_period_start=from_epoch_ms(event.purchased_at_ms),
            current_period_end=from_epoch_ms(event.expiration_at_ms),
            store=event.store,
            environment=event.environment,
            period_type=event.period_type,
            attributes=event.subscriber_attributes,
        )

        previous = await self.store.upsert_active_subscription(values)
        await self.store.record_history(
            user_id=user_id,
            event_type=event.type,
            previous_status=previous,
            new_status=SubscriptionStatus.ACTIVE.value,
            product_id=event.product_id,
            environment=event.environment,
            event_data=event.model_dump(mode="json", exclude_none=True),
        )

        logger.info(
            "Webhook %s: user=%s product=%s store=%s env=%s (was %s)",
            event.type,
            user_id,
            event.product_id,
            event.store,
            event.environment,
            previous or "new",
        )

        flag_updated = await update_premium_flag(self.store, user_id, True)
        return WebhookOutcome(
            event_type=event.type,
            action="activated",
            user_id=user_id,
            previous_status=previous,
            premium_flag_updated=flag_updated,
        )

    async def _handle_termination(self, event: TerminationEvent) -> WebhookOutcome:
        user_id = event.app_user_id

        previous = await self.store.mark_subscription_cancelled(user_id)
        if previous is None:
            logger.warning(
                "Webhook %s: no subscription row for user=%s, nothing to cancel",
                event.type,
                user_id,
            )
        else:
            await self.store.record_history(
                user_id=user_id,
                event_type=event.type,
                previous_status=previous,
                new_status=SubscriptionStatus.CANCELLED.value,
                product_id=event.product_id,
                environment=event.environment,
                event_data=event.model_dump(mode="json", exclude_none=True),
            )
            logger.info(
                "Webhook %s: user=%s cancelled (was %s)",
                event.type,
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
