"""
Webhooks API Endpoints
======================

Handles webhooks from RevenueCat and Stripe.

RevenueCat authentication:
    RevenueCat sends the configured shared secret in the
    ``x-revenuecat-secret`` header. With ``REVENUECAT_WEBHOOK_AUTH=enforced``
    (the default) it must match ``REVENUECAT_WEBHOOK_SECRET``; with
    ``disabled`` every request is accepted.

Stripe authentication:
    The ``stripe-signature`` header is verified over the raw body with
    ``STRIPE_WEBHOOK_SECRET`` by the Stripe library before anything is parsed.

Retries:
    Non-2xx responses make both providers redeliver the event. We answer 500
    only when a subscription write fails; unknown and TEST events get 200.
"""

import json
import logging
from typing import Annotated, Optional

import newrelic.agent
import stripe
from fastapi import APIRouter, Header, Request
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import (
    AppException,
    AuthenticationError,
    ErrorCodes,
    ValidationError,
    WebhookProcessingError,
)
from app.core.security import verify_webhook_secret
from app.dependencies import AppSettings, SubscriptionStoreDep
from app.schemas.common import ErrorResponse, MessageResponse, ReceivedResponse
from app.schemas.revenuecat import RevenueCatWebhookPayload
from app.schemas.stripe_events import StripeWebhookEvent
from app.services.revenuecat import RevenueCatWebhookProcessor
from app.services.stripe_billing import StripeWebhookProcessor
from app.services.subscription_store import SubscriptionStoreError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.options("/revenuecat-webhook")
async def revenuecat_webhook_preflight() -> dict:
    """CORS preflight for clients that don't send Origin headers."""
    return {"message": "ok"}


@router.post(
    "/revenuecat-webhook",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Body is not JSON"},
        401: {"model": ErrorResponse, "description": "Bad webhook secret"},
        422: {"model": ErrorResponse, "description": "Malformed event"},
        500: {"model": ErrorResponse, "description": "Subscription write failed"},
    },
)
async def revenuecat_webhook(
    request: Request,
    store: SubscriptionStoreDep,
    app_settings: AppSettings,
    x_revenuecat_secret: Annotated[Optional[str], Header()] = None,
):
    """
    Handle RevenueCat webhook events.

    Events handled:
    - INITIAL_PURCHASE, NON_RENEWING_PURCHASE, RENEWAL -> active, premium
    - CANCELLATION, EXPIRATION -> cancelled, not premium
    - TEST (acknowledged, no-op)
    - anything else (logged, no-op)
    """
    # ── Verify shared secret ──────────────────────────────────────────────
    if not verify_webhook_secret(x_revenuecat_secret, app_settings):
        logger.warning(
            "Invalid webhook secret (header present: %s)",
            "yes" if x_revenuecat_secret else "no",
        )
        raise AuthenticationError(
            code=ErrorCodes.WEBHOOK_UNAUTHORIZED,
            message="Unauthorized",
        )

    # ── Parse payload ─────────────────────────────────────────────────────
    try:
        body = await request.body()
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("Invalid webhook payload: %s", e)
        raise ValidationError(
            message="Invalid JSON payload",
            code=ErrorCodes.WEBHOOK_INVALID_PAYLOAD,
        )

    try:
        webhook = RevenueCatWebhookPayload.model_validate(payload)
    except PydanticValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        logger.error("Malformed webhook event: %s (%s)", first_error.get("msg"), field)
        raise ValidationError(
            message=first_error.get("msg", "Malformed webhook event"),
            field=field or None,
            code=ErrorCodes.WEBHOOK_INVALID_PAYLOAD,
            status_code=422,
        )

    event = webhook.event
    newrelic.agent.add_custom_attribute("revenuecat.event_type", event.type)
    logger.info(
        "RevenueCat webhook received: type=%s user=%s event_id=%s",
        event.type,
        event.app_user_id,
        event.id,
    )

    # ── Process event ─────────────────────────────────────────────────────
    processor = RevenueCatWebhookProcessor(store)
    try:
        outcome = await processor.process_event(event)
        await store.commit()
    except SubscriptionStoreError:
        logger.exception(
            "Webhook processing error: type=%s user=%s event_id=%s",
            event.type,
            event.app_user_id,
            event.id,
        )
        await store.rollback()
        # Return 500 so RevenueCat will retry
        raise WebhookProcessingError()

    logger.info(
        "Webhook processed: type=%s user=%s action=%s premium_flag_updated=%s",
        outcome.event_type,
        outcome.user_id,
        outcome.action,
        outcome.premium_flag_updated,
    )

    return {"message": "OK"}


@router.post(
    "/stripe-webhook",
    response_model=ReceivedResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or invalid signature"},
        422: {"model": ErrorResponse, "description": "Malformed event"},
        500: {"model": ErrorResponse, "description": "Not configured or write failed"},
    },
)
async def stripe_webhook(
    request: Request,
    store: SubscriptionStoreDep,
    app_settings: AppSettings,
    stripe_signature: Annotated[Optional[str], Header()] = None,
):
    """
    Handle Stripe subscription webhooks.

    Events handled:
    - checkout.session.completed (subscription mode) -> active, premium
    - customer.subscription.created / updated -> status and period synced
    - customer.subscription.deleted -> cancelled, not premium
    - anything else (logged, no-op)
    """
    # ── Verify signature ──────────────────────────────────────────────────
    if not app_settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting Stripe webhook")
        raise AppException(
            status_code=500,
            code=ErrorCodes.WEBHOOK_NOT_CONFIGURED,
            message="Stripe not configured",
        )

    if not stripe_signature:
        raise ValidationError(
            message="No signature found in request",
            code=ErrorCodes.WEBHOOK_INVALID_SIGNATURE,
        )

    body = await request.body()
    try:
        stripe.Webhook.construct_event(body, stripe_signature, app_settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error("Invalid Stripe payload: %s", e)
        raise ValidationError(
            message="Invalid JSON payload",
            code=ErrorCodes.WEBHOOK_INVALID_PAYLOAD,
        )
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook signature verification failed")
        raise ValidationError(
            message="Invalid signature",
            code=ErrorCodes.WEBHOOK_INVALID_SIGNATURE,
        )

    # ── Parse and process ─────────────────────────────────────────────────
    processor = StripeWebhookProcessor(store)
    try:
        event = StripeWebhookEvent.model_validate_json(body)
        newrelic.agent.add_custom_attribute("stripe.event_type", event.type)
        logger.info("Stripe webhook received: type=%s event_id=%s", event.type, event.id)

        outcome = await processor.process_event(event)
        await store.commit()
    except PydanticValidationError as e:
        await store.rollback()
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        logger.error("Malformed Stripe event: %s (%s)", first_error.get("msg"), field)
        raise ValidationError(
            message=first_error.get("msg", "Malformed webhook event"),
            field=field or None,
            code=ErrorCodes.WEBHOOK_INVALID_PAYLOAD,
            status_code=422,
        )
    except SubscriptionStoreError:
        logger.exception("Stripe webhook processing error")
        await store.rollback()
        raise WebhookProcessingError()

    logger.info(
        "Stripe webhook processed: type=%s user=%s action=%s premium_flag_updated=%s",
        outcome.event_type,
        outcome.user_id,
        outcome.action,
        outcome.premium_flag_updated,
    )

    return {"received": True}
