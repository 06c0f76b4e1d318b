"""
RevenueCat Webhook Schemas
==========================

Pydantic models for RevenueCat webhook payloads.

RevenueCat wraps each event under the ``event`` key::

    { "api_version": "1.0", "event": { "type": "RENEWAL", ... } }

The event is decoded into a tagged union keyed on ``event.type``. Types we
act on get strict models (a state-changing event without ``app_user_id`` is
rejected here rather than reaching the data store); anything else falls
through to ``UnrecognizedEvent`` so new RevenueCat event types are
acknowledged instead of failing delivery.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, StringConstraints, Tag


class RevenueCatEventType(str, Enum):
    """Event types that RevenueCat can send via webhooks."""

    INITIAL_PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    CANCELLATION = "CANCELLATION"
    UNCANCELLATION = "UNCANCELLATION"
    NON_RENEWING_PURCHASE = "NON_RENEWING_PURCHASE"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"
    EXPIRATION = "EXPIRATION"
    BILLING_ISSUE = "BILLING_ISSUE"
    PRODUCT_CHANGE = "PRODUCT_CHANGE"
    TRANSFER = "TRANSFER"
    SUBSCRIBER_ALIAS = "SUBSCRIBER_ALIAS"
    TEST = "TEST"


PURCHASE_EVENT_TYPES = frozenset({
    RevenueCatEventType.INITIAL_PURCHASE.value,
    RevenueCatEventType.NON_RENEWING_PURCHASE.value,
    RevenueCatEventType.RENEWAL.value,
})

TERMINATION_EVENT_TYPES = frozenset({
    RevenueCatEventType.CANCELLATION.value,
    RevenueCatEventType.EXPIRATION.value,
})

# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold
MAX_EPOCH_MS = 253402300799999

EpochMillis = Annotated[int, Field(ge=0, le=MAX_EPOCH_MS)]

AppUserId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _BaseEvent(BaseModel):
    """Fields shared by every RevenueCat event."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default=None, description="RevenueCat event ID")
    type: str
    app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    purchased_at_ms: Optional[EpochMillis] = None
    expiration_at_ms: Optional[EpochMillis] = None
    period_type: Optional[str] = None
    store: Optional[str] = None
    environment: Optional[str] = None
    subscriber_attributes: Optional[dict[str, Any]] = None


class PurchaseEvent(_BaseEvent):
    """INITIAL_PURCHASE, NON_RENEWING_PURCHASE or RENEWAL: grants premium."""

    type: Literal["INITIAL_PURCHASE", "NON_RENEWING_PURCHASE", "RENEWAL"]
    app_user_id: AppUserId


class TerminationEvent(_BaseEvent):
    """CANCELLATION or EXPIRATION: revokes premium."""

    type: Literal["CANCELLATION", "EXPIRATION"]
    app_user_id: AppUserId


class DashboardTestEvent(_BaseEvent):
    """TEST event sent from the RevenueCat dashboard."""

    type: Literal["TEST"]


class UnrecognizedEvent(_BaseEvent):
    """Any event type we don't act on."""


def _event_kind(value: Any) -> str:
    """Pick the union member for a raw or already-built event."""
    if isinstance(value, dict):
        event_type = value.get("type")
    else:
        event_type = getattr(value, "type", None)

    if event_type in PURCHASE_EVENT_TYPES:
        return "purchase"
    if event_type in TERMINATION_EVENT_TYPES:
        return "termination"
    if event_type == RevenueCatEventType.TEST.value:
        return "test"
    return "unrecognized"


RevenueCatEvent = Annotated[
    Union[
        Annotated[PurchaseEvent, Tag("purchase")],
        Annotated[TerminationEvent, Tag("termination")],
        Annotated[DashboardTestEvent, Tag("test")],
        Annotated[UnrecognizedEvent, Tag("unrecognized")],
    ],
    Discriminator(_event_kind),
]


class RevenueCatWebhookPayload(BaseModel):
    """Top-level webhook body."""

    model_config = ConfigDict(extra="ignore")

    api_version: Optional[str] = None
    event: RevenueCatEvent
