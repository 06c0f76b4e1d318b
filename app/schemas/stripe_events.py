"""
Stripe Webhook Schemas
======================

Pydantic models for the parts of Stripe webhook events we act on.

The signature is verified over the raw body before any of these models see
it. Only fields we read are declared; Stripe adds fields freely between API
versions, so everything else is ignored.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# 9999-12-31T23:59:59Z, the last second a datetime can hold
MAX_EPOCH_SECONDS = 253402300799

EpochSeconds = Annotated[int, Field(ge=0, le=MAX_EPOCH_SECONDS)]


class _StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class StripeEventData(_StripeModel):
    object: dict[str, Any]


class StripeWebhookEvent(_StripeModel):
    """Top-level Stripe event envelope."""

    id: Optional[str] = None
    type: str
    livemode: bool = False
    data: StripeEventData


class StripeCheckoutSession(_StripeModel):
    """``checkout.session`` object."""

    id: str
    mode: Optional[str] = None
    customer: Optional[str] = None
    customer_email: Optional[str] = None
    client_reference_id: Optional[str] = None
    subscription: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class StripeSubscriptionItem(_StripeModel):
    # Newer API versions carry the billing period on the item
    current_period_start: Optional[EpochSeconds] = None
    current_period_end: Optional[EpochSeconds] = None


class StripeSubscriptionItems(_StripeModel):
    data: list[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(_StripeModel):
    """``subscription`` object."""

    id: str
    customer: Optional[str] = None
    status: str
    current_period_start: Optional[EpochSeconds] = None
    current_period_end: Optional[EpochSeconds] = None
    cancel_at_period_end: bool = False
    items: StripeSubscriptionItems = Field(default_factory=StripeSubscriptionItems)
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def period_start(self) -> Optional[int]:
        if self.current_period_start is not None:
            return self.current_period_start
        return self.items.data[0].current_period_start if self.items.data else None

    @property
    def period_end(self) -> Optional[int]:
        if self.current_period_end is not None:
            return self.current_period_end
        return self.items.data[0].current_period_end if self.items.data else None
