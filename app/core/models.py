"""
Pydantic domain models for the billing service.

These models are the read side of the account record: snapshots flow from
the store to the state machine, the HTTP layer, and real-time subscribers.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class Plan(StrEnum):
    """Subscription plans. FREE is the signup default and the post-cancel fallback."""
    FREE = "free"
    CLONE = "clone"
    SYNDICATE = "syndicate"


PAID_PLANS = frozenset({Plan.CLONE, Plan.SYNDICATE})

# Plans whose first purchase includes a free trial
TRIAL_PLANS = frozenset({Plan.CLONE})


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(StrEnum):
    """Mirror of the processor-side subscription status."""
    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"

    @classmethod
    def from_processor(cls, raw: str | None) -> "SubscriptionStatus":
        """Collapse Stripe's status vocabulary onto the statuses we track."""
        mapping = {
            "active": cls.ACTIVE,
            "trialing": cls.TRIALING,
            "past_due": cls.PAST_DUE,
            "incomplete": cls.PAST_DUE,
            "unpaid": cls.CANCELED,
            "canceled": cls.CANCELED,
            "incomplete_expired": cls.CANCELED,
        }
        return mapping.get(raw or "", cls.ACTIVE if raw else cls.NONE)

    @property
    def is_live(self) -> bool:
        """True while the processor may still bill this subscription."""
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; everything we store is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def to_iso(value: datetime | None) -> str | None:
    """Serialize a timestamp as ``2026-03-01T00:00:00Z``."""
    if value is None:
        return None
    return _as_utc(value).astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_display_date(value: datetime | None) -> str:
    """Human-readable date used in responses and emails, e.g. ``March 1, 2026``."""
    if value is None:
        return "N/A"
    value = _as_utc(value).astimezone(UTC)
    return f"{value:%B} {value.day}, {value.year}"


class AccountSnapshot(BaseModel):
    """Immutable point-in-time copy of an account record."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    email: str = ""
    name: str = ""
    plan: Plan = Plan.FREE
    billing_cycle: BillingCycle | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    payment_warning: bool = False
    has_used_trial: bool = False
    updated_at: datetime | None = None

    @field_validator("current_period_end", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def to_public(self) -> dict:
        """Camel-cased view pushed to clients over HTTP and SSE."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "plan": self.plan.value,
            "billingCycle": self.billing_cycle.value if self.billing_cycle else None,
            "subscriptionId": self.subscription_id,
            "customerId": self.customer_id,
            "subscriptionStatus": self.subscription_status.value,
            "cancelAtPeriodEnd": self.cancel_at_period_end,
            "currentPeriodEnd": to_iso(self.current_period_end),
            "paymentWarning": self.payment_warning,
            "updatedAt": to_iso(self.updated_at),
        }


class ProcessorSubscription(BaseModel):
    """The processor's authoritative view of one subscription."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: str
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    customer_id: str | None = None
    price_id: str | None = None

    @property
    def normalized_status(self) -> SubscriptionStatus:
        return SubscriptionStatus.from_processor(self.status)


class ProcessorCheckoutSession(BaseModel):
    """A hosted checkout session, as far as it links an account to a purchase."""

    model_config = ConfigDict(frozen=True)

    id: str
    account_id: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
