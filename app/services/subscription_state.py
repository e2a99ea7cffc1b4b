"""
Subscription state machine.

Pure decision logic: given an account snapshot and a requested action,
either produce the plan for a valid transition or raise the typed refusal.
No I/O happens here; the subscription service performs the processor call
and the store write that a plan describes.

States are derived from the record, never stored:

    NONE ──checkout webhook──► ACTIVE ◄──payment webhooks──► PAST_DUE
                                 │ ▲                            │ ▲
                          cancel │ │ resume            cancel   │ │ resume
                                 ▼ │                            ▼ │
                            CANCEL_SCHEDULED ─subscription ended─► CANCELED
"""

from dataclasses import dataclass
from enum import StrEnum

from app.core.exceptions import (
    AlreadyCancelingError,
    NoSubscriptionError,
    NotCancelingError,
)
from app.core.models import AccountSnapshot, SubscriptionStatus, to_iso


class SubscriptionState(StrEnum):
    NONE = "none"
    ACTIVE = "active"
    CANCEL_SCHEDULED = "cancel_scheduled"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class LifecycleAction(StrEnum):
    CANCEL = "cancel"
    RESUME = "resume"


@dataclass(frozen=True)
class TransitionPlan:
    """What a valid user-initiated transition must do, in order."""

    action: LifecycleAction
    subscription_id: str
    from_state: SubscriptionState
    to_state: SubscriptionState
    # Value sent to the processor and then written to the record
    cancel_at_period_end: bool
    notification: str


def derive_state(snapshot: AccountSnapshot) -> SubscriptionState:
    """Map an account record onto its lifecycle state."""
    if snapshot.subscription_id is None:
        return SubscriptionState.NONE
    if snapshot.subscription_status == SubscriptionStatus.CANCELED:
        return SubscriptionState.CANCELED
    if snapshot.cancel_at_period_end:
        return SubscriptionState.CANCEL_SCHEDULED
    if snapshot.subscription_status == SubscriptionStatus.PAST_DUE:
        return SubscriptionState.PAST_DUE
    return SubscriptionState.ACTIVE


def plan_transition(snapshot: AccountSnapshot, action: LifecycleAction) -> TransitionPlan:
    """
    Decide a user-initiated transition.

    Raises:
        NoSubscriptionError: No live subscription (NONE or CANCELED).
        AlreadyCancelingError: Cancel requested while already scheduled.
        NotCancelingError: Resume requested with nothing scheduled.
    """
    state = derive_state(snapshot)

    if state in (SubscriptionState.NONE, SubscriptionState.CANCELED):
        raise NoSubscriptionError(
            "No active subscription found",
            details={"state": state.value},
        )

    if action == LifecycleAction.CANCEL:
        if state == SubscriptionState.CANCEL_SCHEDULED:
            raise AlreadyCancelingError(
                "Subscription is already scheduled to cancel",
                details={"currentPeriodEnd": to_iso(snapshot.current_period_end)},
            )
        return TransitionPlan(
            action=action,
            subscription_id=snapshot.subscription_id,
            from_state=state,
            to_state=SubscriptionState.CANCEL_SCHEDULED,
            cancel_at_period_end=True,
            notification="cancellation",
        )

    if action == LifecycleAction.RESUME:
        if state != SubscriptionState.CANCEL_SCHEDULED:
            raise NotCancelingError(
                "Subscription is not scheduled to cancel",
                details={"state": state.value},
            )
        resumed = (
            SubscriptionState.PAST_DUE
            if snapshot.subscription_status == SubscriptionStatus.PAST_DUE
            else SubscriptionState.ACTIVE
        )
        return TransitionPlan(
            action=action,
            subscription_id=snapshot.subscription_id,
            from_state=state,
            to_state=resumed,
            cancel_at_period_end=False,
            notification="resumption",
        )

    raise ValueError(f"Unknown lifecycle action: {action}")
