"""
Tests for the subscription state machine.

Verifies:
- States derived from account records
- Valid cancel/resume transitions produce the expected plan
- Invalid transitions raise the typed refusals with their details
"""

from datetime import UTC, datetime

import pytest

from app.core.exceptions import (
    AlreadyCancelingError,
    NoSubscriptionError,
    NotCancelingError,
    SubscriptionConflictError,
)
from app.core.models import Plan, SubscriptionStatus
from app.services.subscription_state import (
    LifecycleAction,
    SubscriptionState,
    derive_state,
    plan_transition,
)
from tests.factories import snapshot

PERIOD_END = datetime(2026, 3, 1, tzinfo=UTC)


def _active(**overrides):
    fields = {
        "plan": Plan.CLONE,
        "subscription_id": "sub_123",
        "customer_id": "cus_123",
        "subscription_status": SubscriptionStatus.ACTIVE,
        "current_period_end": PERIOD_END,
    }
    fields.update(overrides)
    return snapshot(**fields)


# ─── derive_state ────────────────────────────────────────────


class TestDeriveState:
    def test_no_subscription_is_none(self):
        assert derive_state(snapshot()) == SubscriptionState.NONE

    def test_active_subscription(self):
        assert derive_state(_active()) == SubscriptionState.ACTIVE

    def test_trialing_counts_as_active(self):
        assert derive_state(_active(subscription_status=SubscriptionStatus.TRIALING)) == SubscriptionState.ACTIVE

    def test_cancel_flag_means_cancel_scheduled(self):
        assert derive_state(_active(cancel_at_period_end=True)) == SubscriptionState.CANCEL_SCHEDULED

    def test_past_due(self):
        assert derive_state(_active(subscription_status=SubscriptionStatus.PAST_DUE)) == SubscriptionState.PAST_DUE

    def test_past_due_with_cancel_flag_is_cancel_scheduled(self):
        record = _active(subscription_status=SubscriptionStatus.PAST_DUE, cancel_at_period_end=True)
        assert derive_state(record) == SubscriptionState.CANCEL_SCHEDULED

    def test_canceled_status_wins_over_flag(self):
        record = _active(subscription_status=SubscriptionStatus.CANCELED, cancel_at_period_end=True)
        assert derive_state(record) == SubscriptionState.CANCELED


# ─── Cancel ──────────────────────────────────────────────────


class TestCancelTransition:
    def test_active_to_cancel_scheduled(self):
        plan = plan_transition(_active(), LifecycleAction.CANCEL)
        assert plan.from_state == SubscriptionState.ACTIVE
        assert plan.to_state == SubscriptionState.CANCEL_SCHEDULED
        assert plan.cancel_at_period_end is True
        assert plan.subscription_id == "sub_123"
        assert plan.notification == "cancellation"

    def test_past_due_can_be_canceled(self):
        plan = plan_transition(
            _active(subscription_status=SubscriptionStatus.PAST_DUE), LifecycleAction.CANCEL
        )
        assert plan.from_state == SubscriptionState.PAST_DUE
        assert plan.to_state == SubscriptionState.CANCEL_SCHEDULED

    def test_already_canceling_is_refused_with_period_end(self):
        with pytest.raises(AlreadyCancelingError) as exc_info:
            plan_transition(_active(cancel_at_period_end=True), LifecycleAction.CANCEL)
        assert exc_info.value.code == "ALREADY_CANCELING"
        assert exc_info.value.details["currentPeriodEnd"] == "2026-03-01T00:00:00Z"

    def test_no_subscription_is_refused(self):
        with pytest.raises(NoSubscriptionError) as exc_info:
            plan_transition(snapshot(), LifecycleAction.CANCEL)
        assert exc_info.value.details["state"] == "none"

    def test_canceled_subscription_is_refused(self):
        with pytest.raises(NoSubscriptionError):
            plan_transition(
                _active(subscription_status=SubscriptionStatus.CANCELED), LifecycleAction.CANCEL
            )


# ─── Resume ──────────────────────────────────────────────────


class TestResumeTransition:
    def test_cancel_scheduled_to_active(self):
        plan = plan_transition(_active(cancel_at_period_end=True), LifecycleAction.RESUME)
        assert plan.from_state == SubscriptionState.CANCEL_SCHEDULED
        assert plan.to_state == SubscriptionState.ACTIVE
        assert plan.cancel_at_period_end is False
        assert plan.notification == "resumption"

    def test_resume_keeps_past_due_status(self):
        record = _active(subscription_status=SubscriptionStatus.PAST_DUE, cancel_at_period_end=True)
        plan = plan_transition(record, LifecycleAction.RESUME)
        assert plan.to_state == SubscriptionState.PAST_DUE

    def test_resume_without_scheduled_cancel_is_refused(self):
        with pytest.raises(NotCancelingError) as exc_info:
            plan_transition(_active(), LifecycleAction.RESUME)
        assert exc_info.value.code == "NOT_CANCELING"
        assert exc_info.value.details["state"] == "active"

    def test_resume_without_subscription_is_no_subscription(self):
        with pytest.raises(NoSubscriptionError):
            plan_transition(snapshot(), LifecycleAction.RESUME)

    def test_refusals_share_conflict_base(self):
        """All refusals map to the same 409 handler."""
        for exc_type in (NoSubscriptionError, AlreadyCancelingError, NotCancelingError):
            assert issubclass(exc_type, SubscriptionConflictError)
