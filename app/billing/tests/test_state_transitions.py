"""
Tests for Subscriber state machine transitions.

Transitions mutate an in-memory instance only, so these tests build
unsaved Subscriber objects and need no database.

Tests verify:
- Valid transitions succeed and set the entitlement fields
- Invalid transitions raise TransitionNotAllowed
- Provider refs are kept, filled, or cleared as each transition requires
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django_fsm import TransitionNotAllowed

from billing.models import Subscriber
from billing.state_machines import PlanType, SubscriptionStatus
from billing.types import ProviderRefs

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=dt_timezone.utc)

REFS = ProviderRefs(
    customer_code="CUS_new",
    subscription_code="SUB_new",
    email_token="tok_new",
)


def make_subscriber(**kwargs):
    defaults = {"email": "ama@example.com"}
    defaults.update(kwargs)
    return Subscriber(**defaults)


def active(**kwargs):
    return make_subscriber(
        plan_type=PlanType.PRO,
        subscription_status=SubscriptionStatus.ACTIVE,
        started_at=NOW - timedelta(days=10),
        expires_at=NOW + timedelta(days=20),
        provider_customer_code="CUS_old",
        provider_subscription_code="SUB_old",
        provider_email_token="tok_old",
        **kwargs,
    )


class TestActivate:
    """Tests for the activate transition (any -> ACTIVE)."""

    def test_from_none(self):
        subscriber = make_subscriber()
        expires_at = NOW + timedelta(days=30)

        subscriber.activate(expires_at=expires_at, refs=REFS, now=NOW)

        assert subscriber.subscription_status == SubscriptionStatus.ACTIVE
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.started_at == NOW
        assert subscriber.expires_at == expires_at
        assert subscriber.provider_subscription_code == "SUB_new"
        assert subscriber.provider_email_token == "tok_new"

    def test_same_provider_subscription_keeps_started_at(self):
        subscriber = active()
        original_start = subscriber.started_at

        subscriber.activate(
            expires_at=NOW + timedelta(days=30),
            refs=ProviderRefs(subscription_code="SUB_old"),
            now=NOW,
        )

        assert subscriber.started_at == original_start

    def test_new_provider_subscription_restarts(self):
        subscriber = make_subscriber(
            subscription_status=SubscriptionStatus.EXPIRED,
            started_at=NOW - timedelta(days=90),
            provider_subscription_code="SUB_old",
        )

        subscriber.activate(expires_at=NOW + timedelta(days=30), refs=REFS, now=NOW)

        assert subscriber.started_at == NOW
        assert subscriber.provider_subscription_code == "SUB_new"

    def test_empty_refs_keep_existing_values(self):
        subscriber = make_subscriber(
            subscription_status=SubscriptionStatus.EXPIRED,
            provider_customer_code="CUS_old",
        )

        subscriber.activate(
            expires_at=NOW + timedelta(days=30), refs=ProviderRefs(), now=NOW
        )

        assert subscriber.provider_customer_code == "CUS_old"

    def test_period_already_over_is_not_entitled(self):
        subscriber = make_subscriber()

        subscriber.activate(
            expires_at=NOW - timedelta(days=1), refs=ProviderRefs(), now=NOW
        )

        assert subscriber.subscription_status == SubscriptionStatus.ACTIVE
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.effective_plan(NOW) == PlanType.FREE


class TestRenew:
    def test_extends_expiry(self):
        subscriber = active()
        new_expiry = NOW + timedelta(days=50)

        subscriber.renew(expires_at=new_expiry, refs=ProviderRefs(), now=NOW)

        assert subscriber.subscription_status == SubscriptionStatus.ACTIVE
        assert subscriber.expires_at == new_expiry
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.started_at == NOW - timedelta(days=10)

    def test_sets_started_at_when_missing(self):
        subscriber = make_subscriber(subscription_status=SubscriptionStatus.EXPIRED)

        subscriber.renew(
            expires_at=NOW + timedelta(days=30), refs=ProviderRefs(), now=NOW
        )

        assert subscriber.started_at == NOW

    def test_renewal_into_the_past_is_not_entitled(self):
        subscriber = active()

        subscriber.renew(
            expires_at=NOW - timedelta(days=1), refs=ProviderRefs(), now=NOW
        )

        assert subscriber.plan_type == PlanType.FREE


class TestCancel:
    """Tests for the cancel transition (ACTIVE -> CANCELLED)."""

    def test_keeps_pro_until_expiry(self):
        subscriber = active()
        expires_at = subscriber.expires_at
        started_at = subscriber.started_at

        subscriber.cancel(now=NOW)

        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.expires_at == expires_at
        assert subscriber.started_at == started_at
        assert subscriber.provider_subscription_code == "SUB_old"

    def test_without_time_left_ends_entitlement(self):
        subscriber = active()
        subscriber.expires_at = NOW - timedelta(hours=1)

        subscriber.cancel(now=NOW)

        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.expires_at is None
        assert subscriber.provider_subscription_code is None

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.NONE,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
    )
    def test_only_from_active(self, status):
        subscriber = make_subscriber(subscription_status=status)

        with pytest.raises(TransitionNotAllowed):
            subscriber.cancel(now=NOW)


class TestExpire:
    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.NONE,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
    )
    def test_from_any_state(self, status):
        subscriber = active()
        subscriber.subscription_status = status

        subscriber.expire()

        assert subscriber.subscription_status == SubscriptionStatus.EXPIRED
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.expires_at is None
        assert subscriber.provider_refs == ProviderRefs()


class TestLapse:
    def test_keeps_provider_refs(self):
        subscriber = active()

        subscriber.lapse()

        assert subscriber.subscription_status == SubscriptionStatus.EXPIRED
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.expires_at is None
        assert subscriber.provider_subscription_code == "SUB_old"

    @pytest.mark.parametrize(
        "status", [SubscriptionStatus.NONE, SubscriptionStatus.EXPIRED]
    )
    def test_not_from_inactive_states(self, status):
        subscriber = make_subscriber(subscription_status=status)

        with pytest.raises(TransitionNotAllowed):
            subscriber.lapse()


class TestReactivate:
    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.NONE,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
    )
    def test_starts_fresh_period(self, status):
        subscriber = active()
        subscriber.subscription_status = status
        expires_at = NOW + timedelta(days=30)

        subscriber.reactivate(expires_at=expires_at, now=NOW)

        assert subscriber.subscription_status == SubscriptionStatus.ACTIVE
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.started_at == NOW
        assert subscriber.expires_at == expires_at
        assert subscriber.provider_refs == ProviderRefs()

    def test_not_from_active(self):
        subscriber = active()

        with pytest.raises(TransitionNotAllowed):
            subscriber.reactivate(expires_at=NOW + timedelta(days=30), now=NOW)


class TestRefHelpers:
    def test_fill_missing_refs_never_overwrites(self):
        subscriber = make_subscriber(provider_customer_code="CUS_old")

        subscriber.fill_missing_refs(REFS)

        assert subscriber.provider_customer_code == "CUS_old"
        assert subscriber.provider_subscription_code == "SUB_new"
        assert subscriber.provider_email_token == "tok_new"

    def test_store_refs_overwrites(self):
        subscriber = active()

        subscriber.store_refs(ProviderRefs(subscription_code="SUB_new"))

        assert subscriber.provider_subscription_code == "SUB_new"
        assert subscriber.provider_customer_code == "CUS_old"

    def test_consistency_check(self):
        subscriber = active()
        assert subscriber.is_consistent(NOW) is True

        subscriber.expires_at = NOW - timedelta(days=1)
        assert subscriber.effective_plan(NOW) == PlanType.FREE
        assert subscriber.is_consistent(NOW) is False
