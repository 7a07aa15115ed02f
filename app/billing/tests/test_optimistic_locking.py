"""
Tests for optimistic locking on Subscriber.

Tests verify:
- conditional_update advances the version on success
- A write against an old version raises StaleRecordError
- Lifecycle operations re-read and re-apply after a lost race
- The retry budget is bounded
"""

import uuid
from datetime import timedelta

import pytest
from django.db.models import F

from billing.exceptions import StaleRecordError, SubscriberNotFoundError
from billing.models import Subscriber
from billing.state_machines import PlanType, SubscriptionStatus
from billing.store import SubscriberStore


class TestConditionalUpdate:
    """Tests for SubscriberStore.conditional_update."""

    def test_increments_version(self, active_subscriber, now):
        store = SubscriberStore()
        subscriber = store.require(active_subscriber.pk)
        initial_version = subscriber.version

        subscriber.cancel(now=now)
        store.conditional_update(subscriber, ["subscription_status"])

        assert subscriber.version == initial_version + 1
        fresh = Subscriber.objects.get(pk=subscriber.pk)
        assert fresh.version == initial_version + 1
        assert fresh.subscription_status == SubscriptionStatus.CANCELLED

    def test_only_writes_given_fields(self, active_subscriber, now):
        store = SubscriberStore()
        subscriber = store.require(active_subscriber.pk)

        subscriber.plan_type = PlanType.FREE
        subscriber.expires_at = now
        store.conditional_update(subscriber, ["plan_type"])

        fresh = Subscriber.objects.get(pk=subscriber.pk)
        assert fresh.plan_type == PlanType.FREE
        assert fresh.expires_at == active_subscriber.expires_at

    def test_stale_version_raises(self, active_subscriber):
        store = SubscriberStore()
        first = store.require(active_subscriber.pk)
        second = store.require(active_subscriber.pk)

        first.plan_type = PlanType.FREE
        store.conditional_update(first, ["plan_type"])

        second.expires_at = None
        with pytest.raises(StaleRecordError) as exc_info:
            store.conditional_update(second, ["expires_at"])

        assert exc_info.value.details["expected_version"] == second.version
        assert exc_info.value.details["current_version"] == second.version + 1
        # Loser's change was not written
        assert Subscriber.objects.get(pk=active_subscriber.pk).expires_at is not None

    def test_deleted_row_raises_not_found(self, active_subscriber):
        store = SubscriberStore()
        subscriber = store.require(active_subscriber.pk)
        Subscriber.objects.filter(pk=subscriber.pk).delete()

        with pytest.raises(SubscriberNotFoundError):
            store.conditional_update(subscriber, ["plan_type"])

    def test_model_save_increments_version(self, free_subscriber):
        initial_version = free_subscriber.version

        free_subscriber.email = "ama.mensah@example.com"
        free_subscriber.save()

        assert free_subscriber.version == initial_version + 1


class TestLifecycleRetry:
    """Tests for the re-read and re-apply loop in LifecycleManager."""

    def test_retries_after_conflict(self, manager, active_subscriber, now, mocker):
        real_require = manager.store.require
        calls = {"count": 0}

        def racing_require(subscriber_id):
            subscriber = real_require(subscriber_id)
            calls["count"] += 1
            if calls["count"] == 1:
                # Another writer renews between our read and our write
                Subscriber.objects.filter(pk=subscriber.pk).update(
                    version=F("version") + 1,
                    expires_at=now + timedelta(days=40),
                )
            return subscriber

        mocker.patch.object(manager.store, "require", side_effect=racing_require)

        result = manager.cancel(active_subscriber.pk, disable_remote=False, now=now)

        assert result.success
        assert calls["count"] == 2
        subscriber = result.data.subscriber
        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED
        # Second attempt re-read the concurrent renewal
        assert subscriber.expires_at == now + timedelta(days=40)

    def test_gives_up_after_retry_budget(self, manager, active_subscriber, now, mocker):
        mock_update = mocker.patch.object(
            manager.store,
            "conditional_update",
            side_effect=StaleRecordError("conflict"),
        )

        with pytest.raises(StaleRecordError):
            manager.sync(active_subscriber.pk, now=now + timedelta(days=30))

        assert mock_update.call_count == manager.config.max_conflict_retries
        manager.notifier.publish.assert_not_called()

    def test_no_write_means_no_conflict(self, manager, active_subscriber, now, mocker):
        mock_update = mocker.patch.object(manager.store, "conditional_update")

        result = manager.sync(active_subscriber.pk, now=now)

        assert result.success
        assert result.data.changed is False
        mock_update.assert_not_called()

    def test_missing_subscriber_raises(self, manager):
        with pytest.raises(SubscriberNotFoundError):
            manager.sync(uuid.uuid4())
