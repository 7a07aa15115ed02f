"""
Tests for the maintenance sweep.

Tests verify:
- Overdue pro subscribers are moved to expired and free
- A cancelled subscriber keeps pro through the grace period
- Per-phase counters and fault isolation
- A second sweep over consistent data writes nothing
"""

from datetime import timedelta

from billing.maintenance import MaintenanceScheduler, subscription_stats
from billing.models import Subscriber
from billing.state_machines import PlanType, SubscriptionStatus


def reload(subscriber):
    return Subscriber.objects.get(pk=subscriber.pk)


class TestCancellationGracePeriod:
    """A cancellation keeps pro until expiry, then the sweep ends it."""

    def test_cancel_then_sweep_after_expiry(self, manager, active_subscriber, now):
        period_end = active_subscriber.expires_at

        result = manager.cancel(
            active_subscriber.pk,
            disable_remote=False,
            now=period_end - timedelta(days=5),
        )

        subscriber = result.data.subscriber
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED
        assert subscriber.expires_at == period_end

        report = MaintenanceScheduler(manager).run(now=period_end + timedelta(days=1))

        subscriber = reload(active_subscriber)
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.subscription_status == SubscriptionStatus.EXPIRED
        assert subscriber.expires_at is None
        assert report.expire_overdue.updated == 1

    def test_sweep_inside_grace_period_keeps_pro(
        self, manager, cancelled_subscriber, now
    ):
        MaintenanceScheduler(manager).run(now=now)

        subscriber = reload(cancelled_subscriber)
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED


class TestMaintenanceScheduler:
    def test_phase_counters(
        self,
        manager,
        now,
        free_subscriber,
        active_subscriber,
        cancelled_subscriber,
        expired_subscriber,
        lapsed_subscriber,
    ):
        report = MaintenanceScheduler(manager).run(now=now)

        assert report.expire_overdue.processed == 1
        assert report.expire_overdue.updated == 1
        assert report.expire_overdue.errors == 0
        # free_subscriber never subscribed and is not visited
        assert report.batch_sync.processed == 4
        assert report.batch_sync.updated == 0
        assert report.total_updated == 1
        assert report.timestamp == now

        lapsed = reload(lapsed_subscriber)
        assert lapsed.subscription_status == SubscriptionStatus.EXPIRED
        assert lapsed.plan_type == PlanType.FREE
        # Refs survive a lapse
        assert lapsed.provider_subscription_code == "SUB_abena"

    def test_batch_sync_repairs_stale_plan(self, manager, active_subscriber, now):
        Subscriber.objects.filter(pk=active_subscriber.pk).update(
            plan_type=PlanType.FREE
        )

        report = MaintenanceScheduler(manager).run(now=now)

        assert report.expire_overdue.processed == 0
        assert report.batch_sync.updated == 1
        assert reload(active_subscriber).plan_type == PlanType.PRO

    def test_second_sweep_is_a_no_op(self, manager, now, lapsed_subscriber):
        scheduler = MaintenanceScheduler(manager)
        scheduler.run(now=now)
        version = reload(lapsed_subscriber).version

        report = scheduler.run(now=now)

        assert report.total_updated == 0
        assert reload(lapsed_subscriber).version == version

    def test_failure_is_isolated_per_record(
        self, manager, now, active_subscriber, cancelled_subscriber, mocker
    ):
        real_sync = manager.sync

        def flaky_sync(subscriber_id, now=None):
            if subscriber_id == active_subscriber.pk:
                raise RuntimeError("database hiccup")
            return real_sync(subscriber_id, now=now)

        mocker.patch.object(manager, "sync", side_effect=flaky_sync)
        mock_logger = mocker.patch("billing.maintenance.logger")

        report = MaintenanceScheduler(manager).run(now=now)

        assert report.batch_sync.processed == 2
        assert report.batch_sync.errors == 1
        assert report.total_errors == 1
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args[1]["extra"]["subscriber_id"] == str(
            active_subscriber.pk
        )
        mock_logger.warning.assert_called_once()

    def test_sweep_sends_no_notifications(self, manager, now, lapsed_subscriber):
        MaintenanceScheduler(manager).run(now=now)

        manager.notifier.publish.assert_not_called()

    def test_report_to_dict(self, manager, now, lapsed_subscriber):
        data = MaintenanceScheduler(manager).run(now=now).to_dict()

        assert data == {
            "expire_overdue": {"processed": 1, "updated": 1, "errors": 0},
            "batch_sync": {"processed": 1, "updated": 0, "errors": 0},
            "total_updated": 1,
            "total_errors": 0,
            "timestamp": now.isoformat(),
        }


class TestSubscriptionStats:
    def test_stats_before_and_after_sweep(
        self, manager, now, active_subscriber, lapsed_subscriber
    ):
        before = subscription_stats(manager, now=now)
        MaintenanceScheduler(manager).run(now=now)
        after = subscription_stats(manager, now=now)

        assert before["pro"] == 2
        assert before["inconsistent"] == 1
        assert after["pro"] == 1
        assert after["expired"] == 1
        assert after["inconsistent"] == 0
