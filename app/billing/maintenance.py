"""
Periodic consistency sweep for subscriber entitlement.

Webhooks are at-least-once and can be lost entirely, so plan_type drifts:
a cancelled subscriber's grace period ends without any event, and a missed
subscription.not_renew leaves a lapsed subscriber on pro. The sweep
repairs both by calling LifecycleManager.sync directly (no router).

Phases:
    1. expire_overdue: subscribers cached as pro whose expires_at has passed
    2. batch_sync: every subscriber that has had a billing relationship

Each record is fault-isolated: a failure is logged and counted in the
phase's errors, and the sweep moves on.

Usage:
    from billing.maintenance import MaintenanceScheduler

    report = MaintenanceScheduler(LifecycleManager()).run()
    report.total_updated
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.utils import timezone

from billing.types import MaintenanceReport, PhaseReport

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime

    from billing.lifecycle import LifecycleManager


logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs the two-phase sync sweep over stored subscribers."""

    def __init__(self, lifecycle: LifecycleManager) -> None:
        self.lifecycle = lifecycle
        self.store = lifecycle.store

    def run(self, now: datetime | None = None) -> MaintenanceReport:
        """
        Sweep once, evaluating expiry against a single reference time.

        Returns:
            MaintenanceReport with per-phase processed/updated/errors
        """
        now = now or timezone.now()
        logger.info(
            "Starting subscription maintenance", extra={"now": now.isoformat()}
        )

        expire_overdue = self._sync_all(
            "expire_overdue", self.store.overdue_pro_ids(now), now
        )
        batch_sync = self._sync_all(
            "batch_sync", self.store.with_relationship_ids(), now
        )

        report = MaintenanceReport(
            expire_overdue=expire_overdue,
            batch_sync=batch_sync,
            timestamp=now,
        )
        log = logger.warning if report.total_errors else logger.info
        log(
            "Subscription maintenance complete",
            extra={
                "total_updated": report.total_updated,
                "total_errors": report.total_errors,
            },
        )
        return report

    def _sync_all(
        self, phase: str, subscriber_ids: Iterable[uuid.UUID], now: datetime
    ) -> PhaseReport:
        report = PhaseReport()
        for subscriber_id in subscriber_ids:
            report.processed += 1
            try:
                result = self.lifecycle.sync(subscriber_id, now=now)
            except Exception as e:
                report.errors += 1
                logger.error(
                    f"{phase}: sync failed: {type(e).__name__}: {e}",
                    extra={"subscriber_id": str(subscriber_id), "phase": phase},
                    exc_info=True,
                )
                continue
            if result.data.changed:
                report.updated += 1

        logger.info(
            f"Maintenance phase {phase} finished",
            extra={
                "phase": phase,
                "processed": report.processed,
                "updated": report.updated,
                "errors": report.errors,
            },
        )
        return report


def subscription_stats(
    lifecycle: LifecycleManager, now: datetime | None = None
) -> dict[str, int]:
    """
    Subscriber counts for the operator stats endpoint.

    Keys: total, free, pro, active, cancelled, expired, inconsistent
    (cached plan_type disagrees with the effective plan).
    """
    now = now or timezone.now()
    return lifecycle.store.counts(now)
