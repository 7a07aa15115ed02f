"""
SubscriberStore: persistence boundary for subscriber billing state.

All lifecycle writes go through conditional_update, which only succeeds if
the row is still at the version the caller read:

    UPDATE billing_subscriber
       SET ..., version = version + 1
     WHERE id = %s AND version = %s

A concurrent writer that got there first makes the update match zero rows,
which surfaces as StaleRecordError so the caller can re-read and re-apply.

Usage:
    from billing.store import SubscriberStore

    store = SubscriberStore()
    subscriber = store.get_by_email("ama@example.com")
    subscriber.cancel(now=now)
    store.conditional_update(subscriber, ["subscription_status", "plan_type"])
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from django.db.models import Count, F, Q
from django.utils import timezone

from billing.exceptions import StaleRecordError, SubscriberNotFoundError
from billing.models import Subscriber
from billing.state_machines import PlanType, SubscriptionStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from typing import Any

logger = logging.getLogger(__name__)


class SubscriberStore:
    """Reads and version-guarded writes of Subscriber rows."""

    # ==========================================================================
    # Reads
    # ==========================================================================

    def get_by_id(self, subscriber_id: Any) -> Subscriber | None:
        """Return the subscriber, or None for unknown or malformed ids."""
        try:
            pk = uuid.UUID(str(subscriber_id))
        except (TypeError, ValueError):
            return None
        return Subscriber.objects.filter(pk=pk).first()

    def get_by_email(self, email: str | None) -> Subscriber | None:
        """Case-insensitive lookup by account email."""
        if not email:
            return None
        return Subscriber.objects.filter(email__iexact=email.strip()).first()

    def require(self, subscriber_id: Any) -> Subscriber:
        """
        Return the subscriber or raise.

        Raises:
            SubscriberNotFoundError: If no subscriber has this id
        """
        subscriber = self.get_by_id(subscriber_id)
        if subscriber is None:
            raise SubscriberNotFoundError(
                f"Subscriber {subscriber_id} not found",
                details={"subscriber_id": str(subscriber_id)},
            )
        return subscriber

    def overdue_pro_ids(self, now: datetime) -> list[uuid.UUID]:
        """Ids of subscribers cached as pro whose paid period has ended."""
        return list(
            Subscriber.objects.filter(plan_type=PlanType.PRO, expires_at__lt=now)
            .order_by("pk")
            .values_list("pk", flat=True)
        )

    def with_relationship_ids(self) -> list[uuid.UUID]:
        """Ids of every subscriber that has ever had a billing relationship."""
        return list(
            Subscriber.objects.exclude(subscription_status=SubscriptionStatus.NONE)
            .order_by("pk")
            .values_list("pk", flat=True)
        )

    def counts(self, now: datetime) -> dict[str, int]:
        """
        Aggregate counts for the stats endpoint.

        inconsistent counts rows whose cached plan_type disagrees with the
        plan their status and expiry imply.
        """
        in_future = Q(expires_at__gt=now)
        entitled = (
            Q(subscription_status=SubscriptionStatus.ACTIVE)
            & (Q(expires_at__isnull=True) | in_future)
        ) | (Q(subscription_status=SubscriptionStatus.CANCELLED) & in_future)

        return Subscriber.objects.aggregate(
            total=Count("pk"),
            free=Count("pk", filter=Q(plan_type=PlanType.FREE)),
            pro=Count("pk", filter=Q(plan_type=PlanType.PRO)),
            active=Count(
                "pk", filter=Q(subscription_status=SubscriptionStatus.ACTIVE)
            ),
            cancelled=Count(
                "pk", filter=Q(subscription_status=SubscriptionStatus.CANCELLED)
            ),
            expired=Count(
                "pk", filter=Q(subscription_status=SubscriptionStatus.EXPIRED)
            ),
            inconsistent=Count(
                "pk",
                filter=(Q(plan_type=PlanType.PRO) & ~entitled)
                | (Q(plan_type=PlanType.FREE) & entitled),
            ),
        )

    # ==========================================================================
    # Writes
    # ==========================================================================

    def conditional_update(
        self, subscriber: Subscriber, fields: Iterable[str]
    ) -> Subscriber:
        """
        Persist the given fields if the row is still at subscriber.version.

        On success the in-memory instance's version is advanced to match
        the row.

        Raises:
            StaleRecordError: The row was changed by someone else
            SubscriberNotFoundError: The row no longer exists
        """
        fields = list(fields)
        values = {name: getattr(subscriber, name) for name in fields}
        now = timezone.now()

        rows = Subscriber.objects.filter(
            pk=subscriber.pk, version=subscriber.version
        ).update(**values, version=F("version") + 1, updated_at=now)

        if rows == 0:
            current = (
                Subscriber.objects.filter(pk=subscriber.pk)
                .values_list("version", flat=True)
                .first()
            )
            if current is None:
                raise SubscriberNotFoundError(
                    f"Subscriber {subscriber.pk} not found",
                    details={"subscriber_id": str(subscriber.pk)},
                )
            raise StaleRecordError(
                f"Subscriber {subscriber.pk} has been modified "
                f"(expected version {subscriber.version}, current {current})",
                details={
                    "pk": str(subscriber.pk),
                    "expected_version": subscriber.version,
                    "current_version": current,
                },
            )

        subscriber.version += 1
        subscriber.updated_at = now
        logger.debug(
            "Subscriber updated",
            extra={
                "subscriber_id": str(subscriber.pk),
                "fields": fields,
                "version": subscriber.version,
            },
        )
        return subscriber
