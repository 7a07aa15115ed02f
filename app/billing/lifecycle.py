"""
LifecycleManager: every change to a subscriber's billing state.

Each operation follows the same shape:
1. Read the subscriber (with its version)
2. Check the operation's precondition; a violation is a ServiceResult
   failure and nothing is written
3. Apply the django-fsm transition in memory
4. Diff against the row as read; if nothing changed, return without writing
5. Conditionally write the changed fields and publish the notification
   inside one transaction

Step 5 fails with StaleRecordError when another writer got there first.
The operation then starts over from step 1, up to
BillingConfig.max_conflict_retries attempts, after which the error
propagates (the webhook answers 500 and Paystack redelivers).

Operations:
    activate: First purchase or a checkout after expiry
    renew: Recurring payment extends the paid period by one cycle
    cancel: Stop renewal, keep pro until expires_at
    expire_immediately: Provider says the subscription will not renew
    reactivate: Fresh relationship after cancellation or expiry
    sync: Restore plan_type from status and expiry, lapse overdue periods
    validate_and_repair: sync plus a report of problems sync cannot fix
    record_payment_failure: Log a failed invoice charge
    link_provider_refs: Attach provider refs that arrived after activation

Usage:
    from billing.lifecycle import LifecycleManager

    manager = LifecycleManager()
    result = manager.cancel(subscriber.id)
    if not result:
        return Response(result.to_response(), status=409)
    transition = result.data
    transition.subscriber.subscription_status  # "cancelled"
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.services import BaseService, ServiceResult

from billing.adapters import PaystackAdapter
from billing.config import BillingConfig
from billing.exceptions import (
    InvalidStateTransitionError,
    ProviderCallError,
    StaleRecordError,
)
from billing.models.subscriber import PROVIDER_REF_FIELDS
from billing.notifier import Notifier
from billing.state_machines import BillingCycle, PlanType, SubscriptionStatus
from billing.store import SubscriberStore
from billing.types import (
    NotificationRequest,
    ProviderRefs,
    Transition,
    ValidationReport,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any

    from billing.models import Subscriber


logger = logging.getLogger(__name__)


# Fields a lifecycle operation may change
TRACKED_FIELDS = (
    "subscription_status",
    "plan_type",
    "started_at",
    "expires_at",
    *PROVIDER_REF_FIELDS,
)

# Precondition error codes
ALREADY_ACTIVE = "ALREADY_ACTIVE"
NOT_CANCELLABLE = "NOT_CANCELLABLE"


class LifecycleManager(BaseService):
    """
    Applies subscription lifecycle operations to stored subscribers.

    Collaborators are injected; defaults are built from Django settings.

    Args:
        config: BillingConfig (cycle lengths, retry budget)
        store: SubscriberStore for reads and conditional writes
        provider: PaystackAdapter used to disable subscriptions remotely
        notifier: Notifier that queues emails after commit
    """

    def __init__(
        self,
        config: BillingConfig | None = None,
        store: SubscriberStore | None = None,
        provider: PaystackAdapter | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.config = config or BillingConfig.from_settings()
        self.store = store or SubscriberStore()
        self.provider = provider or PaystackAdapter(self.config)
        self.notifier = notifier or Notifier()

    # =========================================================================
    # Operations
    # =========================================================================

    def activate(
        self,
        subscriber_id: Any,
        cycle: str = BillingCycle.MONTHLY,
        provider_refs: ProviderRefs | None = None,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[Transition]:
        """
        Start a paid pro period.

        expires_at defaults to now plus one billing cycle. Fails with
        ALREADY_ACTIVE, writing nothing, when the subscriber is already
        entitled to pro.
        """
        now = now or timezone.now()
        refs = provider_refs or ProviderRefs()
        period_end = expires_at or now + self.config.cycle_delta(cycle)

        def mutate(subscriber: Subscriber) -> ServiceResult | None:
            if subscriber.effective_plan(now) == PlanType.PRO:
                return ServiceResult.failure(
                    "Subscriber already has an active Pro plan",
                    error_code=ALREADY_ACTIVE,
                )
            subscriber.activate(expires_at=period_end, refs=refs, now=now)
            return None

        def notify(subscriber: Subscriber) -> NotificationRequest:
            return NotificationRequest(
                template_id="subscription_activated",
                recipient_email=subscriber.email,
                params={
                    "billing_cycle": cycle,
                    "expires_at": _isoformat(subscriber.expires_at),
                },
            )

        return self._apply("activate", subscriber_id, mutate, notify)

    def renew(
        self,
        subscriber_id: Any,
        cycle: str = BillingCycle.MONTHLY,
        provider_refs: ProviderRefs | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[Transition]:
        """
        Extend the paid period by one cycle.

        The new expiry counts from the current expires_at, or from now when
        there is none. Not idempotent by itself: webhook deliveries are
        deduplicated before they reach this method.
        """
        now = now or timezone.now()
        refs = provider_refs or ProviderRefs()
        delta = self.config.cycle_delta(cycle)

        def mutate(subscriber: Subscriber) -> None:
            base = subscriber.expires_at or now
            subscriber.renew(expires_at=base + delta, refs=refs, now=now)

        return self._apply("renew", subscriber_id, mutate)

    def cancel(
        self,
        subscriber_id: Any,
        disable_remote: bool = True,
        now: datetime | None = None,
    ) -> ServiceResult[Transition]:
        """
        Stop renewal.

        Only an active subscriber currently entitled to pro can cancel;
        anything else fails with NOT_CANCELLABLE. With disable_remote the
        Paystack subscription is disabled first, once, and a provider
        failure is logged without blocking the local cancellation.
        """
        now = now or timezone.now()

        def precondition(subscriber: Subscriber) -> ServiceResult | None:
            if (
                subscriber.subscription_status != SubscriptionStatus.ACTIVE
                or subscriber.effective_plan(now) != PlanType.PRO
            ):
                return ServiceResult.failure(
                    "Only an active Pro subscription can be cancelled",
                    error_code=NOT_CANCELLABLE,
                )
            return None

        if disable_remote:
            subscriber = self.store.require(subscriber_id)
            failure = precondition(subscriber)
            if failure is not None:
                return self._rejected("cancel", subscriber, failure)
            self._disable_remote(subscriber)

        def mutate(subscriber: Subscriber) -> ServiceResult | None:
            failure = precondition(subscriber)
            if failure is not None:
                return failure
            subscriber.cancel(now=now)
            return None

        def notify(subscriber: Subscriber) -> NotificationRequest:
            return NotificationRequest(
                template_id="subscription_cancelled",
                recipient_email=subscriber.email,
                params={
                    "keeps_access": subscriber.plan_type == PlanType.PRO,
                    "expires_at": _isoformat(subscriber.expires_at),
                },
            )

        return self._apply("cancel", subscriber_id, mutate, notify)

    def expire_immediately(
        self, subscriber_id: Any, now: datetime | None = None
    ) -> ServiceResult[Transition]:
        """End the relationship now: expired, free, no expiry, no refs."""

        def mutate(subscriber: Subscriber) -> None:
            subscriber.expire()

        return self._apply("expire_immediately", subscriber_id, mutate)

    def reactivate(
        self,
        subscriber_id: Any,
        cycle: str = BillingCycle.MONTHLY,
        now: datetime | None = None,
    ) -> ServiceResult[Transition]:
        """
        Start a fresh period for a subscriber who is not active.

        Stale provider refs are cleared first. Fails with ALREADY_ACTIVE
        when the subscriber's status is active.
        """
        now = now or timezone.now()
        period_end = now + self.config.cycle_delta(cycle)

        def mutate(subscriber: Subscriber) -> ServiceResult | None:
            if subscriber.subscription_status == SubscriptionStatus.ACTIVE:
                return ServiceResult.failure(
                    "Subscription is already active",
                    error_code=ALREADY_ACTIVE,
                )
            subscriber.reactivate(expires_at=period_end, now=now)
            return None

        def notify(subscriber: Subscriber) -> NotificationRequest:
            return NotificationRequest(
                template_id="subscription_reactivated",
                recipient_email=subscriber.email,
                params={
                    "billing_cycle": cycle,
                    "expires_at": _isoformat(subscriber.expires_at),
                },
            )

        return self._apply("reactivate", subscriber_id, mutate, notify)

    def sync(
        self, subscriber_id: Any, now: datetime | None = None
    ) -> ServiceResult[Transition]:
        """
        Bring plan_type back in line with status and expiry.

        An active or cancelled subscriber whose expires_at has passed is
        moved to expired first. Writes nothing when already consistent, so
        a second sync is always a no-op.
        """
        now = now or timezone.now()

        def mutate(subscriber: Subscriber) -> None:
            if _has_lapsed(subscriber, now):
                subscriber.lapse()
            plan = subscriber.effective_plan(now)
            if subscriber.plan_type != plan:
                subscriber.plan_type = plan

        return self._apply("sync", subscriber_id, mutate)

    def validate_and_repair(
        self, subscriber_id: Any, now: datetime | None = None
    ) -> ServiceResult[ValidationReport]:
        """
        Run sync and report what it found.

        Problems sync repairs are listed as issues with fixed=True. An
        active subscription without expires_at or started_at is reported
        but left alone: it needs a webhook replay or manual intervention.
        """
        now = now or timezone.now()
        before = self.store.require(subscriber_id)

        issues: list[str] = []
        if _has_lapsed(before, now):
            issues.append(
                f"{before.subscription_status} subscription expired at "
                f"{before.expires_at.isoformat()}"
            )
        expected_plan = before.effective_plan(now)
        if before.plan_type != expected_plan:
            issues.append(
                f"plan_type is {before.plan_type} but effective plan is {expected_plan}"
            )

        transition = self.sync(subscriber_id, now=now).data
        subscriber = transition.subscriber

        unresolved: list[str] = []
        if subscriber.subscription_status == SubscriptionStatus.ACTIVE:
            if subscriber.expires_at is None:
                unresolved.append("active subscription has no expiry date")
            if subscriber.started_at is None:
                unresolved.append("active subscription has no start date")

        if unresolved:
            logger.warning(
                "Subscriber needs manual billing review",
                extra={"subscriber_id": str(subscriber.pk), "issues": unresolved},
            )

        return ServiceResult.success(
            ValidationReport(
                is_valid=not unresolved,
                issues=issues + unresolved,
                fixed=transition.changed,
            )
        )

    def record_payment_failure(
        self, subscriber_id: Any, event: Any = None
    ) -> ServiceResult[Transition]:
        """
        Log a failed recurring charge.

        State is left untouched; Paystack retries the charge and sends
        subscription.not_renew if it gives up.
        """
        subscriber = self.store.require(subscriber_id)
        logger.warning(
            "Subscription payment failed",
            extra={
                "subscriber_id": str(subscriber.pk),
                "event_type": getattr(event, "event_type", None),
                "amount": getattr(event, "amount", None),
                "subscription_status": subscriber.subscription_status,
            },
        )
        return ServiceResult.success(Transition(subscriber=subscriber))

    def link_provider_refs(
        self, subscriber_id: Any, provider_refs: ProviderRefs
    ) -> ServiceResult[Transition]:
        """
        Fill in provider refs the subscriber does not have yet.

        Covers subscription.create arriving after charge.success already
        activated the subscriber. Existing refs are never overwritten.
        """

        def mutate(subscriber: Subscriber) -> None:
            subscriber.fill_missing_refs(provider_refs)

        return self._apply("link_provider_refs", subscriber_id, mutate)

    # =========================================================================
    # Internals
    # =========================================================================

    def _apply(
        self,
        operation: str,
        subscriber_id: Any,
        mutate: Callable[[Subscriber], ServiceResult | None],
        notify: Callable[[Subscriber], NotificationRequest] | None = None,
    ) -> ServiceResult[Transition]:
        """
        Read, mutate, diff and conditionally write one subscriber.

        Raises:
            SubscriberNotFoundError: If the subscriber does not exist
            StaleRecordError: If every attempt lost a write race
            InvalidStateTransitionError: If the FSM rejects the transition
        """
        attempts = max(1, self.config.max_conflict_retries)

        for attempt in range(1, attempts + 1):
            subscriber = self.store.require(subscriber_id)
            before = {name: getattr(subscriber, name) for name in TRACKED_FIELDS}

            try:
                failure = mutate(subscriber)
            except TransitionNotAllowed as e:
                raise InvalidStateTransitionError(
                    f"Cannot {operation} subscriber in state "
                    f"{before['subscription_status']}",
                    details={
                        "current_state": before["subscription_status"],
                        "transition": operation,
                    },
                ) from e

            if failure is not None:
                return self._rejected(operation, subscriber, failure)

            changed = [
                name
                for name in TRACKED_FIELDS
                if getattr(subscriber, name) != before[name]
            ]
            if not changed:
                logger.debug(
                    f"{operation}: no change",
                    extra={"subscriber_id": str(subscriber.pk)},
                )
                return ServiceResult.success(Transition(subscriber=subscriber))

            notification = notify(subscriber) if notify else None
            try:
                with self.atomic():
                    self.store.conditional_update(subscriber, changed)
                    if notification is not None:
                        self.notifier.publish(notification)
            except StaleRecordError:
                if attempt == attempts:
                    logger.error(
                        f"{operation}: giving up after {attempts} version conflicts",
                        extra={"subscriber_id": str(subscriber.pk)},
                    )
                    raise
                logger.info(
                    f"{operation}: version conflict, retrying",
                    extra={"subscriber_id": str(subscriber.pk), "attempt": attempt},
                )
                continue

            logger.info(
                f"Subscriber {operation} applied",
                extra={
                    "subscriber_id": str(subscriber.pk),
                    "operation": operation,
                    "changed_fields": changed,
                    "subscription_status": subscriber.subscription_status,
                    "plan_type": subscriber.plan_type,
                },
            )
            return ServiceResult.success(
                Transition(
                    subscriber=subscriber,
                    changed_fields=changed,
                    notification=notification,
                )
            )

        # Unreachable: the last attempt either returns or raises
        raise StaleRecordError(f"{operation} did not complete")

    @staticmethod
    def _rejected(
        operation: str, subscriber: Subscriber, failure: ServiceResult
    ) -> ServiceResult:
        logger.info(
            f"{operation} rejected: {failure.error}",
            extra={
                "subscriber_id": str(subscriber.pk),
                "error_code": failure.error_code,
                "subscription_status": subscriber.subscription_status,
            },
        )
        return failure

    def _disable_remote(self, subscriber: Subscriber) -> None:
        """Best-effort Paystack disable; failures never block cancellation."""
        code = subscriber.provider_subscription_code
        token = subscriber.provider_email_token
        if not code or not token:
            logger.info(
                "No Paystack subscription to disable",
                extra={"subscriber_id": str(subscriber.pk)},
            )
            return

        try:
            self.provider.disable_subscription(code, token)
        except ProviderCallError as e:
            logger.warning(
                f"Paystack disable failed, cancelling locally: {e.message}",
                extra={
                    "subscriber_id": str(subscriber.pk),
                    "error_code": e.error_code,
                },
            )


def _has_lapsed(subscriber: Subscriber, now: datetime) -> bool:
    return (
        subscriber.subscription_status
        in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)
        and subscriber.expires_at is not None
        and subscriber.expires_at <= now
    )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
