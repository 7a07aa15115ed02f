"""
EventRouter: dispatches parsed webhooks to lifecycle operations.

The router resolves which subscriber an event is about and hands the event
to the handler registered for its type (see billing.webhooks.handlers).
It never creates subscribers: an event that matches nobody is skipped with
a warning, not treated as an error, so Paystack does not keep redelivering
something that can never resolve.

Resolution order:
    1. metadata.user_id from the checkout (explicit subscriber id)
    2. customer email, case-insensitive

Usage:
    from billing.webhooks.router import EventRouter

    router = EventRouter(LifecycleManager())
    result = router.route(event)
    result.outcome  # "applied"
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.utils import timezone

from billing.exceptions import InvalidStateTransitionError, SubscriberNotFoundError
from billing.state_machines import ProcessingOutcome
from billing.webhooks.handlers import (
    SUBSCRIBER_NOT_FOUND,
    UNHANDLED_EVENT_TYPE,
    WEBHOOK_HANDLERS,
    ProcessingResult,
)

if TYPE_CHECKING:
    from datetime import datetime

    from billing.adapters import PaystackAdapter
    from billing.config import BillingConfig
    from billing.lifecycle import LifecycleManager
    from billing.models import Subscriber
    from billing.store import SubscriberStore
    from billing.webhooks.events import WebhookEvent


logger = logging.getLogger(__name__)


class EventRouter:
    """
    Routes parsed webhook events to LifecycleManager operations.

    Args:
        lifecycle: LifecycleManager that applies the operations
        store: SubscriberStore used for resolution (defaults to the
            lifecycle manager's store)
    """

    def __init__(
        self, lifecycle: LifecycleManager, store: SubscriberStore | None = None
    ) -> None:
        self.lifecycle = lifecycle
        self.store = store or lifecycle.store

    @property
    def config(self) -> BillingConfig:
        return self.lifecycle.config

    @property
    def provider(self) -> PaystackAdapter:
        return self.lifecycle.provider

    def resolve(self, event: WebhookEvent) -> Subscriber | None:
        """Find the subscriber an event is about, or None."""
        if event.metadata.subscriber_id:
            subscriber = self.store.get_by_id(event.metadata.subscriber_id)
            if subscriber is not None:
                return subscriber
            logger.info(
                "Metadata subscriber id matched nobody, falling back to email",
                extra={"subscriber_id": event.metadata.subscriber_id},
            )
        return self.store.get_by_email(event.subject_email)

    def route(
        self, event: WebhookEvent, now: datetime | None = None
    ) -> ProcessingResult:
        """
        Dispatch an event to its handler.

        Precondition failures come back as REJECTED results. Datastore
        errors and exhausted version conflicts propagate.
        """
        now = now or timezone.now()
        handler = WEBHOOK_HANDLERS.get(event.event_type)

        if handler is None:
            logger.info(
                f"No handler registered for event type: {event.event_type}",
                extra={"event_type": event.event_type},
            )
            return ProcessingResult(ProcessingOutcome.IGNORED, UNHANDLED_EVENT_TYPE)

        logger.info(
            f"Dispatching {event.event_type} to handler",
            extra={"event_type": event.event_type},
        )

        try:
            result = handler(self, event, now)
        except SubscriberNotFoundError:
            # Resolved but gone before the write
            logger.warning(
                f"{event.event_type}: subscriber disappeared, skipping",
                extra={"event_type": event.event_type},
            )
            return ProcessingResult(ProcessingOutcome.SKIPPED, SUBSCRIBER_NOT_FOUND)
        except InvalidStateTransitionError as e:
            logger.warning(
                f"{event.event_type}: {e.message}",
                extra={"event_type": event.event_type, "error_code": e.error_code},
            )
            return ProcessingResult(ProcessingOutcome.REJECTED, e.error_code)

        logger.info(
            f"{event.event_type} routed: {result.outcome}",
            extra={
                "event_type": event.event_type,
                "outcome": result.outcome,
                "reason": result.reason,
                "subscriber_id": str(result.subscriber_id)
                if result.subscriber_id
                else None,
            },
        )
        return result
