"""
Webhook event handlers for Paystack events.

This module provides a handler registry and one handler per Paystack event
type the subscription engine reacts to. Each handler turns a parsed event
into exactly one LifecycleManager operation and reports what happened as a
ProcessingResult.

Event Handlers:
    charge.success                  -> activate (pro checkout, card payment)
    subscription.create             -> activate until next_payment_date
    subscription.disable            -> cancel (no remote disable)
    subscription.not_renew          -> expire_immediately
    invoice.update (status=success) -> renew
    invoice.payment_failed          -> record_payment_failure
    invoice.create                  -> log only
    customeridentification.success  -> log only

Event types without a handler are acknowledged and ignored.

Usage:
    from billing.webhooks.handlers import register_handler

    @register_handler("subscription.expiring_cards")
    def handle_expiring_cards(router, event, now) -> ProcessingResult:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from billing.exceptions import ProviderCallError
from billing.lifecycle import ALREADY_ACTIVE
from billing.state_machines import PlanType, ProcessingOutcome

if TYPE_CHECKING:
    from datetime import datetime

    from core.services import ServiceResult

    from billing.models import Subscriber
    from billing.webhooks.events import (
        ChargeSuccess,
        InvoiceEvent,
        SubscriptionEvent,
        WebhookEvent,
    )
    from billing.webhooks.router import EventRouter


logger = logging.getLogger(__name__)


# Reason codes recorded on the delivery
SUBSCRIBER_NOT_FOUND = "SUBSCRIBER_NOT_FOUND"
NO_CHANGE = "NO_CHANGE"
LOGGED = "LOGGED"
UNHANDLED_EVENT_TYPE = "UNHANDLED_EVENT_TYPE"
STALE_EVENT = "STALE_EVENT"


@dataclass(frozen=True)
class ProcessingResult:
    """
    What routing one webhook did.

    Attributes:
        outcome: applied, skipped, rejected or ignored
        reason: Reason code (error code for rejections)
        subscriber_id: Subscriber the event resolved to, if any
    """

    outcome: str
    reason: str = ""
    subscriber_id: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "reason": self.reason,
            "subscriber_id": str(self.subscriber_id) if self.subscriber_id else None,
        }


Handler = Callable[["EventRouter", "WebhookEvent", "datetime"], ProcessingResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(event_type: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Paystack event type (e.g., "charge.success")
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


# =============================================================================
# Result Helpers
# =============================================================================


def ignored(reason: str, subscriber: Subscriber | None = None) -> ProcessingResult:
    return ProcessingResult(
        ProcessingOutcome.IGNORED,
        reason,
        subscriber.pk if subscriber is not None else None,
    )


def not_found(event: WebhookEvent) -> ProcessingResult:
    logger.warning(
        f"{event.event_type}: no subscriber matches, skipping",
        extra={
            "event_type": event.event_type,
            "subscriber_id": event.metadata.subscriber_id,
            "email": event.subject_email,
        },
    )
    return ProcessingResult(ProcessingOutcome.SKIPPED, SUBSCRIBER_NOT_FOUND)


def from_service_result(
    event: WebhookEvent, subscriber: Subscriber, result: ServiceResult
) -> ProcessingResult:
    """Map a lifecycle ServiceResult onto a ProcessingResult."""
    if not result.success:
        logger.warning(
            f"{event.event_type}: {result.error}",
            extra={
                "event_type": event.event_type,
                "subscriber_id": str(subscriber.pk),
                "error_code": result.error_code,
            },
        )
        return ProcessingResult(
            ProcessingOutcome.REJECTED, result.error_code or "", subscriber.pk
        )
    if not result.data.changed:
        return ProcessingResult(ProcessingOutcome.SKIPPED, NO_CHANGE, subscriber.pk)
    return ProcessingResult(ProcessingOutcome.APPLIED, "", subscriber.pk)


def _superseded(event: SubscriptionEvent, subscriber: Subscriber) -> bool:
    """True when the event is about a provider subscription we no longer track."""
    incoming = event.provider_refs.subscription_code
    stored = subscriber.provider_subscription_code
    return bool(incoming and stored and incoming != stored)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.success")
def handle_charge_success(
    router: EventRouter, event: ChargeSuccess, now: datetime
) -> ProcessingResult:
    """
    Activate pro after a successful subscription checkout.

    Charges without pro metadata (card orders and other one-off payments),
    unsuccessful charges and non-card channels are ignored. With
    VERIFY_CHARGES on, the reference is confirmed with Paystack first; an
    unreachable Paystack does not block activation.
    """
    if event.metadata.plan_type != PlanType.PRO:
        return ignored("NOT_A_SUBSCRIPTION_CHARGE")
    if event.status != "success":
        return ignored("CHARGE_NOT_SUCCESSFUL")
    if event.channel and event.channel != "card":
        return ignored("NOT_A_CARD_PAYMENT")

    if router.config.verify_charges:
        try:
            verified = router.provider.verify_transaction(event.reference)
        except ProviderCallError as e:
            logger.warning(
                f"Could not verify charge with Paystack, proceeding: {e.message}",
                extra={"reference": event.reference, "error_code": e.error_code},
            )
        else:
            if not verified.is_successful:
                logger.warning(
                    "Paystack does not confirm charge, ignoring",
                    extra={"reference": event.reference, "status": verified.status},
                )
                return ignored("CHARGE_NOT_VERIFIED")

    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)

    result = router.lifecycle.activate(
        subscriber.pk,
        cycle=event.metadata.billing_cycle,
        provider_refs=event.provider_refs,
        now=now,
    )
    return from_service_result(event, subscriber, result)


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler("subscription.create")
def handle_subscription_create(
    router: EventRouter, event: SubscriptionEvent, now: datetime
) -> ProcessingResult:
    """
    Activate until Paystack's next payment date.

    If charge.success already activated the subscriber, the subscription's
    refs are attached instead so a later cancellation can disable it.

    A next_payment_date that has already passed marks a delayed delivery
    whose period is over; it is ignored rather than starting a new period.
    Without a next_payment_date the period is one cycle from now.
    """
    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)

    expires_at = event.next_payment_date
    if expires_at is not None and expires_at <= now:
        logger.info(
            "subscription.create for a period that has ended, ignoring",
            extra={
                "subscriber_id": str(subscriber.pk),
                "next_payment_date": expires_at.isoformat(),
            },
        )
        return ignored(STALE_EVENT, subscriber)

    result = router.lifecycle.activate(
        subscriber.pk,
        cycle=event.metadata.billing_cycle,
        provider_refs=event.provider_refs,
        expires_at=expires_at,
        now=now,
    )

    if not result.success and result.error_code == ALREADY_ACTIVE:
        linked = router.lifecycle.link_provider_refs(subscriber.pk, event.provider_refs)
        if linked.data.changed:
            logger.info(
                "Attached subscription refs to active subscriber",
                extra={
                    "subscriber_id": str(subscriber.pk),
                    "changed_fields": linked.data.changed_fields,
                },
            )
            return ProcessingResult(
                ProcessingOutcome.APPLIED, "REFS_LINKED", subscriber.pk
            )

    return from_service_result(event, subscriber, result)


@register_handler("subscription.disable")
def handle_subscription_disable(
    router: EventRouter, event: SubscriptionEvent, now: datetime
) -> ProcessingResult:
    """Cancel locally; Paystack has already disabled the subscription."""
    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)
    if _superseded(event, subscriber):
        return ignored("SUPERSEDED_SUBSCRIPTION", subscriber)

    result = router.lifecycle.cancel(subscriber.pk, disable_remote=False, now=now)
    return from_service_result(event, subscriber, result)


@register_handler("subscription.not_renew")
def handle_subscription_not_renew(
    router: EventRouter, event: SubscriptionEvent, now: datetime
) -> ProcessingResult:
    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)
    if _superseded(event, subscriber):
        return ignored("SUPERSEDED_SUBSCRIPTION", subscriber)

    result = router.lifecycle.expire_immediately(subscriber.pk, now=now)
    return from_service_result(event, subscriber, result)


# =============================================================================
# Invoice Handlers
# =============================================================================


@register_handler("invoice.update")
def handle_invoice_update(
    router: EventRouter, event: InvoiceEvent, now: datetime
) -> ProcessingResult:
    """Renew for one more cycle when the invoice was paid."""
    if event.status != "success":
        logger.info(
            f"Invoice updated with status {event.status}, nothing to do",
            extra={"event_type": event.event_type, "reference": event.reference},
        )
        return ignored("INVOICE_NOT_PAID")

    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)

    result = router.lifecycle.renew(
        subscriber.pk,
        cycle=event.metadata.billing_cycle,
        provider_refs=event.provider_refs,
        now=now,
    )
    return from_service_result(event, subscriber, result)


@register_handler("invoice.payment_failed")
def handle_invoice_payment_failed(
    router: EventRouter, event: InvoiceEvent, now: datetime
) -> ProcessingResult:
    subscriber = router.resolve(event)
    if subscriber is None:
        return not_found(event)

    router.lifecycle.record_payment_failure(subscriber.pk, event)
    return ignored(LOGGED, subscriber)


@register_handler("invoice.create")
def handle_invoice_create(
    router: EventRouter, event: InvoiceEvent, now: datetime
) -> ProcessingResult:
    logger.info(
        "Invoice created",
        extra={
            "event_type": event.event_type,
            "email": event.subject_email,
            "amount": event.amount,
        },
    )
    return ignored(LOGGED)


# =============================================================================
# Customer Handlers
# =============================================================================


@register_handler("customeridentification.success")
def handle_customer_identification(
    router: EventRouter, event: WebhookEvent, now: datetime
) -> ProcessingResult:
    logger.info(
        "Customer identification successful",
        extra={"event_type": event.event_type, "email": event.subject_email},
    )
    return ignored(LOGGED)
