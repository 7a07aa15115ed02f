"""
Paystack webhook payload parsing.

EventParser turns a raw webhook body into one variant of a tagged union of
frozen dataclasses, keyed by the body's "event" string. Each variant
carries only the fields that were validated for its category; handlers
never reach into the raw JSON.

Variants:
    ChargeSuccess            charge.success
    SubscriptionCreated      subscription.create
    SubscriptionDisabled     subscription.disable
    SubscriptionNotRenewing  subscription.not_renew
    InvoiceCreated           invoice.create
    InvoiceUpdated           invoice.update
    InvoicePaymentFailed     invoice.payment_failed
    CustomerIdentified       customeridentification.success
    UnknownEvent             anything else (forward compatible)

A body that is not JSON, lacks "event"/"data", or misses a field its
category requires yields InvalidPayload instead, and is never routed.

Usage:
    from billing.webhooks.events import EventParser, InvalidPayload

    event = EventParser().parse(request.body)
    if isinstance(event, InvalidPayload):
        return HttpResponse(event.reason, status=400)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any

from django.utils.dateparse import parse_datetime

from billing.state_machines import BillingCycle
from billing.types import ProviderRefs


CHARGE_EVENTS = frozenset({"charge.success"})
SUBSCRIPTION_EVENTS = frozenset(
    {"subscription.create", "subscription.disable", "subscription.not_renew"}
)
INVOICE_EVENTS = frozenset(
    {"invoice.create", "invoice.update", "invoice.payment_failed"}
)


# =============================================================================
# Event Types
# =============================================================================


@dataclass(frozen=True)
class EventMetadata:
    """
    Checkout metadata attached to the payment.

    Attributes:
        billing_cycle: "monthly" or "annually"
        subscriber_id: Explicit subscriber id (Paystack metadata "user_id")
        plan_type: Plan the checkout was for ("pro" for subscriptions)
    """

    billing_cycle: str = BillingCycle.MONTHLY
    subscriber_id: str | None = None
    plan_type: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """Fields common to every parsed webhook."""

    event_type: str
    subject_email: str | None = None
    metadata: EventMetadata = field(default_factory=EventMetadata)
    provider_refs: ProviderRefs = field(default_factory=ProviderRefs)

    @property
    def identity(self) -> str | None:
        """
        What the event is about, independent of how the body was encoded.

        Events that name a payment return a stable identity so a re-sent
        notification for the same payment is recognised as a duplicate.
        """
        return None


@dataclass(frozen=True)
class ChargeSuccess(WebhookEvent):
    reference: str = ""
    amount: int = 0
    currency: str = ""
    status: str = ""
    channel: str | None = None

    @property
    def identity(self) -> str | None:
        return f"{self.event_type}:{self.reference}"


@dataclass(frozen=True)
class SubscriptionEvent(WebhookEvent):
    """
    Base for subscription.* events.

    next_payment_date is None when Paystack omitted it or it did not parse.
    """

    next_payment_date: datetime | None = None
    status: str | None = None


@dataclass(frozen=True)
class SubscriptionCreated(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionDisabled(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionNotRenewing(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class InvoiceEvent(WebhookEvent):
    """Base for invoice.* events."""

    amount: int = 0
    status: str | None = None
    paid: bool = False
    reference: str | None = None
    invoice_code: str | None = None

    @property
    def identity(self) -> str | None:
        key = self.invoice_code or self.reference
        if not key:
            return None
        return f"{self.event_type}:{key}:{self.status or ''}"


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    pass


@dataclass(frozen=True)
class InvoiceUpdated(InvoiceEvent):
    pass


@dataclass(frozen=True)
class InvoicePaymentFailed(InvoiceEvent):
    pass


@dataclass(frozen=True)
class CustomerIdentified(WebhookEvent):
    pass


@dataclass(frozen=True)
class UnknownEvent(WebhookEvent):
    pass


@dataclass(frozen=True)
class InvalidPayload:
    """A body that must be rejected with 400."""

    reason: str

    def __bool__(self) -> bool:
        return False


EVENT_TYPES: dict[str, type[WebhookEvent]] = {
    "charge.success": ChargeSuccess,
    "subscription.create": SubscriptionCreated,
    "subscription.disable": SubscriptionDisabled,
    "subscription.not_renew": SubscriptionNotRenewing,
    "invoice.create": InvoiceCreated,
    "invoice.update": InvoiceUpdated,
    "invoice.payment_failed": InvoicePaymentFailed,
    "customeridentification.success": CustomerIdentified,
}


# =============================================================================
# Parser
# =============================================================================


class EventParser:
    """Decodes and validates Paystack webhook bodies."""

    def parse(self, raw_body: bytes | str) -> WebhookEvent | InvalidPayload:
        payload = self.decode(raw_body)
        if isinstance(payload, InvalidPayload):
            return payload
        return self.build(payload)

    def decode(self, raw_body: bytes | str) -> dict[str, Any] | InvalidPayload:
        """JSON-decode the body and check the top-level envelope."""
        try:
            if isinstance(raw_body, (bytes, bytearray)):
                raw_body = raw_body.decode("utf-8")
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError, TypeError):
            return InvalidPayload("Body is not valid JSON")

        if not isinstance(payload, dict):
            return InvalidPayload("Body must be a JSON object")
        event_type = payload.get("event")
        if not isinstance(event_type, str) or not event_type.strip():
            return InvalidPayload("Missing 'event'")
        if not isinstance(payload.get("data"), dict):
            return InvalidPayload("Missing 'data' object")
        return payload

    def build(self, payload: dict[str, Any]) -> WebhookEvent | InvalidPayload:
        """Validate the decoded body for its category and build the variant."""
        event_type = payload["event"].strip()
        data = payload["data"]

        problem = self._validate(event_type, data)
        if problem:
            return InvalidPayload(f"{event_type}: {problem}")

        common = {
            "event_type": event_type,
            "subject_email": _subject_email(data),
            "metadata": _metadata(data),
            "provider_refs": _provider_refs(data),
        }
        event_cls = EVENT_TYPES.get(event_type, UnknownEvent)

        if event_type in CHARGE_EVENTS:
            return event_cls(
                **common,
                reference=str(data["reference"]),
                amount=_int(data["amount"]),
                currency=str(data["currency"]),
                status=str(data["status"]),
                channel=data.get("channel"),
            )
        if event_type in SUBSCRIPTION_EVENTS:
            subscription = _subscription_object(data)
            return event_cls(
                **common,
                next_payment_date=_parse_date(subscription.get("next_payment_date")),
                status=subscription.get("status"),
            )
        if event_type in INVOICE_EVENTS:
            transaction = data.get("transaction")
            reference = (
                transaction.get("reference") if isinstance(transaction, dict) else None
            )
            return event_cls(
                **common,
                amount=_int(data["amount"]),
                status=data.get("status"),
                paid=bool(data.get("paid")),
                reference=reference or data.get("reference"),
                invoice_code=_str_or_none(data.get("invoice_code")),
            )
        return event_cls(**common)

    @staticmethod
    def _validate(event_type: str, data: dict[str, Any]) -> str | None:
        """Return a description of the first missing field, or None."""
        if event_type in CHARGE_EVENTS:
            for name in ("reference", "amount", "currency", "status"):
                if data.get(name) in (None, ""):
                    return f"missing data.{name}"
            if _int(data["amount"]) is None:
                return "data.amount is not a number"
            if not _customer_email(data):
                return "missing data.customer.email"
            return None

        if event_type in SUBSCRIPTION_EVENTS:
            if not _customer_email(data):
                return "missing data.customer.email"
            if not data.get("subscription") and not data.get("plan"):
                return "missing data.subscription or data.plan"
            return None

        if event_type in INVOICE_EVENTS:
            if not _customer_email(data):
                return "missing data.customer.email"
            if data.get("amount") in (None, ""):
                return "missing data.amount"
            if _int(data["amount"]) is None:
                return "data.amount is not a number"
            return None

        return None


# =============================================================================
# Field Extraction
# =============================================================================


def _customer_email(data: dict[str, Any]) -> str | None:
    customer = data.get("customer")
    if isinstance(customer, dict):
        email = customer.get("email")
        if isinstance(email, str) and email.strip():
            return email.strip()
    return None


def _subject_email(data: dict[str, Any]) -> str | None:
    email = _customer_email(data)
    if email:
        return email
    subscription = data.get("subscription")
    if isinstance(subscription, dict):
        email = _customer_email(subscription)
        if email:
            return email
    email = data.get("email")
    return email.strip() if isinstance(email, str) and email.strip() else None


def _subscription_object(data: dict[str, Any]) -> dict[str, Any]:
    """data.subscription when Paystack nests it, otherwise data itself."""
    subscription = data.get("subscription")
    return subscription if isinstance(subscription, dict) else data


def _provider_refs(data: dict[str, Any]) -> ProviderRefs:
    subscription = _subscription_object(data)
    customer = data.get("customer")
    customer_code = (
        customer.get("customer_code") if isinstance(customer, dict) else None
    )
    return ProviderRefs(
        customer_code=customer_code or data.get("customer_code"),
        subscription_code=subscription.get("subscription_code"),
        email_token=subscription.get("email_token"),
    )


def _metadata(data: dict[str, Any]) -> EventMetadata:
    raw = data.get("metadata")
    if isinstance(raw, str):
        # Paystack sends metadata set as a string verbatim
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = None
    if not isinstance(raw, dict):
        raw = {}

    cycle = raw.get("billing_cycle")
    if not cycle:
        plan = data.get("plan") or _subscription_object(data).get("plan")
        cycle = plan.get("interval") if isinstance(plan, dict) else None

    subscriber_id = raw.get("user_id")
    return EventMetadata(
        billing_cycle=(
            BillingCycle.ANNUALLY if cycle == "annually" else BillingCycle.MONTHLY
        ),
        subscriber_id=str(subscriber_id) if subscriber_id else None,
        plan_type=raw.get("plan_type"),
    )


def _parse_date(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = parse_datetime(value.strip())
    except ValueError:
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
