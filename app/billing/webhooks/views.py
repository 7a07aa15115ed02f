"""
Webhook endpoint view for Paystack.

The view:
1. Verifies X-Paystack-Signature before touching the body or the database
2. Parses the body into a typed event
3. Creates/locks the WebhookDelivery record for the event (idempotent)
4. Routes the event to the lifecycle manager
5. Records the outcome on the delivery

Processing is synchronous: Paystack is only told 200 once the state change
has committed, and a datastore failure answers 500 so Paystack redelivers.

Usage:
    # In urls.py
    from billing.webhooks.views import paystack_webhook

    urlpatterns = [
        path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    ]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.config import BillingConfig
from billing.exceptions import PayloadInvalidError, SignatureInvalidError
from billing.lifecycle import LifecycleManager
from billing.models import WebhookDelivery
from billing.state_machines import WebhookEventStatus
from billing.webhooks.events import EventParser, InvalidPayload
from billing.webhooks.router import EventRouter
from billing.webhooks.signature import SIGNATURE_HEADER, SignatureVerifier

if TYPE_CHECKING:
    from billing.webhooks.events import WebhookEvent


logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def paystack_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive, verify and apply a Paystack webhook.

    Security:
    - Signature verification runs first; a forged request writes nothing
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookDelivery.event_key is unique; charges and invoices are keyed
      on their payment, so a re-sent or re-encoded notification is a duplicate
    - An event already processed returns 200 without re-routing
    - Concurrent deliveries of the same event serialize on the delivery row

    Returns:
        HttpResponse with status:
        - 200: Event processed, duplicate, skipped, rejected or ignored
        - 400: Missing/invalid signature or malformed payload
        - 405: Not a POST
        - 500: Processing failed; safe for Paystack to retry
    """
    config = BillingConfig.from_settings()
    raw_body = request.body

    # Step 1: Verify signature
    try:
        _authenticate(request, raw_body, config)
    except SignatureInvalidError as e:
        logger.warning(
            f"Webhook rejected: {e.message}",
            extra={"error_code": e.error_code},
        )
        return HttpResponse(e.message, status=400)

    # Step 2: Parse
    try:
        payload, event = _parse(raw_body)
    except PayloadInvalidError as e:
        logger.warning(
            f"Webhook payload invalid: {e.message}",
            extra={"error_code": e.error_code},
        )
        return HttpResponse("Invalid payload", status=400)

    event_key = WebhookDelivery.key_for(payload, event.identity)
    logger.info(
        f"Received Paystack webhook: {event.event_type}",
        extra={"event_key": event_key, "event_type": event.event_type},
    )

    # Steps 3-5: Dedup, route, record
    return _process(event, payload, event_key, config)


def _authenticate(
    request: HttpRequest, raw_body: bytes, config: BillingConfig
) -> None:
    signature = request.headers.get(SIGNATURE_HEADER, "")
    if not signature:
        raise SignatureInvalidError("Missing signature")
    if not SignatureVerifier(config.webhook_secret).verify(raw_body, signature):
        raise SignatureInvalidError("Invalid signature")


def _parse(raw_body: bytes) -> tuple[dict[str, Any], WebhookEvent]:
    parser = EventParser()
    payload = parser.decode(raw_body)
    if isinstance(payload, InvalidPayload):
        raise PayloadInvalidError(payload.reason)
    event = parser.build(payload)
    if isinstance(event, InvalidPayload):
        raise PayloadInvalidError(event.reason, details={"event": payload["event"]})
    return payload, event


def _process(
    event: WebhookEvent,
    payload: dict[str, Any],
    event_key: str,
    config: BillingConfig,
) -> HttpResponse:
    log_context = {"event_key": event_key, "event_type": event.event_type}

    with transaction.atomic():
        delivery, created = WebhookDelivery.objects.get_or_create(
            event_key=event_key,
            defaults={
                "event_type": event.event_type,
                "payload": payload,
                "status": WebhookEventStatus.PENDING,
            },
        )
        delivery = WebhookDelivery.objects.select_for_update().get(pk=delivery.pk)

        if delivery.is_processed:
            logger.info(
                "Webhook already processed, returning success", extra=log_context
            )
            return HttpResponse("Already processed", status=200)

        if not created:
            logger.info(
                f"Webhook redelivered with status: {delivery.status}",
                extra={**log_context, "retry_count": delivery.retry_count},
            )

        delivery.mark_processing()
        delivery.save()

        router = EventRouter(LifecycleManager(config))
        try:
            with transaction.atomic():
                result = router.route(event)
        except Exception as e:
            # State changes were rolled back with the savepoint
            error_msg = f"{type(e).__name__}: {e}"
            delivery.mark_failed(error_msg)
            delivery.save()
            logger.error(
                f"Webhook processing failed: {error_msg}",
                extra={**log_context, "retry_count": delivery.retry_count},
                exc_info=True,
            )
            failed = True
        else:
            delivery.mark_processed(
                result.outcome, result.reason, subscriber_id=result.subscriber_id
            )
            delivery.save()
            failed = False

    if failed:
        return HttpResponse("Processing failed", status=500)

    logger.info(
        "Webhook processed",
        extra={**log_context, "outcome": result.outcome, "reason": result.reason},
    )
    return HttpResponse(f"Processed: {result.outcome}", status=200)
