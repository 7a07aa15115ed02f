"""
WebhookDelivery model for Paystack webhook tracking.

Stores every authenticated, well-formed webhook body for idempotent
processing and audit trails. Paystack events carry no event id, so the
dedup key is derived from the event itself: charges and invoices are keyed
on the payment they name, anything else on its canonical JSON. A
redelivery maps to the same row however its body was serialized.

Usage:
    from billing.models import WebhookDelivery
    from billing.state_machines import WebhookEventStatus

    delivery, created = WebhookDelivery.objects.get_or_create(
        event_key=WebhookDelivery.key_for(payload, event.identity),
        defaults={"event_type": "charge.success", "payload": payload},
    )

    if not created and delivery.is_processed:
        # Duplicate webhook - already applied
        return HttpResponse("Already processed", status=200)
"""

from __future__ import annotations

import hashlib
import json

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.state_machines import ProcessingOutcome, WebhookEventStatus


class WebhookDelivery(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Paystack webhook deliveries for idempotent processing.

    Processing Flow:
        1. Webhook arrives, verify X-Paystack-Signature
        2. Parse and validate the body
        3. Insert/get WebhookDelivery by event_key (row locked)
        4. If PROCESSED -> return 200 (duplicate)
        5. Mark PROCESSING, route to the lifecycle manager
        6. Mark PROCESSED (with outcome) or FAILED

    Fields:
        event_key: SHA-256 of the event identity or canonical body
        event_type: Paystack event name (e.g. "subscription.create")
        payload: Decoded JSON body
        status: Processing status
        outcome: What routing did (applied/skipped/rejected/ignored)
        detail: Reason code accompanying the outcome
        subscriber_id: Subscriber the event resolved to, if any
        processed_at: When the delivery was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_key = models.CharField(
        max_length=64,
        unique=True,
        help_text="SHA-256 of the event identity or body - unique for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Paystack event type (e.g., 'charge.success')",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Decoded webhook body",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    outcome = models.CharField(
        max_length=20,
        choices=ProcessingOutcome.choices,
        null=True,
        blank=True,
        help_text="What routing did to local state",
    )

    detail = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Reason code for the outcome (e.g. SUBSCRIBER_NOT_FOUND)",
    )

    subscriber_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Subscriber the event resolved to",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the delivery was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Delivery"
        verbose_name_plural = "Webhook Deliveries"
        indexes = [
            models.Index(
                fields=["status", "created_at"],
                name="delivery_status_created_idx",
            ),
            models.Index(
                fields=["event_type", "created_at"],
                name="delivery_type_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookDelivery({self.event_key[:12]}, {self.event_type})"

    @staticmethod
    def key_for(payload: dict, identity: str | None = None) -> str:
        """
        Dedup key for a decoded webhook body.

        Args:
            payload: Decoded JSON body
            identity: Stable identity of the event, if it has one
        """
        if identity:
            source = f"identity:{identity}"
        else:
            source = json.dumps(
                payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
            )
        return hashlib.sha256(source.encode("utf-8")).hexdigest()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark delivery as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(
        self, outcome: str, detail: str = "", subscriber_id=None
    ) -> None:
        """
        Mark delivery as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.outcome = outcome
        self.detail = detail
        self.subscriber_id = subscriber_id
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark delivery as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
