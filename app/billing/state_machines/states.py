"""
State enums for billing models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Subscriber subscription_status:
    none → active                      (first purchase)
    active → cancelled                 (user or provider cancellation)
    active → expired                   (lapse, or provider stops renewing)
    cancelled → expired                (grace period ends)
    expired/cancelled/none → active    (new purchase, reactivation)
    active → active                    (renewal)

WebhookDelivery status:
    pending → processing → processed
    pending → processing → failed → processing (provider redelivery)
"""

from django.db import models


class PlanType(models.TextChoices):
    """
    Entitlement tier cached on the subscriber.

    PRO unlocks paid features. The value is derived from the
    subscription status and expiry; see billing.entitlement.
    """

    FREE = "free", "Free"
    PRO = "pro", "Pro"


class SubscriptionStatus(models.TextChoices):
    """
    Lifecycle state of a subscriber's billing relationship.

    NONE: never subscribed
    ACTIVE: paid and renewing (entitled until expires_at)
    CANCELLED: will not renew; entitled until expires_at (grace period)
    EXPIRED: relationship ended; never entitled
    """

    NONE = "none", "None"
    ACTIVE = "active", "Active"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


class BillingCycle(models.TextChoices):
    """Billing cadence of a subscription, as sent in checkout metadata."""

    MONTHLY = "monthly", "Monthly"
    ANNUALLY = "annually", "Annually"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status of a stored webhook delivery.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED → PROCESSING (redelivery)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class ProcessingOutcome(models.TextChoices):
    """
    What routing a webhook did to local state.

    APPLIED: a lifecycle operation ran
    SKIPPED: no subscriber matched the event
    REJECTED: the operation's precondition did not hold
    IGNORED: the event type or payload needs no state change
    """

    APPLIED = "applied", "Applied"
    SKIPPED = "skipped", "Skipped"
    REJECTED = "rejected", "Rejected"
    IGNORED = "ignored", "Ignored"
