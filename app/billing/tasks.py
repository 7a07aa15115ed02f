"""
Celery tasks for the subscription engine.

This module provides async tasks for:
- Sending subscription emails queued by the Notifier
- The hourly maintenance sweep (scheduled via django-celery-beat)
- Periodic cleanup of old webhook delivery records

Usage:
    from billing.tasks import run_subscription_maintenance

    # Run a sweep now instead of waiting for beat
    run_subscription_maintenance.delay()
"""

from __future__ import annotations

import logging
import smtplib
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from billing.config import BillingConfig
from billing.exceptions import LockAcquisitionError
from billing.lifecycle import LifecycleManager
from billing.locks import DistributedLock
from billing.maintenance import MaintenanceScheduler
from billing.models import WebhookDelivery
from billing.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAINTENANCE_LOCK_KEY = "billing:maintenance"

NOTIFICATION_SUBJECTS = {
    "subscription_activated": "Your Pro plan is active",
    "subscription_cancelled": "Your Pro subscription has been cancelled",
    "subscription_reactivated": "Welcome back to Pro",
}


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(smtplib.SMTPException, ConnectionError),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def send_subscription_notification(
    self, template_id: str, recipient_email: str, params: dict | None = None
) -> dict:
    """
    Send one subscription email.

    Args:
        template_id: Notification template (see NOTIFICATION_SUBJECTS)
        recipient_email: Subscriber's email address
        params: Template parameters; ISO datetimes are parsed for display

    Returns:
        Dict with send status
    """
    subject = NOTIFICATION_SUBJECTS.get(template_id)
    if subject is None:
        logger.error(
            f"Unknown notification template: {template_id}",
            extra={"template_id": template_id},
        )
        return {"status": "unknown_template", "template_id": template_id}

    config = BillingConfig.from_settings()
    context = dict(params or {})
    if context.get("expires_at"):
        context["expires_at"] = parse_datetime(context["expires_at"])
    context["support_email"] = config.support_email

    body = render_to_string(f"billing/emails/{template_id}.txt", context)
    email = EmailMultiAlternatives(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[recipient_email],
        reply_to=[config.support_email],
    )
    email.send(fail_silently=False)

    logger.info(
        f"Subscription email sent: {template_id}",
        extra={"template_id": template_id, "recipient": recipient_email},
    )
    return {"status": "sent", "template_id": template_id}


# =============================================================================
# Maintenance Tasks
# =============================================================================


@shared_task
def run_subscription_maintenance() -> dict:
    """
    Periodic task to repair drifted subscriber entitlement.

    Holds a non-blocking lock so that a sweep still running when the next
    beat fires is not doubled; the second run skips.

    Returns:
        Dict with the maintenance report, or a skipped status
    """
    config = BillingConfig.from_settings()
    lock = DistributedLock(
        MAINTENANCE_LOCK_KEY,
        ttl=config.maintenance_lock_ttl,
        blocking=False,
    )

    try:
        with lock:
            report = MaintenanceScheduler(LifecycleManager(config)).run()
    except LockAcquisitionError:
        logger.info("Subscription maintenance already running, skipping")
        return {"status": "skipped", "reason": "lock_held"}

    return {"status": "completed", **report.to_dict()}


@shared_task
def cleanup_old_webhook_deliveries(days: int | None = None) -> dict:
    """
    Periodic task to clean up old processed webhook deliveries.

    Only successfully processed deliveries are removed; failed ones are
    kept for debugging and redelivery.

    Args:
        days: Retention in days (defaults to BILLING["WEBHOOK_RETENTION_DAYS"])

    Returns:
        Dict with count of deliveries deleted
    """
    if days is None:
        days = BillingConfig.from_settings().webhook_retention_days
    cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = WebhookDelivery.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook deliveries",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}
