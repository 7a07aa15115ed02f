"""
Subscription notification publisher.

Notifications are sent only for state changes that actually committed.
Notifier.publish registers a transaction.on_commit callback that enqueues
billing.tasks.send_subscription_notification; when the surrounding
transaction rolls back the callback is discarded and nothing is sent.

Failures to enqueue or deliver are logged and never undo or retry the
state transition that produced the notification.

Usage:
    from billing.notifier import Notifier
    from billing.types import NotificationRequest

    with transaction.atomic():
        store.conditional_update(subscriber, changed)
        Notifier().publish(
            NotificationRequest(
                template_id="subscription_cancelled",
                recipient_email=subscriber.email,
                params={"expires_at": "2026-11-17T09:00:00+00:00"},
            )
        )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from billing.types import NotificationRequest


logger = logging.getLogger(__name__)


class Notifier:
    """Queues subscription emails once the current transaction commits."""

    def publish(self, request: NotificationRequest) -> None:
        transaction.on_commit(lambda: self._enqueue(request))

    def _enqueue(self, request: NotificationRequest) -> None:
        from billing.tasks import send_subscription_notification

        try:
            send_subscription_notification.delay(
                request.template_id,
                request.recipient_email,
                request.params,
            )
        except Exception as e:
            logger.error(
                f"Failed to queue subscription notification: {type(e).__name__}",
                extra={
                    "template_id": request.template_id,
                    "recipient": request.recipient_email,
                },
                exc_info=True,
            )
            return

        logger.info(
            "Subscription notification queued",
            extra={
                "template_id": request.template_id,
                "recipient": request.recipient_email,
            },
        )
