"""
Billing domain models.

- Subscriber: Billing state and cached entitlement of one account
- WebhookDelivery: Paystack webhook deliveries for idempotent processing
"""

from billing.models.subscriber import Subscriber
from billing.models.webhook_delivery import WebhookDelivery

__all__ = [
    "Subscriber",
    "WebhookDelivery",
]
