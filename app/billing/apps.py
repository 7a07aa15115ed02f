"""
Billing app configuration.

This app provides the subscription lifecycle engine:
- Paystack webhook verification, parsing and routing
- Subscriber entitlement state machine
- Periodic maintenance sweep and notification tasks
"""

from django.apps import AppConfig


class BillingAppConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self) -> None:
        # Registers the webhook event handlers
        from billing.webhooks import router  # noqa: F401
