"""
Billing configuration object.

Collects the Paystack and billing settings into one immutable value that
is passed to SignatureVerifier, PaystackAdapter, LifecycleManager and
MaintenanceScheduler. Nothing in the billing app reads provider secrets
from module globals.

Usage:
    from billing.config import BillingConfig

    config = BillingConfig.from_settings()
    config.cycle_delta(BillingCycle.ANNUALLY)  # relativedelta(months=+12)

    # Tests build their own
    config = BillingConfig(webhook_secret="whsec", secret_key="sk_test")
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dateutil.relativedelta import relativedelta
from django.conf import settings

from billing.state_machines import BillingCycle


def _default_cycle_months() -> dict[str, int]:
    return {BillingCycle.MONTHLY.value: 1, BillingCycle.ANNUALLY.value: 12}


@dataclass(frozen=True)
class BillingConfig:
    """
    Settings for the subscription lifecycle engine.

    Attributes:
        webhook_secret: HMAC-SHA512 key for X-Paystack-Signature
        secret_key: Bearer key for the Paystack REST API
        base_url: Paystack API root
        timeout_seconds: HTTP timeout for provider calls
        verify_charges: Re-verify charge.success references with Paystack
        cycle_months: Billing cycle lengths in calendar months
        max_conflict_retries: Attempts per lifecycle operation on version conflicts
        webhook_retention_days: Age after which processed deliveries are purged
        maintenance_lock_ttl: TTL of the maintenance sweep lock in seconds
        support_email: Reply-to address for subscription notifications
    """

    webhook_secret: str = ""
    secret_key: str = ""
    base_url: str = "https://api.paystack.co"
    timeout_seconds: float = 10.0
    verify_charges: bool = False
    cycle_months: dict[str, int] = field(default_factory=_default_cycle_months)
    max_conflict_retries: int = 3
    webhook_retention_days: int = 90
    maintenance_lock_ttl: int = 15 * 60
    support_email: str = "support@example.com"

    @classmethod
    def from_settings(cls) -> BillingConfig:
        """Build the config from Django settings (PAYSTACK_* and BILLING)."""
        billing = getattr(settings, "BILLING", {})
        return cls(
            webhook_secret=settings.PAYSTACK_WEBHOOK_SECRET,
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout_seconds=float(settings.PAYSTACK_API_TIMEOUT_SECONDS),
            verify_charges=billing.get("VERIFY_CHARGES", False),
            cycle_months={
                str(cycle): months
                for cycle, months in billing.get(
                    "CYCLE_MONTHS", _default_cycle_months()
                ).items()
            },
            max_conflict_retries=billing.get("MAX_CONFLICT_RETRIES", 3),
            webhook_retention_days=billing.get("WEBHOOK_RETENTION_DAYS", 90),
            maintenance_lock_ttl=billing.get("MAINTENANCE_LOCK_TTL_SECONDS", 15 * 60),
            support_email=billing.get("SUPPORT_EMAIL", "support@example.com"),
        )

    def cycle_delta(self, cycle: str) -> relativedelta:
        """
        Length of one billing period.

        Unknown cycles bill monthly, matching how checkout metadata
        without a billing_cycle is treated.
        """
        # Keys are plain strings; TextChoices members do not hash like them
        months = self.cycle_months.get(
            str(cycle), self.cycle_months.get(BillingCycle.MONTHLY.value, 1)
        )
        return relativedelta(months=months)
