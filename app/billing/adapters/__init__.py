"""
Billing provider adapters.

All Paystack REST calls go through these adapters so that timeouts,
authentication and error translation are handled in one place.

Usage:
    from billing.adapters import PaystackAdapter

    adapter = PaystackAdapter(BillingConfig.from_settings())
    adapter.disable_subscription(subscriber.provider_subscription_code, token)
"""

from billing.adapters.paystack_adapter import PaystackAdapter, VerifiedTransaction

__all__ = [
    "PaystackAdapter",
    "VerifiedTransaction",
]
