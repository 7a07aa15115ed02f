"""
State machine enums for billing models.

This module defines the state enums used by billing models with django-fsm.
"""

from billing.state_machines.states import (
    BillingCycle,
    PlanType,
    ProcessingOutcome,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "BillingCycle",
    "PlanType",
    "ProcessingOutcome",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
