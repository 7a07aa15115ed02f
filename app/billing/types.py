"""
Data types for billing operations.

This module defines dataclasses passed between the webhook layer, the
lifecycle manager, the maintenance sweep and the notifier.

Types:
    ProviderRefs: Opaque Paystack identifiers for a subscription
    NotificationRequest: One subscription email to send after commit
    Transition: What a lifecycle operation did to a subscriber
    ValidationReport: Outcome of validate_and_repair
    PhaseReport / MaintenanceReport: Counters from a maintenance sweep

Usage:
    from billing.types import ProviderRefs

    refs = ProviderRefs(
        customer_code="CUS_xnxdt6s1zg1f4nx",
        subscription_code="SUB_vsyqdmlzble3uii",
        email_token="d7gofp6yppn3qz7",
    )
    if refs.subscription_code:
        ...
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from billing.models import Subscriber


@dataclass(frozen=True)
class ProviderRefs:
    """
    Paystack identifiers attached to a subscriber.

    Attributes:
        customer_code: Paystack customer code (CUS_xxx)
        subscription_code: Paystack subscription code (SUB_xxx)
        email_token: Token Paystack requires to disable a subscription
    """

    customer_code: str | None = None
    subscription_code: str | None = None
    email_token: str | None = None

    def __bool__(self) -> bool:
        return bool(self.customer_code or self.subscription_code or self.email_token)

    def as_model_fields(self) -> dict[str, str]:
        """Non-empty refs keyed by Subscriber field name."""
        values = {
            "provider_customer_code": self.customer_code,
            "provider_subscription_code": self.subscription_code,
            "provider_email_token": self.email_token,
        }
        return {name: value for name, value in values.items() if value}


@dataclass(frozen=True)
class NotificationRequest:
    """
    A subscription email queued after a committed state change.

    Attributes:
        template_id: Which message to send (e.g. "subscription_activated")
        recipient_email: Subscriber's email address
        params: Template parameters (JSON-serializable)
    """

    template_id: str
    recipient_email: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Transition:
    """
    Result of a lifecycle operation.

    Attributes:
        subscriber: The subscriber as persisted after the operation
        changed_fields: Fields the operation wrote (empty when a no-op)
        notification: Email to send once the write commits, if any
    """

    subscriber: Subscriber
    changed_fields: list[str] = field(default_factory=list)
    notification: NotificationRequest | None = None

    @property
    def changed(self) -> bool:
        return bool(self.changed_fields)


@dataclass
class ValidationReport:
    """
    Outcome of LifecycleManager.validate_and_repair.

    Attributes:
        is_valid: True when no issue remains unresolved
        issues: Human-readable description of every problem found
        fixed: True when sync wrote a correction
    """

    is_valid: bool
    issues: list[str] = field(default_factory=list)
    fixed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PhaseReport:
    """Counters for one maintenance phase."""

    processed: int = 0
    updated: int = 0
    errors: int = 0


@dataclass
class MaintenanceReport:
    """
    Outcome of one MaintenanceScheduler.run.

    Attributes:
        expire_overdue: Phase 1 counters (pro subscribers past expires_at)
        batch_sync: Phase 2 counters (every subscriber with a relationship)
        timestamp: Reference time the sweep evaluated expiry against
    """

    expire_overdue: PhaseReport
    batch_sync: PhaseReport
    timestamp: datetime

    @property
    def total_updated(self) -> int:
        return self.expire_overdue.updated + self.batch_sync.updated

    @property
    def total_errors(self) -> int:
        return self.expire_overdue.errors + self.batch_sync.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "expire_overdue": asdict(self.expire_overdue),
            "batch_sync": asdict(self.batch_sync),
            "total_updated": self.total_updated,
            "total_errors": self.total_errors,
            "timestamp": self.timestamp.isoformat(),
        }
