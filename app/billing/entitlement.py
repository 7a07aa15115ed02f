"""
Pure entitlement rules.

Everything here is a function of (status, expires_at, now) and touches no
I/O, so the rules can be unit-tested directly and reused by the lifecycle
manager, the maintenance sweep and the operator API.

Functions:
    effective_plan: The plan a subscriber is entitled to right now
    describe_state: Display-oriented summary of a subscriber's billing state

Usage:
    from billing.entitlement import effective_plan

    effective_plan("cancelled", now + timedelta(days=5), now)  # "pro"
    effective_plan("cancelled", now - timedelta(days=5), now)  # "free"
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from billing.state_machines import PlanType, SubscriptionStatus

if TYPE_CHECKING:
    from datetime import datetime


def effective_plan(status: str, expires_at: datetime | None, now: datetime) -> str:
    """
    Compute the entitlement implied by status and expiry.

    - active: pro unless expires_at has passed (absent counts as open-ended)
    - cancelled: pro only while expires_at is still in the future
    - anything else: free
    """
    if status == SubscriptionStatus.ACTIVE:
        if expires_at is None or expires_at > now:
            return PlanType.PRO
        return PlanType.FREE
    if status == SubscriptionStatus.CANCELLED:
        if expires_at is not None and expires_at > now:
            return PlanType.PRO
        return PlanType.FREE
    return PlanType.FREE


# =============================================================================
# State Description
# =============================================================================


class DisplayState:
    """Labels returned by describe_state."""

    NO_SUBSCRIPTION = "no_subscription"
    ACTIVE = "active"
    ACTIVE_LAPSED = "active_lapsed"
    CANCELLED_BUT_ACTIVE = "cancelled_but_active"
    CANCELLED_AND_EXPIRED = "cancelled_and_expired"
    EXPIRED = "expired"


@dataclass(frozen=True)
class StateDescription:
    """
    What a subscriber can do next, for settings pages and support tools.

    Attributes:
        state: One of the DisplayState labels
        effective_plan: Entitlement right now
        can_subscribe: A fresh checkout is allowed
        can_cancel: Cancellation would succeed
        can_resubscribe: Reactivation would succeed
        days_remaining: Whole days until expires_at (0 when none remain)
    """

    state: str
    effective_plan: str
    can_subscribe: bool
    can_cancel: bool
    can_resubscribe: bool
    days_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _days_remaining(expires_at: datetime | None, now: datetime) -> int:
    if expires_at is None or expires_at <= now:
        return 0
    return math.ceil((expires_at - now).total_seconds() / 86400)


def describe_state(
    status: str, expires_at: datetime | None, now: datetime
) -> StateDescription:
    """
    Classify a subscriber's billing state.

    Example:
        describe_state("cancelled", now + timedelta(days=3), now).state
        # "cancelled_but_active"
    """
    plan = effective_plan(status, expires_at, now)
    days = _days_remaining(expires_at, now)

    if status == SubscriptionStatus.ACTIVE:
        if plan == PlanType.PRO:
            return StateDescription(
                DisplayState.ACTIVE, plan, False, True, False, days
            )
        return StateDescription(
            DisplayState.ACTIVE_LAPSED, plan, True, False, False, 0
        )

    if status == SubscriptionStatus.CANCELLED:
        if plan == PlanType.PRO:
            return StateDescription(
                DisplayState.CANCELLED_BUT_ACTIVE, plan, False, False, True, days
            )
        return StateDescription(
            DisplayState.CANCELLED_AND_EXPIRED, plan, False, False, True, 0
        )

    if status == SubscriptionStatus.EXPIRED:
        return StateDescription(DisplayState.EXPIRED, plan, False, False, True, 0)

    return StateDescription(DisplayState.NO_SUBSCRIPTION, plan, True, False, False, 0)
