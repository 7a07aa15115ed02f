"""
Subscriber model: the billing state of one account.

The subscriber row is created at signup (free plan, no subscription) and
afterwards only changed through billing.lifecycle.LifecycleManager. The
FSM transitions below mutate an in-memory instance; the lifecycle manager
persists the changed fields with a version-guarded conditional update
(see billing.store.SubscriberStore.conditional_update).

Usage:
    from billing.models import Subscriber
    from billing.state_machines import SubscriptionStatus

    subscriber = Subscriber.objects.create(email="ama@example.com")

    # State transitions using django-fsm (in memory only)
    subscriber.cancel(now=timezone.now())
    subscriber.subscription_status  # "cancelled"
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.entitlement import effective_plan
from billing.state_machines import PlanType, SubscriptionStatus
from billing.types import ProviderRefs

if TYPE_CHECKING:
    from datetime import datetime


PROVIDER_REF_FIELDS = (
    "provider_customer_code",
    "provider_subscription_code",
    "provider_email_token",
)


class Subscriber(UUIDPrimaryKeyMixin, BaseModel):
    """
    Billing state for one account.

    Uses django-fsm for the subscription state machine and optimistic
    locking via the version field for concurrency control.

    State Flow:
        NONE -> ACTIVE (first purchase)
        ACTIVE -> CANCELLED (cancellation, grace period until expires_at)
        ACTIVE/CANCELLED -> EXPIRED (lapse, non-renewal)
        NONE/CANCELLED/EXPIRED -> ACTIVE (reactivation)
        any -> ACTIVE (purchase or renewal payment)

    Fields:
        email: Account email; webhooks without explicit metadata resolve by it
        plan_type: Cached entitlement (free/pro), derived from status + expiry
        subscription_status: Current FSM state
        started_at: When the current billing relationship began
        expires_at: End of the paid period (absent only without a relationship)
        provider_customer_code: Paystack customer code (CUS_xxx)
        provider_subscription_code: Paystack subscription code (SUB_xxx)
        provider_email_token: Paystack token needed to disable the subscription
        version: Optimistic locking version
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    email = models.EmailField(
        max_length=254,
        unique=True,
        help_text="Account email address",
    )

    # ==========================================================================
    # Entitlement & State
    # ==========================================================================

    plan_type = models.CharField(
        max_length=10,
        choices=PlanType.choices,
        default=PlanType.FREE,
        db_index=True,
        help_text="Cached entitlement tier (derived from status and expiry)",
    )

    # Not protected: the lifecycle manager writes it through queryset.update()
    subscription_status = FSMField(
        default=SubscriptionStatus.NONE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of the current billing relationship",
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="End of the paid period",
    )

    # ==========================================================================
    # Paystack Integration
    # ==========================================================================

    provider_customer_code = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Paystack customer code (CUS_xxx)",
    )

    provider_subscription_code = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text="Paystack subscription code (SUB_xxx)",
    )

    provider_email_token = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Paystack email token, required to disable the subscription",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each write",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscriber"
        verbose_name_plural = "Subscribers"
        indexes = [
            models.Index(
                fields=["plan_type", "expires_at"],
                name="subscriber_plan_expiry_idx",
            ),
            models.Index(
                fields=["subscription_status", "expires_at"],
                name="subscriber_status_expiry_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscriber({self.email}, {self.plan_type}, {self.subscription_status})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        Lifecycle code writes through SubscriberStore.conditional_update;
        this path covers admin edits and fixtures.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=subscription_status,
        source="*",
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self, expires_at: datetime, refs: ProviderRefs, now: datetime):
        """
        Start a paid period ending at expires_at.

        Transition: any -> ACTIVE

        started_at is kept only when the incoming provider subscription is
        the one already on record; anything else is a new relationship.
        """
        continuing = (
            self.started_at is not None
            and refs.subscription_code is not None
            and refs.subscription_code == self.provider_subscription_code
        )
        if not continuing:
            self.started_at = now
        self.expires_at = expires_at
        self.store_refs(refs)
        self.plan_type = effective_plan(SubscriptionStatus.ACTIVE, expires_at, now)

    @transition(
        field=subscription_status,
        source="*",
        target=SubscriptionStatus.ACTIVE,
    )
    def renew(self, expires_at: datetime, refs: ProviderRefs, now: datetime):
        """
        Extend the paid period to expires_at after a recurring payment.

        Transition: any -> ACTIVE
        """
        if self.started_at is None:
            self.started_at = now
        self.expires_at = expires_at
        self.store_refs(refs)
        self.plan_type = effective_plan(SubscriptionStatus.ACTIVE, expires_at, now)

    @transition(
        field=subscription_status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.CANCELLED,
    )
    def cancel(self, now: datetime):
        """
        Stop renewal.

        Transition: ACTIVE -> CANCELLED

        With time left on the paid period the subscriber keeps pro until
        expires_at. Otherwise entitlement ends now and the provider refs
        are dropped. started_at is never touched.
        """
        if self.expires_at is not None and self.expires_at > now:
            self.plan_type = PlanType.PRO
        else:
            self.plan_type = PlanType.FREE
            self.expires_at = None
            self.clear_refs()

    @transition(
        field=subscription_status,
        source="*",
        target=SubscriptionStatus.EXPIRED,
    )
    def expire(self):
        """
        End the billing relationship immediately.

        Transition: any -> EXPIRED
        """
        self.plan_type = PlanType.FREE
        self.expires_at = None
        self.clear_refs()

    @transition(
        field=subscription_status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED],
        target=SubscriptionStatus.EXPIRED,
    )
    def lapse(self):
        """
        Record that the paid period ran out.

        Transition: ACTIVE/CANCELLED -> EXPIRED

        Provider refs are kept so a late renewal webhook can still be
        matched to this relationship.
        """
        self.plan_type = PlanType.FREE
        self.expires_at = None

    @transition(
        field=subscription_status,
        source=[
            SubscriptionStatus.NONE,
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
        ],
        target=SubscriptionStatus.ACTIVE,
    )
    def reactivate(self, expires_at: datetime, now: datetime):
        """
        Start a fresh relationship after cancellation or expiry.

        Transition: NONE/CANCELLED/EXPIRED -> ACTIVE

        Refs from the defunct provider subscription are cleared so the new
        period is not confused with it.
        """
        self.clear_refs()
        self.started_at = now
        self.expires_at = expires_at
        self.plan_type = PlanType.PRO

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def store_refs(self, refs: ProviderRefs) -> None:
        """Overwrite provider refs with the non-empty values in refs."""
        for name, value in refs.as_model_fields().items():
            setattr(self, name, value)

    def fill_missing_refs(self, refs: ProviderRefs) -> None:
        """Set provider refs that are currently empty; never overwrite."""
        for name, value in refs.as_model_fields().items():
            if not getattr(self, name):
                setattr(self, name, value)

    def clear_refs(self) -> None:
        for name in PROVIDER_REF_FIELDS:
            setattr(self, name, None)

    @property
    def provider_refs(self) -> ProviderRefs:
        return ProviderRefs(
            customer_code=self.provider_customer_code,
            subscription_code=self.provider_subscription_code,
            email_token=self.provider_email_token,
        )

    def effective_plan(self, now: datetime) -> str:
        """Entitlement derived from status and expiry (ignores plan_type)."""
        return effective_plan(self.subscription_status, self.expires_at, now)

    def is_consistent(self, now: datetime) -> bool:
        """True when the cached plan_type matches the effective plan."""
        return self.plan_type == self.effective_plan(now)
