"""
Serializers for the billing operator API.

Provides:
- SubscriberSerializer: Read-only billing state plus its display description
- TransitionSerializer: Result of a lifecycle operation
- ReactivateSerializer: Request body for reactivation
- ValidationReportSerializer: validate_and_repair output
- SubscriptionStatsSerializer: Aggregate counts
- MaintenanceReportSerializer: Sweep report
- ErrorSerializer: ServiceResult failure body
"""

from __future__ import annotations

from typing import Any

from django.utils import timezone
from drf_spectacular.utils import extend_schema_field
from rest_framework import serializers

from billing.entitlement import describe_state
from billing.models import Subscriber
from billing.state_machines import BillingCycle


class StateDescriptionSerializer(serializers.Serializer):
    state = serializers.CharField()
    effective_plan = serializers.CharField()
    can_subscribe = serializers.BooleanField()
    can_cancel = serializers.BooleanField()
    can_resubscribe = serializers.BooleanField()
    days_remaining = serializers.IntegerField()


class SubscriberSerializer(serializers.ModelSerializer):
    """
    Read-only serializer for a subscriber's billing state.

    The description is computed against the current time; it reflects
    status and expiry, not the cached plan_type.
    """

    description = serializers.SerializerMethodField()

    class Meta:
        model = Subscriber
        fields = [
            "id",
            "email",
            "plan_type",
            "subscription_status",
            "started_at",
            "expires_at",
            "provider_customer_code",
            "provider_subscription_code",
            "version",
            "created_at",
            "updated_at",
            "description",
        ]
        read_only_fields = fields

    @extend_schema_field(StateDescriptionSerializer)
    def get_description(self, obj: Subscriber) -> dict[str, Any]:
        now = self.context.get("now") or timezone.now()
        return describe_state(obj.subscription_status, obj.expires_at, now).to_dict()


class TransitionSerializer(serializers.Serializer):
    subscriber = SubscriberSerializer()
    changed_fields = serializers.ListField(child=serializers.CharField())


class ReactivateSerializer(serializers.Serializer):
    billing_cycle = serializers.ChoiceField(
        choices=BillingCycle.choices,
        default=BillingCycle.MONTHLY,
        help_text="Length of the new billing period",
    )


class ValidationReportSerializer(serializers.Serializer):
    is_valid = serializers.BooleanField()
    issues = serializers.ListField(child=serializers.CharField())
    fixed = serializers.BooleanField()


class SubscriptionStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    free = serializers.IntegerField()
    pro = serializers.IntegerField()
    active = serializers.IntegerField()
    cancelled = serializers.IntegerField()
    expired = serializers.IntegerField()
    inconsistent = serializers.IntegerField(
        help_text="Subscribers whose cached plan_type disagrees with status and expiry"
    )


class PhaseReportSerializer(serializers.Serializer):
    processed = serializers.IntegerField()
    updated = serializers.IntegerField()
    errors = serializers.IntegerField()


class MaintenanceReportSerializer(serializers.Serializer):
    expire_overdue = PhaseReportSerializer()
    batch_sync = PhaseReportSerializer()
    total_updated = serializers.IntegerField()
    total_errors = serializers.IntegerField()
    timestamp = serializers.DateTimeField()


class ErrorSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    error = serializers.CharField()
    error_code = serializers.CharField(required=False)
