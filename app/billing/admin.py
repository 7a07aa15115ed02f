"""
Billing admin configuration.

Subscriber billing state is read-only here: changes go through the
lifecycle manager, exposed as admin actions, so versioning and
notifications apply exactly as they do for webhooks.
"""

from django.contrib import admin, messages

from billing.lifecycle import LifecycleManager
from billing.models import Subscriber, WebhookDelivery

__all__ = [
    "SubscriberAdmin",
    "WebhookDeliveryAdmin",
]


@admin.register(Subscriber)
class SubscriberAdmin(admin.ModelAdmin):
    """
    Admin configuration for Subscriber.

    State changes should be made through the actions, not by editing.
    """

    list_display = [
        "email",
        "plan_type",
        "subscription_status",
        "expires_at",
        "provider_subscription_code",
        "updated_at",
    ]
    list_filter = ["plan_type", "subscription_status"]
    search_fields = [
        "id",
        "email",
        "provider_customer_code",
        "provider_subscription_code",
    ]
    readonly_fields = [
        "id",
        "plan_type",
        "subscription_status",
        "started_at",
        "expires_at",
        "provider_customer_code",
        "provider_subscription_code",
        "provider_email_token",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]
    actions = ["sync_selected"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "email"),
            },
        ),
        (
            "Entitlement",
            {
                "fields": (
                    "plan_type",
                    "subscription_status",
                    "started_at",
                    "expires_at",
                ),
            },
        ),
        (
            "Paystack",
            {
                "fields": (
                    "provider_customer_code",
                    "provider_subscription_code",
                    "provider_email_token",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("version", "created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Sync selected subscribers")
    def sync_selected(self, request, queryset):
        manager = LifecycleManager()
        updated = 0
        for subscriber_id in queryset.values_list("pk", flat=True):
            if manager.sync(subscriber_id).data.changed:
                updated += 1
        self.message_user(
            request,
            f"Synced {queryset.count()} subscribers, {updated} updated.",
            messages.SUCCESS,
        )


@admin.register(WebhookDelivery)
class WebhookDeliveryAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookDelivery.

    Read-only audit trail of Paystack deliveries.
    """

    list_display = [
        "event_type",
        "status",
        "outcome",
        "detail",
        "retry_count",
        "created_at",
    ]
    list_filter = ["status", "outcome", "event_type", "created_at"]
    search_fields = ["event_key", "event_type", "subscriber_id"]
    readonly_fields = [
        "id",
        "event_key",
        "event_type",
        "payload",
        "status",
        "outcome",
        "detail",
        "subscriber_id",
        "processed_at",
        "error_message",
        "retry_count",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False
