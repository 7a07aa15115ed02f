import uuid

import django_fsm
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Subscriber",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "email",
                    models.EmailField(
                        help_text="Account email address",
                        max_length=254,
                        unique=True,
                    ),
                ),
                (
                    "plan_type",
                    models.CharField(
                        choices=[("free", "Free"), ("pro", "Pro")],
                        db_index=True,
                        default="free",
                        help_text="Cached entitlement tier (derived from status and expiry)",
                        max_length=10,
                    ),
                ),
                (
                    "subscription_status",
                    django_fsm.FSMField(
                        choices=[
                            ("none", "None"),
                            ("active", "Active"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="none",
                        help_text="Current state of the subscription (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Start of the current billing relationship",
                        null=True,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="End of the paid period",
                        null=True,
                    ),
                ),
                (
                    "provider_customer_code",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Paystack customer code (CUS_xxx)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "provider_subscription_code",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Paystack subscription code (SUB_xxx)",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "provider_email_token",
                    models.CharField(
                        blank=True,
                        help_text="Paystack email token, required to disable the subscription",
                        max_length=64,
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each write",
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscriber",
                "verbose_name_plural": "Subscribers",
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(
                        fields=["plan_type", "expires_at"],
                        name="subscriber_plan_expiry_idx",
                    ),
                    models.Index(
                        fields=["subscription_status", "expires_at"],
                        name="subscriber_status_expiry_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookDelivery",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_key",
                    models.CharField(
                        help_text="SHA-256 of the event identity or body - unique for idempotency",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Paystack event type (e.g., 'charge.success')",
                        max_length=100,
                    ),
                ),
                ("payload", models.JSONField(help_text="Decoded webhook body")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "outcome",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("applied", "Applied"),
                            ("skipped", "Skipped"),
                            ("rejected", "Rejected"),
                            ("ignored", "Ignored"),
                        ],
                        help_text="What routing did to local state",
                        max_length=20,
                        null=True,
                    ),
                ),
                (
                    "detail",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Reason code for the outcome (e.g. SUBSCRIBER_NOT_FOUND)",
                        max_length=100,
                    ),
                ),
                (
                    "subscriber_id",
                    models.UUIDField(
                        blank=True,
                        db_index=True,
                        help_text="Subscriber the event resolved to",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the delivery was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Delivery",
                "verbose_name_plural": "Webhook Deliveries",
                "ordering": ["-created_at"],
                "abstract": False,
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="delivery_status_created_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="delivery_type_created_idx",
                    ),
                ],
            },
        ),
    ]
