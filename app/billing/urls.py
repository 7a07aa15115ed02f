"""
URL configuration for the billing operator API.

All routes are prefixed with /api/v1/billing/ when included in the main
URLconf. The Paystack webhook lives outside this prefix, at
/webhooks/paystack/ (see config/urls.py).
"""

from django.urls import path

from billing import views

app_name = "billing"

urlpatterns = [
    # Subscribers
    path(
        "subscribers/<uuid:subscriber_id>/",
        views.SubscriberDetailView.as_view(),
        name="subscriber-detail",
    ),
    path(
        "subscribers/<uuid:subscriber_id>/sync/",
        views.SubscriberSyncView.as_view(),
        name="subscriber-sync",
    ),
    path(
        "subscribers/<uuid:subscriber_id>/validate/",
        views.SubscriberValidateView.as_view(),
        name="subscriber-validate",
    ),
    path(
        "subscribers/<uuid:subscriber_id>/cancel/",
        views.SubscriberCancelView.as_view(),
        name="subscriber-cancel",
    ),
    path(
        "subscribers/<uuid:subscriber_id>/reactivate/",
        views.SubscriberReactivateView.as_view(),
        name="subscriber-reactivate",
    ),
    # Operations
    path("stats/", views.SubscriptionStatsView.as_view(), name="stats"),
    path(
        "maintenance/run/",
        views.MaintenanceRunView.as_view(),
        name="maintenance-run",
    ),
]
