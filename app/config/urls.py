"""
URL configuration for the billing service.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /webhooks/paystack/            - Paystack webhook endpoint (POST)
    /api/v1/billing/               - Operator endpoints (staff only)
        stats/                     - Subscription statistics
        maintenance/run/           - Run a maintenance sweep now
        subscribers/{id}/          - Billing state of one subscriber
        subscribers/{id}/sync/     - Force-sync cached entitlement
        subscribers/{id}/validate/ - Validate and repair one subscriber
        subscribers/{id}/cancel/   - Cancel (disables the Paystack subscription)
        subscribers/{id}/reactivate/ - Start a new billing period

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from billing.webhooks.views import paystack_webhook
from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("billing/", include("billing.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # Provider webhooks (signature-authenticated, no session auth)
    path("webhooks/paystack/", paystack_webhook, name="paystack_webhook"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Billing Admin"
admin.site.site_title = "Billing Admin Portal"
admin.site.index_title = "Subscriptions and webhook deliveries"
