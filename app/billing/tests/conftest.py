"""
Pytest fixtures for billing tests.

This module provides a fixed reference time, a BillingConfig with test
secrets, subscribers in every lifecycle state, and a LifecycleManager
whose Paystack adapter and notifier are mocks.

Subscriber fixtures are laid out relative to the `now` fixture, so tests
that pass `now=now` into lifecycle operations see deterministic expiry.

Usage:
    def test_cancel_keeps_pro(manager, active_subscriber, now):
        result = manager.cancel(active_subscriber.pk, now=now)
        assert result.data.subscriber.plan_type == PlanType.PRO
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from billing.adapters import PaystackAdapter
from billing.config import BillingConfig
from billing.lifecycle import LifecycleManager
from billing.notifier import Notifier
from billing.state_machines import PlanType, SubscriptionStatus
from billing.tests.factories import SubscriberFactory, encode
from billing.webhooks.signature import compute_signature

WEBHOOK_SECRET = "sk_test_webhook_secret"


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def now():
    """Fixed reference time for lifecycle operations."""
    return datetime(2026, 10, 17, 12, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def billing_config():
    return BillingConfig(
        webhook_secret=WEBHOOK_SECRET,
        secret_key="sk_test_secret_key",
        base_url="https://api.paystack.test",
        timeout_seconds=2.0,
    )


@pytest.fixture
def paystack_settings(settings):
    """Point the Django settings at the test webhook secret."""
    settings.PAYSTACK_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.PAYSTACK_SECRET_KEY = "sk_test_secret_key"
    settings.PAYSTACK_BASE_URL = "https://api.paystack.test"
    settings.BILLING = {**settings.BILLING, "VERIFY_CHARGES": False}
    return settings


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def mock_provider(mocker):
    """PaystackAdapter mock; no request ever leaves the test."""
    return mocker.Mock(spec=PaystackAdapter)


@pytest.fixture
def mock_notifier(mocker):
    return mocker.Mock(spec=Notifier)


@pytest.fixture
def manager(db, billing_config, mock_provider, mock_notifier):
    """LifecycleManager with mocked provider and notifier."""
    return LifecycleManager(
        config=billing_config,
        provider=mock_provider,
        notifier=mock_notifier,
    )


@pytest.fixture
def mock_redis(mocker):
    """Mock Redis connection for lock tests."""
    mock_conn = mocker.MagicMock()
    mocker.patch("billing.locks.get_redis_connection", return_value=mock_conn)
    return mock_conn


# =============================================================================
# Subscriber Fixtures
# =============================================================================


@pytest.fixture
def free_subscriber(db):
    """Subscriber who never subscribed."""
    return SubscriberFactory(email="ama@example.com")


@pytest.fixture
def active_subscriber(db, now):
    """Active pro subscriber with 20 days left and Paystack refs."""
    return SubscriberFactory(
        email="kofi@example.com",
        active=True,
        started_at=now - timedelta(days=10),
        expires_at=now + timedelta(days=20),
        provider_customer_code="CUS_kofi",
        provider_subscription_code="SUB_kofi",
        provider_email_token="tok_kofi",
    )


@pytest.fixture
def cancelled_subscriber(db, now):
    """Cancelled subscriber still inside the grace period."""
    return SubscriberFactory(
        email="efua@example.com",
        cancelled=True,
        started_at=now - timedelta(days=25),
        expires_at=now + timedelta(days=5),
        provider_customer_code="CUS_efua",
        provider_subscription_code="SUB_efua",
    )


@pytest.fixture
def expired_subscriber(db, now):
    return SubscriberFactory(
        email="yaw@example.com",
        expired=True,
        started_at=now - timedelta(days=60),
    )


@pytest.fixture
def lapsed_subscriber(db, now):
    """Active subscriber whose period ended without any webhook."""
    return SubscriberFactory(
        email="abena@example.com",
        plan_type=PlanType.PRO,
        subscription_status=SubscriptionStatus.ACTIVE,
        started_at=now - timedelta(days=40),
        expires_at=now - timedelta(days=1),
        provider_subscription_code="SUB_abena",
    )


# =============================================================================
# HTTP Fixtures
# =============================================================================


@pytest.fixture
def post_webhook(client, paystack_settings):
    """
    Sign and POST a payload to the Paystack webhook endpoint.

    Usage:
        response = post_webhook(charge_success_payload(email))
        response = post_webhook(payload, signature="bad")
    """

    def _post(payload, signature=None, raw_body=None):
        body = raw_body if raw_body is not None else encode(payload)
        headers = {}
        if signature is None:
            signature = compute_signature(body, WEBHOOK_SECRET)
        if signature:
            headers["HTTP_X_PAYSTACK_SIGNATURE"] = signature
        return client.post(
            "/webhooks/paystack/",
            data=body,
            content_type="application/json",
            **headers,
        )

    return _post


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="operator",
        email="operator@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def staff_client(staff_user):
    """API client authenticated as a staff operator."""
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client
