"""
Tests for webhook routing and the per-event handlers.

Events are built from realistic Paystack bodies with EventParser and
routed against stored subscribers. Tests verify:
- Subscriber resolution (metadata id, then email)
- Each event type maps to the right lifecycle operation
- Ignore, skip and reject outcomes carry the expected reason codes
- Out-of-order and superseded subscription events are handled
"""

import dataclasses
import uuid
from datetime import timedelta

import pytest

from billing.adapters import VerifiedTransaction
from billing.exceptions import (
    InvalidStateTransitionError,
    ProviderUnavailableError,
)
from billing.lifecycle import LifecycleManager
from billing.models import Subscriber
from billing.state_machines import PlanType, ProcessingOutcome, SubscriptionStatus
from billing.tests.factories import (
    charge_success_payload,
    encode,
    invoice_payload,
    subscription_create_payload,
    subscription_event_payload,
)
from billing.webhooks.events import EventParser
from billing.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    ProcessingResult,
    register_handler,
)
from billing.webhooks.router import EventRouter


def parse(payload):
    return EventParser().parse(encode(payload))


def reload(subscriber):
    return Subscriber.objects.get(pk=subscriber.pk)


@pytest.fixture
def router(manager):
    return EventRouter(manager)


# =============================================================================
# Resolution
# =============================================================================


class TestResolve:
    def test_by_metadata_subscriber_id(self, router, free_subscriber):
        event = parse(
            charge_success_payload(
                "someone.else@example.com", subscriber_id=free_subscriber.pk
            )
        )
        assert router.resolve(event) == free_subscriber

    def test_unknown_metadata_id_falls_back_to_email(self, router, free_subscriber):
        event = parse(
            charge_success_payload("AMA@example.com", subscriber_id=uuid.uuid4())
        )
        assert router.resolve(event) == free_subscriber

    def test_no_match(self, router, free_subscriber):
        event = parse(charge_success_payload("nobody@example.com"))
        assert router.resolve(event) is None

    def test_never_creates_subscribers(self, router, db, now):
        event = parse(charge_success_payload("new.user@example.com"))

        result = router.route(event, now=now)

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert result.reason == "SUBSCRIBER_NOT_FOUND"
        assert not Subscriber.objects.exists()


# =============================================================================
# charge.success
# =============================================================================


class TestChargeSuccess:
    def test_activates_pro(self, router, free_subscriber, now):
        result = router.route(parse(charge_success_payload("ama@example.com")), now=now)

        assert result == ProcessingResult(
            ProcessingOutcome.APPLIED, "", free_subscriber.pk
        )
        subscriber = reload(free_subscriber)
        assert subscriber.plan_type == PlanType.PRO
        assert subscriber.expires_at == now.replace(month=11)
        assert subscriber.provider_customer_code == "CUS_xnxdt6s1zg1f4nx"

    def test_annual_checkout(self, router, free_subscriber, now):
        router.route(
            parse(charge_success_payload("ama@example.com", billing_cycle="annually")),
            now=now,
        )

        assert reload(free_subscriber).expires_at == now.replace(year=2027)

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"plan_type": "card_order"}, "NOT_A_SUBSCRIPTION_CHARGE"),
            ({"status": "failed"}, "CHARGE_NOT_SUCCESSFUL"),
            ({"channel": "bank_transfer"}, "NOT_A_CARD_PAYMENT"),
        ],
    )
    def test_ignored_charges(self, router, free_subscriber, now, overrides, reason):
        event = parse(charge_success_payload("ama@example.com", **overrides))

        result = router.route(event, now=now)

        assert result.outcome == ProcessingOutcome.IGNORED
        assert result.reason == reason
        assert reload(free_subscriber).plan_type == PlanType.FREE

    def test_already_pro_is_rejected(self, router, active_subscriber, now):
        payload = charge_success_payload("kofi@example.com")
        result = router.route(parse(payload), now=now)

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.reason == "ALREADY_ACTIVE"
        assert reload(active_subscriber).version == active_subscriber.version

    def test_does_not_verify_by_default(
        self, router, mock_provider, free_subscriber, now
    ):
        router.route(parse(charge_success_payload("ama@example.com")), now=now)

        mock_provider.verify_transaction.assert_not_called()


class TestChargeVerification:
    """charge.success with VERIFY_CHARGES enabled."""

    @pytest.fixture
    def verifying_router(self, billing_config, mock_provider, mock_notifier):
        config = dataclasses.replace(billing_config, verify_charges=True)
        return EventRouter(
            LifecycleManager(
                config=config, provider=mock_provider, notifier=mock_notifier
            )
        )

    def test_verified_charge_activates(
        self, verifying_router, mock_provider, free_subscriber, now
    ):
        mock_provider.verify_transaction.return_value = VerifiedTransaction(
            reference="T685312322670591", status="success"
        )

        result = verifying_router.route(
            parse(charge_success_payload("ama@example.com")), now=now
        )

        mock_provider.verify_transaction.assert_called_once_with("T685312322670591")
        assert result.outcome == ProcessingOutcome.APPLIED

    def test_unconfirmed_charge_is_ignored(
        self, verifying_router, mock_provider, free_subscriber, now
    ):
        mock_provider.verify_transaction.return_value = VerifiedTransaction(
            reference="T685312322670591", status="abandoned"
        )

        result = verifying_router.route(
            parse(charge_success_payload("ama@example.com")), now=now
        )

        assert result.reason == "CHARGE_NOT_VERIFIED"
        assert reload(free_subscriber).plan_type == PlanType.FREE

    def test_unreachable_provider_does_not_block(
        self, verifying_router, mock_provider, free_subscriber, now
    ):
        mock_provider.verify_transaction.side_effect = ProviderUnavailableError(
            "timeout"
        )

        result = verifying_router.route(
            parse(charge_success_payload("ama@example.com")), now=now
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        assert reload(free_subscriber).plan_type == PlanType.PRO


# =============================================================================
# subscription.*
# =============================================================================


class TestSubscriptionCreate:
    def test_activates_until_next_payment_date(self, router, free_subscriber, now):
        next_payment = now + timedelta(days=31)

        result = router.route(
            parse(
                subscription_create_payload(
                    "ama@example.com", next_payment_date=next_payment
                )
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        subscriber = reload(free_subscriber)
        assert subscriber.expires_at == next_payment
        assert subscriber.provider_subscription_code == "SUB_vsyqdmlzble3uii"
        assert subscriber.provider_email_token == "d7gofp6yppn3qz7"

    def test_missing_next_payment_date_uses_cycle(self, router, free_subscriber, now):
        result = router.route(
            parse(subscription_create_payload("ama@example.com")), now=now
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        assert reload(free_subscriber).expires_at == now.replace(month=11)

    def test_past_next_payment_date_is_stale(self, router, free_subscriber, now):
        result = router.route(
            parse(
                subscription_create_payload(
                    "ama@example.com", next_payment_date=now - timedelta(days=1)
                )
            ),
            now=now,
        )

        assert result == ProcessingResult(
            ProcessingOutcome.IGNORED, "STALE_EVENT", free_subscriber.pk
        )
        subscriber = reload(free_subscriber)
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.version == free_subscriber.version

    def test_late_create_after_not_renew_grants_nothing(
        self, router, free_subscriber, now
    ):
        create = subscription_create_payload(
            "ama@example.com", next_payment_date=now + timedelta(days=3)
        )
        router.route(parse(create), now=now)
        router.route(
            parse(
                subscription_event_payload("subscription.not_renew", "ama@example.com")
            ),
            now=now + timedelta(days=1),
        )

        result = router.route(parse(create), now=now + timedelta(days=4))

        assert result.outcome == ProcessingOutcome.IGNORED
        assert result.reason == "STALE_EVENT"
        subscriber = reload(free_subscriber)
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.subscription_status == SubscriptionStatus.EXPIRED
        assert subscriber.expires_at is None

    def test_after_charge_success_links_refs(self, router, free_subscriber, now):
        router.route(parse(charge_success_payload("ama@example.com")), now=now)
        activated = reload(free_subscriber)

        result = router.route(
            parse(
                subscription_create_payload(
                    "ama@example.com", next_payment_date=now + timedelta(days=31)
                )
            ),
            now=now,
        )

        assert result == ProcessingResult(
            ProcessingOutcome.APPLIED, "REFS_LINKED", free_subscriber.pk
        )
        subscriber = reload(free_subscriber)
        assert subscriber.provider_subscription_code == "SUB_vsyqdmlzble3uii"
        assert subscriber.provider_email_token == "d7gofp6yppn3qz7"
        # The period set by the charge is kept
        assert subscriber.expires_at == activated.expires_at
        assert subscriber.started_at == activated.started_at

    def test_repeat_for_linked_subscriber_is_rejected(
        self, router, active_subscriber, now
    ):
        result = router.route(
            parse(
                subscription_create_payload(
                    "kofi@example.com", subscription_code="SUB_kofi"
                )
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.reason == "ALREADY_ACTIVE"


class TestSubscriptionDisable:
    def test_cancels_locally(self, router, mock_provider, active_subscriber, now):
        result = router.route(
            parse(
                subscription_event_payload(
                    "subscription.disable",
                    "kofi@example.com",
                    subscription_code="SUB_kofi",
                )
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        subscriber = reload(active_subscriber)
        assert subscriber.subscription_status == SubscriptionStatus.CANCELLED
        assert subscriber.plan_type == PlanType.PRO
        mock_provider.disable_subscription.assert_not_called()

    def test_superseded_subscription_is_ignored(
        self, router, active_subscriber, now
    ):
        result = router.route(
            parse(
                subscription_event_payload(
                    "subscription.disable",
                    "kofi@example.com",
                    subscription_code="SUB_previous",
                )
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.IGNORED
        assert result.reason == "SUPERSEDED_SUBSCRIPTION"
        assert reload(active_subscriber).subscription_status == "active"

    def test_not_active_is_rejected(self, router, free_subscriber, now):
        result = router.route(
            parse(
                subscription_event_payload("subscription.disable", "ama@example.com")
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.reason == "NOT_CANCELLABLE"


class TestSubscriptionNotRenew:
    def test_expires_immediately(self, router, active_subscriber, now):
        result = router.route(
            parse(
                subscription_event_payload(
                    "subscription.not_renew",
                    "kofi@example.com",
                    subscription_code="SUB_kofi",
                )
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        subscriber = reload(active_subscriber)
        assert subscriber.subscription_status == SubscriptionStatus.EXPIRED
        assert subscriber.plan_type == PlanType.FREE
        assert subscriber.expires_at is None
        assert subscriber.provider_subscription_code is None

    def test_already_expired_is_no_change(self, router, expired_subscriber, now):
        result = router.route(
            parse(
                subscription_event_payload("subscription.not_renew", "yaw@example.com")
            ),
            now=now,
        )

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert result.reason == "NO_CHANGE"


# =============================================================================
# invoice.* and others
# =============================================================================


class TestInvoiceEvents:
    def test_paid_invoice_renews(self, router, active_subscriber, now):
        old_expiry = active_subscriber.expires_at

        result = router.route(
            parse(invoice_payload("invoice.update", "kofi@example.com")), now=now
        )

        assert result.outcome == ProcessingOutcome.APPLIED
        assert reload(active_subscriber).expires_at == old_expiry.replace(month=12)

    def test_unpaid_invoice_is_ignored(self, router, active_subscriber, now):
        result = router.route(
            parse(
                invoice_payload("invoice.update", "kofi@example.com", status="failed")
            ),
            now=now,
        )

        assert result.reason == "INVOICE_NOT_PAID"
        assert reload(active_subscriber).version == active_subscriber.version

    def test_payment_failure_is_logged(self, router, active_subscriber, now):
        result = router.route(
            parse(
                invoice_payload(
                    "invoice.payment_failed", "kofi@example.com", status="failed"
                )
            ),
            now=now,
        )

        assert result == ProcessingResult(
            ProcessingOutcome.IGNORED, "LOGGED", active_subscriber.pk
        )
        assert reload(active_subscriber).subscription_status == "active"

    def test_invoice_create_is_logged(self, router, active_subscriber, now):
        result = router.route(
            parse(invoice_payload("invoice.create", "kofi@example.com")), now=now
        )

        assert result.outcome == ProcessingOutcome.IGNORED
        assert result.reason == "LOGGED"


class TestOtherEvents:
    def test_customer_identification_is_logged(self, router, free_subscriber, now):
        event = parse(
            {
                "event": "customeridentification.success",
                "data": {"customer_code": "CUS_abc", "email": "ama@example.com"},
            }
        )

        result = router.route(event, now=now)

        assert result.reason == "LOGGED"

    def test_unknown_event_is_acknowledged(self, router, db, now):
        result = router.route(parse({"event": "transfer.success", "data": {}}), now=now)

        assert result == ProcessingResult(
            ProcessingOutcome.IGNORED, "UNHANDLED_EVENT_TYPE"
        )


# =============================================================================
# Router error handling
# =============================================================================


class TestRouterErrors:
    @pytest.fixture
    def custom_handler(self):
        """Register a temporary handler and remove it afterwards."""
        registered = []

        def _register(event_type, func):
            register_handler(event_type)(func)
            registered.append(event_type)

        yield _register
        for event_type in registered:
            WEBHOOK_HANDLERS.pop(event_type, None)

    def test_transition_error_becomes_rejected(
        self, router, custom_handler, db, now
    ):
        def handler(router, event, now):
            raise InvalidStateTransitionError("Cannot lapse subscriber in state none")

        custom_handler("test.transition_error", handler)

        result = router.route(parse({"event": "test.transition_error", "data": {}}))

        assert result.outcome == ProcessingOutcome.REJECTED
        assert result.reason == "INVALID_STATE_TRANSITION"

    def test_vanished_subscriber_is_skipped(
        self, router, custom_handler, free_subscriber, now
    ):
        def handler(router, event, now):
            subscriber = router.resolve(event)
            Subscriber.objects.filter(pk=subscriber.pk).delete()
            router.lifecycle.activate(subscriber.pk, now=now)

        custom_handler("test.vanished", handler)
        event = parse({"event": "test.vanished", "data": {"email": "ama@example.com"}})

        result = router.route(event, now=now)

        assert result.outcome == ProcessingOutcome.SKIPPED
        assert result.reason == "SUBSCRIBER_NOT_FOUND"

    def test_other_errors_propagate(self, router, custom_handler, db, now):
        def handler(router, event, now):
            raise RuntimeError("database is locked")

        custom_handler("test.crash", handler)

        with pytest.raises(RuntimeError):
            router.route(parse({"event": "test.crash", "data": {}}), now=now)


class TestProcessingResult:
    def test_to_dict(self):
        subscriber_id = uuid.uuid4()

        result = ProcessingResult(ProcessingOutcome.APPLIED, "", subscriber_id)

        assert result.to_dict() == {
            "outcome": "applied",
            "reason": "",
            "subscriber_id": str(subscriber_id),
        }
