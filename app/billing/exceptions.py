"""
Billing-specific exceptions.

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── SubscriberNotFoundError - Subscriber lookup by id failed
    ├── PayloadInvalidError - Webhook body failed structural validation
    └── SignatureInvalidError - X-Paystack-Signature missing or wrong

    ProviderCallError (inherits ExternalServiceError) - Paystack call failed
    ├── ProviderUnavailableError - Network error, timeout or 5xx (transient)
    └── ProviderRequestError - 4xx or unusable response (permanent)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock held elsewhere (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from billing.exceptions import StaleRecordError

    if rows_updated == 0:
        raise StaleRecordError(
            f"Subscriber {pk} was modified by another process",
            details={"pk": str(pk), "expected_version": 3},
        )

Note:
    SignatureVerifier itself returns False instead of raising; only the
    webhook view turns that into SignatureInvalidError.
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)


# =============================================================================
# Billing Domain Exceptions
# =============================================================================


class BillingError(BaseApplicationError):
    """Base exception for billing operations."""

    default_error_code: str = "BILLING_ERROR"


class SubscriberNotFoundError(NotFoundError):
    """
    Raised when a subscriber expected to exist cannot be found.

    Webhook routing never raises this; an event that matches no
    subscriber is skipped instead.
    """

    default_error_code: str = "SUBSCRIBER_NOT_FOUND"


class PayloadInvalidError(ValidationError):
    """Raised when a webhook body is not usable JSON of the expected shape."""

    default_error_code: str = "INVALID_PAYLOAD"


class SignatureInvalidError(ValidationError):
    """Raised by the webhook view when the request is not authentic."""

    default_error_code: str = "INVALID_SIGNATURE"


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderCallError(ExternalServiceError):
    """
    Base exception for failed Paystack API calls.

    Callers in the webhook path log and swallow these; local state is
    never blocked on the provider.
    """

    default_error_code: str = "PROVIDER_ERROR"


class ProviderUnavailableError(ProviderCallError):
    """Paystack could not be reached, timed out, or returned a 5xx."""

    default_error_code: str = "PROVIDER_UNAVAILABLE"


class ProviderRequestError(ProviderCallError):
    """Paystack rejected the request (4xx) or returned an unusable body."""

    default_error_code: str = "PROVIDER_REQUEST_REJECTED"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a conditional write finds the row at a different version.

    The lifecycle manager re-reads and re-applies on this error a bounded
    number of times before letting it propagate, at which point the
    webhook answers 500 and Paystack redelivers.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a subscription state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed to provide the standard
    error format.

    Attributes:
        details: Contains current_state and transition name
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"
