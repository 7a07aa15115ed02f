"""
Paystack API adapter for the subscription engine.

Thin synchronous wrapper over the two Paystack REST calls the lifecycle
needs. Every call:
- Authenticates with the secret key as a bearer token
- Times out after BillingConfig.timeout_seconds
- Is attempted once (no retry loop in the request path)
- Translates transport and HTTP errors into ProviderCallError subclasses

Error Translation:
    httpx.TimeoutException, httpx.TransportError -> ProviderUnavailableError
    HTTP 5xx                                     -> ProviderUnavailableError
    HTTP 4xx, non-JSON body, "status": false     -> ProviderRequestError

Usage:
    from billing.adapters import PaystackAdapter
    from billing.config import BillingConfig

    adapter = PaystackAdapter(BillingConfig.from_settings())

    transaction = adapter.verify_transaction("T685312322670591")
    if transaction.is_successful:
        ...

    adapter.disable_subscription("SUB_vsyqdmlzble3uii", "d7gofp6yppn3qz7")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from billing.exceptions import ProviderRequestError, ProviderUnavailableError

if TYPE_CHECKING:
    from billing.config import BillingConfig


logger = logging.getLogger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class VerifiedTransaction:
    """
    The fields of GET /transaction/verify/:reference the router uses.

    Attributes:
        reference: Transaction reference
        status: Paystack transaction status ("success", "failed", "abandoned", ...)
        amount: Amount in the smallest currency unit
        currency: ISO currency code
        channel: Payment channel ("card", "bank", ...)
        customer_email: Email on the Paystack customer
    """

    reference: str
    status: str
    amount: int | None = None
    currency: str | None = None
    channel: str | None = None
    customer_email: str | None = None

    @property
    def is_successful(self) -> bool:
        return self.status == "success"


# =============================================================================
# Adapter
# =============================================================================


class PaystackAdapter:
    """
    Paystack REST client.

    Args:
        config: BillingConfig carrying secret_key, base_url and timeout
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        config: BillingConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.config.base_url,
            headers={
                "Authorization": f"Bearer {self.config.secret_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one Paystack call and return the decoded envelope.

        Raises:
            ProviderUnavailableError: Network failure, timeout or 5xx
            ProviderRequestError: 4xx or a body that is not a success envelope
        """
        log_context = {"provider_endpoint": endpoint, "method": method}
        start_time = time.time()
        logger.info("Starting Paystack request", extra=log_context)

        try:
            with self._client() as client:
                response = client.request(method, endpoint, json=data)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            duration_ms = (time.time() - start_time) * 1000
            status_code = e.response.status_code
            logger.warning(
                f"Paystack returned HTTP {status_code}",
                extra={
                    **log_context,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )
            error_cls = (
                ProviderUnavailableError if status_code >= 500 else ProviderRequestError
            )
            raise error_cls(
                f"Paystack {method} {endpoint} failed with HTTP {status_code}",
                details={"endpoint": endpoint, "status_code": status_code},
            ) from e
        except httpx.HTTPError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                f"Paystack unreachable: {type(e).__name__}",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise ProviderUnavailableError(
                f"Paystack {method} {endpoint} failed: {type(e).__name__}",
                details={"endpoint": endpoint},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderRequestError(
                "Paystack returned a non-JSON body",
                details={"endpoint": endpoint},
            ) from e

        if not isinstance(payload, dict) or payload.get("status") is not True:
            message = payload.get("message") if isinstance(payload, dict) else None
            raise ProviderRequestError(
                f"Paystack rejected {method} {endpoint}: {message or 'unknown error'}",
                details={"endpoint": endpoint},
            )

        logger.info(
            "Paystack request completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return payload

    # =========================================================================
    # Operations
    # =========================================================================

    def verify_transaction(self, reference: str) -> VerifiedTransaction:
        """
        Look up a transaction by reference.

        Raises:
            ProviderCallError: If the call fails (see module docstring)
        """
        endpoint = f"/transaction/verify/{quote(reference, safe='')}"
        payload = self._request("GET", endpoint)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ProviderRequestError(
                "Paystack returned no transaction data",
                details={"endpoint": endpoint},
            )
        customer = data.get("customer")
        if not isinstance(customer, dict):
            customer = {}
        return VerifiedTransaction(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or ""),
            amount=data.get("amount"),
            currency=data.get("currency"),
            channel=data.get("channel"),
            customer_email=customer.get("email"),
        )

    def disable_subscription(self, code: str, token: str) -> bool:
        """
        Stop a subscription from renewing on Paystack's side.

        Returns:
            True when Paystack acknowledged the request

        Raises:
            ProviderCallError: If the call fails (see module docstring)
        """
        self._request(
            "POST",
            "/subscription/disable",
            {"code": code, "token": token},
        )
        logger.info(
            "Paystack subscription disabled",
            extra={"subscription_code": code},
        )
        return True
