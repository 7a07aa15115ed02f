"""
Paystack webhook signature verification.

Paystack signs every webhook with HMAC-SHA512 over the raw request body,
keyed with the account secret, and sends the hex digest in the
X-Paystack-Signature header.

verify() never raises: anything it cannot check (empty input, odd-length
or non-hex header, wrong digest length) is simply not authentic.

Usage:
    from billing.webhooks.signature import SignatureVerifier

    verifier = SignatureVerifier(config.webhook_secret)
    if not verifier.verify(request.body, request.headers.get(SIGNATURE_HEADER, "")):
        return HttpResponse("Invalid signature", status=400)
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


SIGNATURE_HEADER = "X-Paystack-Signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of raw_body, as Paystack sends it."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class SignatureVerifier:
    """Checks X-Paystack-Signature headers against a shared secret."""

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def verify(self, raw_body: bytes, signature_header: str) -> bool:
        """
        Return True only if signature_header is the HMAC of raw_body.

        Args:
            raw_body: Request body exactly as received
            signature_header: Value of X-Paystack-Signature
        """
        if not self.secret or not raw_body or not signature_header:
            return False
        if not isinstance(raw_body, (bytes, bytearray)):
            return False
        if not isinstance(signature_header, str):
            return False

        try:
            provided = bytes.fromhex(signature_header.strip())
        except ValueError:
            logger.debug("Webhook signature is not valid hex")
            return False

        expected = hmac.new(
            self.secret.encode("utf-8"), bytes(raw_body), hashlib.sha512
        ).digest()
        if len(provided) != len(expected):
            return False

        return hmac.compare_digest(provided, expected)


def verify_signature(raw_body: bytes, signature_header: str, secret: str) -> bool:
    """Functional form of SignatureVerifier(secret).verify(...)."""
    return SignatureVerifier(secret).verify(raw_body, signature_header)
