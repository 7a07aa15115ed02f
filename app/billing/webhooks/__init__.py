"""
Paystack webhook intake.

Modules:
    signature: X-Paystack-Signature verification (HMAC-SHA512)
    events: Body parsing into typed events
    handlers: Handler registry, one handler per event type
    router: Subscriber resolution and dispatch
    views: The HTTP endpoint
"""
