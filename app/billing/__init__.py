"""
Billing app: subscription lifecycle and Paystack webhook processing.

Keeps each subscriber's cached entitlement (``plan_type``) consistent with
the billing provider's view of the world, under duplicated, reordered and
concurrent webhook deliveries.

Submodules:
    - models: Subscriber, WebhookDelivery
    - webhooks: signature verification, parsing, routing, HTTP endpoint
    - lifecycle: LifecycleManager (every state mutation goes through it)
    - maintenance: periodic reconciliation sweep
    - notifier: post-commit notification publishing
    - adapters: Paystack REST client
"""
