# -*- coding: utf-8 -*-
"""
Stripe client.

Importing this module without STRIPE_SECRET_KEY raises ConfigurationError;
the app factory logs it and skips the payments blueprints.
"""
import os
from typing import Any, Dict, Optional

import stripe

from cfipros.errors import ConfigurationError

STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
if not STRIPE_SECRET_KEY:
    raise ConfigurationError("STRIPE_SECRET_KEY is not set")

stripe.api_key = STRIPE_SECRET_KEY


def create_customer(email: str, name: Optional[str] = None, metadata: Optional[Dict[str, str]] = None):
    return stripe.Customer.create(email=email, name=name, metadata=metadata or {})


def create_subscription(customer_id: str, price_id: str, metadata: Optional[Dict[str, str]] = None):
    """Incomplete subscription whose first invoice is paid client-side."""
    return stripe.Subscription.create(
        customer=customer_id,
        items=[{'price': price_id}],
        payment_behavior='default_incomplete',
        payment_settings={'save_default_payment_method': 'on_subscription'},
        expand=['latest_invoice.payment_intent'],
        metadata=metadata or {},
    )


def get_subscription(subscription_id: str):
    return stripe.Subscription.retrieve(subscription_id)


def cancel_subscription(subscription_id: str):
    """Cancel at the end of the current billing period."""
    return stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)


def reactivate_subscription(subscription_id: str):
    return stripe.Subscription.modify(subscription_id, cancel_at_period_end=False)


def construct_event_from_webhook(payload: bytes, signature: str, secret: Optional[str] = None) -> Any:
    """Verify the signature and parse the event.

    Raises ValueError on a malformed payload and
    stripe.SignatureVerificationError on a bad signature.
    """
    secret = secret or os.getenv('STRIPE_WEBHOOK_SECRET')
    if not secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set")
    return stripe.Webhook.construct_event(payload, signature, secret)
