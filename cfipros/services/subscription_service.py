# -*- coding: utf-8 -*-
"""
Subscription persistence.

Rows mirror the payments backend's subscription objects and are owned by a
user or by a school, never both. Rows are only ever soft deleted.
"""
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

from cfipros.database import db
from cfipros.models import Subscription, SubscriptionStatus
from cfipros.models.base import utcnow
from cfipros.services.structured_logging import get_logger

logger = get_logger('cfipros.billing')


def as_dict(stripe_obj) -> dict:
    """Nested plain dict for a Stripe object; plain dicts pass through."""
    # StripeObject is not a dict subclass from stripe 16 on
    if isinstance(stripe_obj, stripe.StripeObject):
        return stripe_obj.to_dict()
    return stripe_obj


def map_stripe_status(status: Optional[str]) -> str:
    """Known statuses pass through; anything else is treated as incomplete."""
    try:
        return SubscriptionStatus(status).value
    except ValueError:
        logger.warning("Unknown subscription status", status=status)
        return SubscriptionStatus.INCOMPLETE.value


def _from_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _first_item(stripe_sub) -> Optional[Any]:
    items = stripe_sub.get('items') or {}
    data = items.get('data') or []
    return data[0] if data else None


def _period(stripe_sub, key: str) -> Optional[datetime]:
    # newer API versions report billing periods on the subscription items
    value = stripe_sub.get(key)
    if value is None:
        item = _first_item(stripe_sub)
        if item is not None:
            value = item.get(key)
    return _from_timestamp(value)


def _price_id(stripe_sub) -> Optional[str]:
    item = _first_item(stripe_sub)
    if item is None:
        return None
    price = item.get('price') or {}
    return price.get('id')


def _fields_from_stripe(stripe_sub) -> dict:
    return {
        'stripe_customer_id': stripe_sub.get('customer'),
        'status': map_stripe_status(stripe_sub.get('status')),
        'price_id': _price_id(stripe_sub),
        'current_period_start': _period(stripe_sub, 'current_period_start'),
        'current_period_end': _period(stripe_sub, 'current_period_end'),
        'cancel_at_period_end': bool(stripe_sub.get('cancel_at_period_end')),
    }


def get_subscription_by_stripe_id(stripe_subscription_id: str) -> Optional[Subscription]:
    return Subscription.query.filter_by(stripe_subscription_id=stripe_subscription_id).first()


def get_subscription_by_user_id(user_id: str) -> Optional[Subscription]:
    return (
        Subscription.query
        .filter_by(user_id=user_id, deleted_at=None)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def get_subscription_by_school_id(school_id: str) -> Optional[Subscription]:
    return (
        Subscription.query
        .filter_by(school_id=school_id, deleted_at=None)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def has_active_user_subscription(user_id: str) -> bool:
    sub = get_subscription_by_user_id(user_id)
    return sub is not None and sub.is_active


def has_active_school_subscription(school_id: str) -> bool:
    sub = get_subscription_by_school_id(school_id)
    return sub is not None and sub.is_active


def create_subscription(stripe_sub, user_id: Optional[str] = None, school_id: Optional[str] = None) -> Subscription:
    """Insert a row for a new payments subscription.

    A school owner wins over a user owner so ownership stays exclusive.
    """
    stripe_sub = as_dict(stripe_sub)
    if school_id:
        user_id = None
    if not user_id and not school_id:
        raise ValueError("A subscription needs a user_id or a school_id")

    sub = Subscription(
        user_id=user_id,
        school_id=school_id,
        stripe_subscription_id=stripe_sub['id'],
        **_fields_from_stripe(stripe_sub),
    )
    db.session.add(sub)
    db.session.commit()
    logger.info("Subscription created", stripe_subscription_id=sub.stripe_subscription_id,
                user_id=user_id, school_id=school_id, status=sub.status)
    return sub


def update_subscription(stripe_subscription_id: str, **changes) -> Optional[Subscription]:
    sub = get_subscription_by_stripe_id(stripe_subscription_id)
    if sub is None:
        logger.warning("Subscription not found", stripe_subscription_id=stripe_subscription_id)
        return None
    for key, value in changes.items():
        setattr(sub, key, value)
    db.session.commit()
    return sub


def soft_delete_subscription(stripe_subscription_id: str) -> Optional[Subscription]:
    return update_subscription(
        stripe_subscription_id,
        status=SubscriptionStatus.CANCELED.value,
        deleted_at=utcnow(),
    )


def sync_from_stripe(stripe_sub, user_id: Optional[str] = None, school_id: Optional[str] = None) -> Optional[Subscription]:
    """Update the row for ``stripe_sub``, creating it when an owner is known."""
    stripe_sub = as_dict(stripe_sub)
    existing = get_subscription_by_stripe_id(stripe_sub['id'])
    if existing is not None:
        return update_subscription(stripe_sub['id'], **_fields_from_stripe(stripe_sub))

    metadata = stripe_sub.get('metadata') or {}
    user_id = user_id or metadata.get('user_id')
    school_id = school_id or metadata.get('school_id')
    if not user_id and not school_id:
        logger.warning("Subscription has no owner metadata", stripe_subscription_id=stripe_sub['id'])
        return None
    return create_subscription(stripe_sub, user_id=user_id, school_id=school_id)
