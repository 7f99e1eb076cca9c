# -*- coding: utf-8 -*-
"""
Subscription billing API for the signed-in user (or the school they administer).
"""
import stripe
from flask import Blueprint, current_app, jsonify

from cfipros.middleware.session_guard import current_user, login_required
from cfipros.models import UserRole
from cfipros.services import profile_service, stripe_client, subscription_service
from cfipros.services.analytics import Event, track_event

billing_bp = Blueprint('billing', __name__)


def _owner():
    """(user_id, school_id, role) of the subscription owner for the current user."""
    user = current_user()
    profile = profile_service.get_profile(user.id)
    role = profile_service.resolve_role(user, profile, UserRole.STUDENT)
    if role is UserRole.SCHOOL_ADMIN:
        school = profile_service.get_school_for_admin(user.id)
        if school is not None:
            return None, school.id, role
    return user.id, None, role


def _current_subscription():
    user_id, school_id, _ = _owner()
    if school_id:
        return subscription_service.get_subscription_by_school_id(school_id)
    return subscription_service.get_subscription_by_user_id(user_id)


def _price_for_role(role):
    if role is UserRole.CFI:
        return current_app.config.get('STRIPE_PRICE_CFI_MONTHLY')
    if role is UserRole.SCHOOL_ADMIN:
        return current_app.config.get('STRIPE_PRICE_SCHOOL_MONTHLY')
    return None


def _client_secret(stripe_sub):
    invoice = stripe_sub.get('latest_invoice')
    if not invoice or isinstance(invoice, str):
        return None
    intent = invoice.get('payment_intent')
    if not intent or isinstance(intent, str):
        return None
    return intent.get('client_secret')


@billing_bp.route('/api/subscriptions/me', methods=['GET'])
@login_required
def get_my_subscription():
    sub = _current_subscription()
    track_event(Event.SUBSCRIPTION_PAGE_VIEWED, current_user().id)
    return jsonify({
        'subscription': sub.to_dict() if sub else None,
        'active': bool(sub and sub.is_active),
    }), 200


@billing_bp.route('/api/subscriptions', methods=['POST'])
@login_required
def create_subscription():
    """Create a customer and an incomplete subscription; the client confirms payment."""
    user = current_user()
    user_id, school_id, role = _owner()

    if role is UserRole.SCHOOL_ADMIN and not school_id:
        return jsonify({'error': 'School not found for admin'}), 400
    price_id = _price_for_role(role)
    if role is UserRole.STUDENT:
        return jsonify({'error': 'No subscription plan for this role'}), 400
    if not price_id:
        current_app.logger.error(f"No Stripe price configured for role {role.value}")
        return jsonify({'error': 'Subscription plan not configured'}), 500

    existing = _current_subscription()
    if existing is not None and existing.is_active:
        return jsonify({'error': 'Subscription already active', 'subscription': existing.to_dict()}), 409

    metadata = {'school_id': school_id} if school_id else {'user_id': user_id}
    try:
        customer = stripe_client.create_customer(user.email, name=user.full_name, metadata=metadata)
        stripe_sub = subscription_service.as_dict(
            stripe_client.create_subscription(customer['id'], price_id, metadata=metadata))
    except stripe.StripeError as e:
        msg = getattr(e, 'user_message', None) or str(e)
        current_app.logger.error(f"Stripe error: {msg}")
        return jsonify({'error': f"Stripe error: {msg}"}), 502

    sub = subscription_service.sync_from_stripe(stripe_sub, user_id=user_id, school_id=school_id)
    current_app.logger.info(f"[billing] Created subscription {stripe_sub['id']} for {school_id or user_id}")
    track_event(Event.SUBSCRIPTION_STARTED, user.id, {'role': role.value, 'price_id': price_id})
    return jsonify({
        'subscription_id': stripe_sub['id'],
        'client_secret': _client_secret(stripe_sub),
        'subscription': sub.to_dict() if sub else None,
    }), 201


def _modify(action):
    sub = _current_subscription()
    if sub is None:
        return jsonify({'error': 'No subscription found'}), 404
    try:
        stripe_sub = action(sub.stripe_subscription_id)
    except stripe.StripeError as e:
        msg = getattr(e, 'user_message', None) or str(e)
        current_app.logger.error(f"Stripe error: {msg}")
        return jsonify({'error': f"Stripe error: {msg}"}), 502
    sub = subscription_service.sync_from_stripe(stripe_sub)
    return jsonify({'subscription': sub.to_dict() if sub else None}), 200


@billing_bp.route('/api/subscriptions/cancel', methods=['POST'])
@login_required
def cancel_subscription():
    return _modify(stripe_client.cancel_subscription)


@billing_bp.route('/api/subscriptions/reactivate', methods=['POST'])
@login_required
def reactivate_subscription():
    return _modify(stripe_client.reactivate_subscription)
