# -*- coding: utf-8 -*-
"""
Stripe webhook handler.

Keeps the subscriptions table in step with the payments backend's
subscription lifecycle.
"""
import stripe
from flask import Blueprint, current_app, jsonify, request

from cfipros.errors import ConfigurationError
from cfipros.services import stripe_client, subscription_service
from cfipros.services.analytics import Event, track_event
from cfipros.services.metrics import get_metrics_service
from cfipros.services.structured_logging import get_logger

logger = get_logger('cfipros.billing')

stripe_webhooks_bp = Blueprint('stripe_webhooks', __name__)


@stripe_webhooks_bp.route('/api/subscriptions/stripe-webhook', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhook events.

    Events handled:
    - customer.subscription.created: insert the subscription row
    - customer.subscription.updated: sync status and billing period
    - customer.subscription.deleted: mark canceled and soft delete
    - invoice.payment_succeeded / invoice.payment_failed: re-sync from the subscription
    """
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')

    if not sig_header or not webhook_secret:
        current_app.logger.error("Missing Stripe signature or webhook secret")
        return jsonify({'error': 'Missing signature or webhook secret'}), 400

    try:
        event = stripe_client.construct_event_from_webhook(payload, sig_header, webhook_secret)
    except ValueError:
        current_app.logger.error("Invalid webhook payload")
        return jsonify({'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.error("Invalid webhook signature")
        return jsonify({'error': 'Invalid signature'}), 400
    except ConfigurationError as e:
        current_app.logger.error(str(e))
        return jsonify({'error': 'Webhook not configured'}), 400

    event = subscription_service.as_dict(event)
    event_type = event['type']
    data = event['data']['object']
    metrics_service = get_metrics_service()

    try:
        if event_type == 'customer.subscription.created':
            handle_subscription_created(data)
        elif event_type == 'customer.subscription.updated':
            handle_subscription_updated(data)
        elif event_type == 'customer.subscription.deleted':
            handle_subscription_deleted(data)
        elif event_type in ('invoice.payment_succeeded', 'invoice.payment_failed'):
            handle_invoice_event(data)
        else:
            if metrics_service:
                metrics_service.record_webhook_event(event_type, 'ignored')
            logger.log_webhook_event(event_type, 'ignored')
            return jsonify({'received': True}), 200
    except Exception as e:
        if metrics_service:
            metrics_service.record_webhook_event(event_type, 'error')
        logger.log_webhook_event(event_type, 'error', error=str(e))
        current_app.logger.exception(f"Error handling webhook {event_type}")
        return jsonify({'error': 'Webhook handler failed'}), 500

    if metrics_service:
        metrics_service.record_webhook_event(event_type, 'handled')
    logger.log_webhook_event(event_type, 'handled')
    return jsonify({'received': True}), 200


def handle_subscription_created(subscription):
    metadata = subscription.get('metadata') or {}
    user_id = metadata.get('user_id')
    school_id = metadata.get('school_id')

    if subscription_service.get_subscription_by_stripe_id(subscription['id']) is not None:
        subscription_service.sync_from_stripe(subscription)
        return
    if not user_id and not school_id:
        logger.warning("Subscription created without owner metadata", stripe_subscription_id=subscription['id'])
        return
    subscription_service.create_subscription(subscription, user_id=user_id, school_id=school_id)


def handle_subscription_updated(subscription):
    subscription_service.sync_from_stripe(subscription)


def handle_subscription_deleted(subscription):
    subscription_service.soft_delete_subscription(subscription['id'])


def _invoice_subscription_id(invoice):
    subscription_id = invoice.get('subscription')
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get('id')
    # newer API versions nest it under parent.subscription_details
    parent = invoice.get('parent') or {}
    details = parent.get('subscription_details') or {}
    return details.get('subscription')


def handle_invoice_event(invoice):
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return
    subscription = subscription_service.as_dict(stripe_client.get_subscription(subscription_id))
    sub = subscription_service.sync_from_stripe(subscription)
    if sub is not None and sub.user_id and invoice.get('status') == 'paid':
        track_event(Event.SUBSCRIPTION_COMPLETED, sub.user_id, {'stripe_subscription_id': sub.stripe_subscription_id})
