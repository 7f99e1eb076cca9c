# -*- coding: utf-8 -*-
"""
Stripe webhook tests. Events are signed the way Stripe signs them so the
real signature verification runs.
"""
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import stripe

from cfipros.database import db
from cfipros.models import Profile, School, Subscription
from cfipros.services import subscription_service

WEBHOOK_URL = "/api/subscriptions/stripe-webhook"
SECRET = "whsec_test"


def sign(payload: bytes, secret: str = SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def from_ts(value):
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def stripe_subscription(sub_id="sub_123", status="active", metadata=None, **overrides):
    now = int(time.time())
    sub = {
        "id": sub_id,
        "object": "subscription",
        "customer": "cus_123",
        "status": status,
        "cancel_at_period_end": False,
        "current_period_start": now - 86400,
        "current_period_end": now + 30 * 86400,
        "metadata": metadata or {},
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": "price_cfi"}}]},
    }
    sub.update(overrides)
    return sub


def post_event(client, event_type, obj, secret=SECRET):
    payload = json.dumps({
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()
    return client.post(WEBHOOK_URL, data=payload, headers={
        "Stripe-Signature": sign(payload, secret),
        "Content-Type": "application/json",
    })


def add_profile(user_id=None, role="CFI"):
    profile = Profile(id=user_id or str(uuid.uuid4()), email="owner@example.com", role=role)
    db.session.add(profile)
    db.session.commit()
    return profile


class TestWebhookSecurity:
    def test_missing_signature(self, client):
        resp = client.post(WEBHOOK_URL, data=b"{}")
        assert resp.status_code == 400

    def test_bad_signature(self, client):
        resp = post_event(client, "customer.subscription.created", stripe_subscription(), secret="whsec_wrong")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid signature"
        assert Subscription.query.count() == 0

    def test_invalid_payload(self, client):
        resp = client.post(WEBHOOK_URL, data=b"not json", headers={"Stripe-Signature": sign(b"not json")})
        assert resp.status_code == 400

    def test_missing_secret(self, app, client):
        app.config["STRIPE_WEBHOOK_SECRET"] = None
        resp = post_event(client, "customer.subscription.created", stripe_subscription())
        assert resp.status_code == 400


class TestSubscriptionLifecycle:
    def test_created_for_user(self, client):
        profile = add_profile()

        resp = post_event(client, "customer.subscription.created",
                          stripe_subscription(metadata={"user_id": profile.id}))

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}
        sub = Subscription.query.one()
        assert sub.user_id == profile.id
        assert sub.school_id is None
        assert sub.status == "active"
        assert sub.price_id == "price_cfi"
        assert sub.is_active

    def test_created_for_school_drops_user(self, client):
        admin = add_profile(role="SCHOOL_ADMIN")
        school = School(name="Skyline", admin_user_id=admin.id, part_61_or_141_type="PART_61")
        db.session.add(school)
        db.session.commit()

        post_event(client, "customer.subscription.created",
                   stripe_subscription(metadata={"user_id": admin.id, "school_id": school.id}))

        sub = Subscription.query.one()
        assert sub.school_id == school.id
        assert sub.user_id is None

    def test_created_without_owner_is_skipped(self, client):
        resp = post_event(client, "customer.subscription.created", stripe_subscription())
        assert resp.status_code == 200
        assert Subscription.query.count() == 0

    def test_duplicate_created_event_does_not_duplicate(self, client):
        profile = add_profile()
        obj = stripe_subscription(metadata={"user_id": profile.id})
        post_event(client, "customer.subscription.created", obj)
        post_event(client, "customer.subscription.created", obj)
        assert Subscription.query.count() == 1

    def test_updated_syncs_status_and_period(self, client):
        profile = add_profile()
        post_event(client, "customer.subscription.created",
                   stripe_subscription(metadata={"user_id": profile.id}))
        new_end = int(time.time()) + 60 * 86400

        post_event(client, "customer.subscription.updated", stripe_subscription(
            status="past_due", cancel_at_period_end=True, current_period_end=new_end))

        db.session.expire_all()
        sub = Subscription.query.one()
        assert sub.status == "past_due"
        assert sub.cancel_at_period_end is True
        assert sub.current_period_end == from_ts(new_end)
        assert not sub.is_active

    def test_unknown_status_maps_to_incomplete(self, client):
        profile = add_profile()
        post_event(client, "customer.subscription.created",
                   stripe_subscription(status="paused", metadata={"user_id": profile.id}))
        assert Subscription.query.one().status == "incomplete"

    def test_period_read_from_items(self, client):
        profile = add_profile()
        end = int(time.time()) + 10 * 86400
        obj = stripe_subscription(metadata={"user_id": profile.id})
        del obj["current_period_start"], obj["current_period_end"]
        obj["items"]["data"][0].update(current_period_start=end - 86400, current_period_end=end)

        post_event(client, "customer.subscription.created", obj)

        assert Subscription.query.one().current_period_end == from_ts(end)

    def test_deleted_soft_deletes(self, client):
        profile = add_profile()
        post_event(client, "customer.subscription.created",
                   stripe_subscription(metadata={"user_id": profile.id}))

        resp = post_event(client, "customer.subscription.deleted", stripe_subscription(status="canceled"))

        assert resp.status_code == 200
        db.session.expire_all()
        sub = Subscription.query.one()
        assert sub.status == "canceled"
        assert sub.deleted_at is not None
        assert subscription_service.get_subscription_by_user_id(profile.id) is None

    def test_invoice_event_resyncs_subscription(self, client):
        profile = add_profile()
        post_event(client, "customer.subscription.created",
                   stripe_subscription(status="incomplete", metadata={"user_id": profile.id}))

        with patch("cfipros.services.stripe_client.get_subscription",
                   return_value=stripe_subscription(status="active")) as get_sub:
            resp = post_event(client, "invoice.payment_succeeded",
                              {"id": "in_1", "object": "invoice", "status": "paid", "subscription": "sub_123"})

        assert resp.status_code == 200
        get_sub.assert_called_once_with("sub_123")
        db.session.expire_all()
        assert Subscription.query.one().status == "active"

    def test_invoice_resync_with_sdk_subscription(self, client):
        profile = add_profile()
        post_event(client, "customer.subscription.created",
                   stripe_subscription(status="incomplete", metadata={"user_id": profile.id}))
        sdk_sub = stripe.Subscription.construct_from(stripe_subscription(status="past_due"), "sk_test")

        with patch("cfipros.services.stripe_client.get_subscription", return_value=sdk_sub):
            resp = post_event(client, "invoice.payment_failed",
                              {"id": "in_3", "object": "invoice", "status": "open", "subscription": "sub_123"})

        assert resp.status_code == 200
        db.session.expire_all()
        assert Subscription.query.one().status == "past_due"

    def test_invoice_subscription_under_parent(self, client):
        with patch("cfipros.services.stripe_client.get_subscription",
                   return_value=stripe_subscription()) as get_sub:
            post_event(client, "invoice.payment_failed", {
                "id": "in_2", "object": "invoice",
                "parent": {"subscription_details": {"subscription": "sub_123"}},
            })
        get_sub.assert_called_once_with("sub_123")

    def test_unhandled_event_is_acknowledged(self, client):
        resp = post_event(client, "customer.created", {"id": "cus_1", "object": "customer"})
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

    def test_handler_failure_returns_500(self, client):
        with patch("cfipros.services.subscription_service.sync_from_stripe", side_effect=RuntimeError("boom")):
            resp = post_event(client, "customer.subscription.updated", stripe_subscription())
        assert resp.status_code == 500

    def test_webhook_outcomes_are_counted(self, app, client):
        post_event(client, "customer.created", {"id": "cus_1", "object": "customer"})
        registry = app.extensions["metrics"].registry
        value = registry.get_sample_value(
            "cfipros_webhook_events_total", {"event_type": "customer.created", "outcome": "ignored"})
        assert value == 1.0
