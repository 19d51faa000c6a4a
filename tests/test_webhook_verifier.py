"""
Tests for Stripe webhook signature verification and event decoding.
"""

import hashlib
import hmac
import json
import time

import pytest

from svc.webhook_verifier import (
    CheckoutCompleted,
    StripeSubscription,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    parse_event,
    verify_event,
)
from utils.errors import InvalidSignature, MalformedPayload

SECRET = "whsec_unit_test"


def sign(payload: bytes, secret: str = SECRET, timestamp: int = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def event_bytes(event_type: str, obj: dict, event_id: str = "evt_1", created: int = 1_767_225_600) -> bytes:
    return json.dumps(
        {"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}
    ).encode("utf-8")


class TestSignature:
    def test_valid_signature_decodes_event(self):
        body = event_bytes(
            "checkout.session.completed",
            {"id": "cs_1", "client_reference_id": "U1", "customer": "cus_1", "status": "complete"},
        )

        event = verify_event(body, sign(body), SECRET)

        assert isinstance(event, CheckoutCompleted)
        assert event.event_id == "evt_1"
        assert event.session.user_reference == "U1"
        assert event.session.customer == "cus_1"

    def test_wrong_secret_rejected(self):
        body = event_bytes("customer.subscription.updated", {"id": "sub_1"})
        with pytest.raises(InvalidSignature):
            verify_event(body, sign(body, secret="whsec_other"), SECRET)

    def test_tampered_body_rejected(self):
        body = event_bytes("customer.subscription.updated", {"id": "sub_1", "status": "active"})
        header = sign(body)
        tampered = body.replace(b"active", b"past_due")
        with pytest.raises(InvalidSignature):
            verify_event(tampered, header, SECRET)

    def test_stale_timestamp_rejected(self):
        body = event_bytes("customer.subscription.updated", {"id": "sub_1"})
        with pytest.raises(InvalidSignature):
            verify_event(body, sign(body, timestamp=int(time.time()) - 3600), SECRET)

    def test_missing_header_rejected(self):
        body = event_bytes("customer.subscription.updated", {"id": "sub_1"})
        with pytest.raises(InvalidSignature):
            verify_event(body, None, SECRET)

    def test_parsed_body_refused(self):
        data = {"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": {}}}
        with pytest.raises(TypeError):
            verify_event(data, "t=1,v1=abc", SECRET)

    def test_invalid_json_with_valid_signature_is_malformed(self):
        body = b"{not json"
        with pytest.raises(MalformedPayload):
            verify_event(body, sign(body), SECRET)

    def test_signature_errors_are_400(self):
        assert InvalidSignature().status_code == 400
        assert MalformedPayload().status_code == 400


class TestParseEvent:
    def test_unknown_type_is_ignored_arm(self):
        event = parse_event({"id": "evt_9", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}})
        assert isinstance(event, UnhandledEvent)
        assert event.type == "invoice.paid"

    def test_subscription_updated_flattens_interval(self):
        event = parse_event(
            {
                "id": "evt_2",
                "type": "customer.subscription.updated",
                "created": 1_767_225_600,
                "data": {
                    "object": {
                        "id": "sub_1",
                        "customer": {"id": "cus_1", "object": "customer"},
                        "status": "active",
                        "items": {"data": [{"price": {"recurring": {"interval": "year"}}}]},
                    }
                },
            }
        )
        assert isinstance(event, SubscriptionUpdated)
        assert event.subscription.customer == "cus_1"
        assert event.subscription.interval == "year"
        assert event.subscription.trial_end_supplied is False
        assert event.created.year == 2026

    def test_subscription_deleted(self):
        event = parse_event(
            {"id": "evt_3", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_1"}}}
        )
        assert isinstance(event, SubscriptionDeleted)
        assert event.subscription.customer is None

    def test_explicit_null_trial_end_counts_as_supplied(self):
        subscription = StripeSubscription.model_validate({"id": "sub_1", "trial_end": None})
        assert subscription.trial_end_supplied is True
        assert subscription.trial_end_at is None

    def test_missing_envelope_fields_malformed(self):
        with pytest.raises(MalformedPayload):
            parse_event({"type": "customer.subscription.updated"})
        with pytest.raises(MalformedPayload):
            parse_event(["not", "an", "object"])

    def test_handled_type_without_object_malformed(self):
        with pytest.raises(MalformedPayload):
            parse_event({"id": "evt_4", "type": "checkout.session.completed", "data": {}})

    def test_conflicting_references_detected(self):
        event = parse_event(
            {
                "id": "evt_5",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": "cs_2",
                        "client_reference_id": "U1",
                        "metadata": {"user_id": "U2"},
                    }
                },
            }
        )
        assert event.session.has_conflicting_references is True
