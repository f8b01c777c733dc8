"""
Paystack webhook: signature check, charge.success reconciliation, retry semantics.
"""
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import pytest

from conftest import USER_ID
from models import AuditAction
from services.paystack_client import paystack_client


def _signed(event):
    body = json.dumps(event).encode()
    signature = hmac.new(paystack_client.secret_key.encode(), body, hashlib.sha512).hexdigest()
    return body, {"x-paystack-signature": signature, "Content-Type": "application/json"}


def _charge_success(reference):
    return {"event": "charge.success", "data": {"reference": reference, "status": "success"}}


@pytest.fixture
def webhook_audit():
    with patch("routes.webhooks.create_audit_log", new_callable=AsyncMock) as mock_audit:
        yield mock_audit


@pytest.fixture
def pending_reference(client, app_engine, user_headers):
    response = client.post("/api/subscription/initialize", json={"plan": "premium"}, headers=user_headers)
    return response.json()["reference"]


class TestSignature:

    def test_missing_signature_rejected_and_audited(self, client, app_engine, webhook_audit, payments, pending_reference):
        response = client.post("/api/webhooks/paystack", content=json.dumps(_charge_success(pending_reference)))

        assert response.status_code == 401
        assert payments.records[pending_reference]["status"] == "pending"
        assert webhook_audit.await_args.kwargs["action"] == AuditAction.WEBHOOK_REJECTED

    def test_tampered_body_rejected(self, client, app_engine, webhook_audit, pending_reference):
        _, headers = _signed(_charge_success(pending_reference))
        tampered = json.dumps(_charge_success("someone-else")).encode()
        response = client.post("/api/webhooks/paystack", content=tampered, headers=headers)
        assert response.status_code == 401


class TestChargeSuccess:

    def test_activates_subscription(self, client, app_engine, webhook_audit, payments, users, pending_reference):
        body, headers = _signed(_charge_success(pending_reference))

        response = client.post("/api/webhooks/paystack", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "status": "processed", "reference": pending_reference, "payment_status": "success",
        }
        assert payments.records[pending_reference]["verification_source"] == "webhook"
        assert users.users[USER_ID]["subscription"]["plan"] == "premium"

    def test_redelivery_does_not_reactivate(self, client, app_engine, webhook_audit, provider, pending_reference):
        body, headers = _signed(_charge_success(pending_reference))
        client.post("/api/webhooks/paystack", content=body, headers=headers)
        again = client.post("/api/webhooks/paystack", content=body, headers=headers)

        assert again.status_code == 200
        assert again.json()["payment_status"] == "success"
        assert provider.verify_calls == [pending_reference]

    def test_webhook_and_redirect_agree(self, client, app_engine, webhook_audit, user_headers, pending_reference):
        body, headers = _signed(_charge_success(pending_reference))
        client.post("/api/webhooks/paystack", content=body, headers=headers)

        redirect = client.get(
            "/api/payments/verify", params={"reference": pending_reference}, headers=user_headers
        ).json()
        assert redirect["status"] == "success"
        assert redirect["reference"] == pending_reference

    def test_late_success_reopens_expired_payment(self, client, app_engine, webhook_audit, payments, users, provider, pending_reference):
        payments.records[pending_reference].update({"status": "failed", "failure_reason": "expired"})
        provider.outcomes[pending_reference] = {"status": "success", "amount": 85000}
        body, headers = _signed(_charge_success(pending_reference))

        response = client.post("/api/webhooks/paystack", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["payment_status"] == "success"
        assert payments.records[pending_reference]["failure_reason"] is None
        assert users.users[USER_ID]["subscription"]["status"] == "active"

    def test_unknown_reference_acknowledged(self, client, app_engine, webhook_audit):
        body, headers = _signed(_charge_success("not-ours"))
        response = client.post("/api/webhooks/paystack", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_provider_outage_asks_for_retry(self, client, app_engine, webhook_audit, provider, payments, pending_reference):
        provider.fail_transport()
        body, headers = _signed(_charge_success(pending_reference))

        response = client.post("/api/webhooks/paystack", content=body, headers=headers)

        assert response.status_code == 503
        assert payments.records[pending_reference]["status"] == "pending"


class TestOtherEvents:

    def test_non_charge_events_ignored(self, client, app_engine, webhook_audit, provider):
        body, headers = _signed({"event": "transfer.success", "data": {"reference": "t1"}})
        response = client.post("/api/webhooks/paystack", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"status": "ignored", "event": "transfer.success"}
        assert provider.verify_calls == []

    def test_invalid_json_with_valid_signature(self, client, app_engine, webhook_audit):
        body = b"not json"
        signature = hmac.new(paystack_client.secret_key.encode(), body, hashlib.sha512).hexdigest()
        response = client.post("/api/webhooks/paystack", content=body, headers={"x-paystack-signature": signature})
        assert response.status_code == 400

    @pytest.mark.parametrize("event", [["charge.success"], "charge.success", 42, {"event": "charge.success", "data": ["ref"]}])
    def test_signed_non_object_payload_rejected(self, client, app_engine, webhook_audit, provider, event):
        body, headers = _signed(event)
        response = client.post("/api/webhooks/paystack", content=body, headers=headers)
        assert response.status_code == 400
        assert provider.verify_calls == []
