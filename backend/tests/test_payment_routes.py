"""
Payment verification endpoints (web, bot) and payment details.
"""
from conftest import bearer


def _initiate(client, headers, plan="basic"):
    response = client.post("/api/subscription/initialize", json={"plan": plan}, headers=headers)
    assert response.status_code == 200
    return response.json()["reference"]


class TestVerifyEndpoint:

    def test_owner_verifies_success(self, client, app_engine, user_headers):
        reference = _initiate(client, user_headers, "standard")

        response = client.get("/api/payments/verify", params={"reference": reference}, headers=user_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["plan"] == "standard"
        assert body["subscription_end"].startswith("2026-03-08T12:00:00")
        assert client.get("/api/subscription/status", headers=user_headers).json()["status"] == "active"

    def test_repeat_verify_same_answer(self, client, app_engine, user_headers, provider):
        reference = _initiate(client, user_headers)
        first = client.get("/api/payments/verify", params={"reference": reference}, headers=user_headers)
        second = client.get("/api/payments/verify", params={"reference": reference}, headers=user_headers)
        assert first.json() == second.json()
        assert provider.verify_calls == [reference]

    def test_declined_is_reported_not_raised(self, client, app_engine, user_headers, provider):
        reference = _initiate(client, user_headers)
        provider.outcomes[reference] = {"status": "failed"}

        response = client.get("/api/payments/verify", params={"reference": reference}, headers=user_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "failed"

    def test_other_users_reference_forbidden(self, client, app_engine, user_headers):
        reference = _initiate(client, user_headers)
        response = client.get(
            "/api/payments/verify", params={"reference": reference}, headers=bearer(user_id="user-2")
        )
        assert response.status_code == 403

    def test_unknown_reference(self, client, app_engine, user_headers):
        response = client.get("/api/payments/verify", params={"reference": "nope"}, headers=user_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "PAYMENT_NOT_FOUND"

    def test_provider_outage_keeps_pending(self, client, app_engine, user_headers, provider, payments):
        reference = _initiate(client, user_headers)
        provider.fail_transport()

        response = client.get("/api/payments/verify", params={"reference": reference}, headers=user_headers)

        assert response.status_code == 502
        assert payments.records[reference]["status"] == "pending"

    def test_requires_login(self, client, app_engine):
        assert client.get("/api/payments/verify", params={"reference": "x"}).status_code == 401


class TestBotVerify:

    def test_verifies_by_reference_without_session(self, client, app_engine, user_headers, payments):
        reference = _initiate(client, user_headers)

        response = client.get("/api/payments/bot/verify", params={"reference": reference})

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert payments.records[reference]["verification_source"] == "bot"


class TestPaymentDetails:

    def test_owner_sees_record(self, client, app_engine, user_headers):
        reference = _initiate(client, user_headers)
        response = client.get("/api/payments/details", params={"reference": reference}, headers=user_headers)
        assert response.status_code == 200
        assert response.json()["payment"]["reference"] == reference
        assert response.json()["payment"]["status"] == "pending"

    def test_other_user_forbidden(self, client, app_engine, user_headers):
        reference = _initiate(client, user_headers)
        response = client.get(
            "/api/payments/details", params={"reference": reference}, headers=bearer(user_id="user-2")
        )
        assert response.status_code == 403
