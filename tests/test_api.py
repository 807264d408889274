import json

import pytest

from app.db.session import SessionLocal
from app.models import Account
from app.services.account_store import AccountStore
from tests.conftest import stripe_signature


@pytest.fixture
def seeded_account():
    """An active account created with the real clock, since HTTP tokens are verified against it."""
    db = SessionLocal()
    try:
        AccountStore(db).create("ana@example.com", "Ana", "+525512345678", "ABCD2345", "cs_seed")
    finally:
        db.close()
    return {"email": "ana@example.com", "code": "ABCD2345"}


def webhook_body(session_id, event_type="checkout.session.completed"):
    return json.dumps({
        "id": f"evt_{session_id}",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": session_id, "object": "checkout.session"}},
    })


class TestHealth:
    def test_health(self, client):
        for path in ("/", "/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["status"] == "ok"


class TestCheckout:
    def test_create_checkout_accepts_spanish_fields(self, client, payments):
        response = client.post("/create-checkout", json={
            "nombre": "Ana", "email": "ana@example.com", "telefono": "+525512345678",
        })
        assert response.status_code == 200
        assert response.json()["url"].startswith("https://checkout.stripe.test/")
        assert payments.checkouts == [{"name": "Ana", "email": "ana@example.com", "phone": "+525512345678"}]

    def test_create_checkout_rejects_bad_email(self, client):
        response = client.post("/create-checkout-session", json={"name": "Ana", "email": "not-an-email"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_create_checkout_for_active_account(self, client, seeded_account):
        response = client.post("/create-checkout", json={"email": "ana@example.com"})
        assert response.status_code == 400


class TestVerifyPayment:
    def test_verify_payment_provisions_then_repeats(self, client, payments, channel):
        payments.add_session("cs_paid", "bea@example.com", name="Bea")

        first = client.post("/verify-payment", json={"sessionId": "cs_paid"})
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["isNewCredential"] is True
        assert body["user"]["email"] == "bea@example.com"
        code = body["user"]["accessCode"]

        second = client.post("/verify-payment", json={"session_id": "cs_paid"})
        assert second.status_code == 200
        assert second.json()["isNewCredential"] is False
        assert second.json()["user"]["accessCode"] == code
        assert len(channel.sent) == 1

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200

    def test_verify_unpaid(self, client, payments):
        payments.add_session("cs_open", "bea@example.com", paid=False)
        response = client.post("/verify-payment", json={"sessionId": "cs_open"})
        assert response.status_code == 400
        assert response.json()["error"] == "payment_not_completed"

    def test_verify_missing_session(self, client):
        response = client.post("/verify-payment", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_provider_error_is_500(self, client, payments):
        payments.error = TimeoutError("read timed out")
        response = client.post("/verify-payment", json={"sessionId": "cs_x"})
        assert response.status_code == 500
        assert response.json()["error"] == "payment_provider_error"


class TestWebhook:
    def test_completed_event_provisions_once(self, client, payments, channel):
        payments.add_session("cs_hook", "carla@example.com")
        payload = webhook_body("cs_hook")

        for _ in range(2):
            response = client.post(
                "/webhook",
                content=payload,
                headers={"stripe-signature": stripe_signature(payload), "content-type": "application/json"},
            )
            assert response.status_code == 200
            assert response.json()["status"] == "processed"

        db = SessionLocal()
        try:
            assert db.query(Account).filter_by(email="carla@example.com").count() == 1
        finally:
            db.close()
        assert len(channel.sent) == 1

    def test_bad_signature(self, client, payments):
        payload = webhook_body("cs_hook")
        response = client.post(
            "/webhook/stripe",
            content=payload,
            headers={"stripe-signature": stripe_signature(payload, secret="whsec_wrong")},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_pending_payment_acknowledged(self, client, payments):
        payments.add_session("cs_oxxo", "carla@example.com", paid=False)
        payload = webhook_body("cs_oxxo")
        response = client.post("/webhook", content=payload, headers={"stripe-signature": stripe_signature(payload)})
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

    def test_other_events_ignored(self, client):
        payload = webhook_body("cs_any", event_type="checkout.session.expired")
        response = client.post("/webhook", content=payload, headers={"stripe-signature": stripe_signature(payload)})
        assert response.status_code == 200
        assert response.json() == {"received": True}


class TestLoginApi:
    def test_login_me_logout(self, client, seeded_account):
        response = client.post("/login", json={"email": "ANA@example.com", "accessCode": "abcd2345"})
        assert response.status_code == 200
        token = response.json()["token"]
        assert response.json()["user"]["email"] == "ana@example.com"
        assert "accessCode" not in response.json()["user"]

        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/api/auth/me", headers=headers).status_code == 200
        assert client.post("/api/auth/logout", headers=headers).status_code == 200

        after = client.get("/api/auth/me", headers=headers)
        assert after.status_code == 401
        assert after.json()["error"] == "invalid_session"

    def test_refresh(self, client, seeded_account):
        token = client.post("/api/auth/login", json={"email": "ana@example.com", "code": "ABCD2345"}).json()["token"]
        response = client.post("/api/auth/refresh", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["token"] != token

    @pytest.mark.parametrize("body,status,error", [
        ({"email": "ana@example.com", "accessCode": "WRONG234"}, 401, "invalid_credential"),
        ({"email": "nobody@example.com", "accessCode": "ABCD2345"}, 404, "not_found"),
        ({"email": "ana@example.com"}, 400, "invalid_input"),
    ])
    def test_login_errors(self, client, seeded_account, body, status, error):
        response = client.post("/login", json=body)
        assert response.status_code == status
        assert response.json()["error"] == error

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_session"


class TestRenewAndResend:
    def test_renew_access(self, client, payments, seeded_account):
        payments.add_session("cs_renew", "ana@example.com")
        response = client.post("/renew-access", json={"email": "ana@example.com", "stripe_session_id": "cs_renew"})
        assert response.status_code == 200
        assert response.json()["renewed"] is True
        assert response.json()["user"]["accessCode"] != seeded_account["code"]

    def test_renew_with_someone_elses_payment(self, client, payments, seeded_account):
        payments.add_session("cs_other", "bea@example.com", name="Bea")
        response = client.post("/renew-access", json={"email": "ana@example.com", "stripe_session_id": "cs_other"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "invalid_input"
        assert "token" not in body
        assert "accessCode" not in json.dumps(body)

        login = client.post("/login", json={"email": "ana@example.com", "accessCode": seeded_account["code"]})
        assert login.status_code == 200

        verify = client.post("/verify-payment", json={"session_id": "cs_other"})
        assert verify.status_code == 200
        assert verify.json()["user"]["email"] == "bea@example.com"
        assert verify.json()["isNewCredential"] is True

    def test_resend_notification(self, client, channel, seeded_account):
        response = client.post("/resend-notification", json={"email": "ana@example.com"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "sent": True}
        assert "ABCD2345" in channel.sent[0]["text"]

    def test_resend_unknown(self, client):
        response = client.post("/resend-notification", json={"email": "nobody@example.com"})
        assert response.status_code == 404


class TestAdmin:
    def test_requires_key(self, client):
        assert client.get("/admin/stats").status_code == 401
        assert client.get("/admin/stats", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_stats_and_users(self, client, admin_headers, seeded_account):
        stats = client.get("/admin/stats", headers=admin_headers)
        assert stats.status_code == 200
        assert stats.json()["total_accounts"] == 1
        assert stats.json()["active_accounts"] == 1

        users = client.get("/admin/users", params={"status": "active"}, headers=admin_headers)
        assert users.status_code == 200
        assert users.json()["total"] == 1
        assert users.json()["users"][0]["email"] == "ana@example.com"

        bad = client.get("/admin/users", params={"status": "zombie"}, headers=admin_headers)
        assert bad.status_code == 400

    def test_disable_blocks_login(self, client, admin_headers, seeded_account):
        response = client.post("/admin/users/ana@example.com/disable", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["user"]["status"] == "disabled"

        login = client.post("/login", json={"email": "ana@example.com", "accessCode": "ABCD2345"})
        assert login.status_code == 403
        assert login.json()["error"] == "disabled"
