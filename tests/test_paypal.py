"""
Tests for the PayPal client and subscription routes
"""
import json

import httpx
import pytest

from app.models.subscription import Subscription
from app.models.user import User
from app.services import paypal_client
from app.services.paypal_client import PayPalError


@pytest.fixture(autouse=True)
def paypal_config(monkeypatch):
    monkeypatch.setattr(paypal_client, "PAYPAL_CLIENT_ID", "client-id")
    monkeypatch.setattr(paypal_client, "PAYPAL_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(paypal_client, "PAYPAL_API_URL", "https://api.paypal.test")
    monkeypatch.setattr(paypal_client, "PAYPAL_PLAN_IDS", {
        "starter": "P-STARTER",
        "pro": "P-PRO",
        "premium": "P-PREMIUM",
    })


def _paypal_transport(requests_seen, subscription_status=201, subscription_body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests_seen.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-token", "token_type": "Bearer"})
        if request.url.path == "/v1/billing/subscriptions" and request.method == "POST":
            body = subscription_body or {
                "id": "I-SUB123",
                "status": "APPROVAL_PENDING",
                "links": [
                    {"rel": "self", "href": "https://api.paypal.test/v1/billing/subscriptions/I-SUB123"},
                    {"rel": "approve", "href": "https://www.paypal.test/webapps/billing/subscriptions?ba_token=BA-1"},
                ],
            }
            return httpx.Response(subscription_status, json=body)
        if request.url.path.startswith("/v1/billing/subscriptions/"):
            return httpx.Response(200, json={"id": "I-SUB123", "status": "ACTIVE", "plan_id": "P-PRO", "custom_id": "1"})
        return httpx.Response(404, json={"message": "not found"})

    return httpx.MockTransport(handler)


class TestPayPalClient:
    def test_plan_mapping(self):
        assert paypal_client.get_plan_id("pro") == "P-PRO"
        assert paypal_client.tier_for_plan_id("P-PREMIUM") == "premium"
        assert paypal_client.tier_for_plan_id("P-UNKNOWN") is None

    def test_create_subscription(self):
        seen = []
        client = httpx.Client(transport=_paypal_transport(seen))
        result = paypal_client.create_subscription("starter", 42, client=client)

        assert result == {
            "subscription_id": "I-SUB123",
            "approval_url": "https://www.paypal.test/webapps/billing/subscriptions?ba_token=BA-1",
        }
        token_request, create_request = seen
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert create_request.headers["Authorization"] == "Bearer A21-token"
        body = json.loads(create_request.content)
        assert body["plan_id"] == "P-STARTER"
        assert body["custom_id"] == "42"
        assert body["application_context"]["user_action"] == "SUBSCRIBE_NOW"

    def test_create_subscription_without_approve_link(self):
        client = httpx.Client(transport=_paypal_transport([], subscription_body={"id": "I-X", "links": []}))
        with pytest.raises(PayPalError) as exc_info:
            paypal_client.create_subscription("pro", 1, client=client)
        assert exc_info.value.status_code == 500

    def test_create_subscription_rejected_by_paypal(self):
        client = httpx.Client(transport=_paypal_transport(
            [], subscription_status=422, subscription_body={"message": "Plan is inactive"}
        ))
        with pytest.raises(PayPalError) as exc_info:
            paypal_client.create_subscription("pro", 1, client=client)
        assert exc_info.value.message == "Plan is inactive"

    def test_unconfigured_plan(self, monkeypatch):
        monkeypatch.setitem(paypal_client.PAYPAL_PLAN_IDS, "pro", "")
        with pytest.raises(PayPalError) as exc_info:
            paypal_client.create_subscription("pro", 1, client=httpx.Client(transport=_paypal_transport([])))
        assert exc_info.value.status_code == 400

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(paypal_client, "PAYPAL_CLIENT_SECRET", "")
        with pytest.raises(PayPalError) as exc_info:
            paypal_client.get_subscription("I-SUB123", client=httpx.Client(transport=_paypal_transport([])))
        assert exc_info.value.status_code == 503

    def test_get_subscription(self):
        client = httpx.Client(transport=_paypal_transport([]))
        assert paypal_client.get_subscription("I-SUB123", client=client)["status"] == "ACTIVE"


class TestPayPalRoutes:
    def test_create_subscription_route(self, client, make_user, monkeypatch):
        user, headers = make_user()
        calls = []

        def fake_create(tier, user_id):
            calls.append((tier, user_id))
            return {"subscription_id": "I-NEW", "approval_url": "https://www.paypal.test/approve"}

        monkeypatch.setattr(paypal_client, "create_subscription", fake_create)
        response = client.post("/api/paypal/create-subscription", json={"tier": "Pro"}, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"subscriptionId": "I-NEW", "approvalUrl": "https://www.paypal.test/approve"}
        assert calls == [("pro", user.id)]

    def test_create_subscription_invalid_tier(self, client, make_user):
        _, headers = make_user()
        response = client.post("/api/paypal/create-subscription", json={"tier": "gold"}, headers=headers)
        assert response.status_code == 400

    def test_verify_active_subscription(self, client, make_user, db_session, monkeypatch):
        user, headers = make_user()
        monkeypatch.setattr(paypal_client, "get_subscription", lambda subscription_id: {
            "id": subscription_id, "status": "ACTIVE", "plan_id": "P-PREMIUM", "custom_id": str(user.id),
        })

        response = client.post(
            "/api/paypal/verify-subscription", json={"subscriptionId": "I-SUB123"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "status": "ACTIVE", "plan": "premium"}
        db_session.expire_all()
        assert db_session.query(User).filter(User.id == user.id).one().plan_tier == "premium"
        subscription = db_session.query(Subscription).filter_by(user_id=user.id).one()
        assert subscription.provider == "paypal"
        assert subscription.paypal_subscription_id == "I-SUB123"

    def test_verify_pending_subscription(self, client, make_user, db_session, monkeypatch):
        user, headers = make_user()
        monkeypatch.setattr(paypal_client, "get_subscription", lambda subscription_id: {
            "id": subscription_id, "status": "APPROVAL_PENDING", "plan_id": "P-PRO", "custom_id": str(user.id),
        })

        response = client.post(
            "/api/paypal/verify-subscription", json={"subscriptionId": "I-SUB123"}, headers=headers
        )

        assert response.json()["success"] is False
        db_session.expire_all()
        assert db_session.query(User).filter(User.id == user.id).one().plan_tier == "free"

    def test_verify_someone_elses_subscription(self, client, make_user, monkeypatch):
        user, headers = make_user()
        monkeypatch.setattr(paypal_client, "get_subscription", lambda subscription_id: {
            "id": subscription_id, "status": "ACTIVE", "plan_id": "P-PRO", "custom_id": str(user.id + 1),
        })
        response = client.post(
            "/api/paypal/verify-subscription", json={"subscriptionId": "I-SUB123"}, headers=headers
        )
        assert response.status_code == 403

    def test_verify_paypal_failure(self, client, make_user, monkeypatch):
        _, headers = make_user()

        def failing(subscription_id):
            raise PayPalError("Failed to verify subscription", status_code=404)

        monkeypatch.setattr(paypal_client, "get_subscription", failing)
        response = client.post(
            "/api/paypal/verify-subscription", json={"subscriptionId": "I-GONE"}, headers=headers
        )
        assert response.status_code == 404
