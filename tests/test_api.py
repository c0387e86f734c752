"""API tests for the credits FastAPI layer."""

import json

import pytest
from fastapi.testclient import TestClient

from stickercredits.api.app import app


ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def client():
    # Ensure clean service state before each test
    app.state.service.clear_all()
    return TestClient(app)


@pytest.fixture
def alice(client):
    r = client.post("/v1/accounts", json={"email": "alice@example.com"}, headers=ALICE)
    assert r.status_code == 201
    return client


def ios_purchase(transaction_id="1000000123", product_id="credits_25"):
    return {
        "platform": "ios",
        "receipt_data": "MIIT-base64-receipt",
        "product_id": product_id,
        "transaction_id": transaction_id,
    }


class TestHealth:
    def test_health(self, client: TestClient):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


class TestAccounts:
    def test_open_account(self, client: TestClient):
        r = client.post("/v1/accounts", json={}, headers=ALICE)
        assert r.status_code == 201
        body = r.json()
        assert body["user_id"] == "alice"
        assert body["credits"] == 10
        assert body["subscription_status"] == "free"

    def test_duplicate_account(self, alice: TestClient):
        r = alice.post("/v1/accounts", json={}, headers=ALICE)
        assert r.status_code == 409

    def test_missing_user_header(self, client: TestClient):
        r = client.get("/v1/credits/balance")
        assert r.status_code == 422


class TestCredits:
    def test_balance(self, alice: TestClient):
        r = alice.get("/v1/credits/balance", headers=ALICE)
        assert r.status_code == 200
        assert r.json() == {"user_id": "alice", "credits": 10}

    def test_balance_unknown_user(self, client: TestClient):
        r = client.get("/v1/credits/balance", headers=BOB)
        assert r.status_code == 404
        assert r.json()["code"] == "USER_NOT_FOUND"

    def test_validate(self, alice: TestClient):
        r = alice.post("/v1/credits/validate", json={"required_amount": 15}, headers=ALICE)
        assert r.status_code == 200
        body = r.json()
        assert body["valid"] is False
        assert body["message"] == "Insufficient credits. Required: 15, Available: 10"

    def test_deduct_add_refund_and_history(self, alice: TestClient):
        r = alice.post("/v1/credits/deduct",
                       json={"amount": 3, "description": "Sticker generation", "related_ids": ["stk_1"]},
                       headers=ALICE)
        assert r.status_code == 200
        assert r.json()["new_balance"] == 7

        r = alice.post("/v1/credits/add", json={"amount": 20, "description": "Bonus"}, headers=ALICE)
        assert r.json()["new_balance"] == 27

        r = alice.post("/v1/credits/refund", json={"amount": 3, "description": "Generation failed"},
                       headers=ALICE)
        assert r.json()["new_balance"] == 30

        r = alice.get("/v1/credits/transactions", headers=ALICE)
        assert r.status_code == 200
        kinds = [t["kind"] for t in r.json()]
        assert kinds == ["refund", "purchase", "consumption"]
        assert r.json()[2]["related_ids"] == ["stk_1"]
        assert r.json()[2]["balance_effect"] == -3

        r = alice.get("/v1/credits/transactions?limit=1", headers=ALICE)
        assert len(r.json()) == 1

    def test_insufficient_credits(self, alice: TestClient):
        r = alice.post("/v1/credits/deduct", json={"amount": 11, "description": "Batch"}, headers=ALICE)
        assert r.status_code == 402
        assert r.json() == {
            "code": "INSUFFICIENT_CREDITS",
            "message": "Insufficient credits. Required: 11, Available: 10",
            "retryable": False,
        }

    def test_invalid_amount(self, alice: TestClient):
        r = alice.post("/v1/credits/deduct", json={"amount": 0, "description": "Nothing"}, headers=ALICE)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_AMOUNT"

    def test_summary(self, alice: TestClient):
        alice.post("/v1/credits/deduct", json={"amount": 2, "description": "Sticker"}, headers=ALICE)
        r = alice.get("/v1/credits/summary", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["total_consumed"] == 2


class TestPayments:
    def test_catalog(self, client: TestClient):
        r = client.get("/v1/payments/packages")
        assert r.status_code == 200
        assert [p["id"] for p in r.json()][:2] == ["credits_10", "credits_25"]

        r = client.get("/v1/payments/plans")
        assert {p["id"] for p in r.json()} == {"premium_monthly", "premium_yearly"}

    def test_purchase_and_duplicate(self, alice: TestClient):
        r = alice.post("/v1/payments/purchase", json=ios_purchase(), headers=ALICE)
        assert r.status_code == 200
        assert r.json() == {
            "success": True,
            "transaction_id": "1000000123",
            "credits_added": 25,
            "new_balance": 35,
        }

        r = alice.post("/v1/payments/purchase", json=ios_purchase(), headers=ALICE)
        assert r.status_code == 409
        assert r.json()["code"] == "DUPLICATE_TRANSACTION"

    def test_android_purchase(self, alice: TestClient):
        payload = {
            "platform": "android",
            "receipt_data": json.dumps({"orderId": "GPA.42", "purchaseToken": "tok"}),
            "product_id": "credits_10",
        }
        r = alice.post("/v1/payments/purchase", json=payload, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["transaction_id"] == "GPA.42"

    def test_invalid_receipt(self, alice: TestClient):
        payload = dict(ios_purchase(), receipt_data="invalid_receipt")
        r = alice.post("/v1/payments/purchase", json=payload, headers=ALICE)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_RECEIPT"

    def test_refund_and_history(self, alice: TestClient):
        alice.post("/v1/payments/purchase", json=ios_purchase(), headers=ALICE)

        r = alice.post("/v1/payments/refund",
                       json={"transaction_id": "1000000123", "reason": "Accidental"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["credits_added"] == -25

        r = alice.post("/v1/payments/refund", json={"transaction_id": "1000000123"}, headers=ALICE)
        assert r.status_code == 409
        assert r.json()["code"] == "ALREADY_REFUNDED"

        r = alice.get("/v1/payments/history", headers=ALICE)
        assert r.json()[0]["refunded"] is True

    def test_refund_after_spending(self, alice: TestClient):
        alice.post("/v1/payments/purchase", json=ios_purchase(), headers=ALICE)
        alice.post("/v1/credits/deduct", json={"amount": 20, "description": "Batch"}, headers=ALICE)

        r = alice.post("/v1/payments/refund", json={"transaction_id": "1000000123"}, headers=ALICE)
        assert r.status_code == 402
        assert r.json()["code"] == "INSUFFICIENT_CREDITS_FOR_REFUND"

    def test_refund_unknown_transaction(self, alice: TestClient):
        r = alice.post("/v1/payments/refund", json={"transaction_id": "nope"}, headers=ALICE)
        assert r.status_code == 404


class TestSubscriptions:
    def test_lifecycle(self, alice: TestClient):
        r = alice.post("/v1/subscriptions",
                       json={"plan_id": "premium_monthly", "payment_transaction_id": "pay_1"},
                       headers=ALICE)
        assert r.status_code == 201
        assert r.json()["status"] == "active"

        r = alice.get("/v1/credits/balance", headers=ALICE)
        assert r.json()["credits"] == 110

        r = alice.get("/v1/subscriptions/status", headers=ALICE)
        body = r.json()
        assert body["active"] is True
        assert body["plan"]["id"] == "premium_monthly"
        assert body["days_remaining"] >= 28

        r = alice.post("/v1/subscriptions/cancel", json={"reason": "Too expensive"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["status"] == "canceled"

        r = alice.get("/v1/subscriptions/benefits", headers=ALICE)
        assert r.json()["no_ads"] is True

        r = alice.post("/v1/subscriptions/renew", json={"payment_transaction_id": "pay_2"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["status"] == "active"

        r = alice.get("/v1/subscriptions/history", headers=ALICE)
        assert len(r.json()) == 1

    def test_existing_subscription(self, alice: TestClient):
        payload = {"plan_id": "premium_monthly", "payment_transaction_id": "pay_1"}
        alice.post("/v1/subscriptions", json=payload, headers=ALICE)

        r = alice.post("/v1/subscriptions", json=dict(payload, payment_transaction_id="pay_2"),
                       headers=ALICE)
        assert r.status_code == 409
        assert r.json()["code"] == "EXISTING_SUBSCRIPTION"

    def test_invalid_plan(self, alice: TestClient):
        r = alice.post("/v1/subscriptions",
                       json={"plan_id": "premium_forever", "payment_transaction_id": "pay_1"},
                       headers=ALICE)
        assert r.status_code == 400
        assert r.json()["code"] == "INVALID_PLAN"

    def test_status_without_subscription(self, alice: TestClient):
        r = alice.get("/v1/subscriptions/status", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["active"] is False
        assert r.json()["error"]["code"] == "NO_ACTIVE_SUBSCRIPTION"

    def test_cancel_without_subscription(self, alice: TestClient):
        r = alice.post("/v1/subscriptions/cancel", json={}, headers=ALICE)
        assert r.status_code == 404

    def test_features(self, alice: TestClient):
        r = alice.get("/v1/subscriptions/features/no-ads", headers=ALICE)
        assert r.json() == {"feature": "no-ads", "has_access": False, "value": False}

        alice.post("/v1/subscriptions",
                   json={"plan_id": "premium_yearly", "payment_transaction_id": "pay_1"},
                   headers=ALICE)
        r = alice.get("/v1/subscriptions/features/monthly-credits", headers=ALICE)
        assert r.json() == {"feature": "monthly-credits", "has_access": True, "value": 100}

        r = alice.get("/v1/subscriptions/features/teleportation", headers=ALICE)
        assert r.status_code == 404

    def test_process_expired_with_nothing_due(self, alice: TestClient):
        alice.post("/v1/subscriptions",
                   json={"plan_id": "premium_monthly", "payment_transaction_id": "pay_1"},
                   headers=ALICE)
        r = alice.post("/v1/subscriptions/process-expired")
        assert r.status_code == 200
        assert r.json() == {"expired_count": 0, "subscription_ids": []}
