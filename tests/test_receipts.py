"""Tests for store receipt validators."""

import json

import pytest
import requests

from stickercredits.catalog import Catalog
from stickercredits.config import Settings
from stickercredits.errors import ErrorCode
from stickercredits.ledger_manager import LedgerManager
from stickercredits.models import PurchaseReceipt
from stickercredits.purchase_reconciler import PurchaseReconciler
from stickercredits.receipts import (
    AppStoreReceiptValidator,
    HttpReceiptValidator,
    PlayStoreReceiptValidator,
    ReceiptValidatorRegistry,
    build_registry,
)
from stickercredits.stores import InMemoryAccountStore, InMemoryPurchaseStore, InMemoryTransactionStore


class FakeResponse:
    def __init__(self, status_code=200, body=None, raw=None):
        self.status_code = status_code
        self._body = body
        self._raw = raw

    def json(self):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._body


class FakeSession:
    """Stands in for requests.Session; records calls and replays a response."""

    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


class TestAppStoreValidator:
    """Tests for the mock iOS validator."""

    def test_valid_receipt_keeps_client_transaction_id(self):
        result = AppStoreReceiptValidator().validate("MIIT-receipt-data", "credits_25", "1000000123")

        assert result.valid is True
        assert result.external_transaction_id == "1000000123"
        assert result.product_id == "credits_25"

    def test_generated_transaction_id(self):
        result = AppStoreReceiptValidator().validate("MIIT-receipt-data", "credits_25")

        assert result.external_transaction_id.startswith("ios_")

    @pytest.mark.parametrize("receipt", ["invalid_receipt", "short"])
    def test_rejected(self, receipt):
        result = AppStoreReceiptValidator().validate(receipt, "credits_25", "1000000123")

        assert result.valid is False
        assert result.error.code == ErrorCode.INVALID_RECEIPT
        assert result.error.message == "Invalid iOS purchase receipt"


class TestPlayStoreValidator:
    """Tests for the mock Android validator."""

    def test_order_id_is_canonical(self):
        receipt = json.dumps({
            "orderId": "GPA.1234-5678",
            "purchaseToken": "token-abc",
            "purchaseTime": 1704067200000,
        })

        result = PlayStoreReceiptValidator().validate(receipt, "credits_50", "client-id")

        assert result.valid is True
        assert result.external_transaction_id == "GPA.1234-5678"
        assert result.purchase_date.year == 2024

    def test_falls_back_to_client_transaction_id(self):
        receipt = json.dumps({"purchaseToken": "token-abc"})

        result = PlayStoreReceiptValidator().validate(receipt, "credits_50", "client-id")

        assert result.external_transaction_id == "client-id"

    @pytest.mark.parametrize("payload", [{}, {"purchaseToken": "invalid_token"}])
    def test_bad_token(self, payload):
        result = PlayStoreReceiptValidator().validate(json.dumps(payload), "credits_50")

        assert result.error.code == ErrorCode.INVALID_RECEIPT
        assert result.error.message == "Invalid Android purchase receipt"

    @pytest.mark.parametrize("payload", ["not json", "[1, 2]"])
    def test_malformed(self, payload):
        result = PlayStoreReceiptValidator().validate(payload, "credits_50")

        assert result.error.code == ErrorCode.VALIDATION_FAILED


class TestHttpValidator:
    """Tests for the remote verification client."""

    def test_valid_response(self):
        session = FakeSession(FakeResponse(body={
            "valid": True,
            "transaction_id": "1000000999",
            "product_id": "credits_25",
            "purchase_date": "2024-01-01T00:00:00Z",
        }))
        validator = HttpReceiptValidator("ios", "https://verify.example.com/", api_key="sk_1",
                                         timeout=5, session=session)

        result = validator.validate("MIIT-receipt-data", "credits_25", "1000000999")

        assert result.valid is True
        assert result.external_transaction_id == "1000000999"
        assert session.calls[0]["url"] == "https://verify.example.com/receipts/verify"
        assert session.calls[0]["json"]["platform"] == "ios"
        assert session.calls[0]["timeout"] == 5
        assert session.headers["Authorization"] == "Bearer sk_1"

    def test_rejection_maps_error_code(self):
        session = FakeSession(FakeResponse(body={
            "valid": False,
            "error": {"code": "INVALID_RECEIPT", "message": "Receipt revoked"},
        }))
        validator = HttpReceiptValidator("ios", "https://verify.example.com", session=session)

        result = validator.validate("MIIT-receipt-data", "credits_25")

        assert result.valid is False
        assert result.error.code == ErrorCode.INVALID_RECEIPT
        assert result.error.message == "Receipt revoked"
        assert result.error.retryable is False

    def test_unknown_error_code(self):
        session = FakeSession(FakeResponse(body={"valid": False, "error": {"code": "WHATEVER"}}))
        validator = HttpReceiptValidator("ios", "https://verify.example.com", session=session)

        assert validator.validate("MIIT-receipt-data", "credits_25").error.code == ErrorCode.INVALID_RECEIPT

    def test_missing_transaction_id(self):
        session = FakeSession(FakeResponse(body={"valid": True}))
        validator = HttpReceiptValidator("ios", "https://verify.example.com", session=session)

        result = validator.validate("MIIT-receipt-data", "credits_25")

        assert result.error.code == ErrorCode.VALIDATION_FAILED

    @pytest.mark.parametrize("session", [
        FakeSession(error=requests.exceptions.Timeout()),
        FakeSession(error=requests.exceptions.ConnectionError()),
        FakeSession(FakeResponse(status_code=503, body={})),
        FakeSession(FakeResponse(raw="<html>")),
    ])
    def test_transport_failures_are_retryable(self, session):
        validator = HttpReceiptValidator("android", "https://verify.example.com", session=session)

        result = validator.validate("{}", "credits_25")

        assert result.valid is False
        assert result.error.code == ErrorCode.VALIDATION_FAILED
        assert result.error.retryable is True

    @pytest.mark.parametrize("body", [
        {"valid": True, "transaction_id": "1000000999", "purchase_date": "yesterday"},
        {"valid": False, "error": "nope"},
        {"valid": False, "error": {"code": "INVALID_RECEIPT", "message": ["revoked"]}},
        ["valid"],
    ])
    def test_malformed_body_is_rejected(self, body):
        session = FakeSession(FakeResponse(body=body))
        validator = HttpReceiptValidator("ios", "https://verify.example.com", session=session)

        result = validator.validate("MIIT-receipt-data", "credits_25", "1000000999")

        assert result.valid is False
        assert result.error.code == ErrorCode.VALIDATION_FAILED
        assert result.error.message == "Malformed verification response"
        assert result.error.retryable is True

    def test_requires_url(self):
        with pytest.raises(ValueError):
            HttpReceiptValidator("ios", "")

    def test_context_manager_closes_session(self):
        session = FakeSession()
        with HttpReceiptValidator("ios", "https://verify.example.com", session=session):
            pass
        assert session.closed is True


class TestRegistry:
    """Tests for platform dispatch."""

    def test_default_registry_uses_mocks(self):
        registry = build_registry()

        assert isinstance(registry.get("ios"), AppStoreReceiptValidator)
        assert isinstance(registry.get("android"), PlayStoreReceiptValidator)

    def test_configured_registry_uses_http(self):
        registry = build_registry(Settings(_env_file=None, receipt_verifier_url="https://verify.example.com"))

        assert isinstance(registry.get("ios"), HttpReceiptValidator)
        assert registry.get("ios").get_name() == "http_ios"

    def test_unsupported_platform(self):
        result = build_registry().validate("windows", "receipt-data", "credits_25")

        assert result.valid is False
        assert result.error.code == ErrorCode.UNSUPPORTED_PLATFORM
        assert result.error.message == "Unsupported payment platform"


class TestVerifiedProduct:
    """The store's product id decides what a receipt pays for."""

    @pytest.fixture
    def ledger(self):
        ledger = LedgerManager(InMemoryAccountStore(), InMemoryTransactionStore())
        ledger.open_account("alice")
        return ledger

    def reconciler_for(self, ledger, body):
        validator = HttpReceiptValidator("ios", "https://verify.example.com",
                                         session=FakeSession(FakeResponse(body=body)))
        return PurchaseReconciler(ledger, InMemoryPurchaseStore(),
                                  ReceiptValidatorRegistry({"ios": validator}), Catalog())

    def receipt(self, product_id):
        return PurchaseReceipt(platform="ios", receipt_data="MIIT-receipt-data",
                               product_id=product_id, transaction_id="t1")

    def test_claimed_product_must_match(self, ledger):
        reconciler = self.reconciler_for(
            ledger, {"valid": True, "transaction_id": "t1", "product_id": "credits_10"}
        )

        result = reconciler.process_purchase("alice", self.receipt("credits_250"))

        assert result.error_code == ErrorCode.INVALID_PRODUCT
        assert ledger.balance("alice") == 10
        assert reconciler.is_processed("t1") is False

    def test_matching_product_is_credited(self, ledger):
        reconciler = self.reconciler_for(
            ledger, {"valid": True, "transaction_id": "t1", "product_id": "credits_10"}
        )

        result = reconciler.process_purchase("alice", self.receipt("credits_10"))

        assert result.success is True
        assert result.credits_added == 10

    def test_unparseable_date_does_not_raise(self, ledger):
        reconciler = self.reconciler_for(
            ledger, {"valid": True, "transaction_id": "t1", "purchase_date": "yesterday"}
        )

        result = reconciler.process_purchase("alice", self.receipt("credits_10"))

        assert result.error_code == ErrorCode.VALIDATION_FAILED
        assert ledger.balance("alice") == 10
