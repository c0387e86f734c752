"""Tests for purchase reconciliation and refunds."""

import json

import pytest

from stickercredits.catalog import Catalog
from stickercredits.errors import ErrorCode, StorageError
from stickercredits.ledger_manager import LedgerManager
from stickercredits.models import PurchaseReceipt, TransactionType
from stickercredits.purchase_reconciler import PurchaseReconciler
from stickercredits.receipts import build_registry
from stickercredits.stores import (
    InMemoryAccountStore,
    InMemoryPurchaseStore,
    InMemoryTransactionStore,
)


class BrokenPurchaseStore(InMemoryPurchaseStore):
    """Purchase store that cannot insert records."""

    def add(self, record):
        raise StorageError("write timeout")


def ios_receipt(product_id="credits_25", transaction_id="1000000123"):
    return PurchaseReceipt(
        platform="ios",
        receipt_data="MIIT-base64-receipt",
        product_id=product_id,
        transaction_id=transaction_id,
    )


@pytest.fixture
def ledger():
    """Create a ledger with alice (10 credits) and bob (10 credits)."""
    ledger = LedgerManager(InMemoryAccountStore(), InMemoryTransactionStore())
    ledger.open_account("alice")
    ledger.open_account("bob")
    return ledger


@pytest.fixture
def reconciler(ledger, clock):
    return PurchaseReconciler(ledger, InMemoryPurchaseStore(), build_registry(), Catalog(),
                              clock=clock)


class TestProcessPurchase:
    """Tests for turning receipts into credits."""

    def test_ios_purchase(self, reconciler, ledger):
        result = reconciler.process_purchase("alice", ios_receipt())

        assert result.success is True
        assert result.transaction_id == "1000000123"
        assert result.credits_added == 25
        assert result.new_balance == 35
        assert ledger.history("alice")[0].description == "Purchase: Popular Pack (25 credits)"
        assert ledger.history("alice")[0].kind == TransactionType.PURCHASE

        record = reconciler.get_purchase("1000000123")
        assert record.user_id == "alice"
        assert record.product_id == "credits_25"
        assert record.refunded is False

    def test_android_purchase(self, reconciler, ledger):
        receipt = PurchaseReceipt(
            platform="android",
            receipt_data=json.dumps({"orderId": "GPA.1111", "purchaseToken": "tok"}),
            product_id="credits_100",
        )

        result = reconciler.process_purchase("alice", receipt)

        assert result.success is True
        assert result.transaction_id == "GPA.1111"
        assert ledger.balance("alice") == 110

    def test_duplicate_receipt_credits_once(self, reconciler, ledger):
        """Test a replayed receipt grants nothing the second time."""
        first = reconciler.process_purchase("alice", ios_receipt())
        replay = reconciler.process_purchase("alice", ios_receipt())

        assert first.success is True
        assert replay.success is False
        assert replay.error_code == ErrorCode.DUPLICATE_TRANSACTION
        assert replay.error.message == "Transaction already processed"
        assert ledger.balance("alice") == 35
        assert len(ledger.history("alice")) == 1

    def test_receipt_replayed_by_another_user(self, reconciler, ledger):
        reconciler.process_purchase("alice", ios_receipt())

        replay = reconciler.process_purchase("bob", ios_receipt())

        assert replay.error_code == ErrorCode.DUPLICATE_TRANSACTION
        assert ledger.balance("bob") == 10

    def test_invalid_receipt(self, reconciler, ledger):
        receipt = PurchaseReceipt(platform="ios", receipt_data="invalid_receipt",
                                  product_id="credits_25")

        result = reconciler.process_purchase("alice", receipt)

        assert result.error_code == ErrorCode.INVALID_RECEIPT
        assert ledger.balance("alice") == 10

    def test_unsupported_platform(self, reconciler):
        receipt = PurchaseReceipt(platform="windows", receipt_data="MIIT-base64-receipt",
                                  product_id="credits_25")

        assert reconciler.process_purchase("alice", receipt).error_code == ErrorCode.UNSUPPORTED_PLATFORM

    def test_unknown_product(self, reconciler, ledger):
        result = reconciler.process_purchase("alice", ios_receipt(product_id="credits_999"))

        assert result.error_code == ErrorCode.INVALID_PRODUCT
        assert result.error.message == "Invalid product ID"
        assert reconciler.is_processed("1000000123") is False

    def test_unknown_user(self, reconciler):
        result = reconciler.process_purchase("nobody", ios_receipt())

        assert result.error_code == ErrorCode.USER_NOT_FOUND
        assert reconciler.is_processed("1000000123") is False

    def test_failed_record_insert_is_reversed(self, ledger, clock):
        reconciler = PurchaseReconciler(ledger, BrokenPurchaseStore(), build_registry(),
                                        Catalog(), clock=clock)

        result = reconciler.process_purchase("alice", ios_receipt())

        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert result.error.retryable is True
        assert ledger.balance("alice") == 10
        assert ledger.verify_balance("alice") is True

    def test_purchase_history_newest_first(self, reconciler, clock):
        reconciler.process_purchase("alice", ios_receipt(transaction_id="t1"))
        clock.advance(minutes=5)
        reconciler.process_purchase("alice", ios_receipt(product_id="credits_10", transaction_id="t2"))

        history = reconciler.purchase_history("alice")

        assert [r.external_transaction_id for r in history] == ["t2", "t1"]
        assert reconciler.purchase_history("bob") == []


class TestProcessRefund:
    """Tests for reversing purchases."""

    def test_refund(self, reconciler, ledger, clock):
        reconciler.process_purchase("alice", ios_receipt())

        result = reconciler.process_refund("alice", "1000000123", "Accidental purchase")

        assert result.success is True
        assert result.credits_added == -25
        assert result.new_balance == 10
        assert ledger.history("alice")[0].description == (
            "Refund: Accidental purchase (Transaction: 1000000123)"
        )
        record = reconciler.get_purchase("1000000123")
        assert record.refunded is True
        assert record.refunded_at == clock.now
        assert record.refund_reason == "Accidental purchase"

    def test_refund_after_credits_spent(self, reconciler, ledger):
        """Test a refund is refused once the package's credits were consumed."""
        reconciler.process_purchase("alice", ios_receipt())
        ledger.deduct("alice", 20, "Sticker generation")

        result = reconciler.process_refund("alice", "1000000123", "Changed my mind")

        assert result.error_code == ErrorCode.INSUFFICIENT_CREDITS_FOR_REFUND
        assert result.error.message == "User does not have enough credits for refund"
        assert ledger.balance("alice") == 15
        assert reconciler.get_purchase("1000000123").refunded is False

    def test_refund_once(self, reconciler, ledger):
        reconciler.process_purchase("alice", ios_receipt(product_id="credits_10"))
        reconciler.process_refund("alice", "1000000123", "Accidental purchase")

        again = reconciler.process_refund("alice", "1000000123", "Accidental purchase")

        assert again.error_code == ErrorCode.ALREADY_REFUNDED
        assert ledger.balance("alice") == 10

    def test_unknown_transaction(self, reconciler):
        result = reconciler.process_refund("alice", "missing", "Whatever")

        assert result.error_code == ErrorCode.TRANSACTION_NOT_FOUND
        assert result.error.message == "Original transaction not found"

    def test_cannot_refund_other_users_purchase(self, reconciler, ledger):
        reconciler.process_purchase("alice", ios_receipt())

        result = reconciler.process_refund("bob", "1000000123", "Not mine")

        assert result.error_code == ErrorCode.TRANSACTION_NOT_FOUND
        assert ledger.balance("alice") == 35
        assert ledger.balance("bob") == 10
