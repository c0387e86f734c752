"""Purchase Reconciler - turns validated store receipts into credit grants.

The PurchaseReconciler provides the purchase workflow. It:
- Validates receipts with the store's validator
- Resolves the product to a credit package
- Rejects replays of an already processed store transaction
- Credits the account through the ledger
- Keeps the purchase audit trail and reverses purchases on refund

De-duplication by external transaction id is what stops a resubmitted or
replayed receipt from granting credits twice. The existence check, the ledger
credit and the record insert run in one critical section per external id.
"""

from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Callable, Iterator, List, Optional

from stickercredits.catalog import Catalog
from stickercredits.errors import ErrorCode, OperationError, StorageError
from stickercredits.ledger_manager import LedgerManager
from stickercredits.locking import KeyedLocks
from stickercredits.logging import get_logger, log_context
from stickercredits.models import PurchaseReceipt, PurchaseRecord
from stickercredits.receipts import ReceiptValidatorRegistry
from stickercredits.stores import PurchaseStore


logger = get_logger("purchases")


class PurchaseResult:
    """Result of a purchase or refund.

    Attributes:
        success (bool): True if credits moved and the audit trail was updated
        transaction_id (Optional[str]): External (store) transaction id
        credits_added (Optional[int]): Credits granted; negative for a refund
        new_balance (Optional[int]): Balance after the operation
        error (Optional[OperationError]): Failure detail if not successful
    """

    def __init__(self, success: bool, transaction_id: Optional[str] = None,
                 credits_added: Optional[int] = None, new_balance: Optional[int] = None,
                 error: Optional[OperationError] = None):
        self.success = success
        self.transaction_id = transaction_id
        self.credits_added = credits_added
        self.new_balance = new_balance
        self.error = error

    @classmethod
    def failure(cls, code: ErrorCode, message: str,
                retryable: Optional[bool] = None) -> "PurchaseResult":
        return cls(success=False, error=OperationError.of(code, message, retryable))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def __repr__(self) -> str:
        if self.success:
            return (f"PurchaseResult(success=True, transaction_id={self.transaction_id}, "
                    f"credits_added={self.credits_added})")
        return f"PurchaseResult(success=False, error={self.error_code})"


class PurchaseReconciler:
    """Maps validated receipts to credit grants, exactly once per store payment.

    Workflow (process_purchase):
    1. Validate the receipt with the platform's validator
    2. Resolve the product id to a credit package
    3. Reject the store transaction id if it was already processed
    4. Credit the package through the ledger
    5. Record the purchase (refunded=False)

    Steps 3-5 hold the user's lock and the external id's lock.

    Usage Example:
        ```python
        reconciler = PurchaseReconciler(ledger, InMemoryPurchaseStore(),
                                        build_registry(), Catalog())

        receipt = PurchaseReceipt(
            platform="ios",
            receipt_data="base64-receipt-payload",
            product_id="credits_25",
            transaction_id="1000000123",
        )
        result = reconciler.process_purchase("alice", receipt)
        if result.success:
            print(f"+{result.credits_added} credits, balance {result.new_balance}")

        # Same receipt again
        replay = reconciler.process_purchase("alice", receipt)
        assert replay.error_code == ErrorCode.DUPLICATE_TRANSACTION
        ```
    """

    def __init__(self, ledger: LedgerManager, purchases: PurchaseStore,
                 validators: ReceiptValidatorRegistry, catalog: Catalog,
                 receipt_locks: Optional[KeyedLocks] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(UTC)):
        """Initialize the reconciler.

        Args:
            ledger (LedgerManager): Ledger that owns balance changes
            purchases (PurchaseStore): Purchase audit trail
            validators (ReceiptValidatorRegistry): Per-platform validators
            catalog (Catalog): Credit package lookup
            receipt_locks (Optional[KeyedLocks]): Locks keyed by external id
            clock (Callable[[], datetime]): Source of "now"
        """
        self.ledger = ledger
        self.purchases = purchases
        self.validators = validators
        self.catalog = catalog
        self.receipt_locks = receipt_locks or KeyedLocks()
        self.clock = clock

    def process_purchase(self, user_id: str, receipt: PurchaseReceipt) -> PurchaseResult:
        """Validate a receipt and grant its credit package once.

        Args:
            user_id (str): Account to credit
            receipt (PurchaseReceipt): Receipt submitted by the client

        Returns:
            PurchaseResult: On failure one of ``UNSUPPORTED_PLATFORM``,
            ``INVALID_RECEIPT``, ``VALIDATION_FAILED``, ``INVALID_PRODUCT``,
            ``DUPLICATE_TRANSACTION`` or a propagated ledger error
        """
        with log_context(user_id, "purchase"):
            validation = self.validators.validate(
                receipt.platform, receipt.receipt_data, receipt.product_id,
                receipt.transaction_id,
            )
            if not validation.valid:
                logger.info("receipt rejected platform=%s product_id=%s",
                            receipt.platform, receipt.product_id)
                error = validation.error or OperationError.of(
                    ErrorCode.VALIDATION_FAILED, "Purchase validation failed"
                )
                return PurchaseResult(success=False, error=error)

            if validation.product_id and validation.product_id != receipt.product_id:
                logger.warning("receipt product mismatch claimed=%s verified=%s",
                               receipt.product_id, validation.product_id)
                return PurchaseResult.failure(
                    ErrorCode.INVALID_PRODUCT, "Receipt does not match the requested product"
                )

            package = self.catalog.get_package(receipt.product_id)
            if package is None:
                return PurchaseResult.failure(ErrorCode.INVALID_PRODUCT, "Invalid product ID")

            external_id = validation.external_transaction_id
            with self.ledger.user_locks.hold(user_id), self.hold_payment(external_id):
                try:
                    if self.purchases.exists(external_id):
                        logger.warning("duplicate receipt rejected external_transaction_id=%s",
                                       external_id)
                        return PurchaseResult.failure(
                            ErrorCode.DUPLICATE_TRANSACTION, "Transaction already processed"
                        )
                except StorageError:
                    logger.exception("purchase lookup failed external_transaction_id=%s", external_id)
                    return PurchaseResult.failure(ErrorCode.INTERNAL_ERROR, "Purchase processing failed")

                credit = self.ledger.add(
                    user_id,
                    package.credits,
                    f"Purchase: {package.name} ({package.credits} credits)",
                )
                if not credit.success:
                    return PurchaseResult(success=False, error=credit.error)

                try:
                    self.record_payment(user_id, external_id, package.id)
                except StorageError:
                    logger.exception("purchase record insert failed external_transaction_id=%s",
                                     external_id)
                    reversal = self.ledger.deduct(
                        user_id, package.credits,
                        f"Reversal: purchase {external_id} could not be recorded",
                    )
                    return PurchaseResult.failure(
                        ErrorCode.INTERNAL_ERROR, "Purchase could not be recorded",
                        # The grant and its reversal both stay in the log; the balance is back
                        # where it started and the receipt is unclaimed.
                        retryable=reversal.success,
                    )

            logger.info("purchase processed external_transaction_id=%s product_id=%s credits=%s",
                        external_id, package.id, package.credits)
            return PurchaseResult(
                success=True,
                transaction_id=external_id,
                credits_added=package.credits,
                new_balance=credit.new_balance,
            )

    def process_refund(self, user_id: str, external_transaction_id: str,
                       reason: str) -> PurchaseResult:
        """Reverse a credit package purchase by deducting its credits.

        The user must still hold at least the package's credits; otherwise the
        refund is refused with ``INSUFFICIENT_CREDITS_FOR_REFUND`` rather than
        letting the balance go negative. A purchase can be refunded once.

        Returns:
            PurchaseResult: ``credits_added`` is the negative package amount
        """
        with self.ledger.user_locks.hold(user_id), log_context(user_id, "purchase_refund"):
            try:
                record = self.purchases.get(external_transaction_id)
            except StorageError:
                logger.exception("purchase lookup failed external_transaction_id=%s",
                                 external_transaction_id)
                return PurchaseResult.failure(ErrorCode.INTERNAL_ERROR, "Refund processing failed")

            if record is None or record.user_id != user_id:
                return PurchaseResult.failure(
                    ErrorCode.TRANSACTION_NOT_FOUND, "Original transaction not found"
                )
            if record.refunded:
                return PurchaseResult.failure(
                    ErrorCode.ALREADY_REFUNDED, "Transaction already refunded"
                )

            package = self.catalog.get_package(record.product_id)
            if package is None:
                return PurchaseResult.failure(
                    ErrorCode.INVALID_PRODUCT, "Invalid product ID in transaction"
                )

            balance = self.ledger.balance(user_id)
            if balance is None or balance < package.credits:
                logger.warning(
                    "refund refused, credits already spent external_transaction_id=%s "
                    "balance=%s required=%s",
                    external_transaction_id, balance, package.credits,
                )
                return PurchaseResult.failure(
                    ErrorCode.INSUFFICIENT_CREDITS_FOR_REFUND,
                    "User does not have enough credits for refund",
                )

            deduction = self.ledger.deduct(
                user_id,
                package.credits,
                f"Refund: {reason} (Transaction: {external_transaction_id})",
            )
            if not deduction.success:
                return PurchaseResult(success=False, error=deduction.error)

            try:
                self.purchases.mark_refunded(external_transaction_id, reason, self.clock())
            except StorageError:
                logger.exception("refund flag write failed external_transaction_id=%s",
                                 external_transaction_id)
                restore = self.ledger.add(
                    user_id, package.credits,
                    f"Reversal: refund of {external_transaction_id} could not be recorded",
                )
                return PurchaseResult.failure(
                    ErrorCode.INTERNAL_ERROR, "Refund could not be recorded",
                    # Deduction and restoring credit both stay in the log; net zero.
                    retryable=restore.success,
                )

            logger.info("purchase refunded external_transaction_id=%s credits=%s",
                        external_transaction_id, package.credits)
            return PurchaseResult(
                success=True,
                transaction_id=external_transaction_id,
                credits_added=-package.credits,
                new_balance=deduction.new_balance,
            )

    # ========== Payment attribution ==========

    @contextmanager
    def hold_payment(self, external_transaction_id: str) -> Iterator[None]:
        """Serialize work on one external transaction id.

        Callers that also need the user's lock must take it first.
        """
        with self.receipt_locks.hold(external_transaction_id):
            yield

    def is_processed(self, external_transaction_id: str) -> bool:
        return self.purchases.exists(external_transaction_id)

    def record_payment(self, user_id: str, external_transaction_id: str,
                       product_id: str) -> PurchaseRecord:
        """Append a purchase record. Raises DuplicateKeyError on replay."""
        record = PurchaseRecord(
            external_transaction_id=external_transaction_id,
            user_id=user_id,
            product_id=product_id,
            created_at=self.clock(),
        )
        return self.purchases.add(record)

    # ========== Queries ==========

    def get_purchase(self, external_transaction_id: str) -> Optional[PurchaseRecord]:
        return self.purchases.get(external_transaction_id)

    def purchase_history(self, user_id: str) -> List[PurchaseRecord]:
        """A user's purchase records, most recent first."""
        return sorted(self.purchases.list_for_user(user_id),
                      key=lambda r: r.created_at, reverse=True)
