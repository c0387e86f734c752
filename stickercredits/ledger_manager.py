"""Ledger Manager - credit balance accounting and transaction tracking.

The LedgerManager is responsible for:
- Opening accounts with their signup grant
- Validating that a user can afford an operation
- Deducting, adding and refunding credits
- Maintaining the append-only transaction log
- Providing history, totals and balance verification

Key Principle: the ledger is the only writer of account balances, and every
balance write is paired with exactly one committed transaction, so that at any
time ``balance == initial_credits + sum(transaction effects)``.
"""

from typing import List, Optional

from stickercredits.config import RefundMode
from stickercredits.errors import DuplicateKeyError, ErrorCode, OperationError, StorageError
from stickercredits.locking import KeyedLocks
from stickercredits.logging import get_logger, log_context
from stickercredits.models import Account, CreditTransaction, TransactionType
from stickercredits.stores import AccountStore, TransactionStore


logger = get_logger("ledger")


class CreditValidationResult:
    """Outcome of a sufficiency check.

    Attributes:
        valid (bool): True if the balance covers the required amount
        current_balance (int): Balance at the time of the check (0 if unknown user)
        message (Optional[str]): Why the check failed
    """

    def __init__(self, valid: bool, current_balance: int, message: Optional[str] = None):
        self.valid = valid
        self.current_balance = current_balance
        self.message = message

    def __repr__(self) -> str:
        return (f"CreditValidationResult(valid={self.valid}, "
                f"current_balance={self.current_balance})")


class CreditOperationResult:
    """Result of a balance-changing ledger operation.

    Attributes:
        success (bool): True if the balance changed and the transaction committed
        transaction (Optional[CreditTransaction]): The committed transaction
        new_balance (Optional[int]): Balance after the operation
        error (Optional[OperationError]): Failure detail if not successful
    """

    def __init__(self, success: bool, transaction: Optional[CreditTransaction] = None,
                 new_balance: Optional[int] = None, error: Optional[OperationError] = None):
        self.success = success
        self.transaction = transaction
        self.new_balance = new_balance
        self.error = error

    @classmethod
    def failure(cls, code: ErrorCode, message: str,
                retryable: Optional[bool] = None) -> "CreditOperationResult":
        return cls(success=False, error=OperationError.of(code, message, retryable))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def __repr__(self) -> str:
        if self.success:
            return (f"CreditOperationResult(success=True, "
                    f"transaction_id={self.transaction.transaction_id}, "
                    f"new_balance={self.new_balance})")
        return f"CreditOperationResult(success=False, error={self.error_code})"


class LedgerManager:
    """Manager for credit balances and the transaction log.

    Atomicity:
        Every mutating operation runs read-balance, compute, write-balance and
        append-transaction while holding the user's lock, so two operations on
        the same account never interleave. If the balance write fails nothing
        is appended (``UPDATE_FAILED``, retryable). If the append fails after
        the balance was written, the previous balance is written back; the
        failure is retryable only when that rollback succeeded.

    Refund modes:
        ``credit_grant`` records a refund as an independent credit tagged
        ``refund``. ``linked`` additionally requires the refund to name one of
        the user's consumption transactions and caps cumulative refunds
        against it at its amount.

    Usage Example:
        ```python
        ledger = LedgerManager(InMemoryAccountStore(), InMemoryTransactionStore())
        ledger.open_account("alice", initial_credits=10)

        result = ledger.deduct("alice", 3, "Sticker generation")
        assert result.success and result.new_balance == 7

        ledger.add("alice", 20, "Purchase: Popular Pack")
        history = ledger.history("alice")  # most recent first
        ```
    """

    def __init__(self, accounts: AccountStore, transactions: TransactionStore,
                 user_locks: Optional[KeyedLocks] = None,
                 refund_mode: RefundMode = "credit_grant",
                 signup_credits: int = 10):
        """Initialize the ledger manager.

        Args:
            accounts (AccountStore): User directory holding balances
            transactions (TransactionStore): Append-only transaction log
            user_locks (Optional[KeyedLocks]): Per-user locks shared with the
                other components that mutate the same accounts
            refund_mode (RefundMode): ``credit_grant`` or ``linked``
            signup_credits (int): Opening balance for new accounts
        """
        self.accounts = accounts
        self.transactions = transactions
        self.user_locks = user_locks or KeyedLocks()
        self.refund_mode = refund_mode
        self.signup_credits = signup_credits

    # ========== Accounts ==========

    def open_account(self, user_id: str, email: Optional[str] = None,
                     initial_credits: Optional[int] = None) -> Account:
        """Register a new account with its opening balance.

        Raises:
            ValueError: If the account already exists or the opening balance
                is negative
        """
        opening = self.signup_credits if initial_credits is None else initial_credits
        if opening < 0:
            raise ValueError("Opening balance must not be negative")

        account = Account(
            user_id=user_id,
            email=email,
            credits=opening,
            initial_credits=opening,
        )
        try:
            self.accounts.add(account)
        except DuplicateKeyError:
            raise ValueError(f"Account {user_id} already exists")
        logger.info("account opened user_id=%s initial_credits=%s", user_id, opening)
        return account

    def get_account(self, user_id: str) -> Optional[Account]:
        return self.accounts.get(user_id)

    def balance(self, user_id: str) -> Optional[int]:
        """Current balance, or None if the account does not exist."""
        account = self.accounts.get(user_id)
        return account.credits if account else None

    # ========== Validation ==========

    def validate(self, user_id: str, required_amount: int) -> CreditValidationResult:
        """Check whether a user can afford ``required_amount`` credits.

        Example:
            ```python
            # account holding 10 credits
            check = ledger.validate("alice", 15)
            check.valid            # False
            check.current_balance  # 10
            check.message          # "Insufficient credits. Required: 15, Available: 10"
            ```
        """
        try:
            account = self.accounts.get(user_id)
        except StorageError:
            logger.exception("balance lookup failed user_id=%s", user_id)
            return CreditValidationResult(False, 0, "Error validating credits")

        if account is None:
            return CreditValidationResult(False, 0, "User not found")

        if account.can_spend(required_amount):
            return CreditValidationResult(True, account.credits)
        return CreditValidationResult(
            False,
            account.credits,
            f"Insufficient credits. Required: {required_amount}, Available: {account.credits}",
        )

    # ========== Mutations ==========

    def deduct(self, user_id: str, amount: int, description: str,
               related_ids: Optional[List[str]] = None) -> CreditOperationResult:
        """Spend credits, recording a ``consumption`` transaction.

        Args:
            user_id (str): Account to charge
            amount (int): Credits to deduct (must be > 0)
            description (str): Reason, e.g. "Sticker generation"
            related_ids (Optional[List[str]]): Related item ids

        Returns:
            CreditOperationResult: ``INVALID_AMOUNT``, ``USER_NOT_FOUND`` or
            ``INSUFFICIENT_CREDITS`` on guard failures, with no mutation
        """
        if not _is_positive_int(amount):
            return CreditOperationResult.failure(
                ErrorCode.INVALID_AMOUNT, "Invalid credit amount for deduction"
            )

        with self.user_locks.hold(user_id), log_context(user_id, "deduct"):
            try:
                account = self.accounts.get(user_id)
                if account is None:
                    return CreditOperationResult.failure(ErrorCode.USER_NOT_FOUND, "User not found")

                validation = self.validate(user_id, amount)
                if not validation.valid:
                    return CreditOperationResult.failure(
                        ErrorCode.INSUFFICIENT_CREDITS,
                        validation.message or "Insufficient credits",
                    )
                return self._commit(account, TransactionType.CONSUMPTION, amount,
                                    description, related_ids)
            except StorageError as exc:
                return self._storage_failure("deduct", user_id, exc)

    def add(self, user_id: str, amount: int, description: str,
            related_ids: Optional[List[str]] = None) -> CreditOperationResult:
        """Grant credits, recording a ``purchase`` transaction."""
        if not _is_positive_int(amount):
            return CreditOperationResult.failure(
                ErrorCode.INVALID_AMOUNT, "Invalid credit amount for purchase"
            )

        with self.user_locks.hold(user_id), log_context(user_id, "add"):
            try:
                account = self.accounts.get(user_id)
                if account is None:
                    return CreditOperationResult.failure(ErrorCode.USER_NOT_FOUND, "User not found")
                return self._commit(account, TransactionType.PURCHASE, amount,
                                    description, related_ids)
            except StorageError as exc:
                return self._storage_failure("add", user_id, exc)

    def refund(self, user_id: str, amount: int, description: str,
               related_ids: Optional[List[str]] = None,
               reverses_transaction_id: Optional[str] = None) -> CreditOperationResult:
        """Return credits to a user, recording a ``refund`` transaction.

        In ``credit_grant`` mode this is an independent credit; it does not
        undo a particular deduction. In ``linked`` mode
        ``reverses_transaction_id`` must name one of the user's consumption
        transactions and the refunds against it may not exceed its amount.
        """
        if not _is_positive_int(amount):
            return CreditOperationResult.failure(
                ErrorCode.INVALID_AMOUNT, "Invalid credit amount for refund"
            )

        with self.user_locks.hold(user_id), log_context(user_id, "refund"):
            try:
                account = self.accounts.get(user_id)
                if account is None:
                    return CreditOperationResult.failure(ErrorCode.USER_NOT_FOUND, "User not found")

                if self.refund_mode == "linked":
                    rejection = self._check_linked_refund(user_id, amount, reverses_transaction_id)
                    if rejection is not None:
                        return rejection

                return self._commit(account, TransactionType.REFUND, amount, description,
                                    related_ids, reverses_transaction_id)
            except StorageError as exc:
                return self._storage_failure("refund", user_id, exc)

    def _check_linked_refund(self, user_id: str, amount: int,
                             reverses_transaction_id: Optional[str]) -> Optional[CreditOperationResult]:
        if not reverses_transaction_id:
            return CreditOperationResult.failure(
                ErrorCode.TRANSACTION_NOT_FOUND,
                "Refund must reference the consumption it compensates",
            )

        original = self.transactions.get(reverses_transaction_id)
        if (original is None or original.user_id != user_id
                or original.kind is not TransactionType.CONSUMPTION):
            return CreditOperationResult.failure(
                ErrorCode.TRANSACTION_NOT_FOUND, "Original consumption not found"
            )

        already_refunded = sum(
            t.amount for t in self.transactions.list_for_user(user_id)
            if t.kind is TransactionType.REFUND
            and t.reverses_transaction_id == reverses_transaction_id
        )
        if already_refunded + amount > original.amount:
            return CreditOperationResult.failure(
                ErrorCode.REFUND_EXCEEDS_ORIGINAL,
                f"Refund exceeds original consumption. Consumed: {original.amount}, "
                f"Already refunded: {already_refunded}, Requested: {amount}",
            )
        return None

    def _commit(self, account: Account, kind: TransactionType, amount: int,
                description: str, related_ids: Optional[List[str]] = None,
                reverses_transaction_id: Optional[str] = None) -> CreditOperationResult:
        """Write the new balance, then append the transaction.

        Caller must hold the user's lock.
        """
        user_id = account.user_id
        new_balance = account.credits + kind.effect(amount)
        transaction = CreditTransaction(
            user_id=user_id,
            kind=kind,
            amount=amount,
            description=description,
            related_ids=list(related_ids or []),
            reverses_transaction_id=reverses_transaction_id,
            balance_after=new_balance,
        )

        try:
            written = self.accounts.set_balance(user_id, new_balance)
        except StorageError:
            logger.exception("balance write raised user_id=%s", user_id)
            return self._roll_back(account)

        if not written:
            logger.error("balance write refused user_id=%s new_balance=%s", user_id, new_balance)
            return CreditOperationResult.failure(
                ErrorCode.UPDATE_FAILED, "Failed to update user credits"
            )

        try:
            committed = self.transactions.append(transaction)
        except StorageError:
            logger.exception("transaction append failed user_id=%s kind=%s", user_id, kind.value)
            return self._roll_back(account)

        logger.info(
            "credits %s user_id=%s amount=%s new_balance=%s transaction_id=%s",
            kind.value, user_id, amount, new_balance, committed.transaction_id,
        )
        return CreditOperationResult(success=True, transaction=committed, new_balance=new_balance)

    def _roll_back(self, account: Account) -> CreditOperationResult:
        """Restore the balance read at the start of the operation."""
        try:
            restored = self.accounts.set_balance(account.user_id, account.credits)
        except StorageError:
            logger.exception("balance rollback raised user_id=%s", account.user_id)
            restored = False

        if restored:
            return CreditOperationResult.failure(
                ErrorCode.INTERNAL_ERROR, "Credit operation failed and was rolled back",
                retryable=True,
            )
        logger.error(
            "balance rollback failed; account needs reconciliation user_id=%s expected_balance=%s",
            account.user_id, account.credits,
        )
        return CreditOperationResult.failure(
            ErrorCode.INTERNAL_ERROR, "Credit operation failed; balance may be inconsistent",
            retryable=False,
        )

    def _storage_failure(self, operation: str, user_id: str,
                         exc: StorageError) -> CreditOperationResult:
        # Raised before any balance write happened.
        logger.exception("%s failed user_id=%s error=%s", operation, user_id, exc)
        return CreditOperationResult.failure(ErrorCode.INTERNAL_ERROR, f"Credit {operation} failed")

    # ========== Queries ==========

    def history(self, user_id: str) -> List[CreditTransaction]:
        """All of a user's transactions, most recently committed first."""
        return sorted(self.transactions.list_for_user(user_id),
                      key=lambda t: t.sequence, reverse=True)

    def totals(self, user_id: str, kind: TransactionType) -> int:
        """Sum of amounts of the user's transactions of one kind.

        Example:
            ```python
            consumed = ledger.totals("alice", TransactionType.CONSUMPTION)
            purchased = ledger.totals("alice", TransactionType.PURCHASE)
            ```
        """
        return sum(t.amount for t in self.transactions.list_for_user(user_id) if t.kind is kind)

    def get_transaction(self, transaction_id: str) -> Optional[CreditTransaction]:
        return self.transactions.get(transaction_id)

    def summary(self, user_id: str) -> Optional[dict]:
        """Balance plus consumed/purchased/refunded totals, or None if unknown."""
        account = self.accounts.get(user_id)
        if account is None:
            return None
        transactions = self.transactions.list_for_user(user_id)
        return {
            "user_id": user_id,
            "balance": account.credits,
            "initial_credits": account.initial_credits,
            "total_consumed": sum(t.amount for t in transactions if t.kind is TransactionType.CONSUMPTION),
            "total_purchased": sum(t.amount for t in transactions if t.kind is TransactionType.PURCHASE),
            "total_refunded": sum(t.amount for t in transactions if t.kind is TransactionType.REFUND),
            "transaction_count": len(transactions),
        }

    def verify_balance(self, user_id: str) -> bool:
        """Check ``balance == initial_credits + sum(effects)`` for one account.

        Takes the user's lock so a concurrent mutation cannot be half-visible.
        """
        with self.user_locks.hold(user_id):
            account = self.accounts.get(user_id)
            if account is None:
                return False
            effects = sum(t.balance_effect for t in self.transactions.list_for_user(user_id))
            return account.credits == account.initial_credits + effects


def _is_positive_int(amount) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0
