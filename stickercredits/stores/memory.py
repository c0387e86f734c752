"""In-memory store implementations.

Each store keeps its records in a dictionary guarded by a re-entrant lock and
hands out deep copies, so a caller can never change stored state except
through the store's methods. Suitable for tests and single-process
deployments; a database-backed store can replace any of them behind the same
interface.
"""

import threading
from datetime import datetime
from itertools import count
from typing import Dict, List, Optional

from stickercredits.errors import DuplicateKeyError, StorageError
from stickercredits.models import (
    Account,
    CreditTransaction,
    PurchaseRecord,
    Subscription,
    SubscriptionTier,
)
from stickercredits.stores.base import (
    AccountStore,
    PurchaseStore,
    SubscriptionStore,
    TransactionStore,
)


class InMemoryAccountStore(AccountStore):
    """User directory backed by a dict keyed by user_id.

    Usage Example:
        ```python
        accounts = InMemoryAccountStore()
        accounts.add(Account(user_id="alice", credits=10, initial_credits=10))

        accounts.set_balance("alice", 7)
        assert accounts.get("alice").credits == 7
        assert accounts.get("nobody") is None
        ```
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._accounts: Dict[str, Account] = {}

    def get(self, user_id: str) -> Optional[Account]:
        with self._lock:
            account = self._accounts.get(user_id)
            return account.model_copy(deep=True) if account else None

    def add(self, account: Account) -> Account:
        with self._lock:
            if account.user_id in self._accounts:
                raise DuplicateKeyError(f"Account {account.user_id} already exists")
            self._accounts[account.user_id] = account.model_copy(deep=True)
            return account

    def set_balance(self, user_id: str, credits: int) -> bool:
        if credits < 0:
            return False
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return False
            account.credits = credits
            return True

    def set_subscription(self, user_id: str, tier: SubscriptionTier,
                         expiry: Optional[datetime] = None) -> bool:
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return False
            account.subscription_status = tier
            if expiry is not None:
                account.subscription_expiry = expiry
            return True

    def list(self) -> List[Account]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._accounts.values()]

    def clear(self) -> None:
        with self._lock:
            self._accounts.clear()


class InMemoryTransactionStore(TransactionStore):
    """Append-only list of frozen transactions with a commit counter."""

    def __init__(self):
        self._lock = threading.RLock()
        self._transactions: List[CreditTransaction] = []
        self._by_id: Dict[str, CreditTransaction] = {}
        self._sequence = count(1)

    def append(self, transaction: CreditTransaction) -> CreditTransaction:
        with self._lock:
            if transaction.transaction_id in self._by_id:
                raise DuplicateKeyError(
                    f"Transaction {transaction.transaction_id} already recorded"
                )
            committed = transaction.model_copy(update={"sequence": next(self._sequence)})
            self._transactions.append(committed)
            self._by_id[committed.transaction_id] = committed
            return committed

    def get(self, transaction_id: str) -> Optional[CreditTransaction]:
        with self._lock:
            return self._by_id.get(transaction_id)

    def list_for_user(self, user_id: str) -> List[CreditTransaction]:
        with self._lock:
            return [t for t in self._transactions if t.user_id == user_id]

    def all(self) -> List[CreditTransaction]:
        with self._lock:
            return list(self._transactions)

    def clear(self) -> None:
        with self._lock:
            self._transactions.clear()
            self._by_id.clear()
            self._sequence = count(1)


class InMemoryPurchaseStore(PurchaseStore):
    """Purchase records keyed by external transaction id."""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, PurchaseRecord] = {}

    def add(self, record: PurchaseRecord) -> PurchaseRecord:
        with self._lock:
            if record.external_transaction_id in self._records:
                raise DuplicateKeyError(
                    f"Purchase {record.external_transaction_id} already recorded"
                )
            self._records[record.external_transaction_id] = record.model_copy(deep=True)
            return record

    def get(self, external_transaction_id: str) -> Optional[PurchaseRecord]:
        with self._lock:
            record = self._records.get(external_transaction_id)
            return record.model_copy(deep=True) if record else None

    def mark_refunded(self, external_transaction_id: str, reason: str,
                      at: datetime) -> Optional[PurchaseRecord]:
        with self._lock:
            record = self._records.get(external_transaction_id)
            if record is None:
                return None
            record.refunded = True
            record.refunded_at = at
            record.refund_reason = reason
            return record.model_copy(deep=True)

    def list_for_user(self, user_id: str) -> List[PurchaseRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._records.values()
                    if r.user_id == user_id]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class InMemorySubscriptionStore(SubscriptionStore):
    """Subscriptions keyed by id; nothing is ever deleted."""

    def __init__(self):
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, Subscription] = {}

    def add(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.subscription_id in self._subscriptions:
                raise DuplicateKeyError(
                    f"Subscription {subscription.subscription_id} already exists"
                )
            self._subscriptions[subscription.subscription_id] = subscription.model_copy(deep=True)
            return subscription

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            sub = self._subscriptions.get(subscription_id)
            return sub.model_copy(deep=True) if sub else None

    def update(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.subscription_id not in self._subscriptions:
                raise StorageError(
                    f"Subscription {subscription.subscription_id} does not exist"
                )
            self._subscriptions[subscription.subscription_id] = subscription.model_copy(deep=True)
            return subscription

    def list_for_user(self, user_id: str) -> List[Subscription]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values()
                    if s.user_id == user_id]

    def all(self) -> List[Subscription]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._subscriptions.values()]

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()
