"""Repository interfaces for accounts, transactions, purchases and subscriptions.

The ledger, reconciler and subscription lifecycle depend only on these
interfaces. Implementations must be safe to call from several threads; the
core layers its own per-user locking on top for read-compute-write sequences.

Infrastructure failures are reported by raising ``StorageError``; the core
converts them into ``INTERNAL_ERROR`` results.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from stickercredits.models import (
    Account,
    CreditTransaction,
    PurchaseRecord,
    Subscription,
    SubscriptionTier,
)


class AccountStore(ABC):
    """User directory: identity plus a mutable credit balance per user."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[Account]:
        """Return a copy of the account, or None if it does not exist."""
        pass

    @abstractmethod
    def add(self, account: Account) -> Account:
        """Insert a new account.

        Raises:
            DuplicateKeyError: If an account with this user_id exists
        """
        pass

    @abstractmethod
    def set_balance(self, user_id: str, credits: int) -> bool:
        """Write a new balance. Returns False if the write did not happen."""
        pass

    @abstractmethod
    def set_subscription(self, user_id: str, tier: SubscriptionTier,
                         expiry: Optional[datetime] = None) -> bool:
        """Write the subscription tier (and expiry, when given)."""
        pass

    @abstractmethod
    def list(self) -> List[Account]:
        pass


class TransactionStore(ABC):
    """Append-only credit transaction log."""

    @abstractmethod
    def append(self, transaction: CreditTransaction) -> CreditTransaction:
        """Commit a transaction and return it stamped with its sequence."""
        pass

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[CreditTransaction]:
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[CreditTransaction]:
        """All of a user's transactions in commit order (oldest first)."""
        pass

    @abstractmethod
    def all(self) -> List[CreditTransaction]:
        pass


class PurchaseStore(ABC):
    """Purchase audit trail keyed by external transaction id."""

    @abstractmethod
    def add(self, record: PurchaseRecord) -> PurchaseRecord:
        """Insert a record.

        Raises:
            DuplicateKeyError: If the external transaction id is already known
        """
        pass

    @abstractmethod
    def get(self, external_transaction_id: str) -> Optional[PurchaseRecord]:
        pass

    def exists(self, external_transaction_id: str) -> bool:
        return self.get(external_transaction_id) is not None

    @abstractmethod
    def mark_refunded(self, external_transaction_id: str, reason: str,
                      at: datetime) -> Optional[PurchaseRecord]:
        """Flip the refunded flag. Returns None if the record is missing."""
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[PurchaseRecord]:
        pass


class SubscriptionStore(ABC):
    """Subscription records, kept permanently as per-user history."""

    @abstractmethod
    def add(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    def get(self, subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    def update(self, subscription: Subscription) -> Subscription:
        """Replace a stored subscription.

        Raises:
            StorageError: If no subscription with this id exists
        """
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[Subscription]:
        pass

    @abstractmethod
    def all(self) -> List[Subscription]:
        pass
