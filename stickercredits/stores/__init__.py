"""Storage interfaces and their in-memory implementations."""

from stickercredits.stores.base import (
    AccountStore,
    PurchaseStore,
    SubscriptionStore,
    TransactionStore,
)
from stickercredits.stores.memory import (
    InMemoryAccountStore,
    InMemoryPurchaseStore,
    InMemorySubscriptionStore,
    InMemoryTransactionStore,
)

__all__ = [
    "AccountStore",
    "PurchaseStore",
    "SubscriptionStore",
    "TransactionStore",
    "InMemoryAccountStore",
    "InMemoryPurchaseStore",
    "InMemorySubscriptionStore",
    "InMemoryTransactionStore",
]
