"""Core data models for the credits core."""

from stickercredits.models.account import Account, SubscriptionTier
from stickercredits.models.transaction import CreditTransaction, TransactionType
from stickercredits.models.purchase import Platform, PurchaseReceipt, PurchaseRecord
from stickercredits.models.subscription import (
    Subscription,
    SubscriptionStatus,
    validate_transition,
)

__all__ = [
    "Account",
    "SubscriptionTier",
    "CreditTransaction",
    "TransactionType",
    "Platform",
    "PurchaseReceipt",
    "PurchaseRecord",
    "Subscription",
    "SubscriptionStatus",
    "validate_transition",
]
