"""Sticker Credits - credit ledger, purchases and subscriptions for the sticker app."""

__version__ = "0.1.0"

# Main service interface
from stickercredits.service import CreditsService
from stickercredits.config import Settings, get_settings

# Core models (for advanced usage)
from stickercredits.models import (
    Account,
    SubscriptionTier,
    CreditTransaction,
    TransactionType,
    Platform,
    PurchaseReceipt,
    PurchaseRecord,
    Subscription,
    SubscriptionStatus,
)
from stickercredits.errors import ErrorCode, OperationError

# Components (for advanced usage)
from stickercredits.catalog import Catalog, CreditPackage, SubscriptionPlan, SubscriptionBenefits
from stickercredits.ledger_manager import LedgerManager, CreditOperationResult, CreditValidationResult
from stickercredits.purchase_reconciler import PurchaseReconciler, PurchaseResult
from stickercredits.subscription_manager import (
    SubscriptionManager,
    SubscriptionResult,
    SubscriptionStatusResult,
)

__all__ = [
    # Main service
    "CreditsService",
    "Settings",
    "get_settings",
    # Models
    "Account",
    "SubscriptionTier",
    "CreditTransaction",
    "TransactionType",
    "Platform",
    "PurchaseReceipt",
    "PurchaseRecord",
    "Subscription",
    "SubscriptionStatus",
    "ErrorCode",
    "OperationError",
    # Components
    "Catalog",
    "CreditPackage",
    "SubscriptionPlan",
    "SubscriptionBenefits",
    "LedgerManager",
    "CreditOperationResult",
    "CreditValidationResult",
    "PurchaseReconciler",
    "PurchaseResult",
    "SubscriptionManager",
    "SubscriptionResult",
    "SubscriptionStatusResult",
]
