"""Credits Service - High-level API for the sticker app's credits core.

This module provides the main service interface that wraps all internal
components (ledger, purchase reconciler, subscription manager) into a single
object for request handlers and background jobs.
"""

from datetime import datetime, UTC
from typing import Callable, Dict, Any, List, Optional

from stickercredits.catalog import Catalog, CreditPackage, SubscriptionBenefits, SubscriptionPlan
from stickercredits.config import Settings, get_settings
from stickercredits.ledger_manager import CreditOperationResult, CreditValidationResult, LedgerManager
from stickercredits.locking import KeyedLocks
from stickercredits.models import Account, CreditTransaction, PurchaseReceipt, PurchaseRecord, Subscription
from stickercredits.purchase_reconciler import PurchaseReconciler, PurchaseResult
from stickercredits.receipts import ReceiptValidatorRegistry, build_registry
from stickercredits.stores import (
    InMemoryAccountStore,
    InMemoryPurchaseStore,
    InMemorySubscriptionStore,
    InMemoryTransactionStore,
)
from stickercredits.subscription_manager import (
    SubscriptionManager,
    SubscriptionResult,
    SubscriptionStatusResult,
)


class CreditsService:
    """High-level service for credit, purchase and subscription operations.

    Key Features:
    - **Accounts**: Open accounts with the signup grant
    - **Credits**: Validate, deduct, add and refund credits
    - **Purchases**: Turn store receipts into credit packages, exactly once
    - **Subscriptions**: Create, cancel, renew and expire premium plans
    - **History**: Transaction and purchase history, newest first

    Usage Example:
        ```python
        service = CreditsService()

        service.open_account("alice", email="alice@example.com")  # 10 credits

        # Generate a sticker
        result = service.deduct_credits("alice", 3, "Sticker generation")
        print(result.new_balance)  # 7

        # Buy the Popular Pack
        receipt = PurchaseReceipt(platform="ios", receipt_data="MIIT...receipt",
                                  product_id="credits_25", transaction_id="1000000123")
        purchase = service.process_purchase("alice", receipt)

        # Subscribe
        service.create_subscription("alice", "premium_monthly", "GPA.1234-5678")
        print(service.get_benefits("alice").no_ads)  # True
        ```

    Attributes:
        settings (Settings): Runtime configuration
        catalog (Catalog): Credit packages and subscription plans
        ledger (LedgerManager): Credit ledger
        validators (ReceiptValidatorRegistry): Per-platform receipt validators
        purchases (PurchaseReconciler): Receipt reconciliation
        subscriptions (SubscriptionManager): Subscription lifecycle
    """

    def __init__(self, settings: Optional[Settings] = None,
                 catalog: Optional[Catalog] = None,
                 validators: Optional[ReceiptValidatorRegistry] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize the service with in-memory stores.

        Args:
            settings: Runtime configuration; defaults to the process settings
            catalog: Product catalog; defaults to the built-in packages and plans
            validators: Receipt validators; defaults to ``build_registry(settings)``
            clock: Source of "now" for purchases and subscriptions

        Examples:
            # Defaults from environment
            service = CreditsService()

            # Linked refunds, custom signup grant
            service = CreditsService(Settings(refund_mode="linked", signup_credits=5))
        """
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.catalog = catalog or Catalog()

        self.account_store = InMemoryAccountStore()
        self.transaction_store = InMemoryTransactionStore()
        self.purchase_store = InMemoryPurchaseStore()
        self.subscription_store = InMemorySubscriptionStore()

        self.ledger = LedgerManager(
            self.account_store,
            self.transaction_store,
            user_locks=KeyedLocks(),
            refund_mode=self.settings.refund_mode,
            signup_credits=self.settings.signup_credits,
        )
        self.validators = validators or build_registry(self.settings)
        self.purchases = PurchaseReconciler(
            self.ledger,
            self.purchase_store,
            self.validators,
            self.catalog,
            clock=self.clock,
        )
        self.subscriptions = SubscriptionManager(
            self.ledger,
            self.account_store,
            self.subscription_store,
            self.purchases,
            self.catalog,
            clock=self.clock,
        )

    # ========== Accounts ==========

    def open_account(self, user_id: str, email: Optional[str] = None,
                     initial_credits: Optional[int] = None) -> Account:
        """Open an account with the signup grant.

        Raises:
            ValueError: If the account already exists
        """
        return self.ledger.open_account(user_id, email=email, initial_credits=initial_credits)

    def get_account(self, user_id: str) -> Optional[Account]:
        return self.ledger.get_account(user_id)

    # ========== Credits ==========

    def get_balance(self, user_id: str) -> Optional[int]:
        """Current balance, or None for an unknown user."""
        return self.ledger.balance(user_id)

    def validate_credits(self, user_id: str, required_amount: int) -> CreditValidationResult:
        return self.ledger.validate(user_id, required_amount)

    def deduct_credits(self, user_id: str, amount: int, description: str,
                       related_ids: Optional[List[str]] = None) -> CreditOperationResult:
        """Spend credits, e.g. for a sticker generation.

        Example:
            ```python
            result = service.deduct_credits("alice", 1, "Sticker generation",
                                            related_ids=["stk_42"])
            if not result.success:
                print(result.error.message)
            ```
        """
        return self.ledger.deduct(user_id, amount, description, related_ids)

    def add_credits(self, user_id: str, amount: int, description: str,
                    related_ids: Optional[List[str]] = None) -> CreditOperationResult:
        return self.ledger.add(user_id, amount, description, related_ids)

    def refund_credits(self, user_id: str, amount: int, description: str,
                       related_ids: Optional[List[str]] = None,
                       reverses_transaction_id: Optional[str] = None) -> CreditOperationResult:
        """Return credits for a failed generation."""
        return self.ledger.refund(user_id, amount, description, related_ids,
                                  reverses_transaction_id=reverses_transaction_id)

    def get_transaction_history(self, user_id: str,
                                limit: Optional[int] = None) -> List[CreditTransaction]:
        """Transactions newest first, optionally truncated to ``limit``."""
        history = self.ledger.history(user_id)
        return history[:limit] if limit is not None else history

    def get_credit_summary(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.ledger.summary(user_id)

    # ========== Purchases ==========

    def list_packages(self) -> List[CreditPackage]:
        return self.catalog.list_packages()

    def list_plans(self) -> List[SubscriptionPlan]:
        return self.catalog.list_plans()

    def process_purchase(self, user_id: str, receipt: PurchaseReceipt) -> PurchaseResult:
        return self.purchases.process_purchase(user_id, receipt)

    def process_refund(self, user_id: str, external_transaction_id: str,
                       reason: str) -> PurchaseResult:
        return self.purchases.process_refund(user_id, external_transaction_id, reason)

    def get_purchase_history(self, user_id: str) -> List[PurchaseRecord]:
        return self.purchases.purchase_history(user_id)

    # ========== Subscriptions ==========

    def create_subscription(self, user_id: str, plan_id: str,
                            payment_transaction_id: str) -> SubscriptionResult:
        return self.subscriptions.create(user_id, plan_id, payment_transaction_id)

    def cancel_subscription(self, user_id: str, reason: str) -> SubscriptionResult:
        return self.subscriptions.cancel(user_id, reason)

    def renew_subscription(self, user_id: str,
                           payment_transaction_id: str) -> SubscriptionResult:
        return self.subscriptions.renew(user_id, payment_transaction_id)

    def get_subscription_status(self, user_id: str) -> SubscriptionStatusResult:
        return self.subscriptions.get_active(user_id)

    def get_benefits(self, user_id: str) -> SubscriptionBenefits:
        return self.subscriptions.benefits(user_id)

    def get_subscription_history(self, user_id: str) -> List[Subscription]:
        return self.subscriptions.history(user_id)

    def feature_access(self, user_id: str, feature: str) -> Optional[Any]:
        return self.subscriptions.feature_access(user_id, feature)

    def process_expired_subscriptions(self) -> List[Subscription]:
        return self.subscriptions.process_expired()

    # ========== Utility Methods ==========

    def clear_all(self) -> None:
        """Clear all data from the service.

        Warning:
            This is for testing only. Removes all accounts, transactions,
            purchases and subscriptions.
        """
        self.account_store.clear()
        self.transaction_store.clear()
        self.purchase_store.clear()
        self.subscription_store.clear()
