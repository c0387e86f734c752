"""Subscription Manager - manages subscription lifecycle and state.

The SubscriptionManager provides high-level subscription operations:
- Creating subscriptions (granting the first period's credits)
- Canceling subscriptions (benefits continue until the period ends)
- Renewing subscriptions (extending from the current end date)
- Reporting the live subscription and the benefits it grants
- Expiring subscriptions whose paid period is over

Balance changes always go through the ledger; payment ids are attributed
through the purchase reconciler so a replayed payment cannot grant a second
period.
"""

import asyncio
import threading
from datetime import datetime, UTC
from typing import Any, Callable, List, Optional

from stickercredits.catalog import (
    FREE_TIER_BENEFITS,
    Catalog,
    SubscriptionBenefits,
    SubscriptionPlan,
    add_period,
)
from stickercredits.errors import ErrorCode, OperationError, StorageError
from stickercredits.ledger_manager import LedgerManager
from stickercredits.logging import get_logger, log_context
from stickercredits.models import Subscription, SubscriptionStatus, SubscriptionTier
from stickercredits.purchase_reconciler import PurchaseReconciler
from stickercredits.stores import AccountStore, SubscriptionStore


logger = get_logger("subscriptions")

FEATURES = ("priority-processing", "exclusive-styles", "no-ads", "monthly-credits")


class SubscriptionResult:
    """Result of a subscription operation.

    Attributes:
        success (bool): True if operation succeeded
        subscription (Optional[Subscription]): The subscription after the operation
        error (Optional[OperationError]): Failure detail if not successful
    """

    def __init__(self, success: bool, subscription: Optional[Subscription] = None,
                 error: Optional[OperationError] = None):
        self.success = success
        self.subscription = subscription
        self.error = error

    @classmethod
    def failure(cls, code: ErrorCode, message: str,
                retryable: Optional[bool] = None) -> "SubscriptionResult":
        return cls(success=False, error=OperationError.of(code, message, retryable))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def __repr__(self) -> str:
        if self.success:
            return f"SubscriptionResult(success=True, subscription_id={self.subscription.subscription_id})"
        return f"SubscriptionResult(success=False, error={self.error_code})"


class SubscriptionStatusResult:
    """The user's live subscription, if any.

    Attributes:
        valid (bool): True if a live subscription exists
        subscription (Optional[Subscription]): The live record
        plan (Optional[SubscriptionPlan]): Its catalog plan
        days_remaining (Optional[int]): Whole days left, rounded up
        error (Optional[OperationError]): Why there is no live subscription
    """

    def __init__(self, valid: bool, subscription: Optional[Subscription] = None,
                 plan: Optional[SubscriptionPlan] = None,
                 days_remaining: Optional[int] = None,
                 error: Optional[OperationError] = None):
        self.valid = valid
        self.subscription = subscription
        self.plan = plan
        self.days_remaining = days_remaining
        self.error = error

    def __repr__(self) -> str:
        if self.valid:
            return (f"SubscriptionStatusResult(valid=True, "
                    f"status={self.subscription.status.value}, days_remaining={self.days_remaining})")
        return f"SubscriptionStatusResult(valid=False, error={self.error.code if self.error else None})"


class SubscriptionManager:
    """Manager for subscription operations and lifecycle.

    Live subscription:
        A subscription is live while its status is ACTIVE or CANCELED and its
        ``end_date`` is in the future. A user holds at most one live
        subscription; ``create`` enforces this under the user's lock.

    Lifecycle:
    1. create: PENDING → ACTIVE, first period's credits granted
    2. cancel: ACTIVE → CANCELED, benefits kept until ``end_date``
    3. renew: ACTIVE/CANCELED → ACTIVE, ``end_date`` extended by one period
    4. process_expired: ACTIVE/CANCELED → EXPIRED once ``end_date`` passed

    Usage Example:
        ```python
        manager = SubscriptionManager(ledger, accounts, InMemorySubscriptionStore(),
                                      reconciler, Catalog())

        result = manager.create("alice", "premium_monthly", "GPA.1234-5678")
        if result.success:
            print(f"Active until {result.subscription.end_date}")

        manager.cancel("alice", "Too expensive")
        status = manager.get_active("alice")  # still valid until end_date
        ```
    """

    def __init__(self, ledger: LedgerManager, accounts: AccountStore,
                 subscriptions: SubscriptionStore, reconciler: PurchaseReconciler,
                 catalog: Catalog, clock: Callable[[], datetime] = lambda: datetime.now(UTC)):
        """Initialize the subscription manager.

        Args:
            ledger (LedgerManager): Ledger for credit grants; its user locks
                serialize subscription changes too
            accounts (AccountStore): User directory holding the tier flag
            subscriptions (SubscriptionStore): Subscription records
            reconciler (PurchaseReconciler): Payment attribution and replay guard
            catalog (Catalog): Plan lookup
            clock (Callable[[], datetime]): Source of "now"
        """
        self.ledger = ledger
        self.accounts = accounts
        self.subscriptions = subscriptions
        self.reconciler = reconciler
        self.catalog = catalog
        self.clock = clock
        self.user_locks = ledger.user_locks
        self._sweep_lock = threading.Lock()

    def _live_subscription(self, user_id: str, now: datetime) -> Optional[Subscription]:
        live = [s for s in self.subscriptions.list_for_user(user_id) if s.is_live(now)]
        if not live:
            return None
        return max(live, key=lambda s: s.end_date)

    def _set_tier(self, user_id: str, tier: SubscriptionTier,
                  expiry: Optional[datetime] = None) -> bool:
        updated = self.accounts.set_subscription(user_id, tier, expiry)
        if not updated:
            logger.warning("account tier write refused user_id=%s tier=%s", user_id, tier.value)
        return updated

    def create(self, user_id: str, plan_id: str,
               payment_transaction_id: str) -> SubscriptionResult:
        """Start a subscription and grant its first period's credits.

        Args:
            user_id (str): Subscriber
            plan_id (str): Catalog plan id
            payment_transaction_id (str): Store payment id for the first period

        Returns:
            SubscriptionResult: On failure one of ``INVALID_PLAN``,
            ``USER_NOT_FOUND``, ``EXISTING_SUBSCRIPTION``,
            ``DUPLICATE_TRANSACTION`` or a propagated ledger error
        """
        plan = self.catalog.get_plan(plan_id)
        if plan is None:
            return SubscriptionResult.failure(ErrorCode.INVALID_PLAN, "Invalid subscription plan")

        with self.user_locks.hold(user_id), log_context(user_id, "subscription_create"):
            try:
                if self.accounts.get(user_id) is None:
                    return SubscriptionResult.failure(ErrorCode.USER_NOT_FOUND, "User not found")

                now = self.clock()
                if self._live_subscription(user_id, now) is not None:
                    return SubscriptionResult.failure(
                        ErrorCode.EXISTING_SUBSCRIPTION, "User already has an active subscription"
                    )

                with self.reconciler.hold_payment(payment_transaction_id):
                    if self.reconciler.is_processed(payment_transaction_id):
                        logger.warning("duplicate subscription payment rejected payment_transaction_id=%s",
                                       payment_transaction_id)
                        return SubscriptionResult.failure(
                            ErrorCode.DUPLICATE_TRANSACTION, "Transaction already processed"
                        )

                    end_date = add_period(now, plan.duration)
                    subscription = Subscription(
                        user_id=user_id,
                        plan_id=plan.id,
                        status=SubscriptionStatus.PENDING,
                        start_date=now,
                        end_date=end_date,
                        auto_renew=True,
                        last_payment_date=now,
                        next_payment_date=end_date,
                        last_payment_transaction_id=payment_transaction_id,
                    )

                    grant = self.ledger.add(user_id, plan.monthly_credits,
                                            f"Subscription credits: {plan.name}")
                    if not grant.success:
                        return SubscriptionResult(success=False, error=grant.error)

                    subscription.transition_to(SubscriptionStatus.ACTIVE)
                    try:
                        self.subscriptions.add(subscription)
                        self.reconciler.record_payment(user_id, payment_transaction_id, plan.id)
                        self._set_tier(user_id, SubscriptionTier.PREMIUM, end_date)
                    except StorageError:
                        logger.exception("subscription write failed after credit grant")
                        return self._undo_grant(user_id, plan, subscription, payment_transaction_id)
            except StorageError:
                logger.exception("subscription create failed")
                return SubscriptionResult.failure(ErrorCode.INTERNAL_ERROR, "Subscription creation failed")

            logger.info("subscription created subscription_id=%s plan_id=%s end_date=%s",
                        subscription.subscription_id, plan.id, end_date.isoformat())
            return SubscriptionResult(success=True, subscription=subscription)

    def _undo_grant(self, user_id: str, plan: SubscriptionPlan, subscription: Subscription,
                    payment_transaction_id: str) -> SubscriptionResult:
        reversal = self.ledger.deduct(
            user_id, plan.monthly_credits,
            f"Reversal: subscription {subscription.subscription_id} could not be recorded",
        )
        try:
            stored = self.subscriptions.get(subscription.subscription_id)
            if stored is not None and stored.status is not SubscriptionStatus.EXPIRED:
                stored.transition_to(SubscriptionStatus.EXPIRED)
                stored.expired_at = self.clock()
                self.subscriptions.update(stored)
        except StorageError:
            logger.exception("could not close orphaned subscription subscription_id=%s",
                             subscription.subscription_id)
            return SubscriptionResult.failure(
                ErrorCode.INTERNAL_ERROR, "Subscription could not be recorded", retryable=False
            )
        return SubscriptionResult.failure(
            ErrorCode.INTERNAL_ERROR, "Subscription could not be recorded",
            # The grant and its reversal both stay in the log. A recorded payment id
            # would make the retry a duplicate.
            retryable=reversal.success and not self.reconciler.is_processed(payment_transaction_id),
        )

    def cancel(self, user_id: str, reason: str) -> SubscriptionResult:
        """Stop auto-renewal. Benefits stay until the current ``end_date``.

        Canceling an already canceled subscription returns it unchanged.
        """
        with self.user_locks.hold(user_id), log_context(user_id, "subscription_cancel"):
            try:
                now = self.clock()
                subscription = self._live_subscription(user_id, now)
                if subscription is None:
                    return SubscriptionResult.failure(
                        ErrorCode.NO_ACTIVE_SUBSCRIPTION, "No active subscription found"
                    )
                if subscription.status is SubscriptionStatus.CANCELED:
                    return SubscriptionResult(success=True, subscription=subscription)

                subscription.transition_to(SubscriptionStatus.CANCELED)
                subscription.auto_renew = False
                subscription.canceled_at = now
                subscription.cancel_reason = reason
                subscription.next_payment_date = None
                self.subscriptions.update(subscription)
            except StorageError:
                logger.exception("subscription cancel failed")
                return SubscriptionResult.failure(
                    ErrorCode.INTERNAL_ERROR, "Subscription cancellation failed"
                )

            logger.info("subscription canceled subscription_id=%s access_until=%s",
                        subscription.subscription_id, subscription.end_date.isoformat())
            return SubscriptionResult(success=True, subscription=subscription)

    def renew(self, user_id: str, payment_transaction_id: str) -> SubscriptionResult:
        """Extend the live subscription by one period and grant its credits.

        The new ``end_date`` is one period after the current ``end_date``, not
        after now, so unused time is never lost. Renewing a canceled
        subscription in its grace period reactivates it.
        """
        with self.user_locks.hold(user_id), log_context(user_id, "subscription_renew"):
            try:
                now = self.clock()
                subscription = self._live_subscription(user_id, now)
                if subscription is None:
                    return SubscriptionResult.failure(
                        ErrorCode.NO_SUBSCRIPTION_TO_RENEW, "No subscription found to renew"
                    )

                plan = self.catalog.get_plan(subscription.plan_id)
                if plan is None:
                    return SubscriptionResult.failure(
                        ErrorCode.INVALID_PLAN, "Subscription plan no longer exists"
                    )

                with self.reconciler.hold_payment(payment_transaction_id):
                    if self.reconciler.is_processed(payment_transaction_id):
                        logger.warning("duplicate renewal payment rejected payment_transaction_id=%s",
                                       payment_transaction_id)
                        return SubscriptionResult.failure(
                            ErrorCode.DUPLICATE_TRANSACTION, "Transaction already processed"
                        )

                    previous = subscription.model_copy(deep=True)
                    new_end_date = add_period(subscription.end_date, plan.duration)
                    grant = self.ledger.add(user_id, plan.monthly_credits,
                                            f"Subscription renewal credits: {plan.name}")
                    if not grant.success:
                        return SubscriptionResult(success=False, error=grant.error)

                    subscription.transition_to(SubscriptionStatus.ACTIVE)
                    subscription.end_date = new_end_date
                    subscription.auto_renew = True
                    subscription.last_payment_date = now
                    subscription.next_payment_date = new_end_date
                    subscription.last_payment_transaction_id = payment_transaction_id
                    try:
                        self.subscriptions.update(subscription)
                        self.reconciler.record_payment(user_id, payment_transaction_id, plan.id)
                        self._set_tier(user_id, SubscriptionTier.PREMIUM, new_end_date)
                    except StorageError:
                        logger.exception("subscription renewal write failed after credit grant")
                        return self._undo_renewal(user_id, plan, previous, payment_transaction_id)
            except StorageError:
                logger.exception("subscription renew failed")
                return SubscriptionResult.failure(ErrorCode.INTERNAL_ERROR, "Subscription renewal failed")

            logger.info("subscription renewed subscription_id=%s end_date=%s",
                        subscription.subscription_id, new_end_date.isoformat())
            return SubscriptionResult(success=True, subscription=subscription)

    def _undo_renewal(self, user_id: str, plan: SubscriptionPlan, previous: Subscription,
                      payment_transaction_id: str) -> SubscriptionResult:
        reversal = self.ledger.deduct(
            user_id, plan.monthly_credits,
            f"Reversal: renewal of {previous.subscription_id} could not be recorded",
        )
        try:
            self.subscriptions.update(previous)
        except StorageError:
            logger.exception("could not restore subscription period subscription_id=%s",
                             previous.subscription_id)
            return SubscriptionResult.failure(
                ErrorCode.INTERNAL_ERROR, "Subscription renewal could not be recorded", retryable=False
            )
        return SubscriptionResult.failure(
            ErrorCode.INTERNAL_ERROR, "Subscription renewal could not be recorded",
            # The grant and its reversal both stay in the log. The period is back
            # to its old end date unless the payment id was already recorded.
            retryable=reversal.success and not self.reconciler.is_processed(payment_transaction_id),
        )

    def get_active(self, user_id: str) -> SubscriptionStatusResult:
        """The live subscription with its plan and days remaining."""
        now = self.clock()
        subscription = self._live_subscription(user_id, now)
        if subscription is None:
            return SubscriptionStatusResult(
                valid=False,
                error=OperationError.of(ErrorCode.NO_ACTIVE_SUBSCRIPTION, "No active subscription found"),
            )

        plan = self.catalog.get_plan(subscription.plan_id)
        if plan is None:
            return SubscriptionStatusResult(
                valid=False,
                error=OperationError.of(ErrorCode.INVALID_PLAN, "Subscription plan no longer exists"),
            )

        return SubscriptionStatusResult(
            valid=True,
            subscription=subscription,
            plan=plan,
            days_remaining=subscription.days_remaining(now),
        )

    def benefits(self, user_id: str) -> SubscriptionBenefits:
        """Plan benefits for a live subscriber, otherwise the free tier."""
        status = self.get_active(user_id)
        if not status.valid or status.plan is None:
            return FREE_TIER_BENEFITS.model_copy(deep=True)
        return self.catalog.benefits_for(status.plan)

    def has_premium(self, user_id: str) -> bool:
        return self.get_active(user_id).valid

    def feature_access(self, user_id: str, feature: str) -> Optional[Any]:
        """Value of one benefit, or None for an unknown feature name."""
        benefits = self.benefits(user_id)
        return {
            "priority-processing": benefits.priority_processing,
            "exclusive-styles": benefits.exclusive_styles,
            "no-ads": benefits.no_ads,
            "monthly-credits": benefits.monthly_credits,
        }.get(feature)

    def process_expired(self) -> List[Subscription]:
        """Expire every active or canceled subscription whose period is over.

        Each candidate is re-read under its user's lock, so a renewal that
        lands during the sweep wins. The account drops to the free tier only
        if the user has no other live subscription. A storage fault on one
        record is logged and the sweep moves on to the next.

        Returns:
            List[Subscription]: The subscriptions that were expired
        """
        with self._sweep_lock:
            now = self.clock()
            try:
                candidates = [
                    s for s in self.subscriptions.all()
                    if s.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED)
                    and s.end_date <= now
                ]
            except StorageError:
                logger.exception("expiry sweep could not list subscriptions")
                return []

            expired: List[Subscription] = []
            for candidate in candidates:
                with self.user_locks.hold(candidate.user_id), \
                        log_context(candidate.user_id, "subscription_expire"):
                    try:
                        current = self.subscriptions.get(candidate.subscription_id)
                        if (current is None
                                or current.status not in (SubscriptionStatus.ACTIVE,
                                                          SubscriptionStatus.CANCELED)
                                or current.end_date > now):
                            continue

                        current.transition_to(SubscriptionStatus.EXPIRED)
                        current.auto_renew = False
                        current.next_payment_date = None
                        current.expired_at = now
                        self.subscriptions.update(current)
                    except StorageError:
                        logger.exception("could not expire subscription subscription_id=%s",
                                         candidate.subscription_id)
                        continue
                    expired.append(current)

                    try:
                        if self._live_subscription(current.user_id, now) is None:
                            self._set_tier(current.user_id, SubscriptionTier.FREE)
                    except StorageError:
                        logger.exception("could not downgrade account after expiry")

            if expired:
                logger.info("expired %s subscriptions", len(expired))
            return expired

    # ========== Queries ==========

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def history(self, user_id: str) -> List[Subscription]:
        """All of a user's subscriptions, newest first."""
        return sorted(self.subscriptions.list_for_user(user_id),
                      key=lambda s: s.start_date, reverse=True)


async def run_expiry_sweeper(manager: SubscriptionManager, interval: float) -> None:
    """Call ``process_expired`` every ``interval`` seconds until cancelled.

    The sweep itself is blocking, so it runs in a worker thread.
    """
    while True:
        try:
            await asyncio.to_thread(manager.process_expired)
        except StorageError:
            logger.exception("expiry sweep failed")
        await asyncio.sleep(interval)
