"""Subscription model and its status state machine."""

import math
from datetime import datetime, UTC
from enum import Enum
from typing import Dict, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a subscription.

    Status Flow:
        PENDING → ACTIVE → CANCELED → EXPIRED
                         ↘ EXPIRED

    A CANCELED subscription keeps its benefits until ``end_date`` (grace
    period) and may be renewed back to ACTIVE while still in grace. EXPIRED is
    terminal; the user must start a new subscription.
    """
    PENDING = "pending"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS: Dict[SubscriptionStatus, Set[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED},
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.EXPIRED,
    },
    SubscriptionStatus.CANCELED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED},
    SubscriptionStatus.EXPIRED: set(),
}


def validate_transition(current: SubscriptionStatus, new: SubscriptionStatus) -> None:
    """Raise when a status change is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current.value} -> {new.value}")


def _subscription_id() -> str:
    return f"sub_{uuid4().hex}"


class Subscription(BaseModel):
    """A user's paid plan over one or more billing periods.

    Attributes:
        subscription_id (str): Unique id, ``sub_<hex>``
        user_id (str): Subscriber
        plan_id (str): Catalog plan id
        status (SubscriptionStatus): Current lifecycle status
        start_date (datetime): When the subscription began
        end_date (datetime): End of the paid period; benefits stop here
        auto_renew (bool): False once canceled
        last_payment_date (Optional[datetime]): Last successful payment
        next_payment_date (Optional[datetime]): Next expected payment
        last_payment_transaction_id (Optional[str]): Store payment id that
            paid for the current period
        canceled_at (Optional[datetime]): Cancellation time
        cancel_reason (Optional[str]): Reason given on cancellation
        expired_at (Optional[datetime]): When the expiry sweep closed it
    """

    subscription_id: str = Field(default_factory=_subscription_id, description="Subscription ID")
    user_id: str = Field(description="Subscriber")
    plan_id: str = Field(description="Plan ID")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING, description="Status")
    start_date: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Start")
    end_date: datetime = Field(description="End of paid period")
    auto_renew: bool = Field(default=True, description="Renews automatically")
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    last_payment_transaction_id: Optional[str] = None
    canceled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        """Active or canceled-in-grace, with the paid period not yet over."""
        return (
            self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED)
            and self.end_date > now
        )

    def days_remaining(self, now: datetime) -> int:
        return math.ceil((self.end_date - now).total_seconds() / 86400)

    def transition_to(self, status: SubscriptionStatus) -> None:
        validate_transition(self.status, status)
        self.status = status
