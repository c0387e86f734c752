"""Account model - a user's credit balance and subscription tier.

The account is owned by the user directory. Its ``credits`` field is written
only by the ledger; its subscription fields are written only by the
subscription lifecycle.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionTier(str, Enum):
    """Tier flag mirrored onto the account for cheap premium checks."""
    FREE = "free"
    PREMIUM = "premium"


class Account(BaseModel):
    """A user's consumable credit balance.

    Credits are whole integers; a balance is never negative. ``initial_credits``
    records the balance the account was opened with, so that at any time::

        credits == initial_credits + sum(effect of every committed transaction)

    Attributes:
        user_id (str): Unique user identifier
        email (Optional[str]): Contact address, informational only
        credits (int): Current balance. Must be >= 0
        initial_credits (int): Opening balance (signup grant). Must be >= 0
        subscription_status (SubscriptionTier): ``free`` or ``premium``
        subscription_expiry (Optional[datetime]): End of the paid period last
            granted, if any
        created_at (datetime): UTC timestamp of account creation
    """

    user_id: str = Field(description="Unique user identifier")
    email: Optional[str] = Field(default=None, description="Contact email")
    credits: int = Field(default=0, ge=0, description="Current credit balance")
    initial_credits: int = Field(default=0, ge=0, description="Opening balance")
    subscription_status: SubscriptionTier = Field(
        default=SubscriptionTier.FREE,
        description="Subscription tier"
    )
    subscription_expiry: Optional[datetime] = Field(
        default=None,
        description="End of the current paid period"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Account creation timestamp"
    )

    def can_spend(self, amount: int) -> bool:
        """Check if the balance covers ``amount`` credits."""
        return self.credits >= amount

    @property
    def is_premium(self) -> bool:
        return self.subscription_status == SubscriptionTier.PREMIUM
