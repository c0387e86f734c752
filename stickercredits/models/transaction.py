"""Credit transaction models - the append-only record of balance changes.

Every change to an account balance is paired with exactly one
``CreditTransaction``. Transactions are frozen once created and are never
updated or deleted, so the log doubles as the audit trail from which the
balance can be recomputed.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(str, Enum):
    """Kinds of credit transactions and their effect on the balance.

    Attributes:
        PURCHASE (str): Credits granted (package purchase, subscription
            grant). Effect: +amount
        CONSUMPTION (str): Credits spent (sticker generation, purchase
            reversal). Effect: -amount
        REFUND (str): Credits returned to the user. Effect: +amount
    """
    PURCHASE = "purchase"
    CONSUMPTION = "consumption"
    REFUND = "refund"

    def effect(self, amount: int) -> int:
        """Signed balance effect of a transaction of this kind.

        Example:
            ```python
            TransactionType.CONSUMPTION.effect(3)  # -3
            TransactionType.REFUND.effect(3)       # 3
            ```
        """
        if self is TransactionType.CONSUMPTION:
            return -amount
        return amount


def _transaction_id() -> str:
    return f"txn_{uuid4().hex}"


class CreditTransaction(BaseModel):
    """A single committed change to a user's credit balance.

    Ordering:
        ``sequence`` is stamped by the transaction store when the record is
        appended. It reflects commit order, which is what history queries sort
        on; ``created_at`` is informational and may tie under load.

    Attributes:
        transaction_id (str): Unique id, ``txn_<hex>``
        user_id (str): Owner of the balance that changed
        kind (TransactionType): purchase, consumption or refund
        amount (int): Positive number of credits
        description (str): Human-readable reason
        related_ids (List[str]): Related item ids (e.g. sticker ids)
        reverses_transaction_id (Optional[str]): For linked refunds, the
            consumption this refund compensates
        balance_after (int): Balance immediately after this transaction
        sequence (int): Commit position assigned by the store
        created_at (datetime): UTC creation timestamp
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(default_factory=_transaction_id, description="Transaction ID")
    user_id: str = Field(description="Account this transaction belongs to")
    kind: TransactionType = Field(description="Transaction kind")
    amount: int = Field(gt=0, description="Credits moved")
    description: str = Field(description="Reason for the change")
    related_ids: List[str] = Field(default_factory=list, description="Related item IDs")
    reverses_transaction_id: Optional[str] = Field(
        default=None,
        description="Consumption compensated by this refund"
    )
    balance_after: int = Field(ge=0, description="Balance after this transaction")
    sequence: int = Field(default=0, ge=0, description="Commit order")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Creation timestamp"
    )

    @property
    def balance_effect(self) -> int:
        return self.kind.effect(self.amount)
