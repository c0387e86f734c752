"""Purchase models - store receipts and the purchase audit trail."""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Stores whose receipts can be validated."""
    IOS = "ios"
    ANDROID = "android"


class PurchaseReceipt(BaseModel):
    """An in-app purchase receipt as submitted by the client.

    ``platform`` is kept as a plain string so that an unknown store is reported
    as ``UNSUPPORTED_PLATFORM`` by the reconciler instead of failing model
    validation.

    Attributes:
        platform (str): ``ios`` or ``android``
        receipt_data (str): Opaque receipt payload (Play Store: JSON)
        product_id (str): Credit package id being purchased
        transaction_id (Optional[str]): Store transaction id reported by the
            client. The validator's id is authoritative.
        purchase_date (Optional[datetime]): Purchase time reported by the client
    """

    platform: str = Field(description="Store platform")
    receipt_data: str = Field(description="Opaque receipt payload")
    product_id: str = Field(description="Purchased product ID")
    transaction_id: Optional[str] = Field(default=None, description="Client-reported store transaction ID")
    purchase_date: Optional[datetime] = Field(default=None, description="Client-reported purchase time")


class PurchaseRecord(BaseModel):
    """One external payment attributed to a user.

    The external transaction id is the de-duplication key: at most one record
    exists per id. ``refunded`` is the only field that changes after creation
    and it flips from False to True exactly once.

    Attributes:
        external_transaction_id (str): Store-issued payment id
        user_id (str): User credited for this payment
        product_id (str): Credit package or subscription plan id
        refunded (bool): Set once the purchase has been reversed
        refunded_at (Optional[datetime]): When the reversal happened
        refund_reason (Optional[str]): Reason given for the reversal
        created_at (datetime): UTC creation timestamp
    """

    external_transaction_id: str = Field(description="Store transaction ID")
    user_id: str = Field(description="Credited user")
    product_id: str = Field(description="Package or plan ID")
    refunded: bool = Field(default=False, description="Purchase reversed")
    refunded_at: Optional[datetime] = Field(default=None, description="Reversal time")
    refund_reason: Optional[str] = Field(default=None, description="Reversal reason")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Creation timestamp"
    )
