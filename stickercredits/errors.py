"""Error taxonomy shared by every core operation.

Guard and validation failures never cross the core boundary as exceptions.
They are returned inside a result envelope as an ``OperationError`` carrying a
stable code, a human-readable message and an explicit ``retryable`` flag that
HTTP handlers pass through to clients.

Exceptions defined here are raised only by store implementations; the core
catches them at its boundary and converts them into ``INTERNAL_ERROR``.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Stable failure codes returned by the ledger, reconciler and subscriptions."""
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    INSUFFICIENT_CREDITS_FOR_REFUND = "INSUFFICIENT_CREDITS_FOR_REFUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    UPDATE_FAILED = "UPDATE_FAILED"
    INVALID_PRODUCT = "INVALID_PRODUCT"
    INVALID_PLAN = "INVALID_PLAN"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    INVALID_RECEIPT = "INVALID_RECEIPT"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    ALREADY_REFUNDED = "ALREADY_REFUNDED"
    REFUND_EXCEEDS_ORIGINAL = "REFUND_EXCEEDS_ORIGINAL"
    EXISTING_SUBSCRIPTION = "EXISTING_SUBSCRIPTION"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    NO_SUBSCRIPTION_TO_RENEW = "NO_SUBSCRIPTION_TO_RENEW"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Only failures that leave no partial state behind are safe to retry.
RETRYABLE_CODES = frozenset({ErrorCode.UPDATE_FAILED, ErrorCode.INTERNAL_ERROR})

HTTP_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_AMOUNT: 400,
    ErrorCode.INSUFFICIENT_CREDITS: 402,
    ErrorCode.INSUFFICIENT_CREDITS_FOR_REFUND: 402,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.UPDATE_FAILED: 500,
    ErrorCode.INVALID_PRODUCT: 400,
    ErrorCode.INVALID_PLAN: 400,
    ErrorCode.DUPLICATE_TRANSACTION: 409,
    ErrorCode.INVALID_RECEIPT: 400,
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.UNSUPPORTED_PLATFORM: 400,
    ErrorCode.TRANSACTION_NOT_FOUND: 404,
    ErrorCode.ALREADY_REFUNDED: 409,
    ErrorCode.REFUND_EXCEEDS_ORIGINAL: 400,
    ErrorCode.EXISTING_SUBSCRIPTION: 409,
    ErrorCode.NO_ACTIVE_SUBSCRIPTION: 404,
    ErrorCode.NO_SUBSCRIPTION_TO_RENEW: 404,
    ErrorCode.INTERNAL_ERROR: 500,
}


class OperationError(BaseModel):
    """Failure detail attached to an unsuccessful result.

    Attributes:
        code (ErrorCode): Stable failure code
        message (str): Human-readable description
        retryable (bool): True only when the failed call left no partial
            state change, so the caller may safely submit it again
    """

    code: ErrorCode = Field(description="Failure code")
    message: str = Field(description="Human-readable description")
    retryable: bool = Field(default=False, description="Safe to retry")

    @classmethod
    def of(cls, code: ErrorCode, message: str,
           retryable: Optional[bool] = None) -> "OperationError":
        """Build an error, defaulting ``retryable`` from the code."""
        if retryable is None:
            retryable = code in RETRYABLE_CODES
        return cls(code=code, message=message, retryable=retryable)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.code, 500)


class StorageError(Exception):
    """A store could not complete a read or write."""


class DuplicateKeyError(StorageError):
    """A store refused an insert because the key already exists."""
