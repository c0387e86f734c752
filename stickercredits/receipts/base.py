"""Base Receipt Validator Interface.

Defines the interface for store receipt validators. Validators can be local
mocks (development, tests) or remote (a verification service that talks to the
App Store / Play Store).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from stickercredits.errors import ErrorCode, OperationError


class ReceiptValidation(BaseModel):
    """Outcome of validating one receipt.

    Attributes:
        valid (bool): True if the store accepted the receipt
        external_transaction_id (Optional[str]): Canonical store transaction
            id; the de-duplication key for purchases
        product_id (Optional[str]): Product the receipt pays for
        purchase_date (Optional[datetime]): When the store recorded the purchase
        error (Optional[OperationError]): Why validation failed
    """

    valid: bool
    external_transaction_id: Optional[str] = None
    product_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    error: Optional[OperationError] = Field(default=None)

    @classmethod
    def rejected(cls, code: ErrorCode, message: str,
                 retryable: Optional[bool] = None) -> "ReceiptValidation":
        return cls(valid=False, error=OperationError.of(code, message, retryable))


class ReceiptValidator(ABC):
    """Abstract base class for store receipt validators.

    Usage Example:
        ```python
        class MyValidator(ReceiptValidator):
            def get_name(self) -> str:
                return "my_store"

            def validate(self, receipt_data, product_id, transaction_id=None):
                return ReceiptValidation(
                    valid=True,
                    external_transaction_id=transaction_id,
                    product_id=product_id,
                )
        ```
    """

    @abstractmethod
    def get_name(self) -> str:
        """Get the name of this validator (e.g. "app_store")."""
        pass

    @abstractmethod
    def validate(self, receipt_data: str, product_id: str,
                 transaction_id: Optional[str] = None) -> ReceiptValidation:
        """Validate a receipt for ``product_id``.

        Args:
            receipt_data (str): Opaque receipt payload
            product_id (str): Product the client claims to have bought
            transaction_id (Optional[str]): Transaction id reported by the client

        Returns:
            ReceiptValidation: Never raises for a bad receipt; rejection is
            reported through ``valid``/``error``
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.get_name()})>"


class ReceiptValidatorRegistry:
    """Maps a platform name to the validator for that store."""

    def __init__(self, validators: Optional[Dict[str, ReceiptValidator]] = None):
        self._validators: Dict[str, ReceiptValidator] = dict(validators or {})

    def register(self, platform: str, validator: ReceiptValidator) -> None:
        self._validators[platform] = validator

    def get(self, platform: str) -> Optional[ReceiptValidator]:
        return self._validators.get(platform)

    def validate(self, platform: str, receipt_data: str, product_id: str,
                 transaction_id: Optional[str] = None) -> ReceiptValidation:
        validator = self.get(platform)
        if validator is None:
            return ReceiptValidation.rejected(
                ErrorCode.UNSUPPORTED_PLATFORM, "Unsupported payment platform"
            )
        return validator.validate(receipt_data, product_id, transaction_id)

    @property
    def platforms(self):
        return sorted(self._validators)
