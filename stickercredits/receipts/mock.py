"""Local receipt validators that mimic the App Store and Play Store.

These accept any well-formed receipt and are meant for development and tests.
Production deployments point ``receipt_verifier_url`` at a verification
service instead (see ``stickercredits.receipts.http``).
"""

import json
from datetime import datetime, UTC
from typing import Optional
from uuid import uuid4

from stickercredits.errors import ErrorCode
from stickercredits.receipts.base import ReceiptValidation, ReceiptValidator


class AppStoreReceiptValidator(ReceiptValidator):
    """Mock iOS validator.

    Rejects the literal ``"invalid_receipt"`` and any payload shorter than 10
    characters. Accepted receipts keep the client-reported transaction id, or
    get a generated ``ios_<hex>`` id.
    """

    MIN_RECEIPT_LENGTH = 10

    def get_name(self) -> str:
        return "app_store"

    def validate(self, receipt_data: str, product_id: str,
                 transaction_id: Optional[str] = None) -> ReceiptValidation:
        if receipt_data == "invalid_receipt" or len(receipt_data) < self.MIN_RECEIPT_LENGTH:
            return ReceiptValidation.rejected(
                ErrorCode.INVALID_RECEIPT, "Invalid iOS purchase receipt"
            )

        return ReceiptValidation(
            valid=True,
            external_transaction_id=transaction_id or f"ios_{uuid4().hex}",
            product_id=product_id,
            purchase_date=datetime.now(UTC),
        )


class PlayStoreReceiptValidator(ReceiptValidator):
    """Mock Android validator.

    The receipt is the JSON purchase object returned by Play Billing. It must
    carry a ``purchaseToken`` other than ``"invalid_token"``. ``orderId`` is the
    canonical transaction id; ``purchaseTime`` is in epoch milliseconds.
    """

    def get_name(self) -> str:
        return "play_store"

    def validate(self, receipt_data: str, product_id: str,
                 transaction_id: Optional[str] = None) -> ReceiptValidation:
        try:
            receipt = json.loads(receipt_data)
        except (TypeError, ValueError):
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Android receipt is not valid JSON"
            )
        if not isinstance(receipt, dict):
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Android receipt must be a JSON object"
            )

        token = receipt.get("purchaseToken")
        if not token or token == "invalid_token":
            return ReceiptValidation.rejected(
                ErrorCode.INVALID_RECEIPT, "Invalid Android purchase receipt"
            )

        return ReceiptValidation(
            valid=True,
            external_transaction_id=(
                receipt.get("orderId") or transaction_id or f"android_{uuid4().hex}"
            ),
            product_id=product_id,
            purchase_date=_parse_purchase_time(receipt.get("purchaseTime")),
        )


def _parse_purchase_time(value) -> datetime:
    try:
        return datetime.fromtimestamp(int(value) / 1000, UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(UTC)
