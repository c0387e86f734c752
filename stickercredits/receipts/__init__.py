"""Store receipt validators.

Available validators:
- AppStoreReceiptValidator / PlayStoreReceiptValidator: local mocks
- HttpReceiptValidator: remote verification service
"""

from typing import Optional

from stickercredits.config import Settings
from stickercredits.models import Platform
from stickercredits.receipts.base import (
    ReceiptValidation,
    ReceiptValidator,
    ReceiptValidatorRegistry,
)
from stickercredits.receipts.http import HttpReceiptValidator
from stickercredits.receipts.mock import AppStoreReceiptValidator, PlayStoreReceiptValidator


def build_registry(settings: Optional[Settings] = None) -> ReceiptValidatorRegistry:
    """Validators for both stores: remote when a verifier URL is configured."""
    if settings is not None and settings.receipt_verifier_url:
        return ReceiptValidatorRegistry({
            platform.value: HttpReceiptValidator(
                platform.value,
                settings.receipt_verifier_url,
                api_key=settings.receipt_verifier_api_key,
                timeout=settings.receipt_verifier_timeout,
            )
            for platform in Platform
        })
    return ReceiptValidatorRegistry({
        Platform.IOS.value: AppStoreReceiptValidator(),
        Platform.ANDROID.value: PlayStoreReceiptValidator(),
    })


__all__ = [
    "ReceiptValidation",
    "ReceiptValidator",
    "ReceiptValidatorRegistry",
    "AppStoreReceiptValidator",
    "PlayStoreReceiptValidator",
    "HttpReceiptValidator",
    "build_registry",
]
