"""
HTTP receipt validator.

Delegates receipt verification to a remote service that talks to the App
Store / Play Store on our behalf.
"""

from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from stickercredits.errors import ErrorCode, OperationError
from stickercredits.logging import get_logger
from stickercredits.receipts.base import ReceiptValidation, ReceiptValidator


logger = get_logger("receipts")


class HttpReceiptValidator(ReceiptValidator):
    """
    Validator that POSTs receipts to a verification service.

    Request body::

        {"platform": "ios", "receipt_data": "...", "product_id": "credits_25",
         "transaction_id": "..."}

    Expected response::

        {"valid": true, "transaction_id": "...", "product_id": "...",
         "purchase_date": "2024-01-01T00:00:00Z"}
        {"valid": false, "error": {"code": "INVALID_RECEIPT", "message": "..."}}

    Transport failures and 5xx responses are reported as retryable
    ``VALIDATION_FAILED``; nothing has been credited at that point.
    """

    def __init__(self, platform: str, base_url: str, api_key: Optional[str] = None,
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Args:
            platform: Store platform sent with each request (``ios``/``android``)
            base_url: Base URL of the verification service
            api_key: Bearer token for the service, if it requires one
            timeout: Per-request timeout in seconds
            session: Pre-configured session (tests inject a fake here)
        """
        if not base_url:
            raise ValueError("Verification service URL is required")

        self.platform = platform
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'stickercredits/0.1',
        })
        if api_key:
            self.session.headers['Authorization'] = f'Bearer {api_key}'

    def get_name(self) -> str:
        return f"http_{self.platform}"

    def validate(self, receipt_data: str, product_id: str,
                 transaction_id: Optional[str] = None) -> ReceiptValidation:
        payload = {
            'platform': self.platform,
            'receipt_data': receipt_data,
            'product_id': product_id,
            'transaction_id': transaction_id,
        }
        url = f"{self.base_url}/receipts/verify"

        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.warning("receipt verification timed out url=%s", url)
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Receipt verification timed out", retryable=True
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("receipt verification unreachable url=%s error=%s", url, exc)
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Receipt verification service unavailable",
                retryable=True,
            )

        if response.status_code >= 500:
            logger.warning("receipt verification error status=%s", response.status_code)
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED,
                f"Receipt verification failed with status {response.status_code}",
                retryable=True,
            )

        try:
            body = response.json()
        except ValueError:
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Malformed verification response", retryable=True
            )

        try:
            return self._parse(body, product_id)
        except (ValidationError, AttributeError, TypeError):
            logger.warning("malformed receipt verification response url=%s", url)
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Malformed verification response", retryable=True
            )

    def _parse(self, body: Dict[str, Any], product_id: str) -> ReceiptValidation:
        if not body.get('valid'):
            error = body.get('error') or {}
            code = error.get('code', ErrorCode.INVALID_RECEIPT.value)
            try:
                error_code = ErrorCode(code)
            except ValueError:
                error_code = ErrorCode.INVALID_RECEIPT
            return ReceiptValidation(
                valid=False,
                error=OperationError.of(
                    error_code,
                    error.get('message', 'Receipt rejected by store'),
                    bool(error.get('retryable', False)),
                ),
            )

        external_id = body.get('transaction_id')
        if not external_id:
            return ReceiptValidation.rejected(
                ErrorCode.VALIDATION_FAILED, "Verification response lacks a transaction id"
            )

        return ReceiptValidation(
            valid=True,
            external_transaction_id=external_id,
            product_id=body.get('product_id', product_id),
            purchase_date=body.get('purchase_date'),
        )

    def close(self):
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
