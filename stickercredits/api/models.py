"""Pydantic models for the credits HTTP API."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from stickercredits.catalog import SubscriptionPlan
from stickercredits.errors import OperationError
from stickercredits.models import Subscription


# -------- Accounts --------

class OpenAccountRequest(BaseModel):
    email: Optional[str] = None
    initial_credits: Optional[int] = Field(default=None, ge=0)


# -------- Credits --------

class BalanceResponse(BaseModel):
    user_id: str
    credits: int


class ValidateCreditsRequest(BaseModel):
    required_amount: int


class ValidateCreditsResponse(BaseModel):
    valid: bool
    current_balance: int
    message: Optional[str] = None


class CreditOperationRequest(BaseModel):
    # Amount is checked by the ledger so invalid values surface as INVALID_AMOUNT
    amount: int
    description: str
    related_ids: Optional[List[str]] = None


class RefundCreditsRequest(CreditOperationRequest):
    reverses_transaction_id: Optional[str] = None


class CreditOperationResponse(BaseModel):
    success: bool
    transaction_id: str
    new_balance: int


class TransactionResponse(BaseModel):
    transaction_id: str
    kind: str
    amount: int
    balance_effect: int
    description: str
    related_ids: List[str]
    reverses_transaction_id: Optional[str] = None
    balance_after: int
    created_at: datetime


# -------- Payments --------

class PurchaseRequest(BaseModel):
    platform: str
    receipt_data: str
    product_id: str
    transaction_id: Optional[str] = None


class PurchaseResponse(BaseModel):
    success: bool
    transaction_id: str
    credits_added: int
    new_balance: int


class PurchaseRefundRequest(BaseModel):
    transaction_id: str
    reason: str = "Customer requested refund"


# -------- Subscriptions --------

class CreateSubscriptionRequest(BaseModel):
    plan_id: str
    payment_transaction_id: str


class CancelSubscriptionRequest(BaseModel):
    reason: str = "User requested cancellation"


class RenewSubscriptionRequest(BaseModel):
    payment_transaction_id: str


class SubscriptionStatusResponse(BaseModel):
    active: bool
    subscription: Optional[Subscription] = None
    plan: Optional[SubscriptionPlan] = None
    days_remaining: Optional[int] = None
    error: Optional[OperationError] = None


class FeatureAccessResponse(BaseModel):
    feature: str
    has_access: bool
    value: Any


class ProcessExpiredResponse(BaseModel):
    expired_count: int
    subscription_ids: List[str]
