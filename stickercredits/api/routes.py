"""HTTP routes for the credits API.

The caller is identified by the ``X-User-Id`` header; authenticating that
header is the job of the gateway in front of this service.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from stickercredits.api.models import (
    BalanceResponse,
    CancelSubscriptionRequest,
    CreateSubscriptionRequest,
    CreditOperationRequest,
    CreditOperationResponse,
    FeatureAccessResponse,
    OpenAccountRequest,
    ProcessExpiredResponse,
    PurchaseRefundRequest,
    PurchaseRequest,
    PurchaseResponse,
    RefundCreditsRequest,
    RenewSubscriptionRequest,
    SubscriptionStatusResponse,
    TransactionResponse,
    ValidateCreditsRequest,
    ValidateCreditsResponse,
)
from stickercredits.catalog import CreditPackage, SubscriptionBenefits, SubscriptionPlan
from stickercredits.errors import ErrorCode, OperationError
from stickercredits.ledger_manager import CreditOperationResult
from stickercredits.models import Account, CreditTransaction, PurchaseReceipt, PurchaseRecord, Subscription
from stickercredits.service import CreditsService
from stickercredits.subscription_manager import FEATURES, SubscriptionResult


router = APIRouter()


def get_service(req: Request) -> CreditsService:
    service = getattr(req.app.state, "service", None)
    if service is None:
        raise RuntimeError("Service not initialized")
    return service


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id


def error_response(error: OperationError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content=error.model_dump(mode="json"))


def _transaction_response(txn: CreditTransaction) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=txn.transaction_id,
        kind=txn.kind.value,
        amount=txn.amount,
        balance_effect=txn.balance_effect,
        description=txn.description,
        related_ids=txn.related_ids,
        reverses_transaction_id=txn.reverses_transaction_id,
        balance_after=txn.balance_after,
        created_at=txn.created_at,
    )


def _credit_response(res: CreditOperationResult):
    if not res.success:
        return error_response(res.error)
    return CreditOperationResponse(
        success=True,
        transaction_id=res.transaction.transaction_id,
        new_balance=res.new_balance,
    )


def _subscription_response(res: SubscriptionResult):
    if not res.success:
        return error_response(res.error)
    return res.subscription


# ------- Accounts -------

@router.post("/accounts", response_model=Account, status_code=201)
def open_account(payload: OpenAccountRequest, user_id: str = Depends(get_user_id),
                 service: CreditsService = Depends(get_service)):
    try:
        return service.open_account(user_id, email=payload.email,
                                    initial_credits=payload.initial_credits)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


# ------- Credits -------

@router.get("/credits/balance", response_model=BalanceResponse)
def get_balance(user_id: str = Depends(get_user_id),
                service: CreditsService = Depends(get_service)):
    balance = service.get_balance(user_id)
    if balance is None:
        return error_response(OperationError.of(ErrorCode.USER_NOT_FOUND, "User not found"))
    return BalanceResponse(user_id=user_id, credits=balance)


@router.get("/credits/summary")
def get_summary(user_id: str = Depends(get_user_id),
                service: CreditsService = Depends(get_service)):
    summary = service.get_credit_summary(user_id)
    if summary is None:
        return error_response(OperationError.of(ErrorCode.USER_NOT_FOUND, "User not found"))
    return summary


@router.post("/credits/validate", response_model=ValidateCreditsResponse)
def validate_credits(payload: ValidateCreditsRequest, user_id: str = Depends(get_user_id),
                     service: CreditsService = Depends(get_service)) -> ValidateCreditsResponse:
    res = service.validate_credits(user_id, payload.required_amount)
    return ValidateCreditsResponse(valid=res.valid, current_balance=res.current_balance,
                                   message=res.message)


@router.post("/credits/deduct", response_model=CreditOperationResponse)
def deduct_credits(payload: CreditOperationRequest, user_id: str = Depends(get_user_id),
                   service: CreditsService = Depends(get_service)):
    return _credit_response(
        service.deduct_credits(user_id, payload.amount, payload.description, payload.related_ids)
    )


@router.post("/credits/add", response_model=CreditOperationResponse)
def add_credits(payload: CreditOperationRequest, user_id: str = Depends(get_user_id),
                service: CreditsService = Depends(get_service)):
    return _credit_response(
        service.add_credits(user_id, payload.amount, payload.description, payload.related_ids)
    )


@router.post("/credits/refund", response_model=CreditOperationResponse)
def refund_credits(payload: RefundCreditsRequest, user_id: str = Depends(get_user_id),
                   service: CreditsService = Depends(get_service)):
    return _credit_response(
        service.refund_credits(
            user_id,
            payload.amount,
            payload.description,
            payload.related_ids,
            reverses_transaction_id=payload.reverses_transaction_id,
        )
    )


@router.get("/credits/transactions", response_model=List[TransactionResponse])
def get_transactions(limit: Optional[int] = None, user_id: str = Depends(get_user_id),
                     service: CreditsService = Depends(get_service)) -> List[TransactionResponse]:
    if limit is not None and limit < 0:
        raise HTTPException(status_code=400, detail="limit must not be negative")
    return [_transaction_response(t) for t in service.get_transaction_history(user_id, limit)]


# ------- Payments -------

@router.get("/payments/packages", response_model=List[CreditPackage])
def list_packages(service: CreditsService = Depends(get_service)) -> List[CreditPackage]:
    return service.list_packages()


@router.get("/payments/plans", response_model=List[SubscriptionPlan])
def list_plans(service: CreditsService = Depends(get_service)) -> List[SubscriptionPlan]:
    return service.list_plans()


@router.post("/payments/purchase", response_model=PurchaseResponse)
def purchase(payload: PurchaseRequest, user_id: str = Depends(get_user_id),
             service: CreditsService = Depends(get_service)):
    receipt = PurchaseReceipt(
        platform=payload.platform,
        receipt_data=payload.receipt_data,
        product_id=payload.product_id,
        transaction_id=payload.transaction_id,
    )
    res = service.process_purchase(user_id, receipt)
    if not res.success:
        return error_response(res.error)
    return PurchaseResponse(
        success=True,
        transaction_id=res.transaction_id,
        credits_added=res.credits_added,
        new_balance=res.new_balance,
    )


@router.post("/payments/refund", response_model=PurchaseResponse)
def refund_purchase(payload: PurchaseRefundRequest, user_id: str = Depends(get_user_id),
                    service: CreditsService = Depends(get_service)):
    res = service.process_refund(user_id, payload.transaction_id, payload.reason)
    if not res.success:
        return error_response(res.error)
    return PurchaseResponse(
        success=True,
        transaction_id=res.transaction_id,
        credits_added=res.credits_added,
        new_balance=res.new_balance,
    )


@router.get("/payments/history", response_model=List[PurchaseRecord])
def purchase_history(user_id: str = Depends(get_user_id),
                     service: CreditsService = Depends(get_service)) -> List[PurchaseRecord]:
    return service.get_purchase_history(user_id)


# ------- Subscriptions -------

@router.post("/subscriptions", response_model=Subscription, status_code=201)
def create_subscription(payload: CreateSubscriptionRequest, user_id: str = Depends(get_user_id),
                        service: CreditsService = Depends(get_service)):
    return _subscription_response(
        service.create_subscription(user_id, payload.plan_id, payload.payment_transaction_id)
    )


@router.post("/subscriptions/cancel", response_model=Subscription)
def cancel_subscription(payload: CancelSubscriptionRequest, user_id: str = Depends(get_user_id),
                        service: CreditsService = Depends(get_service)):
    return _subscription_response(service.cancel_subscription(user_id, payload.reason))


@router.post("/subscriptions/renew", response_model=Subscription)
def renew_subscription(payload: RenewSubscriptionRequest, user_id: str = Depends(get_user_id),
                       service: CreditsService = Depends(get_service)):
    return _subscription_response(
        service.renew_subscription(user_id, payload.payment_transaction_id)
    )


@router.get("/subscriptions/status", response_model=SubscriptionStatusResponse)
def subscription_status(user_id: str = Depends(get_user_id),
                        service: CreditsService = Depends(get_service)) -> SubscriptionStatusResponse:
    status = service.get_subscription_status(user_id)
    return SubscriptionStatusResponse(
        active=status.valid,
        subscription=status.subscription,
        plan=status.plan,
        days_remaining=status.days_remaining,
        error=status.error,
    )


@router.get("/subscriptions/benefits", response_model=SubscriptionBenefits)
def subscription_benefits(user_id: str = Depends(get_user_id),
                          service: CreditsService = Depends(get_service)) -> SubscriptionBenefits:
    return service.get_benefits(user_id)


@router.get("/subscriptions/history", response_model=List[Subscription])
def subscription_history(user_id: str = Depends(get_user_id),
                         service: CreditsService = Depends(get_service)) -> List[Subscription]:
    return service.get_subscription_history(user_id)


@router.get("/subscriptions/features/{feature}", response_model=FeatureAccessResponse)
def feature_access(feature: str, user_id: str = Depends(get_user_id),
                   service: CreditsService = Depends(get_service)) -> FeatureAccessResponse:
    if feature not in FEATURES:
        raise HTTPException(status_code=404, detail=f"Unknown feature: {feature}")
    value = service.feature_access(user_id, feature)
    return FeatureAccessResponse(feature=feature, has_access=bool(value), value=value)


@router.post("/subscriptions/process-expired", response_model=ProcessExpiredResponse)
def process_expired(service: CreditsService = Depends(get_service)) -> ProcessExpiredResponse:
    expired = service.process_expired_subscriptions()
    return ProcessExpiredResponse(
        expired_count=len(expired),
        subscription_ids=[s.subscription_id for s in expired],
    )
