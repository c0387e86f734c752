"""Product catalog - credit packages, subscription plans and tier benefits.

Prices are integer cents. The catalog is static; ``Catalog`` exists so tests and
alternative storefronts can inject their own entries.
"""

import calendar
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


class PlanDuration(str, Enum):
    """Billing period of a subscription plan."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class CreditPackage(BaseModel):
    """A one-off credit bundle sold through the app stores."""

    id: str
    name: str
    credits: int = Field(gt=0)
    price: int = Field(ge=0, description="Price in cents")
    currency: str = "USD"
    popular: bool = False


class SubscriptionPlan(BaseModel):
    """A recurring plan granting credits every period."""

    id: str
    name: str
    monthly_credits: int = Field(gt=0)
    price: int = Field(ge=0, description="Price in cents per period")
    currency: str = "USD"
    duration: PlanDuration
    features: List[str] = Field(default_factory=list)


class SubscriptionBenefits(BaseModel):
    """What a user is entitled to at their current tier."""

    monthly_credits: int = 0
    priority_processing: bool = False
    exclusive_styles: bool = False
    no_ads: bool = False
    features: List[str] = Field(default_factory=list)


FREE_TIER_BENEFITS = SubscriptionBenefits(
    features=["Basic sticker generation", "Standard processing speed"],
)

CREDIT_PACKAGES: List[CreditPackage] = [
    CreditPackage(id="credits_10", name="Starter Pack", credits=10, price=199),
    CreditPackage(id="credits_25", name="Popular Pack", credits=25, price=399, popular=True),
    CreditPackage(id="credits_50", name="Value Pack", credits=50, price=699),
    CreditPackage(id="credits_100", name="Power Pack", credits=100, price=1199),
    CreditPackage(id="credits_250", name="Ultimate Pack", credits=250, price=2499),
]

SUBSCRIPTION_PLANS: List[SubscriptionPlan] = [
    SubscriptionPlan(
        id="premium_monthly",
        name="Premium Monthly",
        monthly_credits=100,
        price=999,
        duration=PlanDuration.MONTHLY,
        features=[
            "100 credits per month",
            "Priority processing",
            "Exclusive styles",
            "No ads",
        ],
    ),
    SubscriptionPlan(
        id="premium_yearly",
        name="Premium Yearly",
        monthly_credits=100,
        price=9999,
        duration=PlanDuration.YEARLY,
        features=[
            "100 credits per month",
            "Priority processing",
            "Exclusive styles",
            "No ads",
            "2 months free",
        ],
    ),
]


def add_period(start: datetime, duration: PlanDuration) -> datetime:
    """Advance ``start`` by one calendar month or year.

    The day of month is clamped to the length of the target month, so
    Jan 31 + 1 month is Feb 28 (or 29) and Feb 29 + 1 year is Feb 28.
    """
    if duration is PlanDuration.YEARLY:
        year, month = start.year + 1, start.month
    else:
        year, month = divmod(start.month, 12)
        year, month = start.year + year, month + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


class Catalog:
    """Lookup over credit packages and subscription plans."""

    def __init__(self, packages: Optional[Iterable[CreditPackage]] = None,
                 plans: Optional[Iterable[SubscriptionPlan]] = None):
        self._packages: Dict[str, CreditPackage] = {
            p.id: p for p in (CREDIT_PACKAGES if packages is None else packages)
        }
        self._plans: Dict[str, SubscriptionPlan] = {
            p.id: p for p in (SUBSCRIPTION_PLANS if plans is None else plans)
        }

    def get_package(self, package_id: str) -> Optional[CreditPackage]:
        return self._packages.get(package_id)

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        return self._plans.get(plan_id)

    def list_packages(self) -> List[CreditPackage]:
        return list(self._packages.values())

    def list_plans(self) -> List[SubscriptionPlan]:
        return list(self._plans.values())

    def remove_plan(self, plan_id: str) -> None:
        """Withdraw a plan; existing subscribers can no longer renew it."""
        self._plans.pop(plan_id, None)

    def benefits_for(self, plan: SubscriptionPlan) -> SubscriptionBenefits:
        return SubscriptionBenefits(
            monthly_credits=plan.monthly_credits,
            priority_processing=True,
            exclusive_styles=True,
            no_ads=True,
            features=list(plan.features),
        )
