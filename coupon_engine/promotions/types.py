from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.promotions.errors import CouponEngineError
from coupon_engine.services.customer_directory import CustomerProfile


@dataclass(slots=True)
class EligibilityVerdict:
    eligible: bool
    reasons: list[str] = field(default_factory=list)
    conditions: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TargetingCheck:
    passed: bool = True
    reasons: list[str] = field(default_factory=list)
    conditions: dict[str, Any] = field(default_factory=dict)

    def fail(self, reason: str) -> None:
        self.passed = False
        self.reasons.append(reason)


class ClaimOutcome(str, Enum):
    CLAIMED = "CLAIMED"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    NOT_FOUND = "NOT_FOUND"
    INELIGIBLE = "INELIGIBLE"


@dataclass(slots=True)
class ClaimResult:
    outcome: ClaimOutcome
    entitlement: Entitlement | None = None
    campaign: Campaign | None = None
    idempotent_replay: bool = False
    reasons: list[str] = field(default_factory=list)
    error: CouponEngineError | None = None

    @property
    def success(self) -> bool:
        return self.entitlement is not None


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    message: str
    entitlement: Entitlement | None = None
    campaign: Campaign | None = None
    customer: CustomerProfile | None = None
    discount_amount: Decimal | None = None
    product_restrictions: dict[str, Any] | None = None


class RedemptionOutcome(str, Enum):
    REDEEMED = "REDEEMED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    LIMIT_REACHED = "LIMIT_REACHED"
    EXPIRED = "EXPIRED"
    NOT_REDEEMABLE = "NOT_REDEEMABLE"


@dataclass(slots=True)
class RedemptionResult:
    outcome: RedemptionOutcome
    message: str
    entitlement: Entitlement | None = None
    campaign: Campaign | None = None
    discount_amount: Decimal | None = None
    error: CouponEngineError | None = None

    @property
    def success(self) -> bool:
        return self.outcome is RedemptionOutcome.REDEEMED


class ReferralOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    BELOW_THRESHOLD = "BELOW_THRESHOLD"
    NOT_FIRST_PURCHASE = "NOT_FIRST_PURCHASE"
    NO_REFERRAL = "NO_REFERRAL"
    EXPIRED = "EXPIRED"


@dataclass(slots=True)
class ReferralCascadeResult:
    outcome: ReferralOutcome
    referral_id: UUID | None = None
    referrer_id: str | None = None
    referred_customer_id: str | None = None
    referrer_entitlement_id: UUID | None = None
    referred_entitlement_id: UUID | None = None


class AssignmentStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    INELIGIBLE = "INELIGIBLE"
    FAILED = "FAILED"


@dataclass(slots=True)
class AssignmentRecord:
    customer_id: str
    status: AssignmentStatus
    unique_code: str | None = None
    message: str | None = None


@dataclass(slots=True)
class EligibleCampaigns:
    customer: CustomerProfile
    categorized: dict[str, list[Campaign]]

    @property
    def total_eligible(self) -> int:
        return sum(len(campaigns) for campaigns in self.categorized.values())


@dataclass(slots=True)
class RedemptionHistory:
    campaign: Campaign
    redemptions: list[Entitlement]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit > 0 else 0

    @property
    def stats(self) -> dict[str, int]:
        current = self.campaign.current_redemptions
        maximum = self.campaign.max_redemptions
        return {
            "total_redemptions": current,
            "max_redemptions": maximum,
            "remaining_redemptions": maximum - current,
            "redemption_rate": round(current / maximum * 100) if maximum else 0,
        }
