from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class CampaignResponse(BaseModel):
    id: UUID
    code: str
    title: str
    description: str | None = None
    discount_type: str
    discount_value: Decimal
    max_discount: Decimal | None = None
    min_purchase_amount: Decimal
    targeting_type: str
    targeting: dict[str, Any]
    product_rule: dict[str, Any]
    valid_from: datetime
    valid_until: datetime
    max_redemptions: int = Field(gt=0)
    current_redemptions: int = Field(ge=0)
    per_user_limit: int = Field(ge=1)
    status: str
    updated_at: datetime


class CampaignListResponse(BaseModel):
    campaigns: list[CampaignResponse]


class CampaignStatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1, max_length=16)
    reason: str | None = Field(default=None, max_length=256)


class EntitlementResponse(BaseModel):
    id: UUID
    campaign_id: UUID
    customer_id: str
    unique_code: str
    qr_payload: str
    status: str
    source: str
    valid_from: datetime
    valid_until: datetime
    assigned_at: datetime
    redeemed_at: datetime | None = None
    redeemed_store_id: str | None = None
    redeemed_staff_id: str | None = None
    redeemed_purchase_id: str | None = None
    amount_used: Decimal | None = None


class EntitlementListResponse(BaseModel):
    entitlements: list[EntitlementResponse]


class EligibilityResponse(BaseModel):
    eligible: bool
    reasons: list[str]
    conditions: dict[str, Any]


class EligibleCampaignsResponse(BaseModel):
    customer_id: str
    total_eligible: int = Field(ge=0)
    campaigns: dict[str, list[CampaignResponse]]


class ClaimRequest(BaseModel):
    customer_id: str = Field(min_length=1, max_length=64)


class ClaimResponse(BaseModel):
    outcome: str
    idempotent_replay: bool
    entitlement: EntitlementResponse


class AssignRequest(BaseModel):
    customer_ids: list[str] = Field(min_length=1, max_length=1000)


class AssignmentResponse(BaseModel):
    customer_id: str
    status: str
    unique_code: str | None = None
    message: str | None = None


class AssignResponse(BaseModel):
    results: list[AssignmentResponse]


class ValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=4096)
    purchase_amount: Decimal | None = Field(default=None, ge=0)


class CustomerResponse(BaseModel):
    id: str
    name: str | None = None
    mobile: str | None = None
    city: str
    area: str


class ValidateResponse(BaseModel):
    valid: bool
    message: str
    entitlement: EntitlementResponse | None = None
    campaign: CampaignResponse | None = None
    customer: CustomerResponse | None = None
    discount_amount: Decimal | None = None
    product_restrictions: dict[str, Any] | None = None


class RedeemRequest(BaseModel):
    entitlement_id: UUID
    store_id: str = Field(min_length=1, max_length=64)
    staff_id: str = Field(min_length=1, max_length=64)
    purchase_id: str = Field(min_length=1, max_length=64)
    amount_used: Decimal = Field(ge=0)
    notes: str = Field(default="", max_length=1000)
    purchase_amount: Decimal | None = Field(default=None, ge=0)


class RedeemResponse(BaseModel):
    outcome: str
    message: str
    discount_amount: Decimal | None = None
    entitlement: EntitlementResponse


class RedemptionHistoryResponse(BaseModel):
    campaign: CampaignResponse
    redemptions: list[EntitlementResponse]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    pages: int = Field(ge=0)
    stats: dict[str, int]


class QualifyingPurchaseRequest(BaseModel):
    customer_id: str = Field(min_length=1, max_length=64)
    purchase_id: str = Field(min_length=1, max_length=64)
    final_amount: Decimal = Field(ge=0)
    purchased_at: datetime | None = None


class ReferralCascadeResponse(BaseModel):
    outcome: str
    referral_id: UUID | None = None
    referrer_entitlement_id: UUID | None = None
    referred_entitlement_id: UUID | None = None


class ReferralRegisterRequest(BaseModel):
    referrer_id: str = Field(min_length=1, max_length=64)
    referrer_type: str = Field(default="CUSTOMER", min_length=1, max_length=16)
    referred_customer_id: str = Field(min_length=1, max_length=64)


class ReferralRegisteredRequest(BaseModel):
    referred_customer_id: str = Field(min_length=1, max_length=64)


class ReferralResponse(BaseModel):
    id: UUID
    referrer_id: str
    referrer_type: str
    referred_customer_id: str
    status: str
    referrer_reward_status: str
    referred_reward_status: str
    referral_date: datetime
    expires_at: datetime


class ReferrerStatsResponse(BaseModel):
    referrer_id: str
    total_referrals: int = Field(ge=0)
    total_earnings: Decimal
    pending_earnings: Decimal
