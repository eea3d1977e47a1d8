from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.dates import ensure_utc
from coupon_engine.core.redemption_codes import normalize_campaign_code
from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.promotions.errors import CouponConflictError, CouponNotFoundError
from coupon_engine.promotions.rules import (
    AllProductsRule,
    AllTargeting,
    DiscountType,
    ProductApplicability,
    Targeting,
    dump_rule,
)
from coupon_engine.promotions.states import CampaignStatus, transition_campaign

logger = structlog.get_logger(__name__)


class CampaignDraft(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=160)
    description: str | None = Field(default=None, max_length=2000)
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    max_discount: Decimal | None = Field(default=None, ge=0)
    min_purchase_amount: Decimal = Field(default=Decimal("0"), ge=0)
    targeting: Targeting = Field(default_factory=AllTargeting)
    product_rule: ProductApplicability = Field(default_factory=AllProductsRule)
    valid_from: datetime
    valid_until: datetime
    max_redemptions: int = Field(default=1000, gt=0)
    per_user_limit: int = Field(default=1, ge=1)
    status: CampaignStatus = CampaignStatus.ACTIVE
    created_by: str = Field(default="admin", min_length=1, max_length=64)

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        normalized = normalize_campaign_code(value)
        if not normalized:
            raise ValueError("code must not be blank")
        return normalized

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> CampaignDraft:
        if self.valid_from > self.valid_until:
            raise ValueError("valid_from must not be after valid_until")
        if self.discount_type is DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount must not exceed 100")
        if self.status not in (CampaignStatus.DRAFT, CampaignStatus.ACTIVE):
            raise ValueError("new campaigns start as DRAFT or ACTIVE")
        return self


def _campaign_from_draft(draft: CampaignDraft, *, now_utc: datetime) -> Campaign:
    targeting: dict[str, Any] = dump_rule(draft.targeting)
    return Campaign(
        id=uuid4(),
        code=draft.code,
        title=draft.title.strip(),
        description=draft.description,
        discount_type=draft.discount_type.value,
        discount_value=draft.discount_value,
        max_discount=draft.max_discount,
        min_purchase_amount=draft.min_purchase_amount,
        targeting_type=targeting["type"],
        targeting=targeting,
        product_rule=dump_rule(draft.product_rule),
        valid_from=draft.valid_from,
        valid_until=draft.valid_until,
        max_redemptions=draft.max_redemptions,
        current_redemptions=0,
        per_user_limit=draft.per_user_limit,
        status=draft.status.value,
        created_by=draft.created_by,
        created_at=now_utc,
        updated_at=now_utc,
    )


async def create_campaign(
    session: AsyncSession,
    *,
    draft: CampaignDraft,
    now_utc: datetime,
) -> Campaign:
    campaign = _campaign_from_draft(draft, now_utc=now_utc)
    try:
        async with session.begin_nested():
            await CampaignsRepo.create(session, campaign=campaign)
    except IntegrityError as exc:
        raise CouponConflictError(f"Campaign code already exists: {draft.code}") from exc

    logger.info(
        "campaign_created",
        campaign_id=str(campaign.id),
        code=campaign.code,
        targeting_type=campaign.targeting_type,
        created_by=campaign.created_by,
    )
    return campaign


async def update_campaign_status(
    session: AsyncSession,
    *,
    campaign_id: UUID,
    status: CampaignStatus,
    now_utc: datetime,
    reason: str | None = None,
) -> Campaign:
    campaign = await CampaignsRepo.get_by_id_fresh(session, campaign_id)
    if campaign is None:
        raise CouponNotFoundError("Campaign not found")
    if campaign.status == status.value:
        return campaign

    previous_status = campaign.status
    transition_campaign(previous_status, status)
    updated = await CampaignsRepo.set_status_if_current(
        session,
        campaign_id=campaign_id,
        expected_status=previous_status,
        new_status=status.value,
        now_utc=now_utc,
    )
    if not updated:
        raise CouponConflictError("Campaign status changed concurrently")

    logger.info(
        "campaign_status_changed",
        campaign_id=str(campaign_id),
        code=campaign.code,
        previous_status=previous_status,
        next_status=status.value,
        reason=(reason or "").strip() or None,
    )
    refreshed = await CampaignsRepo.get_by_id_fresh(session, campaign_id)
    if refreshed is None:
        raise CouponNotFoundError("Campaign not found")
    return refreshed
