from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from coupon_engine.promotions.campaigns import CampaignDraft
from coupon_engine.promotions.errors import (
    CouponConflictError,
    CouponNotFoundError,
    IllegalTransitionError,
)
from coupon_engine.promotions.states import CampaignStatus
from coupon_engine.promotions.types import ClaimOutcome, RedemptionOutcome


def _draft(now_utc, **overrides) -> CampaignDraft:
    values = {
        "code": "  diwali25 ",
        "title": "Diwali Dhamaka",
        "discount_type": "PERCENTAGE",
        "discount_value": Decimal("15"),
        "max_discount": Decimal("200"),
        "valid_from": now_utc - timedelta(hours=1),
        "valid_until": now_utc + timedelta(days=10),
        "max_redemptions": 50,
    }
    values.update(overrides)
    return CampaignDraft.model_validate(values)


@pytest.mark.asyncio
async def test_create_campaign_normalizes_code_and_defaults(coupon_engine, now_utc) -> None:
    campaign = await coupon_engine.create_campaign(_draft(now_utc))

    assert campaign.code == "DIWALI25"
    assert campaign.status == "ACTIVE"
    assert campaign.targeting_type == "ALL"
    assert campaign.targeting == {"type": "ALL"}
    assert campaign.product_rule == {"type": "ALL_PRODUCTS"}
    assert campaign.current_redemptions == 0
    listed = await coupon_engine.list_campaigns(status=CampaignStatus.ACTIVE)
    assert [item.id for item in listed] == [campaign.id]


@pytest.mark.asyncio
async def test_duplicate_campaign_code_conflicts(coupon_engine, now_utc) -> None:
    await coupon_engine.create_campaign(_draft(now_utc))
    with pytest.raises(CouponConflictError):
        await coupon_engine.create_campaign(_draft(now_utc, code="DIWALI25"))


def test_campaign_draft_rejects_inconsistent_values(now_utc) -> None:
    with pytest.raises(ValidationError):
        _draft(now_utc, discount_value=Decimal("120"))
    with pytest.raises(ValidationError):
        _draft(now_utc, valid_until=now_utc - timedelta(days=2))
    with pytest.raises(ValidationError):
        _draft(now_utc, status="PAUSED")
    with pytest.raises(ValidationError):
        _draft(now_utc, targeting={"type": "GEOGRAPHIC", "planets": ["Mars"]})


@pytest.mark.asyncio
async def test_paused_campaign_blocks_claims_and_redemptions_until_resumed(
    coupon_engine, customers, now_utc
) -> None:
    customers.add("c-1")
    customers.add("c-2")
    campaign = await coupon_engine.create_campaign(_draft(now_utc))
    entitlement = (await coupon_engine.claim("c-1", campaign.id)).entitlement

    paused = await coupon_engine.update_campaign_status(
        campaign.id, CampaignStatus.PAUSED, reason="stock out"
    )
    blocked_claim = await coupon_engine.claim("c-2", campaign.id)
    blocked_redeem = await coupon_engine.redeem(
        entitlement.id,
        store_id="s-1",
        staff_id="st-1",
        purchase_id="p-1",
        amount_used=Decimal("10"),
    )

    assert paused.status == "PAUSED"
    assert blocked_claim.outcome is ClaimOutcome.INELIGIBLE
    assert "Coupon is not active" in blocked_claim.reasons
    assert blocked_redeem.outcome is RedemptionOutcome.NOT_REDEEMABLE

    resumed = await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.ACTIVE)
    redeemed = await coupon_engine.redeem(
        entitlement.id,
        store_id="s-1",
        staff_id="st-1",
        purchase_id="p-1",
        amount_used=Decimal("10"),
    )
    assert resumed.status == "ACTIVE"
    assert redeemed.outcome is RedemptionOutcome.REDEEMED


@pytest.mark.asyncio
async def test_status_changes_follow_the_lifecycle(coupon_engine, now_utc) -> None:
    campaign = await coupon_engine.create_campaign(_draft(now_utc, status="DRAFT"))

    with pytest.raises(IllegalTransitionError):
        await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.PAUSED)

    await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.ACTIVE)
    expired = await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.EXPIRED)
    assert expired.status == "EXPIRED"
    unchanged = await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.EXPIRED)
    assert unchanged.status == "EXPIRED"

    with pytest.raises(IllegalTransitionError):
        await coupon_engine.update_campaign_status(campaign.id, CampaignStatus.ACTIVE)
    with pytest.raises(CouponNotFoundError):
        await coupon_engine.update_campaign_status(uuid4(), CampaignStatus.PAUSED)
