from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from coupon_engine.db.models.referrals import Referral
from coupon_engine.promotions import referrals as referral_workflows
from coupon_engine.promotions.errors import (
    CouponConflictError,
    CouponInternalError,
    CouponValidationError,
    IllegalTransitionError,
)
from coupon_engine.promotions.referrals import RewardRole
from coupon_engine.promotions.types import RedemptionOutcome, ReferralOutcome
from tests.integration.coupon_fixtures import (
    _count_entitlements,
    _create_campaign,
    _get_campaign,
    _get_entitlement,
)


async def _get_referral(session_factory, referral_id) -> Referral:
    async with session_factory() as session:
        referral = await session.scalar(select(Referral).where(Referral.id == referral_id))
        assert referral is not None
        return referral


async def _register(coupon_engine, *, referrer_id="r-1", referred_id="n-1", referrer_type="customer"):
    return await coupon_engine.register_referral(
        referrer_id=referrer_id,
        referrer_type=referrer_type,
        referred_customer_id=referred_id,
    )


@pytest.mark.asyncio
async def test_qualifying_purchase_completes_referral_and_mints_rewards(
    coupon_engine, session_factory, customers, notifier, now_utc
) -> None:
    referral = await _register(coupon_engine)
    assert referral.status == "PENDING"
    assert referral.referrer_type == "CUSTOMER"
    await coupon_engine.mark_referral_registered("n-1")

    result = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("6000"),
    )

    assert result.outcome is ReferralOutcome.COMPLETED
    stored = await _get_referral(session_factory, referral.id)
    assert stored.status == "COMPLETED"
    assert stored.qualifying_purchase_id == "p-1"
    assert stored.completion_date == now_utc
    assert stored.referrer_reward_status == "ISSUED"
    assert stored.referred_reward_status == "ISSUED"

    referrer_entitlement = await _get_entitlement(session_factory, result.referrer_entitlement_id)
    referred_entitlement = await _get_entitlement(session_factory, result.referred_entitlement_id)
    assert referrer_entitlement.customer_id == "r-1"
    assert referrer_entitlement.source == "REFERRAL"
    assert referrer_entitlement.idempotency_key == f"referral:{referral.id}:referrer"
    assert referred_entitlement.customer_id == "n-1"

    referrer_campaign = await _get_campaign(session_factory, referrer_entitlement.campaign_id)
    referred_campaign = await _get_campaign(session_factory, referred_entitlement.campaign_id)
    assert referrer_campaign.code.startswith("REF-CUSTOMER-")
    assert referrer_campaign.discount_value == Decimal("500.00")
    assert referrer_campaign.min_purchase_amount == Decimal("10000.00")
    assert referrer_campaign.max_redemptions == 1
    assert referrer_campaign.valid_until == now_utc + timedelta(days=60)
    assert referrer_campaign.targeting == {"type": "INDIVIDUAL", "customer_ids": ["r-1"]}
    assert referred_campaign.code.startswith("REF-USER-")
    assert referred_campaign.discount_value == Decimal("300.00")
    assert referred_campaign.title == "Welcome Bonus - 300 Off"

    assert {(customer_id, title) for customer_id, title, _ in notifier.sent} == {
        ("r-1", "Referral Reward Unlocked"),
        ("n-1", "Welcome Reward Unlocked"),
    }


@pytest.mark.asyncio
async def test_reward_entitlements_redeem_exactly_once(coupon_engine, session_factory) -> None:
    await _register(coupon_engine)
    result = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("5000"),
    )
    assert result.outcome is ReferralOutcome.COMPLETED

    for entitlement_id, purchase_amount in (
        (result.referrer_entitlement_id, Decimal("12000")),
        (result.referred_entitlement_id, Decimal("5000")),
    ):
        first = await coupon_engine.redeem(
            entitlement_id,
            store_id="s-1",
            staff_id="st-1",
            purchase_id="p-2",
            amount_used=purchase_amount,
            purchase_amount=purchase_amount,
        )
        second = await coupon_engine.redeem(
            entitlement_id,
            store_id="s-1",
            staff_id="st-1",
            purchase_id="p-3",
            amount_used=purchase_amount,
            purchase_amount=purchase_amount,
        )
        assert first.outcome is RedemptionOutcome.REDEEMED
        assert second.outcome is RedemptionOutcome.ALREADY_USED

    referred = await _get_entitlement(session_factory, result.referred_entitlement_id)
    assert (await _get_campaign(session_factory, referred.campaign_id)).current_redemptions == 1


@pytest.mark.asyncio
async def test_retried_cascade_does_not_mint_twice(coupon_engine, session_factory) -> None:
    await _register(coupon_engine)
    first = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("7000"),
    )

    retried = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("7000"),
    )

    assert retried.outcome is ReferralOutcome.ALREADY_COMPLETED
    assert retried.referrer_entitlement_id == first.referrer_entitlement_id
    assert await _count_entitlements(session_factory, source="REFERRAL") == 2


@pytest.mark.asyncio
async def test_first_purchase_below_threshold_closes_the_window(
    coupon_engine, session_factory, notifier
) -> None:
    referral = await _register(coupon_engine)

    below = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("4999.99"),
    )
    later = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-2",
        final_amount=Decimal("9000"),
    )

    assert below.outcome is ReferralOutcome.BELOW_THRESHOLD
    assert later.outcome is ReferralOutcome.NOT_FIRST_PURCHASE
    stored = await _get_referral(session_factory, referral.id)
    assert stored.status == "FIRST_PURCHASE"
    assert stored.qualifying_purchase_id == "p-1"
    assert await _count_entitlements(session_factory, source="REFERRAL") == 0
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_purchase_without_referral_is_ignored(coupon_engine) -> None:
    result = await coupon_engine.on_qualifying_purchase(
        "walk-in",
        purchase_id="p-1",
        final_amount=Decimal("9000"),
    )
    assert result.outcome is ReferralOutcome.NO_REFERRAL
    assert result.referral_id is None


@pytest.mark.asyncio
async def test_referral_past_expiry_is_closed_on_purchase(
    coupon_engine, session_factory, clock
) -> None:
    referral = await _register(coupon_engine)
    clock.advance(timedelta(days=91))

    result = await coupon_engine.on_qualifying_purchase(
        "n-1",
        purchase_id="p-1",
        final_amount=Decimal("9000"),
    )

    assert result.outcome is ReferralOutcome.EXPIRED
    assert (await _get_referral(session_factory, referral.id)).status == "EXPIRED"
    assert await _count_entitlements(session_factory, source="REFERRAL") == 0


@pytest.mark.asyncio
async def test_expire_stale_referrals_sweeps_open_referrals(coupon_engine, clock) -> None:
    await _register(coupon_engine, referred_id="n-1")
    await _register(coupon_engine, referred_id="n-2")
    await coupon_engine.on_qualifying_purchase("n-2", purchase_id="p-1", final_amount=Decimal("6000"))
    clock.advance(timedelta(days=91))

    assert await coupon_engine.expire_stale_referrals() == 1
    assert await coupon_engine.expire_stale_referrals() == 0


@pytest.mark.asyncio
async def test_register_rejects_self_referral_duplicates_and_unknown_types(coupon_engine) -> None:
    with pytest.raises(CouponValidationError):
        await _register(coupon_engine, referrer_id="n-1", referred_id="n-1")
    with pytest.raises(CouponValidationError):
        await _register(coupon_engine, referrer_type="partner")

    await _register(coupon_engine)
    with pytest.raises(CouponConflictError):
        await _register(coupon_engine, referrer_id="r-2")


@pytest.mark.asyncio
async def test_referrer_stats_and_reward_claims(coupon_engine) -> None:
    referral = await _register(coupon_engine, referrer_id="staff-9", referrer_type="STAFF")
    assert await coupon_engine.referrer_stats("staff-9") == {
        "total_referrals": 0,
        "total_earnings": Decimal("0"),
        "pending_earnings": Decimal("0"),
    }

    await coupon_engine.on_qualifying_purchase("n-1", purchase_id="p-1", final_amount=Decimal("8000"))
    stats = await coupon_engine.referrer_stats("staff-9")
    assert stats["total_referrals"] == 1
    assert stats["total_earnings"] == Decimal("500")
    assert stats["pending_earnings"] == Decimal("0")

    claimed = await coupon_engine.mark_reward_claimed(referral.id, RewardRole.REFERRER)
    assert claimed.referrer_reward_status == "CLAIMED"
    assert claimed.referred_reward_status == "ISSUED"
    with pytest.raises(IllegalTransitionError):
        await coupon_engine.mark_reward_claimed(referral.id, RewardRole.REFERRER)


@pytest.mark.asyncio
async def test_referral_targeted_campaign_requires_completed_referral(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("n-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc, targeting={"type": "REFERRAL"})
    await _register(coupon_engine)

    before = await coupon_engine.evaluate_eligibility("n-1", campaign.id)
    await coupon_engine.on_qualifying_purchase("n-1", purchase_id="p-1", final_amount=Decimal("5000"))
    after = await coupon_engine.evaluate_eligibility("n-1", campaign.id)

    assert before.reasons == ["No completed referrals found"]
    assert after.eligible


@pytest.mark.asyncio
async def test_failed_reward_issuance_rolls_back_the_whole_cascade(
    coupon_engine, session_factory, monkeypatch
) -> None:
    referral = await _register(coupon_engine)
    original = referral_workflows.issue_entitlement
    calls = {"count": 0}

    async def _flaky_issue(session, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("code generator offline")
        return await original(session, **kwargs)

    monkeypatch.setattr(referral_workflows, "issue_entitlement", _flaky_issue)

    with pytest.raises(CouponInternalError):
        await coupon_engine.on_qualifying_purchase(
            "n-1",
            purchase_id="p-1",
            final_amount=Decimal("6000"),
        )

    stored = await _get_referral(session_factory, referral.id)
    assert stored.status == "PENDING"
    assert stored.referrer_reward_status == "PENDING"
    assert stored.referrer_entitlement_id is None
    assert await _count_entitlements(session_factory) == 0
