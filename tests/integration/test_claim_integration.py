from __future__ import annotations

import asyncio
import re
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from coupon_engine.core.redemption_codes import ALPHABET
from coupon_engine.promotions.engine import CouponEngine
from coupon_engine.promotions.errors import CouponIneligibleError, CouponNotFoundError
from coupon_engine.promotions.types import ClaimOutcome, RedemptionOutcome
from coupon_engine.services.purchase_ledger import PurchaseRecord
from tests.coupon_fakes import RecordingNotifier
from tests.integration.coupon_fixtures import _count_entitlements, _create_campaign

CODE_RE = re.compile(rf"^RK-[{ALPHABET}]{{3}}-[{ALPHABET}]{{4}}$")


@pytest.mark.asyncio
async def test_claim_issues_active_entitlement_and_notifies(
    coupon_engine, session_factory, customers, notifier, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc, title="Monsoon Deal")

    result = await coupon_engine.claim("c-1", campaign.id)

    assert result.outcome is ClaimOutcome.CLAIMED
    assert result.success
    assert not result.idempotent_replay
    entitlement = result.entitlement
    assert entitlement.status == "ACTIVE"
    assert entitlement.source == "CLAIM"
    assert CODE_RE.match(entitlement.unique_code)
    assert entitlement.valid_until == campaign.valid_until
    assert notifier.sent == [
        ("c-1", "Coupon Claimed!", "You have successfully claimed the coupon: Monsoon Deal")
    ]


@pytest.mark.asyncio
async def test_repeated_claim_returns_existing_entitlement(
    coupon_engine, session_factory, customers, notifier, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc)

    first = await coupon_engine.claim("c-1", campaign.id)
    second = await coupon_engine.claim("c-1", campaign.id)

    assert second.outcome is ClaimOutcome.ALREADY_CLAIMED
    assert second.idempotent_replay
    assert second.entitlement.id == first.entitlement.id
    assert await _count_entitlements(session_factory, campaign_id=campaign.id) == 1
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_concurrent_claims_create_single_entitlement(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc)
    barrier = asyncio.Event()

    async def _attempt():
        await barrier.wait()
        return await coupon_engine.claim("c-1", campaign.id)

    tasks = [asyncio.create_task(_attempt()) for _ in range(4)]
    barrier.set()
    results = await asyncio.gather(*tasks)

    assert len({result.entitlement.id for result in results}) == 1
    assert sorted(result.outcome.value for result in results).count("CLAIMED") == 1
    assert await _count_entitlements(session_factory, campaign_id=campaign.id) == 1


@pytest.mark.asyncio
async def test_claim_unknown_campaign_or_customer_is_not_found(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc)

    missing_campaign = await coupon_engine.claim("c-1", uuid4())
    assert missing_campaign.outcome is ClaimOutcome.NOT_FOUND
    assert isinstance(missing_campaign.error, CouponNotFoundError)

    missing_customer = await coupon_engine.claim("ghost", campaign.id)
    assert missing_customer.outcome is ClaimOutcome.NOT_FOUND
    assert missing_customer.entitlement is None


@pytest.mark.asyncio
async def test_geographic_campaign_accepts_mumbai_and_rejects_delhi(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("c-mumbai", city="Mumbai")
    customers.add("c-delhi", city="Delhi")
    campaign = await _create_campaign(
        session_factory,
        now_utc=now_utc,
        targeting={"type": "GEOGRAPHIC", "cities": ["Mumbai"], "areas": [], "stores": []},
    )

    accepted = await coupon_engine.claim("c-mumbai", campaign.id)
    rejected = await coupon_engine.claim("c-delhi", campaign.id)

    assert accepted.outcome is ClaimOutcome.CLAIMED
    assert rejected.outcome is ClaimOutcome.INELIGIBLE
    assert rejected.reasons == ["Coupon only available in: Mumbai"]
    assert isinstance(rejected.error, CouponIneligibleError)
    assert rejected.error.reasons == ["Coupon only available in: Mumbai"]


@pytest.mark.asyncio
async def test_purchase_history_campaign_requires_two_purchases(
    coupon_engine, session_factory, customers, purchase_history, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(
        session_factory,
        now_utc=now_utc,
        targeting={"type": "PURCHASE_HISTORY", "min_purchases": 2, "time_frame": "LAST_30_DAYS"},
    )
    purchase_history.add(
        "c-1",
        PurchaseRecord(final_amount=Decimal("400"), created_at=now_utc - timedelta(days=3)),
    )
    purchase_history.add(
        "c-1",
        PurchaseRecord(final_amount=Decimal("900"), created_at=now_utc - timedelta(days=45)),
    )

    rejected = await coupon_engine.claim("c-1", campaign.id)
    assert rejected.outcome is ClaimOutcome.INELIGIBLE
    assert rejected.reasons == ["Minimum 2 purchase(s) required"]

    purchase_history.add(
        "c-1",
        PurchaseRecord(final_amount=Decimal("150"), created_at=now_utc - timedelta(days=1)),
    )
    accepted = await coupon_engine.claim("c-1", campaign.id)
    assert accepted.outcome is ClaimOutcome.CLAIMED


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_claim(
    session_factory, customers, purchase_history, settings, clock, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc)
    engine = CouponEngine(
        session_factory=session_factory,
        purchase_history=purchase_history,
        customers=customers,
        notifier=RecordingNotifier(fail=True),
        settings=settings,
        clock=clock,
    )

    result = await engine.claim("c-1", campaign.id)

    assert result.outcome is ClaimOutcome.CLAIMED
    assert await _count_entitlements(session_factory, campaign_id=campaign.id, status="ACTIVE") == 1


@pytest.mark.asyncio
async def test_used_entitlement_blocks_reclaim_at_per_user_limit(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc, per_user_limit=1)
    claimed = await coupon_engine.claim("c-1", campaign.id)
    redeemed = await coupon_engine.redeem(
        claimed.entitlement.id,
        store_id="s-1",
        staff_id="st-1",
        purchase_id="p-1",
        amount_used=Decimal("100"),
    )
    assert redeemed.outcome is RedemptionOutcome.REDEEMED

    replay = await coupon_engine.claim("c-1", campaign.id)

    assert replay.outcome is ClaimOutcome.ALREADY_CLAIMED
    assert replay.entitlement.id == claimed.entitlement.id
    assert replay.entitlement.status == "USED"


@pytest.mark.asyncio
async def test_per_user_limit_above_one_allows_fresh_claim_after_use(
    coupon_engine, session_factory, customers, now_utc
) -> None:
    customers.add("c-1")
    campaign = await _create_campaign(session_factory, now_utc=now_utc, per_user_limit=2)
    first = await coupon_engine.claim("c-1", campaign.id)
    await coupon_engine.redeem(
        first.entitlement.id,
        store_id="s-1",
        staff_id="st-1",
        purchase_id="p-1",
        amount_used=Decimal("100"),
    )

    second = await coupon_engine.claim("c-1", campaign.id)

    assert second.outcome is ClaimOutcome.CLAIMED
    assert second.entitlement.id != first.entitlement.id
    assert await _count_entitlements(session_factory, campaign_id=campaign.id) == 2
