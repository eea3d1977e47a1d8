"""Campaign eligibility checks.

Every applicable check runs and contributes its reason, so a caller can show the
complete list of what is missing rather than only the first failure.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.repo.entitlements_repo import EntitlementsRepo
from coupon_engine.db.repo.referrals_repo import ReferralsRepo
from coupon_engine.promotions.rules import (
    GeographicTargeting,
    IndividualTargeting,
    PurchaseHistoryTargeting,
    ReferralTargeting,
    parse_targeting,
)
from coupon_engine.promotions.states import (
    COUNTED_ENTITLEMENT_STATUSES,
    CampaignStatus,
    EntitlementStatus,
)
from coupon_engine.promotions.types import EligibilityVerdict, TargetingCheck
from coupon_engine.services.customer_directory import CustomerProfile
from coupon_engine.services.purchase_ledger import PurchaseHistoryQuery, PurchaseRecord

TARGETING_CATEGORY = {
    "ALL": "common",
    "GEOGRAPHIC": "geographic",
    "INDIVIDUAL": "individual",
    "PURCHASE_HISTORY": "purchase_based",
    "REFERRAL": "referral",
}


def _fold(values: tuple[str, ...]) -> set[str]:
    return {value.strip().casefold() for value in values}


def check_geographic(customer: CustomerProfile, targeting: GeographicTargeting) -> TargetingCheck:
    check = TargetingCheck()

    if targeting.cities:
        if customer.city.strip().casefold() not in _fold(targeting.cities):
            check.fail(f"Coupon only available in: {', '.join(targeting.cities)}")
        else:
            check.conditions["cities"] = list(targeting.cities)

    if targeting.areas:
        if customer.area.strip().casefold() not in _fold(targeting.areas):
            check.fail(f"Coupon only available in: {', '.join(targeting.areas)}")
        else:
            check.conditions["areas"] = list(targeting.areas)

    if targeting.stores:
        check.conditions["stores"] = list(targeting.stores)

    return check


def check_individual(customer: CustomerProfile, targeting: IndividualTargeting) -> TargetingCheck:
    check = TargetingCheck()
    if customer.id not in targeting.customer_ids:
        check.fail("Coupon not assigned to you")
    return check


def check_purchase_history(
    purchases: list[PurchaseRecord],
    targeting: PurchaseHistoryTargeting,
) -> TargetingCheck:
    """Applies the optional count, category and spend thresholds to an already windowed history."""
    check = TargetingCheck()
    check.conditions["time_frame"] = targeting.time_frame or "ALL_TIME"

    if targeting.min_purchases:
        check.conditions["min_purchases"] = targeting.min_purchases
        check.conditions["current_purchases"] = len(purchases)
        if len(purchases) < targeting.min_purchases:
            check.fail(f"Minimum {targeting.min_purchases} purchase(s) required")

    if targeting.categories:
        required = set(targeting.categories)
        has_category = any(
            item.category in required for purchase in purchases for item in purchase.items
        )
        check.conditions["categories"] = list(targeting.categories)
        if not has_category:
            check.fail(f"Required purchase in categories: {', '.join(targeting.categories)}")

    if targeting.min_total_spent:
        total_spent = sum((purchase.final_amount for purchase in purchases), Decimal("0"))
        check.conditions["min_total_spent"] = str(targeting.min_total_spent)
        check.conditions["current_total_spent"] = str(total_spent)
        if total_spent < targeting.min_total_spent:
            check.fail(f"Minimum spend of {targeting.min_total_spent} required")

    return check


async def _load_purchases(
    purchase_history: PurchaseHistoryQuery,
    *,
    customer_id: str,
    targeting: PurchaseHistoryTargeting,
    now_utc: datetime,
) -> list[PurchaseRecord]:
    lookback = targeting.lookback
    since = now_utc - lookback if lookback is not None else None
    purchases = await purchase_history.list_purchases(customer_id, since=since)
    if since is None:
        return list(purchases)
    return [purchase for purchase in purchases if purchase.created_at >= since]


async def evaluate_eligibility(
    session: AsyncSession,
    *,
    customer: CustomerProfile,
    campaign: Campaign,
    purchase_history: PurchaseHistoryQuery,
    now_utc: datetime,
) -> EligibilityVerdict:
    reasons: list[str] = []
    conditions: dict[str, object] = {
        "validity": {
            "valid_from": campaign.valid_from.isoformat(),
            "valid_until": campaign.valid_until.isoformat(),
        },
        "redemptions": {
            "current": campaign.current_redemptions,
            "max": campaign.max_redemptions,
        },
    }

    if campaign.status != CampaignStatus.ACTIVE.value:
        reasons.append("Coupon is not active")

    if not (campaign.valid_from <= now_utc <= campaign.valid_until):
        reasons.append("Coupon is not valid at this time")

    if campaign.current_redemptions >= campaign.max_redemptions:
        reasons.append("Coupon redemption limit reached")

    held = await EntitlementsRepo.count_for_customer_campaign(
        session,
        campaign_id=campaign.id,
        customer_id=customer.id,
        statuses=[status.value for status in COUNTED_ENTITLEMENT_STATUSES],
    )
    conditions["per_user_limit"] = {"limit": campaign.per_user_limit, "held": held}
    if held >= campaign.per_user_limit:
        unused = await EntitlementsRepo.count_for_customer_campaign(
            session,
            campaign_id=campaign.id,
            customer_id=customer.id,
            statuses=[EntitlementStatus.ACTIVE.value],
        )
        if unused:
            reasons.append("You have already claimed this coupon")
        else:
            reasons.append("You have already used this coupon")

    targeting = parse_targeting(campaign.targeting)
    conditions["targeting_type"] = targeting.type
    if isinstance(targeting, GeographicTargeting):
        check = check_geographic(customer, targeting)
        conditions["geographic"] = check.conditions
    elif isinstance(targeting, IndividualTargeting):
        check = check_individual(customer, targeting)
    elif isinstance(targeting, PurchaseHistoryTargeting):
        purchases = await _load_purchases(
            purchase_history,
            customer_id=customer.id,
            targeting=targeting,
            now_utc=now_utc,
        )
        check = check_purchase_history(purchases, targeting)
        conditions["purchase_history"] = check.conditions
    elif isinstance(targeting, ReferralTargeting):
        check = TargetingCheck()
        if not await ReferralsRepo.has_completed_for_referred(session, customer_id=customer.id):
            check.fail("No completed referrals found")
    else:
        check = TargetingCheck()

    reasons.extend(check.reasons)
    return EligibilityVerdict(eligible=not reasons, reasons=reasons, conditions=conditions)
