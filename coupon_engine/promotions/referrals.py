from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.models.referrals import Referral
from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.db.repo.referrals_repo import ReferralsRepo
from coupon_engine.promotions.errors import (
    CouponConflictError,
    CouponInternalError,
    CouponValidationError,
)
from coupon_engine.promotions.issuance import SOURCE_REFERRAL, IssuanceSettings, issue_entitlement
from coupon_engine.promotions.rules import (
    AllProductsRule,
    DiscountType,
    IndividualTargeting,
    TargetingType,
    dump_rule,
)
from coupon_engine.promotions.states import (
    CampaignStatus,
    ReferralStatus,
    RewardStatus,
    transition_referral,
    transition_reward,
)
from coupon_engine.promotions.types import ReferralCascadeResult, ReferralOutcome

logger = structlog.get_logger(__name__)

REFERRER_TYPES = ("CUSTOMER", "STAFF")
CASCADE_ACTOR = "referral-cascade"


class RewardRole(str, Enum):
    REFERRER = "referrer"
    REFERRED = "referred"


@dataclass(frozen=True, slots=True)
class ReferralSettings:
    completion_threshold: Decimal = Decimal("5000")
    referrer_reward: Decimal = Decimal("500")
    referred_reward: Decimal = Decimal("300")
    referrer_min_purchase: Decimal = Decimal("10000")
    referred_min_purchase: Decimal = Decimal("5000")
    reward_valid_days: int = 60
    expiry_days: int = 90


@dataclass(frozen=True, slots=True)
class _RewardSpec:
    role: RewardRole
    customer_id: str
    code: str
    title: str
    description: str
    amount: Decimal
    min_purchase: Decimal


def reward_idempotency_key(referral_id: UUID, role: RewardRole) -> str:
    return f"referral:{referral_id}:{role.value}"


def _reward_specs(referral: Referral, settings: ReferralSettings) -> tuple[_RewardSpec, _RewardSpec]:
    suffix = referral.id.hex[:8].upper()
    return (
        _RewardSpec(
            role=RewardRole.REFERRER,
            customer_id=referral.referrer_id,
            code=f"REF-{referral.referrer_type}-{suffix}",
            title=f"Referral Bonus - {referral.referrer_reward_amount:.0f} Off",
            description="Reward for successful referral",
            amount=referral.referrer_reward_amount,
            min_purchase=settings.referrer_min_purchase,
        ),
        _RewardSpec(
            role=RewardRole.REFERRED,
            customer_id=referral.referred_customer_id,
            code=f"REF-USER-{suffix}",
            title=f"Welcome Bonus - {referral.referred_reward_amount:.0f} Off",
            description="Welcome reward for joining through referral",
            amount=referral.referred_reward_amount,
            min_purchase=settings.referred_min_purchase,
        ),
    )


async def _mint_reward(
    session: AsyncSession,
    *,
    referral: Referral,
    spec: _RewardSpec,
    referral_settings: ReferralSettings,
    issuance_settings: IssuanceSettings,
    now_utc: datetime,
) -> Entitlement:
    campaign = await CampaignsRepo.get_by_code(session, spec.code)
    if campaign is None:
        campaign = await CampaignsRepo.create(
            session,
            campaign=Campaign(
                id=uuid4(),
                code=spec.code,
                title=spec.title,
                description=spec.description,
                discount_type=DiscountType.FIXED_AMOUNT.value,
                discount_value=spec.amount,
                max_discount=None,
                min_purchase_amount=spec.min_purchase,
                targeting_type=TargetingType.INDIVIDUAL.value,
                targeting=dump_rule(IndividualTargeting(customer_ids=(spec.customer_id,))),
                product_rule=dump_rule(AllProductsRule()),
                valid_from=now_utc,
                valid_until=now_utc + timedelta(days=referral_settings.reward_valid_days),
                max_redemptions=1,
                current_redemptions=0,
                per_user_limit=1,
                status=CampaignStatus.ACTIVE.value,
                created_by=CASCADE_ACTOR,
                created_at=now_utc,
                updated_at=now_utc,
            ),
        )

    entitlement, _ = await issue_entitlement(
        session,
        campaign=campaign,
        customer_id=spec.customer_id,
        source=SOURCE_REFERRAL,
        settings=issuance_settings,
        now_utc=now_utc,
        idempotency_key=reward_idempotency_key(referral.id, spec.role),
    )

    prefix = spec.role.value
    setattr(referral, f"{prefix}_campaign_id", campaign.id)
    setattr(referral, f"{prefix}_entitlement_id", entitlement.id)
    setattr(
        referral,
        f"{prefix}_reward_status",
        transition_reward(getattr(referral, f"{prefix}_reward_status"), RewardStatus.ISSUED).value,
    )
    setattr(referral, f"{prefix}_issued_at", now_utc)
    return entitlement


def _result(referral: Referral, outcome: ReferralOutcome) -> ReferralCascadeResult:
    return ReferralCascadeResult(
        outcome=outcome,
        referral_id=referral.id,
        referrer_id=referral.referrer_id,
        referred_customer_id=referral.referred_customer_id,
        referrer_entitlement_id=referral.referrer_entitlement_id,
        referred_entitlement_id=referral.referred_entitlement_id,
    )


async def on_qualifying_purchase(
    session: AsyncSession,
    *,
    customer_id: str,
    purchase_id: str,
    final_amount: Decimal,
    purchased_at: datetime,
    referral_settings: ReferralSettings,
    issuance_settings: IssuanceSettings,
    now_utc: datetime,
) -> ReferralCascadeResult:
    """Advances the referral of a referred customer on their first purchase.

    When the purchase meets the completion threshold both reward entitlements are
    minted in the caller's transaction together with the status change, keyed by
    referral id so a retried call cannot mint twice.
    """
    referral = await ReferralsRepo.get_by_referred_customer_for_update(
        session,
        referred_customer_id=customer_id,
    )
    if referral is None:
        return ReferralCascadeResult(
            outcome=ReferralOutcome.NO_REFERRAL,
            referred_customer_id=customer_id,
        )

    status = ReferralStatus(referral.status)
    if status is ReferralStatus.COMPLETED:
        return _result(referral, ReferralOutcome.ALREADY_COMPLETED)
    if status is ReferralStatus.EXPIRED:
        return _result(referral, ReferralOutcome.EXPIRED)
    if status is ReferralStatus.FIRST_PURCHASE:
        return _result(referral, ReferralOutcome.NOT_FIRST_PURCHASE)

    if referral.expires_at < now_utc:
        referral.status = transition_referral(referral.status, ReferralStatus.EXPIRED).value
        referral.updated_at = now_utc
        await session.flush()
        logger.info("referral_expired_on_purchase", referral_id=str(referral.id))
        return _result(referral, ReferralOutcome.EXPIRED)

    referral.status = transition_referral(referral.status, ReferralStatus.FIRST_PURCHASE).value
    referral.first_purchase_date = purchased_at
    referral.qualifying_purchase_id = purchase_id
    referral.updated_at = now_utc

    if final_amount < referral_settings.completion_threshold:
        await session.flush()
        logger.info(
            "referral_first_purchase_below_threshold",
            referral_id=str(referral.id),
            final_amount=str(final_amount),
        )
        return _result(referral, ReferralOutcome.BELOW_THRESHOLD)

    referral.status = transition_referral(referral.status, ReferralStatus.COMPLETED).value
    referral.completion_date = now_utc
    try:
        for spec in _reward_specs(referral, referral_settings):
            await _mint_reward(
                session,
                referral=referral,
                spec=spec,
                referral_settings=referral_settings,
                issuance_settings=issuance_settings,
                now_utc=now_utc,
            )
        await session.flush()
    except CouponInternalError:
        logger.exception("referral_cascade_failed", referral_id=str(referral.id))
        raise
    except Exception as exc:
        logger.exception("referral_cascade_failed", referral_id=str(referral.id))
        raise CouponInternalError("referral reward issuance failed") from exc

    logger.info(
        "referral_completed",
        referral_id=str(referral.id),
        referrer_id=referral.referrer_id,
        referred_customer_id=referral.referred_customer_id,
    )
    return _result(referral, ReferralOutcome.COMPLETED)


async def register_referral(
    session: AsyncSession,
    *,
    referrer_id: str,
    referrer_type: str,
    referred_customer_id: str,
    settings: ReferralSettings,
    now_utc: datetime,
) -> Referral:
    referrer_type = referrer_type.strip().upper()
    if referrer_type not in REFERRER_TYPES:
        raise CouponValidationError(f"Unsupported referrer type: {referrer_type}")
    if referrer_id == referred_customer_id:
        raise CouponValidationError("Customers cannot refer themselves")

    referral = Referral(
        id=uuid4(),
        referrer_id=referrer_id,
        referrer_type=referrer_type,
        referred_customer_id=referred_customer_id,
        status=ReferralStatus.PENDING.value,
        referrer_reward_amount=settings.referrer_reward,
        referrer_reward_status=RewardStatus.PENDING.value,
        referred_reward_amount=settings.referred_reward,
        referred_reward_status=RewardStatus.PENDING.value,
        referral_date=now_utc,
        expires_at=now_utc + timedelta(days=settings.expiry_days),
        created_at=now_utc,
        updated_at=now_utc,
    )
    try:
        async with session.begin_nested():
            await ReferralsRepo.create(session, referral=referral)
    except IntegrityError as exc:
        raise CouponConflictError("Customer already has a referral") from exc

    logger.info(
        "referral_registered",
        referral_id=str(referral.id),
        referrer_id=referrer_id,
        referrer_type=referrer_type,
        referred_customer_id=referred_customer_id,
    )
    return referral


async def mark_registered(
    session: AsyncSession,
    *,
    referred_customer_id: str,
    now_utc: datetime,
) -> Referral | None:
    referral = await ReferralsRepo.get_by_referred_customer_for_update(
        session,
        referred_customer_id=referred_customer_id,
    )
    if referral is None:
        return None
    referral.status = transition_referral(referral.status, ReferralStatus.REGISTERED).value
    referral.registration_date = now_utc
    referral.updated_at = now_utc
    await session.flush()
    return referral


async def mark_reward_claimed(
    session: AsyncSession,
    *,
    referral_id: UUID,
    role: RewardRole,
    now_utc: datetime,
) -> Referral | None:
    referral = await ReferralsRepo.get_by_id_for_update(session, referral_id)
    if referral is None:
        return None
    prefix = role.value
    current = getattr(referral, f"{prefix}_reward_status")
    setattr(referral, f"{prefix}_reward_status", transition_reward(current, RewardStatus.CLAIMED).value)
    setattr(referral, f"{prefix}_claimed_at", now_utc)
    referral.updated_at = now_utc
    await session.flush()
    return referral


async def referrer_stats(session: AsyncSession, *, referrer_id: str) -> dict[str, object]:
    return await ReferralsRepo.get_referrer_stats(session, referrer_id=referrer_id)


async def expire_stale(session: AsyncSession, *, now_utc: datetime) -> int:
    return await ReferralsRepo.expire_stale(session, now_utc=now_utc)
