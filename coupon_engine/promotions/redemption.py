from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.redemption_codes import normalize_redemption_code
from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.db.repo.entitlements_repo import EntitlementsRepo
from coupon_engine.promotions.errors import (
    CouponAlreadyUsedError,
    CouponExpiredError,
    CouponInternalError,
    CouponLimitReachedError,
    CouponNotFoundError,
    CouponNotRedeemableError,
    CouponValidationError,
)
from coupon_engine.promotions.rules import (
    calculate_discount,
    parse_product_rule,
    product_restrictions,
)
from coupon_engine.promotions.states import (
    CampaignStatus,
    EntitlementStatus,
    transition_entitlement,
)
from coupon_engine.promotions.types import (
    RedemptionHistory,
    RedemptionOutcome,
    RedemptionResult,
    ValidationResult,
)
from coupon_engine.services.qr_payloads import decode_qr_payload, looks_like_qr_payload

logger = structlog.get_logger(__name__)

MESSAGE_ALREADY_USED = "This coupon code was already used"
MESSAGE_LIMIT_REACHED = "Coupon redemption limit reached"
MESSAGE_EXPIRED = "Coupon has expired"
MESSAGE_NOT_FOUND = "Invalid coupon code"


def _status_message(status: str) -> str:
    return f"Coupon has been {status.lower()}"


def _format_amount(value: Decimal) -> str:
    return f"{value:.2f}"


def minimum_purchase_message(campaign: Campaign) -> str:
    return f"Minimum purchase of {_format_amount(campaign.min_purchase_amount)} required"


def discount_for(campaign: Campaign, purchase_amount: Decimal) -> Decimal:
    return calculate_discount(
        discount_type=campaign.discount_type,
        value=campaign.discount_value,
        purchase_amount=purchase_amount,
        max_discount=campaign.max_discount,
    )


async def _resolve_entitlement(
    session: AsyncSession,
    *,
    code: str,
    qr_secret: str,
) -> tuple[Entitlement | None, str | None]:
    if looks_like_qr_payload(code):
        try:
            payload = decode_qr_payload(code, secret=qr_secret)
        except CouponValidationError as exc:
            return None, str(exc)

        entitlement = await EntitlementsRepo.get_by_id(session, payload.entitlement_id)
        if entitlement is None:
            return None, MESSAGE_NOT_FOUND
        if (
            entitlement.customer_id != payload.customer_id
            or entitlement.campaign_id != payload.campaign_id
            or entitlement.unique_code != payload.unique_code
        ):
            logger.warning(
                "qr_payload_mismatch",
                entitlement_id=str(entitlement.id),
                payload_customer_id=payload.customer_id,
            )
            return None, "Invalid coupon data"
        return entitlement, None

    normalized = normalize_redemption_code(code)
    if not normalized:
        return None, MESSAGE_NOT_FOUND
    entitlement = await EntitlementsRepo.get_by_unique_code(session, normalized)
    if entitlement is None:
        return None, MESSAGE_NOT_FOUND
    return entitlement, None


async def validate_code(
    session: AsyncSession,
    *,
    code: str,
    qr_secret: str,
    now_utc: datetime,
    purchase_amount: Decimal | None = None,
) -> ValidationResult:
    """Checks a scanned or typed code at the till. Read-only."""
    entitlement, message = await _resolve_entitlement(session, code=code, qr_secret=qr_secret)
    if entitlement is None:
        return ValidationResult(valid=False, message=message or MESSAGE_NOT_FOUND)

    if entitlement.status != EntitlementStatus.ACTIVE.value:
        return ValidationResult(
            valid=False,
            message=_status_message(entitlement.status),
            entitlement=entitlement,
        )
    if now_utc > entitlement.valid_until:
        return ValidationResult(valid=False, message=MESSAGE_EXPIRED, entitlement=entitlement)

    campaign = await CampaignsRepo.get_by_id(session, entitlement.campaign_id)
    if campaign is None:
        return ValidationResult(valid=False, message=MESSAGE_NOT_FOUND, entitlement=entitlement)

    discount_amount: Decimal | None = None
    if purchase_amount is not None:
        if purchase_amount < campaign.min_purchase_amount:
            return ValidationResult(
                valid=False,
                message=minimum_purchase_message(campaign),
                entitlement=entitlement,
                campaign=campaign,
            )
        discount_amount = discount_for(campaign, purchase_amount)

    return ValidationResult(
        valid=True,
        message="Coupon is valid",
        entitlement=entitlement,
        campaign=campaign,
        discount_amount=discount_amount,
        product_restrictions=product_restrictions(parse_product_rule(campaign.product_rule)),
    )


async def redeem(
    session: AsyncSession,
    *,
    entitlement_id: UUID,
    store_id: str,
    staff_id: str,
    purchase_id: str,
    amount_used: Decimal,
    notes: str,
    now_utc: datetime,
    purchase_amount: Decimal | None = None,
) -> RedemptionResult:
    """Consumes an entitlement and takes one slot of the campaign ceiling.

    Both writes run in the caller's transaction. A lost race on the entitlement
    gives the counter slot back before returning, so the caller commits a
    consistent pair either way.
    """
    entitlement = await EntitlementsRepo.get_by_id_fresh(session, entitlement_id)
    if entitlement is None:
        return RedemptionResult(
            outcome=RedemptionOutcome.NOT_FOUND,
            message=MESSAGE_NOT_FOUND,
            error=CouponNotFoundError(MESSAGE_NOT_FOUND),
        )

    if entitlement.status == EntitlementStatus.USED.value:
        return RedemptionResult(
            outcome=RedemptionOutcome.ALREADY_USED,
            message=MESSAGE_ALREADY_USED,
            entitlement=entitlement,
            error=CouponAlreadyUsedError(MESSAGE_ALREADY_USED),
        )
    if entitlement.status != EntitlementStatus.ACTIVE.value:
        message = _status_message(entitlement.status)
        return RedemptionResult(
            outcome=RedemptionOutcome.NOT_REDEEMABLE,
            message=message,
            entitlement=entitlement,
            error=CouponNotRedeemableError(message),
        )
    transition_entitlement(entitlement.status, EntitlementStatus.USED)

    if now_utc > entitlement.valid_until:
        return RedemptionResult(
            outcome=RedemptionOutcome.EXPIRED,
            message=MESSAGE_EXPIRED,
            entitlement=entitlement,
            error=CouponExpiredError(MESSAGE_EXPIRED),
        )

    campaign = await CampaignsRepo.get_by_id_fresh(session, entitlement.campaign_id)
    if campaign is None or campaign.status != CampaignStatus.ACTIVE.value:
        message = "Coupon is not active"
        return RedemptionResult(
            outcome=RedemptionOutcome.NOT_REDEEMABLE,
            message=message,
            entitlement=entitlement,
            campaign=campaign,
            error=CouponNotRedeemableError(message),
        )

    if purchase_amount is not None and purchase_amount < campaign.min_purchase_amount:
        message = minimum_purchase_message(campaign)
        return RedemptionResult(
            outcome=RedemptionOutcome.NOT_REDEEMABLE,
            message=message,
            entitlement=entitlement,
            campaign=campaign,
            error=CouponNotRedeemableError(message),
        )

    reserved = await CampaignsRepo.try_increment_redemptions(
        session,
        campaign_id=campaign.id,
        now_utc=now_utc,
    )
    if not reserved:
        logger.info(
            "redemption_limit_reached",
            entitlement_id=str(entitlement.id),
            campaign_id=str(campaign.id),
        )
        return RedemptionResult(
            outcome=RedemptionOutcome.LIMIT_REACHED,
            message=MESSAGE_LIMIT_REACHED,
            entitlement=entitlement,
            campaign=campaign,
            error=CouponLimitReachedError(MESSAGE_LIMIT_REACHED),
        )

    marked = await EntitlementsRepo.mark_used_if_active(
        session,
        entitlement_id=entitlement.id,
        store_id=store_id,
        staff_id=staff_id,
        purchase_id=purchase_id,
        amount_used=amount_used,
        notes=notes,
        now_utc=now_utc,
    )
    if not marked:
        await CampaignsRepo.release_redemption(session, campaign_id=campaign.id, now_utc=now_utc)
        logger.info(
            "redemption_lost_race",
            entitlement_id=str(entitlement.id),
            campaign_id=str(campaign.id),
        )
        return RedemptionResult(
            outcome=RedemptionOutcome.ALREADY_USED,
            message=MESSAGE_ALREADY_USED,
            entitlement=entitlement,
            campaign=campaign,
            error=CouponAlreadyUsedError(MESSAGE_ALREADY_USED),
        )

    entitlement = await EntitlementsRepo.get_by_id_fresh(session, entitlement_id)
    campaign = await CampaignsRepo.get_by_id_fresh(session, campaign.id)
    if entitlement is None or campaign is None:
        raise CouponInternalError("redeemed entitlement vanished before commit")

    discount_amount = None
    if purchase_amount is not None:
        discount_amount = discount_for(campaign, purchase_amount)

    logger.info(
        "entitlement_redeemed",
        entitlement_id=str(entitlement.id),
        campaign_id=str(campaign.id),
        store_id=store_id,
        staff_id=staff_id,
        purchase_id=purchase_id,
    )
    return RedemptionResult(
        outcome=RedemptionOutcome.REDEEMED,
        message="Coupon redeemed successfully",
        entitlement=entitlement,
        campaign=campaign,
        discount_amount=discount_amount,
    )


async def redemption_history(
    session: AsyncSession,
    *,
    campaign_id: UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> RedemptionHistory | None:
    campaign = await CampaignsRepo.get_by_id(session, campaign_id)
    if campaign is None:
        return None

    page = max(page, 1)
    redemptions, total = await EntitlementsRepo.list_used_for_campaign(
        session,
        campaign_id=campaign_id,
        redeemed_from=start,
        redeemed_until=end,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return RedemptionHistory(
        campaign=campaign,
        redemptions=redemptions,
        total=total,
        page=page,
        limit=limit,
    )


async def expire_overdue(session: AsyncSession, *, now_utc: datetime) -> dict[str, int]:
    entitlements = await EntitlementsRepo.expire_overdue(session, now_utc=now_utc)
    campaigns = await CampaignsRepo.expire_active_campaigns(session, now_utc=now_utc)
    return {"entitlements_expired": entitlements, "campaigns_expired": campaigns}
