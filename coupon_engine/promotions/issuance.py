from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.redemption_codes import generate_redemption_code
from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.db.repo.entitlements_repo import EntitlementsRepo
from coupon_engine.promotions.eligibility import evaluate_eligibility
from coupon_engine.promotions.errors import (
    CouponIneligibleError,
    CouponInternalError,
    CouponNotFoundError,
)
from coupon_engine.promotions.states import EntitlementStatus
from coupon_engine.promotions.types import (
    AssignmentRecord,
    AssignmentStatus,
    ClaimOutcome,
    ClaimResult,
)
from coupon_engine.services.customer_directory import CustomerProfile
from coupon_engine.services.purchase_ledger import PurchaseHistoryQuery
from coupon_engine.services.qr_payloads import QrPayload, encode_qr_payload

logger = structlog.get_logger(__name__)

SOURCE_CLAIM = "CLAIM"
SOURCE_ASSIGNMENT = "ASSIGNMENT"
SOURCE_REFERRAL = "REFERRAL"
NON_CANCELLED_STATUSES = (
    EntitlementStatus.ACTIVE.value,
    EntitlementStatus.USED.value,
    EntitlementStatus.EXPIRED.value,
)


@dataclass(frozen=True, slots=True)
class IssuanceSettings:
    qr_signing_secret: str
    code_prefix: str = "RK"
    max_code_attempts: int = 10


async def generate_unique_code(
    session: AsyncSession,
    *,
    prefix: str,
    max_attempts: int,
) -> str:
    for _ in range(max_attempts):
        unique_code = generate_redemption_code(prefix)
        if not await EntitlementsRepo.unique_code_exists(session, unique_code):
            return unique_code
    raise CouponInternalError("unable to generate unique redemption code")


async def issue_entitlement(
    session: AsyncSession,
    *,
    campaign: Campaign,
    customer_id: str,
    source: str,
    settings: IssuanceSettings,
    now_utc: datetime,
    idempotency_key: str | None = None,
) -> tuple[Entitlement, bool]:
    """Creates an entitlement without running eligibility.

    Returns ``(entitlement, created)``. When a concurrent caller already holds the
    single ACTIVE slot for the customer and campaign, that row is returned with
    ``created=False``.
    """
    if idempotency_key is not None:
        existing = await EntitlementsRepo.get_by_idempotency_key(session, idempotency_key)
        if existing is not None:
            return existing, False

    for attempt in range(1, settings.max_code_attempts + 1):
        unique_code = await generate_unique_code(
            session,
            prefix=settings.code_prefix,
            max_attempts=settings.max_code_attempts,
        )
        entitlement_id = uuid4()
        entitlement = Entitlement(
            id=entitlement_id,
            campaign_id=campaign.id,
            customer_id=customer_id,
            unique_code=unique_code,
            qr_payload=encode_qr_payload(
                QrPayload(
                    entitlement_id=entitlement_id,
                    customer_id=customer_id,
                    campaign_id=campaign.id,
                    unique_code=unique_code,
                    issued_at=now_utc,
                ),
                secret=settings.qr_signing_secret,
            ),
            status=EntitlementStatus.ACTIVE.value,
            source=source,
            idempotency_key=idempotency_key,
            valid_from=campaign.valid_from,
            valid_until=campaign.valid_until,
            assigned_at=now_utc,
            created_at=now_utc,
            updated_at=now_utc,
        )

        try:
            async with session.begin_nested():
                await EntitlementsRepo.create(session, entitlement=entitlement)
        except IntegrityError:
            if idempotency_key is not None:
                replay = await EntitlementsRepo.get_by_idempotency_key(session, idempotency_key)
                if replay is not None:
                    return replay, False
            active = await EntitlementsRepo.get_active_for_customer(
                session,
                campaign_id=campaign.id,
                customer_id=customer_id,
            )
            if active is not None:
                return active, False
            logger.warning(
                "entitlement_code_collision",
                campaign_id=str(campaign.id),
                attempt=attempt,
            )
            continue

        logger.info(
            "entitlement_issued",
            entitlement_id=str(entitlement.id),
            campaign_id=str(campaign.id),
            customer_id=customer_id,
            source=source,
        )
        return entitlement, True

    logger.error(
        "entitlement_code_generation_exhausted",
        campaign_id=str(campaign.id),
        attempts=settings.max_code_attempts,
    )
    raise CouponInternalError("unable to generate unique redemption code")


def _pick_existing(held: list[Entitlement], *, per_user_limit: int) -> Entitlement | None:
    if not held:
        return None
    for entitlement in held:
        if entitlement.status == EntitlementStatus.ACTIVE.value:
            return entitlement
    if len(held) >= per_user_limit:
        return held[0]
    return None


async def claim(
    session: AsyncSession,
    *,
    customer: CustomerProfile,
    campaign_id: UUID,
    purchase_history: PurchaseHistoryQuery,
    settings: IssuanceSettings,
    now_utc: datetime,
) -> ClaimResult:
    campaign = await CampaignsRepo.get_by_id(session, campaign_id)
    if campaign is None:
        return ClaimResult(
            outcome=ClaimOutcome.NOT_FOUND,
            error=CouponNotFoundError("Coupon not found"),
        )

    held = await EntitlementsRepo.list_for_customer_campaign(
        session,
        campaign_id=campaign.id,
        customer_id=customer.id,
        statuses=NON_CANCELLED_STATUSES,
    )
    existing = _pick_existing(held, per_user_limit=campaign.per_user_limit)
    if existing is not None:
        return ClaimResult(
            outcome=ClaimOutcome.ALREADY_CLAIMED,
            entitlement=existing,
            campaign=campaign,
            idempotent_replay=True,
        )

    verdict = await evaluate_eligibility(
        session,
        customer=customer,
        campaign=campaign,
        purchase_history=purchase_history,
        now_utc=now_utc,
    )
    if not verdict.eligible:
        logger.info(
            "claim_rejected_ineligible",
            campaign_id=str(campaign.id),
            customer_id=customer.id,
            reasons=verdict.reasons,
        )
        return ClaimResult(
            outcome=ClaimOutcome.INELIGIBLE,
            campaign=campaign,
            reasons=verdict.reasons,
            error=CouponIneligibleError(verdict.reasons),
        )

    entitlement, created = await issue_entitlement(
        session,
        campaign=campaign,
        customer_id=customer.id,
        source=SOURCE_CLAIM,
        settings=settings,
        now_utc=now_utc,
    )
    return ClaimResult(
        outcome=ClaimOutcome.CLAIMED if created else ClaimOutcome.ALREADY_CLAIMED,
        entitlement=entitlement,
        campaign=campaign,
        idempotent_replay=not created,
    )


async def assign(
    session: AsyncSession,
    *,
    customer: CustomerProfile,
    campaign: Campaign,
    purchase_history: PurchaseHistoryQuery,
    settings: IssuanceSettings,
    now_utc: datetime,
) -> tuple[AssignmentRecord, Entitlement | None]:
    """Administrative issuance to one customer; eligibility still applies."""
    active = await EntitlementsRepo.get_active_for_customer(
        session,
        campaign_id=campaign.id,
        customer_id=customer.id,
    )
    if active is not None:
        return (
            AssignmentRecord(
                customer_id=customer.id,
                status=AssignmentStatus.ALREADY_ASSIGNED,
                unique_code=active.unique_code,
            ),
            None,
        )

    verdict = await evaluate_eligibility(
        session,
        customer=customer,
        campaign=campaign,
        purchase_history=purchase_history,
        now_utc=now_utc,
    )
    if not verdict.eligible:
        return (
            AssignmentRecord(
                customer_id=customer.id,
                status=AssignmentStatus.INELIGIBLE,
                message="; ".join(verdict.reasons),
            ),
            None,
        )

    entitlement, created = await issue_entitlement(
        session,
        campaign=campaign,
        customer_id=customer.id,
        source=SOURCE_ASSIGNMENT,
        settings=settings,
        now_utc=now_utc,
    )
    status = AssignmentStatus.ASSIGNED if created else AssignmentStatus.ALREADY_ASSIGNED
    return (
        AssignmentRecord(
            customer_id=customer.id,
            status=status,
            unique_code=entitlement.unique_code,
        ),
        entitlement if created else None,
    )
