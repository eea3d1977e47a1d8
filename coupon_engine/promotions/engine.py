"""Public entry point of the coupon engine.

``CouponEngine`` owns transaction boundaries: every operation opens its own
session, commits when the workflow returns, and only then sends customer
notifications so a failing notifier can never undo a committed write.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_engine.core.config import Settings, get_settings
from coupon_engine.core.dates import utc_now
from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.models.referrals import Referral
from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.db.repo.entitlements_repo import EntitlementsRepo
from coupon_engine.promotions import campaigns as campaign_admin
from coupon_engine.promotions import issuance, redemption, referrals
from coupon_engine.promotions.campaigns import CampaignDraft
from coupon_engine.promotions.eligibility import TARGETING_CATEGORY, evaluate_eligibility
from coupon_engine.promotions.errors import CouponEngineError, CouponNotFoundError
from coupon_engine.promotions.issuance import IssuanceSettings
from coupon_engine.promotions.referrals import ReferralSettings, RewardRole
from coupon_engine.promotions.states import CampaignStatus, EntitlementStatus
from coupon_engine.promotions.types import (
    AssignmentRecord,
    AssignmentStatus,
    ClaimOutcome,
    ClaimResult,
    EligibilityVerdict,
    EligibleCampaigns,
    RedemptionHistory,
    RedemptionOutcome,
    RedemptionResult,
    ReferralCascadeResult,
    ReferralOutcome,
    ValidationResult,
)
from coupon_engine.services.customer_directory import (
    CustomerDirectory,
    HttpCustomerDirectory,
    HttpStoreDirectory,
    StoreDirectory,
)
from coupon_engine.services.notifications import (
    LoggingNotifier,
    Notifier,
    WebhookNotifier,
    dispatch_notification,
)
from coupon_engine.services.purchase_ledger import (
    HttpPurchaseLedger,
    PurchaseHistoryQuery,
    PurchaseRecord,
)

logger = structlog.get_logger(__name__)


class _MemoizedPurchaseHistory:
    """Serves repeated lookups for one customer from a single ledger call per window."""

    def __init__(self, source: PurchaseHistoryQuery) -> None:
        self._source = source
        self._cache: dict[tuple[str, datetime | None], list[PurchaseRecord]] = {}

    async def list_purchases(
        self,
        customer_id: str,
        *,
        since: datetime | None = None,
    ) -> list[PurchaseRecord]:
        key = (customer_id, since)
        if key not in self._cache:
            self._cache[key] = await self._source.list_purchases(customer_id, since=since)
        return self._cache[key]


def issuance_settings_from(settings: Settings) -> IssuanceSettings:
    return IssuanceSettings(
        qr_signing_secret=settings.qr_signing_secret,
        code_prefix=settings.code_prefix,
        max_code_attempts=settings.code_generation_max_attempts,
    )


def referral_settings_from(settings: Settings) -> ReferralSettings:
    return ReferralSettings(
        completion_threshold=settings.referral_completion_threshold,
        referrer_reward=settings.referral_referrer_reward,
        referred_reward=settings.referral_referred_reward,
        referrer_min_purchase=settings.referral_referrer_min_purchase,
        referred_min_purchase=settings.referral_referred_min_purchase,
        reward_valid_days=settings.referral_reward_valid_days,
        expiry_days=settings.referral_expiry_days,
    )


class CouponEngine:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        purchase_history: PurchaseHistoryQuery,
        customers: CustomerDirectory,
        notifier: Notifier,
        stores: StoreDirectory | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        resolved = settings or get_settings()
        self._session_factory = session_factory
        self._purchase_history = purchase_history
        self._customers = customers
        self._notifier = notifier
        self._stores = stores
        self._clock = clock
        self._qr_secret = resolved.qr_signing_secret
        self._issuance = issuance_settings_from(resolved)
        self._referrals = referral_settings_from(resolved)

    async def _notify(self, *, customer_id: str, title: str, body: str, event: str) -> None:
        await dispatch_notification(
            self._notifier,
            customer_id=customer_id,
            title=title,
            body=body,
            event=event,
        )

    async def _store_label(self, store_id: str) -> str:
        if self._stores is None:
            return store_id
        try:
            store = await self._stores.get_store(store_id)
        except httpx.HTTPError:
            logger.warning("store_directory_lookup_failed", store_id=store_id)
            return store_id
        return store.name if store is not None else store_id

    async def evaluate_eligibility(self, customer_id: str, campaign_id: UUID) -> EligibilityVerdict:
        customer = await self._customers.get_customer(customer_id)
        if customer is None:
            return EligibilityVerdict(eligible=False, reasons=["Customer not found"])

        async with self._session_factory() as session:
            campaign = await CampaignsRepo.get_by_id(session, campaign_id)
            if campaign is None:
                return EligibilityVerdict(eligible=False, reasons=["Coupon not found"])
            return await evaluate_eligibility(
                session,
                customer=customer,
                campaign=campaign,
                purchase_history=self._purchase_history,
                now_utc=self._clock(),
            )

    async def list_eligible_campaigns(self, customer_id: str) -> EligibleCampaigns:
        customer = await self._customers.get_customer(customer_id)
        if customer is None:
            raise CouponNotFoundError("Customer not found")

        now_utc = self._clock()
        history = _MemoizedPurchaseHistory(self._purchase_history)
        categorized: dict[str, list[Campaign]] = {
            category: [] for category in TARGETING_CATEGORY.values()
        }
        async with self._session_factory() as session:
            for campaign in await CampaignsRepo.list_redeemable(session, now_utc=now_utc):
                verdict = await evaluate_eligibility(
                    session,
                    customer=customer,
                    campaign=campaign,
                    purchase_history=history,
                    now_utc=now_utc,
                )
                if verdict.eligible:
                    categorized[TARGETING_CATEGORY[campaign.targeting_type]].append(campaign)
        return EligibleCampaigns(customer=customer, categorized=categorized)

    async def claim(self, customer_id: str, campaign_id: UUID) -> ClaimResult:
        customer = await self._customers.get_customer(customer_id)
        if customer is None:
            return ClaimResult(
                outcome=ClaimOutcome.NOT_FOUND,
                error=CouponNotFoundError("Customer not found"),
            )

        async with self._session_factory.begin() as session:
            result = await issuance.claim(
                session,
                customer=customer,
                campaign_id=campaign_id,
                purchase_history=self._purchase_history,
                settings=self._issuance,
                now_utc=self._clock(),
            )

        if result.outcome is ClaimOutcome.CLAIMED and result.campaign is not None:
            await self._notify(
                customer_id=customer.id,
                title="Coupon Claimed!",
                body=f"You have successfully claimed the coupon: {result.campaign.title}",
                event="coupon_claimed",
            )
        return result

    async def assign_to_customers(
        self,
        campaign_id: UUID,
        customer_ids: list[str],
    ) -> list[AssignmentRecord]:
        async with self._session_factory() as session:
            campaign = await CampaignsRepo.get_by_id(session, campaign_id)
        if campaign is None:
            raise CouponNotFoundError("Coupon not found")

        records: list[AssignmentRecord] = []
        for customer_id in dict.fromkeys(customer_ids):
            customer = await self._customers.get_customer(customer_id)
            if customer is None:
                records.append(
                    AssignmentRecord(
                        customer_id=customer_id,
                        status=AssignmentStatus.FAILED,
                        message="Customer not found",
                    )
                )
                continue

            try:
                async with self._session_factory.begin() as session:
                    record, issued = await issuance.assign(
                        session,
                        customer=customer,
                        campaign=campaign,
                        purchase_history=self._purchase_history,
                        settings=self._issuance,
                        now_utc=self._clock(),
                    )
            except (CouponEngineError, SQLAlchemyError) as exc:
                logger.exception(
                    "coupon_assignment_failed",
                    campaign_id=str(campaign_id),
                    customer_id=customer_id,
                )
                records.append(
                    AssignmentRecord(
                        customer_id=customer_id,
                        status=AssignmentStatus.FAILED,
                        message=str(exc) or type(exc).__name__,
                    )
                )
                continue

            records.append(record)
            if issued is not None:
                await self._notify(
                    customer_id=customer_id,
                    title="New Coupon Available!",
                    body=f"You have received a new coupon: {campaign.title}",
                    event="coupon_assigned",
                )

        logger.info(
            "coupon_assignment_completed",
            campaign_id=str(campaign_id),
            requested=len(customer_ids),
            assigned=sum(1 for record in records if record.status is AssignmentStatus.ASSIGNED),
        )
        return records

    async def list_customer_entitlements(
        self,
        customer_id: str,
        status: EntitlementStatus | None = None,
    ) -> list[Entitlement]:
        async with self._session_factory() as session:
            return await EntitlementsRepo.list_for_customer(
                session,
                customer_id=customer_id,
                status=status.value if status is not None else None,
            )

    async def validate_redemption_code(
        self,
        code: str,
        *,
        purchase_amount: Decimal | None = None,
    ) -> ValidationResult:
        async with self._session_factory() as session:
            result = await redemption.validate_code(
                session,
                code=code,
                qr_secret=self._qr_secret,
                now_utc=self._clock(),
                purchase_amount=purchase_amount,
            )

        if result.valid and result.entitlement is not None:
            result.customer = await self._customers.get_customer(result.entitlement.customer_id)
        return result

    async def redeem(
        self,
        entitlement_id: UUID,
        *,
        store_id: str,
        staff_id: str,
        purchase_id: str,
        amount_used: Decimal,
        notes: str = "",
        purchase_amount: Decimal | None = None,
    ) -> RedemptionResult:
        async with self._session_factory.begin() as session:
            result = await redemption.redeem(
                session,
                entitlement_id=entitlement_id,
                store_id=store_id,
                staff_id=staff_id,
                purchase_id=purchase_id,
                amount_used=amount_used,
                notes=notes,
                now_utc=self._clock(),
                purchase_amount=purchase_amount,
            )

        if result.outcome is RedemptionOutcome.REDEEMED and result.entitlement is not None:
            store_label = await self._store_label(store_id)
            title = result.campaign.title if result.campaign is not None else "coupon"
            await self._notify(
                customer_id=result.entitlement.customer_id,
                title="Coupon Redeemed",
                body=f"Your coupon {title} was redeemed at {store_label}",
                event="coupon_redeemed",
            )
        return result

    async def redemption_history(
        self,
        campaign_id: UUID,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> RedemptionHistory:
        async with self._session_factory() as session:
            history = await redemption.redemption_history(
                session,
                campaign_id=campaign_id,
                start=start,
                end=end,
                page=page,
                limit=limit,
            )
        if history is None:
            raise CouponNotFoundError("Coupon not found")
        return history

    async def on_qualifying_purchase(
        self,
        customer_id: str,
        *,
        purchase_id: str,
        final_amount: Decimal,
        purchased_at: datetime | None = None,
    ) -> ReferralCascadeResult:
        now_utc = self._clock()
        async with self._session_factory.begin() as session:
            result = await referrals.on_qualifying_purchase(
                session,
                customer_id=customer_id,
                purchase_id=purchase_id,
                final_amount=final_amount,
                purchased_at=purchased_at or now_utc,
                referral_settings=self._referrals,
                issuance_settings=self._issuance,
                now_utc=now_utc,
            )

        if result.outcome is ReferralOutcome.COMPLETED:
            if result.referrer_id is not None:
                await self._notify(
                    customer_id=result.referrer_id,
                    title="Referral Reward Unlocked",
                    body="Your referral completed a first purchase. A reward coupon is waiting.",
                    event="referral_reward_referrer",
                )
            if result.referred_customer_id is not None:
                await self._notify(
                    customer_id=result.referred_customer_id,
                    title="Welcome Reward Unlocked",
                    body="Thanks for your first purchase. A welcome coupon is waiting.",
                    event="referral_reward_referred",
                )
        return result

    async def register_referral(
        self,
        *,
        referrer_id: str,
        referrer_type: str,
        referred_customer_id: str,
    ) -> Referral:
        async with self._session_factory.begin() as session:
            return await referrals.register_referral(
                session,
                referrer_id=referrer_id,
                referrer_type=referrer_type,
                referred_customer_id=referred_customer_id,
                settings=self._referrals,
                now_utc=self._clock(),
            )

    async def mark_referral_registered(self, referred_customer_id: str) -> Referral:
        async with self._session_factory.begin() as session:
            referral = await referrals.mark_registered(
                session,
                referred_customer_id=referred_customer_id,
                now_utc=self._clock(),
            )
        if referral is None:
            raise CouponNotFoundError("Referral not found")
        return referral

    async def mark_reward_claimed(self, referral_id: UUID, role: RewardRole) -> Referral:
        async with self._session_factory.begin() as session:
            referral = await referrals.mark_reward_claimed(
                session,
                referral_id=referral_id,
                role=role,
                now_utc=self._clock(),
            )
        if referral is None:
            raise CouponNotFoundError("Referral not found")
        return referral

    async def referrer_stats(self, referrer_id: str) -> dict[str, object]:
        async with self._session_factory() as session:
            return await referrals.referrer_stats(session, referrer_id=referrer_id)

    async def create_campaign(self, draft: CampaignDraft) -> Campaign:
        async with self._session_factory.begin() as session:
            return await campaign_admin.create_campaign(session, draft=draft, now_utc=self._clock())

    async def update_campaign_status(
        self,
        campaign_id: UUID,
        status: CampaignStatus,
        *,
        reason: str | None = None,
    ) -> Campaign:
        async with self._session_factory.begin() as session:
            return await campaign_admin.update_campaign_status(
                session,
                campaign_id=campaign_id,
                status=status,
                now_utc=self._clock(),
                reason=reason,
            )

    async def list_campaigns(
        self,
        *,
        status: CampaignStatus | None = None,
        limit: int = 100,
    ) -> list[Campaign]:
        async with self._session_factory() as session:
            return await CampaignsRepo.list_campaigns(
                session,
                status=status.value if status is not None else None,
                limit=limit,
            )

    async def expire_overdue(self) -> dict[str, int]:
        async with self._session_factory.begin() as session:
            return await redemption.expire_overdue(session, now_utc=self._clock())

    async def expire_stale_referrals(self) -> int:
        async with self._session_factory.begin() as session:
            return await referrals.expire_stale(session, now_utc=self._clock())


def build_coupon_engine(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> CouponEngine:
    """Wires the engine to the HTTP collaborators named in settings."""
    resolved = settings or get_settings()
    notifier: Notifier = LoggingNotifier()
    if resolved.notification_webhook_url:
        notifier = WebhookNotifier(url=resolved.notification_webhook_url, client=client)
    stores: StoreDirectory | None = None
    if resolved.store_directory_url:
        stores = HttpStoreDirectory(base_url=resolved.store_directory_url, client=client)

    return CouponEngine(
        session_factory=session_factory,
        purchase_history=HttpPurchaseLedger(base_url=resolved.purchase_ledger_url, client=client),
        customers=HttpCustomerDirectory(base_url=resolved.customer_directory_url, client=client),
        notifier=notifier,
        stores=stores,
        settings=resolved,
    )
