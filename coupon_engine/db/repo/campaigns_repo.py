from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.models.campaigns import Campaign


class CampaignsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, campaign_id: UUID) -> Campaign | None:
        return await session.get(Campaign, campaign_id)

    @staticmethod
    async def get_by_id_fresh(session: AsyncSession, campaign_id: UUID) -> Campaign | None:
        stmt = (
            select(Campaign)
            .where(Campaign.id == campaign_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_code(session: AsyncSession, code: str) -> Campaign | None:
        stmt = select(Campaign).where(Campaign.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_redeemable(
        session: AsyncSession,
        *,
        now_utc: datetime,
        targeting_type: str | None = None,
    ) -> list[Campaign]:
        stmt = select(Campaign).where(
            Campaign.status == "ACTIVE",
            Campaign.valid_from <= now_utc,
            Campaign.valid_until >= now_utc,
            Campaign.current_redemptions < Campaign.max_redemptions,
        )
        if targeting_type is not None:
            stmt = stmt.where(Campaign.targeting_type == targeting_type)
        result = await session.execute(stmt.order_by(Campaign.valid_until, Campaign.code))
        return list(result.scalars().all())

    @staticmethod
    async def list_campaigns(
        session: AsyncSession,
        *,
        status: str | None = None,
        limit: int = 100,
    ) -> list[Campaign]:
        stmt = select(Campaign)
        if status is not None:
            stmt = stmt.where(Campaign.status == status)
        result = await session.execute(stmt.order_by(Campaign.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def create(session: AsyncSession, *, campaign: Campaign) -> Campaign:
        session.add(campaign)
        await session.flush()
        return campaign

    @staticmethod
    async def try_increment_redemptions(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.status == "ACTIVE",
                Campaign.current_redemptions < Campaign.max_redemptions,
            )
            .values(
                current_redemptions=Campaign.current_redemptions + 1,
                updated_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0) == 1

    @staticmethod
    async def release_redemption(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.current_redemptions > 0,
            )
            .values(
                current_redemptions=Campaign.current_redemptions - 1,
                updated_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0) == 1

    @staticmethod
    async def set_status_if_current(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        expected_status: str,
        new_status: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Campaign)
            .where(Campaign.id == campaign_id, Campaign.status == expected_status)
            .values(status=new_status, updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0) == 1

    @staticmethod
    async def expire_active_campaigns(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(Campaign)
            .where(
                Campaign.status.in_(("ACTIVE", "PAUSED")),
                Campaign.valid_until < now_utc,
            )
            .values(status="EXPIRED", updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)
