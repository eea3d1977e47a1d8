from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.models.referrals import Referral


class ReferralsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, referral_id: UUID) -> Referral | None:
        return await session.get(Referral, referral_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, referral_id: UUID) -> Referral | None:
        stmt = select(Referral).where(Referral.id == referral_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_referred_customer_for_update(
        session: AsyncSession,
        *,
        referred_customer_id: str,
    ) -> Referral | None:
        stmt = (
            select(Referral)
            .where(Referral.referred_customer_id == referred_customer_id)
            .with_for_update()
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def has_completed_for_referred(session: AsyncSession, *, customer_id: str) -> bool:
        stmt = select(Referral.id).where(
            Referral.referred_customer_id == customer_id,
            Referral.status == "COMPLETED",
        )
        result = await session.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def create(session: AsyncSession, *, referral: Referral) -> Referral:
        session.add(referral)
        await session.flush()
        return referral

    @staticmethod
    async def expire_stale(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(Referral)
            .where(
                Referral.status.in_(("PENDING", "REGISTERED", "FIRST_PURCHASE")),
                Referral.expires_at < now_utc,
            )
            .values(status="EXPIRED", updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)

    @staticmethod
    async def get_referrer_stats(session: AsyncSession, *, referrer_id: str) -> dict[str, object]:
        stmt = select(
            func.count(Referral.id),
            func.coalesce(func.sum(Referral.referrer_reward_amount), 0),
            func.coalesce(
                func.sum(
                    case(
                        (Referral.referrer_reward_status == "PENDING", Referral.referrer_reward_amount),
                        else_=0,
                    )
                ),
                0,
            ),
        ).where(
            Referral.referrer_id == referrer_id,
            Referral.status.in_(("FIRST_PURCHASE", "COMPLETED")),
        )
        result = await session.execute(stmt)
        total_referrals, total_earnings, pending_earnings = result.one()
        return {
            "total_referrals": int(total_referrals or 0),
            "total_earnings": Decimal(str(total_earnings or 0)),
            "pending_earnings": Decimal(str(pending_earnings or 0)),
        }
