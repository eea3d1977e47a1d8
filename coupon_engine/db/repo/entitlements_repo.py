from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.db.models.entitlements import Entitlement


class EntitlementsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, entitlement_id: UUID) -> Entitlement | None:
        return await session.get(Entitlement, entitlement_id)

    @staticmethod
    async def get_by_id_fresh(session: AsyncSession, entitlement_id: UUID) -> Entitlement | None:
        stmt = (
            select(Entitlement)
            .where(Entitlement.id == entitlement_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_unique_code(session: AsyncSession, unique_code: str) -> Entitlement | None:
        stmt = select(Entitlement).where(Entitlement.unique_code == unique_code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def unique_code_exists(session: AsyncSession, unique_code: str) -> bool:
        stmt = select(Entitlement.id).where(Entitlement.unique_code == unique_code)
        result = await session.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession,
        idempotency_key: str,
    ) -> Entitlement | None:
        stmt = select(Entitlement).where(Entitlement.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active_for_customer(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        customer_id: str,
    ) -> Entitlement | None:
        stmt = select(Entitlement).where(
            Entitlement.campaign_id == campaign_id,
            Entitlement.customer_id == customer_id,
            Entitlement.status == "ACTIVE",
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_customer_campaign(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        customer_id: str,
        statuses: Sequence[str],
    ) -> list[Entitlement]:
        stmt = (
            select(Entitlement)
            .where(
                Entitlement.campaign_id == campaign_id,
                Entitlement.customer_id == customer_id,
                Entitlement.status.in_(tuple(statuses)),
            )
            .order_by(Entitlement.assigned_at.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def count_for_customer_campaign(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        customer_id: str,
        statuses: Sequence[str],
    ) -> int:
        stmt = select(func.count(Entitlement.id)).where(
            Entitlement.campaign_id == campaign_id,
            Entitlement.customer_id == customer_id,
            Entitlement.status.in_(tuple(statuses)),
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_for_customer(
        session: AsyncSession,
        *,
        customer_id: str,
        status: str | None = None,
    ) -> list[Entitlement]:
        stmt = select(Entitlement).where(Entitlement.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(Entitlement.status == status)
        result = await session.execute(stmt.order_by(Entitlement.assigned_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def create(session: AsyncSession, *, entitlement: Entitlement) -> Entitlement:
        session.add(entitlement)
        await session.flush()
        return entitlement

    @staticmethod
    async def mark_used_if_active(
        session: AsyncSession,
        *,
        entitlement_id: UUID,
        store_id: str,
        staff_id: str,
        purchase_id: str,
        amount_used: Decimal,
        notes: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(Entitlement)
            .where(
                Entitlement.id == entitlement_id,
                Entitlement.status == "ACTIVE",
            )
            .values(
                status="USED",
                redeemed_at=now_utc,
                redeemed_store_id=store_id,
                redeemed_staff_id=staff_id,
                redeemed_purchase_id=purchase_id,
                amount_used=amount_used,
                redemption_notes=notes,
                updated_at=now_utc,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0) == 1

    @staticmethod
    async def expire_overdue(session: AsyncSession, *, now_utc: datetime) -> int:
        stmt = (
            update(Entitlement)
            .where(
                Entitlement.status == "ACTIVE",
                Entitlement.valid_until < now_utc,
            )
            .values(status="EXPIRED", updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)

    @staticmethod
    async def list_used_for_campaign(
        session: AsyncSession,
        *,
        campaign_id: UUID,
        redeemed_from: datetime | None = None,
        redeemed_until: datetime | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Entitlement], int]:
        conditions = [Entitlement.campaign_id == campaign_id, Entitlement.status == "USED"]
        if redeemed_from is not None:
            conditions.append(Entitlement.redeemed_at >= redeemed_from)
        if redeemed_until is not None:
            conditions.append(Entitlement.redeemed_at <= redeemed_until)

        total = await session.scalar(select(func.count(Entitlement.id)).where(*conditions))
        stmt = (
            select(Entitlement)
            .where(*conditions)
            .order_by(Entitlement.redeemed_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all()), int(total or 0)
