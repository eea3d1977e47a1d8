from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement

UTC = timezone.utc


async def _create_campaign(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    now_utc: datetime,
    targeting: dict[str, Any] | None = None,
    **overrides: Any,
) -> Campaign:
    targeting = targeting or {"type": "ALL"}
    values: dict[str, Any] = {
        "id": uuid4(),
        "code": f"CAMP-{uuid4().hex[:8].upper()}",
        "title": "Weekend Saver",
        "description": None,
        "discount_type": "FIXED_AMOUNT",
        "discount_value": Decimal("100.00"),
        "max_discount": None,
        "min_purchase_amount": Decimal("0.00"),
        "targeting_type": targeting["type"],
        "targeting": targeting,
        "product_rule": {"type": "ALL_PRODUCTS"},
        "valid_from": now_utc - timedelta(days=1),
        "valid_until": now_utc + timedelta(days=30),
        "max_redemptions": 1000,
        "current_redemptions": 0,
        "per_user_limit": 1,
        "status": "ACTIVE",
        "created_by": "integration-test",
        "created_at": now_utc,
        "updated_at": now_utc,
    }
    values.update(overrides)
    campaign = Campaign(**values)
    async with session_factory.begin() as session:
        session.add(campaign)
        await session.flush()
    return campaign


async def _get_campaign(session_factory: async_sessionmaker[AsyncSession], campaign_id: UUID) -> Campaign:
    async with session_factory() as session:
        campaign = await session.get(Campaign, campaign_id)
        assert campaign is not None
        return campaign


async def _get_entitlement(
    session_factory: async_sessionmaker[AsyncSession],
    entitlement_id: UUID,
) -> Entitlement:
    async with session_factory() as session:
        entitlement = await session.get(Entitlement, entitlement_id)
        assert entitlement is not None
        return entitlement


async def _count_entitlements(
    session_factory: async_sessionmaker[AsyncSession],
    **filters: Any,
) -> int:
    stmt = select(func.count(Entitlement.id))
    for column, value in filters.items():
        stmt = stmt.where(getattr(Entitlement, column) == value)
    async with session_factory() as session:
        return int(await session.scalar(stmt) or 0)
