from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coupon_engine.core.config import Settings
from coupon_engine.db.models.base import Base
from coupon_engine.db.session import build_engine, build_sessionmaker
from coupon_engine.promotions.engine import CouponEngine
from tests.coupon_fakes import (
    TEST_QR_SECRET,
    FakeCustomerDirectory,
    FakePurchaseHistory,
    FakeStoreDirectory,
    FrozenClock,
    RecordingNotifier,
)

UTC = timezone.utc


@pytest.fixture
def now_utc() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock(now_utc: datetime) -> FrozenClock:
    return FrozenClock(now_utc)


@pytest.fixture
def settings() -> Settings:
    return Settings().model_copy(
        update={
            "qr_signing_secret": TEST_QR_SECRET,
            "internal_api_token": "internal-secret",
            "internal_api_allowlist": "127.0.0.1/32",
        }
    )


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    async_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'coupons.db'}")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield build_sessionmaker(async_engine)
    finally:
        await async_engine.dispose()


@pytest.fixture
def customers() -> FakeCustomerDirectory:
    return FakeCustomerDirectory()


@pytest.fixture
def purchase_history() -> FakePurchaseHistory:
    return FakePurchaseHistory()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coupon_engine(
    session_factory: async_sessionmaker[AsyncSession],
    customers: FakeCustomerDirectory,
    purchase_history: FakePurchaseHistory,
    notifier: RecordingNotifier,
    settings: Settings,
    clock: FrozenClock,
) -> CouponEngine:
    return CouponEngine(
        session_factory=session_factory,
        purchase_history=purchase_history,
        customers=customers,
        notifier=notifier,
        stores=FakeStoreDirectory(),
        settings=settings,
        clock=clock,
    )
