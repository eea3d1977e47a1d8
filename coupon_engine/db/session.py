from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from coupon_engine.core.config import get_settings


def _enable_sqlite_immediate_transactions(async_engine: AsyncEngine) -> None:
    # Writers queue on the database lock instead of failing on SHARED -> RESERVED upgrade.
    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        kwargs.setdefault("connect_args", {"timeout": 30})
    else:
        kwargs.setdefault("pool_pre_ping", True)

    async_engine = create_async_engine(database_url, **kwargs)
    if is_sqlite:
        _enable_sqlite_immediate_transactions(async_engine)
    return async_engine


def build_sessionmaker(async_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_sessionmaker(engine)


async def dispose_engine() -> None:
    await engine.dispose()
