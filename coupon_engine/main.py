from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI

from coupon_engine.api.routes.health import router as health_router
from coupon_engine.api.routes.internal_coupons import router as internal_coupons_router
from coupon_engine.core.config import get_settings
from coupon_engine.core.logging import configure_logging
from coupon_engine.db.session import SessionLocal, dispose_engine
from coupon_engine.promotions import build_coupon_engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds) as client:
        app.state.coupon_engine = build_coupon_engine(
            session_factory=SessionLocal,
            client=client,
            settings=settings,
        )
        try:
            yield
        finally:
            app.state.coupon_engine = None
            await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Coupon Engine API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.include_router(health_router)
    app.include_router(internal_coupons_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "coupon_engine.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
