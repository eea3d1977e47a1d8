from __future__ import annotations

import structlog

from coupon_engine.core.dates import utc_now
from coupon_engine.db.session import SessionLocal
from coupon_engine.promotions import redemption, referrals
from coupon_engine.workers.asyncio_runner import run_async_job
from coupon_engine.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def run_entitlement_expiry_async() -> dict[str, int]:
    now_utc = utc_now()
    async with SessionLocal.begin() as session:
        result = await redemption.expire_overdue(session, now_utc=now_utc)

    logger.info("entitlement_expiry_finished", **result)
    return result


async def run_referral_expiry_async() -> dict[str, int]:
    now_utc = utc_now()
    async with SessionLocal.begin() as session:
        expired_count = await referrals.expire_stale(session, now_utc=now_utc)

    result = {"expired_referrals": expired_count}
    logger.info("referral_expiry_finished", **result)
    return result


@celery_app.task(name="coupon_engine.workers.tasks.coupon_maintenance.run_entitlement_expiry")
def run_entitlement_expiry() -> dict[str, int]:
    return run_async_job(run_entitlement_expiry_async())


@celery_app.task(name="coupon_engine.workers.tasks.coupon_maintenance.run_referral_expiry")
def run_referral_expiry() -> dict[str, int]:
    return run_async_job(run_referral_expiry_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "entitlement-expiry-every-10-minutes": {
            "task": "coupon_engine.workers.tasks.coupon_maintenance.run_entitlement_expiry",
            "schedule": 600.0,
            "options": {"queue": "q_normal"},
        },
        "referral-expiry-hourly": {
            "task": "coupon_engine.workers.tasks.coupon_maintenance.run_referral_expiry",
            "schedule": 3600.0,
            "options": {"queue": "q_normal"},
        },
    }
)
