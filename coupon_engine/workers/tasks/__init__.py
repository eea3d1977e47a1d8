from coupon_engine.workers.tasks.coupon_maintenance import (
    run_entitlement_expiry,
    run_referral_expiry,
)

__all__ = [
    "run_entitlement_expiry",
    "run_referral_expiry",
]
