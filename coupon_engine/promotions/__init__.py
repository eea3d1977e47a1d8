from coupon_engine.promotions.engine import CouponEngine, build_coupon_engine

__all__ = [
    "CouponEngine",
    "build_coupon_engine",
]
