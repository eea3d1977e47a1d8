from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.models.referrals import Referral

__all__ = [
    "Campaign",
    "Entitlement",
    "Referral",
]
