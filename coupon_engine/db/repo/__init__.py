from coupon_engine.db.repo.campaigns_repo import CampaignsRepo
from coupon_engine.db.repo.entitlements_repo import EntitlementsRepo
from coupon_engine.db.repo.referrals_repo import ReferralsRepo

__all__ = [
    "CampaignsRepo",
    "EntitlementsRepo",
    "ReferralsRepo",
]
