from __future__ import annotations

from enum import Enum
from typing import TypeVar

from coupon_engine.promotions.errors import IllegalTransitionError


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"
    DELETED = "DELETED"


class EntitlementStatus(str, Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class ReferralStatus(str, Enum):
    PENDING = "PENDING"
    REGISTERED = "REGISTERED"
    FIRST_PURCHASE = "FIRST_PURCHASE"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class RewardStatus(str, Enum):
    PENDING = "PENDING"
    ISSUED = "ISSUED"
    CLAIMED = "CLAIMED"


CAMPAIGN_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.ACTIVE, CampaignStatus.DELETED}),
    CampaignStatus.ACTIVE: frozenset(
        {CampaignStatus.PAUSED, CampaignStatus.EXPIRED, CampaignStatus.DELETED}
    ),
    CampaignStatus.PAUSED: frozenset(
        {CampaignStatus.ACTIVE, CampaignStatus.EXPIRED, CampaignStatus.DELETED}
    ),
    CampaignStatus.EXPIRED: frozenset(),
    CampaignStatus.DELETED: frozenset(),
}

ENTITLEMENT_TRANSITIONS: dict[EntitlementStatus, frozenset[EntitlementStatus]] = {
    EntitlementStatus.ACTIVE: frozenset(
        {EntitlementStatus.USED, EntitlementStatus.EXPIRED, EntitlementStatus.CANCELLED}
    ),
    EntitlementStatus.USED: frozenset(),
    EntitlementStatus.EXPIRED: frozenset(),
    EntitlementStatus.CANCELLED: frozenset(),
}

REFERRAL_TRANSITIONS: dict[ReferralStatus, frozenset[ReferralStatus]] = {
    ReferralStatus.PENDING: frozenset(
        {ReferralStatus.REGISTERED, ReferralStatus.FIRST_PURCHASE, ReferralStatus.EXPIRED}
    ),
    ReferralStatus.REGISTERED: frozenset({ReferralStatus.FIRST_PURCHASE, ReferralStatus.EXPIRED}),
    ReferralStatus.FIRST_PURCHASE: frozenset({ReferralStatus.COMPLETED, ReferralStatus.EXPIRED}),
    ReferralStatus.COMPLETED: frozenset(),
    ReferralStatus.EXPIRED: frozenset(),
}

REWARD_TRANSITIONS: dict[RewardStatus, frozenset[RewardStatus]] = {
    RewardStatus.PENDING: frozenset({RewardStatus.ISSUED}),
    RewardStatus.ISSUED: frozenset({RewardStatus.CLAIMED}),
    RewardStatus.CLAIMED: frozenset(),
}

OPEN_REFERRAL_STATUSES = (ReferralStatus.PENDING, ReferralStatus.REGISTERED)
# Entitlements that count against a campaign's per-customer limit.
COUNTED_ENTITLEMENT_STATUSES = (EntitlementStatus.ACTIVE, EntitlementStatus.USED)

S = TypeVar("S", CampaignStatus, EntitlementStatus, ReferralStatus, RewardStatus)


def _transition(table: dict[S, frozenset[S]], current: str, target: S) -> S:
    current_state = type(target)(current)
    if target not in table[current_state]:
        raise IllegalTransitionError(
            f"{type(target).__name__}: {current_state.value} -> {target.value} is not allowed"
        )
    return target


def transition_campaign(current: str, target: CampaignStatus) -> CampaignStatus:
    return _transition(CAMPAIGN_TRANSITIONS, current, target)


def transition_entitlement(current: str, target: EntitlementStatus) -> EntitlementStatus:
    return _transition(ENTITLEMENT_TRANSITIONS, current, target)


def transition_referral(current: str, target: ReferralStatus) -> ReferralStatus:
    return _transition(REFERRAL_TRANSITIONS, current, target)


def transition_reward(current: str, target: RewardStatus) -> RewardStatus:
    return _transition(REWARD_TRANSITIONS, current, target)
