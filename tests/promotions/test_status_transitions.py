import pytest

from coupon_engine.promotions.errors import IllegalTransitionError
from coupon_engine.promotions.states import (
    CampaignStatus,
    EntitlementStatus,
    ReferralStatus,
    RewardStatus,
    transition_campaign,
    transition_entitlement,
    transition_referral,
    transition_reward,
)


def test_active_entitlement_can_be_used() -> None:
    assert transition_entitlement("ACTIVE", EntitlementStatus.USED) is EntitlementStatus.USED


@pytest.mark.parametrize("terminal", ["USED", "EXPIRED", "CANCELLED"])
def test_terminal_entitlement_states_reject_every_move(terminal: str) -> None:
    for target in EntitlementStatus:
        with pytest.raises(IllegalTransitionError):
            transition_entitlement(terminal, target)


def test_unknown_current_status_is_rejected() -> None:
    with pytest.raises(ValueError):
        transition_entitlement("REDEEMED", EntitlementStatus.USED)


def test_referral_cannot_skip_first_purchase() -> None:
    with pytest.raises(IllegalTransitionError):
        transition_referral("PENDING", ReferralStatus.COMPLETED)
    assert transition_referral("FIRST_PURCHASE", ReferralStatus.COMPLETED) is ReferralStatus.COMPLETED


def test_reward_must_be_issued_before_claim() -> None:
    with pytest.raises(IllegalTransitionError):
        transition_reward("PENDING", RewardStatus.CLAIMED)
    assert transition_reward("ISSUED", RewardStatus.CLAIMED) is RewardStatus.CLAIMED


def test_paused_campaign_can_resume_but_expired_cannot() -> None:
    assert transition_campaign("PAUSED", CampaignStatus.ACTIVE) is CampaignStatus.ACTIVE
    with pytest.raises(IllegalTransitionError):
        transition_campaign("EXPIRED", CampaignStatus.ACTIVE)
