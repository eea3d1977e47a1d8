from __future__ import annotations

from typing import NoReturn

import structlog
from fastapi import HTTPException, Request

from coupon_engine.core.config import get_settings
from coupon_engine.db.models.campaigns import Campaign
from coupon_engine.db.models.entitlements import Entitlement
from coupon_engine.db.models.referrals import Referral
from coupon_engine.promotions.engine import CouponEngine
from coupon_engine.promotions.errors import (
    CouponConflictError,
    CouponEngineError,
    CouponNotFoundError,
    CouponValidationError,
    IllegalTransitionError,
)
from coupon_engine.promotions.types import ClaimOutcome, RedemptionOutcome
from coupon_engine.services.customer_directory import CustomerProfile
from coupon_engine.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

from .internal_coupons_models import (
    CampaignResponse,
    CustomerResponse,
    EntitlementResponse,
    ReferralResponse,
)

logger = structlog.get_logger(__name__)

CLAIM_FAILURES = {
    ClaimOutcome.NOT_FOUND: (404, "E_COUPON_NOT_FOUND"),
    ClaimOutcome.INELIGIBLE: (422, "E_COUPON_INELIGIBLE"),
}
REDEMPTION_FAILURES = {
    RedemptionOutcome.NOT_FOUND: (404, "E_COUPON_NOT_FOUND"),
    RedemptionOutcome.ALREADY_USED: (409, "E_COUPON_ALREADY_USED"),
    RedemptionOutcome.LIMIT_REACHED: (409, "E_COUPON_LIMIT_REACHED"),
    RedemptionOutcome.EXPIRED: (410, "E_COUPON_EXPIRED"),
    RedemptionOutcome.NOT_REDEEMABLE: (422, "E_COUPON_NOT_REDEEMABLE"),
}


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_coupons_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(
        request,
        expected_token=settings.internal_api_token,
    ):
        logger.warning(
            "internal_coupons_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def get_coupon_engine(request: Request) -> CouponEngine:
    engine = getattr(request.app.state, "coupon_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail={"code": "E_ENGINE_UNAVAILABLE"})
    return engine


def _raise_for_engine_error(exc: CouponEngineError) -> NoReturn:
    if isinstance(exc, CouponNotFoundError):
        raise HTTPException(status_code=404, detail={"code": "E_NOT_FOUND"}) from exc
    if isinstance(exc, CouponValidationError):
        raise HTTPException(
            status_code=422,
            detail={"code": "E_VALIDATION", "message": str(exc)},
        ) from exc
    if isinstance(exc, (CouponConflictError, IllegalTransitionError)):
        raise HTTPException(
            status_code=409,
            detail={"code": "E_STATE_CONFLICT", "message": str(exc)},
        ) from exc
    raise exc


def _campaign_as_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse.model_validate(campaign, from_attributes=True)


def _entitlement_as_response(entitlement: Entitlement) -> EntitlementResponse:
    return EntitlementResponse.model_validate(entitlement, from_attributes=True)


def _referral_as_response(referral: Referral) -> ReferralResponse:
    return ReferralResponse.model_validate(referral, from_attributes=True)


def _customer_as_response(customer: CustomerProfile) -> CustomerResponse:
    return CustomerResponse(
        id=customer.id,
        name=customer.name,
        mobile=customer.mobile,
        city=customer.city,
        area=customer.area,
    )
