from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from coupon_engine.promotions.campaigns import CampaignDraft
from coupon_engine.promotions.engine import CouponEngine
from coupon_engine.promotions.errors import CouponEngineError
from coupon_engine.promotions.referrals import RewardRole
from coupon_engine.promotions.states import CampaignStatus, EntitlementStatus

from .internal_coupons_helpers import (
    CLAIM_FAILURES,
    REDEMPTION_FAILURES,
    _assert_internal_access,
    _campaign_as_response,
    _customer_as_response,
    _entitlement_as_response,
    _raise_for_engine_error,
    _referral_as_response,
    get_coupon_engine,
)
from .internal_coupons_models import (
    AssignmentResponse,
    AssignRequest,
    AssignResponse,
    CampaignListResponse,
    CampaignResponse,
    CampaignStatusUpdateRequest,
    ClaimRequest,
    ClaimResponse,
    EligibilityResponse,
    EligibleCampaignsResponse,
    EntitlementListResponse,
    QualifyingPurchaseRequest,
    RedeemRequest,
    RedeemResponse,
    RedemptionHistoryResponse,
    ReferralCascadeResponse,
    ReferralRegisteredRequest,
    ReferralRegisterRequest,
    ReferralResponse,
    ReferrerStatsResponse,
    ValidateRequest,
    ValidateResponse,
)

router = APIRouter(prefix="/internal/coupons", tags=["internal", "coupons"])


def _parse_enum(enum_cls, raw_value: str | None, *, code: str):
    if raw_value is None:
        return None
    try:
        return enum_cls(raw_value.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": code}) from exc


@router.get("/campaigns", response_model=CampaignListResponse)
async def list_campaigns(
    request: Request,
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    engine: CouponEngine = Depends(get_coupon_engine),
) -> CampaignListResponse:
    _assert_internal_access(request)
    campaign_status = _parse_enum(CampaignStatus, status, code="E_CAMPAIGN_STATUS_INVALID")
    campaigns = await engine.list_campaigns(status=campaign_status, limit=limit)
    return CampaignListResponse(campaigns=[_campaign_as_response(item) for item in campaigns])


@router.post("/campaigns", response_model=CampaignResponse, status_code=201)
async def create_campaign(
    payload: CampaignDraft,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> CampaignResponse:
    _assert_internal_access(request)
    try:
        campaign = await engine.create_campaign(payload)
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return _campaign_as_response(campaign)


@router.post("/campaigns/{campaign_id}/status", response_model=CampaignResponse)
async def update_campaign_status(
    campaign_id: UUID,
    payload: CampaignStatusUpdateRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> CampaignResponse:
    _assert_internal_access(request)
    desired_status = _parse_enum(CampaignStatus, payload.status, code="E_CAMPAIGN_STATUS_INVALID")
    try:
        campaign = await engine.update_campaign_status(
            campaign_id,
            desired_status,
            reason=payload.reason,
        )
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return _campaign_as_response(campaign)


@router.get("/campaigns/{campaign_id}/eligibility", response_model=EligibilityResponse)
async def evaluate_eligibility(
    campaign_id: UUID,
    request: Request,
    customer_id: str = Query(min_length=1, max_length=64),
    engine: CouponEngine = Depends(get_coupon_engine),
) -> EligibilityResponse:
    _assert_internal_access(request)
    verdict = await engine.evaluate_eligibility(customer_id, campaign_id)
    return EligibilityResponse(
        eligible=verdict.eligible,
        reasons=verdict.reasons,
        conditions=verdict.conditions,
    )


@router.post("/campaigns/{campaign_id}/claim", response_model=ClaimResponse)
async def claim_campaign(
    campaign_id: UUID,
    payload: ClaimRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ClaimResponse:
    _assert_internal_access(request)
    result = await engine.claim(payload.customer_id, campaign_id)
    if result.entitlement is None:
        status_code, code = CLAIM_FAILURES[result.outcome]
        raise HTTPException(status_code=status_code, detail={"code": code, "reasons": result.reasons})
    return ClaimResponse(
        outcome=result.outcome.value,
        idempotent_replay=result.idempotent_replay,
        entitlement=_entitlement_as_response(result.entitlement),
    )


@router.post("/campaigns/{campaign_id}/assign", response_model=AssignResponse)
async def assign_campaign(
    campaign_id: UUID,
    payload: AssignRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> AssignResponse:
    _assert_internal_access(request)
    try:
        records = await engine.assign_to_customers(campaign_id, payload.customer_ids)
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return AssignResponse(
        results=[
            AssignmentResponse(
                customer_id=record.customer_id,
                status=record.status.value,
                unique_code=record.unique_code,
                message=record.message,
            )
            for record in records
        ]
    )


@router.get("/campaigns/{campaign_id}/redemptions", response_model=RedemptionHistoryResponse)
async def redemption_history(
    campaign_id: UUID,
    request: Request,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    engine: CouponEngine = Depends(get_coupon_engine),
) -> RedemptionHistoryResponse:
    _assert_internal_access(request)
    try:
        history = await engine.redemption_history(
            campaign_id,
            start=start,
            end=end,
            page=page,
            limit=limit,
        )
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return RedemptionHistoryResponse(
        campaign=_campaign_as_response(history.campaign),
        redemptions=[_entitlement_as_response(item) for item in history.redemptions],
        total=history.total,
        page=history.page,
        pages=history.pages,
        stats=history.stats,
    )


@router.get("/customers/{customer_id}/eligible-campaigns", response_model=EligibleCampaignsResponse)
async def list_eligible_campaigns(
    customer_id: str,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> EligibleCampaignsResponse:
    _assert_internal_access(request)
    try:
        eligible = await engine.list_eligible_campaigns(customer_id)
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return EligibleCampaignsResponse(
        customer_id=eligible.customer.id,
        total_eligible=eligible.total_eligible,
        campaigns={
            category: [_campaign_as_response(item) for item in campaigns]
            for category, campaigns in eligible.categorized.items()
        },
    )


@router.get("/customers/{customer_id}/entitlements", response_model=EntitlementListResponse)
async def list_customer_entitlements(
    customer_id: str,
    request: Request,
    status: str | None = Query(default=None),
    engine: CouponEngine = Depends(get_coupon_engine),
) -> EntitlementListResponse:
    _assert_internal_access(request)
    entitlement_status = _parse_enum(
        EntitlementStatus,
        status,
        code="E_ENTITLEMENT_STATUS_INVALID",
    )
    entitlements = await engine.list_customer_entitlements(customer_id, entitlement_status)
    return EntitlementListResponse(
        entitlements=[_entitlement_as_response(item) for item in entitlements]
    )


@router.post("/validate", response_model=ValidateResponse)
async def validate_code(
    payload: ValidateRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ValidateResponse:
    _assert_internal_access(request)
    result = await engine.validate_redemption_code(
        payload.code,
        purchase_amount=payload.purchase_amount,
    )
    return ValidateResponse(
        valid=result.valid,
        message=result.message,
        entitlement=_entitlement_as_response(result.entitlement) if result.valid else None,
        campaign=_campaign_as_response(result.campaign) if result.campaign is not None else None,
        customer=_customer_as_response(result.customer) if result.customer is not None else None,
        discount_amount=result.discount_amount,
        product_restrictions=result.product_restrictions,
    )


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_entitlement(
    payload: RedeemRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> RedeemResponse:
    _assert_internal_access(request)
    result = await engine.redeem(
        payload.entitlement_id,
        store_id=payload.store_id,
        staff_id=payload.staff_id,
        purchase_id=payload.purchase_id,
        amount_used=payload.amount_used,
        notes=payload.notes,
        purchase_amount=payload.purchase_amount,
    )
    if not result.success or result.entitlement is None:
        status_code, code = REDEMPTION_FAILURES[result.outcome]
        raise HTTPException(
            status_code=status_code,
            detail={"code": code, "message": result.message},
        )
    return RedeemResponse(
        outcome=result.outcome.value,
        message=result.message,
        discount_amount=result.discount_amount,
        entitlement=_entitlement_as_response(result.entitlement),
    )


@router.post("/purchases/qualifying", response_model=ReferralCascadeResponse)
async def record_qualifying_purchase(
    payload: QualifyingPurchaseRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ReferralCascadeResponse:
    _assert_internal_access(request)
    result = await engine.on_qualifying_purchase(
        payload.customer_id,
        purchase_id=payload.purchase_id,
        final_amount=payload.final_amount,
        purchased_at=payload.purchased_at,
    )
    return ReferralCascadeResponse(
        outcome=result.outcome.value,
        referral_id=result.referral_id,
        referrer_entitlement_id=result.referrer_entitlement_id,
        referred_entitlement_id=result.referred_entitlement_id,
    )


@router.post("/referrals", response_model=ReferralResponse, status_code=201)
async def register_referral(
    payload: ReferralRegisterRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ReferralResponse:
    _assert_internal_access(request)
    try:
        referral = await engine.register_referral(
            referrer_id=payload.referrer_id,
            referrer_type=payload.referrer_type,
            referred_customer_id=payload.referred_customer_id,
        )
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return _referral_as_response(referral)


@router.post("/referrals/registered", response_model=ReferralResponse)
async def mark_referral_registered(
    payload: ReferralRegisteredRequest,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ReferralResponse:
    _assert_internal_access(request)
    try:
        referral = await engine.mark_referral_registered(payload.referred_customer_id)
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return _referral_as_response(referral)


@router.post("/referrals/{referral_id}/rewards/{role}/claim", response_model=ReferralResponse)
async def mark_reward_claimed(
    referral_id: UUID,
    role: str,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ReferralResponse:
    _assert_internal_access(request)
    try:
        reward_role = RewardRole(role.strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_REWARD_ROLE_INVALID"}) from exc
    try:
        referral = await engine.mark_reward_claimed(referral_id, reward_role)
    except CouponEngineError as exc:
        _raise_for_engine_error(exc)
    return _referral_as_response(referral)


@router.get("/referrers/{referrer_id}/stats", response_model=ReferrerStatsResponse)
async def referrer_stats(
    referrer_id: str,
    request: Request,
    engine: CouponEngine = Depends(get_coupon_engine),
) -> ReferrerStatsResponse:
    _assert_internal_access(request)
    stats = await engine.referrer_stats(referrer_id)
    return ReferrerStatsResponse(referrer_id=referrer_id, **stats)
