"""쿠폰 내부 API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ...services.coupon_service import CouponService, get_coupon_service
from ...services.rate_limiter import RateLimiter, get_rate_limiter
from ...utils.phone import normalize_phone
from ..dependencies import enforce_account_rate_limit
from ..schemas.coupons import (
    CouponResponse,
    CreateCouponRequest,
    RedeemRequest,
    RedeemResponse,
    ValidateCouponResponse,
)


router = APIRouter()


@router.get("", summary="사용 가능한 쿠폰 목록")
def list_active_coupons(
    service: Annotated[CouponService, Depends(get_coupon_service)],
) -> list[CouponResponse]:
    return [CouponResponse.from_domain(c) for c in service.list_active()]


@router.post("", status_code=status.HTTP_201_CREATED, summary="쿠폰 생성 (관리자)")
def create_coupon(
    req: CreateCouponRequest,
    service: Annotated[CouponService, Depends(get_coupon_service)],
) -> CouponResponse:
    coupon = service.create_coupon(
        code=req.code,
        tums_amount=req.tums_amount,
        description=req.description,
        expires_at=req.expires_at,
        max_uses=req.max_uses,
    )
    return CouponResponse.from_domain(coupon)


@router.get("/history/{phone}", summary="사용한 쿠폰 내역")
def coupon_history(
    phone: str,
    service: Annotated[CouponService, Depends(get_coupon_service)],
) -> list[CouponResponse]:
    return [CouponResponse.from_domain(c) for c in service.history(normalize_phone(phone))]


@router.get("/{code}/validate", summary="쿠폰 사전 확인")
def validate_coupon(
    code: str,
    service: Annotated[CouponService, Depends(get_coupon_service)],
    phone: str | None = Query(default=None, description="이 계정 기준으로 사용 여부까지 확인"),
) -> ValidateCouponResponse:
    result = service.validate(code, normalize_phone(phone) if phone else None)
    return ValidateCouponResponse(
        valid=result.valid,
        reason=result.reason,
        coupon=CouponResponse.from_domain(result.coupon) if result.coupon else None,
    )


@router.post("/{code}/redeem", summary="쿠폰 사용")
def redeem_coupon(
    code: str,
    req: RedeemRequest,
    service: Annotated[CouponService, Depends(get_coupon_service)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> RedeemResponse:
    phone = enforce_account_rate_limit(limiter, req.phone, "redeem_coupon")
    result = service.redeem(phone, code, req.display_name)
    return RedeemResponse(
        coupon=CouponResponse.from_domain(result.coupon), new_balance=result.new_balance
    )


@router.post(
    "/{code}/disable",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="쿠폰 비활성화 (관리자)",
)
def disable_coupon(
    code: str,
    service: Annotated[CouponService, Depends(get_coupon_service)],
) -> None:
    service.disable_coupon(code)
