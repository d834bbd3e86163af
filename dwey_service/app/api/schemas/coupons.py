from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...models.coupon import Coupon


class RedeemRequest(BaseModel):
    phone: str
    display_name: str | None = None


class CouponResponse(BaseModel):
    """쿠폰 응답 DTO. used_by(전화번호 목록)는 노출하지 않는다."""

    code: str
    tums_amount: int
    description: str
    is_valid: bool
    expires_at: UtcDateTime | None = None
    max_uses: int | None = None
    used_count: int
    remaining_uses: int | None = None

    @classmethod
    def from_domain(cls, coupon: Coupon) -> "CouponResponse":
        return cls(
            code=coupon.code,
            tums_amount=coupon.tums_amount,
            description=coupon.description,
            is_valid=coupon.is_valid,
            expires_at=coupon.expires_at,
            max_uses=coupon.max_uses,
            used_count=coupon.used_count,
            remaining_uses=coupon.remaining_uses,
        )


class RedeemResponse(BaseModel):
    coupon: CouponResponse
    new_balance: int


class ValidateCouponResponse(BaseModel):
    valid: bool
    reason: str | None = None
    coupon: CouponResponse | None = None


class CreateCouponRequest(BaseModel):
    """관리자 쿠폰 생성 요청."""

    code: str
    tums_amount: int = Field(gt=0)
    description: str = ""
    expires_at: datetime | None = None
    max_uses: int | None = Field(default=None, gt=0)
