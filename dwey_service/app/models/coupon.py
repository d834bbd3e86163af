from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Coupon(BaseModel):
    """쿠폰 도메인 모델.

    code 는 대문자로 저장한다. used_by 에는 같은 계정이 두 번 들어가지 않으며,
    max_uses 가 있으면 used_by 길이는 그 값을 넘지 않는다.
    """

    id: str | None = None
    code: str
    tums_amount: int
    description: str = ""
    is_valid: bool = True
    expires_at: datetime | None = None
    max_uses: int | None = None
    used_by: list[str] = Field(default_factory=list)
    used_count: int = 0
    created_at: datetime
    updated_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @property
    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses

    @property
    def remaining_uses(self) -> int | None:
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - self.used_count)


class RedemptionResult(BaseModel):
    coupon: Coupon
    new_balance: int


class CouponValidation(BaseModel):
    """redeem 없이 미리 확인한 결과."""

    valid: bool
    reason: str | None = None
    coupon: Coupon | None = None
