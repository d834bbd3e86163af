from __future__ import annotations

from pydantic import Field

from common.mongo.types import (
    BaseDocument,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.coupon import Coupon


class CouponDocument(BaseDocument):
    """MongoDB coupons 컬렉션 도큐먼트 모델."""

    code: str
    tums_amount: int
    description: str = ""
    is_valid: bool = True
    expires_at: OptionalMongoDateTime = None
    max_uses: int | None = None
    used_by: list[str] = Field(default_factory=list)
    used_count: int = 0

    @classmethod
    def from_domain(cls, coupon: Coupon) -> "CouponDocument":
        data = build_document_data_from_domain(coupon)
        return cls.model_validate(data)

    def to_domain(self) -> Coupon:
        return Coupon(
            id=from_object_id(self.id),
            code=self.code,
            tums_amount=self.tums_amount,
            description=self.description,
            is_valid=self.is_valid,
            expires_at=self.expires_at,
            max_uses=self.max_uses,
            used_by=list(self.used_by),
            used_count=self.used_count,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
