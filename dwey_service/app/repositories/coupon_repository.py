from __future__ import annotations

from datetime import datetime, timezone

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..models.coupon import Coupon
from .documents.coupon_document import CouponDocument
from .interfaces import CouponRepositoryInterface


class CouponRepository(CouponRepositoryInterface):
    """coupons 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["coupons"]

    def insert(self, coupon: Coupon) -> Coupon | None:
        doc = CouponDocument.from_domain(coupon).to_mongo_record()
        try:
            result = self._col.insert_one(doc)
        except DuplicateKeyError:
            return None
        doc["_id"] = result.inserted_id
        return CouponDocument.model_validate(doc).to_domain()

    def find_by_code(self, code: str) -> Coupon | None:
        doc = self._col.find_one({"code": code})
        if not doc:
            return None
        return CouponDocument.model_validate(doc).to_domain()

    def try_redeem(self, code: str, phone: str, now: datetime) -> Coupon | None:
        """쿠폰 사용 (Atomic).

        조회 시점이 아니라 쓰기 시점의 상태로 모든 조건을 다시 검사한다.
        동시에 두 계정이 max_uses=1 쿠폰을 쓰면 한쪽만 매칭된다.
        """
        doc = self._col.find_one_and_update(
            {
                "code": code,
                "is_valid": True,
                "used_by": {"$ne": phone},
                "$and": [
                    {"$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}]},
                    {
                        "$or": [
                            {"max_uses": None},
                            {"$expr": {"$lt": ["$used_count", "$max_uses"]}},
                        ]
                    },
                ],
            },
            {
                "$push": {"used_by": phone},
                "$inc": {"used_count": 1},
                "$set": {"updated_at": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return CouponDocument.model_validate(doc).to_domain()

    def disable(self, code: str) -> bool:
        result = self._col.update_one(
            {"code": code},
            {"$set": {"is_valid": False, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.matched_count == 1

    def list_active(self, now: datetime) -> list[Coupon]:
        cursor = self._col.find(
            {
                "is_valid": True,
                "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
            },
            sort=[("created_at", -1)],
        )
        coupons = [CouponDocument.model_validate(doc).to_domain() for doc in cursor]
        return [coupon for coupon in coupons if not coupon.is_exhausted]

    def list_redeemed_by(self, phone: str) -> list[Coupon]:
        cursor = self._col.find({"used_by": phone}, sort=[("updated_at", -1)])
        return [CouponDocument.model_validate(doc).to_domain() for doc in cursor]
