from __future__ import annotations

from datetime import datetime
from typing import Any

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.types import try_object_id

from ..models.link import DeactivationReason, Link
from .documents.link_document import LinkDocument
from .interfaces import LinkRepositoryInterface


def _lease_free(now: datetime) -> dict[str, Any]:
    return {
        "$or": [
            {"billing_claimed_until": None},
            {"billing_claimed_until": {"$lte": now}},
        ]
    }


_RELEASE_CLAIM = {"billing_claim_id": None, "billing_claimed_until": None}


class LinkRepository(LinkRepositoryInterface):
    """links 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["links"]

    # --- 조회 --------------------------------------------------------------

    def _to_domain(self, doc: dict[str, Any] | None) -> Link | None:
        if not doc:
            return None
        return LinkDocument.model_validate(doc).to_domain()

    def _id_filter(self, link_id: str) -> dict[str, Any] | None:
        oid = try_object_id(link_id)
        if oid is None:
            return None
        return {"_id": oid}

    def find_by_id(self, link_id: str) -> Link | None:
        query = self._id_filter(link_id)
        if query is None:
            return None
        return self._to_domain(self._col.find_one(query))

    def find_by_code(self, short_code: str) -> Link | None:
        return self._to_domain(self._col.find_one({"short_code": short_code}))

    def codes_in_use(self, candidates: list[str]) -> set[str]:
        if not candidates:
            return set()
        cursor = self._col.find(
            {"short_code": {"$in": candidates}}, {"short_code": 1, "_id": 0}
        )
        return {str(doc["short_code"]) for doc in cursor}

    def list_by_creator(self, creator_phone: str, active_only: bool) -> list[Link]:
        query: dict[str, Any] = {"creator_phone": creator_phone}
        if active_only:
            query["is_active"] = True
        cursor = self._col.find(query, sort=[("created_at", DESCENDING)])
        return [LinkDocument.model_validate(doc).to_domain() for doc in cursor]

    def list_by_target(self, creator_phone: str, target_phone: str) -> list[Link]:
        cursor = self._col.find(
            {
                "creator_phone": creator_phone,
                "$or": [
                    {"target_phone": target_phone},
                    {"temporal_target_phone": target_phone},
                ],
            },
            sort=[("created_at", DESCENDING)],
        )
        return [LinkDocument.model_validate(doc).to_domain() for doc in cursor]

    def list_by_clicks(
        self, creator_phone: str, limit: int, ascending: bool
    ) -> list[Link]:
        direction = ASCENDING if ascending else DESCENDING
        cursor = self._col.find(
            {"creator_phone": creator_phone},
            sort=[("total_clicks", direction), ("created_at", DESCENDING)],
            limit=limit,
        )
        return [LinkDocument.model_validate(doc).to_domain() for doc in cursor]

    # --- 생성/삭제 ----------------------------------------------------------

    def insert(self, link: Link) -> Link | None:
        """short_code 예약. uniq_short_code 인덱스에 막히면 None."""
        doc = LinkDocument.from_domain(link).to_mongo_record()
        try:
            result = self._col.insert_one(doc)
        except DuplicateKeyError:
            return None
        doc["_id"] = result.inserted_id
        return self._to_domain(doc)

    def delete(self, link_id: str) -> bool:
        query = self._id_filter(link_id)
        if query is None:
            return False
        return self._col.delete_one(query).deleted_count == 1

    # --- 상태 전이 ----------------------------------------------------------

    def _update(self, link_id: str, guard: dict[str, Any], update: dict[str, Any]) -> bool:
        query = self._id_filter(link_id)
        if query is None:
            return False
        query.update(guard)
        return self._col.update_one(query, update).modified_count == 1

    def deactivate_if_expired(self, link_id: str, now: datetime) -> bool:
        return self._update(
            link_id,
            {"is_active": True, "expires_at": {"$lte": now}, **_lease_free(now)},
            {
                "$set": {
                    "is_active": False,
                    "deactivated_at": now,
                    "deactivation_reason": DeactivationReason.EXPIRED.value,
                    "deletion_warning_sent": False,
                    "updated_at": now,
                }
            },
        )

    def deactivate_by_owner(self, link_id: str, owner_phone: str, now: datetime) -> bool:
        return self._update(
            link_id,
            {"creator_phone": owner_phone, "is_active": True, **_lease_free(now)},
            {
                "$set": {
                    "is_active": False,
                    "deactivated_at": now,
                    "deactivation_reason": DeactivationReason.KILLED_BY_OWNER.value,
                    "deletion_warning_sent": False,
                    "updated_at": now,
                }
            },
        )

    def set_temporal_target(
        self,
        link_id: str,
        owner_phone: str,
        target_phone: str,
        whatsapp_url: str,
        now: datetime,
    ) -> bool:
        return self._update(
            link_id,
            {"creator_phone": owner_phone, "temporal_target_phone": None},
            {
                "$set": {
                    "temporal_target_phone": target_phone,
                    "temporal_whatsapp_url": whatsapp_url,
                    "updated_at": now,
                }
            },
        )

    def clear_temporal_target(self, link_id: str, owner_phone: str, now: datetime) -> bool:
        return self._update(
            link_id,
            {"creator_phone": owner_phone, "temporal_target_phone": {"$ne": None}},
            {
                "$set": {
                    "temporal_target_phone": None,
                    "temporal_whatsapp_url": None,
                    "updated_at": now,
                }
            },
        )

    def reactivate(
        self,
        link_id: str,
        owner_phone: str,
        now: datetime,
        horizon: datetime,
    ) -> Link | None:
        query = self._id_filter(link_id)
        if query is None:
            return None
        query.update({"creator_phone": owner_phone, "is_active": False})
        query.update(_lease_free(now))
        doc = self._col.find_one_and_update(
            query,
            {
                "$set": {
                    "is_active": True,
                    "expires_at": horizon,
                    "next_billing_at": horizon,
                    "deactivated_at": None,
                    "deactivation_reason": None,
                    "deletion_warning_sent": False,
                    "updated_at": now,
                    **_RELEASE_CLAIM,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._to_domain(doc)

    def increment_clicks(self, link_id: str, is_unique: bool, at: datetime) -> bool:
        query = self._id_filter(link_id)
        if query is None:
            return False
        result = self._col.update_one(
            query,
            {
                "$inc": {"total_clicks": 1, "unique_clicks": 1 if is_unique else 0},
                "$set": {"last_clicked_at": at},
            },
        )
        return result.matched_count == 1

    # --- 과금 스윕 -----------------------------------------------------------

    def claim_due_for_billing(
        self, now: datetime, claim_id: str, lease_until: datetime
    ) -> Link | None:
        """과금 대상 링크 하나를 lease 로 잡는다 (lock/skip).

        다른 스윕이 잡고 있는 링크는 lease 가 끝날 때까지 매칭되지 않는다.
        """
        query: dict[str, Any] = {"is_active": True, "next_billing_at": {"$lte": now}}
        query.update(_lease_free(now))
        doc = self._col.find_one_and_update(
            query,
            {
                "$set": {
                    "billing_claim_id": claim_id,
                    "billing_claimed_until": lease_until,
                }
            },
            sort=[("next_billing_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return self._to_domain(doc)

    def extend_billing(
        self,
        link_id: str,
        claim_id: str,
        next_billing_at: datetime,
        now: datetime,
    ) -> bool:
        return self._update(
            link_id,
            {"billing_claim_id": claim_id, "is_active": True},
            {
                "$set": {
                    "next_billing_at": next_billing_at,
                    "expires_at": next_billing_at,
                    "updated_at": now,
                    **_RELEASE_CLAIM,
                }
            },
        )

    def deactivate_claimed(
        self,
        link_id: str,
        claim_id: str,
        reason: DeactivationReason,
        now: datetime,
    ) -> bool:
        return self._update(
            link_id,
            {"billing_claim_id": claim_id, "is_active": True},
            {
                "$set": {
                    "is_active": False,
                    "deactivated_at": now,
                    "deactivation_reason": reason.value,
                    "deletion_warning_sent": False,
                    "updated_at": now,
                    **_RELEASE_CLAIM,
                }
            },
        )

    def release_claim(self, link_id: str, claim_id: str) -> bool:
        return self._update(
            link_id,
            {"billing_claim_id": claim_id},
            {"$set": dict(_RELEASE_CLAIM)},
        )

    def claim_deletion_warning(
        self, warn_before: datetime, not_before: datetime
    ) -> Link | None:
        doc = self._col.find_one_and_update(
            {
                "is_active": False,
                "deletion_warning_sent": False,
                "deactivated_at": {"$lte": warn_before, "$gt": not_before},
            },
            {"$set": {"deletion_warning_sent": True}},
            sort=[("deactivated_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return self._to_domain(doc)

    def claim_due_for_deletion(
        self,
        cutoff: datetime,
        now: datetime,
        claim_id: str,
        lease_until: datetime,
    ) -> Link | None:
        query: dict[str, Any] = {"is_active": False, "deactivated_at": {"$lte": cutoff}}
        query.update(_lease_free(now))
        doc = self._col.find_one_and_update(
            query,
            {
                "$set": {
                    "billing_claim_id": claim_id,
                    "billing_claimed_until": lease_until,
                }
            },
            sort=[("deactivated_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        return self._to_domain(doc)

    def delete_claimed(self, link_id: str, claim_id: str) -> bool:
        query = self._id_filter(link_id)
        if query is None:
            return False
        query.update({"billing_claim_id": claim_id, "is_active": False})
        return self._col.delete_one(query).deleted_count == 1
