from __future__ import annotations

from datetime import datetime

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..models.link import ClickEvent
from .documents.link_document import ClickDocument
from .interfaces import ClickRepositoryInterface


class ClickRepository(ClickRepositoryInterface):
    """link_clicks / link_visitors 컬렉션 접근 레이어.

    link_visitors 는 (link_id, hashed_fingerprint) 유니크 인덱스를 가진 방문자 집합이다.
    insert 성공 여부가 곧 "처음 본 방문자" 판정이다.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._clicks = database["link_clicks"]
        self._visitors = database["link_visitors"]

    def record_visitor(self, link_id: str, hashed_fingerprint: str, at: datetime) -> bool:
        try:
            self._visitors.insert_one(
                {
                    "link_id": link_id,
                    "hashed_fingerprint": hashed_fingerprint,
                    "first_seen_at": at,
                }
            )
        except DuplicateKeyError:
            return False
        return True

    def insert_click(self, click: ClickEvent) -> ClickEvent:
        doc = ClickDocument.from_domain(click).to_mongo_record()
        result = self._clicks.insert_one(doc)
        doc["_id"] = result.inserted_id
        return ClickDocument.model_validate(doc).to_domain()

    def list_clicks(self, link_id: str) -> list[ClickEvent]:
        cursor = self._clicks.find({"link_id": link_id}, sort=[("clicked_at", 1)])
        return [ClickDocument.model_validate(doc).to_domain() for doc in cursor]

    def delete_for_link(self, link_id: str) -> int:
        deleted = self._clicks.delete_many({"link_id": link_id}).deleted_count
        self._visitors.delete_many({"link_id": link_id})
        return deleted
