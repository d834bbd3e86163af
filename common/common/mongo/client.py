from __future__ import annotations

import logging
import threading
from typing import Optional, cast

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import get_mongo_db_name, get_mongo_timeout_ms, get_mongo_uri


logger = logging.getLogger(__name__)


_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    """전역 MongoClient 싱글톤을 반환한다.

    - MONGO_URI 에서 URI 를 읽어온다.
    - 모든 호출에 MONGO_TIMEOUT_MS 상한을 적용한다.
    - ping 으로 연결을 검증한다.
    - 필요한 인덱스를 한 번만 생성한다.
    """

    global _client, _db

    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client

        uri = get_mongo_uri()
        timeout_ms = get_mongo_timeout_ms()
        client = MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
            tz_aware=True,
        )

        try:
            client.admin.command("ping")
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

        # 사용할 DB 이름 결정: MONGO_DB_NAME 우선, 없으면 URI의 기본 DB 사용
        db_name = get_mongo_db_name()
        try:
            if db_name:
                db = client[db_name]
            else:
                db = client.get_default_database()
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(
                "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
            ) from exc

        _client = client
        _db = db

        try:
            ensure_indexes(_db)
        except Exception as exc:  # noqa: BLE001
            # 유니크 인덱스가 없으면 원자적 예약이 깨지므로 치명적 오류로 간주한다.
            logger.error("failed to ensure MongoDB indexes: %s", exc)
            raise

        safe_db = cast(Database, _db)
        logger.info("MongoDB connected and indexes ensured (db=%s)", safe_db.name)
        return _client


def get_database() -> Database:
    """전역 기본 Database 객체를 반환한다."""

    global _db

    if _db is None:
        get_client()
    assert (
        _db is not None
    )  # get_client 에서 _db 를 초기화하지 못했다면 예외가 이미 발생했어야 한다.
    return _db


def close_client() -> None:
    """프로세스 종료 시 전역 클라이언트를 닫는다."""

    global _client, _db

    with _lock:
        if _client is not None:
            _client.close()
        _client = None
        _db = None


def ensure_indexes(db: Database) -> None:
    """필수 인덱스를 생성한다.

    유니크 인덱스는 단순 조회 최적화가 아니라 동시성 계약의 일부다.
    - accounts.phone / accounts.email: 소프트 가입과 이메일 등록의 insert-if-absent
    - coupons.code: 쿠폰 코드 중복 방지
    - links.short_code: 단축 코드 예약(insert 자체가 예약)
    - link_visitors.(link_id, hashed_fingerprint): 유니크 클릭 판정
    - rate_limits.(key, window_start): 공유 레이트 리미터 윈도우
    중복 생성해도 MongoDB 가 처리하므로 idempotent 하다.
    """

    accounts = db["accounts"]
    accounts.create_index([("phone", ASCENDING)], name="uniq_phone", unique=True)
    accounts.create_index(
        [("email", ASCENDING)],
        name="uniq_email",
        unique=True,
        partialFilterExpression={"email": {"$type": "string"}},
    )
    accounts.create_index(
        [("transactions.reference", ASCENDING)],
        name="idx_transactions_reference",
    )
    accounts.create_index(
        [("transactions.status", ASCENDING), ("transactions.expires_at", ASCENDING)],
        name="idx_transactions_status_expires_at",
    )

    coupons = db["coupons"]
    coupons.create_index([("code", ASCENDING)], name="uniq_code", unique=True)

    links = db["links"]
    links.create_index([("short_code", ASCENDING)], name="uniq_short_code", unique=True)
    links.create_index(
        [("creator_phone", ASCENDING), ("created_at", DESCENDING)],
        name="idx_creator_created_at",
    )
    links.create_index([("target_phone", ASCENDING)], name="idx_target_phone")
    links.create_index(
        [("temporal_target_phone", ASCENDING)],
        name="idx_temporal_target_phone",
        sparse=True,
    )
    links.create_index(
        [("is_active", ASCENDING), ("next_billing_at", ASCENDING)],
        name="idx_active_next_billing_at",
    )
    links.create_index(
        [("is_active", ASCENDING), ("deactivated_at", ASCENDING)],
        name="idx_active_deactivated_at",
    )

    clicks = db["link_clicks"]
    clicks.create_index(
        [("link_id", ASCENDING), ("clicked_at", ASCENDING)],
        name="idx_link_clicked_at",
    )

    visitors = db["link_visitors"]
    visitors.create_index(
        [("link_id", ASCENDING), ("hashed_fingerprint", ASCENDING)],
        name="uniq_link_fingerprint",
        unique=True,
    )

    rate_limits = db["rate_limits"]
    rate_limits.create_index(
        [("key", ASCENDING), ("window_start", ASCENDING)],
        name="uniq_key_window",
        unique=True,
    )
    rate_limits.create_index(
        [("expires_at", ASCENDING)],
        name="ttl_expires_at",
        expireAfterSeconds=0,
    )
