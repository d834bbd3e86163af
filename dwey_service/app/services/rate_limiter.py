"""계정 x 액션 단위 고정 윈도우 레이트 리미터.

사용량 조절용 안전장치일 뿐 정합성 장치가 아니다. 단일 인스턴스는 메모리,
여러 인스턴스는 Mongo 공유 백엔드를 쓰며 호출 측은 RateLimiter 프로토콜만 안다.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.client import get_database

from ..config import RateLimitConfig, get_config
from ..models.rate_limit import RateLimitDecision


logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def check_and_consume(
        self, key: str, action: str
    ) -> RateLimitDecision:  # pragma: no cover - Protocol
        ...

    def evict_expired(self) -> int:  # pragma: no cover - Protocol
        ...


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class InMemoryRateLimiter:
    """프로세스 메모리 기반. 재시작 시 초기화돼도 무방하다."""

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str, action: str) -> RateLimitDecision:
        limit = self._config.limit_for(action)
        now = self._clock()

        with self._lock:
            window = self._windows.get((key, action))
            if window is None or now >= window.reset_at:
                self._windows[(key, action)] = _Window(
                    count=1, reset_at=now + self._config.window_seconds
                )
                return RateLimitDecision(allowed=True, remaining=limit - 1)

            if window.count >= limit:
                return RateLimitDecision(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil(window.reset_at - now)),
                    remaining=0,
                )

            window.count += 1
            return RateLimitDecision(allowed=True, remaining=limit - window.count)

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, w in self._windows.items() if now >= w.reset_at]
            for k in expired:
                del self._windows[k]
        return len(expired)


class MongoRateLimiter:
    """rate_limits 컬렉션 공유 백엔드.

    윈도우 시작 시각으로 정렬된 고정 윈도우를 쓰고, upsert + $inc 한 번으로 카운트한다.
    만료된 윈도우는 TTL 인덱스(expires_at)가 지운다.
    """

    def __init__(self, database: Database, config: RateLimitConfig) -> None:
        self._col = database["rate_limits"]
        self._config = config

    def check_and_consume(self, key: str, action: str) -> RateLimitDecision:
        limit = self._config.limit_for(action)
        window = self._config.window_seconds
        now = datetime.now(timezone.utc)
        epoch = int(now.timestamp())
        window_start = datetime.fromtimestamp(epoch - epoch % window, tz=timezone.utc)
        reset_at = window_start + timedelta(seconds=window)

        doc_key = f"{key}:{action}"
        try:
            doc = self._col.find_one_and_update(
                {"key": doc_key, "window_start": window_start},
                {"$inc": {"count": 1}, "$setOnInsert": {"expires_at": reset_at}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # 동시 upsert 경합. 이제 문서가 있으므로 한 번 더 증가시킨다.
            doc = self._col.find_one_and_update(
                {"key": doc_key, "window_start": window_start},
                {"$inc": {"count": 1}},
                return_document=ReturnDocument.AFTER,
            )

        count = int((doc or {}).get("count", 1))
        if count > limit:
            retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
            return RateLimitDecision(
                allowed=False, retry_after_seconds=retry_after, remaining=0
            )
        return RateLimitDecision(allowed=True, remaining=limit - count)

    def evict_expired(self) -> int:
        # TTL 모니터가 주기적으로 지우지만, 즉시 정리도 가능하게 둔다.
        result = self._col.delete_many({"expires_at": {"$lte": datetime.now(timezone.utc)}})
        return result.deleted_count


_rate_limiter: RateLimiter | None = None
_rate_limiter_lock = threading.Lock()


def build_rate_limiter(config: RateLimitConfig) -> RateLimiter:
    if config.backend == "mongo":
        return MongoRateLimiter(get_database(), config)
    return InMemoryRateLimiter(config)


def get_rate_limiter() -> RateLimiter:
    """프로세스 전역 레이트 리미터 싱글톤. 백엔드는 RATE_LIMIT_BACKEND 로 고른다."""

    global _rate_limiter

    if _rate_limiter is not None:
        return _rate_limiter

    with _rate_limiter_lock:
        if _rate_limiter is None:
            config = get_config().rate_limit
            _rate_limiter = build_rate_limiter(config)
            logger.info("rate limiter initialised (backend=%s)", config.backend)
        return _rate_limiter
