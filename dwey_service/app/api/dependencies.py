"""라우터 공용 헬퍼."""

from __future__ import annotations

import logging

from ..exceptions import RateLimitedError
from ..services.rate_limiter import RateLimiter
from ..utils.phone import normalize_phone


logger = logging.getLogger(__name__)


def enforce_rate_limit(limiter: RateLimiter, key: str, action: str) -> None:
    """허용되지 않으면 RateLimitedError (429) 를 던진다."""
    decision = limiter.check_and_consume(key, action)
    if not decision.allowed:
        logger.info("rate limited on %s (retry after %ds)", action, decision.retry_after_seconds)
        raise RateLimitedError(decision.retry_after_seconds)


def enforce_account_rate_limit(limiter: RateLimiter, phone: str, action: str) -> str:
    """계정 단위 제한. 정규화된 전화번호를 반환한다."""
    normalized = normalize_phone(phone)
    enforce_rate_limit(limiter, normalized, action)
    return normalized
