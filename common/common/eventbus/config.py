from __future__ import annotations

import os


KAFKA_BOOTSTRAP_SERVERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_GROUP_ID_ENV = "KAFKA_GROUP_ID"
KAFKA_FLUSH_TIMEOUT_SECONDS_ENV = "KAFKA_FLUSH_TIMEOUT_SECONDS"

DEFAULT_FLUSH_TIMEOUT_SECONDS = 5.0


def get_brokers() -> str:
    value = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV, "").strip()
    if not value:
        raise RuntimeError(f"{KAFKA_BOOTSTRAP_SERVERS_ENV} environment variable is required")
    return value


def get_group_id(default: str | None = None) -> str:
    """컨슈머 그룹 ID. 워커마다 기본 그룹을 두고, 환경 변수로만 덮어쓴다."""
    value = os.getenv(KAFKA_GROUP_ID_ENV, "").strip() or default
    if not value:
        raise RuntimeError(f"{KAFKA_GROUP_ID_ENV} environment variable is required")
    return value


def get_flush_timeout_seconds() -> float:
    """producer.flush 상한(초). 알림 발행이 API 요청이나 과금 스윕을 오래 붙잡지 않게 한다."""

    raw_value = os.getenv(KAFKA_FLUSH_TIMEOUT_SECONDS_ENV, "").strip()
    if not raw_value:
        return DEFAULT_FLUSH_TIMEOUT_SECONDS

    try:
        value = float(raw_value)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"{KAFKA_FLUSH_TIMEOUT_SECONDS_ENV} must be a number, got: {raw_value!r}"
        ) from exc

    return max(0.1, value)
