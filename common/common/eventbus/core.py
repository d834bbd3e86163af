from __future__ import annotations

from dataclasses import dataclass
from typing import Any


# 알림은 늦게 갈수록 의미가 없어지므로 재시도 간격을 짧게 가져간다.
RetryDelays: list[float] = [
    10.0,
    60.0,
    300.0,
]


class MaxRetryExceededError(Exception):
    """최대 재시도 횟수를 초과한 경우 사용되는 예외."""


@dataclass(slots=True)
class Event:
    """Kafka 메시지의 메타데이터와 페이로드를 표현하는 이벤트.

    payload는 직렬화 직전/직후 형태(dict)를 저장하고,
    실제 Kafka I/O 레이어에서 JSON 인코딩/디코딩을 담당한다.
    """

    id: str
    payload: Any
    retry: int = 0
    max_retry: int = 0
    last_error: str | None = None
    # 재시도 토픽에서 꺼낸 이벤트는 이 시각(epoch 초) 이전에는 처리하지 않는다.
    not_before: float | None = None

    def __post_init__(self) -> None:
        if self.max_retry <= 0 or self.max_retry > len(RetryDelays):
            self.max_retry = len(RetryDelays)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry >= self.max_retry


@dataclass(frozen=True, slots=True)
class Topic:
    base: str

    def dlq(self) -> str:
        return f"{self.base}.dlq"

    def get_retry_topics(self) -> list[str]:
        return [
            f"{self.base}.retry.{index}" for index in range(1, len(RetryDelays) + 1)
        ]

    def get_retry_topic(self, retry_count: int) -> str:
        if retry_count <= 0 or retry_count > len(RetryDelays):
            raise MaxRetryExceededError()
        return f"{self.base}.retry.{retry_count}"

    def all_consumable(self) -> list[str]:
        """컨슈머가 구독해야 하는 토픽 목록 (본 토픽 + 재시도 토픽)."""
        return [self.base, *self.get_retry_topics()]
