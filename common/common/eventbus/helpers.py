from __future__ import annotations

import json
import uuid
from dataclasses import asdict
from typing import Any, Mapping

from .core import Event, RetryDelays


def _clamp_max_retry(value: int | None) -> int:
    if value is None or value <= 0 or value > len(RetryDelays):
        return len(RetryDelays)
    return value


def new_json_event(
    payload: Mapping[str, Any],
    *,
    max_retry: int | None = None,
    event_id: str | None = None,
) -> Event:
    """dict 페이로드를 Event 로 감싼다. id 가 없으면 uuid4 hex 를 쓴다."""
    return Event(
        id=event_id or uuid.uuid4().hex,
        payload=dict(payload),
        retry=0,
        max_retry=_clamp_max_retry(max_retry),
    )


def encode_event(event: Event) -> bytes:
    """Kafka value 로 쓸 JSON 바이트. 한글/이모지가 섞인 알림 본문을 그대로 싣는다."""
    return json.dumps(asdict(event), ensure_ascii=False, default=str).encode("utf-8")


def decode_event(raw: bytes | str) -> Event:
    """encode_event 의 역. JSON 이 아니거나 객체가 아니면 ValueError."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"event envelope must be a JSON object, got {type(data).__name__}")
    return Event(
        id=str(data.get("id", "")),
        payload=data.get("payload"),
        retry=int(data.get("retry", 0)),
        max_retry=_clamp_max_retry(int(data.get("max_retry", 0))),
        last_error=data.get("last_error"),
        not_before=_optional_float(data.get("not_before")),
    )


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def schedule_retry(event: Event, retry: int, now: float) -> None:
    """retry 번째 재시도로 표시하고, RetryDelays 만큼 뒤로 처리 시각을 민다."""
    if retry <= 0 or retry > len(RetryDelays):
        raise ValueError(f"retry must be between 1 and {len(RetryDelays)}, got {retry}")
    event.retry = retry
    event.not_before = now + RetryDelays[retry - 1]


def seconds_until_due(event: Event, now: float) -> float:
    if event.not_before is None:
        return 0.0
    return max(0.0, event.not_before - now)
