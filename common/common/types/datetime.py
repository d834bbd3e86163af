from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Annotated
from zoneinfo import ZoneInfo

from pydantic.functional_serializers import PlainSerializer


DISPLAY_TIMEZONE_ENV = "DISPLAY_TIMEZONE"
DEFAULT_DISPLAY_TIMEZONE = "Africa/Lagos"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_datetime_to_utc_iso8601(value: datetime) -> str:
    """모든 datetime을 UTC 기준 ISO8601(+타임존) 문자열로 직렬화한다."""
    return as_utc(value).isoformat()


def get_display_timezone() -> ZoneInfo:
    """표시용 타임존. 저장은 항상 UTC 이고, 사용자에게 보여줄 때만 변환한다."""
    name = os.getenv(DISPLAY_TIMEZONE_ENV, "").strip() or DEFAULT_DISPLAY_TIMEZONE
    return ZoneInfo(name)


def to_display_time(value: datetime) -> datetime:
    return as_utc(value).astimezone(get_display_timezone())


def format_display_time(value: datetime | None) -> str:
    """예: 05 Mar 2025, 14:03:22"""
    if value is None:
        return "-"
    return to_display_time(value).strftime("%d %b %Y, %H:%M:%S")


UtcDateTime = Annotated[
    datetime,
    PlainSerializer(
        serialize_datetime_to_utc_iso8601,
        return_type=str,
        when_used="json",
    ),
]
