"""클릭 분석. 모든 시간 버킷은 표시용 타임존(기본 Africa/Lagos) 기준이다."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from common.types.datetime import to_display_time

from ..models.link import ClickEvent, LinkAnalytics


WEEKDAYS: tuple[str, ...] = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def _weekday_name(isoweekday: int) -> str:
    return WEEKDAYS[isoweekday % 7]


def _first_max(counter: dict, keys: Iterable) -> tuple[object | None, int]:
    """동률이면 먼저 나온 키를 고른다."""
    best_key = None
    best_count = 0
    for key in keys:
        count = counter.get(key, 0)
        if count > best_count:
            best_key, best_count = key, count
    return best_key, best_count


def compute_analytics(clicks: list[ClickEvent]) -> LinkAnalytics:
    if not clicks:
        return LinkAnalytics(
            clicks_by_day_of_week={day: 0 for day in WEEKDAYS},
        )

    ordered = sorted(clicks, key=lambda c: c.clicked_at)

    by_hour: Counter[int] = Counter()
    by_day: Counter[str] = Counter()
    by_weekday: dict[str, int] = {day: 0 for day in WEEKDAYS}
    unique = 0

    for click in ordered:
        local = to_display_time(click.clicked_at)
        by_hour[local.hour] += 1
        by_day[local.strftime("%Y-%m-%d")] += 1
        by_weekday[_weekday_name(local.isoweekday())] += 1
        if click.is_unique:
            unique += 1

    total = len(ordered)
    peak_hour, _ = _first_max(by_hour, sorted(by_hour))
    peak_day, peak_day_clicks = _first_max(by_day, sorted(by_day))
    peak_weekday, peak_weekday_clicks = _first_max(by_weekday, WEEKDAYS)

    hour = int(peak_hour) if peak_hour is not None else 0
    return LinkAnalytics(
        total_clicks=total,
        unique_clicks=unique,
        unique_click_rate=round(unique / total * 100, 1),
        peak_hour=hour,
        peak_time=f"{hour}:00 - {hour + 1}:00",
        peak_day=str(peak_day) if peak_day is not None else None,
        peak_day_clicks=peak_day_clicks,
        peak_day_of_week=str(peak_weekday) if peak_weekday is not None else None,
        peak_day_of_week_clicks=peak_weekday_clicks,
        clicks_by_hour=dict(sorted(by_hour.items())),
        clicks_by_day=dict(sorted(by_day.items())),
        clicks_by_day_of_week=by_weekday,
        average_clicks_per_day=round(total / len(by_day), 1),
        first_click=ordered[0].clicked_at,
        last_click=ordered[-1].clicked_at,
        total_days=len(by_day),
        active_hours=len(by_hour),
        active_days_of_week=sum(1 for count in by_weekday.values() if count > 0),
    )
