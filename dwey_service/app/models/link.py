"""링크 도메인 모델.

링크 상태: ACTIVE -> DEACTIVATED -> (유예 기간 경과) DELETED.
billing_claim_id / billing_claimed_until 은 과금 스윕의 임대(lease) 필드다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class DeactivationReason(StrEnum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    EXPIRED = "expired"
    KILLED_BY_OWNER = "killed_by_owner"


class Link(BaseModel):
    id: str | None = None
    creator_phone: str
    target_phone: str
    temporal_target_phone: str | None = None
    short_code: str
    whatsapp_url: str
    temporal_whatsapp_url: str | None = None
    redirect_url: str
    custom_message: str
    total_clicks: int = 0
    unique_clicks: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    next_billing_at: datetime
    deactivated_at: datetime | None = None
    deactivation_reason: DeactivationReason | None = None
    deletion_warning_sent: bool = False
    last_clicked_at: datetime | None = None
    billing_claim_id: str | None = None
    billing_claimed_until: datetime | None = None

    @property
    def target_url(self) -> str:
        """리다이렉트 대상. 임시 타깃이 있으면 그것이 우선한다."""
        return self.temporal_whatsapp_url or self.whatsapp_url

    @property
    def effective_target_phone(self) -> str:
        return self.temporal_target_phone or self.target_phone

    def can_view(self, phone: str) -> bool:
        return phone in {self.creator_phone, self.target_phone, self.temporal_target_phone}


class CreatedLink(BaseModel):
    link: Link
    redirect_url: str
    new_balance: int


class ClickEvent(BaseModel):
    id: str | None = None
    link_id: str
    hashed_ip: str
    hashed_fingerprint: str
    is_unique: bool
    clicked_at: datetime


class ClickResult(BaseModel):
    is_unique: bool


class LinkAnalytics(BaseModel):
    """클릭 분석 결과. 시간 관련 값은 모두 표시용 타임존 기준이다."""

    total_clicks: int = 0
    unique_clicks: int = 0
    unique_click_rate: float = 0.0  # 퍼센트
    peak_hour: int | None = None
    peak_time: str = "No data yet"
    peak_day: str | None = None  # YYYY-MM-DD
    peak_day_clicks: int = 0
    peak_day_of_week: str | None = None
    peak_day_of_week_clicks: int = 0
    clicks_by_hour: dict[int, int] = {}
    clicks_by_day: dict[str, int] = {}
    clicks_by_day_of_week: dict[str, int] = {}
    average_clicks_per_day: float = 0.0
    first_click: datetime | None = None
    last_click: datetime | None = None
    total_days: int = 0
    active_hours: int = 0
    active_days_of_week: int = 0


class LinkInfo(BaseModel):
    link: Link
    analytics: LinkAnalytics
    new_balance: int


class LinkPublicInfo(BaseModel):
    short_code: str
    is_active: bool
    total_clicks: int
    unique_clicks: int
    created_at: datetime
    expires_at: datetime


class ChargeResult(BaseModel):
    """임시 타깃 설정/해제, 재활성화처럼 요금이 붙는 링크 조작의 결과."""

    link: Link
    new_balance: int
