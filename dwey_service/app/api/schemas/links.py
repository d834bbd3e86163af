from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from common.types.datetime import UtcDateTime

from ...models.link import Link, LinkAnalytics, LinkPublicInfo


class CreateLinkRequest(BaseModel):
    """링크 생성 요청. target 은 아무 형식의 전화번호여도 되고 서버에서 정규화한다."""

    creator_phone: str
    target: str
    custom_code: str | None = None
    message: str | None = None
    display_name: str | None = None


class OwnerRequest(BaseModel):
    phone: str


class TemporalTargetRequest(BaseModel):
    phone: str
    target: str


class LinkResponse(BaseModel):
    id: str | None
    short_code: str
    creator_phone: str
    target_phone: str
    temporal_target_phone: str | None = None
    redirect_url: str
    whatsapp_url: str
    custom_message: str
    total_clicks: int
    unique_clicks: int
    is_active: bool
    created_at: UtcDateTime
    expires_at: UtcDateTime
    next_billing_at: UtcDateTime
    deactivated_at: UtcDateTime | None = None
    deactivation_reason: str | None = None
    last_clicked_at: UtcDateTime | None = None

    @classmethod
    def from_domain(cls, link: Link) -> "LinkResponse":
        return cls(
            id=link.id,
            short_code=link.short_code,
            creator_phone=link.creator_phone,
            target_phone=link.target_phone,
            temporal_target_phone=link.temporal_target_phone,
            redirect_url=link.redirect_url,
            whatsapp_url=link.target_url,
            custom_message=link.custom_message,
            total_clicks=link.total_clicks,
            unique_clicks=link.unique_clicks,
            is_active=link.is_active,
            created_at=link.created_at,
            expires_at=link.expires_at,
            next_billing_at=link.next_billing_at,
            deactivated_at=link.deactivated_at,
            deactivation_reason=(
                link.deactivation_reason.value if link.deactivation_reason else None
            ),
            last_clicked_at=link.last_clicked_at,
        )


class CreatedLinkResponse(BaseModel):
    link: LinkResponse
    redirect_url: str
    new_balance: int


class ChargeResponse(BaseModel):
    link: LinkResponse
    new_balance: int


class LinkInfoResponse(BaseModel):
    link: LinkResponse
    analytics: LinkAnalytics
    new_balance: int


class PublicLinkInfoResponse(BaseModel):
    """공개 링크 정보. 외부 위젯이 쓰는 camelCase 필드명을 유지한다."""

    model_config = ConfigDict(populate_by_name=True)

    short_code: str = Field(serialization_alias="shortCode")
    is_active: bool = Field(serialization_alias="isActive")
    total_clicks: int = Field(serialization_alias="totalClicks")
    unique_clicks: int = Field(serialization_alias="uniqueClicks")
    created_at: UtcDateTime = Field(serialization_alias="createdAt")
    expires_at: UtcDateTime = Field(serialization_alias="expiresAt")

    @classmethod
    def from_domain(cls, info: LinkPublicInfo) -> "PublicLinkInfoResponse":
        return cls(
            short_code=info.short_code,
            is_active=info.is_active,
            total_clicks=info.total_clicks,
            unique_clicks=info.unique_clicks,
            created_at=info.created_at,
            expires_at=info.expires_at,
        )
