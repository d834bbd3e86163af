from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDateTime,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.link import ClickEvent, DeactivationReason, Link


class LinkDocument(BaseDocument):
    """MongoDB links 컬렉션 도큐먼트 모델."""

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
    expires_at: MongoDateTime
    next_billing_at: MongoDateTime
    deactivated_at: OptionalMongoDateTime = None
    deactivation_reason: str | None = None
    deletion_warning_sent: bool = False
    last_clicked_at: OptionalMongoDateTime = None
    billing_claim_id: str | None = None
    billing_claimed_until: OptionalMongoDateTime = None

    @classmethod
    def from_domain(cls, link: Link) -> "LinkDocument":
        data = build_document_data_from_domain(link)
        if link.deactivation_reason is not None:
            data["deactivation_reason"] = link.deactivation_reason.value
        return cls.model_validate(data)

    def to_domain(self) -> Link:
        return Link(
            id=from_object_id(self.id),
            creator_phone=self.creator_phone,
            target_phone=self.target_phone,
            temporal_target_phone=self.temporal_target_phone,
            short_code=self.short_code,
            whatsapp_url=self.whatsapp_url,
            temporal_whatsapp_url=self.temporal_whatsapp_url,
            redirect_url=self.redirect_url,
            custom_message=self.custom_message,
            total_clicks=self.total_clicks,
            unique_clicks=self.unique_clicks,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
            expires_at=self.expires_at,
            next_billing_at=self.next_billing_at,
            deactivated_at=self.deactivated_at,
            deactivation_reason=(
                DeactivationReason(self.deactivation_reason)
                if self.deactivation_reason
                else None
            ),
            deletion_warning_sent=self.deletion_warning_sent,
            last_clicked_at=self.last_clicked_at,
            billing_claim_id=self.billing_claim_id,
            billing_claimed_until=self.billing_claimed_until,
        )


class ClickDocument(BaseDocument):
    """MongoDB link_clicks 컬렉션 도큐먼트 모델. 원본 IP/지문은 저장하지 않는다."""

    link_id: str
    hashed_ip: str
    hashed_fingerprint: str
    is_unique: bool
    clicked_at: MongoDateTime

    @classmethod
    def from_domain(cls, click: ClickEvent) -> "ClickDocument":
        data: dict[str, Any] = build_document_data_from_domain(click)
        data.setdefault("created_at", click.clicked_at)
        data.setdefault("updated_at", click.clicked_at)
        return cls.model_validate(data)

    def to_domain(self) -> ClickEvent:
        return ClickEvent(
            id=from_object_id(self.id),
            link_id=self.link_id,
            hashed_ip=self.hashed_ip,
            hashed_fingerprint=self.hashed_fingerprint,
            is_unique=self.is_unique,
            clicked_at=self.clicked_at,
        )
