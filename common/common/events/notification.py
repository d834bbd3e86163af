"""WhatsApp 알림 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class NotificationEventType:
    """알림 이벤트 타입 상수."""

    NOTIFICATION_REQUESTED = "notification.requested"


class NotificationKind:
    """알림 종류. 워커 쪽 로그/통계 구분용."""

    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_INFO = "payment_info"
    PAYMENT_REVERSED = "payment_reversed"
    BILLING_WARNING = "billing_warning"
    LINK_DEACTIVATED = "link_deactivated"
    LINK_DELETED = "link_deleted"


@dataclass(slots=True)
class NotificationRequestedEvent:
    """WhatsApp 메시지 발송 요청 이벤트.

    결제 정산, 일일 과금 스윕 등에서 발행되고 notification_worker 가 소비한다.
    recipient 는 정규화된 전화번호(234...)이다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    recipient: str
    text: str
    kind: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            recipient=str(data["recipient"]),
            text=str(data["text"]),
            kind=str(data.get("kind", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "source": self.source,
            "version": self.version,
            "recipient": self.recipient,
            "text": self.text,
            "kind": self.kind,
        }
