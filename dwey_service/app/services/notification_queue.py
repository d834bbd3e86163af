"""사용자 알림 큐.

과금/정산 로직은 알림을 큐에 넣기만 하고, 실제 WhatsApp 발송은 notification_worker 가
배치와 간격 조절을 하며 처리한다. 발송 지연이나 실패가 과금 정합성에 영향을 주지 않는다.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import KafkaEventBus, get_kafka_event_bus
from common.eventbus.topics import TOPIC_NOTIFICATION
from common.events.notification import (
    NotificationEventType,
    NotificationRequestedEvent,
)


logger = logging.getLogger(__name__)


class NotificationQueue(Protocol):
    def enqueue(
        self, recipient: str, text: str, kind: str
    ) -> None:  # pragma: no cover - Protocol
        """실패 시 예외를 던진다. 호출 측이 로그/집계 후 계속 진행한다."""
        ...


class KafkaNotificationQueue:
    def __init__(self, event_bus: KafkaEventBus, source: str = "dwey-service") -> None:
        self._event_bus = event_bus
        self._source = source

    def enqueue(self, recipient: str, text: str, kind: str) -> None:
        event_id = uuid.uuid4().hex
        evt = NotificationRequestedEvent(
            id=event_id,
            type=NotificationEventType.NOTIFICATION_REQUESTED,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=self._source,
            version="1.0",
            recipient=recipient,
            text=text,
            kind=kind,
        )
        wrapped = new_json_event(payload=evt.to_dict(), event_id=event_id)
        self._event_bus.publish(TOPIC_NOTIFICATION.base, wrapped)


_queue: NotificationQueue | None = None
_queue_lock = threading.Lock()


def get_notification_queue() -> NotificationQueue:
    """프로세스 전역 알림 큐 싱글톤."""

    global _queue

    if _queue is not None:
        return _queue

    with _queue_lock:
        if _queue is None:
            _queue = KafkaNotificationQueue(get_kafka_event_bus())
        return _queue


def notify_safely(queue: NotificationQueue, recipient: str, text: str, kind: str) -> bool:
    """알림 큐 적재 실패를 로그로만 남긴다. 성공 여부를 반환한다."""
    try:
        queue.enqueue(recipient, text, kind)
    except Exception:  # noqa: BLE001
        logger.exception(
            "failed to enqueue %s notification", kind, extra={"account": recipient}
        )
        return False
    return True
