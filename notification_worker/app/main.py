from __future__ import annotations

import logging
import signal
import threading

from common.eventbus.config import get_brokers, get_group_id
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_NOTIFICATION
from common.events.notification import (
    NotificationEventType,
    NotificationRequestedEvent,
)
from common.logger import setup_logger

from .config import load_config
from .services.dispatch_service import PacedSender, handle_notification_event
from .whatsapp import WhatsAppClient


logger = logging.getLogger(__name__)


def _handle_event(evt: Event, *, sender: PacedSender) -> None:
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    event_type = str(payload.get("type", ""))
    if event_type != NotificationEventType.NOTIFICATION_REQUESTED:
        # 다른 타입의 이벤트는 이 워커의 책임이 아니므로 무시한다.
        return

    try:
        requested = NotificationRequestedEvent.from_dict(payload)
    except (KeyError, TypeError):
        logger.exception("failed to decode NotificationRequestedEvent id=%s", payload.get("id"))
        raise

    handle_notification_event(requested, sender)


def main() -> None:
    setup_logger(name="notification-worker")
    logger.info("notification-worker starting up")

    app_cfg = load_config()
    client = WhatsAppClient(app_cfg.whatsapp)
    sender = PacedSender(client, app_cfg.dispatch)

    bus = KafkaEventBus(get_brokers())
    stop_event = threading.Event()

    def _signal_handler(signum, frame) -> None:  # type: ignore[unused-argument]
        logger.info("received signal %s, shutting down notification-worker...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        bus.subscribe(
            group_id=get_group_id(default="notification-worker"),
            topic=TOPIC_NOTIFICATION,
            handler=lambda evt: _handle_event(evt, sender=sender),
            stop_event=stop_event,
        )
    finally:
        bus.close()
        client.close()


if __name__ == "__main__":  # pragma: no cover
    main()
