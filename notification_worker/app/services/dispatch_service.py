"""알림 이벤트를 WhatsApp 메시지로 보낸다.

WhatsApp 게이트웨이는 짧은 시간에 많은 메시지를 보내면 번호를 제한하므로,
batch_size 개마다 batch_delay_seconds 만큼 쉬면서 보낸다.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from common.events.notification import NotificationRequestedEvent

from ..config import DispatchConfig
from ..whatsapp import TextSender


logger = logging.getLogger(__name__)


class PacedSender:
    def __init__(
        self,
        sender: TextSender,
        config: DispatchConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sender = sender
        self._batch_size = max(1, config.batch_size)
        self._batch_delay = config.batch_delay_seconds
        self._sleep = sleep
        self._sent_in_batch = 0
        self._lock = threading.Lock()

    def send(self, recipient: str, text: str) -> None:
        with self._lock:
            if self._sent_in_batch >= self._batch_size:
                logger.debug("batch of %d sent, pausing %.1fs", self._batch_size, self._batch_delay)
                self._sleep(self._batch_delay)
                self._sent_in_batch = 0
            self._sender.send_text(recipient, text)
            self._sent_in_batch += 1


def handle_notification_event(event: NotificationRequestedEvent, sender: PacedSender) -> None:
    if not event.recipient or not event.text:
        logger.warning("notification %s has no recipient or text, dropped", event.id)
        return

    sender.send(event.recipient, event.text)
    logger.info(
        "notification sent (kind=%s, id=%s)",
        event.kind or "-",
        event.id,
        extra={"account": event.recipient},
    )
