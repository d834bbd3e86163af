from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from confluent_kafka import Consumer, KafkaError, Message, Producer

from .config import get_brokers, get_flush_timeout_seconds
from .core import Event, MaxRetryExceededError, RetryDelays, Topic
from .helpers import decode_event, encode_event, schedule_retry, seconds_until_due

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """Kafka 기반 EventBus.

    - 발행: JSON 인코딩 후 produce, 키는 event.id (같은 이벤트는 같은 파티션)
    - 구독: 본 토픽 + 재시도 토픽을 함께 소비하고, 핸들러 실패 시 다음 재시도 토픽
      또는 DLQ 로 보낸 뒤 커밋한다. 재발행에 실패하면 커밋하지 않아 다시 처리된다.
    """

    def __init__(self, brokers: str) -> None:
        self._producer = Producer({"bootstrap.servers": brokers})
        self._brokers = brokers

    def close(self) -> None:
        self.flush()

    def flush(self, timeout: float | None = None) -> int:
        """남은 메시지 수를 반환한다. 0 이면 모두 전달된 것."""
        if timeout is None:
            timeout = get_flush_timeout_seconds()
        return self._producer.flush(timeout)

    # 발행 -----------------------------------------------------------------
    def publish(self, topic: str, event: Event) -> None:
        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=encode_event(event),
            key=event.id.encode("utf-8"),
            callback=_delivery_callback,
        )
        self._producer.poll(0)

    # 구독 -----------------------------------------------------------------
    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: Callable[[Event], None],
        *,
        poll_timeout: float = 0.5,
        stop_event: threading.Event | None = None,
    ) -> None:
        consumer = Consumer(
            {
                "bootstrap.servers": self._brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
                # 재시도 지연을 기다리는 동안 그룹에서 빠지지 않도록 가장 긴 지연보다 넉넉히 잡는다.
                "max.poll.interval.ms": int((max(RetryDelays) + 60) * 1000),
            }
        )
        consumer.subscribe(topic.all_consumable())

        try:
            logger.info(
                "Kafka consumer started. group_id=%s topic=%s", group_id, topic.base
            )
            while stop_event is None or not stop_event.is_set():
                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        continue
                    logger.error("consumer error: %s", msg.error())
                    continue

                if self._dispatch(msg, topic, handler, stop_event):
                    try:
                        consumer.commit(message=msg, asynchronous=False)
                    except Exception as exc:  # noqa: BLE001
                        logger.error("offset commit error: %s", exc)
        finally:
            consumer.close()

    def _dispatch(
        self,
        msg: Message,
        topic: Topic,
        handler: Callable[[Event], None],
        stop_event: threading.Event | None = None,
    ) -> bool:
        """메시지 하나를 처리하고, 오프셋을 커밋해도 되는지 반환한다."""
        try:
            evt = decode_event(msg.value())
        except (TypeError, ValueError) as exc:
            # 복구 불가능한 메시지는 건너뛴다.
            logger.error("invalid event payload on topic %s: %s", msg.topic(), exc)
            return True

        delay = seconds_until_due(evt, time.time())
        if delay > 0:
            logger.debug("event %s waits %.1fs before retry %d", evt.id, delay, evt.retry)
            if stop_event is not None:
                if stop_event.wait(delay):
                    # 종료 중이면 커밋하지 않고 다음 기동 때 다시 처리한다.
                    return False
            else:
                time.sleep(delay)

        try:
            handler(evt)
        except Exception as exc:  # noqa: BLE001
            evt.last_error = str(exc)
            return self._route_failure(topic, evt)
        return True

    def _route_failure(self, topic: Topic, evt: Event) -> bool:
        next_retry = evt.retry + 1
        try:
            if next_retry > evt.max_retry:
                raise MaxRetryExceededError()
            next_topic = topic.get_retry_topic(next_retry)
        except MaxRetryExceededError:
            logger.error(
                "event %s exceeded max retry, sending to DLQ %s: %s",
                evt.id,
                topic.dlq(),
                evt.last_error,
            )
            next_topic = topic.dlq()
        else:
            schedule_retry(evt, next_retry, time.time())
            logger.warning(
                "event %s failed, scheduling retry %d/%d to %s",
                evt.id,
                evt.retry,
                evt.max_retry,
                next_topic,
            )

        try:
            self.publish(next_topic, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error(
                "failed to publish event %s to %s: %s", evt.id, next_topic, pub_exc
            )
            return False
        return True


_event_bus: KafkaEventBus | None = None
_event_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """프로세스 전역 KafkaEventBus 싱글톤 (KAFKA_BOOTSTRAP_SERVERS 필요)."""

    global _event_bus

    if _event_bus is not None:
        return _event_bus

    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = KafkaEventBus(get_brokers())
        return _event_bus


def close_kafka_event_bus() -> None:
    global _event_bus

    with _event_bus_lock:
        if _event_bus is not None:
            remaining = _event_bus.flush()
            if remaining:
                logger.warning("%d kafka messages were not delivered on close", remaining)
        _event_bus = None
