from __future__ import annotations

import pytest

from common.eventbus.helpers import new_json_event
from common.events.notification import (
    NotificationEventType,
    NotificationKind,
    NotificationRequestedEvent,
)
from notification_worker.app.config import DispatchConfig
from notification_worker.app.main import _handle_event
from notification_worker.app.services.dispatch_service import (
    PacedSender,
    handle_notification_event,
)


class RecordingSender:
    def __init__(self, log: list[str]) -> None:
        self.log = log

    def send_text(self, to: str, body: str) -> None:
        self.log.append(f"send:{to}")


def _paced(log: list[str], batch_size: int = 2) -> PacedSender:
    return PacedSender(
        RecordingSender(log),
        DispatchConfig(batch_size=batch_size, batch_delay_seconds=2.0),
        sleep=lambda seconds: log.append(f"sleep:{seconds}"),
    )


def _event(**overrides: str) -> NotificationRequestedEvent:
    data = {
        "id": "evt-1",
        "type": NotificationEventType.NOTIFICATION_REQUESTED,
        "timestamp": "2025-03-05T10:00:00+00:00",
        "source": "dwey-service",
        "version": "1.0",
        "recipient": "2348011111111",
        "text": "Your link was deactivated",
        "kind": NotificationKind.LINK_DEACTIVATED,
    }
    data.update(overrides)
    return NotificationRequestedEvent.from_dict(data)


def test_paced_sender_pauses_between_batches() -> None:
    log: list[str] = []
    sender = _paced(log)

    for index in range(5):
        sender.send(f"23480{index}", "hello")

    assert log == [
        "send:234800",
        "send:234801",
        "sleep:2.0",
        "send:234802",
        "send:234803",
        "sleep:2.0",
        "send:234804",
    ]


def test_handle_notification_event_sends_text() -> None:
    log: list[str] = []
    handle_notification_event(_event(), _paced(log))
    assert log == ["send:2348011111111"]


def test_event_without_recipient_is_dropped() -> None:
    log: list[str] = []
    handle_notification_event(_event(recipient=""), _paced(log))
    assert log == []


def test_worker_handler_filters_event_type() -> None:
    log: list[str] = []
    sender = _paced(log)

    _handle_event(new_json_event(payload=_event().to_dict()), sender=sender)
    _handle_event(new_json_event(payload={"type": "something.else"}), sender=sender)

    assert log == ["send:2348011111111"]


def test_worker_handler_raises_on_broken_payload() -> None:
    log: list[str] = []
    broken = {"type": NotificationEventType.NOTIFICATION_REQUESTED, "id": "evt-2"}

    with pytest.raises(KeyError):
        _handle_event(new_json_event(payload=broken), sender=_paced(log))
