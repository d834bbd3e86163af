from __future__ import annotations

from .core import Topic


TOPIC_NOTIFICATION = Topic("dwey.notification")

ALL_TOPICS: list[Topic] = [
    TOPIC_NOTIFICATION,
]
