"""Domain events emitted by the progression service.

Events are collected while an event is processed and published only after
the transaction commits. Subscribers run synchronously in the request thread;
a transport layer (notifications, websockets) can subscribe here without the
core knowing about it.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XpChanged:
    user_id: int
    previous_total_xp: int
    total_xp: int
    source_type: Optional[str] = None
    source_id: Optional[str] = None


@dataclass(frozen=True)
class LevelUp:
    user_id: int
    previous_level: int
    level: int


@dataclass(frozen=True)
class AchievementUnlocked:
    user_id: int
    achievement_id: str
    title: str
    xp_reward: int


@dataclass(frozen=True)
class StreakChanged:
    user_id: int
    streak: int


class EventBus:
    """Type-keyed subscriber registry."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Callable) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def publish(self, event) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Already committed; keep notifying the remaining handlers.
                logger.exception("Event handler %r failed for %r", handler, event)

    def publish_all(self, events) -> None:
        for event in events:
            self.publish(event)


def log_event(event) -> None:
    logger.info("progression event: %s", event)


def install_logging_subscriber(bus: EventBus) -> None:
    for event_type in (XpChanged, LevelUp, AchievementUnlocked, StreakChanged):
        bus.subscribe(event_type, log_event)
