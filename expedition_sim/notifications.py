"""In-process change notifications for expedition state."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

CATEGORY_EXPEDITION = "expedition"
CATEGORY_PROGRESS = "expedition_progress"
CATEGORY_EVENT = "expedition_event"
CATEGORY_INTERVENTION = "intervention"
CATEGORY_REWARDS = "expedition_rewards"
CATEGORY_REPORT = "expedition_report"

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"

SOURCE_USER = "user_action"
SOURCE_SYSTEM = "system_update"


@dataclass(frozen=True)
class DataChange:
    category: str
    action: str
    entity_id: str
    timestamp: datetime
    data: Any = None
    previous_data: Any = None
    source: str = SOURCE_SYSTEM


Subscriber = Callable[[DataChange], None]


@dataclass
class _Subscription:
    callback: Subscriber
    category: Optional[str] = None
    entity_id: Optional[str] = None
    active: bool = field(default=True)

    def matches(self, change: DataChange) -> bool:
        if self.category is not None and self.category != change.category:
            return False
        if self.entity_id is not None and self.entity_id != change.entity_id:
            return False
        return True


class NotificationHub:
    """Fan out :class:`DataChange` records to subscribers.

    Subscribers may listen to one category, one entity within a category,
    or everything. A failing subscriber is logged and never interrupts
    delivery to the others or the caller that emitted the change.
    """

    def __init__(self, recent_buffer: int = 200) -> None:
        self._subscriptions: List[_Subscription] = []
        self._recent: Deque[DataChange] = deque(maxlen=recent_buffer)
        self._lock = threading.Lock()

    def subscribe(
        self,
        category: str,
        callback: Subscriber,
        entity_id: Optional[str] = None,
    ) -> Callable[[], None]:
        return self._add(_Subscription(callback, category=category, entity_id=entity_id))

    def subscribe_all(self, callback: Subscriber) -> Callable[[], None]:
        return self._add(_Subscription(callback))

    def _add(self, subscription: _Subscription) -> Callable[[], None]:
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                subscription.active = False
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def emit(self, change: DataChange) -> None:
        with self._lock:
            self._recent.append(change)
            targets = [sub for sub in self._subscriptions if sub.matches(change)]
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback(change)
            except Exception:
                logger.exception(
                    "Subscriber failed for %s/%s", change.category, change.entity_id
                )

    def recent(
        self, category: Optional[str] = None, limit: Optional[int] = None
    ) -> List[DataChange]:
        with self._lock:
            changes = [c for c in self._recent if category is None or c.category == category]
        if limit is not None:
            changes = changes[-limit:]
        return changes

    def subscriber_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for sub in self._subscriptions:
                key = sub.category or "*"
                counts[key] = counts.get(key, 0) + 1
        return counts


__all__ = [
    "ACTION_CREATE",
    "ACTION_DELETE",
    "ACTION_UPDATE",
    "CATEGORY_EVENT",
    "CATEGORY_EXPEDITION",
    "CATEGORY_INTERVENTION",
    "CATEGORY_PROGRESS",
    "CATEGORY_REPORT",
    "CATEGORY_REWARDS",
    "DataChange",
    "NotificationHub",
    "SOURCE_SYSTEM",
    "SOURCE_USER",
]
