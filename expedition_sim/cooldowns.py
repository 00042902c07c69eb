"""Last-used timestamp cooldown bookkeeping."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Hashable, Optional, Tuple


class CooldownTracker:
    """Remembers when a key was last used and for how long it stays blocked."""

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Tuple[datetime, float]] = {}

    def mark(self, key: Hashable, used_at: datetime, minutes: float) -> None:
        if minutes <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (used_at, float(minutes))

    def remaining(self, key: Hashable, now: datetime) -> Optional[timedelta]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        used_at, minutes = entry
        left = used_at + timedelta(minutes=minutes) - now
        if left <= timedelta(0):
            del self._entries[key]
            return None
        return left

    def is_active(self, key: Hashable, now: datetime) -> bool:
        return self.remaining(key, now) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CooldownTracker"]
