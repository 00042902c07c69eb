"""Exception types raised by the expedition simulation."""
from __future__ import annotations


class ExpeditionError(Exception):
    """Base class for expedition simulation failures."""


class UnknownEntityError(ExpeditionError, ValueError):
    """Raised when a command references an id the simulation does not know."""

    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(f"Unknown {kind}: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class EventAlreadyResolvedError(ExpeditionError, RuntimeError):
    """Raised when a resolved event is resolved a second time."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} has already been resolved")
        self.event_id = event_id


__all__ = ["EventAlreadyResolvedError", "ExpeditionError", "UnknownEntityError"]
