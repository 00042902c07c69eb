"""Arena of per-expedition runtime state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from .errors import UnknownEntityError
from .models import (
    ActiveIntervention,
    AppliedEffect,
    EffectKind,
    Expedition,
    ExpeditionEvent,
    ExpeditionProgress,
    Location,
    StageTransition,
    Trainer,
)


@dataclass
class ExpeditionRecord:
    """Everything the simulation tracks for one running expedition."""

    expedition: Expedition
    trainer: Trainer
    location: Location
    progress: ExpeditionProgress
    last_tick: datetime
    next_event_at: datetime
    initial_risk: float = 0.0
    effective_elapsed: float = 0.0  # seconds, scaled by progress boosts
    progress_offset: float = 0.0
    weather: str = "clear"
    stage_transitions: List[StageTransition] = field(default_factory=list)
    active_interventions: List[ActiveIntervention] = field(default_factory=list)
    completed: bool = False

    @property
    def id(self) -> str:
        return self.expedition.id

    def live_effects(self, now: datetime) -> List[AppliedEffect]:
        """Return live effects, dropping expired ones and emptied interventions."""
        live: List[AppliedEffect] = []
        remaining: List[ActiveIntervention] = []
        for active in self.active_interventions:
            active.effects = [effect for effect in active.effects if effect.is_live(now)]
            if active.effects:
                remaining.append(active)
                live.extend(active.effects)
        self.active_interventions = remaining
        return live

    def effect_total(self, kind: EffectKind, now: datetime) -> float:
        total = 0.0
        for effect in self.live_effects(now):
            if effect.kind is kind and isinstance(effect.value, (int, float)):
                total += float(effect.value)
        return total

    def event(self, event_id: str) -> ExpeditionEvent:
        for event in self.expedition.events:
            if event.id == event_id:
                return event
        raise UnknownEntityError("event", event_id)


class ExpeditionRegistry:
    """Single map from expedition id to its :class:`ExpeditionRecord`.

    Removing a record drops its runtime state and keeps only the finished
    :class:`Expedition` (events and interventions included) for queries.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ExpeditionRecord] = {}
        self._finished: Dict[str, Expedition] = {}

    def add(self, record: ExpeditionRecord) -> None:
        if record.id in self._records or record.id in self._finished:
            raise ValueError(f"Expedition id {record.id} is already in use")
        self._records[record.id] = record

    def get(self, expedition_id: str) -> ExpeditionRecord:
        try:
            return self._records[expedition_id]
        except KeyError:
            raise UnknownEntityError("expedition", expedition_id) from None

    def find(self, expedition_id: str) -> Optional[ExpeditionRecord]:
        return self._records.get(expedition_id)

    def remove(self, expedition_id: str) -> Optional[ExpeditionRecord]:
        record = self._records.pop(expedition_id, None)
        if record is not None:
            self._finished[expedition_id] = record.expedition
        return record

    def records(self) -> List[ExpeditionRecord]:
        return list(self._records.values())

    def expedition(self, expedition_id: str) -> Expedition:
        """Look up an active or finished expedition."""
        record = self._records.get(expedition_id)
        if record is not None:
            return record.expedition
        try:
            return self._finished[expedition_id]
        except KeyError:
            raise UnknownEntityError("expedition", expedition_id) from None

    def find_expedition(self, expedition_id: str) -> Optional[Expedition]:
        record = self._records.get(expedition_id)
        if record is not None:
            return record.expedition
        return self._finished.get(expedition_id)

    def expeditions(self) -> List[Expedition]:
        active = [record.expedition for record in self._records.values()]
        return active + list(self._finished.values())

    def finished(self) -> List[Expedition]:
        return list(self._finished.values())

    def clear(self) -> None:
        self._records.clear()
        self._finished.clear()

    def __contains__(self, expedition_id: object) -> bool:
        return expedition_id in self._records

    def __iter__(self) -> Iterator[ExpeditionRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["ExpeditionRecord", "ExpeditionRegistry"]
