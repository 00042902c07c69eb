"""Player interventions on running expeditions."""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .catalogs import InterventionCatalog
from .config import Settings
from .cooldowns import CooldownTracker
from .errors import EventAlreadyResolvedError
from .events import EventResolver
from .models import (
    ActiveIntervention,
    AppliedEffect,
    EffectKind,
    EventOutcome,
    EventResolution,
    EventRewards,
    InterventionAction,
    InterventionOutcome,
    InterventionRecord,
    InterventionRequirement,
    InterventionResult,
    InterventionType,
    PlayerState,
    Trainer,
    UnmetRequirement,
)
from .notifications import (
    ACTION_CREATE,
    CATEGORY_INTERVENTION,
    SOURCE_USER,
    DataChange,
    NotificationHub,
)
from .registry import ExpeditionRecord, ExpeditionRegistry

logger = logging.getLogger(__name__)

IMMEDIATE_RETURN = "immediate_return"
EMERGENCY_EXPERIENCE = 50
EMERGENCY_PROGRESS = 0.1


def _check_requirement(
    requirement: InterventionRequirement,
    trainer: Trainer,
    player: PlayerState,
    record: ExpeditionRecord,
) -> Optional[UnmetRequirement]:
    kind = requirement.type
    value = requirement.value
    if kind == "player_level":
        actual: Any = player.level
        ok = actual >= value
        message = f"Requires player level {value} (has {actual})"
    elif kind == "money":
        actual = player.money
        ok = actual >= value
        message = f"Requires {value} money (has {actual})"
    elif kind == "item_possession":
        actual = player.has_item(value)
        ok = actual
        message = f"Requires item {value}"
    elif kind == "trust_level":
        actual = trainer.trust_level
        ok = actual >= value
        message = f"Requires trust level {value} (has {actual})"
    elif kind == "expedition_stage":
        allowed = value if isinstance(value, (list, tuple)) else [value]
        actual = record.progress.stage.value
        ok = actual in allowed
        message = f"Only available during {', '.join(allowed)} (currently {actual})"
    else:
        actual = None
        ok = False
        message = f"Unsupported requirement {kind}"
    if ok:
        return None
    return UnmetRequirement(type=kind, required=value, actual=actual, message=message)


class InterventionController:
    """Validates, charges and applies intervention actions.

    Cooldowns are tracked per action id and shared by every expedition, for
    both the regular and the emergency path. History is append-only.
    """

    def __init__(
        self,
        catalog: InterventionCatalog,
        registry: ExpeditionRegistry,
        resolver: EventResolver,
        settings: Settings,
        clock,
        notifier: NotificationHub,
        on_recall: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._resolver = resolver
        self._settings = settings
        self._clock = clock
        self._notifier = notifier
        self.on_recall = on_recall
        self._cooldowns = CooldownTracker()
        self._emergency_cooldowns = CooldownTracker()
        self._ids = itertools.count(1)

    @property
    def catalog(self) -> InterventionCatalog:
        return self._catalog

    def add_action(self, action: InterventionAction) -> None:
        self._catalog.add(action)

    # ------------------------------------------------------------------
    def check_requirements(
        self,
        action: InterventionAction,
        record: ExpeditionRecord,
        player: PlayerState,
        trainer: Optional[Trainer] = None,
        now: Optional[datetime] = None,
    ) -> List[UnmetRequirement]:
        trainer = trainer or record.trainer
        now = now or self._clock.now()
        unmet = [
            gap
            for gap in (
                _check_requirement(req, trainer, player, record) for req in action.requirements
            )
            if gap is not None
        ]
        if action.cost > player.money and not any(gap.type == "money" for gap in unmet):
            unmet.append(
                UnmetRequirement(
                    type="money",
                    required=action.cost,
                    actual=player.money,
                    message=f"Requires {action.cost} money (has {player.money})",
                )
            )
        remaining = self._cooldowns.remaining(action.id, now)
        if remaining is not None:
            minutes_left = remaining.total_seconds() / 60
            unmet.append(
                UnmetRequirement(
                    type="cooldown",
                    required=action.cooldown_minutes,
                    actual=round(minutes_left, 2),
                    message=f"{action.name} is cooling down ({minutes_left:.0f} min left)",
                )
            )
        return unmet

    def available_actions(
        self,
        expedition_id: str,
        player: PlayerState,
        trainer: Optional[Trainer] = None,
        now: Optional[datetime] = None,
    ) -> List[InterventionAction]:
        record = self._registry.get(expedition_id)
        return [
            action
            for action in self._catalog.all()
            if not self.check_requirements(action, record, player, trainer, now)
        ]

    def execute(
        self,
        expedition_id: str,
        action_id: str,
        player: PlayerState,
        trainer: Optional[Trainer] = None,
        now: Optional[datetime] = None,
    ) -> InterventionResult:
        action = self._catalog.get(action_id)
        record = self._registry.get(expedition_id)
        trainer = trainer or record.trainer
        now = now or self._clock.now()

        unmet = self.check_requirements(action, record, player, trainer, now)
        if unmet:
            logger.warning(
                "Intervention %s rejected for %s: %s",
                action_id,
                expedition_id,
                "; ".join(gap.message for gap in unmet),
            )
            return InterventionResult(
                action_id=action_id,
                success=False,
                message="Requirements not met",
                unmet_requirements=tuple(unmet),
            )

        # Unknown trigger templates raise here, before anything is charged.
        spawned = [
            self._resolver.catalog.get(str(effect.value))
            for effect in action.effects
            if effect.kind is EffectKind.EVENT_TRIGGER and effect.value != IMMEDIATE_RETURN
        ]

        player.money -= action.cost
        applied = tuple(
            AppliedEffect(
                kind=effect.kind,
                value=effect.value,
                start_time=now,
                duration_minutes=effect.duration_minutes,
                action_id=action.id,
            )
            for effect in action.effects
        )
        lasting = [effect for effect in applied if effect.kind is not EffectKind.EVENT_TRIGGER]
        if lasting:
            record.active_interventions.append(
                ActiveIntervention(
                    id=f"{expedition_id}-act-{next(self._ids)}",
                    expedition_id=expedition_id,
                    action_id=action.id,
                    applied_at=now,
                    effects=lasting,
                )
            )
        self._cooldowns.mark(action.id, now, action.cooldown_minutes)

        entry = self._record(
            record,
            action,
            now,
            InterventionOutcome.SUCCESS,
            effect=", ".join(e.description or e.kind.value for e in action.effects),
            cost=action.cost,
        )
        logger.info("Intervention %s applied to %s (cost %d)", action_id, expedition_id, action.cost)

        for template in spawned:
            self._resolver.spawn(expedition_id, template.id, now)
        if any(
            effect.kind is EffectKind.EVENT_TRIGGER and effect.value == IMMEDIATE_RETURN
            for effect in action.effects
        ):
            self._recall(expedition_id)

        return InterventionResult(
            action_id=action_id,
            success=True,
            message=f"{action.name} applied",
            cost=action.cost,
            effects=applied,
            consequences=self.consequences(action, trainer),
            record=entry,
        )

    def emergency_execute(
        self,
        expedition_id: str,
        event_id: str,
        action_id: str,
        trainer: Optional[Trainer] = None,
        now: Optional[datetime] = None,
    ) -> EventResolution:
        """Override the resolution of one pending event with an intervention."""
        record = self._registry.get(expedition_id)
        event = record.event(event_id)
        if event.resolved:
            raise EventAlreadyResolvedError(event_id)
        action = self._catalog.get(action_id)
        now = now or self._clock.now()
        choice_id = f"emergency:{action.id}"
        recall = action.type is InterventionType.EMERGENCY_RECALL

        if not recall:
            remaining = self._emergency_cooldowns.remaining(action.id, now)
            if remaining is not None:
                minutes_left = remaining.total_seconds() / 60
                gap = UnmetRequirement(
                    type="cooldown",
                    required=self.emergency_cooldown_minutes(action),
                    actual=round(minutes_left, 2),
                    message=f"Emergency {action.name} is cooling down ({minutes_left:.0f} min left)",
                )
                logger.warning("Emergency %s rejected for %s: %s", action_id, event_id, gap.message)
                return EventResolution(
                    event_id=event_id,
                    choice_id=choice_id,
                    accepted=False,
                    message="Requirements not met",
                    unmet_requirements=(gap,),
                )

        success = False
        experience = 0
        modifier = 0.0
        message = f"{action.name} changed the outcome"
        for effect in action.effects:
            if effect.kind is EffectKind.SUCCESS_RATE_BOOST:
                success = True
                experience += EMERGENCY_EXPERIENCE
            elif effect.kind is EffectKind.PROGRESS_BOOST:
                modifier += float(effect.value or EMERGENCY_PROGRESS)
            elif effect.kind is EffectKind.RISK_REDUCTION:
                message = f"Danger averted thanks to {action.name}"
            elif effect.kind is EffectKind.EVENT_TRIGGER and effect.value == IMMEDIATE_RETURN:
                message = "The trainer was recalled before things got worse"
        rewards = EventRewards(experience=experience, progress_modifier=modifier)

        self._resolver.commit(
            record,
            event,
            EventOutcome(
                choice_id=choice_id,
                success=success,
                message=message,
                resolved_at=now,
                rewards=rewards,
                emergency_action_id=action.id,
            ),
            source=SOURCE_USER,
        )
        if not recall:
            self._emergency_cooldowns.mark(action.id, now, self.emergency_cooldown_minutes(action))
        self._record(
            record,
            action,
            now,
            InterventionOutcome.SUCCESS if success else InterventionOutcome.PARTIAL,
            effect=message,
            event_id=event_id,
        )
        logger.info("Emergency %s resolved event %s on %s", action_id, event_id, expedition_id)
        if recall:
            self._recall(expedition_id)
        return EventResolution(
            event_id=event_id,
            choice_id=choice_id,
            accepted=True,
            success=success,
            message=message,
            success_rate=1.0 if success else 0.0,
            rewards=rewards,
        )

    def emergency_cooldown_minutes(self, action: InterventionAction) -> float:
        return max(
            action.cooldown_minutes * self._settings.emergency_cooldown_factor,
            self._settings.emergency_cooldown_floor_minutes,
        )

    def consequences(self, action: InterventionAction, trainer: Trainer) -> Tuple[str, ...]:
        notes: List[str] = []
        if action.type is InterventionType.EMERGENCY_RECALL and trainer.trust_level > 70:
            notes.append(f"{trainer.name} is grateful for the timely recall.")
        if action.type is InterventionType.GUIDANCE and trainer.trust_level < 50:
            notes.append(f"{trainer.name} is reluctant to follow outside advice.")
        return tuple(notes)

    def _recall(self, expedition_id: str) -> None:
        if self.on_recall is None:
            logger.warning("Recall requested for %s but no recall hook is set", expedition_id)
            return
        self.on_recall(expedition_id)

    def _record(
        self,
        record: ExpeditionRecord,
        action: InterventionAction,
        now: datetime,
        result: InterventionOutcome,
        effect: str,
        cost: int = 0,
        event_id: Optional[str] = None,
    ) -> InterventionRecord:
        entry = InterventionRecord(
            id=f"{record.id}-int-{next(self._ids)}",
            expedition_id=record.id,
            action_id=action.id,
            timestamp=now,
            result=result,
            effect=effect,
            cost=cost,
            event_id=event_id,
        )
        record.expedition.interventions.append(entry)
        self._notifier.emit(
            DataChange(
                category=CATEGORY_INTERVENTION,
                action=ACTION_CREATE,
                entity_id=entry.id,
                timestamp=now,
                data=entry,
                source=SOURCE_USER,
            )
        )
        return entry

    # ------------------------------------------------------------------
    def active_effects(self, expedition_id: str, now: Optional[datetime] = None) -> List[AppliedEffect]:
        record = self._registry.get(expedition_id)
        return record.live_effects(now or self._clock.now())

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Drop expired effects everywhere; returns how many were removed."""
        now = now or self._clock.now()
        removed = 0
        for record in self._registry:
            before = sum(len(active.effects) for active in record.active_interventions)
            after = len(record.live_effects(now))
            removed += before - after
        if removed:
            logger.debug("Swept %d expired intervention effects", removed)
        return removed

    def history(self, expedition_id: str) -> List[InterventionRecord]:
        expedition = self._registry.find_expedition(expedition_id)
        return list(expedition.interventions) if expedition is not None else []

    def statistics(self, expedition_id: Optional[str] = None) -> Dict[str, Any]:
        if expedition_id is None:
            entries = [
                entry for expedition in self._registry.expeditions() for entry in expedition.interventions
            ]
        else:
            entries = self.history(expedition_id)
        by_action: Dict[str, int] = {}
        for entry in entries:
            by_action[entry.action_id] = by_action.get(entry.action_id, 0) + 1
        return {
            "total": len(entries),
            "successful": sum(1 for e in entries if e.result is InterventionOutcome.SUCCESS),
            "partial": sum(1 for e in entries if e.result is InterventionOutcome.PARTIAL),
            "total_cost": sum(e.cost for e in entries),
            "by_action": by_action,
        }


__all__ = ["IMMEDIATE_RETURN", "InterventionController"]
