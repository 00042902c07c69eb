"""Event generation and choice resolution."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .catalogs import EventCatalog, EventCondition, EventTemplate
from .config import Settings
from .cooldowns import CooldownTracker
from .errors import EventAlreadyResolvedError
from .models import (
    ChoiceRequirement,
    EffectKind,
    EffectType,
    EventChoice,
    EventOutcome,
    EventResolution,
    EventRewards,
    ExpeditionEvent,
    RiskLevel,
    Stage,
    Trainer,
    UnmetRequirement,
)
from .notifications import (
    ACTION_CREATE,
    ACTION_UPDATE,
    CATEGORY_EVENT,
    SOURCE_USER,
    DataChange,
    NotificationHub,
)
from .registry import ExpeditionRecord, ExpeditionRegistry
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

RELEVANT_SKILLS: Dict[EffectType, Tuple[str, ...]] = {
    EffectType.POKEMON_CAPTURE: ("capture", "exploration"),
    EffectType.ITEM_GAIN: ("exploration", "research"),
    EffectType.EXPERIENCE: ("research",),
    EffectType.MONEY: ("exploration", "battle"),
    EffectType.STATUS_CHANGE: ("healing",),
    EffectType.PROGRESS_MODIFIER: ("exploration",),
}

_SUCCESS_MESSAGES: Dict[EffectType, str] = {
    EffectType.POKEMON_CAPTURE: "The capture succeeded!",
    EffectType.ITEM_GAIN: "Found something useful.",
    EffectType.EXPERIENCE: "A valuable experience for the trainer.",
    EffectType.MONEY: "Came away with some money.",
    EffectType.PROGRESS_MODIFIER: "The expedition moves along.",
    EffectType.STATUS_CHANGE: "The trainer's condition changed.",
}

FAILURE_EXPERIENCE = 5
FAILURE_PROGRESS_PENALTY = -0.05
OPTIONAL_EXPERIENCE_BONUS = 10
OPTIONAL_MONEY_BONUS = 50


def time_of_day(moment: datetime) -> str:
    hour = moment.hour
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


@dataclass(frozen=True)
class EventContext:
    """Snapshot of an expedition used to decide which events may fire."""

    expedition_id: str
    location_id: int
    stage: Stage
    risk_level: RiskLevel
    trainer: Trainer
    now: datetime
    weather: str = "clear"

    @classmethod
    def from_record(cls, record: ExpeditionRecord, now: datetime) -> "EventContext":
        return cls(
            expedition_id=record.id,
            location_id=record.location.id,
            stage=record.progress.stage,
            risk_level=record.progress.risk_level,
            trainer=record.trainer,
            now=now,
            weather=record.weather,
        )


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "eq":
        return actual == expected
    if operator == "gt":
        return actual > expected
    if operator == "lt":
        return actual < expected
    if operator == "in":
        return actual in (expected or ())
    if operator == "not_in":
        return actual not in (expected or ())
    logger.warning("Unsupported condition operator %r", operator)
    return False


def condition_met(condition: EventCondition, context: EventContext) -> bool:
    kind = condition.type
    if kind == "stage":
        actual: Any = context.stage.value
    elif kind == "location":
        actual = context.location_id
    elif kind == "risk_level":
        actual = context.risk_level.value
    elif kind == "trainer_skill":
        actual = context.trainer.skill(condition.skill or "")
    elif kind == "trainer_level":
        actual = context.trainer.level
    elif kind == "weather":
        actual = context.weather
    elif kind == "time_of_day":
        actual = time_of_day(context.now)
    else:
        logger.warning("Unsupported condition type %r", kind)
        return False
    return _compare(actual, condition.operator, condition.value)


def check_choice_requirement(requirement: ChoiceRequirement, trainer: Trainer) -> Optional[UnmetRequirement]:
    """Return ``None`` when satisfied, otherwise a description of the gap."""
    kind = requirement.type
    if kind == "trainer_skill":
        actual: Any = trainer.skill(requirement.skill or "")
        if actual >= requirement.value:
            return None
        message = f"Requires {requirement.skill} skill {requirement.value} (has {actual})"
    elif kind == "trainer_level":
        actual = trainer.level
        if actual >= requirement.value:
            return None
        message = f"Requires trainer level {requirement.value} (has {actual})"
    elif kind == "item_possession":
        item = requirement.item or requirement.value
        actual = item in trainer.items
        if actual:
            return None
        message = f"Requires item {item}"
    elif kind == "risk_tolerance":
        actual = trainer.risk_tolerance
        if actual >= requirement.value:
            return None
        message = f"Requires risk tolerance {requirement.value} (has {actual:g})"
    else:
        actual = None
        message = f"Unsupported requirement {kind}"
    return UnmetRequirement(type=kind, required=requirement.value, actual=actual, message=message)


class EventResolver:
    """Chooses events for running expeditions and resolves player choices."""

    def __init__(
        self,
        catalog: EventCatalog,
        registry: ExpeditionRegistry,
        settings: Settings,
        clock,
        rng: DeterministicRNG,
        notifier: NotificationHub,
    ) -> None:
        self._catalog = catalog
        self._registry = registry
        self._settings = settings
        self._clock = clock
        self._rng = rng
        self._notifier = notifier
        self._template_cooldowns = CooldownTracker()
        self._choice_cooldowns = CooldownTracker()
        self._ids = itertools.count(1)

    @property
    def catalog(self) -> EventCatalog:
        return self._catalog

    def add_template(self, template: EventTemplate) -> None:
        self._catalog.add(template)

    # ------------------------------------------------------------------
    # Generation

    def is_eligible(self, template: EventTemplate, context: EventContext) -> bool:
        if self._template_cooldowns.is_active(template.id, context.now):
            return False
        if template.locations and context.location_id not in template.locations:
            return False
        if template.stages and context.stage not in template.stages:
            return False
        total = sum(cond.weight for cond in template.conditions)
        if total <= 0:
            return True
        met = sum(cond.weight for cond in template.conditions if condition_met(cond, context))
        return met / total >= self._settings.eligibility_threshold

    def eligible_templates(self, context: EventContext) -> List[EventTemplate]:
        return [t for t in self._catalog.random_pool() if self.is_eligible(t, context)]

    def pick_weighted(self, templates: Sequence[EventTemplate]) -> EventTemplate:
        """Roulette selection by rarity weight over a single draw."""
        if not templates:
            raise ValueError("Cannot pick from an empty template list")
        weights = [self._settings.rarity_weights.get(t.rarity.value, 1.0) for t in templates]
        roll = self._rng.random() * sum(weights)
        for template, weight in zip(templates, weights):
            roll -= weight
            if roll <= 0:
                return template
        return templates[-1]

    def choice_rate(self, base: float, stage: Stage, risk: RiskLevel) -> float:
        rate = (
            base
            * self._settings.stage_success_multipliers.get(stage.value, 1.0)
            * self._settings.risk_success_multipliers.get(risk.value, 1.0)
        )
        return self._settings.clamp_success_rate(rate)

    def generate(self, context: EventContext) -> Optional[ExpeditionEvent]:
        pool = self.eligible_templates(context)
        if not pool:
            logger.debug("No eligible events for expedition %s", context.expedition_id)
            return None
        template = self.pick_weighted(pool)
        return self._instantiate(template, context)

    def generate_for(self, record: ExpeditionRecord, now: datetime) -> Optional[ExpeditionEvent]:
        return self.generate(EventContext.from_record(record, now))

    def spawn(self, expedition_id: str, template_id: str, now: Optional[datetime] = None) -> ExpeditionEvent:
        """Create an event from a specific template, bypassing eligibility."""
        record = self._registry.get(expedition_id)
        template = self._catalog.get(template_id)
        context = EventContext.from_record(record, now or self._clock.now())
        return self._instantiate(template, context)

    def _instantiate(self, template: EventTemplate, context: EventContext) -> ExpeditionEvent:
        record = self._registry.get(context.expedition_id)
        choices = tuple(
            replace(choice, success_rate=self.choice_rate(choice.success_rate, context.stage, context.risk_level))
            for choice in template.choices
        )
        event = ExpeditionEvent(
            id=f"{context.expedition_id}-evt-{next(self._ids)}",
            expedition_id=context.expedition_id,
            template_id=template.id,
            type=template.type,
            rarity=template.rarity,
            message=self._rng.choice(template.messages),
            timestamp=context.now,
            stage=context.stage,
            choices=choices,
        )
        self._template_cooldowns.mark(template.id, context.now, template.cooldown_minutes)
        record.expedition.events.append(event)
        logger.debug("Event %s (%s) created for %s", event.id, template.id, context.expedition_id)
        self._notifier.emit(
            DataChange(
                category=CATEGORY_EVENT,
                action=ACTION_CREATE,
                entity_id=event.id,
                timestamp=context.now,
                data=event,
            )
        )
        return event

    # ------------------------------------------------------------------
    # Resolution

    def resolve_choice(
        self,
        expedition_id: str,
        event_id: str,
        choice_id: str,
        trainer: Optional[Trainer] = None,
        now: Optional[datetime] = None,
    ) -> EventResolution:
        record = self._registry.get(expedition_id)
        event = record.event(event_id)
        if event.resolved:
            raise EventAlreadyResolvedError(event_id)
        choice = event.choice(choice_id)
        trainer = trainer or record.trainer
        now = now or self._clock.now()

        unmet = [
            gap
            for gap in (check_choice_requirement(req, trainer) for req in choice.mandatory_requirements)
            if gap is not None
        ]
        cooldown_key = (trainer.id, choice.id)
        remaining = self._choice_cooldowns.remaining(cooldown_key, now)
        if remaining is not None:
            minutes_left = remaining.total_seconds() / 60
            unmet.append(
                UnmetRequirement(
                    type="cooldown",
                    required=choice.cooldown_minutes,
                    actual=round(minutes_left, 2),
                    message=f"{choice.id} is cooling down ({minutes_left:.0f} min left)",
                )
            )
        if unmet:
            logger.warning(
                "Choice %s rejected for event %s: %s",
                choice_id,
                event_id,
                "; ".join(gap.message for gap in unmet),
            )
            return EventResolution(
                event_id=event_id,
                choice_id=choice_id,
                accepted=False,
                message="Requirements not met",
                unmet_requirements=tuple(unmet),
            )

        met_optional = sum(
            1 for req in choice.optional_requirements if check_choice_requirement(req, trainer) is None
        )
        rate = self.effective_rate(choice, trainer, met_optional, record, now)
        success = self._rng.chance(rate)
        if success:
            rewards = self._success_rewards(choice, met_optional)
            message = _SUCCESS_MESSAGES[choice.effect.type]
        else:
            rewards = EventRewards(
                experience=FAILURE_EXPERIENCE, progress_modifier=FAILURE_PROGRESS_PENALTY
            )
            message = self._rng.choice(self._catalog.failure_messages(choice.risk))

        self.commit(
            record,
            event,
            EventOutcome(
                choice_id=choice_id,
                success=success,
                message=message,
                resolved_at=now,
                rewards=rewards,
            ),
            source=SOURCE_USER,
        )
        self._choice_cooldowns.mark(cooldown_key, now, choice.cooldown_minutes)
        return EventResolution(
            event_id=event_id,
            choice_id=choice_id,
            accepted=True,
            success=success,
            message=message,
            success_rate=rate,
            rewards=rewards,
        )

    def effective_rate(
        self,
        choice: EventChoice,
        trainer: Trainer,
        met_optional: int,
        record: Optional[ExpeditionRecord] = None,
        now: Optional[datetime] = None,
    ) -> float:
        rate = choice.success_rate
        rate += self._settings.optional_requirement_bonus * met_optional
        for skill in RELEVANT_SKILLS.get(choice.effect.type, ()):
            rate += self._settings.skill_bonus_per_level * trainer.skill(skill)
        rate += min(
            trainer.total_expeditions * self._settings.experience_bonus_per_expedition,
            self._settings.experience_bonus_cap,
        )
        if record is not None:
            rate += record.effect_total(EffectKind.SUCCESS_RATE_BOOST, now or self._clock.now())
        return self._settings.clamp_success_rate(rate)

    def _success_rewards(self, choice: EventChoice, met_optional: int) -> EventRewards:
        params = choice.effect.params
        kind = choice.effect.type
        experience = 0
        money = 0
        modifier = 0.0
        items: Tuple[str, ...] = ()
        captured = False
        status = None
        if kind is EffectType.POKEMON_CAPTURE:
            experience = int(params.get("experience") or 50)
            captured = True
        elif kind is EffectType.ITEM_GAIN:
            experience = 20
            if params.get("item"):
                items = (str(params["item"]),)
        elif kind is EffectType.MONEY:
            money = int(params.get("amount") or 100)
        elif kind is EffectType.PROGRESS_MODIFIER:
            modifier = float(params.get("modifier") or 0.1)
            experience = 30
        elif kind is EffectType.EXPERIENCE:
            experience = int(params.get("amount") or 25)
        else:
            status = params.get("status")
            experience = 25
        experience += OPTIONAL_EXPERIENCE_BONUS * met_optional
        money += OPTIONAL_MONEY_BONUS * met_optional
        return EventRewards(
            experience=experience,
            money=money,
            progress_modifier=modifier,
            items=items,
            pokemon_captured=captured,
            status=status,
        )

    def commit(
        self,
        record: ExpeditionRecord,
        event: ExpeditionEvent,
        outcome: EventOutcome,
        source: str = SOURCE_USER,
    ) -> None:
        """Move an event to its resolved state and apply the progress modifier."""
        previous = replace(event)
        event.resolve(outcome)
        if outcome.rewards.progress_modifier:
            record.progress_offset += outcome.rewards.progress_modifier
        logger.info(
            "Event %s resolved with %s (%s)",
            event.id,
            outcome.choice_id,
            "success" if outcome.success else "failure",
        )
        self._notifier.emit(
            DataChange(
                category=CATEGORY_EVENT,
                action=ACTION_UPDATE,
                entity_id=event.id,
                timestamp=outcome.resolved_at,
                data=event,
                previous_data=previous,
                source=source,
            )
        )

    # ------------------------------------------------------------------
    # Queries

    def pending(self, expedition_id: str) -> List[ExpeditionEvent]:
        """Unresolved events of a running expedition; stopped ones have none."""
        record = self._registry.find(expedition_id)
        if record is None:
            return []
        return [event for event in record.expedition.events if not event.resolved]

    def history(self, expedition_id: str) -> List[ExpeditionEvent]:
        expedition = self._registry.find_expedition(expedition_id)
        return list(expedition.events) if expedition is not None else []

    def statistics(self, expedition_id: Optional[str] = None) -> Dict[str, Any]:
        if expedition_id is None:
            events = [event for expedition in self._registry.expeditions() for event in expedition.events]
        else:
            events = self.history(expedition_id)
        by_type: Dict[str, int] = {}
        by_rarity: Dict[str, int] = {}
        for event in events:
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
            by_rarity[event.rarity.value] = by_rarity.get(event.rarity.value, 0) + 1
        resolved = [event for event in events if event.resolved]
        return {
            "total": len(events),
            "resolved": len(resolved),
            "successful": sum(1 for event in resolved if event.successful),
            "pending": len(events) - len(resolved),
            "by_type": by_type,
            "by_rarity": by_rarity,
        }


__all__ = [
    "EventContext",
    "EventResolver",
    "RELEVANT_SKILLS",
    "check_choice_requirement",
    "condition_met",
    "time_of_day",
]
