"""Core data models for the expedition simulation."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import EventAlreadyResolvedError, UnknownEntityError


class ExpeditionMode(str, Enum):
    SAFE = "safe"
    BALANCED = "balanced"
    EXPLORATION = "exploration"
    AGGRESSIVE = "aggressive"


class Stage(str, Enum):
    PREPARATION = "preparation"
    EARLY = "early"
    MIDDLE = "middle"
    LATE = "late"
    COMPLETION = "completion"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    LEGENDARY = "legendary"


class EventType(str, Enum):
    ENCOUNTER = "encounter"
    DISCOVERY = "discovery"
    DANGER = "danger"
    WEATHER = "weather"
    SOCIAL = "social"


class RiskTier(str, Enum):
    """Risk a player accepts by picking a choice."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


class EffectType(str, Enum):
    POKEMON_CAPTURE = "pokemon_capture"
    ITEM_GAIN = "item_gain"
    EXPERIENCE = "experience"
    MONEY = "money"
    PROGRESS_MODIFIER = "progress_modifier"
    STATUS_CHANGE = "status_change"


class InterventionType(str, Enum):
    ITEM_USE = "item_use"
    STRATEGY_CHANGE = "strategy_change"
    EMERGENCY_RECALL = "emergency_recall"
    GUIDANCE = "guidance"
    RESOURCE_SUPPORT = "resource_support"


class EffectKind(str, Enum):
    PROGRESS_BOOST = "progress_boost"
    RISK_REDUCTION = "risk_reduction"
    SUCCESS_RATE_BOOST = "success_rate_boost"
    EVENT_TRIGGER = "event_trigger"


class InterventionOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class StopReason(str, Enum):
    COMPLETE = "complete"
    RECALLED = "recalled"
    CANCELLED = "cancelled"
    SHUTDOWN = "shutdown"


class ReportOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"


class DropType(str, Enum):
    POKEMON = "pokemon"
    ITEM = "item"


# ---------------------------------------------------------------------------
# Input snapshots


@dataclass
class Trainer:
    id: str
    name: str
    level: int = 1
    skills: Dict[str, int] = field(default_factory=dict)
    trust_level: int = 50
    total_expeditions: int = 0
    courage: int = 5
    caution: int = 5
    items: List[str] = field(default_factory=list)

    def skill(self, name: str) -> int:
        return int(self.skills.get(name, 0))

    @property
    def average_skill(self) -> float:
        if not self.skills:
            return 0.0
        return sum(self.skills.values()) / len(self.skills)

    @property
    def risk_tolerance(self) -> float:
        return (self.courage - self.caution + 10) / 2


@dataclass(frozen=True)
class Location:
    id: int
    name: str
    difficulty: float
    risk: float


@dataclass
class InventoryItem:
    id: str
    name: str
    type: str = "misc"
    quantity: int = 1
    value: int = 0


@dataclass
class PlayerState:
    level: int = 1
    money: int = 0
    inventory: List[InventoryItem] = field(default_factory=list)

    def has_item(self, item: str) -> bool:
        """True when an item with this id or type is in stock."""
        return any(
            entry.quantity > 0 and (entry.id == item or entry.type == item)
            for entry in self.inventory
        )


# ---------------------------------------------------------------------------
# Events


@dataclass(frozen=True)
class UnmetRequirement:
    type: str
    required: Any
    actual: Any
    message: str


@dataclass(frozen=True)
class ChoiceRequirement:
    type: str
    value: Any
    skill: Optional[str] = None
    item: Optional[str] = None
    optional: bool = False


@dataclass(frozen=True)
class ChoiceEffect:
    type: EffectType
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventChoice:
    id: str
    text: str
    success_rate: float
    effect: ChoiceEffect
    requirements: Tuple[ChoiceRequirement, ...] = ()
    risk: RiskTier = RiskTier.NONE
    cooldown_minutes: int = 0

    @property
    def mandatory_requirements(self) -> Tuple[ChoiceRequirement, ...]:
        return tuple(req for req in self.requirements if not req.optional)

    @property
    def optional_requirements(self) -> Tuple[ChoiceRequirement, ...]:
        return tuple(req for req in self.requirements if req.optional)


@dataclass(frozen=True)
class EventRewards:
    experience: int = 0
    money: int = 0
    progress_modifier: float = 0.0
    items: Tuple[str, ...] = ()
    pokemon_captured: bool = False
    status: Optional[str] = None


@dataclass(frozen=True)
class EventOutcome:
    choice_id: str
    success: bool
    message: str
    resolved_at: datetime
    rewards: EventRewards = EventRewards()
    emergency_action_id: Optional[str] = None


@dataclass
class ExpeditionEvent:
    """An event is pending until its single outcome slot is filled."""

    id: str
    expedition_id: str
    template_id: str
    type: EventType
    rarity: Rarity
    message: str
    timestamp: datetime
    stage: Stage
    choices: Tuple[EventChoice, ...] = ()
    outcome: Optional[EventOutcome] = None

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    @property
    def successful(self) -> bool:
        return self.outcome is not None and self.outcome.success

    def choice(self, choice_id: str) -> EventChoice:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        raise UnknownEntityError("choice", choice_id)

    def resolve(self, outcome: EventOutcome) -> None:
        if self.outcome is not None:
            raise EventAlreadyResolvedError(self.id)
        self.outcome = outcome


@dataclass(frozen=True)
class EventResolution:
    event_id: str
    choice_id: str
    accepted: bool
    success: bool = False
    message: str = ""
    success_rate: float = 0.0
    rewards: EventRewards = EventRewards()
    unmet_requirements: Tuple[UnmetRequirement, ...] = ()

    @property
    def rejected(self) -> bool:
        return not self.accepted


# ---------------------------------------------------------------------------
# Interventions


@dataclass(frozen=True)
class InterventionRequirement:
    type: str
    value: Any


@dataclass(frozen=True)
class InterventionEffect:
    kind: EffectKind
    value: Any
    duration_minutes: int = 0
    description: str = ""


@dataclass(frozen=True)
class InterventionAction:
    id: str
    name: str
    type: InterventionType
    description: str
    cost: int
    cooldown_minutes: int
    requirements: Tuple[InterventionRequirement, ...] = ()
    effects: Tuple[InterventionEffect, ...] = ()


@dataclass(frozen=True)
class AppliedEffect:
    kind: EffectKind
    value: Any
    start_time: datetime
    duration_minutes: int
    action_id: str

    @property
    def permanent(self) -> bool:
        return self.duration_minutes == 0

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.permanent:
            return None
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def is_live(self, now: datetime) -> bool:
        return self.permanent or now < self.expires_at


@dataclass
class ActiveIntervention:
    id: str
    expedition_id: str
    action_id: str
    applied_at: datetime
    effects: List[AppliedEffect] = field(default_factory=list)


@dataclass(frozen=True)
class InterventionRecord:
    id: str
    expedition_id: str
    action_id: str
    timestamp: datetime
    result: InterventionOutcome
    effect: str
    cost: int = 0
    event_id: Optional[str] = None


@dataclass(frozen=True)
class InterventionResult:
    action_id: str
    success: bool
    message: str
    cost: int = 0
    effects: Tuple[AppliedEffect, ...] = ()
    unmet_requirements: Tuple[UnmetRequirement, ...] = ()
    consequences: Tuple[str, ...] = ()
    record: Optional[InterventionRecord] = None


# ---------------------------------------------------------------------------
# Expeditions


@dataclass
class Expedition:
    id: str
    trainer_id: str
    location_id: int
    mode: ExpeditionMode
    target_duration: float  # hours
    start_time: datetime
    estimated_end_time: datetime
    actual_end_time: Optional[datetime] = None
    events: List[ExpeditionEvent] = field(default_factory=list)
    interventions: List[InterventionRecord] = field(default_factory=list)
    outcome: Optional[ReportOutcome] = None
    stop_reason: Optional[StopReason] = None

    @property
    def planned_seconds(self) -> float:
        return self.target_duration * 3600.0

    @property
    def active(self) -> bool:
        return self.stop_reason is None

    def pending_events(self) -> List[ExpeditionEvent]:
        return [event for event in self.events if not event.resolved]


@dataclass
class ExpeditionProgress:
    expedition_id: str
    stage: Stage
    stage_progress: float
    overall_progress: float
    risk_level: RiskLevel
    risk_score: float
    estimated_end_time: datetime
    next_event_at: Optional[datetime]
    updated_at: datetime


@dataclass(frozen=True)
class StageTransition:
    stage: Stage
    timestamp: datetime
    progress: float


# ---------------------------------------------------------------------------
# Rewards


@dataclass(frozen=True)
class RewardBonus:
    name: str
    amount: int
    multiplier: float
    description: str


@dataclass(frozen=True)
class RewardCalculation:
    base: int
    bonuses: Tuple[RewardBonus, ...]
    total: int

    def breakdown(self) -> Dict[str, int]:
        parts = {"base": self.base}
        for bonus in self.bonuses:
            parts[bonus.name] = bonus.amount
        return parts


@dataclass(frozen=True)
class DropRequirement:
    type: str
    value: Any


@dataclass(frozen=True)
class DropEntry:
    id: str
    kind: DropType
    name: str
    rarity: Rarity
    base_rate: float
    min_level: int = 1
    max_level: int = 1
    min_quantity: int = 1
    max_quantity: int = 1
    item_type: str = "misc"
    value: int = 0
    requirements: Tuple[DropRequirement, ...] = ()


@dataclass(frozen=True)
class DropTable:
    location_id: int
    pokemon: Tuple[DropEntry, ...] = ()
    items: Tuple[DropEntry, ...] = ()


@dataclass(frozen=True)
class GeneratedPokemon:
    species_id: int
    name: str
    level: int
    rarity: Rarity
    ivs: Dict[str, int]
    stats: Dict[str, int]
    nature: str
    moves: Tuple[str, ...]
    experience: int
    next_level_experience: int
    provenance: str
    rarity_bonus: int


@dataclass(frozen=True)
class GeneratedItem:
    item_id: str
    name: str
    type: str
    rarity: Rarity
    quantity: int
    value: int
    provenance: str
    rarity_bonus: int


@dataclass(frozen=True)
class SpecialReward:
    type: str
    description: str
    value: int = 0


@dataclass(frozen=True)
class ExpeditionLoot:
    expedition_id: str
    money: RewardCalculation
    pokemon: Tuple[GeneratedPokemon, ...]
    items: Tuple[GeneratedItem, ...]
    experience: int
    trainer_experience: int
    special_rewards: Tuple[SpecialReward, ...]
    total_value: int
    rarity_bonus: int
    summary: str


__all__ = [
    "ActiveIntervention",
    "AppliedEffect",
    "ChoiceEffect",
    "ChoiceRequirement",
    "DropEntry",
    "DropRequirement",
    "DropTable",
    "DropType",
    "EffectKind",
    "EffectType",
    "EventChoice",
    "EventOutcome",
    "EventResolution",
    "EventRewards",
    "EventType",
    "Expedition",
    "ExpeditionEvent",
    "ExpeditionLoot",
    "ExpeditionMode",
    "ExpeditionProgress",
    "GeneratedItem",
    "GeneratedPokemon",
    "InterventionAction",
    "InterventionEffect",
    "InterventionOutcome",
    "InterventionRecord",
    "InterventionRequirement",
    "InterventionResult",
    "InterventionType",
    "InventoryItem",
    "Location",
    "PlayerState",
    "Rarity",
    "ReportOutcome",
    "RewardBonus",
    "RewardCalculation",
    "RiskLevel",
    "RiskTier",
    "SpecialReward",
    "Stage",
    "StageTransition",
    "StopReason",
    "Trainer",
    "UnmetRequirement",
]
