"""YAML-backed catalogs: event templates, interventions, locations and loot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .config import DATA_DIR
from .errors import UnknownEntityError
from .models import (
    ChoiceEffect,
    ChoiceRequirement,
    DropEntry,
    DropRequirement,
    DropTable,
    DropType,
    EffectKind,
    EffectType,
    EventChoice,
    EventType,
    ExpeditionMode,
    InterventionAction,
    InterventionEffect,
    InterventionRequirement,
    InterventionType,
    Location,
    Rarity,
    RiskTier,
    Stage,
)

logger = logging.getLogger(__name__)


def _load_yaml_resource(data_path: Path, filename: str) -> Dict[str, Any]:
    path = data_path / filename
    if not path.exists():
        logger.warning("Catalog file %s not found; starting empty", path)
        return {}
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


@dataclass(frozen=True)
class EventCondition:
    type: str
    operator: str
    value: Any
    weight: float = 1.0
    skill: Optional[str] = None


@dataclass(frozen=True)
class EventTemplate:
    id: str
    type: EventType
    rarity: Rarity
    message: str
    choices: Tuple[EventChoice, ...]
    variants: Tuple[str, ...] = ()
    conditions: Tuple[EventCondition, ...] = ()
    locations: Tuple[int, ...] = ()
    stages: Tuple[Stage, ...] = ()
    cooldown_minutes: int = 0
    trigger_only: bool = False

    @property
    def messages(self) -> Tuple[str, ...]:
        return (self.message,) + self.variants


def _parse_choice_requirement(raw: Dict[str, Any]) -> ChoiceRequirement:
    return ChoiceRequirement(
        type=str(raw["type"]),
        value=raw.get("value"),
        skill=raw.get("skill"),
        item=raw.get("item"),
        optional=bool(raw.get("optional", False)),
    )


def _parse_choice(raw: Dict[str, Any]) -> EventChoice:
    effect = raw.get("effect") or {"type": "experience"}
    return EventChoice(
        id=str(raw["id"]),
        text=str(raw.get("text", raw["id"])),
        success_rate=float(raw.get("success_rate", 0.5)),
        effect=ChoiceEffect(
            type=EffectType(effect["type"]), params=dict(effect.get("params") or {})
        ),
        requirements=tuple(
            _parse_choice_requirement(req) for req in raw.get("requirements") or []
        ),
        risk=RiskTier(raw.get("risk", "none")),
        cooldown_minutes=int(raw.get("cooldown_minutes", 0)),
    )


def _parse_template(raw: Dict[str, Any]) -> EventTemplate:
    return EventTemplate(
        id=str(raw["id"]),
        type=EventType(raw["type"]),
        rarity=Rarity(raw.get("rarity", "common")),
        message=str(raw["message"]),
        choices=tuple(_parse_choice(choice) for choice in raw.get("choices") or []),
        variants=tuple(str(v) for v in raw.get("variants") or []),
        conditions=tuple(
            EventCondition(
                type=str(cond["type"]),
                operator=str(cond.get("operator", "eq")),
                value=cond.get("value"),
                weight=float(cond.get("weight", 1.0)),
                skill=cond.get("skill"),
            )
            for cond in raw.get("conditions") or []
        ),
        locations=tuple(int(loc) for loc in raw.get("locations") or []),
        stages=tuple(Stage(stage) for stage in raw.get("stages") or []),
        cooldown_minutes=int(raw.get("cooldown_minutes", 0)),
        trigger_only=bool(raw.get("trigger_only", False)),
    )


class EventCatalog:
    """Event templates keyed by id, plus failure messages by risk tier."""

    def __init__(self, data_path: Path | None = None) -> None:
        data = _load_yaml_resource(data_path or DATA_DIR, "event_templates.yaml")
        self._templates: Dict[str, EventTemplate] = {}
        for raw in data.get("templates") or []:
            self.add(_parse_template(raw))
        self._failure_messages: Dict[RiskTier, Tuple[str, ...]] = {
            RiskTier(tier): tuple(messages)
            for tier, messages in (data.get("failure_messages") or {}).items()
        }

    def add(self, template: EventTemplate) -> None:
        if not template.choices:
            raise ValueError(f"Event template {template.id} has no choices")
        self._templates[template.id] = template

    def get(self, template_id: str) -> EventTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise UnknownEntityError("event template", template_id) from None

    def all(self) -> List[EventTemplate]:
        return list(self._templates.values())

    def random_pool(self) -> List[EventTemplate]:
        return [t for t in self._templates.values() if not t.trigger_only]

    def failure_messages(self, tier: RiskTier) -> Tuple[str, ...]:
        return self._failure_messages.get(tier) or ("The attempt failed.",)


def _parse_action(raw: Dict[str, Any]) -> InterventionAction:
    return InterventionAction(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        type=InterventionType(raw["type"]),
        description=str(raw.get("description", "")),
        cost=int(raw.get("cost", 0)),
        cooldown_minutes=int(raw.get("cooldown_minutes", 0)),
        requirements=tuple(
            InterventionRequirement(type=str(req["type"]), value=req.get("value"))
            for req in raw.get("requirements") or []
        ),
        effects=tuple(
            InterventionEffect(
                kind=EffectKind(eff["kind"]),
                value=eff.get("value"),
                duration_minutes=int(eff.get("duration_minutes", 0)),
                description=str(eff.get("description", "")),
            )
            for eff in raw.get("effects") or []
        ),
    )


class InterventionCatalog:
    """Immutable intervention actions keyed by id."""

    def __init__(self, data_path: Path | None = None) -> None:
        data = _load_yaml_resource(data_path or DATA_DIR, "interventions.yaml")
        self._actions: Dict[str, InterventionAction] = {}
        for raw in data.get("interventions") or []:
            self.add(_parse_action(raw))

    def add(self, action: InterventionAction) -> None:
        self._actions[action.id] = action

    def get(self, action_id: str) -> InterventionAction:
        try:
            return self._actions[action_id]
        except KeyError:
            raise UnknownEntityError("intervention action", action_id) from None

    def all(self) -> List[InterventionAction]:
        return list(self._actions.values())


class LocationCatalog:
    def __init__(self, data_path: Path | None = None) -> None:
        data = _load_yaml_resource(data_path or DATA_DIR, "locations.yaml")
        self._locations: Dict[int, Location] = {}
        for raw in data.get("locations") or []:
            self.add(
                Location(
                    id=int(raw["id"]),
                    name=str(raw["name"]),
                    difficulty=float(raw["difficulty"]),
                    risk=float(raw["risk"]),
                )
            )

    def add(self, location: Location) -> None:
        self._locations[location.id] = location

    def get(self, location_id: int) -> Location:
        try:
            return self._locations[location_id]
        except KeyError:
            raise UnknownEntityError("location", location_id) from None

    def all(self) -> List[Location]:
        return list(self._locations.values())


def _parse_drop_requirements(raw: Iterable[Dict[str, Any]] | None) -> Tuple[DropRequirement, ...]:
    return tuple(DropRequirement(type=str(r["type"]), value=r.get("value")) for r in raw or [])


def _parse_drop_table(raw: Dict[str, Any]) -> DropTable:
    pokemon = []
    for entry in raw.get("pokemon") or []:
        low, high = entry.get("levels", [1, 1])
        pokemon.append(
            DropEntry(
                id=str(entry["species_id"]),
                kind=DropType.POKEMON,
                name=str(entry["name"]),
                rarity=Rarity(entry.get("rarity", "common")),
                base_rate=float(entry["base_rate"]),
                min_level=int(low),
                max_level=int(high),
                requirements=_parse_drop_requirements(entry.get("requirements")),
            )
        )
    items = []
    for entry in raw.get("items") or []:
        low, high = entry.get("quantity", [1, 1])
        items.append(
            DropEntry(
                id=str(entry["id"]),
                kind=DropType.ITEM,
                name=str(entry["name"]),
                rarity=Rarity(entry.get("rarity", "common")),
                base_rate=float(entry["base_rate"]),
                min_quantity=int(low),
                max_quantity=int(high),
                item_type=str(entry.get("type", "misc")),
                value=int(entry.get("value", 0)),
                requirements=_parse_drop_requirements(entry.get("requirements")),
            )
        )
    return DropTable(location_id=int(raw["location_id"]), pokemon=tuple(pokemon), items=tuple(items))


class RewardCatalog:
    """Drop tables, species data and per-mode loot modifiers."""

    def __init__(self, data_path: Path | None = None) -> None:
        path = data_path or DATA_DIR
        drops = _load_yaml_resource(path, "drop_tables.yaml")
        species = _load_yaml_resource(path, "species.yaml")
        self._tables: Dict[int, DropTable] = {}
        for raw in drops.get("drop_tables") or []:
            self.add_drop_table(_parse_drop_table(raw))
        self._mode_modifiers: Dict[ExpeditionMode, Dict[str, float]] = {
            ExpeditionMode(mode): {k: float(v) for k, v in (mods or {}).items()}
            for mode, mods in (drops.get("mode_modifiers") or {}).items()
        }
        self._species: Dict[int, Dict[str, Any]] = {
            int(entry["id"]): dict(entry) for entry in species.get("species") or []
        }
        self.default_base_stats: Dict[str, int] = dict(
            species.get("default_base_stats")
            or {
                "hp": 45,
                "attack": 49,
                "defense": 49,
                "special_attack": 65,
                "special_defense": 65,
                "speed": 45,
            }
        )
        self.natures: Tuple[str, ...] = tuple(species.get("natures") or ("hardy",))
        self.moves: Tuple[str, ...] = tuple(species.get("moves") or ("tackle",))

    def add_drop_table(self, table: DropTable) -> None:
        self._tables[table.location_id] = table

    def drop_table(self, location_id: int) -> DropTable:
        try:
            return self._tables[location_id]
        except KeyError:
            raise UnknownEntityError("drop table", location_id) from None

    def mode_modifiers(self, mode: ExpeditionMode) -> Dict[str, float]:
        return dict(self._mode_modifiers.get(mode, {}))

    def base_stats(self, species_id: int) -> Dict[str, int]:
        entry = self._species.get(species_id)
        if entry is None:
            return dict(self.default_base_stats)
        return dict(entry.get("base_stats") or self.default_base_stats)


__all__ = [
    "EventCatalog",
    "EventCondition",
    "EventTemplate",
    "InterventionCatalog",
    "LocationCatalog",
    "RewardCatalog",
]
