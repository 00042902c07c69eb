"""Completion rewards: money breakdown and loot rolls."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .catalogs import LocationCatalog, RewardCatalog
from .config import Settings
from .models import (
    DropEntry,
    DropTable,
    EventType,
    Expedition,
    ExpeditionEvent,
    ExpeditionLoot,
    ExpeditionMode,
    GeneratedItem,
    GeneratedPokemon,
    Rarity,
    RewardBonus,
    RewardCalculation,
    SpecialReward,
    Trainer,
)
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

IV_QUALITY: Dict[Rarity, float] = {
    Rarity.COMMON: 0.3,
    Rarity.UNCOMMON: 0.5,
    Rarity.RARE: 0.7,
    Rarity.LEGENDARY: 0.9,
}
RARITY_BONUS: Dict[Rarity, int] = {
    Rarity.COMMON: 0,
    Rarity.UNCOMMON: 1,
    Rarity.RARE: 2,
    Rarity.LEGENDARY: 3,
}
STATS = ("hp", "attack", "defense", "special_attack", "special_defense", "speed")

_CATCH_STORIES = (
    "{trainer} approached carefully and made the catch",
    "A chance meeting turned into trust",
    "Earned its respect after a hard battle",
    "The two understood each other and it simply followed along",
)
_FIND_STORIES = (
    "{trainer} found it while exploring",
    "Dug out of a hidden spot",
    "A friendly pokemon pointed the way to it",
    "Stumbled upon by sheer luck",
)


def _successful(events: Sequence[ExpeditionEvent]) -> List[ExpeditionEvent]:
    return [event for event in events if event.successful]


def _resolved(events: Sequence[ExpeditionEvent]) -> List[ExpeditionEvent]:
    return [event for event in events if event.resolved]


class RewardCalculator:
    """Computes the money reward and rolls loot for a finished expedition.

    Everything returned is immutable; crediting the player is the caller's job.
    """

    def __init__(
        self,
        catalog: RewardCatalog,
        locations: LocationCatalog,
        settings: Settings,
        rng: DeterministicRNG,
    ) -> None:
        self._catalog = catalog
        self._locations = locations
        self._settings = settings
        self._rng = rng

    def compute_money_reward(
        self,
        expedition: Expedition,
        trainer: Trainer,
        events: Sequence[ExpeditionEvent],
        success_rate: float,
        actual_duration: Optional[float] = None,
    ) -> RewardCalculation:
        """Base reward plus independent bonus deltas.

        ``actual_duration`` is in hours and defaults to the planned duration.
        Bonus multipliers are recorded for auditing only; the total is the
        floor of the base plus every delta.
        """
        difficulty = self._locations.get(expedition.location_id).difficulty
        hours = expedition.target_duration
        actual = hours if actual_duration is None else actual_duration
        base = math.floor(hours * self._settings.money_per_hour * (1 + difficulty * 0.5) * success_rate)

        bonuses: List[RewardBonus] = []
        if difficulty > 0.6:
            bonuses.append(RewardBonus("difficulty", math.floor(base * 0.3), 1.3, "High difficulty location"))
        if success_rate > 0.8:
            bonuses.append(RewardBonus("performance", math.floor(base * 0.2), 1.2, "Excellent performance"))
        ratio = actual / hours if hours > 0 else 1.0
        if ratio < 0.9:
            bonuses.append(RewardBonus("duration", math.floor(base * 0.15), 1.15, "Finished ahead of schedule"))
        elif ratio > 1.2:
            bonuses.append(RewardBonus("duration", -math.floor(base * 0.1), 0.9, "Ran over schedule"))
        if expedition.mode is ExpeditionMode.AGGRESSIVE:
            bonuses.append(RewardBonus("mode", math.floor(base * 0.25), 1.25, "Aggressive expedition"))
        average = trainer.average_skill
        if average > 6:
            factor = (average - 6) * 0.05
            bonuses.append(RewardBonus("skill", math.floor(base * factor), 1 + factor, "Skilled trainer"))
        successful = len(_successful(events))
        if successful:
            bonuses.append(
                RewardBonus(
                    "events",
                    self._settings.event_bonus * successful,
                    1 + 0.1 * successful,
                    f"{successful} events handled well",
                )
            )
        total = math.floor(base + sum(bonus.amount for bonus in bonuses))
        return RewardCalculation(base=base, bonuses=tuple(bonuses), total=total)

    # ------------------------------------------------------------------
    def drop_table_for(self, location_id: int, mode: ExpeditionMode) -> DropTable:
        table = self._catalog.drop_table(location_id)
        modifiers = self._catalog.mode_modifiers(mode)
        pokemon_mod = modifiers.get("pokemon", 1.0)
        item_mod = modifiers.get("items", 1.0)
        return DropTable(
            location_id=table.location_id,
            pokemon=tuple(replace(e, base_rate=e.base_rate * pokemon_mod) for e in table.pokemon),
            items=tuple(replace(e, base_rate=e.base_rate * item_mod) for e in table.items),
        )

    def requirements_met(
        self,
        entry: DropEntry,
        trainer: Trainer,
        events: Sequence[ExpeditionEvent],
        mode: Optional[ExpeditionMode] = None,
    ) -> bool:
        for requirement in entry.requirements:
            if requirement.type == "trainer_skill":
                skill, _, level = str(requirement.value).partition(":")
                if trainer.skill(skill) < int(level or 0):
                    return False
            elif requirement.type == "expedition_mode":
                allowed = requirement.value if isinstance(requirement.value, list) else [requirement.value]
                if mode is None or mode.value not in allowed:
                    return False
            elif requirement.type == "event_completion":
                if not any(event.type.value == requirement.value for event in _successful(events)):
                    return False
            else:
                logger.warning("Unsupported drop requirement %r on %s", requirement.type, entry.id)
                return False
        return True

    def generate_loot(
        self,
        drop_table: DropTable,
        trainer: Trainer,
        events: Sequence[ExpeditionEvent],
        success_rate: float,
        expedition: Optional[Expedition] = None,
    ) -> Tuple[Tuple[GeneratedPokemon, ...], Tuple[GeneratedItem, ...]]:
        mode = expedition.mode if expedition is not None else None
        resolved = _resolved(events)
        encounters = sum(1 for event in resolved if event.type is EventType.ENCOUNTER)
        discoveries = sum(1 for event in resolved if event.type is EventType.DISCOVERY)

        pokemon: List[GeneratedPokemon] = []
        for entry in drop_table.pokemon:
            if not self.requirements_met(entry, trainer, events, mode):
                continue
            rate = (
                entry.base_rate
                * success_rate
                * (1 + trainer.skill("capture") / 10)
                * (1 + 0.1 * encounters)
            )
            if self._rng.random() < rate:
                pokemon.append(self._create_pokemon(entry, trainer))
                if entry.rarity in (Rarity.RARE, Rarity.LEGENDARY):
                    break

        items: List[GeneratedItem] = []
        for entry in drop_table.items:
            if not self.requirements_met(entry, trainer, events, mode):
                continue
            rate = (
                entry.base_rate
                * success_rate
                * (1 + trainer.skill("exploration") / 10)
                * (1 + 0.15 * discoveries)
            )
            if self._rng.random() < rate:
                items.append(
                    GeneratedItem(
                        item_id=entry.id,
                        name=entry.name,
                        type=entry.item_type,
                        rarity=entry.rarity,
                        quantity=self._rng.randint(entry.min_quantity, entry.max_quantity),
                        value=entry.value,
                        provenance=self._rng.choice(_FIND_STORIES).format(trainer=trainer.name),
                        rarity_bonus=RARITY_BONUS[entry.rarity],
                    )
                )
        return tuple(pokemon), tuple(items)

    def _create_pokemon(self, entry: DropEntry, trainer: Trainer) -> GeneratedPokemon:
        level = self._rng.randint(entry.min_level, entry.max_level)
        quality = IV_QUALITY[entry.rarity]
        ivs = {
            stat: math.floor(self._rng.random() * (31 * quality) + 31 * (1 - quality))
            for stat in STATS
        }
        base = self._catalog.base_stats(int(entry.id))
        stats = {
            stat: math.floor((2 * base.get(stat, 50) + ivs[stat]) * level / 100) + 5
            for stat in STATS
        }
        stats["hp"] += level + 10
        moves = self._catalog.moves[: min(len(self._catalog.moves), level // 2 + 1)]
        return GeneratedPokemon(
            species_id=int(entry.id),
            name=entry.name,
            level=level,
            rarity=entry.rarity,
            ivs=ivs,
            stats=stats,
            nature=self._rng.choice(self._catalog.natures),
            moves=tuple(moves),
            experience=0,
            next_level_experience=level ** 3,
            provenance=self._rng.choice(_CATCH_STORIES).format(trainer=trainer.name),
            rarity_bonus=RARITY_BONUS[entry.rarity],
        )

    # ------------------------------------------------------------------
    def generate_rewards(
        self,
        expedition: Expedition,
        trainer: Trainer,
        success_rate: float,
        actual_duration: Optional[float] = None,
    ) -> ExpeditionLoot:
        events = expedition.events
        location = self._locations.get(expedition.location_id)
        hours = expedition.target_duration
        money = self.compute_money_reward(expedition, trainer, events, success_rate, actual_duration)
        table = self.drop_table_for(expedition.location_id, expedition.mode)
        pokemon, items = self.generate_loot(table, trainer, events, success_rate, expedition)

        resolved = len(_resolved(events))
        experience = (
            math.floor(hours * 10 * success_rate)
            + 25 * resolved
            + 50 * len(pokemon)
            + 20 * len(items)
        )
        trainer_experience = math.floor(
            math.floor(hours * 15 * success_rate) * (1 + location.difficulty) + 30 * resolved
        )

        special: List[SpecialReward] = []
        legendary = [p for p in pokemon if p.rarity_bonus > 2]
        if legendary:
            special.append(
                SpecialReward(
                    "legendary_discovery",
                    "Encountered legendary pokemon: " + ", ".join(p.name for p in legendary),
                    len(legendary),
                )
            )
        if len(events) > 5 and resolved == len(events):
            special.append(SpecialReward("perfect_expedition", "Every event was handled", len(events)))
        if expedition.location_id == 4 and len(pokemon) >= 2:
            special.append(SpecialReward("area_unlock", "A new area has been discovered", 1))

        total_value = (
            money.total
            + sum(item.value * item.quantity for item in items)
            + self._settings.pokemon_value * len(pokemon)
        )
        rarity_bonus = max([p.rarity_bonus for p in pokemon] + [i.rarity_bonus for i in items] + [0])
        summary = (
            f"{money.total} money, {len(pokemon)} pokemon, "
            f"{sum(item.quantity for item in items)} items from {location.name}"
        )
        logger.info("Rewards for %s: %s (value %s)", expedition.id, summary, total_value)
        return ExpeditionLoot(
            expedition_id=expedition.id,
            money=money,
            pokemon=pokemon,
            items=items,
            experience=experience,
            trainer_experience=trainer_experience,
            special_rewards=tuple(special),
            total_value=total_value,
            rarity_bonus=rarity_bonus,
            summary=summary,
        )


__all__ = ["IV_QUALITY", "RARITY_BONUS", "RewardCalculator", "STATS"]
