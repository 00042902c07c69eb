"""Tests for reward calculation and loot generation."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from expedition_sim.catalogs import LocationCatalog, RewardCatalog
from expedition_sim.models import (
    DropEntry,
    DropRequirement,
    DropTable,
    DropType,
    EventOutcome,
    EventType,
    Expedition,
    ExpeditionEvent,
    ExpeditionMode,
    Rarity,
    Stage,
)
from expedition_sim.rewards import RewardCalculator
from expedition_sim.rng import DeterministicRNG

START = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)


def make_calculator(settings, seed=7):
    return RewardCalculator(RewardCatalog(), LocationCatalog(), settings, DeterministicRNG(seed))


def make_expedition(location_id=1, hours=2.0, mode=ExpeditionMode.BALANCED, events=()):
    return Expedition(
        id="exp-1",
        trainer_id="trainer-1",
        location_id=location_id,
        mode=mode,
        target_duration=hours,
        start_time=START,
        estimated_end_time=START + timedelta(hours=hours),
        events=list(events),
    )


def make_event(index, event_type=EventType.ENCOUNTER, success=True, resolved=True):
    event = ExpeditionEvent(
        id=f"exp-1-evt-{index}",
        expedition_id="exp-1",
        template_id="wild_pokemon_common",
        type=event_type,
        rarity=Rarity.COMMON,
        message="Something happened",
        timestamp=START + timedelta(minutes=index),
        stage=Stage.MIDDLE,
    )
    if resolved:
        event.resolve(EventOutcome("observe", success, "done", event.timestamp))
    return event


def pokemon_entry(species_id, name, rarity, rate=1.0, levels=(5, 5), requirements=()):
    return DropEntry(
        id=str(species_id),
        kind=DropType.POKEMON,
        name=name,
        rarity=rarity,
        base_rate=rate,
        min_level=levels[0],
        max_level=levels[1],
        requirements=tuple(requirements),
    )


def test_money_reward_reference_scenario(settings, make_trainer):
    """Two hours in the forest at full success: base 220 plus a 44 performance bonus."""
    calculator = make_calculator(settings)

    reward = calculator.compute_money_reward(make_expedition(), make_trainer(), [], 1.0, 2.0)

    assert reward.base == 220
    assert [(b.name, b.amount) for b in reward.bonuses] == [("performance", 44)]
    assert reward.total == 264
    assert sum(reward.breakdown().values()) == reward.total


def test_money_reward_bonus_stack(settings, make_trainer):
    calculator = make_calculator(settings)
    expedition = make_expedition(
        location_id=4, hours=1.0, mode=ExpeditionMode.AGGRESSIVE, events=[make_event(1), make_event(2)]
    )

    reward = calculator.compute_money_reward(expedition, make_trainer(), expedition.events, 0.5, 1.5)
    bonuses = {b.name: b.amount for b in reward.bonuses}

    assert reward.base == 70
    assert bonuses == {"difficulty": 21, "duration": -7, "mode": 17, "events": 400}
    assert reward.total == 70 + 21 - 7 + 17 + 400
    assert sum(reward.breakdown().values()) == reward.total


def test_early_finish_and_skill_bonus(settings, make_trainer):
    calculator = make_calculator(settings)
    expert = make_trainer(skills={"capture": 8, "exploration": 8})

    reward = calculator.compute_money_reward(make_expedition(), expert, [], 0.5, 1.0)
    bonuses = {b.name: b.amount for b in reward.bonuses}

    assert bonuses == {"duration": 16, "skill": 11}


def test_mode_modifiers_scale_drop_rates(settings):
    calculator = make_calculator(settings)

    aggressive = calculator.drop_table_for(1, ExpeditionMode.AGGRESSIVE)
    safe = calculator.drop_table_for(1, ExpeditionMode.SAFE)

    assert aggressive.pokemon[0].base_rate == pytest.approx(0.15 * 1.3)
    assert aggressive.items[0].base_rate == pytest.approx(0.3)
    assert safe.items[0].base_rate == pytest.approx(0.3 * 1.2)


def test_rare_drop_ends_pokemon_rolls(settings, make_trainer):
    calculator = make_calculator(settings)
    table = DropTable(
        location_id=1,
        pokemon=(
            pokemon_entry(133, "Eevee", Rarity.RARE),
            pokemon_entry(25, "Pikachu", Rarity.UNCOMMON),
        ),
    )

    pokemon, items = calculator.generate_loot(table, make_trainer(), [], 1.0)

    assert [p.name for p in pokemon] == ["Eevee"]
    assert items == ()


def test_drop_requirements_filter_entries(settings, make_trainer):
    calculator = make_calculator(settings)
    gated = pokemon_entry(
        144, "Articuno", Rarity.LEGENDARY, requirements=[DropRequirement("trainer_skill", "capture:8")]
    )
    table = DropTable(location_id=4, pokemon=(gated,))

    assert calculator.generate_loot(table, make_trainer(), [], 1.0) == ((), ())
    pokemon, _ = calculator.generate_loot(table, make_trainer(skills={"capture": 9}), [], 1.0)
    assert pokemon[0].rarity_bonus == 3


def test_event_completion_requirement(settings, make_trainer):
    calculator = make_calculator(settings)
    entry = pokemon_entry(95, "Onix", Rarity.RARE, requirements=[DropRequirement("event_completion", "danger")])

    assert not calculator.requirements_met(entry, make_trainer(), [make_event(1)])
    assert calculator.requirements_met(entry, make_trainer(), [make_event(1, EventType.DANGER)])
    assert not calculator.requirements_met(
        entry, make_trainer(), [make_event(1, EventType.DANGER, success=False)]
    )


def test_generated_pokemon_ivs_follow_rarity_quality(settings, make_trainer):
    calculator = make_calculator(settings)
    common = pokemon_entry(41, "Zubat", Rarity.COMMON, levels=(6, 12))
    legendary = pokemon_entry(150, "Mewtwo", Rarity.LEGENDARY, levels=(70, 70))

    for _ in range(20):
        zubat = calculator._create_pokemon(common, make_trainer())
        assert all(21 <= iv <= 31 for iv in zubat.ivs.values())
        assert 6 <= zubat.level <= 12
        mewtwo = calculator._create_pokemon(legendary, make_trainer())
        assert all(3 <= iv <= 31 for iv in mewtwo.ivs.values())
        assert mewtwo.next_level_experience == 70 ** 3
        assert mewtwo.stats["hp"] > mewtwo.stats["speed"]


def test_loot_is_reproducible_for_same_seed(settings, make_trainer):
    expedition = make_expedition(location_id=1, events=[make_event(1), make_event(2, EventType.DISCOVERY)])

    first = make_calculator(settings, seed=99).generate_rewards(expedition, make_trainer(), 1.0, 2.0)
    second = make_calculator(settings, seed=99).generate_rewards(expedition, make_trainer(), 1.0, 2.0)

    assert first == second


def test_generate_rewards_totals(settings, make_trainer):
    expedition = make_expedition(location_id=2, hours=3.0, events=[make_event(i) for i in range(1, 7)])

    loot = make_calculator(settings, seed=5).generate_rewards(expedition, make_trainer(), 1.0, 3.0)

    item_value = sum(item.value * item.quantity for item in loot.items)
    assert loot.total_value == loot.money.total + item_value + 1000 * len(loot.pokemon)
    assert loot.experience == 30 + 25 * 6 + 50 * len(loot.pokemon) + 20 * len(loot.items)
    assert loot.trainer_experience == math.floor(45 * (1 + 0.4) + 30 * 6)
    assert "perfect_expedition" in {reward.type for reward in loot.special_rewards}
    assert loot.rarity_bonus == max(
        [p.rarity_bonus for p in loot.pokemon] + [i.rarity_bonus for i in loot.items] + [0]
    )
    assert "Mt. Moon" in loot.summary


def test_unresolved_events_block_perfect_expedition(settings, make_trainer):
    events = [make_event(i) for i in range(1, 7)] + [make_event(7, resolved=False)]
    expedition = make_expedition(events=events)

    loot = make_calculator(settings).generate_rewards(expedition, make_trainer(), 1.0)

    assert "perfect_expedition" not in {reward.type for reward in loot.special_rewards}
