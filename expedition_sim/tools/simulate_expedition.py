"""Fast-forward a seeded expedition and print its report."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..clock import ManualClock
from ..events import check_choice_requirement
from ..models import ExpeditionEvent, ExpeditionMode, Trainer
from ..reports import report_to_dict
from ..service import ExpeditionService
from ..telemetry import TelemetryCollector

POLICIES = ("best", "first", "ignore")


@dataclass
class SimulationConfig:
    location_id: int = 1
    mode: str = "balanced"
    hours: float = 2.0
    seed: int = 42
    policy: str = "best"
    step_seconds: float = 60.0
    trainer: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Dict[str, Any]) -> "SimulationConfig":
        config = cls()
        for key in ("location_id", "mode", "hours", "seed", "policy", "step_seconds"):
            if key in payload:
                setattr(config, key, payload[key])
        config.trainer = dict(payload.get("trainer") or {})
        return config

    def build_trainer(self) -> Trainer:
        data = self.trainer
        return Trainer(
            id=str(data.get("id", "trainer-1")),
            name=str(data.get("name", "Sim Trainer")),
            level=int(data.get("level", 5)),
            skills={k: int(v) for k, v in (data.get("skills") or {
                "capture": 5, "exploration": 5, "battle": 4, "research": 4, "healing": 3,
            }).items()},
            trust_level=int(data.get("trust_level", 60)),
            total_expeditions=int(data.get("total_expeditions", 3)),
            courage=int(data.get("courage", 5)),
            caution=int(data.get("caution", 5)),
            items=list(data.get("items") or []),
        )


def _pick_choice(event: ExpeditionEvent, trainer: Trainer, policy: str) -> Optional[str]:
    if policy == "ignore":
        return None
    usable = [
        choice
        for choice in event.choices
        if all(check_choice_requirement(req, trainer) is None for req in choice.mandatory_requirements)
    ]
    if not usable:
        return None
    if policy == "first":
        return usable[0].id
    return max(usable, key=lambda choice: choice.success_rate).id


def run_simulation(
    config: SimulationConfig,
    telemetry_db: Path,
    output: Optional[Path] = None,
) -> Dict[str, Any]:
    if config.policy not in POLICIES:
        raise ValueError(f"Unknown policy: {config.policy}")
    clock = ManualClock()
    service = ExpeditionService(
        clock=clock, seed=config.seed, telemetry=TelemetryCollector(telemetry_db)
    )
    trainer = config.build_trainer()
    expedition = service.launch_expedition(
        trainer, config.location_id, ExpeditionMode(config.mode), config.hours
    )

    max_steps = int(config.hours * 3600 / config.step_seconds) * 3 + 10
    for _ in range(max_steps):
        if service.progress(expedition.id) is None:
            break
        clock.advance(config.step_seconds)
        service.tick()
        for event in service.pending_events(expedition.id):
            choice_id = _pick_choice(event, trainer, config.policy)
            if choice_id is not None and service.progress(expedition.id) is not None:
                service.resolve_choice(expedition.id, event.id, choice_id)
    service.shutdown()

    report = service.report(expedition.id)
    loot = service.loot(expedition.id)
    result = {
        "expedition_id": expedition.id,
        "seed": config.seed,
        "policy": config.policy,
        "loot": {
            "summary": loot.summary if loot else None,
            "money": loot.money.breakdown() if loot else {},
            "total_value": loot.total_value if loot else 0,
        },
        "report": report_to_dict(report) if report else None,
    }
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(result, indent=2), encoding="utf-8")
    return result


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a seeded, fast-forwarded expedition simulation."
    )
    parser.add_argument("--config", type=Path, help="JSON file describing the scenario.")
    parser.add_argument("--location", type=int, help="Location id (overrides config).")
    parser.add_argument("--mode", choices=[m.value for m in ExpeditionMode])
    parser.add_argument("--hours", type=float, help="Planned duration in hours.")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--policy", choices=POLICIES, help="How pending events are answered.")
    parser.add_argument(
        "--telemetry-db",
        type=Path,
        default=Path("simulation_telemetry.db"),
        help="SQLite file for simulation telemetry.",
    )
    parser.add_argument("--output", type=Path, help="Write the result JSON here.")
    return parser.parse_args()


def main() -> None:  # pragma: no cover - CLI entry point
    args = _parse_args()
    payload = json.loads(args.config.read_text()) if args.config else {}
    config = SimulationConfig.from_mapping(payload)
    if args.location is not None:
        config.location_id = args.location
    if args.mode:
        config.mode = args.mode
    if args.hours:
        config.hours = args.hours
    if args.seed is not None:
        config.seed = args.seed
    if args.policy:
        config.policy = args.policy
    result = run_simulation(config, telemetry_db=args.telemetry_db, output=args.output)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
