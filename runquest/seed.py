"""Reference-data seeder: the five training phases and their workout templates.

Idempotent: phases are matched by name and a phase that already has
templates is left alone, so running it on every boot is safe.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Optional

from sqlalchemy import select

from runquest.catalog import ProgressionCatalog, get_catalog
from runquest.db import create_schema, session_scope
from runquest.models import TrainingPhase, WorkoutTemplate

logger = logging.getLogger(__name__)

PHASES: list[dict[str, Any]] = [
    {
        "name": "foundation",
        "display_name": "Foundation",
        "phase_order": 1,
        "exit_criteria": {"can_run_continuous_minutes": 30, "completed_weeks": 4},
    },
    {
        "name": "endurance_building",
        "display_name": "Endurance Building",
        "phase_order": 2,
        "exit_criteria": {"can_complete_10k": True, "weekly_volume_km": 20},
    },
    {
        "name": "speed_strength",
        "display_name": "Speed & Strength",
        "phase_order": 3,
        "exit_criteria": {"improved_5k_time": True, "can_complete_half_marathon": True},
    },
    {
        "name": "advanced_training",
        "display_name": "Advanced Training",
        "phase_order": 4,
        "exit_criteria": {"can_complete_marathon": True, "personal_records": True},
    },
    {
        "name": "elite_performance",
        "display_name": "Elite Performance",
        "phase_order": 5,
        "exit_criteria": {"continuous_improvement": True},
    },
]

# Session length in minutes for the (levels 1-5, levels 6-10) template tiers.
TEMPLATE_DURATIONS: dict[str, tuple[int, int]] = {
    "walk_run_intervals": (25, 35),
    "easy_run": (30, 45),
    "recovery_run": (25, 30),
    "tempo_run": (35, 50),
    "interval_training": (40, 50),
    "long_run": (60, 90),
    "hill_repeats": (40, 50),
    "vo2max_intervals": (45, 55),
    "marathon_pace": (60, 80),
    "race_specific": (50, 60),
    "ultra_long_runs": (120, 150),
    "specialized_intervals": (50, 60),
}
DEFAULT_TEMPLATE_DURATIONS = (30, 45)
LEVEL_TIERS = ((1, 5), (6, 10))


def _template_rows(phase_id: int, phase_name: str, catalog: ProgressionCatalog) -> list[WorkoutTemplate]:
    table = catalog.workout_distributions.get(phase_name) or {}
    # Types that recur across the frequency tables are picked first.
    weights = Counter(workout_type for types in table.values() for workout_type in types)
    rows = []
    for workout_type, count in weights.most_common():
        durations = TEMPLATE_DURATIONS.get(workout_type, DEFAULT_TEMPLATE_DURATIONS)
        label = workout_type.replace("_", " ").title()
        for (level_min, level_max), duration in zip(LEVEL_TIERS, durations):
            rows.append(
                WorkoutTemplate(
                    phase_id=phase_id,
                    name=f"{label} L{level_min}-{level_max}",
                    workout_type=workout_type,
                    level_min=level_min,
                    level_max=level_max,
                    estimated_duration_minutes=duration,
                    completion_bonus_xp=int(
                        catalog.completion_bonuses.get(workout_type, catalog.default_completion_bonus)
                    ),
                    usage_frequency_weight=float(count),
                )
            )
    return rows


def seed_reference_data(factory=None, catalog: Optional[ProgressionCatalog] = None) -> dict[str, int]:
    """Insert missing phases and templates; returns how many rows were added."""
    catalog = catalog or get_catalog()
    added = {"phases": 0, "templates": 0}
    with session_scope(factory) as s:
        for phase_row in PHASES:
            phase = s.execute(select(TrainingPhase).where(TrainingPhase.name == phase_row["name"])).scalar_one_or_none()
            if phase is None:
                phase = TrainingPhase(max_level=10, is_active=True, **phase_row)
                s.add(phase)
                s.flush()
                added["phases"] += 1

            has_templates = s.execute(
                select(WorkoutTemplate.id).where(WorkoutTemplate.phase_id == phase.id)
            ).first() is not None
            if not has_templates:
                rows = _template_rows(phase.id, phase.name, catalog)
                s.add_all(rows)
                added["templates"] += len(rows)

    if added["phases"] or added["templates"]:
        logger.info("Seeded reference data", extra={"ctx_phases": added["phases"], "ctx_templates": added["templates"]})
    return added


def main() -> int:
    from runquest.logging_config import setup_logging

    setup_logging()
    create_schema()
    added = seed_reference_data()
    print(f"phases_added={added['phases']} templates_added={added['templates']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
