"""XP and leveling calculator.

Workout XP is distance-driven: ``round(distance * rate)`` scaled by a
duration step multiplier, plus a per-type completion bonus, a streak
consistency bonus and special bonuses. Level thresholds grow geometrically
(``100 * 1.5 ** (level - 1)``) and a level-up is evaluated once per award.

Nothing here raises: malformed input yields a zeroed breakdown carrying
``error``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from runquest.catalog import ProgressionCatalog, get_catalog
from runquest.records import Workout

logger = logging.getLogger(__name__)

BASE_LEVEL_XP = 100
LEVEL_GROWTH = 1.5
MAX_LEVEL = 10


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (``round()`` would bank to even)."""
    return int(math.floor(value + 0.5))


@dataclass
class XPBreakdown:
    base_xp: int = 0
    completion_bonus: int = 0
    consistency_bonus: int = 0
    special_bonuses: dict[str, int] = field(default_factory=dict)
    total_xp: int = 0
    calculation: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "base_xp": self.base_xp,
            "completion_bonus": self.completion_bonus,
            "consistency_bonus": self.consistency_bonus,
            "special_bonuses": dict(self.special_bonuses),
            "total_xp": self.total_xp,
            "calculation": dict(self.calculation),
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class LevelUpResult:
    leveled_up: bool
    new_level: int
    final_xp: int
    xp_to_next_level: int


def get_duration_multiplier(duration_min: float, catalog: Optional[ProgressionCatalog] = None) -> float:
    catalog = catalog or get_catalog()
    multiplier = 1.0
    for upper_bound, step_multiplier in catalog.duration_multipliers:
        multiplier = step_multiplier
        if upper_bound is None or duration_min < upper_bound:
            break
    return multiplier


def get_consistency_bonus(streak_days: int, catalog: Optional[ProgressionCatalog] = None) -> int:
    catalog = catalog or get_catalog()
    for min_days, bonus in catalog.consistency_bonuses:
        if streak_days >= min_days:
            return bonus
    return 0


# Extension points: no workout history feeds these yet, so they never fire.
def is_first_workout_of_type(workout: Workout) -> bool:
    return False


def completes_weekly_challenge(workout: Workout) -> bool:
    return False


def is_pace_improvement(workout: Workout) -> bool:
    return False


def is_personal_distance_record(workout: Workout, longest_run_km: Optional[float]) -> bool:
    if longest_run_km is None:
        return False
    return workout.distance_km > longest_run_km


def calculate_special_bonuses(
    workout: Workout,
    longest_run_km: Optional[float] = None,
    catalog: Optional[ProgressionCatalog] = None,
) -> dict[str, int]:
    catalog = catalog or get_catalog()
    checks = [
        ("firstTimeBonus", is_first_workout_of_type(workout)),
        ("personalRecordBonus", is_personal_distance_record(workout, longest_run_km)),
        ("weeklyChallengeBonus", completes_weekly_challenge(workout)),
        ("paceImprovementBonus", is_pace_improvement(workout)),
    ]
    return {name: int(catalog.special_bonuses.get(name, 0)) for name, hit in checks if hit}


def calculate_workout_xp(
    workout: Union[Workout, Mapping[str, Any], None],
    *,
    streak_days: int = 0,
    longest_run_km: Optional[float] = None,
    catalog: Optional[ProgressionCatalog] = None,
) -> XPBreakdown:
    """Score one workout.

    ``longest_run_km`` is the user's previous longest run; ``None`` means no
    history is known and the personal-record bonus is not considered.
    """
    catalog = catalog or get_catalog()
    try:
        if workout is None:
            raise ValueError("workout is required")
        if not isinstance(workout, Workout):
            workout = Workout.from_mapping(workout)

        rate_key = workout.type if workout.type in catalog.xp_base_rates else catalog.fallback_workout_type
        base_rate = catalog.xp_base_rates[rate_key]
        multiplier = get_duration_multiplier(workout.duration_min, catalog)
        base_xp = round_half_up(round_half_up(workout.distance_km * base_rate) * multiplier)

        completion_bonus = int(catalog.completion_bonuses.get(workout.type, catalog.default_completion_bonus))
        streak = max(int(streak_days or 0), 0)
        consistency_bonus = get_consistency_bonus(streak, catalog)
        special = calculate_special_bonuses(workout, longest_run_km, catalog)

        return XPBreakdown(
            base_xp=base_xp,
            completion_bonus=completion_bonus,
            consistency_bonus=consistency_bonus,
            special_bonuses=special,
            total_xp=base_xp + completion_bonus + consistency_bonus + sum(special.values()),
            calculation={
                "base_rate": base_rate,
                "distance": workout.distance_km,
                "duration": workout.duration_min,
                "duration_multiplier": multiplier,
                "streak": streak,
            },
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Workout XP calculation degraded: %s", exc)
        return XPBreakdown(error=str(exc))


def xp_to_next_level(level: int) -> int:
    return round_half_up(BASE_LEVEL_XP * LEVEL_GROWTH ** (max(int(level), 1) - 1))


def total_xp_for_level(target_level: int) -> int:
    """Cumulative XP needed to climb from level 1 to ``target_level``."""
    return sum(xp_to_next_level(level) for level in range(1, target_level))


def check_level_up(current_level: int, new_xp: int, threshold: int, max_level: int = MAX_LEVEL) -> LevelUpResult:
    """Single-step level-up: at most one level per call, carrying the excess XP."""
    if new_xp >= threshold:
        new_level = min(current_level + 1, max_level, MAX_LEVEL)
        return LevelUpResult(
            leveled_up=True,
            new_level=new_level,
            final_xp=new_xp - threshold,
            xp_to_next_level=xp_to_next_level(new_level),
        )
    return LevelUpResult(leveled_up=False, new_level=min(current_level, MAX_LEVEL), final_xp=new_xp, xp_to_next_level=threshold)
