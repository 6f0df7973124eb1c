"""Weekly workout schedule generator.

Builds one slot per training day from the phase's workout-type distribution,
then personalizes intensities (age, recent injuries, goal) and attaches the
gamification block (expected XP, difficulty, localized motivation).
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence, Union

from runquest.catalog import LOCALES, ProgressionCatalog, get_catalog
from runquest.records import Phase, Profile, Progress, UserRecord, Workout, WorkoutTemplate
from runquest.services.xp import calculate_workout_xp, round_half_up

logger = logging.getLogger(__name__)

INJURY_LOOKBACK_MONTHS = 6
INJURY_INTENSITY_FACTOR = 0.85
OLDER_RUNNER_AGE = 50
YOUNGER_RUNNER_AGE = 25
DEFAULT_AGE = 30


@dataclass
class Gamification:
    expected_xp: int = 0
    completion_reward: int = 0
    difficulty_level: int = 1
    motivational_message: dict[str, str] = field(default_factory=dict)
    xp_breakdown: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expected_xp": self.expected_xp,
            "completion_reward": self.completion_reward,
            "difficulty_level": self.difficulty_level,
            "motivational_message": dict(self.motivational_message),
            "xp_breakdown": dict(self.xp_breakdown),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Gamification":
        return cls(
            expected_xp=int(data.get("expected_xp") or 0),
            completion_reward=int(data.get("completion_reward") or 0),
            difficulty_level=int(data.get("difficulty_level") or 1),
            motivational_message=dict(data.get("motivational_message") or {}),
            xp_breakdown=dict(data.get("xp_breakdown") or {}),
        )


@dataclass
class ScheduledWorkout:
    day: str
    template: WorkoutTemplate
    estimated_duration: int
    order: int
    intensity_adjustment: float = 1.0
    injury_modifications: list[str] = field(default_factory=list)
    beginner_friendly: bool = False
    bonus_challenge: bool = False
    gamification: Optional[Gamification] = None

    @property
    def workout_type(self) -> str:
        return self.template.workout_type

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "day": self.day,
            "order": self.order,
            "template": self.template.to_dict(),
            "estimated_duration": self.estimated_duration,
            "intensity_adjustment": self.intensity_adjustment,
        }
        if self.injury_modifications:
            payload["injury_modifications"] = list(self.injury_modifications)
        if self.beginner_friendly:
            payload["beginner_friendly"] = True
        if self.bonus_challenge:
            payload["bonus_challenge"] = True
        if self.gamification is not None:
            payload["gamification"] = self.gamification.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduledWorkout":
        gamification = data.get("gamification")
        return cls(
            day=str(data.get("day") or ""),
            template=WorkoutTemplate.from_dict(data.get("template") or {}),
            estimated_duration=int(data.get("estimated_duration") or 0),
            order=int(data.get("order") or 0),
            intensity_adjustment=float(data.get("intensity_adjustment") or 1.0),
            injury_modifications=list(data.get("injury_modifications") or []),
            beginner_friendly=bool(data.get("beginner_friendly", False)),
            bonus_challenge=bool(data.get("bonus_challenge", False)),
            gamification=Gamification.from_dict(gamification) if gamification else None,
        )


PhaseLike = Union[Phase, Mapping[str, Any], str, None]


def _phase_name(phase: PhaseLike) -> Optional[str]:
    if phase is None:
        return None
    if isinstance(phase, str):
        return phase
    if isinstance(phase, Mapping):
        return phase.get("name")
    return phase.name


def get_workout_distribution(
    phase: PhaseLike, frequency: int, catalog: Optional[ProgressionCatalog] = None
) -> list[str]:
    """Workout-type sequence for a phase and weekly frequency.

    Unknown phases use the default table. A frequency the phase has no table
    for falls back to the 3-day table, or to the nearest frequency (lower on
    ties) when the phase has no 3-day table either.
    """
    catalog = catalog or get_catalog()
    distributions = catalog.workout_distributions
    table = distributions.get(_phase_name(phase) or "") or distributions[catalog.default_distribution_phase]

    if frequency in table:
        return list(table[frequency])
    fallback = catalog.default_weekly_frequency
    if fallback in table:
        return list(table[fallback])
    nearest = min(table, key=lambda supported: (abs(supported - frequency), supported))
    return list(table[nearest])


def generate_weekly_schedule(
    profile: Profile,
    templates: Sequence[WorkoutTemplate],
    phase: PhaseLike,
    catalog: Optional[ProgressionCatalog] = None,
) -> list[ScheduledWorkout]:
    catalog = catalog or get_catalog()
    training_days = tuple(profile.preferred_training_days) or catalog.default_training_days
    weekly_frequency = len(profile.preferred_training_days) or catalog.default_weekly_frequency
    available_time = profile.available_time_per_session or catalog.default_session_minutes
    distribution = get_workout_distribution(phase, weekly_frequency, catalog)

    schedule = []
    for i in range(weekly_frequency):
        workout_type = distribution[i % len(distribution)]
        template = next((t for t in templates if t.workout_type == workout_type), None)
        if template is None and templates:
            template = templates[0]
        if template is None:
            continue
        schedule.append(
            ScheduledWorkout(
                day=training_days[i] if i < len(training_days) else f"day_{i + 1}",
                template=template,
                estimated_duration=min(template.estimated_duration_minutes, available_time),
                order=i + 1,
            )
        )
    if len(schedule) < weekly_frequency:
        logger.warning(
            "Schedule shorter than weekly frequency: %d of %d slots filled",
            len(schedule),
            weekly_frequency,
            extra={"ctx_phase": _phase_name(phase)},
        )
    return schedule


def _months_back(day: dt.date, months: int) -> dt.date:
    month_index = day.year * 12 + day.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    return dt.date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def recent_unresolved_injuries(profile: Profile, today: Optional[dt.date] = None) -> list[str]:
    cutoff = _months_back(today or dt.date.today(), INJURY_LOOKBACK_MONTHS)
    return [
        injury.type
        for injury in profile.injury_history
        if injury.date is not None and injury.date > cutoff and not injury.recovered
    ]


def age_intensity(age: int) -> float:
    if age > OLDER_RUNNER_AGE:
        return 0.9
    if age < YOUNGER_RUNNER_AGE:
        return 1.05
    return 1.0


def personalize_workout_intensities(
    schedule: Sequence[ScheduledWorkout],
    user: UserRecord,
    profile: Profile,
    catalog: Optional[ProgressionCatalog] = None,
    today: Optional[dt.date] = None,
) -> list[ScheduledWorkout]:
    catalog = catalog or get_catalog()
    intensity = age_intensity(profile.age or user.age or DEFAULT_AGE)
    injuries = recent_unresolved_injuries(profile, today)
    if injuries:
        intensity *= INJURY_INTENSITY_FACTOR
    beginner = user.goal in catalog.beginner_goals

    return [
        replace(
            workout,
            intensity_adjustment=intensity,
            injury_modifications=list(injuries),
            beginner_friendly=beginner,
        )
        for workout in schedule
    ]


def estimate_workout_distance(workout: ScheduledWorkout, catalog: Optional[ProgressionCatalog] = None) -> float:
    """Distance in km to one decimal, from duration and a per-type pace."""
    catalog = catalog or get_catalog()
    pace = catalog.pace_estimates_km_per_min.get(workout.workout_type, catalog.default_pace_km_per_min)
    return round_half_up(workout.estimated_duration * pace * 10) / 10


def calculate_workout_difficulty(
    workout: ScheduledWorkout, recommended_level: int, catalog: Optional[ProgressionCatalog] = None
) -> int:
    catalog = catalog or get_catalog()
    try:
        difficulty = float(catalog.difficulty_by_type.get(workout.workout_type, catalog.default_difficulty))
        for min_level, increment in catalog.level_difficulty_steps:
            if recommended_level >= min_level:
                difficulty += increment
                break
        return min(max(round_half_up(difficulty), 1), 5)
    except (AttributeError, TypeError, ValueError) as exc:
        logger.warning("Difficulty estimate degraded: %s", exc)
        return catalog.default_difficulty


def generate_motivational_message(
    workout: ScheduledWorkout,
    index: int,
    recommended_level: int,
    catalog: Optional[ProgressionCatalog] = None,
) -> dict[str, str]:
    catalog = catalog or get_catalog()
    if index == 0:
        kind = "first"
    elif calculate_workout_difficulty(workout, recommended_level, catalog) >= 4:
        kind = "challenging"
    elif index >= 2:
        kind = "final"
    else:
        kind = "easy"
    return {locale: catalog.motivational_messages[locale][kind] for locale in LOCALES}


def add_gamification_elements(
    schedule: Sequence[ScheduledWorkout],
    progress: Optional[Progress],
    recommended_level: int,
    catalog: Optional[ProgressionCatalog] = None,
) -> list[ScheduledWorkout]:
    catalog = catalog or get_catalog()
    streak = progress.current_streak_days if progress else 0
    longest_run = progress.longest_run_km if progress else None

    gamified = []
    for index, workout in enumerate(schedule):
        projected = Workout(
            type=workout.workout_type,
            distance_km=estimate_workout_distance(workout, catalog),
            duration_min=workout.estimated_duration,
        )
        breakdown = calculate_workout_xp(projected, streak_days=streak, longest_run_km=longest_run, catalog=catalog)
        gamified.append(
            replace(
                workout,
                gamification=Gamification(
                    expected_xp=breakdown.total_xp,
                    completion_reward=workout.template.completion_bonus_xp or 0,
                    difficulty_level=calculate_workout_difficulty(workout, recommended_level, catalog),
                    motivational_message=generate_motivational_message(workout, index, recommended_level, catalog),
                    xp_breakdown=breakdown.to_dict(),
                ),
            )
        )
    return gamified


def build_weekly_schedule(
    user: UserRecord,
    profile: Profile,
    templates: Sequence[WorkoutTemplate],
    phase: PhaseLike,
    recommended_level: int,
    progress: Optional[Progress] = None,
    catalog: Optional[ProgressionCatalog] = None,
    today: Optional[dt.date] = None,
) -> list[ScheduledWorkout]:
    """Distribution -> personalization -> gamification, in that order."""
    catalog = catalog or get_catalog()
    schedule = generate_weekly_schedule(profile, templates, phase, catalog)
    schedule = personalize_workout_intensities(schedule, user, profile, catalog, today)
    return add_gamification_elements(schedule, progress, recommended_level, catalog)
