"""Initial assessment: profile signals -> experience tier -> starting phase/level."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from runquest.catalog import ProgressionCatalog, get_catalog
from runquest.errors import ComputationDegraded, ProgressionError
from runquest.records import Phase, Profile, Progress, UserRecord
from runquest.store import ProgressionStore

logger = logging.getLogger(__name__)

DEFAULT_AGE = 30
ADVANCED_MIN_POINTS = 50
INTERMEDIATE_MIN_POINTS = 25

# (minimum value, points); first match wins.
RUNNING_YEARS_POINTS = ((3, 30), (1, 15))
WEEKLY_VOLUME_POINTS = ((30, 25), (15, 15), (5, 8))
LONGEST_RUN_POINTS = ((21, 20), (10, 12), (5, 6))


def _step_points(value: float, steps) -> int:
    for minimum, points in steps:
        if value >= minimum:
            return points
    return 0


@dataclass
class InitialAssessment:
    experience_level: str
    experience_points: int
    factors: dict[str, Any] = field(default_factory=dict)
    recommendations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "experience_level": self.experience_level,
            "experience_points": self.experience_points,
            "factors": dict(self.factors),
            "recommendations": dict(self.recommendations),
        }


@dataclass
class PhasePlacement:
    """Where a user starts (or currently is) in the phase ladder."""

    recommended_phase_id: Optional[int]
    recommended_level: int
    current_phase: Optional[Phase]
    is_new_user: bool
    assessment: str
    assessment_details: Optional[InitialAssessment] = None
    error: Optional[ProgressionError] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "recommended_phase_id": self.recommended_phase_id,
            "recommended_level": self.recommended_level,
            "current_phase": self.current_phase.to_dict() if self.current_phase else None,
            "is_new_user": self.is_new_user,
            "assessment": self.assessment,
            "assessment_details": self.assessment_details.to_dict() if self.assessment_details else None,
        }
        if self.error is not None:
            payload["error"] = self.error.message
        return payload


def score_profile(
    profile: Profile, age: Optional[int], goal: Optional[str], catalog: Optional[ProgressionCatalog] = None
) -> tuple[int, dict[str, Any]]:
    catalog = catalog or get_catalog()
    running_years = profile.running_experience_years or 0
    weekly_volume = profile.average_weekly_volume or 0
    longest_run = profile.longest_run_distance or 0
    age = age or DEFAULT_AGE

    # Any experience under a year still counts for something.
    points = _step_points(running_years, RUNNING_YEARS_POINTS) or (5 if running_years > 0 else 0)
    points += _step_points(weekly_volume, WEEKLY_VOLUME_POINTS)
    points += _step_points(longest_run, LONGEST_RUN_POINTS)
    if age < 25:
        points += 5
    elif age > 50:
        points -= 5
    points += int(catalog.goal_bonuses.get(goal or "", 0))

    factors = {
        "running_years": running_years,
        "weekly_volume": weekly_volume,
        "longest_run": longest_run,
        "age": age,
        "goal": goal,
    }
    return points, factors


def classify_experience(points: int) -> str:
    if points >= ADVANCED_MIN_POINTS:
        return "advanced"
    if points >= INTERMEDIATE_MIN_POINTS:
        return "intermediate"
    return "beginner"


def initial_recommendations(experience_level: str, catalog: Optional[ProgressionCatalog] = None) -> dict[str, Any]:
    catalog = catalog or get_catalog()
    table = catalog.tier_recommendations.get(experience_level) or catalog.tier_recommendations["beginner"]
    return {
        key: list(value) if isinstance(value, tuple) else value
        for key, value in table.items()
    }


def perform_initial_assessment(
    user: UserRecord, profile: Profile, catalog: Optional[ProgressionCatalog] = None
) -> InitialAssessment:
    catalog = catalog or get_catalog()
    points, factors = score_profile(profile, profile.age or user.age, user.goal, catalog)
    level = classify_experience(points)
    return InitialAssessment(
        experience_level=level,
        experience_points=points,
        factors=factors,
        recommendations=initial_recommendations(level, catalog),
    )


def place_in_phase(
    experience_level: str, phases: list[Phase], catalog: Optional[ProgressionCatalog] = None
) -> tuple[Phase, int]:
    """Map a tier onto the phase list, falling back to the first phase."""
    if not phases:
        raise ComputationDegraded("No active training phases configured")
    catalog = catalog or get_catalog()
    phase_name, level = catalog.tier_placements.get(experience_level, (None, 1))
    first = phases[0]
    if phase_name is None:
        return first, level
    named = next((p for p in phases if p.name == phase_name), None)
    return (named or first), level


def _fallback_placement(store: ProgressionStore, error: ProgressionError, catalog: ProgressionCatalog) -> PhasePlacement:
    phase = None
    try:
        phase = store.get_phase_by_name(catalog.default_distribution_phase)
    except ProgressionError as exc:
        logger.warning("Fallback phase lookup failed: %s", exc.message)
    return PhasePlacement(
        recommended_phase_id=phase.id if phase else None,
        recommended_level=1,
        current_phase=phase,
        is_new_user=True,
        assessment="beginner",
        error=error,
    )


def assess_user_phase_and_level(
    store: ProgressionStore,
    user: UserRecord,
    profile: Profile,
    progress: Optional[Progress],
    catalog: Optional[ProgressionCatalog] = None,
) -> PhasePlacement:
    """Existing users keep their place; new users are assessed and placed.

    Lookup failures never abort the assessment: the user lands on the first
    phase at level 1 and the placement carries the error.
    """
    catalog = catalog or get_catalog()
    try:
        if progress is not None and progress.current_phase_id is not None:
            return PhasePlacement(
                recommended_phase_id=progress.current_phase_id,
                recommended_level=progress.current_level,
                current_phase=store.get_phase(progress.current_phase_id),
                is_new_user=False,
                assessment="existing_progress",
            )

        details = perform_initial_assessment(user, profile, catalog)
        phase, level = place_in_phase(details.experience_level, store.list_active_phases(), catalog)
        return PhasePlacement(
            recommended_phase_id=phase.id,
            recommended_level=level,
            current_phase=phase,
            is_new_user=True,
            assessment=details.experience_level,
            assessment_details=details,
        )
    except ProgressionError as exc:
        logger.warning(
            "Assessment degraded to foundation level 1: %s", exc.message, extra={"ctx_user_id": user.id}
        )
        degraded = exc if isinstance(exc, ComputationDegraded) else ComputationDegraded(
            exc.message, {"cause": exc.code}
        )
        return _fallback_placement(store, degraded, catalog)
