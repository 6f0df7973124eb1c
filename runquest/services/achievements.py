"""Achievement evaluator.

Each catalog entry carries a criteria mapping; every key must hold (AND).
Achievements already owned are skipped, so re-evaluating never re-awards
XP. Unlocked rewards go straight into ``total_xp_earned`` as one batched
ledger write, bypassing the level-up step function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from runquest.catalog import Achievement, ProgressionCatalog, get_catalog
from runquest.errors import AchievementOutcome, ProgressionError
from runquest.records import Progress, Workout, utcnow
from runquest.store import ProgressionStore

logger = logging.getLogger(__name__)

_NUMERIC_PROGRESS_CRITERIA = {
    "total_workouts_completed": "total_workouts_completed",
    "total_distance_run": "total_distance_run",
    "current_streak_days": "current_streak_days",
    "max_level_reached": "current_level",
}


@dataclass(frozen=True)
class UnlockedAchievement:
    achievement: Achievement
    unlocked_at: datetime

    def to_dict(self) -> dict[str, Any]:
        payload = self.achievement.to_dict()
        payload["unlocked_at"] = self.unlocked_at.isoformat()
        return payload


def meets_achievement_criteria(
    criteria: Mapping[str, Any],
    progress: Optional[Progress],
    recent_workout: Optional[Workout] = None,
) -> bool:
    if progress is None:
        return False
    for key, threshold in criteria.items():
        if key in _NUMERIC_PROGRESS_CRITERIA:
            if getattr(progress, _NUMERIC_PROGRESS_CRITERIA[key]) < threshold:
                return False
        elif key == "single_run_distance":
            if recent_workout is None or recent_workout.distance_km < threshold:
                return False
        elif key == "completed_phase":
            # Phase-completion history is not tracked yet; always unmet.
            return False
        else:
            logger.warning("Unknown achievement criteria: %s", key)
    return True


def evaluate_achievements(
    progress: Progress,
    recent_workout: Optional[Workout] = None,
    catalog: Optional[ProgressionCatalog] = None,
) -> list[Achievement]:
    """Catalog entries newly satisfied by ``progress`` (owned ones excluded)."""
    catalog = catalog or get_catalog()
    owned = set(progress.achievements)
    return [
        achievement
        for achievement_id, achievement in catalog.achievements.items()
        if achievement_id not in owned and meets_achievement_criteria(achievement.criteria, progress, recent_workout)
    ]


def check_and_award_achievements(
    store: ProgressionStore,
    user_id: int,
    progress: Progress,
    recent_workout: Optional[Workout] = None,
    catalog: Optional[ProgressionCatalog] = None,
    now: Optional[datetime] = None,
) -> AchievementOutcome:
    try:
        newly = evaluate_achievements(progress, recent_workout, catalog)
        if not newly:
            return AchievementOutcome()

        unlocked_at = now or utcnow()
        xp_total = sum(a.xp_reward for a in newly)
        store.upsert_progress(
            user_id,
            {
                "achievements": list(progress.achievements) + [a.id for a in newly],
                "total_xp_earned": progress.total_xp_earned + xp_total,
            },
            expected_version=progress.version,
        )
        logger.info(
            "User %s unlocked %d new achievements, gaining %d XP",
            user_id,
            len(newly),
            xp_total,
            extra={"ctx_user_id": user_id, "ctx_achievements": [a.id for a in newly]},
        )
        return AchievementOutcome(
            unlocked=[UnlockedAchievement(a, unlocked_at) for a in newly],
            xp_awarded=xp_total,
        )
    except ProgressionError as exc:
        logger.warning("Achievement awarding failed: %s", exc.message, extra={"ctx_user_id": user_id})
        return AchievementOutcome(error=exc)
