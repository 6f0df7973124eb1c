"""Workout completion and progression stats.

Completion is read-compute-write on the progress row, guarded by the row's
``version``: a lost compare-and-swap re-reads and recomputes, up to
``Settings.progress_write_retries`` extra attempts. The progress update and
the workout log entry commit together.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from runquest.catalog import ProgressionCatalog, get_catalog
from runquest.config import Settings, get_settings
from runquest.errors import (
    AchievementOutcome,
    ComputationDegraded,
    ConcurrentUpdate,
    NotFound,
    ProgressionError,
    ServiceResult,
)
from runquest.records import Phase, Progress, Workout, as_naive_utc, utcnow
from runquest.services.achievements import check_and_award_achievements
from runquest.services.phases import PhaseAdvancement, check_phase_advancement, weeks_in_phase
from runquest.services.xp import LevelUpResult, XPBreakdown, calculate_workout_xp, check_level_up, xp_to_next_level
from runquest.store import ProgressionStore
from runquest.validators import parse_workout_completion

logger = logging.getLogger(__name__)

WEEKLY_WINDOW = dt.timedelta(days=7)


@dataclass
class WorkoutCompletion:
    xp_breakdown: XPBreakdown
    leveled_up: bool
    new_level: int
    progress: Progress
    new_achievements: list = field(default_factory=list)
    achievement_error: Optional[ProgressionError] = None
    phase_advancement: Optional[PhaseAdvancement] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "xp_breakdown": self.xp_breakdown.to_dict(),
            "xp_gained": self.xp_breakdown.total_xp,
            "leveled_up": self.leveled_up,
            "new_level": self.new_level,
            "progress": self.progress.to_dict(),
            "new_achievements": [a.to_dict() for a in self.new_achievements],
            "phase_advancement": self.phase_advancement.to_dict() if self.phase_advancement else None,
        }
        if self.achievement_error is not None:
            payload["achievement_error"] = self.achievement_error.message
        return payload


def next_streak(current_streak: int, last_workout_at: Optional[dt.datetime], now: dt.datetime) -> int:
    """Calendar-day streak: same day keeps it, the next day extends it, a gap restarts at 1."""
    if last_workout_at is None:
        return 1
    gap = (now.date() - as_naive_utc(last_workout_at).date()).days
    if gap <= 0:
        return max(current_streak, 1)
    if gap == 1:
        return current_streak + 1
    return 1


def _starting_progress(store: ProgressionStore, user_id: int, now: dt.datetime) -> Progress:
    phases = store.list_active_phases()
    if not phases:
        raise ComputationDegraded("No active training phases configured")
    profile = store.get_or_create_profile(user_id)
    return Progress(
        user_id=user_id,
        current_phase_id=phases[0].id,
        longest_run_km=profile.longest_run_distance,
        phase_started_at=now,
    )


def _completion_fields(
    progress: Progress, workout: Workout, breakdown: XPBreakdown, level_up: LevelUpResult, now: dt.datetime
) -> dict[str, Any]:
    last_workout_at = as_naive_utc(progress.last_workout_at)
    # A workout logged after a later one leaves the streak and its anchor alone.
    backdated = last_workout_at is not None and now < last_workout_at
    streak = (
        progress.current_streak_days
        if backdated
        else next_streak(progress.current_streak_days, last_workout_at, now)
    )
    fields: dict[str, Any] = {
        "current_level": level_up.new_level,
        "current_xp": level_up.final_xp,
        "xp_to_next_level": level_up.xp_to_next_level,
        "total_xp_earned": progress.total_xp_earned + breakdown.total_xp,
        "total_workouts_completed": progress.total_workouts_completed + 1,
        "total_distance_run": round(progress.total_distance_run + workout.distance_km, 2),
        "current_streak_days": streak,
        "longest_streak_days": max(progress.longest_streak_days, streak),
        "longest_run_km": max(progress.longest_run_km, workout.distance_km),
    }
    if not backdated:
        fields["last_workout_at"] = now
    if level_up.leveled_up:
        fields["last_level_up_at"] = now
    if progress.version is None:
        fields["current_phase_id"] = progress.current_phase_id
        fields["phase_started_at"] = progress.phase_started_at
    return fields


def _apply_completion(
    store: ProgressionStore,
    user_id: int,
    workout: Workout,
    catalog: ProgressionCatalog,
    settings: Settings,
    now: dt.datetime,
) -> tuple[Progress, XPBreakdown, LevelUpResult]:
    attempts = max(settings.progress_write_retries, 0) + 1
    for attempt in range(1, attempts + 1):
        progress = store.get_progress(user_id) or _starting_progress(store, user_id, now)
        # The streak before this workout counts toward its consistency bonus.
        breakdown = calculate_workout_xp(
            workout,
            streak_days=progress.current_streak_days,
            longest_run_km=progress.longest_run_km,
            catalog=catalog,
        )
        if breakdown.error:
            raise ComputationDegraded("Workout XP could not be calculated", {"reason": breakdown.error})
        level_up = check_level_up(
            progress.current_level,
            progress.current_xp + breakdown.total_xp,
            progress.xp_to_next_level or xp_to_next_level(progress.current_level),
            max_level=settings.max_level,
        )
        try:
            updated = store.commit_workout_completion(
                user_id,
                _completion_fields(progress, workout, breakdown, level_up, now),
                progress.version,
                workout,
                breakdown.total_xp,
                now,
            )
            return updated, breakdown, level_up
        except ConcurrentUpdate:
            logger.info(
                "Progress write conflict, retrying",
                extra={"ctx_user_id": user_id, "ctx_attempt": attempt, "ctx_max_attempts": attempts},
            )
    raise ConcurrentUpdate(
        "Progress kept changing while recording the workout", {"user_id": user_id, "attempts": attempts}
    )


def record_workout_completion(
    store: ProgressionStore,
    user_id: int,
    workout: Union[Workout, Mapping[str, Any]],
    catalog: Optional[ProgressionCatalog] = None,
    settings: Optional[Settings] = None,
    now: Optional[dt.datetime] = None,
) -> ServiceResult:
    """Award XP for a finished workout and run the progression hooks.

    Malformed input raises ``ValidationFailure`` and an unknown user raises
    ``NotFound``; anything failing after that is returned as a failed result.
    """
    if not isinstance(workout, Workout):
        payload = parse_workout_completion(workout)
        workout = payload.to_workout()
        now = now or payload.completed_at
    catalog = catalog or get_catalog()
    settings = settings or get_settings()
    now = as_naive_utc(now) or utcnow()
    store.get_user(user_id)

    try:
        progress, breakdown, level_up = _apply_completion(store, user_id, workout, catalog, settings, now)
        logger.info(
            "Workout recorded",
            extra={
                "ctx_user_id": user_id,
                "ctx_workout_type": workout.type,
                "ctx_distance_km": workout.distance_km,
                "ctx_xp": breakdown.total_xp,
            },
        )
        if level_up.leveled_up:
            logger.info("Level up", extra={"ctx_user_id": user_id, "ctx_level": level_up.new_level})

        achievements: AchievementOutcome = check_and_award_achievements(
            store, user_id, progress, recent_workout=workout, catalog=catalog, now=now
        )
        progress = store.get_progress(user_id) or progress
        advancement = check_phase_advancement(store, progress, now)

        return ServiceResult.ok(
            WorkoutCompletion(
                xp_breakdown=breakdown,
                leveled_up=level_up.leveled_up,
                new_level=level_up.new_level,
                progress=progress,
                new_achievements=achievements.unlocked,
                achievement_error=achievements.error,
                phase_advancement=advancement,
            )
        )
    except ProgressionError as exc:
        logger.exception("Error recording workout completion", extra={"ctx_user_id": user_id})
        return ServiceResult.fail(exc)


def _ranking(store: ProgressionStore, user_id: int) -> dict[str, Any]:
    position, total = store.xp_ranking(user_id)
    percentile = round((1 - (position - 1) / total) * 100, 1) if total else 0.0
    return {"position": position, "total_users": total, "percentile": percentile}


def _next_milestones(
    progress: Progress, phase: Phase, successor: Optional[Phase], advancement: PhaseAdvancement
) -> dict[str, Any]:
    threshold = progress.xp_to_next_level or xp_to_next_level(progress.current_level)
    milestones: dict[str, Any] = {
        "next_level": {
            "level": min(progress.current_level + 1, phase.max_level),
            "xp_needed": max(threshold - progress.current_xp, 0),
            "progress_percentage": round(progress.current_xp / threshold * 100, 1),
        },
        "next_phase": None,
    }
    if successor is not None:
        milestones["next_phase"] = {
            "name": successor.name,
            "display_name": successor.display_name,
            "can_advance": advancement.can_advance,
            "max_level_reached": advancement.max_level_reached,
            "missing_criteria": list(advancement.missing_criteria),
        }
    return milestones


def get_progression_stats(
    store: ProgressionStore, user_id: int, now: Optional[dt.datetime] = None
) -> ServiceResult:
    """Full progression snapshot, including phase-advancement eligibility.

    Raises ``NotFound`` when the user has no progress yet.
    """
    now = as_naive_utc(now) or utcnow()
    progress = store.get_progress(user_id)
    if progress is None:
        raise NotFound("User progress", {"user_id": user_id})

    try:
        if progress.current_phase_id is None:
            raise ComputationDegraded("Progress has no current phase", {"user_id": user_id})
        phase = store.get_phase(progress.current_phase_id)
        successor = store.get_phase_by_order(phase.phase_order + 1)
        advancement = check_phase_advancement(store, progress, now)
        threshold = progress.xp_to_next_level or xp_to_next_level(progress.current_level)

        stats = {
            "current_phase": phase.to_dict(),
            "current_level": progress.current_level,
            "current_xp": progress.current_xp,
            "xp_to_next_level": progress.xp_to_next_level,
            "total_xp": progress.total_xp_earned,
            "total_workouts": progress.total_workouts_completed,
            "total_distance": progress.total_distance_run,
            "current_streak": progress.current_streak_days,
            "longest_streak": progress.longest_streak_days,
            "longest_run_km": progress.longest_run_km,
            "personal_records": progress.personal_records,
            "achievements": list(progress.achievements),
            "achievement_count": len(progress.achievements),
            "phase_progress": {
                "level": progress.current_level,
                "max_level": phase.max_level,
                "level_progress": round(progress.current_level / phase.max_level * 100, 1),
                "xp_progress": round(progress.current_xp / threshold * 100, 1),
                "weeks_in_phase": weeks_in_phase(progress.phase_started_at, now),
            },
            "phase_started_at": progress.phase_started_at,
            "last_workout_at": progress.last_workout_at,
            "last_level_up_at": progress.last_level_up_at,
            "phase_advancement": advancement.to_dict(),
            "next_milestones": _next_milestones(progress, phase, successor, advancement),
            "weekly_stats": store.weekly_totals(user_id, now - WEEKLY_WINDOW),
            "ranking": _ranking(store, user_id),
        }
        return ServiceResult.ok(stats)
    except ProgressionError as exc:
        logger.exception("Error getting progression stats", extra={"ctx_user_id": user_id})
        return ServiceResult.fail(exc)


def list_training_phases(store: ProgressionStore) -> list[Phase]:
    return store.list_active_phases()
