"""Plan adaptation loop.

``generate_adaptive_plan`` assesses the user, fetches the phase's templates,
builds the gamified weekly schedule and persists it. ``adapt_existing_plan``
promotes and regenerates when the user can advance, otherwise nudges the
stored schedule from the recent performance trend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Sequence

from runquest.catalog import ProgressionCatalog, get_catalog
from runquest.errors import ComputationDegraded, ConcurrentUpdate, NotFound, ProgressionError, ServiceResult
from runquest.records import PlanRecord, Progress, utcnow
from runquest.services.assessment import PhasePlacement, assess_user_phase_and_level
from runquest.services.phases import check_phase_advancement, promote_to_next_phase
from runquest.services.schedule import ScheduledWorkout, build_weekly_schedule
from runquest.services.xp import round_half_up, xp_to_next_level
from runquest.store import ProgressionStore

logger = logging.getLogger(__name__)

PLAN_FORMAT_VERSION = "2.0"
PLAN_GOAL = "adaptive_training"
DEFAULT_ADAPTATION_RULES = {
    "auto_adjust_intensity": True,
    "monitor_performance": True,
    "check_progression": True,
    "frequency": "weekly",
}

INTENSITY_STEP_UP = 1.05
INTENSITY_STEP_DOWN = 0.95
HOT_STREAK_DAYS = 7
HOT_STREAK_MIN_WORKOUTS = 10
LAPSED_MIN_WORKOUTS = 5
BONUS_CHALLENGE_XP_RATIO = 0.8
BONUS_CHALLENGE_XP_BOOST = 1.1


@dataclass
class PlanGeneration:
    plan: PlanRecord
    assessment: PhasePlacement
    reason: str = "initial"

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "assessment": self.assessment.to_dict(),
            "reason": self.reason,
        }


@dataclass
class PlanAdaptation:
    plan: PlanRecord
    adaptations: list[dict[str, Any]] = field(default_factory=list)
    regenerated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "adaptations": list(self.adaptations),
            "regenerated": self.regenerated,
        }


def _plan_payload(
    schedule: Sequence[ScheduledWorkout], placement: PhasePlacement, generated_at: datetime, reason: str
) -> dict[str, Any]:
    return {
        "weekly_schedule": [w.to_dict() for w in schedule],
        "phase_info": placement.current_phase.to_dict() if placement.current_phase else None,
        "assessment_details": placement.assessment_details.to_dict() if placement.assessment_details else None,
        "generated_at": generated_at.isoformat(),
        "generation_reason": reason,
        "version": PLAN_FORMAT_VERSION,
    }


def _initialize_progress(store: ProgressionStore, user_id: int, placement: PhasePlacement, now: datetime) -> None:
    try:
        store.upsert_progress(
            user_id,
            {
                "current_phase_id": placement.recommended_phase_id,
                "current_level": placement.recommended_level,
                "current_xp": 0,
                "xp_to_next_level": xp_to_next_level(placement.recommended_level),
                "phase_started_at": now,
            },
        )
        logger.info("Initialized progress for new user", extra={"ctx_user_id": user_id})
    except ConcurrentUpdate:
        # Another request created the row first; its values stand.
        logger.info("Progress already initialized", extra={"ctx_user_id": user_id})


def generate_adaptive_plan(
    store: ProgressionStore,
    user_id: int,
    catalog: Optional[ProgressionCatalog] = None,
    now: Optional[datetime] = None,
    reason: str = "initial",
) -> ServiceResult:
    """Assess, place, schedule and persist a fresh adaptive plan.

    Raises ``NotFound`` / ``UpstreamFailure`` when the user data cannot be
    fetched; later failures come back as a failed ``ServiceResult``.
    """
    catalog = catalog or get_catalog()
    now = now or utcnow()
    user = store.get_user(user_id)
    profile = store.get_or_create_profile(user_id)
    progress = store.get_progress(user_id)

    try:
        placement = assess_user_phase_and_level(store, user, profile, progress, catalog)
        if placement.recommended_phase_id is None:
            raise placement.error or ComputationDegraded("No training phase available")

        try:
            templates = store.list_workout_templates(placement.recommended_phase_id, placement.recommended_level)
        except ProgressionError as exc:
            logger.warning("Template lookup failed, generating empty schedule: %s", exc.message)
            templates = []

        schedule = build_weekly_schedule(
            user,
            profile,
            templates,
            placement.current_phase,
            placement.recommended_level,
            progress=progress,
            catalog=catalog,
            today=now.date(),
        )
        plan = store.insert_plan(
            user_id,
            {
                "phase_id": placement.recommended_phase_id,
                "level": placement.recommended_level,
                "fitness_level": placement.assessment,
                "is_adaptive": True,
                "adaptation_rules": dict(DEFAULT_ADAPTATION_RULES),
                "plan_data": _plan_payload(schedule, placement, now, reason),
            },
        )
        if placement.is_new_user and progress is None:
            _initialize_progress(store, user_id, placement, now)

        logger.info(
            "Generated adaptive plan",
            extra={
                "ctx_user_id": user_id,
                "ctx_plan_id": plan.id,
                "ctx_phase_id": plan.phase_id,
                "ctx_level": plan.level,
                "ctx_workouts": len(schedule),
                "ctx_reason": reason,
            },
        )
        return ServiceResult.ok(PlanGeneration(plan=plan, assessment=placement, reason=reason))
    except ProgressionError as exc:
        logger.exception("Error generating adaptive plan", extra={"ctx_user_id": user_id})
        return ServiceResult.fail(exc)


def adapt_weekly_schedule(schedule: Sequence[ScheduledWorkout], progress: Progress) -> list[ScheduledWorkout]:
    """Nudge intensities and rewards from the streak and level trend."""
    factor = 1.0
    if progress.current_streak_days >= HOT_STREAK_DAYS and progress.total_workouts_completed >= HOT_STREAK_MIN_WORKOUTS:
        factor *= INTENSITY_STEP_UP
    if progress.current_streak_days == 0 and progress.total_workouts_completed >= LAPSED_MIN_WORKOUTS:
        factor *= INTENSITY_STEP_DOWN

    threshold = progress.xp_to_next_level or xp_to_next_level(progress.current_level)
    near_level_up = progress.current_xp / threshold > BONUS_CHALLENGE_XP_RATIO

    adapted = []
    for workout in schedule:
        changes: dict[str, Any] = {}
        if factor != 1.0:
            changes["intensity_adjustment"] = (workout.intensity_adjustment or 1.0) * factor
        if near_level_up and not workout.bonus_challenge:
            changes["bonus_challenge"] = True
            if workout.gamification is not None:
                changes["gamification"] = replace(
                    workout.gamification,
                    expected_xp=round_half_up(workout.gamification.expected_xp * BONUS_CHALLENGE_XP_BOOST),
                )
        adapted.append(replace(workout, **changes) if changes else workout)
    return adapted


def get_adaptation_summary(
    original: Sequence[ScheduledWorkout], adapted: Sequence[ScheduledWorkout]
) -> list[dict[str, Any]]:
    changes = []
    for index, (before, after) in enumerate(zip(original, adapted), start=1):
        if after.intensity_adjustment != before.intensity_adjustment:
            changes.append(
                {
                    "workout": index,
                    "type": "intensity",
                    "change": "increased" if after.intensity_adjustment > before.intensity_adjustment else "decreased",
                    "factor": round(after.intensity_adjustment / (before.intensity_adjustment or 1.0), 4),
                }
            )
        if after.bonus_challenge and not before.bonus_challenge:
            changes.append({"workout": index, "type": "bonus_challenge", "change": "added"})
    return changes


def adapt_existing_plan(
    store: ProgressionStore,
    user_id: int,
    plan_id: int,
    catalog: Optional[ProgressionCatalog] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    catalog = catalog or get_catalog()
    now = now or utcnow()
    plan = store.get_plan(plan_id, user_id=user_id)
    progress = store.get_progress(user_id)
    if progress is None:
        raise NotFound("User progress", {"user_id": user_id})

    try:
        advancement = check_phase_advancement(store, progress, now)
        if advancement.can_advance:
            promotion = promote_to_next_phase(store, user_id, catalog, now)
            if promotion.success:
                regenerated = generate_adaptive_plan(store, user_id, catalog, now, reason="phase_advancement")
                if not regenerated.success:
                    return regenerated
                return ServiceResult.ok(
                    PlanAdaptation(
                        plan=regenerated.data.plan,
                        adaptations=[
                            {
                                "type": "phase_advancement",
                                "from_phase": promotion.data.previous_phase.name,
                                "to_phase": promotion.data.new_phase.name,
                            }
                        ],
                        regenerated=True,
                    )
                )
            logger.warning(
                "Promotion failed, adapting current plan instead: %s",
                promotion.error.message if promotion.error else "unknown",
                extra={"ctx_user_id": user_id},
            )

        current = [ScheduledWorkout.from_dict(w) for w in plan.weekly_schedule]
        adapted = adapt_weekly_schedule(current, progress)
        plan_data = dict(plan.plan_data)
        plan_data.update(
            weekly_schedule=[w.to_dict() for w in adapted],
            last_adapted_at=now.isoformat(),
            adaptation_reason="performance_adjustment",
        )
        updated = store.update_plan(plan.id, {"plan_data": plan_data})
        adaptations = get_adaptation_summary(current, adapted)

        logger.info(
            "Adapted plan",
            extra={"ctx_user_id": user_id, "ctx_plan_id": plan.id, "ctx_changes": len(adaptations)},
        )
        return ServiceResult.ok(PlanAdaptation(plan=updated, adaptations=adaptations))
    except ProgressionError as exc:
        logger.exception("Error adapting existing plan", extra={"ctx_user_id": user_id, "ctx_plan_id": plan_id})
        return ServiceResult.fail(exc)
