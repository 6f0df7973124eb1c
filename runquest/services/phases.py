"""Training phase state machine.

Phases form a total order on ``phase_order``. A user advances only when the
current phase's max level is reached AND every exit criterion holds AND an
active successor exists (``phase_order + 1``). Promotion resets the level
ledger to level 1 / 0 XP and restarts the phase clock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from runquest.catalog import ProgressionCatalog
from runquest.errors import ComputationDegraded, ProgressionError, ServiceResult, ValidationFailure
from runquest.records import Phase, Progress, as_naive_utc, utcnow
from runquest.services.achievements import check_and_award_achievements
from runquest.services.xp import xp_to_next_level
from runquest.store import ProgressionStore

logger = logging.getLogger(__name__)

CONTINUOUS_RUN_MIN_WORKOUTS = 8
TEN_K_MIN_TOTAL_KM = 50
HALF_MARATHON_MIN_TOTAL_KM = 200
MARATHON_MIN_TOTAL_KM = 500


@dataclass
class PhaseAdvancement:
    can_advance: bool = False
    max_level_reached: bool = False
    meets_exit_criteria: bool = False
    current_phase: Optional[Phase] = None
    next_phase: Optional[Phase] = None
    missing_criteria: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[ProgressionError] = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "can_advance": self.can_advance,
            "max_level_reached": self.max_level_reached,
            "meets_exit_criteria": self.meets_exit_criteria,
            "current_phase": self.current_phase.to_dict() if self.current_phase else None,
            "next_phase": self.next_phase.to_dict() if self.next_phase else None,
            "missing_criteria": list(self.missing_criteria),
        }
        if self.error is not None:
            payload["error"] = self.error.message
        return payload


@dataclass
class PhasePromotion:
    progress: Progress
    previous_phase: Phase
    new_phase: Phase
    new_achievements: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "progress": self.progress.to_dict(),
            "previous_phase": self.previous_phase.to_dict(),
            "new_phase": self.new_phase.to_dict(),
            "new_achievements": [a.to_dict() for a in self.new_achievements],
        }


def weeks_in_phase(phase_started_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if phase_started_at is None:
        return 0
    delta = abs((as_naive_utc(now) or utcnow()) - as_naive_utc(phase_started_at))
    return delta.days // 7


def average_weekly_volume(progress: Progress, now: Optional[datetime] = None) -> float:
    if progress.phase_started_at is None:
        return 0.0
    return progress.total_distance_run / max(weeks_in_phase(progress.phase_started_at, now), 1)


def evaluate_exit_criterion(key: str, threshold: Any, progress: Progress, now: Optional[datetime] = None) -> bool:
    if key == "can_run_continuous_minutes":
        # Heuristic until continuous-run data exists: enough logged workouts.
        return progress.total_workouts_completed >= CONTINUOUS_RUN_MIN_WORKOUTS
    if key == "completed_weeks":
        return weeks_in_phase(progress.phase_started_at, now) >= threshold
    if key == "can_complete_10k":
        return progress.total_distance_run >= TEN_K_MIN_TOTAL_KM
    if key == "weekly_volume_km":
        return average_weekly_volume(progress, now) >= threshold
    if key == "can_complete_half_marathon":
        return progress.total_distance_run >= HALF_MARATHON_MIN_TOTAL_KM
    if key == "can_complete_marathon":
        return progress.total_distance_run >= MARATHON_MIN_TOTAL_KM
    if key == "improved_5k_time":
        return bool(progress.best_5k_time)
    if key == "personal_records":
        return any(progress.personal_records.values())
    if key in ("completed_marathons", "competitive_times"):
        # Race history is not tracked yet; these gates stay closed.
        return False
    if key == "continuous_improvement":
        return True
    logger.warning("Unknown exit criteria: %s", key)
    return True


def meets_exit_criteria(exit_criteria: Mapping[str, Any], progress: Progress, now: Optional[datetime] = None) -> bool:
    return all(evaluate_exit_criterion(key, value, progress, now) for key, value in exit_criteria.items())


def get_missing_criteria(
    exit_criteria: Mapping[str, Any], progress: Progress, now: Optional[datetime] = None
) -> list[dict[str, Any]]:
    return [
        {"criteria": key, "required": value}
        for key, value in exit_criteria.items()
        if not evaluate_exit_criterion(key, value, progress, now)
    ]


def evaluate_advancement(
    progress: Progress,
    current_phase: Phase,
    next_phase: Optional[Phase],
    now: Optional[datetime] = None,
) -> PhaseAdvancement:
    max_level_reached = progress.current_level >= current_phase.max_level
    meets = meets_exit_criteria(current_phase.exit_criteria, progress, now)
    if next_phase is not None and next_phase.phase_order <= current_phase.phase_order:
        next_phase = None
    can_advance = max_level_reached and meets and next_phase is not None
    return PhaseAdvancement(
        can_advance=can_advance,
        max_level_reached=max_level_reached,
        meets_exit_criteria=meets,
        current_phase=current_phase,
        next_phase=next_phase if can_advance else None,
        missing_criteria=get_missing_criteria(current_phase.exit_criteria, progress, now),
    )


def check_phase_advancement(
    store: ProgressionStore, progress: Progress, now: Optional[datetime] = None
) -> PhaseAdvancement:
    try:
        if progress.current_phase_id is None:
            raise ComputationDegraded("Progress has no current phase")
        current_phase = store.get_phase(progress.current_phase_id)
        successor = store.get_phase_by_order(current_phase.phase_order + 1)
        return evaluate_advancement(progress, current_phase, successor, now)
    except ProgressionError as exc:
        logger.warning("Phase advancement check failed: %s", exc.message, extra={"ctx_user_id": progress.user_id})
        return PhaseAdvancement(error=exc)


def promote_to_next_phase(
    store: ProgressionStore,
    user_id: int,
    catalog: Optional[ProgressionCatalog] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """Move the user into the successor phase if the advancement gate is open."""
    try:
        progress = store.get_progress(user_id)
        if progress is None:
            raise ValidationFailure("User has no progress to promote", {"user_id": user_id})
        advancement = check_phase_advancement(store, progress, now)
        if advancement.error is not None:
            raise advancement.error
        if not advancement.can_advance or advancement.next_phase is None:
            raise ValidationFailure(
                "Phase advancement criteria not met",
                {"missing_criteria": advancement.missing_criteria, "max_level_reached": advancement.max_level_reached},
            )

        next_phase = advancement.next_phase
        promoted = store.upsert_progress(
            user_id,
            {
                "current_phase_id": next_phase.id,
                "current_level": 1,
                "current_xp": 0,
                "xp_to_next_level": xp_to_next_level(1),
                "phase_started_at": now or utcnow(),
            },
            expected_version=progress.version,
        )
        logger.info(
            "Promoted user to phase %s",
            next_phase.name,
            extra={"ctx_user_id": user_id, "ctx_from_phase": advancement.current_phase.name, "ctx_to_phase": next_phase.name},
        )

        # Phase-completion achievements are evaluated on every promotion.
        achievements = check_and_award_achievements(store, user_id, promoted, catalog=catalog, now=now)
        return ServiceResult.ok(
            PhasePromotion(
                progress=store.get_progress(user_id) or promoted,
                previous_phase=advancement.current_phase,
                new_phase=next_phase,
                new_achievements=achievements.unlocked,
            )
        )
    except ProgressionError as exc:
        logger.warning("Phase promotion failed: %s", exc.message, extra={"ctx_user_id": user_id})
        return ServiceResult.fail(exc)
