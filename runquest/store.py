"""Data-store collaborator for the progression engine.

``ProgressionStore`` is the narrow interface the services depend on;
``SqlProgressionStore`` implements it on SQLAlchemy. Every method returns
plain records from ``runquest.records``. Driver errors surface as
``UpstreamFailure``; a progress write that loses the ``version``
compare-and-swap raises ``ConcurrentUpdate``.
"""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from runquest.db import get_session_factory, session_scope
from runquest.errors import ConcurrentUpdate, NotFound, ProgressionError, UpstreamFailure
from runquest.models import (
    CompletedWorkout,
    TrainingPhase,
    TrainingPlan,
    User,
    UserProfile,
    UserProgress,
)
from runquest.models import WorkoutTemplate as WorkoutTemplateRow
from runquest.records import (
    Phase,
    PlanRecord,
    Profile,
    Progress,
    UserRecord,
    Workout,
    WorkoutTemplate,
    utcnow,
)
from runquest.validators import parse_injury_history

logger = logging.getLogger(__name__)

PROGRESS_FIELDS = frozenset(
    {
        "current_phase_id",
        "current_level",
        "current_xp",
        "xp_to_next_level",
        "total_xp_earned",
        "total_workouts_completed",
        "total_distance_run",
        "current_streak_days",
        "longest_streak_days",
        "longest_run_km",
        "best_5k_time",
        "best_10k_time",
        "best_half_marathon_time",
        "best_marathon_time",
        "achievements",
        "phase_started_at",
        "last_workout_at",
        "last_level_up_at",
    }
)
PLAN_FIELDS = frozenset({"phase_id", "level", "fitness_level", "adaptation_rules", "plan_data", "is_adaptive"})


class ProgressionStore(Protocol):
    def get_user(self, user_id: int) -> UserRecord: ...

    def get_or_create_profile(self, user_id: int) -> Profile: ...

    def get_progress(self, user_id: int) -> Optional[Progress]: ...

    def upsert_progress(
        self, user_id: int, fields: Mapping[str, Any], expected_version: Optional[int] = None
    ) -> Progress: ...

    def list_active_phases(self) -> list[Phase]: ...

    def get_phase(self, phase_id: int) -> Phase: ...

    def get_phase_by_order(self, order: int) -> Optional[Phase]: ...

    def get_phase_by_name(self, name: str) -> Optional[Phase]: ...

    def list_workout_templates(self, phase_id: int, level: int) -> list[WorkoutTemplate]: ...

    def insert_plan(self, user_id: int, fields: Mapping[str, Any]) -> PlanRecord: ...

    def update_plan(self, plan_id: int, fields: Mapping[str, Any]) -> PlanRecord: ...

    def get_plan(self, plan_id: int, user_id: Optional[int] = None) -> PlanRecord: ...

    def commit_workout_completion(
        self,
        user_id: int,
        fields: Mapping[str, Any],
        expected_version: Optional[int],
        workout: Workout,
        xp_earned: int,
        completed_at: dt.datetime,
    ) -> Progress: ...

    def weekly_totals(self, user_id: int, since: dt.datetime) -> dict[str, float]: ...

    def xp_ranking(self, user_id: int) -> tuple[int, int]: ...


def _user_record(row: User) -> UserRecord:
    return UserRecord(id=row.id, email=row.email, name=row.name or "", age=row.age, sex=row.sex, goal=row.goal)


def _profile_record(row: UserProfile) -> Profile:
    return Profile(
        user_id=row.user_id,
        age=row.age,
        sex=row.sex or "other",
        running_experience_years=float(row.running_experience_years or 0),
        average_weekly_volume=float(row.average_weekly_volume or 0),
        longest_run_distance=float(row.longest_run_distance or 0),
        preferred_training_days=tuple(row.preferred_training_days or ()),
        available_time_per_session=row.available_time_per_session,
        injury_history=parse_injury_history(row.injury_history),
    )


def _phase_record(row: TrainingPhase) -> Phase:
    return Phase(
        id=row.id,
        name=row.name,
        display_name=row.display_name or "",
        phase_order=row.phase_order,
        max_level=row.max_level,
        exit_criteria=dict(row.exit_criteria or {}),
        is_active=bool(row.is_active),
    )


def _progress_record(row: UserProgress) -> Progress:
    return Progress(
        user_id=row.user_id,
        current_phase_id=row.current_phase_id,
        current_level=row.current_level,
        current_xp=row.current_xp,
        xp_to_next_level=row.xp_to_next_level,
        total_xp_earned=row.total_xp_earned,
        total_workouts_completed=row.total_workouts_completed,
        total_distance_run=float(row.total_distance_run or 0),
        current_streak_days=row.current_streak_days,
        longest_streak_days=row.longest_streak_days,
        longest_run_km=float(row.longest_run_km or 0),
        best_5k_time=row.best_5k_time,
        best_10k_time=row.best_10k_time,
        best_half_marathon_time=row.best_half_marathon_time,
        best_marathon_time=row.best_marathon_time,
        achievements=tuple(row.achievements or ()),
        phase_started_at=row.phase_started_at,
        last_workout_at=row.last_workout_at,
        last_level_up_at=row.last_level_up_at,
        version=row.version,
    )


def _template_record(row: WorkoutTemplateRow) -> WorkoutTemplate:
    return WorkoutTemplate(
        id=row.id,
        phase_id=row.phase_id,
        workout_type=row.workout_type,
        name=row.name or "",
        level_min=row.level_min,
        level_max=row.level_max,
        estimated_duration_minutes=row.estimated_duration_minutes,
        completion_bonus_xp=row.completion_bonus_xp or 0,
        usage_frequency_weight=float(row.usage_frequency_weight or 1.0),
    )


def _plan_record(row: TrainingPlan) -> PlanRecord:
    return PlanRecord(
        id=row.id,
        user_id=row.user_id,
        phase_id=row.phase_id,
        level=row.level,
        fitness_level=row.fitness_level,
        plan_data=dict(row.plan_data or {}),
        is_adaptive=bool(row.is_adaptive),
        created_at=row.created_at,
    )


def _progress_values(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - PROGRESS_FIELDS
    if unknown:
        raise ValueError(f"Unknown progress fields: {sorted(unknown)}")
    values = dict(fields)
    if "achievements" in values:
        values["achievements"] = list(values["achievements"])
    return values


def _write_progress(
    s: Session, user_id: int, values: Mapping[str, Any], expected_version: Optional[int]
) -> UserProgress:
    row = s.execute(select(UserProgress).where(UserProgress.user_id == user_id)).scalar_one_or_none()
    if row is None:
        if expected_version is not None:
            raise ConcurrentUpdate("Progress row disappeared", {"user_id": user_id})
        s.add(UserProgress(user_id=user_id, version=1, **values))
        try:
            s.flush()
        except IntegrityError as exc:
            raise ConcurrentUpdate("Progress row already created", {"user_id": user_id}) from exc
    else:
        stmt = update(UserProgress).where(UserProgress.user_id == user_id)
        if expected_version is not None:
            stmt = stmt.where(UserProgress.version == expected_version)
        result = s.execute(
            stmt.values(**values, version=UserProgress.version + 1).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdate(
                "Progress was modified concurrently",
                {"user_id": user_id, "expected_version": expected_version},
            )
        s.expire_all()
    return s.execute(select(UserProgress).where(UserProgress.user_id == user_id)).scalar_one()


def _workout_log_row(user_id: int, workout: Workout, xp_earned: int, completed_at: dt.datetime) -> CompletedWorkout:
    return CompletedWorkout(
        user_id=user_id,
        workout_type=workout.type,
        distance_km=workout.distance_km,
        duration_min=workout.duration_min,
        difficulty=workout.difficulty,
        xp_earned=xp_earned,
        completed_at=completed_at or utcnow(),
    )


class SqlProgressionStore:
    def __init__(self, session_factory=None):
        self._factory = session_factory or get_session_factory()

    @contextmanager
    def _scope(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self._factory) as session:
                yield session
        except ProgressionError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Data store failure", extra={"ctx_operation": operation})
            raise UpstreamFailure.wrap(exc, operation) from exc

    # -- users & profiles --

    def get_user(self, user_id: int) -> UserRecord:
        with self._scope("get_user") as s:
            row = s.get(User, user_id)
            if row is None:
                raise NotFound("User", {"user_id": user_id})
            return _user_record(row)

    def get_or_create_profile(self, user_id: int) -> Profile:
        with self._scope("get_or_create_profile") as s:
            row = s.execute(select(UserProfile).where(UserProfile.user_id == user_id)).scalar_one_or_none()
            if row is None:
                user = s.get(User, user_id)
                if user is None:
                    raise NotFound("User", {"user_id": user_id})
                row = UserProfile(
                    user_id=user_id,
                    age=user.age or 30,
                    sex=user.sex or "other",
                    running_experience_years=0,
                    average_weekly_volume=0,
                    longest_run_distance=0,
                    preferred_training_days=[],
                    injury_history=[],
                )
                s.add(row)
                s.flush()
                logger.info("Created default profile", extra={"ctx_user_id": user_id})
            return _profile_record(row)

    # -- progress --

    def get_progress(self, user_id: int) -> Optional[Progress]:
        with self._scope("get_progress") as s:
            row = s.execute(select(UserProgress).where(UserProgress.user_id == user_id)).scalar_one_or_none()
            return _progress_record(row) if row is not None else None

    def upsert_progress(
        self, user_id: int, fields: Mapping[str, Any], expected_version: Optional[int] = None
    ) -> Progress:
        """Insert or update the progress row.

        With ``expected_version`` the update only applies if the stored
        version still matches; otherwise ``ConcurrentUpdate`` is raised and
        nothing is written. Inserting a row that another writer created first
        also raises ``ConcurrentUpdate``.
        """
        values = _progress_values(fields)
        with self._scope("upsert_progress") as s:
            return _progress_record(_write_progress(s, user_id, values, expected_version))

    # -- phases & templates --

    def list_active_phases(self) -> list[Phase]:
        with self._scope("list_active_phases") as s:
            rows = s.execute(
                select(TrainingPhase).where(TrainingPhase.is_active.is_(True)).order_by(TrainingPhase.phase_order)
            ).scalars()
            return [_phase_record(r) for r in rows]

    def get_phase(self, phase_id: int) -> Phase:
        with self._scope("get_phase") as s:
            row = s.get(TrainingPhase, phase_id)
            if row is None:
                raise NotFound("Training phase", {"phase_id": phase_id})
            return _phase_record(row)

    def get_phase_by_order(self, order: int) -> Optional[Phase]:
        with self._scope("get_phase_by_order") as s:
            row = s.execute(
                select(TrainingPhase).where(TrainingPhase.phase_order == order, TrainingPhase.is_active.is_(True))
            ).scalars().first()
            return _phase_record(row) if row is not None else None

    def get_phase_by_name(self, name: str) -> Optional[Phase]:
        with self._scope("get_phase_by_name") as s:
            row = s.execute(select(TrainingPhase).where(TrainingPhase.name == name)).scalar_one_or_none()
            return _phase_record(row) if row is not None else None

    def list_workout_templates(self, phase_id: int, level: int) -> list[WorkoutTemplate]:
        with self._scope("list_workout_templates") as s:
            rows = s.execute(
                select(WorkoutTemplateRow)
                .where(
                    WorkoutTemplateRow.phase_id == phase_id,
                    WorkoutTemplateRow.is_active.is_(True),
                    WorkoutTemplateRow.level_min <= level,
                    WorkoutTemplateRow.level_max >= level,
                )
                .order_by(WorkoutTemplateRow.usage_frequency_weight.desc(), WorkoutTemplateRow.id)
            ).scalars()
            return [_template_record(r) for r in rows]

    # -- plans --

    def insert_plan(self, user_id: int, fields: Mapping[str, Any]) -> PlanRecord:
        unknown = set(fields) - PLAN_FIELDS
        if unknown:
            raise ValueError(f"Unknown plan fields: {sorted(unknown)}")
        with self._scope("insert_plan") as s:
            row = TrainingPlan(user_id=user_id, **dict(fields))
            s.add(row)
            s.flush()
            return _plan_record(row)

    def update_plan(self, plan_id: int, fields: Mapping[str, Any]) -> PlanRecord:
        unknown = set(fields) - PLAN_FIELDS
        if unknown:
            raise ValueError(f"Unknown plan fields: {sorted(unknown)}")
        with self._scope("update_plan") as s:
            row = s.get(TrainingPlan, plan_id)
            if row is None:
                raise NotFound("Training plan", {"plan_id": plan_id})
            for key, value in fields.items():
                setattr(row, key, value)
            s.flush()
            return _plan_record(row)

    def get_plan(self, plan_id: int, user_id: Optional[int] = None) -> PlanRecord:
        with self._scope("get_plan") as s:
            row = s.get(TrainingPlan, plan_id)
            if row is None or (user_id is not None and row.user_id != user_id):
                raise NotFound("Training plan", {"plan_id": plan_id})
            return _plan_record(row)

    # -- workout log --

    def commit_workout_completion(
        self,
        user_id: int,
        fields: Mapping[str, Any],
        expected_version: Optional[int],
        workout: Workout,
        xp_earned: int,
        completed_at: dt.datetime,
    ) -> Progress:
        """Apply a completion's progress update and log the workout in one transaction.

        The versioned write behaves like ``upsert_progress``; if either write
        fails neither is kept.
        """
        values = _progress_values(fields)
        with self._scope("commit_workout_completion") as s:
            row = _write_progress(s, user_id, values, expected_version)
            s.add(_workout_log_row(user_id, workout, xp_earned, completed_at))
            s.flush()
            return _progress_record(row)

    def weekly_totals(self, user_id: int, since: dt.datetime) -> dict[str, float]:
        with self._scope("weekly_totals") as s:
            count, distance, xp = s.execute(
                select(
                    func.count(CompletedWorkout.id),
                    func.coalesce(func.sum(CompletedWorkout.distance_km), 0),
                    func.coalesce(func.sum(CompletedWorkout.xp_earned), 0),
                ).where(CompletedWorkout.user_id == user_id, CompletedWorkout.completed_at >= since)
            ).one()
            return {"workouts": int(count), "distance_km": round(float(distance), 2), "xp": int(xp)}

    def xp_ranking(self, user_id: int) -> tuple[int, int]:
        """Return (position, total users) ranked by total XP earned, best first."""
        with self._scope("xp_ranking") as s:
            total = s.execute(select(func.count(UserProgress.id))).scalar_one()
            mine = s.execute(
                select(UserProgress.total_xp_earned).where(UserProgress.user_id == user_id)
            ).scalar_one_or_none()
            if mine is None:
                return (total + 1, total + 1)
            ahead = s.execute(
                select(func.count(UserProgress.id)).where(UserProgress.total_xp_earned > mine)
            ).scalar_one()
            return (int(ahead) + 1, int(total))
