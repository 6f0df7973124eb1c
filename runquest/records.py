"""Plain records exchanged between the data store and the progression services.

The store converts ORM rows into these frozen dataclasses so the services
never touch a session. Optional fields carry explicit defaults instead of
relying on missing keys.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, matching what the ``DateTime`` columns store."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class InjuryRecord:
    type: str
    date: Optional[dt.date] = None
    recovered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "date": self.date.isoformat() if self.date else None, "recovered": self.recovered}


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str = ""
    name: str = ""
    age: Optional[int] = None
    sex: Optional[str] = None
    goal: Optional[str] = None


@dataclass(frozen=True)
class Profile:
    user_id: int
    age: Optional[int] = None
    sex: str = "other"
    running_experience_years: float = 0.0
    average_weekly_volume: float = 0.0
    longest_run_distance: float = 0.0
    preferred_training_days: tuple[str, ...] = ()
    available_time_per_session: Optional[int] = None
    injury_history: tuple[InjuryRecord, ...] = ()


@dataclass(frozen=True)
class Phase:
    id: int
    name: str
    phase_order: int
    max_level: int
    exit_criteria: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    display_name: str = ""
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "phase_order": self.phase_order,
            "max_level": self.max_level,
            "exit_criteria": dict(self.exit_criteria),
        }


@dataclass(frozen=True)
class Progress:
    user_id: int
    current_phase_id: Optional[int]
    current_level: int = 1
    current_xp: int = 0
    xp_to_next_level: int = 100
    total_xp_earned: int = 0
    total_workouts_completed: int = 0
    total_distance_run: float = 0.0
    current_streak_days: int = 0
    longest_streak_days: int = 0
    longest_run_km: float = 0.0
    best_5k_time: Optional[int] = None
    best_10k_time: Optional[int] = None
    best_half_marathon_time: Optional[int] = None
    best_marathon_time: Optional[int] = None
    achievements: tuple[str, ...] = ()
    phase_started_at: Optional[dt.datetime] = None
    last_workout_at: Optional[dt.datetime] = None
    last_level_up_at: Optional[dt.datetime] = None
    version: Optional[int] = None

    @property
    def personal_records(self) -> dict[str, Optional[int]]:
        return {
            "5k": self.best_5k_time,
            "10k": self.best_10k_time,
            "half_marathon": self.best_half_marathon_time,
            "marathon": self.best_marathon_time,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "current_phase_id": self.current_phase_id,
            "current_level": self.current_level,
            "current_xp": self.current_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "total_xp_earned": self.total_xp_earned,
            "total_workouts_completed": self.total_workouts_completed,
            "total_distance_run": self.total_distance_run,
            "current_streak_days": self.current_streak_days,
            "longest_streak_days": self.longest_streak_days,
            "longest_run_km": self.longest_run_km,
            "personal_records": self.personal_records,
            "achievements": list(self.achievements),
            "phase_started_at": self.phase_started_at,
            "last_workout_at": self.last_workout_at,
            "last_level_up_at": self.last_level_up_at,
            "version": self.version,
        }


@dataclass(frozen=True)
class WorkoutTemplate:
    id: int
    phase_id: int
    workout_type: str
    name: str = ""
    level_min: int = 1
    level_max: int = 10
    estimated_duration_minutes: int = 30
    completion_bonus_xp: int = 0
    usage_frequency_weight: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "workout_type": self.workout_type,
            "name": self.name,
            "level_range": [self.level_min, self.level_max],
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "completion_bonus_xp": self.completion_bonus_xp,
            "usage_frequency_weight": self.usage_frequency_weight,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkoutTemplate":
        level_range = data.get("level_range") or [1, 10]
        return cls(
            id=int(data.get("id") or 0),
            phase_id=int(data.get("phase_id") or 0),
            workout_type=str(data.get("workout_type") or "easy_run"),
            name=str(data.get("name") or ""),
            level_min=int(level_range[0]),
            level_max=int(level_range[1]),
            estimated_duration_minutes=int(data.get("estimated_duration_minutes") or 0),
            completion_bonus_xp=int(data.get("completion_bonus_xp") or 0),
            usage_frequency_weight=float(data.get("usage_frequency_weight") or 1.0),
        )


@dataclass(frozen=True)
class Workout:
    """A completed (or projected) workout as seen by the XP calculator."""

    type: str = "easy_run"
    distance_km: float = 0.0
    duration_min: float = 0.0
    difficulty: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Workout":
        distance = data.get("distance_km", data.get("distance"))
        duration = data.get("duration_min", data.get("duration"))
        return cls(
            type=str(data.get("type") or data.get("workout_type") or "easy_run"),
            distance_km=max(float(distance or 0), 0.0),
            duration_min=max(float(duration or 0), 0.0),
            difficulty=data.get("difficulty"),
        )


@dataclass(frozen=True)
class PlanRecord:
    id: int
    user_id: int
    phase_id: Optional[int]
    level: int
    fitness_level: str
    plan_data: Mapping[str, Any]
    is_adaptive: bool = True
    created_at: Optional[dt.datetime] = None

    @property
    def weekly_schedule(self) -> list[dict[str, Any]]:
        return list(self.plan_data.get("weekly_schedule") or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "phase_id": self.phase_id,
            "level": self.level,
            "fitness_level": self.fitness_level,
            "is_adaptive": self.is_adaptive,
            "plan_data": dict(self.plan_data),
            "created_at": self.created_at,
        }
