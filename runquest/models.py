from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from runquest.records import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(200), unique=True)
    name: Mapped[str] = mapped_column(String(160), default="")
    age: Mapped[int | None] = mapped_column(Integer)
    sex: Mapped[str | None] = mapped_column(String(16))
    goal: Mapped[str | None] = mapped_column(String(40))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True)
    age: Mapped[int | None] = mapped_column(Integer)
    sex: Mapped[str] = mapped_column(String(16), default="other")
    running_experience_years: Mapped[float] = mapped_column(Float, default=0)
    average_weekly_volume: Mapped[float] = mapped_column(Float, default=0)
    longest_run_distance: Mapped[float] = mapped_column(Float, default=0)
    preferred_training_days: Mapped[list[str]] = mapped_column(JSON, default=list)
    available_time_per_session: Mapped[int | None] = mapped_column(Integer)
    injury_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)


class TrainingPhase(Base):
    __tablename__ = "training_phases"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(40), unique=True)
    display_name: Mapped[str] = mapped_column(String(120), default="")
    phase_order: Mapped[int] = mapped_column(Integer, index=True)
    max_level: Mapped[int] = mapped_column(Integer, default=10)
    exit_criteria: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    __table_args__ = (CheckConstraint("max_level > 0"),)


class UserProgress(Base):
    __tablename__ = "user_progress"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True)
    current_phase_id: Mapped[int | None] = mapped_column(ForeignKey("training_phases.id"))
    current_level: Mapped[int] = mapped_column(Integer, default=1)
    current_xp: Mapped[int] = mapped_column(Integer, default=0)
    xp_to_next_level: Mapped[int] = mapped_column(Integer, default=100)
    total_xp_earned: Mapped[int] = mapped_column(Integer, default=0)
    total_workouts_completed: Mapped[int] = mapped_column(Integer, default=0)
    total_distance_run: Mapped[float] = mapped_column(Float, default=0)
    current_streak_days: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak_days: Mapped[int] = mapped_column(Integer, default=0)
    longest_run_km: Mapped[float] = mapped_column(Float, default=0)
    best_5k_time: Mapped[int | None] = mapped_column(Integer)
    best_10k_time: Mapped[int | None] = mapped_column(Integer)
    best_half_marathon_time: Mapped[int | None] = mapped_column(Integer)
    best_marathon_time: Mapped[int | None] = mapped_column(Integer)
    achievements: Mapped[list[str]] = mapped_column(JSON, default=list)
    phase_started_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    last_workout_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    last_level_up_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    # Bumped on every write; compare-and-swap guard for concurrent completions.
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    __table_args__ = (
        CheckConstraint("current_level between 1 and 10"),
        CheckConstraint("current_xp >= 0"),
    )


class WorkoutTemplate(Base):
    __tablename__ = "workout_templates"
    id: Mapped[int] = mapped_column(primary_key=True)
    phase_id: Mapped[int] = mapped_column(ForeignKey("training_phases.id"), index=True)
    name: Mapped[str] = mapped_column(String(120), default="")
    workout_type: Mapped[str] = mapped_column(String(40), index=True)
    level_min: Mapped[int] = mapped_column(Integer, default=1)
    level_max: Mapped[int] = mapped_column(Integer, default=10)
    estimated_duration_minutes: Mapped[int] = mapped_column(Integer)
    completion_bonus_xp: Mapped[int] = mapped_column(Integer, default=0)
    usage_frequency_weight: Mapped[float] = mapped_column(Float, default=1.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    __table_args__ = (CheckConstraint("level_min <= level_max"),)


class TrainingPlan(Base):
    __tablename__ = "training_plans"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    phase_id: Mapped[int | None] = mapped_column(ForeignKey("training_phases.id"))
    level: Mapped[int] = mapped_column(Integer, default=1)
    goal: Mapped[str] = mapped_column(String(40), default="adaptive_training")
    fitness_level: Mapped[str] = mapped_column(String(40), default="beginner")
    total_weeks: Mapped[int] = mapped_column(Integer, default=52)
    is_adaptive: Mapped[bool] = mapped_column(Boolean, default=True)
    adaptation_rules: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    plan_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)


class CompletedWorkout(Base):
    __tablename__ = "completed_workouts"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    workout_type: Mapped[str] = mapped_column(String(40))
    distance_km: Mapped[float] = mapped_column(Float, default=0)
    duration_min: Mapped[float] = mapped_column(Float, default=0)
    difficulty: Mapped[str | None] = mapped_column(String(20))
    xp_earned: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, index=True)
    __table_args__ = (CheckConstraint("distance_km >= 0"), CheckConstraint("duration_min >= 0"))
