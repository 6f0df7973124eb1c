"""Tests for the SQLAlchemy-backed progression store."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _build_store(tmp_path, seed: bool = True):
    from runquest.catalog import default_catalog
    from runquest.db import create_schema
    from runquest.seed import seed_reference_data
    from runquest.store import SqlProgressionStore

    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'runquest_test.db'}", connect_args={"check_same_thread": False})
    create_schema(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    if seed:
        seed_reference_data(factory, catalog=default_catalog())
    return SqlProgressionStore(factory)


def _seed_user(store, user_id: int = 1, *, goal: str = "start_running", age: int = 30, profile: dict | None = None):
    from runquest.db import session_scope
    from runquest.models import User, UserProfile

    with session_scope(store._factory) as s:
        s.add(User(id=user_id, email=f"runner{user_id}@example.com", name=f"Runner {user_id}", age=age, goal=goal))
        s.flush()
        if profile is not None:
            s.add(UserProfile(user_id=user_id, age=age, **profile))
    return user_id


def _set_progress(store, user_id: int, phase_name: str = "foundation", **fields):
    from runquest.records import utcnow

    phase = store.get_phase_by_name(phase_name)
    values = {"current_phase_id": phase.id, "phase_started_at": utcnow() - timedelta(days=7)}
    values.update(fields)
    return store.upsert_progress(user_id, values)


def test_seed_creates_five_ordered_phases(tmp_path):
    store = _build_store(tmp_path)
    phases = store.list_active_phases()
    assert [p.name for p in phases] == [
        "foundation",
        "endurance_building",
        "speed_strength",
        "advanced_training",
        "elite_performance",
    ]
    assert [p.phase_order for p in phases] == [1, 2, 3, 4, 5]
    assert all(p.max_level == 10 for p in phases)
    assert phases[0].exit_criteria == {"can_run_continuous_minutes": 30, "completed_weeks": 4}


def test_seed_is_idempotent(tmp_path):
    from runquest.seed import seed_reference_data

    store = _build_store(tmp_path)
    added = seed_reference_data(store._factory)
    assert added == {"phases": 0, "templates": 0}
    assert len(store.list_active_phases()) == 5


def test_list_workout_templates_filters_by_level(tmp_path):
    store = _build_store(tmp_path)
    foundation = store.get_phase_by_name("foundation")
    low = store.list_workout_templates(foundation.id, 1)
    high = store.list_workout_templates(foundation.id, 8)
    assert low and high
    assert all(t.level_min <= 1 <= t.level_max for t in low)
    assert all(t.level_min <= 8 <= t.level_max for t in high)
    # walk_run_intervals recurs most in the foundation tables
    assert low[0].workout_type == "walk_run_intervals"


def test_get_user_missing_raises_not_found(tmp_path):
    from runquest.errors import NotFound

    store = _build_store(tmp_path)
    with pytest.raises(NotFound):
        store.get_user(42)


def test_get_or_create_profile_uses_user_age(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store, age=41)
    profile = store.get_or_create_profile(1)
    assert profile.age == 41
    assert profile.running_experience_years == 0
    assert profile.preferred_training_days == ()
    # second call returns the same row
    assert store.get_or_create_profile(1) == profile


def test_profile_injury_history_is_parsed(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(
        store,
        profile={
            "injury_history": [
                {"type": "shin_splints", "date": "2025-09-01", "recovered": False},
                {"type": "", "date": "2025-08-01"},
                {"type": "it_band"},
                "not-a-record",
            ]
        },
    )
    profile = store.get_or_create_profile(1)
    assert len(profile.injury_history) == 1
    assert profile.injury_history[0].type == "shin_splints"
    assert profile.injury_history[0].date.isoformat() == "2025-09-01"
    assert profile.injury_history[0].recovered is False


def test_get_progress_absent_returns_none(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    assert store.get_progress(1) is None


def test_upsert_progress_bumps_version(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    created = _set_progress(store, 1)
    assert created.version == 1
    updated = store.upsert_progress(1, {"current_xp": 40}, expected_version=1)
    assert updated.version == 2
    assert updated.current_xp == 40


def test_upsert_progress_stale_version_conflicts(tmp_path):
    from runquest.errors import ConcurrentUpdate

    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(store, 1)
    store.upsert_progress(1, {"current_xp": 10}, expected_version=1)
    with pytest.raises(ConcurrentUpdate):
        store.upsert_progress(1, {"current_xp": 99}, expected_version=1)
    assert store.get_progress(1).current_xp == 10


def test_upsert_progress_expected_version_on_missing_row_conflicts(tmp_path):
    from runquest.errors import ConcurrentUpdate

    store = _build_store(tmp_path)
    _seed_user(store)
    with pytest.raises(ConcurrentUpdate):
        store.upsert_progress(1, {"current_xp": 5}, expected_version=1)
    assert store.get_progress(1) is None


def test_upsert_progress_rejects_unknown_fields(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    with pytest.raises(ValueError):
        store.upsert_progress(1, {"not_a_field": 1})


def test_plan_round_trip_and_ownership(tmp_path):
    from runquest.errors import NotFound

    store = _build_store(tmp_path)
    _seed_user(store, 1)
    _seed_user(store, 2)
    plan = store.insert_plan(1, {"level": 2, "fitness_level": "beginner", "plan_data": {"weekly_schedule": []}})
    assert store.get_plan(plan.id, user_id=1).level == 2
    with pytest.raises(NotFound):
        store.get_plan(plan.id, user_id=2)
    updated = store.update_plan(plan.id, {"plan_data": {"weekly_schedule": [{"day": "monday"}]}})
    assert updated.weekly_schedule == [{"day": "monday"}]


def test_weekly_totals_only_counts_trailing_window(tmp_path):
    from runquest.records import Workout

    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(store, 1)
    now = datetime(2026, 10, 18, 12, 0)
    logged = (
        (Workout("easy_run", 5.0, 30), 80, now - timedelta(days=1)),
        (Workout("long_run", 12.5, 75), 300, now - timedelta(days=3)),
        (Workout("easy_run", 8.0, 45), 120, now - timedelta(days=10)),
    )
    for version, (workout, xp, when) in enumerate(logged, start=1):
        store.commit_workout_completion(1, {"total_workouts_completed": version}, version, workout, xp, when)
    totals = store.weekly_totals(1, now - timedelta(days=7))
    assert totals == {"workouts": 2, "distance_km": 17.5, "xp": 380}


def test_commit_workout_completion_logs_with_progress(tmp_path):
    from sqlalchemy import select

    from runquest.db import session_scope
    from runquest.errors import ConcurrentUpdate
    from runquest.models import CompletedWorkout
    from runquest.records import Workout

    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(store, 1)
    when = datetime(2026, 10, 18, 7, 0)

    updated = store.commit_workout_completion(
        1, {"total_xp_earned": 90}, 1, Workout("tempo_run", 6.0, 35, difficulty="hard"), 90, when
    )
    assert updated.version == 2
    assert updated.total_xp_earned == 90

    with pytest.raises(ConcurrentUpdate):
        store.commit_workout_completion(1, {"total_xp_earned": 999}, 1, Workout("easy_run", 3.0, 20), 40, when)

    assert store.get_progress(1).total_xp_earned == 90
    with session_scope(store._factory) as s:
        rows = s.execute(select(CompletedWorkout)).scalars().all()
        assert [(r.workout_type, r.difficulty, r.xp_earned) for r in rows] == [("tempo_run", "hard", 90)]


def test_xp_ranking_orders_by_total_xp(tmp_path):
    store = _build_store(tmp_path)
    for user_id, xp in ((1, 500), (2, 1500), (3, 50)):
        _seed_user(store, user_id)
        _set_progress(store, user_id, total_xp_earned=xp)
    assert store.xp_ranking(2) == (1, 3)
    assert store.xp_ranking(1) == (2, 3)
    assert store.xp_ranking(3) == (3, 3)
