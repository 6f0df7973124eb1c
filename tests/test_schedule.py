"""Tests for the weekly schedule generator."""

from __future__ import annotations

from datetime import date

import pytest

from runquest.catalog import default_catalog
from runquest.records import InjuryRecord, Profile, Progress, UserRecord, WorkoutTemplate
from runquest.services.schedule import (
    ScheduledWorkout,
    add_gamification_elements,
    build_weekly_schedule,
    calculate_workout_difficulty,
    estimate_workout_distance,
    generate_motivational_message,
    generate_weekly_schedule,
    get_workout_distribution,
    personalize_workout_intensities,
)

TODAY = date(2026, 10, 18)
ALL_TYPES = sorted(
    {t for table in default_catalog().workout_distributions.values() for types in table.values() for t in types}
)


def _template(workout_type: str, template_id: int = 1, duration: int = 40, bonus: int = 25) -> WorkoutTemplate:
    return WorkoutTemplate(
        id=template_id,
        phase_id=1,
        workout_type=workout_type,
        name=workout_type.replace("_", " ").title(),
        estimated_duration_minutes=duration,
        completion_bonus_xp=bonus,
    )


def _slot(workout_type: str, order: int = 1, duration: int = 30) -> ScheduledWorkout:
    return ScheduledWorkout(day="monday", template=_template(workout_type), estimated_duration=duration, order=order)


def _full_pool() -> list[WorkoutTemplate]:
    return [_template(t, i) for i, t in enumerate(ALL_TYPES, start=1)]


def test_foundation_three_day_distribution():
    assert get_workout_distribution({"name": "foundation"}, 3) == [
        "walk_run_intervals",
        "easy_run",
        "walk_run_intervals",
    ]


def test_unknown_phase_uses_foundation_table():
    assert get_workout_distribution({"name": "moon_base"}, 4) == get_workout_distribution("foundation", 4)
    assert get_workout_distribution(None, 3) == get_workout_distribution("foundation", 3)


def test_unsupported_frequency_falls_back_to_three_day_table():
    assert get_workout_distribution("endurance_building", 7) == ["easy_run", "tempo_run", "long_run"]
    assert get_workout_distribution("speed_strength", 1) == ["interval_training", "tempo_run", "long_run"]


def test_phases_without_three_day_table_use_nearest_frequency():
    assert get_workout_distribution("advanced_training", 3) == list(
        default_catalog().workout_distributions["advanced_training"][4]
    )
    assert get_workout_distribution("elite_performance", 4) == list(
        default_catalog().workout_distributions["elite_performance"][5]
    )
    assert len(get_workout_distribution("elite_performance", 7)) == 6


def test_schedule_length_matches_weekly_frequency():
    days = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
    pool = _full_pool()
    for phase_name, table in default_catalog().workout_distributions.items():
        for frequency in table:
            profile = Profile(user_id=1, preferred_training_days=days[:frequency])
            schedule = generate_weekly_schedule(profile, pool, phase_name)
            assert len(schedule) == frequency
            assert [w.workout_type for w in schedule] == list(table[frequency])
            assert [w.order for w in schedule] == list(range(1, frequency + 1))


def test_schedule_defaults_to_three_days_and_caps_duration():
    pool = [_template("walk_run_intervals", 1, duration=90), _template("easy_run", 2, duration=30)]
    profile = Profile(user_id=1, available_time_per_session=45)
    schedule = generate_weekly_schedule(profile, pool, "foundation")
    assert [w.day for w in schedule] == ["monday", "wednesday", "friday"]
    assert [w.estimated_duration for w in schedule] == [45, 30, 45]


def test_missing_type_uses_first_template_in_pool():
    pool = [_template("recovery_run", 7)]
    schedule = generate_weekly_schedule(Profile(user_id=1), pool, "speed_strength")
    assert len(schedule) == 3
    assert {w.template.id for w in schedule} == {7}


def test_empty_pool_yields_empty_schedule():
    assert generate_weekly_schedule(Profile(user_id=1), [], "foundation") == []


def test_preferred_days_set_frequency_and_day_names():
    profile = Profile(user_id=1, preferred_training_days=("monday", "thursday", "saturday", "sunday"))
    schedule = generate_weekly_schedule(profile, _full_pool(), "foundation")
    assert [w.day for w in schedule] == ["monday", "thursday", "saturday", "sunday"]
    assert [w.workout_type for w in schedule][-1] == "easy_run"


def test_age_based_intensity():
    schedule = [_slot("easy_run")]
    older = personalize_workout_intensities(schedule, UserRecord(id=1), Profile(user_id=1, age=55), today=TODAY)
    younger = personalize_workout_intensities(schedule, UserRecord(id=1), Profile(user_id=1, age=22), today=TODAY)
    middle = personalize_workout_intensities(schedule, UserRecord(id=1), Profile(user_id=1, age=40), today=TODAY)
    assert older[0].intensity_adjustment == 0.9
    assert younger[0].intensity_adjustment == 1.05
    assert middle[0].intensity_adjustment == 1.0


def test_recent_unresolved_injury_reduces_intensity():
    profile = Profile(
        user_id=1,
        age=55,
        injury_history=(
            InjuryRecord("it_band", date(2026, 9, 1), recovered=False),
            InjuryRecord("ankle_sprain", date(2026, 9, 20), recovered=True),
            InjuryRecord("plantar_fasciitis", date(2026, 3, 1), recovered=False),
        ),
    )
    result = personalize_workout_intensities([_slot("easy_run")], UserRecord(id=1), profile, today=TODAY)
    assert result[0].intensity_adjustment == pytest.approx(0.9 * 0.85)
    assert result[0].injury_modifications == ["it_band"]


def test_beginner_goal_flags_workouts():
    user = UserRecord(id=1, goal="run_5k")
    result = personalize_workout_intensities([_slot("easy_run")], user, Profile(user_id=1, age=30), today=TODAY)
    assert result[0].beginner_friendly is True
    other = personalize_workout_intensities(
        [_slot("easy_run")], UserRecord(id=1, goal="marathon"), Profile(user_id=1), today=TODAY
    )
    assert other[0].beginner_friendly is False


def test_estimate_distance_uses_pace_table():
    assert estimate_workout_distance(_slot("easy_run", duration=30)) == 3.0
    assert estimate_workout_distance(_slot("walk_run_intervals", duration=25)) == 2.0
    assert estimate_workout_distance(_slot("strength_circuit", duration=40)) == 4.0


def test_difficulty_scales_with_level_and_clamps():
    assert calculate_workout_difficulty(_slot("easy_run"), 1) == 2
    assert calculate_workout_difficulty(_slot("easy_run"), 5) == 3
    assert calculate_workout_difficulty(_slot("easy_run"), 8) == 3
    assert calculate_workout_difficulty(_slot("walk_run_intervals"), 1) == 1
    assert calculate_workout_difficulty(_slot("hill_repeats"), 9) == 5
    assert calculate_workout_difficulty(_slot("unknown_type"), 1) == 2


def test_motivational_message_selection():
    first = generate_motivational_message(_slot("tempo_run"), 0, 1)
    challenging = generate_motivational_message(_slot("tempo_run"), 1, 1)
    final = generate_motivational_message(_slot("easy_run"), 2, 1)
    easy = generate_motivational_message(_slot("easy_run"), 1, 1)
    messages = default_catalog().motivational_messages
    assert first["en"] == messages["en"]["first"]
    assert challenging["en"] == messages["en"]["challenging"]
    assert final["pt"] == messages["pt"]["final"]
    assert easy["es"] == messages["es"]["easy"]
    for message in (first, challenging, final, easy):
        assert set(message) == {"pt", "en", "es"}


def test_gamification_precomputes_expected_xp():
    schedule = add_gamification_elements([_slot("easy_run", duration=30)], None, 1)
    gamification = schedule[0].gamification
    # 3.0 km estimated: round(30) * 1.1 = 33, plus the 25 completion bonus
    assert gamification.expected_xp == 58
    assert gamification.completion_reward == 25
    assert gamification.difficulty_level == 2
    assert gamification.xp_breakdown["base_xp"] == 33


def test_gamification_uses_streak_and_run_history():
    progress = Progress(user_id=1, current_phase_id=1, current_streak_days=7, longest_run_km=2.0)
    schedule = add_gamification_elements([_slot("easy_run", duration=30)], progress, 1)
    breakdown = schedule[0].gamification.xp_breakdown
    assert breakdown["consistency_bonus"] == 150
    assert breakdown["special_bonuses"] == {"personalRecordBonus": 200}


def test_build_weekly_schedule_end_to_end():
    user = UserRecord(id=1, age=60, goal="start_running")
    profile = Profile(user_id=1, age=60, preferred_training_days=("tuesday", "thursday", "saturday", "sunday"))
    schedule = build_weekly_schedule(user, profile, _full_pool(), "foundation", 1, today=TODAY)
    assert len(schedule) == 4
    assert all(w.intensity_adjustment == 0.9 for w in schedule)
    assert all(w.beginner_friendly for w in schedule)
    assert all(w.gamification is not None for w in schedule)


def test_scheduled_workout_serialization_survives_storage():
    schedule = build_weekly_schedule(
        UserRecord(id=1, goal="marathon"), Profile(user_id=1), _full_pool(), "speed_strength", 5, today=TODAY
    )
    restored = [ScheduledWorkout.from_dict(w.to_dict()) for w in schedule]
    assert restored == schedule
