"""Tests for the training phase state machine."""

from __future__ import annotations

from datetime import datetime, timedelta

from runquest.errors import ValidationFailure
from runquest.records import Phase, Progress
from runquest.services.phases import (
    check_phase_advancement,
    evaluate_advancement,
    evaluate_exit_criterion,
    get_missing_criteria,
    meets_exit_criteria,
    promote_to_next_phase,
    weeks_in_phase,
)
from tests.test_store import _build_store, _seed_user, _set_progress

NOW = datetime(2026, 10, 18, 9, 0)

FOUNDATION = Phase(
    id=1,
    name="foundation",
    phase_order=1,
    max_level=10,
    exit_criteria={"can_run_continuous_minutes": 30, "completed_weeks": 4},
)
ENDURANCE = Phase(
    id=2,
    name="endurance_building",
    phase_order=2,
    max_level=10,
    exit_criteria={"can_complete_10k": True, "weekly_volume_km": 20},
)


def _progress(**fields) -> Progress:
    values = {"user_id": 1, "current_phase_id": 1}
    values.update(fields)
    return Progress(**values)


def test_weeks_in_phase():
    assert weeks_in_phase(None, NOW) == 0
    assert weeks_in_phase(NOW - timedelta(days=6), NOW) == 0
    assert weeks_in_phase(NOW - timedelta(days=7), NOW) == 1
    assert weeks_in_phase(NOW - timedelta(days=30), NOW) == 4


def test_distance_predicates():
    progress = _progress(total_distance_run=210)
    assert evaluate_exit_criterion("can_complete_10k", True, progress, NOW)
    assert evaluate_exit_criterion("can_complete_half_marathon", True, progress, NOW)
    assert not evaluate_exit_criterion("can_complete_marathon", True, progress, NOW)


def test_continuous_minutes_heuristic_counts_workouts():
    assert not evaluate_exit_criterion("can_run_continuous_minutes", 30, _progress(total_workouts_completed=7), NOW)
    assert evaluate_exit_criterion("can_run_continuous_minutes", 30, _progress(total_workouts_completed=8), NOW)


def test_weekly_volume_uses_weeks_in_phase():
    started = NOW - timedelta(days=21)
    assert evaluate_exit_criterion("weekly_volume_km", 20, _progress(total_distance_run=60, phase_started_at=started), NOW)
    assert not evaluate_exit_criterion("weekly_volume_km", 20, _progress(total_distance_run=59, phase_started_at=started), NOW)
    # under a week counts as one week
    assert evaluate_exit_criterion(
        "weekly_volume_km", 20, _progress(total_distance_run=20, phase_started_at=NOW - timedelta(days=2)), NOW
    )
    assert not evaluate_exit_criterion("weekly_volume_km", 20, _progress(total_distance_run=500), NOW)


def test_record_predicates():
    assert not evaluate_exit_criterion("improved_5k_time", True, _progress(), NOW)
    assert evaluate_exit_criterion("improved_5k_time", True, _progress(best_5k_time=1500), NOW)
    assert not evaluate_exit_criterion("personal_records", True, _progress(), NOW)
    assert evaluate_exit_criterion("personal_records", True, _progress(best_marathon_time=14400), NOW)


def test_stub_predicates():
    progress = _progress(total_distance_run=5000, best_marathon_time=10000)
    assert not evaluate_exit_criterion("completed_marathons", 3, progress, NOW)
    assert not evaluate_exit_criterion("competitive_times", True, progress, NOW)
    assert evaluate_exit_criterion("continuous_improvement", True, _progress(), NOW)


def test_missing_criteria_lists_each_unmet_key():
    progress = _progress(total_workouts_completed=9, phase_started_at=NOW - timedelta(days=10))
    assert not meets_exit_criteria(FOUNDATION.exit_criteria, progress, NOW)
    assert get_missing_criteria(FOUNDATION.exit_criteria, progress, NOW) == [
        {"criteria": "completed_weeks", "required": 4}
    ]


def test_user_at_max_level_with_criteria_met_can_advance():
    progress = _progress(current_level=10, total_workouts_completed=8, phase_started_at=NOW - timedelta(days=35))
    result = evaluate_advancement(progress, FOUNDATION, ENDURANCE, NOW)
    assert result.can_advance is True
    assert result.max_level_reached is True
    assert result.meets_exit_criteria is True
    assert result.next_phase.phase_order == FOUNDATION.phase_order + 1
    assert result.missing_criteria == []


def test_below_max_level_cannot_advance():
    progress = _progress(current_level=9, total_workouts_completed=8, phase_started_at=NOW - timedelta(days=35))
    result = evaluate_advancement(progress, FOUNDATION, ENDURANCE, NOW)
    assert result.can_advance is False
    assert result.meets_exit_criteria is True
    assert result.next_phase is None


def test_terminal_phase_has_no_successor():
    elite = Phase(id=5, name="elite_performance", phase_order=5, max_level=10, exit_criteria={"continuous_improvement": True})
    result = evaluate_advancement(_progress(current_level=10), elite, None, NOW)
    assert result.max_level_reached and result.meets_exit_criteria
    assert result.can_advance is False


def test_successor_must_have_higher_order():
    backwards = Phase(id=9, name="foundation_copy", phase_order=1, max_level=10)
    progress = _progress(current_level=10, total_workouts_completed=8, phase_started_at=NOW - timedelta(days=35))
    result = evaluate_advancement(progress, FOUNDATION, backwards, NOW)
    assert result.can_advance is False
    assert result.next_phase is None


def test_check_phase_advancement_resolves_successor_from_store(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    progress = _set_progress(
        store, 1, current_level=10, total_workouts_completed=8, phase_started_at=NOW - timedelta(days=35)
    )
    result = check_phase_advancement(store, progress, NOW)
    assert result.error is None
    assert result.can_advance
    assert result.next_phase.name == "endurance_building"


def test_check_phase_advancement_reports_missing_phase():
    class _EmptyStore:
        def get_phase(self, phase_id):
            from runquest.errors import NotFound

            raise NotFound("Training phase")

    result = check_phase_advancement(_EmptyStore(), _progress(), NOW)
    assert result.can_advance is False
    assert result.error is not None
    assert result.to_dict()["error"] == "Training phase not found"


def test_promote_resets_level_ledger(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(
        store,
        1,
        current_level=10,
        current_xp=400,
        xp_to_next_level=3844,
        total_xp_earned=9000,
        total_workouts_completed=8,
        phase_started_at=NOW - timedelta(days=35),
    )

    result = promote_to_next_phase(store, 1, now=NOW)

    assert result.success, result.error
    promotion = result.data
    assert promotion.previous_phase.name == "foundation"
    assert promotion.new_phase.name == "endurance_building"
    assert promotion.new_phase.phase_order > promotion.previous_phase.phase_order
    stored = store.get_progress(1)
    assert stored.current_phase_id == promotion.new_phase.id
    assert stored.current_level == 1
    assert stored.current_xp == 0
    assert stored.xp_to_next_level == 100
    assert stored.phase_started_at == NOW
    # totals survive promotion
    assert stored.total_workouts_completed == 8
    assert stored.total_xp_earned >= 9000
    # the achievement hook ran on the promoted snapshot
    assert "first_run" in stored.achievements


def test_promote_refuses_when_criteria_unmet(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(store, 1, current_level=4)

    result = promote_to_next_phase(store, 1, now=NOW)

    assert not result.success
    assert isinstance(result.error, ValidationFailure)
    assert store.get_progress(1).current_level == 4


def test_promote_refuses_at_terminal_phase(tmp_path):
    store = _build_store(tmp_path)
    _seed_user(store)
    _set_progress(store, 1, phase_name="elite_performance", current_level=10)

    result = promote_to_next_phase(store, 1, now=NOW)

    assert not result.success
    assert store.get_progress(1).current_phase_id == store.get_phase_by_name("elite_performance").id
