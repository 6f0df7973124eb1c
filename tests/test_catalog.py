"""Tests for the reference-table catalog."""

from __future__ import annotations

import json

import pytest

from runquest.catalog import CATALOG_VERSION, default_catalog, get_catalog, load_catalog
from runquest.config import get_settings


@pytest.fixture
def fresh_caches():
    get_settings.cache_clear()
    get_catalog.cache_clear()
    yield
    get_settings.cache_clear()
    get_catalog.cache_clear()


def test_default_catalog_is_read_only():
    catalog = default_catalog()
    assert catalog.version == CATALOG_VERSION
    assert catalog.xp_base_rates["easy_run"] == 10
    with pytest.raises(TypeError):
        catalog.xp_base_rates["easy_run"] = 99
    assert isinstance(catalog.workout_distributions["foundation"][3], tuple)


def test_achievement_catalog_entries():
    achievements = default_catalog().achievements
    assert len(achievements) == 18
    first = achievements["first_run"]
    assert first.xp_reward == 100
    assert dict(first.criteria) == {"total_workouts_completed": 1}
    assert set(first.name) == {"pt", "en", "es"}


def test_load_catalog_overlays_tables(tmp_path, caplog):
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "version": "club_rules_v1",
                "xp_base_rates": {"easy_run": 12},
                "workout_distributions": {"foundation": {"3": ["easy_run", "easy_run", "long_run"]}},
                "level_difficulty_steps": [[6, 1.0]],
                "moon_phases": {"full": 1},
            }
        )
    )

    catalog = load_catalog(path)

    assert catalog.version == "club_rules_v1"
    assert dict(catalog.xp_base_rates) == {"easy_run": 12}
    assert catalog.workout_distributions["foundation"][3] == ("easy_run", "easy_run", "long_run")
    assert catalog.level_difficulty_steps == ((6, 1.0),)
    # untouched tables keep the embedded defaults
    assert catalog.achievements == default_catalog().achievements
    assert "Ignoring unknown catalog table moon_phases" in caplog.text


def test_load_catalog_rejects_non_object(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text("[1, 2, 3]")
    with pytest.raises(ValueError):
        load_catalog(path)


def test_get_catalog_without_override_uses_defaults(monkeypatch, fresh_caches):
    monkeypatch.delenv("RUNQUEST_CATALOG_PATH", raising=False)
    assert get_catalog() is default_catalog()


def test_get_catalog_reads_configured_overlay(tmp_path, monkeypatch, fresh_caches):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"default_weekly_frequency": 4}))
    monkeypatch.setenv("RUNQUEST_CATALOG_PATH", str(path))
    assert get_catalog().default_weekly_frequency == 4


def test_get_catalog_falls_back_on_bad_overlay(tmp_path, monkeypatch, fresh_caches, caplog):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    monkeypatch.setenv("RUNQUEST_CATALOG_PATH", str(path))
    assert get_catalog() is default_catalog()
    assert "Catalog overlay unusable" in caplog.text

    get_catalog.cache_clear()
    monkeypatch.setenv("RUNQUEST_CATALOG_PATH", str(tmp_path / "missing.json"))
    assert get_catalog() is default_catalog()
