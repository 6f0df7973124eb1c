"""Reference tables for the progression engine.

Every table the calculators read (XP rates, bonus steps, the achievement
catalog, per-phase workout distributions, pace and difficulty estimates,
motivational copy) lives on one immutable ``ProgressionCatalog``. The
embedded defaults are built once; a JSON document named by
``RUNQUEST_CATALOG_PATH`` may overlay any top-level table. Services take the
catalog as an argument so tests can swap tables freely.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from runquest.config import get_settings

logger = logging.getLogger(__name__)

CATALOG_VERSION = "runquest_catalog_v2"
LOCALES = ("pt", "en", "es")


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class Achievement:
    id: str
    name: Mapping[str, str]
    description: Mapping[str, str]
    icon: str
    xp_reward: int
    criteria: Mapping[str, Any]

    @classmethod
    def from_mapping(cls, achievement_id: str, data: Mapping[str, Any]) -> "Achievement":
        return cls(
            id=str(data.get("id") or achievement_id),
            name=_freeze(dict(data.get("name") or {})),
            description=_freeze(dict(data.get("description") or {})),
            icon=str(data.get("icon") or ""),
            xp_reward=int(data.get("xp_reward") or 0),
            criteria=_freeze(dict(data.get("criteria") or {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": dict(self.name),
            "description": dict(self.description),
            "icon": self.icon,
            "xp_reward": self.xp_reward,
            "criteria": dict(self.criteria),
        }


@dataclass(frozen=True)
class ProgressionCatalog:
    version: str
    xp_base_rates: Mapping[str, int]
    fallback_workout_type: str
    # (upper bound in minutes or None for open-ended, multiplier), checked in order
    duration_multipliers: tuple[tuple[Optional[float], float], ...]
    # (minimum streak days, bonus), checked in order
    consistency_bonuses: tuple[tuple[int, int], ...]
    completion_bonuses: Mapping[str, int]
    default_completion_bonus: int
    special_bonuses: Mapping[str, int]
    achievements: Mapping[str, Achievement]
    workout_distributions: Mapping[str, Mapping[int, tuple[str, ...]]]
    default_distribution_phase: str
    default_weekly_frequency: int
    default_session_minutes: int
    default_training_days: tuple[str, ...]
    pace_estimates_km_per_min: Mapping[str, float]
    default_pace_km_per_min: float
    difficulty_by_type: Mapping[str, int]
    default_difficulty: int
    # (minimum recommended level, difficulty increment), checked in order
    level_difficulty_steps: tuple[tuple[int, float], ...]
    motivational_messages: Mapping[str, Mapping[str, str]]
    tier_recommendations: Mapping[str, Mapping[str, Any]]
    # tier -> (phase name or None for the first active phase, starting level)
    tier_placements: Mapping[str, tuple[Optional[str], int]]
    goal_bonuses: Mapping[str, int]
    beginner_goals: tuple[str, ...]


_ACHIEVEMENTS: dict[str, dict[str, Any]] = {
    "first_run": {
        "name": {"pt": "Primeiro Passo", "en": "First Step", "es": "Primer Paso"},
        "description": {"pt": "Complete sua primeira corrida", "en": "Complete your first run", "es": "Completa tu primera carrera"},
        "icon": "🏃‍♂️",
        "xp_reward": 100,
        "criteria": {"total_workouts_completed": 1},
    },
    "distance_5k": {
        "name": {"pt": "5K Warrior", "en": "5K Warrior", "es": "Guerrero 5K"},
        "description": {"pt": "Corra 5km em uma sessão", "en": "Run 5km in a single session", "es": "Corre 5km en una sesión"},
        "icon": "🏃",
        "xp_reward": 200,
        "criteria": {"single_run_distance": 5},
    },
    "distance_10k": {
        "name": {"pt": "10K Champion", "en": "10K Champion", "es": "Campeón 10K"},
        "description": {"pt": "Corra 10km em uma sessão", "en": "Run 10km in a single session", "es": "Corre 10km en una sesión"},
        "icon": "🏃‍♀️",
        "xp_reward": 500,
        "criteria": {"single_run_distance": 10},
    },
    "distance_half_marathon": {
        "name": {"pt": "Meio Maratonista", "en": "Half Marathoner", "es": "Medio Maratonista"},
        "description": {
            "pt": "Complete uma meia maratona (21km)",
            "en": "Complete a half marathon (21km)",
            "es": "Completa un medio maratón (21km)",
        },
        "icon": "🏅",
        "xp_reward": 1000,
        "criteria": {"single_run_distance": 21},
    },
    "distance_marathon": {
        "name": {"pt": "Maratonista", "en": "Marathoner", "es": "Maratonista"},
        "description": {
            "pt": "Complete uma maratona (42km)",
            "en": "Complete a marathon (42km)",
            "es": "Completa un maratón (42km)",
        },
        "icon": "🏆",
        "xp_reward": 2000,
        "criteria": {"single_run_distance": 42},
    },
    "total_100k": {
        "name": {"pt": "Centena", "en": "Century", "es": "Centena"},
        "description": {"pt": "100km de distância total", "en": "100km total distance", "es": "100km de distancia total"},
        "icon": "💯",
        "xp_reward": 300,
        "criteria": {"total_distance_run": 100},
    },
    "total_500k": {
        "name": {"pt": "Quinhentos", "en": "Five Hundred", "es": "Quinientos"},
        "description": {"pt": "500km de distância total", "en": "500km total distance", "es": "500km de distancia total"},
        "icon": "🚀",
        "xp_reward": 750,
        "criteria": {"total_distance_run": 500},
    },
    "total_1000k": {
        "name": {"pt": "Mil Quilômetros", "en": "Thousand Kilometers", "es": "Mil Kilómetros"},
        "description": {"pt": "1000km de distância total", "en": "1000km total distance", "es": "1000km de distancia total"},
        "icon": "⭐",
        "xp_reward": 1500,
        "criteria": {"total_distance_run": 1000},
    },
    "streak_7": {
        "name": {"pt": "Semana Perfeita", "en": "Perfect Week", "es": "Semana Perfecta"},
        "description": {
            "pt": "7 dias consecutivos de treino",
            "en": "7 consecutive days of training",
            "es": "7 días consecutivos de entrenamiento",
        },
        "icon": "🔥",
        "xp_reward": 200,
        "criteria": {"current_streak_days": 7},
    },
    "streak_30": {
        "name": {"pt": "Mês Dedicado", "en": "Dedicated Month", "es": "Mes Dedicado"},
        "description": {
            "pt": "30 dias consecutivos de treino",
            "en": "30 consecutive days of training",
            "es": "30 días consecutivos de entrenamiento",
        },
        "icon": "🔥🔥",
        "xp_reward": 500,
        "criteria": {"current_streak_days": 30},
    },
    "streak_100": {
        "name": {"pt": "Cem Dias", "en": "Hundred Days", "es": "Cien Días"},
        "description": {
            "pt": "100 dias consecutivos de treino",
            "en": "100 consecutive days of training",
            "es": "100 días consecutivos de entrenamiento",
        },
        "icon": "🔥🔥🔥",
        "xp_reward": 1000,
        "criteria": {"current_streak_days": 100},
    },
    "workouts_10": {
        "name": {"pt": "Dez Treinos", "en": "Ten Workouts", "es": "Diez Entrenamientos"},
        "description": {"pt": "Complete 10 treinos", "en": "Complete 10 workouts", "es": "Completa 10 entrenamientos"},
        "icon": "💪",
        "xp_reward": 150,
        "criteria": {"total_workouts_completed": 10},
    },
    "workouts_50": {
        "name": {"pt": "Cinquenta Treinos", "en": "Fifty Workouts", "es": "Cincuenta Entrenamientos"},
        "description": {"pt": "Complete 50 treinos", "en": "Complete 50 workouts", "es": "Completa 50 entrenamientos"},
        "icon": "💪💪",
        "xp_reward": 400,
        "criteria": {"total_workouts_completed": 50},
    },
    "workouts_100": {
        "name": {"pt": "Cem Treinos", "en": "Hundred Workouts", "es": "Cien Entrenamientos"},
        "description": {"pt": "Complete 100 treinos", "en": "Complete 100 workouts", "es": "Completa 100 entrenamientos"},
        "icon": "💪💪💪",
        "xp_reward": 750,
        "criteria": {"total_workouts_completed": 100},
    },
    "phase_foundation_complete": {
        "name": {"pt": "Base Sólida", "en": "Solid Foundation", "es": "Base Sólida"},
        "description": {
            "pt": "Complete a fase Fundação",
            "en": "Complete the Foundation phase",
            "es": "Completa la fase Fundación",
        },
        "icon": "🏗️",
        "xp_reward": 300,
        "criteria": {"completed_phase": "foundation"},
    },
    "phase_endurance_complete": {
        "name": {"pt": "Resistência Construída", "en": "Endurance Built", "es": "Resistencia Construida"},
        "description": {
            "pt": "Complete a fase Construção de Resistência",
            "en": "Complete the Endurance Building phase",
            "es": "Completa la fase Construcción de Resistencia",
        },
        "icon": "⛰️",
        "xp_reward": 500,
        "criteria": {"completed_phase": "endurance_building"},
    },
    "phase_speed_complete": {
        "name": {"pt": "Velocista", "en": "Speedster", "es": "Velocista"},
        "description": {
            "pt": "Complete a fase Velocidade e Força",
            "en": "Complete the Speed & Strength phase",
            "es": "Completa la fase Velocidad y Fuerza",
        },
        "icon": "⚡",
        "xp_reward": 750,
        "criteria": {"completed_phase": "speed_strength"},
    },
    "level_max_any_phase": {
        "name": {"pt": "Nível Máximo", "en": "Max Level", "es": "Nivel Máximo"},
        "description": {
            "pt": "Atinja o nível 10 em qualquer fase",
            "en": "Reach level 10 in any phase",
            "es": "Alcanza el nivel 10 en cualquier fase",
        },
        "icon": "⭐",
        "xp_reward": 500,
        "criteria": {"max_level_reached": 10},
    },
}

_WORKOUT_DISTRIBUTIONS: dict[str, dict[int, list[str]]] = {
    "foundation": {
        3: ["walk_run_intervals", "easy_run", "walk_run_intervals"],
        4: ["walk_run_intervals", "easy_run", "walk_run_intervals", "easy_run"],
        5: ["walk_run_intervals", "easy_run", "walk_run_intervals", "easy_run", "recovery_run"],
    },
    "endurance_building": {
        3: ["easy_run", "tempo_run", "long_run"],
        4: ["easy_run", "interval_training", "easy_run", "long_run"],
        5: ["easy_run", "interval_training", "tempo_run", "easy_run", "long_run"],
    },
    "speed_strength": {
        3: ["interval_training", "tempo_run", "long_run"],
        4: ["easy_run", "interval_training", "hill_repeats", "long_run"],
        5: ["easy_run", "interval_training", "tempo_run", "hill_repeats", "long_run"],
    },
    "advanced_training": {
        4: ["easy_run", "vo2max_intervals", "tempo_run", "long_run"],
        5: ["easy_run", "vo2max_intervals", "tempo_run", "marathon_pace", "long_run"],
        6: ["recovery_run", "easy_run", "vo2max_intervals", "tempo_run", "marathon_pace", "long_run"],
    },
    "elite_performance": {
        5: ["recovery_run", "specialized_intervals", "tempo_run", "race_specific", "ultra_long_runs"],
        6: ["recovery_run", "easy_run", "specialized_intervals", "tempo_run", "race_specific", "ultra_long_runs"],
    },
}

_MOTIVATIONAL_MESSAGES: dict[str, dict[str, str]] = {
    "pt": {
        "first": "Vamos começar! Todo campeão deu o primeiro passo 🏃‍♂️",
        "easy": "Treino tranquilo hoje! Construindo a base sólida 💪",
        "challenging": "Hora do desafio! Você é mais forte do que imagina 🔥",
        "final": "Último treino da semana! Finalize com estilo 🏆",
    },
    "en": {
        "first": "Let's start! Every champion took the first step 🏃‍♂️",
        "easy": "Easy training today! Building a solid foundation 💪",
        "challenging": "Challenge time! You're stronger than you think 🔥",
        "final": "Last workout of the week! Finish with style 🏆",
    },
    "es": {
        "first": "¡Empecemos! Todo campeón dio el primer paso 🏃‍♂️",
        "easy": "¡Entrenamiento fácil hoy! Construyendo una base sólida 💪",
        "challenging": "¡Hora del desafío! Eres más fuerte de lo que crees 🔥",
        "final": "¡Último entrenamiento de la semana! Termina con estilo 🏆",
    },
}


def _build_default_catalog() -> ProgressionCatalog:
    return ProgressionCatalog(
        version=CATALOG_VERSION,
        xp_base_rates=_freeze({
            "easy_run": 10,
            "recovery_run": 8,
            "walk_run_intervals": 12,
            "long_run": 15,
            "tempo_run": 18,
            "interval_training": 20,
            "hill_repeats": 22,
            "vo2max_intervals": 25,
            "marathon_pace": 16,
            "strength_runs": 20,
            "race_specific": 24,
            "ultra_long_runs": 18,
            "specialized_intervals": 28,
            "recovery_protocols": 12,
        }),
        fallback_workout_type="easy_run",
        duration_multipliers=((30, 1.0), (60, 1.1), (90, 1.2), (None, 1.3)),
        consistency_bonuses=((30, 750), (14, 300), (7, 150), (3, 50)),
        completion_bonuses=_freeze({
            "easy_run": 25,
            "interval_training": 50,
            "long_run": 75,
            "tempo_run": 40,
            "hill_repeats": 45,
            "vo2max_intervals": 60,
        }),
        default_completion_bonus=25,
        special_bonuses=_freeze({
            "firstTimeBonus": 100,
            "personalRecordBonus": 200,
            "weeklyChallengeBonus": 150,
            "paceImprovementBonus": 75,
        }),
        achievements=MappingProxyType(
            {key: Achievement.from_mapping(key, value) for key, value in _ACHIEVEMENTS.items()}
        ),
        workout_distributions=_freeze(_WORKOUT_DISTRIBUTIONS),
        default_distribution_phase="foundation",
        default_weekly_frequency=3,
        default_session_minutes=60,
        default_training_days=("monday", "wednesday", "friday"),
        pace_estimates_km_per_min=_freeze({
            "walk_run_intervals": 0.08,
            "easy_run": 0.10,
            "recovery_run": 0.09,
            "tempo_run": 0.12,
            "interval_training": 0.11,
            "long_run": 0.10,
            "hill_repeats": 0.09,
            "vo2max_intervals": 0.10,
            "marathon_pace": 0.13,
            "race_specific": 0.14,
            "ultra_long_runs": 0.09,
        }),
        default_pace_km_per_min=0.10,
        difficulty_by_type=_freeze({
            "walk_run_intervals": 1,
            "recovery_run": 1,
            "easy_run": 2,
            "tempo_run": 4,
            "interval_training": 4,
            "long_run": 3,
            "hill_repeats": 5,
            "vo2max_intervals": 5,
            "marathon_pace": 4,
            "race_specific": 5,
            "ultra_long_runs": 4,
            "specialized_intervals": 5,
        }),
        default_difficulty=2,
        level_difficulty_steps=((8, 1.0), (5, 0.5)),
        motivational_messages=_freeze(_MOTIVATIONAL_MESSAGES),
        tier_recommendations=_freeze({
            "beginner": {
                "weekly_frequency": 3,
                "session_duration": 30,
                "starting_intensity": "easy",
                "focus_areas": ["establish_routine", "build_base_endurance"],
            },
            "intermediate": {
                "weekly_frequency": 4,
                "session_duration": 45,
                "starting_intensity": "moderate",
                "focus_areas": ["increase_volume", "add_variety"],
            },
            "advanced": {
                "weekly_frequency": 5,
                "session_duration": 60,
                "starting_intensity": "moderate_hard",
                "focus_areas": ["specific_training", "performance_optimization"],
            },
        }),
        tier_placements=MappingProxyType({
            "beginner": (None, 1),
            "intermediate": ("endurance_building", 3),
            "advanced": ("speed_strength", 5),
        }),
        goal_bonuses=_freeze({"marathon": 10, "half_marathon": 7, "run_10k": 5}),
        beginner_goals=("start_running", "run_5k"),
    )


@lru_cache(maxsize=1)
def default_catalog() -> ProgressionCatalog:
    return _build_default_catalog()


def _convert_overlay(key: str, value: Any) -> Any:
    if key == "achievements":
        return MappingProxyType({k: Achievement.from_mapping(k, v) for k, v in dict(value).items()})
    if key == "workout_distributions":
        return _freeze({
            phase: {int(freq): list(types) for freq, types in dict(table).items()}
            for phase, table in dict(value).items()
        })
    if key in {"duration_multipliers", "consistency_bonuses", "level_difficulty_steps"}:
        return tuple(tuple(step) for step in value)
    if key == "tier_placements":
        return MappingProxyType({tier: (placement[0], int(placement[1])) for tier, placement in dict(value).items()})
    return _freeze(value)


def load_catalog(path: Path | str) -> ProgressionCatalog:
    """Overlay the top-level tables of a JSON document on the embedded defaults.

    Raises ``OSError`` / ``ValueError`` on unreadable or malformed files;
    unknown keys are logged and ignored.
    """
    payload = json.loads(Path(path).expanduser().read_text())
    if not isinstance(payload, dict):
        raise ValueError("catalog document must be a JSON object")

    known = {f.name for f in fields(ProgressionCatalog)}
    overrides: dict[str, Any] = {}
    for key, value in payload.items():
        if key not in known:
            logger.warning("Ignoring unknown catalog table %s", key, extra={"ctx_catalog_path": str(path)})
            continue
        overrides[key] = _convert_overlay(key, value)
    return replace(default_catalog(), **overrides)


@lru_cache(maxsize=1)
def get_catalog() -> ProgressionCatalog:
    """Catalog for this process: configured JSON overlay, else embedded defaults."""
    path = get_settings().catalog_path
    if not path:
        return default_catalog()
    try:
        catalog = load_catalog(path)
    except (OSError, ValueError, TypeError, IndexError) as exc:
        logger.warning("Catalog overlay unusable, using embedded defaults: %s", exc, extra={"ctx_catalog_path": path})
        return default_catalog()
    logger.info("Loaded progression catalog overlay", extra={"ctx_catalog_path": path})
    return catalog
