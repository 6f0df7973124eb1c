"""Pydantic validation models for the progression entry points."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Iterable, Mapping, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from runquest.errors import ValidationFailure
from runquest.records import InjuryRecord, Workout, as_naive_utc

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DIFFICULTIES = {"easy", "moderate", "hard", "very_hard"}


class WorkoutCompletionInput(BaseModel):
    type: str = Field(min_length=1, max_length=60, validation_alias=AliasChoices("type", "workout_type"))
    distance_km: float = Field(gt=0, le=500, validation_alias=AliasChoices("distance_km", "distance"))
    duration_min: float = Field(gt=0, le=24 * 60, validation_alias=AliasChoices("duration_min", "duration"))
    difficulty: str = "moderate"
    completed_at: Optional[dt.datetime] = None

    @field_validator("type")
    @classmethod
    def normalized_type(cls, v):
        return v.strip().lower()

    @field_validator("difficulty")
    @classmethod
    def valid_difficulty(cls, v):
        if v not in DIFFICULTIES:
            raise ValueError(f"difficulty must be one of {sorted(DIFFICULTIES)}")
        return v

    @field_validator("completed_at")
    @classmethod
    def naive_utc(cls, v):
        return as_naive_utc(v)

    def to_workout(self) -> Workout:
        return Workout(
            type=self.type,
            distance_km=self.distance_km,
            duration_min=self.duration_min,
            difficulty=self.difficulty,
        )


class InjuryRecordInput(BaseModel):
    type: str = Field(min_length=1, max_length=80)
    date: dt.date
    recovered: bool = False

    @field_validator("date")
    @classmethod
    def not_in_future(cls, v):
        if v > dt.date.today():
            raise ValueError("injury date must not be in the future")
        return v

    def to_record(self) -> InjuryRecord:
        return InjuryRecord(type=self.type, date=self.date, recovered=self.recovered)


def validate_payload(model: Type[ModelT], payload: Mapping[str, Any]) -> ModelT:
    """Validate ``payload`` or raise ``ValidationFailure`` with per-field errors."""
    try:
        return model.model_validate(dict(payload))
    except ValidationError as exc:
        fields = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationFailure("Invalid input data", {"fields": fields}) from exc


def parse_workout_completion(payload: Mapping[str, Any]) -> WorkoutCompletionInput:
    return validate_payload(WorkoutCompletionInput, payload)


def parse_injury_history(entries: Optional[Iterable[Any]]) -> tuple[InjuryRecord, ...]:
    """Valid injury entries from a stored profile; malformed ones are logged and skipped."""
    records = []
    for entry in entries or ():
        if not isinstance(entry, Mapping):
            logger.warning("Skipping injury entry that is not an object: %r", entry)
            continue
        try:
            records.append(validate_payload(InjuryRecordInput, entry).to_record())
        except ValidationFailure as exc:
            logger.warning("Skipping invalid injury entry", extra={"ctx_details": exc.details})
    return tuple(records)
