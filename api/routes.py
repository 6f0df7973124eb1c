from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends
from fastapi.encoders import jsonable_encoder

from api.deps import get_store
from api.schemas import ErrorOut, HealthOut, PhaseOut, ResultOut
from runquest.catalog import get_catalog
from runquest.config import get_settings
from runquest.errors import NotFound, ProgressionError, ServiceResult
from runquest.services.adaptation import adapt_existing_plan, generate_adaptive_plan
from runquest.services.phases import promote_to_next_phase
from runquest.services.progression import get_progression_stats, list_training_phases, record_workout_completion
from runquest.store import ProgressionStore

router = APIRouter(
    prefix="/api/v1",
    responses={code: {"model": ErrorOut} for code in (400, 404, 409, 500)},
)

StoreDep = Annotated[ProgressionStore, Depends(get_store)]


def _respond(result: ServiceResult) -> dict[str, Any]:
    if not result.success:
        raise result.error or ProgressionError("Operation failed")
    return jsonable_encoder(result.to_dict())


@router.get("/health", response_model=HealthOut, tags=["system"])
def health():
    return HealthOut(environment=get_settings().app_env, catalog_version=get_catalog().version)


@router.get("/phases", response_model=list[PhaseOut], tags=["phases"])
def phases(store: StoreDep):
    return [PhaseOut(**phase.to_dict()) for phase in list_training_phases(store)]


@router.post("/users/{user_id}/adaptive-plan", response_model=ResultOut, status_code=201, tags=["plans"])
def create_adaptive_plan(user_id: int, store: StoreDep):
    return _respond(generate_adaptive_plan(store, user_id))


@router.post("/users/{user_id}/plans/{plan_id}/adapt", response_model=ResultOut, tags=["plans"])
def adapt_plan(user_id: int, plan_id: int, store: StoreDep):
    return _respond(adapt_existing_plan(store, user_id, plan_id))


@router.post("/users/{user_id}/workouts/complete", response_model=ResultOut, tags=["progression"])
def complete_workout(user_id: int, store: StoreDep, payload: Annotated[dict[str, Any], Body()]):
    # Validated by the service; bad input raises ValidationFailure (400).
    return _respond(record_workout_completion(store, user_id, payload))


@router.get("/users/{user_id}/progress", response_model=ResultOut, tags=["progression"])
def progress(user_id: int, store: StoreDep):
    record = store.get_progress(user_id)
    if record is None:
        raise NotFound("User progress", {"user_id": user_id})
    return _respond(ServiceResult.ok(record))


@router.get("/users/{user_id}/stats", response_model=ResultOut, tags=["progression"])
def stats(user_id: int, store: StoreDep):
    return _respond(get_progression_stats(store, user_id))


@router.post("/users/{user_id}/phase/advance", response_model=ResultOut, tags=["phases"])
def advance_phase(user_id: int, store: StoreDep):
    return _respond(promote_to_next_phase(store, user_id))
