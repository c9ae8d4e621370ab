from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from storyloom.errors import ValidationFailedError
from storyloom.modules.access.deps import require_admin
from storyloom.modules.migration.config import MigrationConfig
from storyloom.modules.migration.controller import MigrationController
from storyloom.modules.migration.schemas import MigrationConfigResponse, RolloutStepRequest

router = APIRouter(prefix="/admin/migration", tags=["admin"])

DEFAULT_INCREASE_STEP = 10
DEFAULT_DECREASE_STEP = 25


def get_migration_controller(request: Request) -> MigrationController:
    return request.app.state.migration_controller


def _response(config: MigrationConfig) -> MigrationConfigResponse:
    return MigrationConfigResponse(**config.to_payload())


@router.get("", response_model=MigrationConfigResponse)
def read_migration_config(
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    return _response(controller.config)


@router.post("/rollout/increase", response_model=MigrationConfigResponse)
def increase_rollout(
    payload: RolloutStepRequest | None = None,
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    step = payload.step if payload and payload.step else DEFAULT_INCREASE_STEP
    return _response(controller.increase_rollout(step))


@router.post("/rollout/decrease", response_model=MigrationConfigResponse)
def decrease_rollout(
    payload: RolloutStepRequest | None = None,
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    step = payload.step if payload and payload.step else DEFAULT_DECREASE_STEP
    return _response(controller.decrease_rollout(step))


@router.post("/preset/{name}", response_model=MigrationConfigResponse)
def apply_preset(
    name: str,
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    try:
        return _response(controller.apply_preset(name))
    except ValueError as exc:
        raise ValidationFailedError(str(exc), details={"preset": name}) from exc


@router.post("/emergency", response_model=MigrationConfigResponse)
def emergency_fallback(
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    return _response(controller.emergency_fallback())


@router.post("/complete", response_model=MigrationConfigResponse)
def complete_migration(
    _: dict = Depends(require_admin),
    controller: MigrationController = Depends(get_migration_controller),
) -> MigrationConfigResponse:
    return _response(controller.complete_migration())
