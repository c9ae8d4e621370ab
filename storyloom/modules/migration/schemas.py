from __future__ import annotations

from pydantic import BaseModel, Field


class MigrationConfigResponse(BaseModel):
    enable_next_gen: bool
    rollout_percentage: int
    fallback_to_legacy: bool
    force_next_gen_in_dev: bool
    log_all_requests: bool


class RolloutStepRequest(BaseModel):
    step: int | None = Field(default=None, ge=1, le=100)
