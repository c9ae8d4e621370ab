"""Routes text generation between the legacy and next-generation backends.

A controller owns one :class:`MigrationConfig`; the application keeps a
single controller on ``app.state`` and tests build their own.
"""

from __future__ import annotations

import enum
import json
import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from storyloom.modules.migration.config import MigrationConfig, preset
from storyloom.utils.time import utc_now_aware

logger = logging.getLogger(__name__)

T = TypeVar("T")

NEXT_GEN_PROVIDER_LABEL = "OpenAI Responses API"
LEGACY_PROVIDER_LABEL = "Legacy Chat Completions"


class BackendVersion(str, enum.Enum):
    LEGACY = "v1"
    NEXT_GEN = "v2"


class BothBackendsFailedError(RuntimeError):
    """Raised when the next-generation call and its legacy fallback both fail."""

    def __init__(self, next_gen_error: BaseException, legacy_error: BaseException):
        super().__init__(f"Both V2 and V1 failed: V2({next_gen_error}) V1({legacy_error})")
        self.next_gen_error = next_gen_error
        self.legacy_error = legacy_error


@dataclass(frozen=True, slots=True)
class MigrationResult(Generic[T]):
    result: T
    version_used: BackendVersion
    was_error: bool
    duration_ms: int
    provider_label: str
    error_message: str | None = None


def stable_user_hash(value: str) -> int:
    """31-multiplier string hash over UTF-16 code units, as a non-negative int.

    Matches the bucketing used by earlier clients so users keep their bucket.
    """
    acc = 0
    encoded = value.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        acc = (acc * 31 + unit) & 0xFFFFFFFF
    if acc >= 0x80000000:
        acc -= 0x100000000
    return abs(acc)


class MigrationController:
    def __init__(
        self,
        config: MigrationConfig | None = None,
        *,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._config = config or MigrationConfig()
        self._rng = rng
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def config(self) -> MigrationConfig:
        return self._config

    def choose_version(self, user_id: str | None = None) -> BackendVersion:
        config = self._config
        if config.force_next_gen_in_dev:
            return BackendVersion.NEXT_GEN
        if not config.enable_next_gen:
            return BackendVersion.LEGACY
        if user_id:
            bucket = stable_user_hash(user_id) % 100
        else:
            bucket = self._rng() * 100
        if bucket < config.rollout_percentage:
            return BackendVersion.NEXT_GEN
        return BackendVersion.LEGACY

    def execute(
        self,
        operation_type: str,
        legacy_call: Callable[[], T],
        next_gen_call: Callable[[], T],
        user_id: str | None = None,
    ) -> MigrationResult[T]:
        config = self._config
        version = self.choose_version(user_id)
        started = self._clock()

        if version is BackendVersion.LEGACY:
            try:
                result = legacy_call()
            except Exception as exc:
                self._log(operation_type, version, user_id, started, was_error=True, error=exc, config=config)
                raise
            return self._finish(operation_type, version, user_id, started, result, config=config)

        try:
            result = next_gen_call()
        except Exception as next_gen_exc:
            if not config.fallback_to_legacy:
                self._log(operation_type, version, user_id, started, was_error=True, error=next_gen_exc, config=config)
                raise
            logger.warning("%s: next-gen backend failed, falling back to legacy: %s", operation_type, next_gen_exc)
            try:
                result = legacy_call()
            except Exception as legacy_exc:
                error = BothBackendsFailedError(next_gen_exc, legacy_exc)
                self._log(operation_type, BackendVersion.LEGACY, user_id, started, was_error=True, error=error, config=config)
                raise error from legacy_exc
            return self._finish(
                operation_type,
                BackendVersion.LEGACY,
                user_id,
                started,
                result,
                config=config,
                error_message=str(next_gen_exc),
            )
        return self._finish(operation_type, version, user_id, started, result, config=config)

    def _finish(
        self,
        operation_type: str,
        version: BackendVersion,
        user_id: str | None,
        started: float,
        result: T,
        *,
        config: MigrationConfig,
        error_message: str | None = None,
    ) -> MigrationResult[T]:
        duration_ms = self._log(
            operation_type,
            version,
            user_id,
            started,
            was_error=error_message is not None,
            error=error_message,
            config=config,
        )
        return MigrationResult(
            result=result,
            version_used=version,
            was_error=error_message is not None,
            duration_ms=duration_ms,
            provider_label=_provider_label(version),
            error_message=error_message,
        )

    def _log(
        self,
        operation_type: str,
        version: BackendVersion,
        user_id: str | None,
        started: float,
        *,
        was_error: bool,
        error: Any,
        config: MigrationConfig,
    ) -> int:
        duration_ms = int(max(0.0, self._clock() - started) * 1000)
        if config.log_all_requests:
            record = {
                "timestamp": utc_now_aware().isoformat(),
                "operationType": operation_type,
                "version": version.value,
                "wasError": was_error,
                "errorMessage": str(error) if error is not None else None,
                "duration": duration_ms,
                "provider": _provider_label(version),
                "userId": user_id or "anonymous",
            }
            logger.info("ai_migration %s", json.dumps(record, sort_keys=True))
        return duration_ms

    def increase_rollout(self, step: int = 10) -> MigrationConfig:
        with self._lock:
            self._config = self._config.with_rollout(self._config.rollout_percentage + int(step))
            return self._config

    def decrease_rollout(self, step: int = 25) -> MigrationConfig:
        with self._lock:
            self._config = self._config.with_rollout(self._config.rollout_percentage - int(step))
            return self._config

    def emergency_fallback(self) -> MigrationConfig:
        with self._lock:
            self._config = replace(
                self._config, enable_next_gen=False, rollout_percentage=0, force_next_gen_in_dev=False
            )
            logger.warning("emergency fallback: all text generation routed to legacy backend")
            return self._config

    def complete_migration(self) -> MigrationConfig:
        with self._lock:
            self._config = replace(self._config, enable_next_gen=True, rollout_percentage=100, fallback_to_legacy=False)
            return self._config

    def apply_preset(self, name: str) -> MigrationConfig:
        config = preset(name)
        with self._lock:
            self._config = config
            logger.info("migration preset applied: %s", name)
            return self._config


def _provider_label(version: BackendVersion) -> str:
    return NEXT_GEN_PROVIDER_LABEL if version is BackendVersion.NEXT_GEN else LEGACY_PROVIDER_LABEL
