import json
import logging

import pytest

from storyloom.modules.migration.config import PRESETS, MigrationConfig, initial_config, preset
from storyloom.modules.migration.controller import (
    LEGACY_PROVIDER_LABEL,
    NEXT_GEN_PROVIDER_LABEL,
    BackendVersion,
    BothBackendsFailedError,
    MigrationController,
    stable_user_hash,
)


def _ok(label: str):
    return lambda: label


def _fail(message: str):
    def _call():
        raise RuntimeError(message)

    return _call


def test_stable_user_hash_known_values() -> None:
    assert stable_user_hash("") == 0
    assert stable_user_hash("a") == 97
    assert stable_user_hash("ab") == 3105
    assert stable_user_hash("user-0123456789") >= 0


def test_selection_is_deterministic_per_user() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=50))
    for user_id in ("alice", "bob", "carol", "user-42"):
        versions = {controller.choose_version(user_id) for _ in range(20)}
        assert len(versions) == 1


def test_rollout_percentage_is_approximated() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=30))
    users = [f"reader-{index}" for index in range(2000)]
    share = sum(controller.choose_version(user) is BackendVersion.NEXT_GEN for user in users) / len(users)
    assert 0.2 <= share <= 0.4


def test_anonymous_requests_use_random_draw() -> None:
    draws = iter([0.10, 0.90])
    controller = MigrationController(MigrationConfig(rollout_percentage=50), rng=lambda: next(draws))
    assert controller.choose_version(None) is BackendVersion.NEXT_GEN
    assert controller.choose_version(None) is BackendVersion.LEGACY


def test_force_and_disable_flags() -> None:
    forced = MigrationController(MigrationConfig(enable_next_gen=False, rollout_percentage=0, force_next_gen_in_dev=True))
    assert forced.choose_version("anyone") is BackendVersion.NEXT_GEN
    disabled = MigrationController(MigrationConfig(enable_next_gen=False, rollout_percentage=100))
    assert disabled.choose_version("anyone") is BackendVersion.LEGACY


def test_next_gen_success() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=100))
    result = controller.execute("story_generation", _ok("v1"), _ok("v2"), user_id="u")
    assert result.result == "v2"
    assert result.version_used is BackendVersion.NEXT_GEN
    assert result.was_error is False
    assert result.provider_label == NEXT_GEN_PROVIDER_LABEL
    assert result.duration_ms >= 0


def test_fallback_to_legacy_reports_error() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=100, fallback_to_legacy=True))
    result = controller.execute("story_generation", _ok("v1"), _fail("next-gen down"), user_id="u")
    assert result.result == "v1"
    assert result.version_used is BackendVersion.LEGACY
    assert result.was_error is True
    assert result.error_message == "next-gen down"
    assert result.provider_label == LEGACY_PROVIDER_LABEL


def test_fallback_disabled_propagates_original_error() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=100, fallback_to_legacy=False))
    original = RuntimeError("next-gen down")

    def _raise():
        raise original

    with pytest.raises(RuntimeError) as exc_info:
        controller.execute("story_generation", _ok("v1"), _raise, user_id="u")
    assert exc_info.value is original


def test_legacy_failure_has_no_further_fallback() -> None:
    controller = MigrationController(MigrationConfig(enable_next_gen=False))
    calls = []

    def _next_gen():
        calls.append("v2")
        return "v2"

    with pytest.raises(RuntimeError, match="legacy down"):
        controller.execute("story_generation", _fail("legacy down"), _next_gen, user_id="u")
    assert calls == []


def test_both_failures_are_concatenated() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=100))
    with pytest.raises(BothBackendsFailedError) as exc_info:
        controller.execute("story_generation", _fail("legacy down"), _fail("next-gen down"), user_id="u")
    message = str(exc_info.value)
    assert "next-gen down" in message and "legacy down" in message
    assert message.startswith("Both V2 and V1 failed")


def test_every_execution_is_logged(caplog) -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=0))
    with caplog.at_level(logging.INFO, logger="storyloom.modules.migration.controller"):
        controller.execute("story_generation", _ok("v1"), _ok("v2"))
    records = [r.getMessage() for r in caplog.records if r.getMessage().startswith("ai_migration ")]
    assert len(records) == 1
    payload = json.loads(records[0].split(" ", 1)[1])
    assert payload["userId"] == "anonymous"
    assert payload["version"] == "v1"
    assert payload["wasError"] is False


def test_logging_can_be_disabled(caplog) -> None:
    controller = MigrationController(PRESETS["full"])
    with caplog.at_level(logging.INFO, logger="storyloom.modules.migration.controller"):
        controller.execute("story_generation", _ok("v1"), _ok("v2"), user_id="u")
    assert not [r for r in caplog.records if r.getMessage().startswith("ai_migration ")]


def test_admin_operations_clamp_and_apply() -> None:
    controller = MigrationController(MigrationConfig(rollout_percentage=95))
    assert controller.increase_rollout(10).rollout_percentage == 100
    assert controller.decrease_rollout(25).rollout_percentage == 75
    assert controller.decrease_rollout(200).rollout_percentage == 0

    emergency = controller.emergency_fallback()
    assert (emergency.enable_next_gen, emergency.rollout_percentage) == (False, 0)
    assert controller.choose_version("anyone") is BackendVersion.LEGACY

    complete = controller.complete_migration()
    assert (complete.enable_next_gen, complete.rollout_percentage, complete.fallback_to_legacy) == (True, 100, False)

    assert controller.apply_preset("beta") == preset("beta")
    with pytest.raises(ValueError):
        controller.apply_preset("warp-speed")


def test_emergency_fallback_overrides_development_forcing() -> None:
    controller = MigrationController(initial_config("development"))
    assert controller.choose_version("reader-1") is BackendVersion.NEXT_GEN

    emergency = controller.emergency_fallback()
    assert emergency.force_next_gen_in_dev is False
    assert controller.choose_version("reader-1") is BackendVersion.LEGACY
    assert controller.choose_version(None) is BackendVersion.LEGACY

    controller.apply_preset("development")
    controller.emergency_fallback()
    assert controller.choose_version("reader-2") is BackendVersion.LEGACY


def test_controllers_do_not_share_state() -> None:
    first = MigrationController(MigrationConfig())
    second = MigrationController(MigrationConfig())
    first.emergency_fallback()
    assert second.config.enable_next_gen is True


def test_presets_and_defaults() -> None:
    assert preset("development") == MigrationConfig(True, 100, True, True, True)
    assert preset("emergency") == MigrationConfig(False, 0, False, False, True)
    assert initial_config("development").force_next_gen_in_dev is True
    assert initial_config("prod") == MigrationConfig(True, 25, True, False, True)
    assert initial_config("prod", "gradual") == PRESETS["gradual"]
    with pytest.raises(ValueError):
        MigrationConfig(rollout_percentage=101)
