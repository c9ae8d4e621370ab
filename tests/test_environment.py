import pytest
from fastapi.testclient import TestClient

from storyloom.config import Settings, settings
from storyloom.main import app
from storyloom.modules.access.environment import validate_environment
from tests.support.auth import bearer
from tests.support.stories import create_story


def test_text_generation_needs_one_backend() -> None:
    config = Settings(text_provider="openai", nextgen_api_key="", legacy_api_key="")
    report = validate_environment(["text_generation"], config)
    assert report.ok is False
    assert report.missing == ["nextgen_api_key|legacy_api_key"]

    legacy_only = Settings(text_provider="openai", nextgen_api_key="", legacy_api_key="sk-legacy")
    assert validate_environment(["text_generation"], legacy_only).ok is True


def test_placeholder_values_count_as_missing() -> None:
    config = Settings(tts_provider="riva", tts_base_url="https://tts.example.test", tts_api_key="your-placeholder-key")
    report = validate_environment(["speech"], config)
    assert report.missing == ["tts_api_key"]


def test_fake_providers_satisfy_capabilities() -> None:
    config = Settings(text_provider="fake", image_provider="fake", tts_provider="fake")
    assert validate_environment(["text_generation", "image_generation", "speech"], config).ok is True


def test_unknown_capability_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        validate_environment(["teleportation"], Settings())


def test_missing_ai_credentials_fail_fast_with_configuration_error(monkeypatch) -> None:
    monkeypatch.setattr(settings, "text_provider", "openai")
    monkeypatch.setattr(settings, "nextgen_api_key", "")
    monkeypatch.setattr(settings, "legacy_api_key", "")
    client = TestClient(app)

    resp = create_story(client, bearer("cfg-user"))
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "SERVICE_CONFIGURATION_ERROR"
    assert error["details"]["missing"] == ["nextgen_api_key|legacy_api_key"]

    balance = client.get("/credits/balance", headers=bearer("cfg-user")).json()
    assert balance["balance"] == 15
