from __future__ import annotations

from pathlib import Path

import pytest

from storyloom.config import settings
from storyloom.db import session as db_session
from storyloom.db.base import Base
from storyloom.db.models import AssetJob, CreditAccount, CreditTransaction, Story, StorySegment  # noqa: F401
from storyloom.main import app
from storyloom.modules.migration.config import MigrationConfig
from storyloom.modules.migration.controller import MigrationController


@pytest.fixture(autouse=True)
def _reset_db_and_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "env", "test")
    monkeypatch.setattr(settings, "jwt_secret", "test-secret")
    monkeypatch.setattr(settings, "identity_provider_url", "local")
    monkeypatch.setattr(settings, "admin_role", "admin")
    monkeypatch.setattr(settings, "text_provider", "fake")
    monkeypatch.setattr(settings, "image_provider", "fake")
    monkeypatch.setattr(settings, "tts_provider", "fake")
    monkeypatch.setattr(settings, "asset_storage_dir", str(tmp_path / "storage"))
    monkeypatch.setattr(settings, "asset_public_base_url", "http://testserver/assets")
    monkeypatch.setattr(settings, "asset_jobs_after_response", True)
    monkeypatch.setattr(settings, "initial_free_credits", 15)
    monkeypatch.setattr(settings, "extra_segment_cost", 1)
    monkeypatch.setattr(settings, "story_max_segments", 10)

    db_session.rebind_engine(f"sqlite+pysqlite:///{tmp_path / 'storyloom_test.db'}")
    Base.metadata.create_all(bind=db_session.engine)
    app.state.migration_controller = MigrationController(MigrationConfig.defaults("test"))
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=db_session.engine)
    db_session.engine.dispose()


@pytest.fixture()
def db():
    session = db_session.new_session()
    try:
        yield session
    finally:
        session.close()
