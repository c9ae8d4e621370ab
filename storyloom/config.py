import os
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine, inspect, text

DEV_DEFAULT_DB_URL = "sqlite:///./dev.db"
DEV_REQUIRED_COLUMNS: dict[str, set[str]] = {
    "stories": {"story_mode", "target_age", "audio_generation_status", "prepaid_segments"},
    "story_segments": {"position", "parent_segment_id", "image_status", "audio_status"},
    "credit_accounts": {"sequence", "lifetime_earned", "lifetime_spent"},
    "credit_transactions": {"sequence", "reason", "reference_id"},
}


class Settings(BaseSettings):
    app_name: str = "storyloom"
    env: str = "dev"
    log_level: str = "INFO"
    database_url: str = "sqlite+pysqlite:///./app.db"
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    jwt_secret: str = "change-me"
    jwt_exp_minutes: int = 60 * 24
    identity_provider_url: str = "local"
    admin_role: str = "admin"

    text_provider: str = "openai"
    nextgen_base_url: str = "https://api.openai.com/v1"
    nextgen_api_key: str = ""
    nextgen_model: str = "gpt-4o"
    legacy_base_url: str = "https://oai.endpoints.kepler.ai.cloud.ovh.net/v1"
    legacy_api_key: str = ""
    legacy_model: str = "Meta-Llama-3_3-70B-Instruct"
    text_temperature: float = 0.7

    image_provider: str = "sdxl"
    image_base_url: str = ""
    image_api_key: str = ""
    tts_provider: str = "riva"
    tts_base_url: str = ""
    tts_api_key: str = ""

    ai_connect_timeout_s: float = 5.0
    ai_read_timeout_s: float = 30.0
    ai_total_timeout_s: float = 45.0
    image_timeout_s: float = 90.0
    tts_timeout_s: float = 30.0

    asset_storage_dir: str = "./storage"
    asset_public_base_url: str = "http://127.0.0.1:8000/assets"
    asset_jobs_after_response: bool = True
    asset_job_stale_after_s: float = 600.0

    initial_free_credits: int = 15
    extra_segment_cost: int = 1
    story_max_segments: int = 10

    migration_preset: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def _is_sqlite_memory_url(db_url: str) -> bool:
    candidate = (db_url or "").strip().lower()
    if not candidate.startswith("sqlite"):
        return False
    if ":memory:" in candidate:
        return True
    return candidate in {
        "sqlite://",
        "sqlite:///",
        "sqlite+pysqlite://",
        "sqlite+pysqlite:///",
    }


def validate_database_url(env: str, db_url: str | None) -> str:
    env_value = (env or "").strip().lower()
    if env_value != "dev":
        return db_url or ""

    if not db_url or not db_url.strip():
        return DEV_DEFAULT_DB_URL

    if _is_sqlite_memory_url(db_url):
        raise RuntimeError(
            "DATABASE_URL cannot be sqlite :memory: when ENV=dev because stories and credits would vanish. "
            f"Set DATABASE_URL={DEV_DEFAULT_DB_URL} or another file-based sqlite url."
        )
    return db_url


@lru_cache(maxsize=1)
def current_alembic_head_revision() -> str:
    from alembic.config import Config
    from alembic.script import ScriptDirectory

    ini_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parent / "db" / "migrations"))
    script_dir = ScriptDirectory.from_config(cfg)
    head = script_dir.get_current_head()
    if not head:
        raise RuntimeError("Unable to resolve Alembic head revision from migration scripts.")
    return str(head)


def ensure_dev_database_schema(
    db_url: str,
    required_tables: Iterable[str] = (
        "alembic_version",
        "stories",
        "story_segments",
        "credit_accounts",
        "credit_transactions",
        "asset_jobs",
    ),
    required_columns: dict[str, set[str]] = DEV_REQUIRED_COLUMNS,
) -> None:
    if not db_url:
        return
    engine = create_engine(db_url, future=True)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    problems: list[str] = []

    missing_tables = [name for name in required_tables if name not in tables]
    if missing_tables:
        problems.append(f"missing tables: {', '.join(sorted(missing_tables))}")

    if "alembic_version" in tables:
        with engine.connect() as conn:
            db_revision = conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar_one_or_none()
        db_revision = str(db_revision or "").strip()
        head = current_alembic_head_revision()
        if db_revision != head:
            problems.append(f"alembic_version={db_revision or 'empty'} (expected {head})")

    for table_name, expected_cols in required_columns.items():
        if table_name not in tables:
            continue
        actual_cols = {col["name"] for col in inspector.get_columns(table_name)}
        for col in sorted(col for col in expected_cols if col not in actual_cols):
            problems.append(f"missing column {table_name}.{col}")

    engine.dispose()
    if problems:
        details = "; ".join(problems)
        raise RuntimeError(
            f"dev schema mismatch for DATABASE_URL={db_url}: {details}. "
            f"Run ENV=dev DATABASE_URL={db_url} python -m alembic upgrade head"
        )


settings = Settings()
_raw_db_url = os.getenv("DATABASE_URL")
if settings.env == "dev":
    settings.database_url = validate_database_url(settings.env, _raw_db_url)
else:
    settings.database_url = validate_database_url(settings.env, _raw_db_url or settings.database_url)
