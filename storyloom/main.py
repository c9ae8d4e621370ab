from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from storyloom.config import ensure_dev_database_schema, settings
from storyloom.db import session as db_session
from storyloom.errors import install_error_handlers
from storyloom.logging_setup import configure_logging
from storyloom.modules.assets.router import router as assets_router
from storyloom.modules.credits.router import router as credits_router
from storyloom.modules.migration.config import initial_config
from storyloom.modules.migration.controller import MigrationController
from storyloom.modules.migration.router import router as migration_router
from storyloom.modules.narrative.router import router as narrative_router


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    configure_logging(settings.log_level)
    if settings.env == "dev":
        ensure_dev_database_schema(str(db_session.engine.url))
    Path(settings.asset_storage_dir).mkdir(parents=True, exist_ok=True)
    yield


app = FastAPI(title="Storyloom Story Engine", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)
app.state.migration_controller = MigrationController(initial_config(settings.env, settings.migration_preset))
app.mount("/assets", StaticFiles(directory=settings.asset_storage_dir, check_dir=False), name="assets")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(narrative_router)
app.include_router(assets_router)
app.include_router(credits_router)
app.include_router(migration_router)
