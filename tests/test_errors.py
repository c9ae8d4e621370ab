from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, OperationalError

from storyloom.errors import ResourceConflictError, error_body, install_error_handlers


class _Body(BaseModel):
    name: str
    size: int


def _app() -> FastAPI:
    app = FastAPI()
    install_error_handlers(app)

    @app.post("/echo")
    def echo(body: _Body) -> dict:
        return body.model_dump()

    @app.get("/conflict")
    def conflict() -> dict:
        raise ResourceConflictError("already there", details={"id": "x"})

    @app.get("/db-down")
    def db_down() -> dict:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    @app.get("/db-broken")
    def db_broken() -> dict:
        raise IntegrityError("INSERT", {}, Exception("constraint"))

    @app.get("/boom")
    def boom() -> dict:
        raise RuntimeError("secret internal detail")

    return app


def test_error_body_shape() -> None:
    body = error_body("SOME_CODE", "message")
    assert set(body["error"]) == {"code", "message", "details", "timestamp"}
    assert body["error"]["details"] == {}
    assert body["error"]["timestamp"].endswith("+00:00")


def test_app_error_renders_code_and_status() -> None:
    resp = TestClient(_app()).get("/conflict")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "RESOURCE_CONFLICT"
    assert resp.json()["error"]["details"] == {"id": "x"}


def test_missing_field_is_400() -> None:
    resp = TestClient(_app()).post("/echo", json={"size": 3})
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "MISSING_REQUIRED_FIELD"
    assert "name" in error["details"]["fields"]


def test_invalid_field_is_400_invalid_request() -> None:
    resp = TestClient(_app()).post("/echo", json={"name": "a", "size": "huge"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_REQUEST"


def test_unexpected_error_is_normalized() -> None:
    resp = TestClient(_app(), raise_server_exceptions=False).get("/boom")
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert "secret" not in error["message"]


def test_database_errors_are_mapped() -> None:
    client = TestClient(_app())
    down = client.get("/db-down")
    assert down.status_code == 503
    assert down.json()["error"]["code"] == "SERVICE_UNAVAILABLE"

    broken = client.get("/db-broken")
    assert broken.status_code == 500
    assert broken.json()["error"]["code"] == "DATABASE_ERROR"
    assert "constraint" not in broken.json()["error"]["message"]
