import httpx
import pytest
import typer

from client.storyloom_cli import DEFAULT_BACKEND_URL, auth_headers, backend_url, error_code


def test_backend_url_default(monkeypatch) -> None:
    monkeypatch.delenv("BACKEND_URL", raising=False)
    assert backend_url() == DEFAULT_BACKEND_URL


def test_backend_url_env(monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_URL", "http://localhost:9999/")
    assert backend_url() == "http://localhost:9999"


def test_auth_headers_require_token(monkeypatch) -> None:
    monkeypatch.delenv("STORYLOOM_TOKEN", raising=False)
    with pytest.raises(typer.BadParameter):
        auth_headers()
    monkeypatch.setenv("STORYLOOM_TOKEN", " abc ")
    assert auth_headers() == {"Authorization": "Bearer abc"}


def test_error_code_reads_envelope() -> None:
    request = httpx.Request("POST", "http://test/create-story")
    response = httpx.Response(402, request=request, json={"error": {"code": "INSUFFICIENT_CREDITS", "message": "x"}})
    assert error_code(response) == "INSUFFICIENT_CREDITS"


def test_error_code_tolerates_other_bodies() -> None:
    request = httpx.Request("GET", "http://test/health")
    assert error_code(httpx.Response(500, request=request, text="oops")) is None
    assert error_code(httpx.Response(409, request=request, json={"detail": "conflict"})) is None
