from __future__ import annotations

import os
from typing import Any

import httpx
import typer

app = typer.Typer(help="Storyloom operator CLI")
migration_app = typer.Typer(help="Text backend rollout")
assets_app = typer.Typer(help="Asset job queue")
credits_app = typer.Typer(help="Credit ledger")
app.add_typer(migration_app, name="migration")
app.add_typer(assets_app, name="assets")
app.add_typer(credits_app, name="credits")

DEFAULT_BACKEND_URL = "http://127.0.0.1:8000"
TOKEN_ENV = "STORYLOOM_TOKEN"


def backend_url() -> str:
    return os.getenv("BACKEND_URL", DEFAULT_BACKEND_URL).rstrip("/")


def auth_headers() -> dict[str, str]:
    token = os.getenv(TOKEN_ENV, "").strip()
    if not token:
        raise typer.BadParameter(f"Set {TOKEN_ENV} to a bearer token")
    return {"Authorization": f"Bearer {token}"}


def request(
    method: str,
    endpoint: str,
    *,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    url = f"{backend_url()}{endpoint}"
    with httpx.Client(timeout=60.0) as client:
        return client.request(method, url, json=json_body, params=params, headers=headers)


def error_code(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        code = error.get("code")
        if isinstance(code, str) and code.strip():
            return code.strip()
    return None


def _handle_response(resp: httpx.Response, action: str) -> dict[str, Any]:
    if resp.status_code >= 400:
        code = error_code(resp) or "UNKNOWN"
        typer.echo(f"{action} failed ({resp.status_code} {code}): {resp.text}")
        raise typer.Exit(code=1)
    return resp.json()


def _print_migration(body: dict[str, Any]) -> None:
    typer.echo(f"enable_next_gen: {body.get('enable_next_gen')}")
    typer.echo(f"rollout_percentage: {body.get('rollout_percentage')}")
    typer.echo(f"fallback_to_legacy: {body.get('fallback_to_legacy')}")
    typer.echo(f"force_next_gen_in_dev: {body.get('force_next_gen_in_dev')}")
    typer.echo(f"log_all_requests: {body.get('log_all_requests')}")


@app.command()
def ping() -> None:
    body = _handle_response(request("GET", "/health"), "ping")
    typer.echo(f"ok: {body}")


@migration_app.command("status")
def migration_status() -> None:
    _print_migration(_handle_response(request("GET", "/admin/migration", headers=auth_headers()), "migration status"))


@migration_app.command("increase")
def migration_increase(step: int = typer.Option(10, "--step", min=1, max=100)) -> None:
    resp = request("POST", "/admin/migration/rollout/increase", json_body={"step": step}, headers=auth_headers())
    _print_migration(_handle_response(resp, "migration increase"))


@migration_app.command("decrease")
def migration_decrease(step: int = typer.Option(25, "--step", min=1, max=100)) -> None:
    resp = request("POST", "/admin/migration/rollout/decrease", json_body={"step": step}, headers=auth_headers())
    _print_migration(_handle_response(resp, "migration decrease"))


@migration_app.command("preset")
def migration_preset(name: str = typer.Argument(..., help="development|beta|gradual|full|emergency")) -> None:
    resp = request("POST", f"/admin/migration/preset/{name}", headers=auth_headers())
    _print_migration(_handle_response(resp, "migration preset"))


@migration_app.command("emergency")
def migration_emergency() -> None:
    resp = request("POST", "/admin/migration/emergency", headers=auth_headers())
    _print_migration(_handle_response(resp, "migration emergency"))


@migration_app.command("complete")
def migration_complete() -> None:
    resp = request("POST", "/admin/migration/complete", headers=auth_headers())
    _print_migration(_handle_response(resp, "migration complete"))


@assets_app.command("drain")
def assets_drain(limit: int | None = typer.Option(None, "--limit", min=1, max=500)) -> None:
    payload = {"limit": limit} if limit else None
    body = _handle_response(
        request("POST", "/admin/asset-jobs/drain", json_body=payload, headers=auth_headers()),
        "assets drain",
    )
    typer.echo(f"processed: {body.get('processed')}")
    for status, total in sorted((body.get("counts") or {}).items()):
        typer.echo(f"  {status}: {total}")


@credits_app.command("balance")
def credits_balance() -> None:
    body = _handle_response(request("GET", "/credits/balance", headers=auth_headers()), "credits balance")
    typer.echo(f"balance: {body.get('balance')}")
    typer.echo(f"lifetime earned/spent: {body.get('lifetimeEarned')}/{body.get('lifetimeSpent')}")


@credits_app.command("grant")
def credits_grant(
    user_id: str = typer.Option(..., "--user-id"),
    amount: int = typer.Option(..., "--amount", min=1),
    reference_id: str | None = typer.Option(None, "--reference-id"),
) -> None:
    payload: dict[str, Any] = {"userId": user_id, "amount": amount}
    if reference_id:
        payload["referenceId"] = reference_id
    body = _handle_response(
        request("POST", "/admin/credits/grant", json_body=payload, headers=auth_headers()),
        "credits grant",
    )
    typer.echo(f"user: {body.get('userId')} balance: {body.get('balance')}")


if __name__ == "__main__":
    app()
