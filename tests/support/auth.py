from __future__ import annotations

from storyloom.modules.access.identity import create_access_token


def bearer(user_id: str, *, role: str | None = None, email: str | None = None) -> dict[str, str]:
    token = create_access_token(user_id, email=email or f"{user_id}@example.test", role=role)
    return {"Authorization": f"Bearer {token}"}


def admin_bearer(user_id: str = "ops-admin") -> dict[str, str]:
    return bearer(user_id, role="admin")
