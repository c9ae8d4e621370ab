from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Header

from storyloom.config import settings
from storyloom.errors import PermissionDeniedError, ServiceConfigurationError
from storyloom.modules.access.environment import validate_environment
from storyloom.modules.access.identity import authenticate


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> dict:
    return authenticate(authorization)


def is_admin(user: dict) -> bool:
    return str(user.get("role") or "") == settings.admin_role


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        raise PermissionDeniedError("Administrator role required")
    return user


def authorize_ownership(resource_owner_id: str, caller: dict) -> bool:
    if is_admin(caller):
        return True
    return str(resource_owner_id) == str(caller.get("id") or "")


def require_capabilities(*capabilities: str) -> Callable[[], None]:
    def _check() -> None:
        report = validate_environment(capabilities)
        if not report.ok:
            raise ServiceConfigurationError(
                "Service is not configured for this operation",
                details={"missing": report.missing},
            )

    return _check
