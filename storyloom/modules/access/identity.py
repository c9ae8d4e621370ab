from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from storyloom.config import settings
from storyloom.errors import AuthenticationError

JWT_LEEWAY_SECONDS = 60
DEFAULT_ROLE = "authenticated"


def create_access_token(user_id: str, email: str | None = None, role: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email or "",
        "role": role or DEFAULT_ROLE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def _role_from_claims(payload: dict) -> str:
    app_metadata = payload.get("app_metadata")
    if isinstance(app_metadata, dict) and app_metadata.get("role"):
        return str(app_metadata["role"])
    return str(payload.get("role") or DEFAULT_ROLE)


def authenticate(authorization: str | None) -> dict:
    if not authorization or not authorization.strip():
        raise AuthenticationError("Missing authorization header", code="MISSING_AUTH")
    if not authorization.lower().startswith("bearer "):
        raise AuthenticationError("Authorization header must be a bearer token", code="MISSING_AUTH")

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            options={"verify_aud": False, "verify_exp": False, "verify_iat": False},
        )
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc

    now_ts = int(datetime.now(timezone.utc).timestamp())
    exp = int(payload.get("exp", 0) or 0)
    iat = int(payload.get("iat", 0) or 0)
    if exp and now_ts > exp + JWT_LEEWAY_SECONDS:
        raise AuthenticationError("Invalid or expired token")
    if iat and now_ts + JWT_LEEWAY_SECONDS < iat:
        raise AuthenticationError("Invalid or expired token")

    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return {"id": user_id, "email": str(payload.get("email") or ""), "role": _role_from_claims(payload)}
