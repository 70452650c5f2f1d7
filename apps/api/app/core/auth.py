from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    email: str | None = None
    role: str | None = None
    team_id: str | None = None


def decode_token(token: str) -> AuthUser | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return None

    role = payload.get("role")
    team_id = payload.get("equipe_id")
    email = payload.get("email")
    return AuthUser(
        sub=subject,
        email=str(email) if email else None,
        role=str(role).lower() if role else None,
        team_id=str(team_id) if team_id else None,
    )


async def get_current_user(request: Request) -> AuthUser | None:
    """Return the identity carried by the bearer token, or None when no valid identity is present."""

    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        return None
    return decode_token(token)
