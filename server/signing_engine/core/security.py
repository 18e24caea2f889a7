from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt

from signing_engine.core.config import get_settings

ALGORITHM = "HS256"


def create_access_token(subject: str, team_id: str, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims: dict[str, Any] = {"sub": subject, "team_id": team_id, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
