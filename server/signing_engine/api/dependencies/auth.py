from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from signing_engine.core.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


@dataclass(frozen=True, slots=True)
class TeamPrincipal:
    user_id: str
    team_id: str


async def get_current_principal(token: str = Depends(oauth2_scheme)) -> TeamPrincipal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise credentials_exception from exc

    subject: str | None = payload.get("sub")
    team_id: str | None = payload.get("team_id")
    exp = payload.get("exp")
    if subject is None or team_id is None or exp is None:
        raise credentials_exception
    if datetime.fromtimestamp(exp, tz=timezone.utc) < datetime.now(timezone.utc):
        raise credentials_exception
    return TeamPrincipal(user_id=subject, team_id=team_id)
