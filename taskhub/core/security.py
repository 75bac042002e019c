"""Bearer token verification.

Tokens are issued by the auth service; this side only verifies the signature
and reads the user identity out of the claims.
"""

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing_extensions import Annotated

from taskhub.core.config import get_settings


@dataclass(frozen=True)
class CurrentUser:
    id: int
    username: str | None = None


class InvalidTokenError(Exception):
    pass


def extract_bearer_token(value: str | None) -> str | None:
    """Strip an optional ``Bearer `` prefix; blank values count as missing."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


def decode_access_token(token: str) -> CurrentUser:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.PyJWTError as e:
        raise InvalidTokenError(str(e)) from e

    raw_id = payload.get("id", payload.get("sub"))
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        raise InvalidTokenError("token carries no user id")
    return CurrentUser(id=user_id, username=payload.get("username"))


_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
