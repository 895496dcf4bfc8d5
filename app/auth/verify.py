"""
verify.py
---------
Purpose:
    Access-token verification shared by the HTTP layer and the socket handshake.

Notes:
    - Tokens are HS256 JWTs signed with JWT_ACCESS_SECRET and carry
      `userId` and `email` claims.
    - Issuance lives with the auth routes; this module only verifies.
    - `auth_dependency` protects FastAPI routes, `verify_access_token` is
      used directly by the realtime layer.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from app.config import settings

_security = HTTPBearer()


class AuthenticationError(Exception):
    """Raised when an access token is missing, invalid or expired."""

    def __init__(self, message: str = "Invalid authentication token"):
        super().__init__(message)
        self.message = message


class TokenClaims(BaseModel):
    """Identity resolved from a verified access token."""

    user_id: str
    email: str | None = None


def verify_access_token(token: str | None) -> TokenClaims:
    if not token:
        raise AuthenticationError("Authentication token required")

    try:
        decoded = jwt.decode(
            token,
            settings.JWT_ACCESS_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": True, "require": ["exp"]},
        )
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid authentication token") from e

    user_id = decoded.get("userId") or decoded.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid authentication token")

    return TokenClaims(user_id=str(user_id), email=decoded.get("email"))


def auth_dependency(
    credentials: HTTPAuthorizationCredentials = Depends(_security),
) -> TokenClaims:
    try:
        return verify_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
