"""
verify.py
---------
Purpose:
    Caller identity for the sync API: Supabase access tokens (ES256) checked
    against the project's JWKS.

Notes:
    - Signing keys are fetched lazily and cached by PyJWKClient.
    - `sub` is the user id every route scopes its data by; tokens without it
      are rejected here.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from mailsync.config import settings

SUPABASE_AUDIENCE = "authenticated"
SUPABASE_ALGORITHMS = ["ES256"]

_jwk_client: PyJWKClient | None = None
_bearer = HTTPBearer()


def _jwks() -> PyJWKClient:
    global _jwk_client
    if _jwk_client is None:
        _jwk_client = PyJWKClient(settings.jwks_url(), cache_keys=True)
    return _jwk_client


def _unauthorized(reason: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Invalid authentication token: {reason}",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwks().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=SUPABASE_ALGORITHMS,
            audience=SUPABASE_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except (jwt.PyJWTError, ValueError) as e:
        raise _unauthorized(str(e)) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_bearer)) -> dict:
    return verify_jwt(credentials.credentials)
