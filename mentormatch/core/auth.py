"""
Authentication Utility - JWT verification.

Tokens are issued by the identity service; this module only verifies them
and turns the claims into an Actor for the workflow engine.

Provides:
- JWT token creation (used by tests and local tooling)
- JWT token verification
- FastAPI dependencies for protected routes
"""

from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from mentormatch.core.config import get_settings
from mentormatch.schemas.schemas import Actor, UserRole

settings = get_settings()

# Bearer token extractor
bearer_scheme = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token. `data` needs "sub" and "role"."""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[dict]:
    """Decode and verify JWT token."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> Actor:
    """
    FastAPI dependency - Get the calling Actor.

    Usage:
        @router.get("/protected")
        async def route(actor: Actor = Depends(get_current_user)):
            ...
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        raise credentials_exception from None

    return Actor(id=str(user_id), role=role)


async def get_current_admin(actor: Actor = Depends(get_current_user)) -> Actor:
    """Dependency - Require admin role."""
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return actor
