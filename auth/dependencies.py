"""
FastAPI dependencies for authentication.

Provides ``db_session``, ``get_current_user_id`` and ``require_admin``,
used across all protected routes.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.jwt import verify_token
from database.session import get_db_session

_bearer_scheme = HTTPBearer()


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> Dict[str, Any]:
    return verify_token(credentials.credentials)


async def get_current_user_id(claims: Dict[str, Any] = Depends(get_token_claims)) -> int:
    """The authenticated user's integer id."""
    return claims["user_id"]


async def require_admin(claims: Dict[str, Any] = Depends(get_token_claims)) -> int:
    if claims.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return claims["user_id"]
