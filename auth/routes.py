"""
Auth API routes: signup, login.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session
from auth.jwt import create_token
from auth.password import hash_password, needs_rehash, verify_password
from database.helpers import create_user, get_user_by_email, user_to_dict
from utils.schemas import LoginRequest, SignupRequest, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/signup", response_model=UserOut)
async def signup(
    req: SignupRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Register a new user with the ``USER`` role."""
    if await get_user_by_email(session, req.email) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already exists",
        )

    user = await create_user(session, req.name, req.email, hash_password(req.password))
    logger.info("Registered user %s (%s)", req.email, user.id)
    return {**user_to_dict(user), "token": create_token(user.id, user.role)}


@router.post("/login", response_model=UserOut)
async def login(
    req: LoginRequest,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Login with email + password."""
    user = await get_user_by_email(session, req.email)

    if user is None or not verify_password(req.password, user.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    if needs_rehash(user.password):
        user.password = hash_password(req.password)
        logger.info("Upgraded password hash for user %s", user.id)

    logger.info("Login: %s (%s)", user.email, user.id)
    return {**user_to_dict(user), "token": create_token(user.id, user.role)}
