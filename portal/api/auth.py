"""
Account endpoints and the bearer-token dependency.

  POST /api/auth/register   — citizen sign-up
  POST /api/auth/login      — email + password -> bearer token
  GET  /api/auth/profile    — the caller's account
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db, User
from portal.logging_config import set_request_context
from portal.schemas import UserCreate, UserLogin, UserResponse, Token
from portal.services.auth_service import (
    authenticate_user, create_access_token, create_user,
    get_user_by_email, get_user_by_id, read_access_token,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _ensure_active(user: User) -> User:
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active account (401 / 403 otherwise)."""
    claims = read_access_token(credentials.credentials) if credentials else None
    if claims is None:
        raise _unauthorized("Invalid or expired token")

    user = await get_user_by_id(db, claims.user_id)
    if user is None:
        raise _unauthorized("User not found")

    set_request_context(user_id=user.id)
    return _ensure_active(user)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    if await get_user_by_email(db, user_data.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    return await create_user(db, email=user_data.email, password=user_data.password, name=user_data.name)


@router.post("/login", response_model=Token)
async def login(credentials: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await authenticate_user(db, credentials.email, credentials.password)
    if user is None:
        raise _unauthorized("Incorrect email or password")
    _ensure_active(user)
    return Token(access_token=create_access_token(user.id, user.role))


@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """The caller's active account on public endpoints; None for anonymous or bad tokens."""
    claims = read_access_token(credentials.credentials) if credentials else None
    if claims is None:
        return None
    user = await get_user_by_id(db, claims.user_id)
    if user is None or not user.is_active:
        return None
    set_request_context(user_id=user.id)
    return user
