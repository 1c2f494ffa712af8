"""
Citizen and administrator accounts.

Passwords are stored as bcrypt hashes. Access tokens are HS256 JWTs
carrying the user id (``sub``) and the role, so the admin guard does not
need a second lookup to know who it is talking to.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import settings
from portal.db.models import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    role: str


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash (e.g. a row imported from elsewhere)
        return False


def create_access_token(user_id: str, role: str = UserRole.CITIZEN.value) -> str:
    issued = datetime.utcnow()
    claims = {
        "sub": user_id,
        "role": role,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.access_token_expire_minutes),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def read_access_token(token: str) -> Optional[TokenClaims]:
    """Claims of a valid, unexpired token; None otherwise."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return TokenClaims(user_id=payload["sub"], role=payload.get("role") or UserRole.CITIZEN.value)


def decode_access_token(token: str) -> Optional[str]:
    claims = read_access_token(token)
    return claims.user_id if claims else None


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    return await db.scalar(select(User).where(User.email == normalize_email(email)))


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.hashed_password):
        logger.info("Failed login for %s", normalize_email(email))
        return None
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    name: Optional[str] = None,
    role: str = UserRole.CITIZEN.value,
) -> User:
    user = User(
        email=normalize_email(email),
        hashed_password=get_password_hash(password),
        name=(name or "").strip() or None,
        role=role,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("Created %s account %s", role, user.email)
    return user
