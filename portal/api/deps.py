"""Shared dependencies — admin guard and the application's AI gateway."""

from fastapi import Depends, HTTPException, Request, status

from portal.db import User, UserRole
from portal.api.auth import get_current_user
from portal.services.ai_gateway import AIGateway


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """FastAPI dependency: reject non-admin users with 403."""
    if getattr(current_user, "role", None) != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_ai_gateway(request: Request) -> AIGateway:
    """The gateway built once at startup (see ``create_app``)."""
    return request.app.state.ai_gateway
