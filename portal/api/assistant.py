"""Stateless assistant endpoint used by the public assistant page."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from portal.api.auth import get_optional_user
from portal.api.deps import get_ai_gateway
from portal.db import User
from portal.schemas import AskRequest, AskResponse
from portal.services.ai_gateway import AIGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assistant", tags=["Assistant"])


def conversation_key_for(request: AskRequest, user: Optional[User]) -> Optional[str]:
    """Explicit key, else the signed-in user's own key; anonymous callers get a one-shot turn."""
    if request.conversation_key and request.conversation_key.strip():
        return request.conversation_key.strip()
    if user is not None:
        return f"user-{user.id}"
    return None


@router.post("/ask", response_model=AskResponse)
async def ask(
    request: AskRequest,
    gateway: AIGateway = Depends(get_ai_gateway),
    user: Optional[User] = Depends(get_optional_user),
):
    """Answer one question. Gateway failures come back as fallback answers, never as errors."""
    reply = await gateway.chat(
        [{"role": "user", "content": request.question.strip()}],
        conversation_key=conversation_key_for(request, user),
        language=request.language.value,
    )
    logger.info("[AI] Answered question (source=%s)", reply.source)
    return reply.to_dict()
