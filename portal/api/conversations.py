"""
Conversation endpoints (authenticated).

Owners see their own conversations; administrators can open any of them.
Deleting a conversation is a soft delete and abandons any assistant turn
still pending for it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db import get_db, User, Conversation
from portal.api.auth import get_current_user
from portal.api.deps import get_ai_gateway
from portal.schemas import (
    ConversationCreate, ConversationUpdate, ConversationSummary, ConversationDetail,
    ConversationListResponse, MessageCreate, MessageResponse, GenerateRequest,
    GenerateResponse, ConversationSearchRequest, ConversationSearchResponse,
)
from portal.services.ai_gateway import AIGateway
from portal.services.conversation_service import ConversationService, can_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


def _summary(conversation: Conversation, message_count: int) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        language=conversation.language,
        tags=conversation.tags or [],
        summary=conversation.summary,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        message_count=message_count,
    )


def _detail(conversation: Conversation) -> ConversationDetail:
    return ConversationDetail(
        **_summary(conversation, len(conversation.messages)).model_dump(),
        owner_id=conversation.owner_id,
        messages=[MessageResponse.model_validate(m) for m in conversation.messages],
    )


async def _load_accessible(service: ConversationService, conversation_id: str, user: User) -> Conversation:
    conversation = await service.get(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not can_access(conversation, user):
        raise HTTPException(status_code=403, detail="Access denied")
    return conversation


@router.get("", response_model=ConversationListResponse)
async def list_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    listing = await ConversationService(db).list_for_owner(current_user.id, page=page, limit=limit, search=search)
    listing["conversations"] = [_summary(conv, count) for conv, count in listing["conversations"]]
    return listing


@router.post("", response_model=ConversationDetail, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    data: ConversationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = await ConversationService(db).create(
        current_user.id,
        title=data.title,
        language=data.language.value,
        initial_message=data.initial_message,
    )
    return _detail(conversation)


# Declared before /{conversation_id} routes so "search" is never taken for an id
@router.post("/search", response_model=ConversationSearchResponse)
async def search_conversations(
    request: ConversationSearchRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Search query is required")

    results = await ConversationService(db).find_similar(current_user.id, request.query, limit=request.limit)
    return {"results": results, "query": request.query, "total": len(results)}


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = await _load_accessible(ConversationService(db), conversation_id, current_user)
    return _detail(conversation)


@router.put("/{conversation_id}", response_model=ConversationDetail)
async def update_conversation(
    conversation_id: str,
    data: ConversationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    service = ConversationService(db)
    conversation = await _load_accessible(service, conversation_id, current_user)
    conversation = await service.update(
        conversation,
        title=data.title,
        tags=data.tags,
        language=data.language.value if data.language else None,
    )
    return _detail(conversation)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_ai_gateway),
):
    service = ConversationService(db)
    conversation = await _load_accessible(service, conversation_id, current_user)
    await service.soft_delete(conversation)
    await gateway.abandon(conversation_id)
    return {"message": "Conversation deleted successfully"}


@router.post("/{conversation_id}/messages", response_model=MessageResponse)
async def add_message(
    conversation_id: str,
    data: MessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not data.content or not data.content.strip():
        raise HTTPException(status_code=400, detail="Message content is required")

    service = ConversationService(db)
    conversation = await _load_accessible(service, conversation_id, current_user)
    return await service.append_message(conversation, data.role.value, data.content)


@router.post("/{conversation_id}/generate", response_model=GenerateResponse)
async def generate_response(
    conversation_id: str,
    data: GenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateway: AIGateway = Depends(get_ai_gateway),
):
    """Append the user's turn and the assistant's answer (AI, or knowledge fallback)."""
    if not data.user_message or not data.user_message.strip():
        raise HTTPException(status_code=400, detail="Message content is required")

    service = ConversationService(db)
    conversation = await _load_accessible(service, conversation_id, current_user)
    user_msg, ai_msg, reply = await service.generate(
        conversation, data.user_message, gateway, context=data.context,
    )
    return GenerateResponse(
        user_message=MessageResponse.model_validate(user_msg),
        ai_response=MessageResponse.model_validate(ai_msg),
        source=reply.source,
        conversation_id=conversation.id,
    )
