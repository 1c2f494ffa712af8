"""Conversation service - append-only message history and assistant turns"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.db.models import Conversation, Message, MessageRole, User, UserRole
from portal.services.ai_gateway import AIGateway, AssistantReply, DEFAULT_SYSTEM_PROMPT
from portal.services.keyed_locks import KeyedLocks
from portal.services.knowledge_fallback import tokenize

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "Nouvelle conversation"
TITLE_LENGTH = 50
ASSISTANT_CONFIDENCE = 0.8
HISTORY_TURNS = 10

# Appends to one conversation run one at a time: position is max(position) + 1
append_locks = KeyedLocks()


def derive_title(content: str) -> str:
    """First 50 characters of the stripped message, with "..." when cut."""
    clean = (content or "").strip()
    if len(clean) > TITLE_LENGTH:
        return clean[:TITLE_LENGTH] + "..."
    return clean


def can_access(conversation: Conversation, user: User) -> bool:
    return conversation.owner_id == user.id or user.role == UserRole.ADMIN.value


class ConversationService:
    """Conversation store on top of an async session.

    Messages are only ever inserted; ``position`` is the 0-based insertion
    index and is the display order. Every append holds the conversation's
    lock from reading the last position until the commit.
    """

    def __init__(self, db: AsyncSession, locks: Optional[KeyedLocks] = None):
        self.db = db
        self.locks = locks if locks is not None else append_locks

    async def create(
        self,
        owner_id: str,
        title: Optional[str] = None,
        language: str = "fr",
        initial_message: Optional[str] = None,
    ) -> Conversation:
        conversation = Conversation(
            owner_id=owner_id,
            title=(title or "").strip() or None,
            language=language,
            tags=[],
        )
        self.db.add(conversation)
        await self.db.flush()

        if initial_message and initial_message.strip():
            await self._insert_message(conversation, MessageRole.USER.value, initial_message)

        await self.db.commit()
        logger.info("[CONV] Created conversation %s for %s", conversation.id, owner_id)
        return await self.get(conversation.id)

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        """Active conversation with its messages, or None."""
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id, Conversation.is_active == True)  # noqa: E712
            .options(selectinload(Conversation.messages))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        conditions = [Conversation.owner_id == owner_id, Conversation.is_active == True]  # noqa: E712
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            matching = select(Message.conversation_id).where(Message.content.ilike(pattern))
            conditions.append(or_(Conversation.title.ilike(pattern), Conversation.id.in_(matching)))

        total = await self.db.scalar(select(func.count(Conversation.id)).where(*conditions)) or 0

        counts = (
            select(Message.conversation_id, func.count(Message.id).label("message_count"))
            .group_by(Message.conversation_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Conversation, func.coalesce(counts.c.message_count, 0))
            .outerjoin(counts, counts.c.conversation_id == Conversation.id)
            .where(*conditions)
            .order_by(Conversation.updated_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return {
            "conversations": [(conv, count) for conv, count in result.all()],
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        }

    async def append_message(
        self,
        conversation: Conversation,
        role: str,
        content: str,
        **metadata,
    ) -> Message:
        async with self.locks.hold(conversation.id):
            message = await self._insert_message(conversation, role, content, **metadata)
            await self.db.commit()
        await self.db.refresh(message)
        return message

    async def generate(
        self,
        conversation: Conversation,
        user_message: str,
        gateway: AIGateway,
        context: Optional[str] = None,
    ) -> Tuple[Message, Message, AssistantReply]:
        """Store the user turn and the assistant turn produced by the gateway."""
        history = await self.recent_history(conversation.id)
        history.append({"role": MessageRole.USER.value, "content": user_message.strip()})

        system_prompt = DEFAULT_SYSTEM_PROMPT
        if context and context.strip():
            system_prompt = f"{system_prompt}\nContexte supplémentaire: {context.strip()}"

        reply = await gateway.chat(
            history,
            conversation_key=conversation.id,
            language=conversation.language,
            system_prompt=system_prompt,
        )

        async with self.locks.hold(conversation.id):
            user_msg = await self._insert_message(conversation, MessageRole.USER.value, user_message)
            ai_msg = await self._insert_message(
                conversation,
                MessageRole.ASSISTANT.value,
                reply.message,
                confidence=ASSISTANT_CONFIDENCE,
                source=reply.source,
            )
            await self.db.commit()
        await self.db.refresh(user_msg)
        await self.db.refresh(ai_msg)
        return user_msg, ai_msg, reply

    async def recent_history(self, conversation_id: str, turns: int = HISTORY_TURNS) -> List[Dict[str, str]]:
        result = await self.db.execute(
            select(Message.role, Message.content)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.position.desc())
            .limit(turns)
        )
        rows = list(result.all())
        rows.reverse()
        return [{"role": role, "content": content} for role, content in rows]

    async def update(
        self,
        conversation: Conversation,
        title: Optional[str] = None,
        tags: Optional[List[str]] = None,
        language: Optional[str] = None,
    ) -> Conversation:
        if title and title.strip():
            conversation.title = title.strip()
        if tags is not None:
            conversation.tags = list(tags)
        if language:
            conversation.language = language
        conversation.updated_at = datetime.utcnow()
        await self.db.commit()
        return await self.get(conversation.id)

    async def soft_delete(self, conversation: Conversation) -> None:
        conversation.is_active = False
        await self.db.commit()
        logger.info("[CONV] Conversation %s deleted", conversation.id)

    async def find_similar(self, owner_id: str, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Keyword similarity: share of query words found in each of the owner's messages."""
        query_words = tokenize(query)
        if not query_words:
            return []

        result = await self.db.execute(
            select(Message, Conversation.title)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(Conversation.owner_id == owner_id, Conversation.is_active == True)  # noqa: E712
            .order_by(Message.created_at.desc())
        )
        scored = []
        for message, title in result.all():
            words = set(tokenize(f"{title or ''} {message.content}"))
            matched = sum(1 for word in query_words if word in words)
            if matched:
                scored.append({
                    "conversation_id": message.conversation_id,
                    "conversation_title": title,
                    "message_id": message.id,
                    "role": message.role,
                    "content": message.content,
                    "similarity": round(matched / len(query_words), 3),
                })
        scored.sort(key=lambda item: item["similarity"], reverse=True)
        return scored[:limit]

    async def _insert_message(
        self,
        conversation: Conversation,
        role: str,
        content: str,
        **metadata,
    ) -> Message:
        text = (content or "").strip()
        last = await self.db.scalar(
            select(func.max(Message.position)).where(Message.conversation_id == conversation.id)
        )
        message = Message(
            conversation_id=conversation.id,
            position=0 if last is None else last + 1,
            role=role,
            content=text,
            tokens=len(text.split()),
            **metadata,
        )
        self.db.add(message)

        if role == MessageRole.USER.value and (not conversation.title or conversation.title == PLACEHOLDER_TITLE):
            conversation.title = derive_title(text)
        conversation.updated_at = datetime.utcnow()
        await self.db.flush()
        return message
