from portal.db.models import (
    Base, User, UserRole, Language, Service, Feedback, FeedbackStatus,
    Conversation, Message, MessageRole,
)
from portal.db.database import get_db, init_db, drop_db, async_session_maker, engine

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Language",
    "Service",
    "Feedback",
    "FeedbackStatus",
    "Conversation",
    "Message",
    "MessageRole",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
]
