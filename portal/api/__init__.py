from portal.api.auth import router as auth_router, get_current_user
from portal.api.assistant import router as assistant_router
from portal.api.conversations import router as conversations_router
from portal.api.feedback import router as feedback_router
from portal.api.health import router as health_router
from portal.api.knowledge import router as knowledge_router
from portal.api.services import router as services_router
from portal.api.sync import router as sync_router

__all__ = [
    "auth_router",
    "assistant_router",
    "conversations_router",
    "feedback_router",
    "health_router",
    "knowledge_router",
    "services_router",
    "sync_router",
    "get_current_user",
]
