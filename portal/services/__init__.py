from portal.services.knowledge_fallback import (
    KnowledgeEntry, KnowledgeFallbackResolver, FallbackAnswer, OFFLINE_FAQ, get_fallback_resolver,
)
from portal.services.ai_gateway import (
    AIGateway, LegacyGateway, SessionGateway, SessionRegistry, AssistantReply, GatewayError,
    build_gateway,
)
from portal.services.auth_service import (
    TokenClaims, verify_password, get_password_hash, create_access_token,
    read_access_token, decode_access_token, authenticate_user, create_user,
    get_user_by_id, get_user_by_email,
)
from portal.services.conversation_service import ConversationService

__all__ = [
    "KnowledgeEntry",
    "KnowledgeFallbackResolver",
    "FallbackAnswer",
    "OFFLINE_FAQ",
    "get_fallback_resolver",
    # AI gateway
    "AIGateway",
    "LegacyGateway",
    "SessionGateway",
    "SessionRegistry",
    "AssistantReply",
    "GatewayError",
    "build_gateway",
    # Auth
    "TokenClaims",
    "verify_password",
    "get_password_hash",
    "create_access_token",
    "read_access_token",
    "decode_access_token",
    "authenticate_user",
    "create_user",
    "get_user_by_id",
    "get_user_by_email",
    "ConversationService",
]
