"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, EmailStr

from portal.db.models import Language, FeedbackStatus, MessageRole


# ============ User Schemas ============

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: Optional[str] = None


class UserLogin(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    role: str = "citizen"
    created_at: datetime
    is_active: bool

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# ============ Service Catalog Schemas ============

class ServiceBase(BaseModel):
    title: str = Field(min_length=3, max_length=255)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1, max_length=100)
    steps: List[Dict[str, Any]] = []    # [{order, title, description}]
    forms: List[Dict[str, Any]] = []    # [{name, url}]
    faq: List[Dict[str, Any]] = []      # [{id, question, answer, keywords?}]
    contact: Dict[str, Any] = {}        # {phone, email}
    language: str = "both"


class ServiceCreate(ServiceBase):
    id: str = Field(min_length=1, max_length=100)


class ServiceUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    steps: Optional[List[Dict[str, Any]]] = None
    forms: Optional[List[Dict[str, Any]]] = None
    faq: Optional[List[Dict[str, Any]]] = None
    contact: Optional[Dict[str, Any]] = None
    language: Optional[str] = None
    is_active: Optional[bool] = None


class ServiceResponse(ServiceBase):
    id: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceListResponse(BaseModel):
    services: List[ServiceResponse]
    total: int


class ServiceStats(BaseModel):
    total: int
    active: int
    by_category: Dict[str, int]


# ============ Feedback Schemas ============

class FeedbackCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=5000)
    suggestion: Optional[str] = Field(None, max_length=5000)
    service_id: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: int
    rating: int
    comment: Optional[str]
    suggestion: Optional[str]
    service_id: Optional[str]
    status: str
    source: str
    created_at: datetime

    class Config:
        from_attributes = True


class FeedbackStatusUpdate(BaseModel):
    status: FeedbackStatus


class FeedbackStats(BaseModel):
    total: int
    average_rating: float
    distribution: Dict[int, int]
    by_status: Dict[str, int]


# ============ Sync Schemas ============

class SyncItem(BaseModel):
    """One queued offline write. Content is validated per item by the sync service."""
    type: Optional[str] = None
    payload: Any = None
    id: Optional[int] = None  # Client queue id, echoed back in the result


class SyncRequest(BaseModel):
    payloads: List[SyncItem]


class SyncItemResult(BaseModel):
    index: int
    id: Optional[int] = None
    status: str  # synced | rejected | error
    detail: Optional[str] = None


class SyncResponse(BaseModel):
    synced: int
    errors: int
    total: int
    results: List[SyncItemResult]
    message: str


# ============ Knowledge Base Schemas ============

class KnowledgeItem(BaseModel):
    id: str
    type: str  # service | faq | steps
    question: str
    answer: str
    category: str
    service_id: str
    keywords: List[str] = []


class KnowledgeListResponse(BaseModel):
    knowledge: List[KnowledgeItem]
    total: int
    categories: List[str]
    types: List[str]


class KnowledgeSearchRequest(BaseModel):
    query: str = ""
    limit: int = Field(10, ge=1, le=50)


class KnowledgeSearchResult(BaseModel):
    id: str
    title: str
    description: str
    category: str
    type: str
    relevance: float


class KnowledgeSearchResponse(BaseModel):
    results: List[KnowledgeSearchResult]
    query: str
    total: int


# ============ Assistant Schemas ============

class AskRequest(BaseModel):
    question: str = Field(min_length=1, max_length=4000)
    language: Language = Language.FR
    conversation_key: Optional[str] = Field(None, max_length=100)


class AskResponse(BaseModel):
    message: str
    recommendations: List[Dict[str, str]] = []
    source: str


# ============ Conversation Schemas ============

class ConversationCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    language: Language = Language.FR
    initial_message: Optional[str] = Field(None, max_length=10000)


class ConversationUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    tags: Optional[List[str]] = None
    language: Optional[Language] = None


class MessageCreate(BaseModel):
    content: str = Field("", max_length=10000)
    role: MessageRole = MessageRole.USER


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    position: int
    created_at: datetime
    tokens: Optional[int] = None
    confidence: Optional[float] = None
    source: Optional[str] = None

    class Config:
        from_attributes = True


class ConversationSummary(BaseModel):
    id: str
    title: Optional[str]
    language: str
    tags: List[str] = []
    summary: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


class ConversationDetail(ConversationSummary):
    owner_id: str
    messages: List[MessageResponse] = []


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]
    total: int
    page: int
    limit: int
    pages: int


class GenerateRequest(BaseModel):
    user_message: str = Field("", max_length=10000)
    context: Optional[str] = Field(None, max_length=2000)


class GenerateResponse(BaseModel):
    user_message: MessageResponse
    ai_response: MessageResponse
    source: str
    conversation_id: str


class ConversationSearchRequest(BaseModel):
    query: str = ""
    limit: int = Field(5, ge=1, le=50)


class SimilarMessage(BaseModel):
    conversation_id: str
    conversation_title: Optional[str]
    message_id: str
    role: str
    content: str
    similarity: float


class ConversationSearchResponse(BaseModel):
    results: List[SimilarMessage]
    query: str
    total: int


# ============ Health Schemas ============

class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    environment: str
    version: str


class AIHealthResponse(BaseModel):
    dialect: str
    enabled: bool
    reachable: bool
