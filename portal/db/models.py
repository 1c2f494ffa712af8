"""
Database models for the Rafiq citizen portal

- Users (citizens and administrators)
- Service catalog with steps, forms, FAQ and contact details
- Feedback submitted online or replayed from the offline queue
- Conversations with append-only message history
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    String, Text, DateTime, Float, Integer, Boolean, ForeignKey, JSON, Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column, declarative_base

Base = declarative_base()


class UserRole(str, Enum):
    """User roles for access control"""
    ADMIN = "admin"          # Dashboard access + catalog management
    CITIZEN = "citizen"      # Standard portal account


class Language(str, Enum):
    FR = "fr"
    AR = "ar"


class FeedbackStatus(str, Enum):
    NEW = "new"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class User(Base):
    """Portal account"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default=UserRole.CITIZEN.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    conversations: Mapped[List["Conversation"]] = relationship("Conversation", back_populates="owner")


class Service(Base):
    """Administrative service in the catalog, keyed by its natural id (svc_*)"""
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(100), index=True)

    # Structured content stored as JSON
    steps: Mapped[list] = mapped_column(JSON, default=list)     # [{order, title, description}]
    forms: Mapped[list] = mapped_column(JSON, default=list)     # [{name, url}]
    faq: Mapped[list] = mapped_column(JSON, default=list)       # [{id, question, answer, keywords?}]
    contact: Mapped[dict] = mapped_column(JSON, default=dict)   # {phone, email}

    language: Mapped[str] = mapped_column(String(10), default="both")  # fr | ar | both
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Feedback(Base):
    """Citizen feedback on the portal or a specific service"""
    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rating: Mapped[int] = mapped_column(Integer)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggestion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    service_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default=FeedbackStatus.NEW.value, index=True)
    source: Mapped[str] = mapped_column(String(20), default="online")  # online | sync
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Conversation(Base):
    """Assistant conversation owned by one user"""
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200))
    language: Mapped[str] = mapped_column(String(5), default=Language.FR.value)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Soft delete
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", back_populates="conversations")
    messages: Mapped[List["Message"]] = relationship(
        "Message", back_populates="conversation", order_by="Message.position"
    )

    __table_args__ = (
        Index("ix_conversations_owner_active", "owner_id", "is_active"),
    )


class Message(Base):
    """One turn of a conversation. Rows are only ever inserted."""
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id: Mapped[str] = mapped_column(String(36), ForeignKey("conversations.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)  # 0-based insertion index
    role: Mapped[str] = mapped_column(String(20))  # "user" | "assistant"
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Metadata
    tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    embeddings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)  # ai | knowledge-base | default

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "position", name="uq_messages_conversation_position"),
    )
