# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌────────────────┐      ┌──────────────────┐
# │ chat_threads   │─1:N─▶│ chat_messages    │
# │ message_count  │      │ role, content    │
# └───────┬────────┘      │ inquiry_id (FK)  │
#         │1:N            └──────────────────┘
#         ▼
# ┌────────────────┐      ┌──────────────────┐
# │ inquiries      │─1:N─▶│ provider_replies │
# │ status         │      └──────────────────┘
# └───────┬────────┘
#         │1:1
#         ▼
# ┌──────────────────────┐      ┌──────────────────┐
# │ consolidated_answers │─1:N─▶│ provider_ratings │
# └──────────────────────┘      └──────────────────┘
#
# ┌──────────────────┐
# │ provider_configs │  admin-managed registry, read by the pipeline
# └──────────────────┘
#
# JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (the test
# suite runs on SQLite). Python attributes are named `metadata_` because
# `.metadata` is reserved on the declarative base.
# =============================================================================

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


# =============================================================================
# Enumerations
# =============================================================================


class InquiryStatus(str, enum.Enum):
    """
    Lifecycle of one question through the consolidation pipeline.

    State machine:
        PENDING → PROCESSING → COMPLETED
                             → FAILED

    COMPLETED and FAILED are terminal. A retry is a new inquiry.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProviderStatus(str, enum.Enum):
    """Registry status of an answer provider. Only ACTIVE is dispatched to."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"
    RATE_LIMITED = "RATE_LIMITED"


class ThreadStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    DELETED = "DELETED"


class MessageRole(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


# =============================================================================
# Chat Threads & Messages
# =============================================================================


class ChatThread(Base):
    """
    A conversation owned by one user.

    message_count is only ever changed with `message_count + 1` updates
    issued at the storage layer, so concurrent sends to the same thread
    cannot lose increments.
    """

    __tablename__ = "chat_threads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owner — identity is managed by the external auth service
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(
        String(255), nullable=False, default="New Chat",
    )

    status: Mapped[ThreadStatus] = mapped_column(
        Enum(ThreadStatus, name="thread_status"),
        nullable=False,
        default=ThreadStatus.ACTIVE,
    )

    message_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ChatThread(id={self.id}, user='{self.user_id}', "
            f"status={self.status}, messages={self.message_count})>"
        )


class ChatMessage(Base):
    """
    One message in a thread. Never mutated after insert.

    The pipeline writes one USER message per inquiry, one ASSISTANT
    message on success, and a SYSTEM message when the admissibility gate
    rejects a prompt.
    """

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    thread_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped[MessageRole] = mapped_column(
        Enum(MessageRole, name="message_role"), nullable=False,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Set on USER and ASSISTANT messages that belong to an inquiry
    inquiry_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("inquiries.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ASSISTANT: {confidence, sources, methodology}
    # USER: {validation, financial_context}
    # SYSTEM: {validation}
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, thread={self.thread_id}, "
            f"role={self.role})>"
        )


# =============================================================================
# Inquiries & Pipeline Artifacts
# =============================================================================


class Inquiry(Base):
    """
    One user question's trip through the consolidation pipeline.

    Created PENDING in the same transaction as the USER message. Status
    changes are conditional UPDATEs (see pipeline/orchestrator.py), so a
    terminal inquiry can never be moved again.
    """

    __tablename__ = "inquiries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    thread_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Post-validation text sent to providers (context-enhanced prompt)
    question: Mapped[str] = mapped_column(Text, nullable=False)

    # Optional caller-supplied context (e.g., portfolio summary)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[InquiryStatus] = mapped_column(
        Enum(InquiryStatus, name="inquiry_status"),
        nullable=False,
        default=InquiryStatus.PENDING,
    )

    # Set on the FAILED transition
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # {original_prompt, financial_context, validation}
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Inquiry(id={self.id}, thread={self.thread_id}, status={self.status})>"


class ProviderReplyRecord(Base):
    """
    One provider's reply to one inquiry. Rows with `error` set were never
    used in consolidation.
    """

    __tablename__ = "provider_replies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    inquiry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("inquiries.id", ondelete="CASCADE"),
        nullable=False,
    )

    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_cents: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # {model, version, ...} as reported by the answer client
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ProviderReplyRecord(id={self.id}, inquiry={self.inquiry_id}, "
            f"provider='{self.provider}', error={self.error is not None})>"
        )


class ConsolidatedAnswerRecord(Base):
    """The single merged answer of a COMPLETED inquiry."""

    __tablename__ = "consolidated_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Unique: at most one consolidated answer per inquiry
    inquiry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("inquiries.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    answer: Mapped[str] = mapped_column(Text, nullable=False)

    # Always within [0, confidence_cap]
    confidence: Mapped[float] = mapped_column(Float, nullable=False)

    # Ordered provider ids, highest confidence first
    sources: Mapped[list] = mapped_column(JSONType, nullable=False)

    methodology: Mapped[str] = mapped_column(Text, nullable=False)

    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    ratings: Mapped[list["ProviderRatingRecord"]] = relationship(
        "ProviderRatingRecord",
        back_populates="consolidated_answer",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ConsolidatedAnswerRecord(id={self.id}, inquiry={self.inquiry_id}, "
            f"confidence={self.confidence:.3f})>"
        )


class ProviderRatingRecord(Base):
    """
    Advisory correctness score a provider gave a consolidated answer.

    Deleting ratings never touches the consolidated answer row.
    """

    __tablename__ = "provider_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    consolidated_answer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("consolidated_answers.id", ondelete="CASCADE"),
        nullable=False,
    )

    provider: Mapped[str] = mapped_column(String(100), nullable=False)
    correctness_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Same as `provider` today; kept separate for delegated rating
    rated_by: Mapped[str] = mapped_column(String(100), nullable=False)

    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    consolidated_answer: Mapped["ConsolidatedAnswerRecord"] = relationship(
        "ConsolidatedAnswerRecord", back_populates="ratings",
    )


# =============================================================================
# Provider Registry
# =============================================================================


class ProviderConfig(Base):
    """
    Admin-configured answer provider.

    `client_spec` selects the answer client:
        "anthropic/claude-sonnet-4-6"
        "openai_compatible/deepseek-chat@https://api.deepseek.com/v1"
        "canned/yahoo"
    """

    __tablename__ = "provider_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Stable identifier used in replies, sources and ratings (e.g. "YAHOO")
    provider_key: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_spec: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[ProviderStatus] = mapped_column(
        Enum(ProviderStatus, name="provider_status"),
        nullable=False,
        default=ProviderStatus.ACTIVE,
    )

    # Lower number = dispatched (conceptually) first
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    timeout_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    config: Mapped[dict | None] = mapped_column(
        JSONType, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ProviderConfig(key='{self.provider_key}', status={self.status}, "
            f"priority={self.priority})>"
        )


# =============================================================================
# Indexes
# =============================================================================

chat_message_thread_idx = Index(
    "idx_chat_message_thread_created",
    ChatMessage.thread_id,
    ChatMessage.created_at,
)

chat_thread_user_idx = Index(
    "idx_chat_thread_user",
    ChatThread.user_id,
)

inquiry_thread_idx = Index(
    "idx_inquiry_thread",
    Inquiry.thread_id,
)

inquiry_status_idx = Index(
    "idx_inquiry_status",
    Inquiry.status,
)

provider_reply_inquiry_idx = Index(
    "idx_provider_reply_inquiry",
    ProviderReplyRecord.inquiry_id,
)

# Supports /providers/metrics: filter by time, group by provider
provider_reply_provider_created_idx = Index(
    "idx_provider_reply_provider_created",
    ProviderReplyRecord.provider,
    ProviderReplyRecord.created_at,
)

provider_rating_answer_idx = Index(
    "idx_provider_rating_answer",
    ProviderRatingRecord.consolidated_answer_id,
)

provider_config_status_priority_idx = Index(
    "idx_provider_config_status_priority",
    ProviderConfig.status,
    ProviderConfig.priority,
)
