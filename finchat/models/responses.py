# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming OUT of the API. Built from ORM rows with
# `from_attributes=True`; ORM attributes named `metadata_` are exposed as
# `metadata` via validation aliases.
# =============================================================================

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


# ---------------------------------------------------------------------------
# Threads & Messages
# ---------------------------------------------------------------------------


class ThreadResponse(BaseModel):
    id: int
    user_id: str
    title: str
    status: str
    message_count: int
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    """One chat message. `metadata` holds role-specific extras."""

    id: int
    thread_id: int
    role: str
    content: str
    inquiry_id: int | None = None
    metadata: dict | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ThreadListResponse(BaseModel):
    threads: list[ThreadResponse]
    total: int = Field(description="Number of threads in this page")


class ChatStatisticsResponse(BaseModel):
    """Response for GET /threads/stats. Deleted threads are not counted."""

    total_threads: int
    active_threads: int
    total_messages: int
    total_inquiries: int
    avg_response_time_ms: int = Field(
        description="Mean provider response time over the user's inquiries",
    )

    model_config = ConfigDict(from_attributes=True)


class MessageListResponse(BaseModel):
    thread_id: int
    messages: list[MessageResponse]


# ---------------------------------------------------------------------------
# Pipeline Artifacts
# ---------------------------------------------------------------------------


class ProviderReplyResponse(BaseModel):
    """One provider's reply. `error` set ⇒ excluded from consolidation."""

    provider: str
    answer: str
    confidence: float
    response_time_ms: int
    tokens_used: int
    cost_cents: float
    error: str | None = None
    metadata: dict | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )

    model_config = ConfigDict(from_attributes=True)


class ProviderRatingResponse(BaseModel):
    provider: str
    correctness_percentage: float
    reasoning: str
    rated_by: str
    response_time_ms: int | None = None

    model_config = ConfigDict(from_attributes=True)


class ConsolidatedAnswerResponse(BaseModel):
    """The merged answer of a COMPLETED inquiry with its cross-ratings."""

    id: int
    inquiry_id: int
    answer: str
    confidence: float = Field(description="Confidence-weighted score, capped at 0.95")
    sources: list[str] = Field(description="Contributing providers, highest confidence first")
    methodology: str
    ratings: list[ProviderRatingResponse] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SendMessageResponse(BaseModel):
    """Response for POST /threads/{thread_id}/messages."""

    inquiry_id: int
    status: str
    user_message: MessageResponse
    assistant_message: MessageResponse
    consolidated: ConsolidatedAnswerResponse


class RejectionDetail(BaseModel):
    """`detail` body of the 422 returned when the admissibility gate refuses."""

    error: str = "Non-financial content detected"
    category: str
    confidence: float
    reasons: list[str]
    suggested_rewrite: str | None = None
    system_message_id: int | None = None
    system_message: str | None = None


class InquiryResponse(BaseModel):
    """Response for GET /inquiries/{inquiry_id}."""

    id: int
    thread_id: int
    question: str
    context: str | None = None
    status: str
    error_message: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    provider_replies: list[ProviderReplyResponse] = Field(default_factory=list)
    consolidated: ConsolidatedAnswerResponse | None = None


# ---------------------------------------------------------------------------
# Provider Registry & Metrics
# ---------------------------------------------------------------------------


class ProviderConfigResponse(BaseModel):
    provider_key: str
    name: str
    client_spec: str
    status: str
    priority: int
    timeout_ms: int | None = None

    model_config = ConfigDict(from_attributes=True)


class ProviderMetrics(BaseModel):
    """Aggregates over one provider's replies in the requested window."""

    provider: str
    total_calls: int
    successful_calls: int
    success_rate: float = Field(description="Fraction of calls without an error (0-1)")
    avg_response_time_ms: float
    avg_confidence: float = Field(description="Mean confidence of successful calls")
    total_tokens: int
    total_cost_cents: float


class ProviderMetricsResponse(BaseModel):
    """Response for GET /providers/metrics."""

    days: int
    since: datetime
    providers: list[ProviderMetrics]
