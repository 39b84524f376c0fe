# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the API. FastAPI validates request bodies
# against these (automatic 422 on malformed input) and publishes them in
# the OpenAPI docs at /docs.
#
# Note the two kinds of 422: a body that fails these schemas, and a
# well-formed question the admissibility gate rejects. The latter carries
# a structured `detail` (see responses.RejectionDetail).
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class CreateThreadRequest(BaseModel):
    """Request body for POST /threads."""

    title: str | None = Field(
        default=None,
        max_length=255,
        description="Thread title. Defaults to 'New Chat'.",
        examples=["Retirement planning"],
    )


class SendMessageRequest(BaseModel):
    """
    Request body for POST /threads/{thread_id}/messages.

    Example:
        {
            "content": "Should I invest in index funds for retirement?",
            "context": "Portfolio: 60% VTI, 40% BND"
        }
    """

    content: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The finance question to ask",
        examples=["Should I invest in index funds for retirement?"],
    )

    # Optional caller-supplied context passed to every provider
    # (e.g., a portfolio summary from the portfolio service)
    context: str | None = Field(
        default=None,
        max_length=8000,
        description="Optional context forwarded to the answer providers",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "content": "Should I invest in index funds for retirement?",
                },
                {
                    "content": "How should I rebalance my portfolio this year?",
                    "context": "Portfolio: 70% US equities, 20% bonds, 10% cash",
                },
            ]
        }
    )


class UpdateThreadRequest(BaseModel):
    """Request body for PATCH /threads/{thread_id}."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="New thread title",
        examples=["Mortgage refinancing"],
    )
