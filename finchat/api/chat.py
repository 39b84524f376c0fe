# =============================================================================
# Chat API — Threads, Messages & Inquiries
# =============================================================================
#
#   POST   /threads                          — create a thread
#   GET    /threads                          — list the caller's threads
#   GET    /threads/search?q=                — search titles and messages
#   GET    /threads/stats                    — per-user chat totals
#   PATCH  /threads/{thread_id}              — rename a thread
#   POST   /threads/{thread_id}/archive      — archive a thread
#   DELETE /threads/{thread_id}              — soft-delete a thread
#   GET    /threads/{thread_id}/messages     — list a thread's messages
#   POST   /threads/{thread_id}/messages     — ask a finance question
#   GET    /inquiries/{inquiry_id}           — replies, consolidated answer, ratings
#
# FLOW (POST /threads/{thread_id}/messages):
#   1. Admissibility gate (rejection → 422 with reasons + SYSTEM message)
#   2. Fan out to every ACTIVE provider, consolidate, cross-rate
#   3. Return the user message, the assistant message and the
#      consolidated answer
#
# The pipeline run is shielded from request cancellation: a client that
# disconnects mid-run does not abort it, so the inquiry still reaches
# COMPLETED or FAILED.
#
# Handlers are thin: schema validation, exception → HTTP status mapping,
# and ORM → response model conversion.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from finchat.api.deps import get_current_user_id, get_pipeline
from finchat.db.models import ThreadStatus
from finchat.models.requests import (
    CreateThreadRequest,
    SendMessageRequest,
    UpdateThreadRequest,
)
from finchat.models.responses import (
    ChatStatisticsResponse,
    ConsolidatedAnswerResponse,
    InquiryResponse,
    MessageListResponse,
    MessageResponse,
    ProviderReplyResponse,
    RejectionDetail,
    SendMessageResponse,
    ThreadListResponse,
    ThreadResponse,
)
from finchat.pipeline.errors import (
    AdmissibilityRejected,
    AllProvidersFailed,
    InquiryNotFound,
    InvalidStatusTransition,
    NoProvidersAvailable,
    ThreadInactive,
    ThreadNotFound,
)
from finchat.pipeline.orchestrator import InquiryPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


# ---------------------------------------------------------------------------
# POST /threads
# ---------------------------------------------------------------------------


@router.post(
    "/threads",
    response_model=ThreadResponse,
    status_code=201,
    summary="Create a chat thread",
)
async def create_thread(
    request: CreateThreadRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ThreadResponse:
    thread = await pipeline.create_thread(user_id, request.title)
    return ThreadResponse.model_validate(thread)


# ---------------------------------------------------------------------------
# GET /threads, /threads/search, /threads/stats
# ---------------------------------------------------------------------------


@router.get(
    "/threads",
    response_model=ThreadListResponse,
    summary="List the caller's threads, most recently active first",
)
async def list_threads(
    status: Literal["ACTIVE", "ARCHIVED", "ALL"] = Query(
        default="ACTIVE", description="ALL lists every thread that is not deleted",
    ),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ThreadListResponse:
    threads = await pipeline.list_threads(
        user_id,
        status=None if status == "ALL" else ThreadStatus(status),
        limit=limit,
        offset=offset,
    )
    return ThreadListResponse(
        threads=[ThreadResponse.model_validate(t) for t in threads],
        total=len(threads),
    )


@router.get(
    "/threads/search",
    response_model=ThreadListResponse,
    summary="Search thread titles and message text",
)
async def search_threads(
    q: str = Query(..., min_length=1, max_length=200, description="Text to look for"),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ThreadListResponse:
    threads = await pipeline.search_threads(user_id, q, limit=limit)
    return ThreadListResponse(
        threads=[ThreadResponse.model_validate(t) for t in threads],
        total=len(threads),
    )


@router.get(
    "/threads/stats",
    response_model=ChatStatisticsResponse,
    summary="Thread, message and inquiry totals for the caller",
)
async def chat_statistics(
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ChatStatisticsResponse:
    stats = await pipeline.chat_statistics(user_id)
    return ChatStatisticsResponse.model_validate(stats)


# ---------------------------------------------------------------------------
# PATCH /threads/{thread_id}, POST .../archive, DELETE /threads/{thread_id}
# ---------------------------------------------------------------------------


@router.patch(
    "/threads/{thread_id}",
    response_model=ThreadResponse,
    summary="Rename a thread",
    responses={404: {"description": "Thread not found"}, 409: {"description": "Thread is deleted"}},
)
async def rename_thread(
    thread_id: int,
    request: UpdateThreadRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ThreadResponse:
    try:
        thread = await pipeline.rename_thread(thread_id, user_id, request.title)
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ThreadInactive as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ThreadResponse.model_validate(thread)


@router.post(
    "/threads/{thread_id}/archive",
    response_model=ThreadResponse,
    summary="Archive a thread; it stays readable but accepts no new messages",
    responses={404: {"description": "Thread not found"}, 409: {"description": "Thread is deleted"}},
)
async def archive_thread(
    thread_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> ThreadResponse:
    try:
        thread = await pipeline.archive_thread(thread_id, user_id)
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ThreadInactive as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ThreadResponse.model_validate(thread)


@router.delete(
    "/threads/{thread_id}",
    status_code=204,
    summary="Soft-delete a thread",
    responses={404: {"description": "Thread not found"}, 409: {"description": "Thread is deleted"}},
)
async def delete_thread(
    thread_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> Response:
    try:
        await pipeline.delete_thread(thread_id, user_id)
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ThreadInactive as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# GET /threads/{thread_id}/messages
# ---------------------------------------------------------------------------


@router.get(
    "/threads/{thread_id}/messages",
    response_model=MessageListResponse,
    summary="List a thread's messages, oldest first",
)
async def list_messages(
    thread_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> MessageListResponse:
    try:
        messages = await pipeline.list_messages(thread_id, user_id)
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    return MessageListResponse(
        thread_id=thread_id,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )


# ---------------------------------------------------------------------------
# POST /threads/{thread_id}/messages — Ask a finance question
# ---------------------------------------------------------------------------


@router.post(
    "/threads/{thread_id}/messages",
    response_model=SendMessageResponse,
    summary="Ask a finance question",
    description=(
        "Validates the question, asks every active answer provider "
        "concurrently, merges the replies into one confidence-weighted "
        "answer, has the providers rate it, and appends the answer to the "
        "thread."
    ),
    responses={
        404: {"description": "Thread not found"},
        409: {"description": "Thread is archived or deleted"},
        422: {"description": "Question rejected as non-financial"},
        503: {"description": "No provider available or all providers failed"},
    },
)
async def send_message(
    thread_id: int,
    request: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> SendMessageResponse:
    logger.info(
        "Message on thread %d from user %s: '%s'",
        thread_id, user_id, request.content[:80],
    )

    try:
        outcome = await asyncio.shield(
            pipeline.submit(thread_id, user_id, request.content, request.context)
        )
    except AdmissibilityRejected as e:
        detail = RejectionDetail(
            category=e.result.category,
            confidence=e.result.confidence,
            reasons=e.result.reasons,
            suggested_rewrite=e.result.suggested_rewrite,
            system_message_id=e.system_message_id,
            system_message=e.system_message,
        )
        raise HTTPException(status_code=422, detail=detail.model_dump()) from e
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ThreadInactive as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except (NoProvidersAvailable, AllProvidersFailed) as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return SendMessageResponse(
        inquiry_id=outcome.inquiry_id,
        status=outcome.status.value,
        user_message=MessageResponse.model_validate(outcome.user_message),
        assistant_message=MessageResponse.model_validate(outcome.assistant_message),
        consolidated=ConsolidatedAnswerResponse.model_validate(outcome.consolidated),
    )


# ---------------------------------------------------------------------------
# GET /inquiries/{inquiry_id}
# ---------------------------------------------------------------------------


@router.get(
    "/inquiries/{inquiry_id}",
    response_model=InquiryResponse,
    summary="Inquiry details: provider replies, consolidated answer, ratings",
)
async def get_inquiry(
    inquiry_id: int,
    user_id: str = Depends(get_current_user_id),
    pipeline: InquiryPipeline = Depends(get_pipeline),
) -> InquiryResponse:
    try:
        details = await pipeline.get_inquiry_details(inquiry_id, user_id)
    except InquiryNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    inquiry = details.inquiry
    return InquiryResponse(
        id=inquiry.id,
        thread_id=inquiry.thread_id,
        question=inquiry.question,
        context=inquiry.context,
        status=inquiry.status.value,
        error_message=inquiry.error_message,
        processing_started_at=inquiry.processing_started_at,
        processing_completed_at=inquiry.processing_completed_at,
        created_at=inquiry.created_at,
        updated_at=inquiry.updated_at,
        provider_replies=[
            ProviderReplyResponse.model_validate(r) for r in details.replies
        ],
        consolidated=(
            ConsolidatedAnswerResponse.model_validate(details.consolidated)
            if details.consolidated is not None
            else None
        ),
    )
