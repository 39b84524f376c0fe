# =============================================================================
# Providers API — Registry Listing & Performance Metrics
# =============================================================================
#
#   GET /providers          — every configured answer provider
#   GET /providers/metrics  — per-provider call stats over the last N days
#
# Metrics are computed from provider_replies: every dispatched call is
# recorded there (errored ones included) when its inquiry completes.
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finchat.api.deps import get_current_user_id, get_registry
from finchat.db.engine import get_async_session
from finchat.db.models import ProviderReplyRecord
from finchat.models.responses import (
    ProviderConfigResponse,
    ProviderMetrics,
    ProviderMetricsResponse,
)
from finchat.pipeline.registry import ProviderRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Providers"])


@router.get(
    "",
    response_model=list[ProviderConfigResponse],
    summary="List configured answer providers",
)
async def list_providers(
    user_id: str = Depends(get_current_user_id),
    registry: ProviderRegistry = Depends(get_registry),
    session: AsyncSession = Depends(get_async_session),
) -> list[ProviderConfigResponse]:
    configs = await registry.list_all(session)
    return [ProviderConfigResponse.model_validate(c) for c in configs]


@router.get(
    "/metrics",
    response_model=ProviderMetricsResponse,
    summary="Per-provider performance over a lookback window",
)
async def get_provider_metrics(
    days: int = Query(default=7, ge=1, le=365, description="Lookback window in days"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_async_session),
) -> ProviderMetricsResponse:
    """
    Aggregate provider_replies rows grouped by provider.

    DESIGN DECISION: Aggregation in Python rather than SQL GROUP BY.
    Readable and easy to extend; switch to SQL aggregation if the reply
    table grows large.
    """
    since = datetime.now(UTC) - timedelta(days=days)
    result = await session.execute(
        select(ProviderReplyRecord).where(ProviderReplyRecord.created_at >= since)
    )
    rows = result.scalars().all()

    return ProviderMetricsResponse(
        days=days,
        since=since,
        providers=summarize_replies(rows),
    )


def summarize_replies(rows) -> list[ProviderMetrics]:
    """Per-provider aggregates, sorted by provider id."""
    by_provider: dict[str, list[ProviderReplyRecord]] = {}
    for row in rows:
        by_provider.setdefault(row.provider, []).append(row)

    summaries = []
    for provider, replies in sorted(by_provider.items()):
        successes = [r for r in replies if r.error is None]
        total = len(replies)
        summaries.append(ProviderMetrics(
            provider=provider,
            total_calls=total,
            successful_calls=len(successes),
            success_rate=round(len(successes) / total, 4),
            avg_response_time_ms=round(
                sum(r.response_time_ms for r in replies) / total, 2,
            ),
            avg_confidence=(
                round(sum(r.confidence for r in successes) / len(successes), 4)
                if successes else 0.0
            ),
            total_tokens=sum(r.tokens_used for r in replies),
            total_cost_cents=round(sum(r.cost_cents for r in replies), 4),
        ))
    return summaries
