# =============================================================================
# Cross-Rating Collector — Providers Score the Consolidated Answer
# =============================================================================
#
# Every provider in the run's snapshot is asked, concurrently, how correct
# the consolidated answer is (0-100). Ratings are advisory: a failed or
# timed-out rating is logged and dropped, and an empty result is fine.
#
# Self-rating: with `allow_self_rating` off, providers whose replies fed
# the consolidated answer (its `sources`) are not asked.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from finchat.config import settings
from finchat.pipeline.gateway import ProviderGateway

logger = logging.getLogger(__name__)


@dataclass
class ProviderRating:
    provider: str
    correctness_percentage: float
    reasoning: str
    rated_by: str
    response_time_ms: int


async def rate_consolidated(
    providers: Sequence[ProviderGateway],
    answer: str,
    original_question: str,
    sources: Sequence[str] = (),
    allow_self_rating: bool | None = None,
) -> list[ProviderRating]:
    """Collect correctness ratings; failures are omitted from the result."""
    if allow_self_rating is None:
        allow_self_rating = settings.allow_self_rating

    raters = list(providers)
    if not allow_self_rating:
        excluded = set(sources)
        raters = [p for p in raters if p.provider_id not in excluded]

    if not raters:
        logger.info("No eligible raters for consolidated answer")
        return []

    results = await asyncio.gather(
        *(p.rate(answer, original_question) for p in raters),
        return_exceptions=True,
    )

    ratings: list[ProviderRating] = []
    for provider, result in zip(raters, results):
        if isinstance(result, BaseException):
            logger.warning(
                "Rating from %s raised past its gateway: %r", provider.provider_id, result,
            )
            continue
        if result.error is not None:
            logger.warning(
                "Dropping rating from %s: %s", provider.provider_id, result.error,
            )
            continue
        ratings.append(ProviderRating(
            provider=result.provider,
            correctness_percentage=result.correctness_percentage,
            reasoning=result.reasoning,
            rated_by=result.rated_by,
            response_time_ms=result.response_time_ms,
        ))

    logger.info("Collected %d/%d ratings", len(ratings), len(raters))
    return ratings
