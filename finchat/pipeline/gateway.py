# =============================================================================
# Provider Gateway — Failure-Isolated Access to One Answer Provider
# =============================================================================
#
# Wraps one AnswerClient with the provider's timeout, wall-clock timing and
# reply validation. This is the ONLY place per-provider failures are
# handled: every exception, timeout or malformed reply becomes a value
# (a ProviderReply / RatingReply with `error` set) instead of propagating.
# The dispatcher and rating collector can therefore fan out without
# worrying about a single provider taking the whole run down.
#
#   ask()  → ProviderReply   (error set ⇒ confidence 0, answer "")
#   rate() → RatingReply     (error set ⇒ dropped by the collector)
#
# A gateway never retries. One attempt per provider per phase.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from finchat.services.answer_clients import AnswerClient, MalformedReply

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ProviderReply:
    """One provider's answer to one question, or the reason there is none."""

    provider: str
    answer: str
    confidence: float
    response_time_ms: int
    tokens_used: int = 0
    cost_cents: float = 0.0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        """Eligible for consolidation: no error and a non-blank answer."""
        return self.error is None and bool(self.answer and self.answer.strip())


@dataclass
class RatingReply:
    """One provider's correctness rating of a consolidated answer."""

    provider: str
    correctness_percentage: float
    reasoning: str
    rated_by: str
    response_time_ms: int
    error: str | None = None


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class ProviderGateway:
    """Timeout-bounded, exception-free facade over one answer client."""

    def __init__(
        self,
        provider_id: str,
        client: AnswerClient,
        timeout_ms: int,
        priority: int = 0,
    ) -> None:
        self.provider_id = provider_id
        self.client = client
        self.timeout_ms = timeout_ms
        self.priority = priority

    def __repr__(self) -> str:
        return (
            f"<ProviderGateway(provider='{self.provider_id}', "
            f"timeout_ms={self.timeout_ms}, priority={self.priority})>"
        )

    async def ask(self, question: str, context: str | None = None) -> ProviderReply:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.client.ask(question, context),
                timeout=self.timeout_ms / 1000,
            )
            if not 0.0 <= result.confidence <= 1.0:
                raise MalformedReply(
                    f"Confidence {result.confidence} outside [0, 1]"
                )
        except asyncio.TimeoutError:
            elapsed = _elapsed_ms(start)
            logger.warning(
                "Provider %s timed out after %dms", self.provider_id, elapsed,
            )
            return self._failed_reply(f"Timed out after {self.timeout_ms}ms", elapsed)
        except Exception as e:
            elapsed = _elapsed_ms(start)
            logger.warning("Provider %s failed: %s", self.provider_id, e)
            return self._failed_reply(f"{type(e).__name__}: {e}", elapsed)

        elapsed = _elapsed_ms(start)
        logger.debug(
            "Provider %s answered in %dms (confidence=%.2f)",
            self.provider_id, elapsed, result.confidence,
        )
        return ProviderReply(
            provider=self.provider_id,
            answer=result.answer,
            confidence=result.confidence,
            response_time_ms=elapsed,
            tokens_used=result.tokens_used,
            cost_cents=result.cost_cents,
            metadata=dict(result.metadata),
        )

    async def rate(self, answer: str, original_question: str) -> RatingReply:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.client.rate(answer, original_question),
                timeout=self.timeout_ms / 1000,
            )
            if not 0.0 <= result.correctness_percentage <= 100.0:
                raise MalformedReply(
                    f"Correctness {result.correctness_percentage} outside [0, 100]"
                )
        except asyncio.TimeoutError:
            elapsed = _elapsed_ms(start)
            logger.warning(
                "Provider %s rating timed out after %dms", self.provider_id, elapsed,
            )
            return self._failed_rating(f"Timed out after {self.timeout_ms}ms", elapsed)
        except Exception as e:
            elapsed = _elapsed_ms(start)
            logger.warning("Provider %s rating failed: %s", self.provider_id, e)
            return self._failed_rating(f"{type(e).__name__}: {e}", elapsed)

        return RatingReply(
            provider=self.provider_id,
            correctness_percentage=result.correctness_percentage,
            reasoning=result.reasoning,
            rated_by=self.provider_id,
            response_time_ms=_elapsed_ms(start),
        )

    # --- Internal helpers ---

    def _failed_reply(self, error: str, elapsed_ms: int) -> ProviderReply:
        return ProviderReply(
            provider=self.provider_id,
            answer="",
            confidence=0.0,
            response_time_ms=elapsed_ms,
            error=error,
        )

    def _failed_rating(self, error: str, elapsed_ms: int) -> RatingReply:
        return RatingReply(
            provider=self.provider_id,
            correctness_percentage=0.0,
            reasoning="",
            rated_by=self.provider_id,
            response_time_ms=elapsed_ms,
            error=error,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
