# =============================================================================
# Consolidation Engine — Confidence-Weighted Answer Merge
# =============================================================================
#
# Pure function of the replies; no I/O.
#
# POLICY:
#   1. Keep replies with no error and a non-blank answer.
#   2. None left → AllProvidersFailed.
#   3. Stable sort by confidence, highest first. The top reply is primary.
#   4. Every other kept reply with confidence > secondary_threshold is a
#      supporting reply. Their answers are space-joined and appended to the
#      primary after a single " Additionally, ".
#   5. confidence = Σc² / Σc over kept replies (0.0 when Σc == 0),
#      capped at `cap`. Self-weighting favours the confident replies
#      without letting a crowd of weak ones drag the score down.
#   6. sources = provider ids of kept replies, sorted order, de-duplicated.
#
# EXAMPLE:
#   A 0.9, B 0.8, C error
#   → "<A> Additionally, <B>"
#   → (0.81 + 0.64) / 1.7 ≈ 0.853, sources [A, B]
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from finchat.config import settings
from finchat.pipeline.errors import AllProvidersFailed
from finchat.pipeline.gateway import ProviderReply

logger = logging.getLogger(__name__)

SECONDARY_PREFIX = "Additionally, "


@dataclass
class ConsolidatedAnswer:
    """Merged answer ready to be persisted."""

    answer: str
    confidence: float
    sources: list[str]
    methodology: str
    metadata: dict = field(default_factory=dict)


def consolidate(
    replies: Sequence[ProviderReply],
    secondary_threshold: float | None = None,
    cap: float | None = None,
) -> ConsolidatedAnswer:
    """
    Merge provider replies into one answer.

    Raises:
        AllProvidersFailed: If no reply is usable.
    """
    if secondary_threshold is None:
        secondary_threshold = settings.secondary_confidence_threshold
    if cap is None:
        cap = settings.confidence_cap

    valid = sorted(
        (r for r in replies if r.usable),
        key=lambda r: r.confidence,
        reverse=True,
    )
    if not valid:
        raise AllProvidersFailed()

    primary, secondaries = valid[0], valid[1:]
    supporting = [r for r in secondaries if r.confidence > secondary_threshold]

    answer = primary.answer.strip()
    if supporting:
        insights = " ".join(r.answer.strip() for r in supporting)
        answer = f"{answer} {SECONDARY_PREFIX}{insights}"

    total = sum(r.confidence for r in valid)
    weighted = sum(r.confidence * r.confidence for r in valid)
    confidence = min(weighted / total, cap) if total > 0 else 0.0

    sources = list(dict.fromkeys(r.provider for r in valid))
    methodology = (
        f"Consolidated from {len(valid)} provider(s) "
        "using confidence-weighted analysis"
    )

    logger.info(
        "Consolidated %d/%d replies (primary=%s, supporting=%d, confidence=%.3f)",
        len(valid), len(replies), primary.provider, len(supporting), confidence,
    )

    return ConsolidatedAnswer(
        answer=answer,
        confidence=confidence,
        sources=sources,
        methodology=methodology,
        metadata={
            "primary_provider": primary.provider,
            "supporting_providers": [r.provider for r in supporting],
            "excluded_providers": [r.provider for r in replies if not r.usable],
        },
    )
