# =============================================================================
# Admissibility Gate — Is This a Finance Question?
# =============================================================================
#
# Runs before an inquiry exists. A rejected prompt never reaches the
# providers: the pipeline records a SYSTEM message explaining why and stops.
#
# The keyword gate scores three signals with whole-word matching
# (plural "s"/"es" allowed):
#   finance terms  (weight 0.60, saturates at 2 distinct hits)
#   named entities (weight 0.25, saturates at 2 distinct hits)
#   intent phrases (weight 0.15, saturates at 1 hit)
#
#   score >= finance_threshold    → FINANCE    (admitted)
#   score >= ambiguous_threshold  → AMBIGUOUS  (admitted)
#   otherwise                     → NON_FINANCE (rejected)
#
# Prompts that hit only the non-finance blocklist are rejected before
# scoring; a single finance term or entity overrides the blocklist
# ("tax on sports betting winnings" is a finance question).
#
# Also provides the financial-context extraction and prompt enhancement
# applied to admitted prompts before they are stored as the inquiry
# question.
# =============================================================================

from __future__ import annotations

import logging
import re
import zlib
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from typing import Protocol

from finchat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

FINANCE_TERMS: dict[str, tuple[str, ...]] = {
    "investment": (
        "invest", "investing", "investment", "investor", "portfolio", "asset",
        "stock", "bond", "mutual fund", "index fund", "etf", "reit",
        "commodity", "share", "equity",
    ),
    "market": (
        "market", "trading", "bull market", "bear market", "volatility",
        "liquidity", "dividend", "yield", "return", "price",
    ),
    "planning": (
        "retirement", "401k", "ira", "saving", "savings", "budget",
        "financial plan", "emergency fund", "insurance", "pension",
    ),
    "banking": (
        "bank", "credit", "loan", "mortgage", "interest rate", "apr",
        "credit score", "debt", "refinance",
    ),
    "business": (
        "revenue", "profit", "cash flow", "balance sheet", "income statement",
        "valuation", "ipo", "merger", "earnings",
    ),
    "economics": (
        "inflation", "gdp", "unemployment", "monetary policy", "fiscal policy",
        "recession", "interest",
    ),
    "tax": ("tax", "taxes", "deduction", "capital gain"),
    "crypto": (
        "bitcoin", "cryptocurrency", "blockchain", "defi", "ethereum",
        "crypto", "digital currency",
    ),
}

FINANCE_ENTITIES: tuple[str, ...] = (
    "jpmorgan", "bank of america", "wells fargo", "citigroup", "goldman sachs",
    "blackrock", "vanguard", "fidelity", "charles schwab",
    "nyse", "nasdaq", "dow jones", "s&p 500", "russell 2000",
    "sec", "fdic", "federal reserve", "treasury", "irs",
    "apple", "microsoft", "amazon", "google", "tesla", "berkshire hathaway",
)

NON_FINANCE_TERMS: tuple[str, ...] = (
    "programming", "coding", "web design", "gaming",
    "medical", "doctor", "medicine", "disease",
    "movie", "music", "sports", "celebrity", "tv show",
    "travel", "vacation", "restaurant", "recipe", "cooking", "fashion",
    "homework", "dating", "relationship advice",
)

INTENT_PHRASES: dict[str, tuple[str, ...]] = {
    "ADVICE": ("should i", "recommend", "advice", "suggest", "what to do", "best option"),
    "ANALYSIS": ("analyze", "analyse", "compare", "evaluate", "assess", "pros and cons"),
    "CALCULATION": ("calculate", "compute", "how much", "formula", "percentage"),
    "INFORMATION": ("what is", "what are", "explain", "define", "tell me about", "how does"),
}

INTENT_INSTRUCTIONS: dict[str, str] = {
    "ADVICE": " Please provide actionable financial advice considering risk tolerance and diversification.",
    "ANALYSIS": " Please provide a detailed financial analysis with supporting data and reasoning.",
    "CALCULATION": " Please show the calculation steps and explain the financial formulas used.",
    "INFORMATION": " Please provide accurate and up-to-date financial information with relevant context.",
}

ADVISOR_PREFIX = "As a financial advisor, please provide guidance on the following: "

_SUGGESTIONS: tuple[str, ...] = (
    "Try asking about investment strategies, portfolio management, or financial planning.",
    "Consider asking about specific stocks, bonds, or other financial instruments.",
    "Ask about budgeting, saving strategies, or retirement planning.",
    "Request advice on debt management, credit improvement, or loan options.",
)


@lru_cache(maxsize=512)
def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(rf"\b{re.escape(term)}(?:s|es)?\b")


def _hits(text: str, terms: tuple[str, ...]) -> list[str]:
    return [t for t in terms if _term_pattern(t).search(text)]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class AdmissibilityResult:
    """Outcome of the admissibility check for one prompt."""

    is_valid: bool
    category: str  # "FINANCE" | "AMBIGUOUS" | "NON_FINANCE"
    confidence: float
    reasons: list[str] = field(default_factory=list)
    suggested_rewrite: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FinancialContext:
    """Topics, named entities and intent detected in an admitted prompt."""

    topics: list[str]
    entities: list[str]
    intent: str  # ADVICE | ANALYSIS | CALCULATION | INFORMATION | OTHER

    def to_dict(self) -> dict:
        return asdict(self)


class AdmissibilityGate(Protocol):
    """Decides whether a question is in-domain before pipeline entry."""

    async def validate(self, question: str, user_id: str) -> AdmissibilityResult:
        ...


# ---------------------------------------------------------------------------
# Keyword Gate
# ---------------------------------------------------------------------------


class KeywordAdmissibilityGate:
    """Rule-based finance classifier. Zero latency, no external calls."""

    def __init__(
        self,
        min_length: int | None = None,
        finance_threshold: float | None = None,
        ambiguous_threshold: float | None = None,
    ) -> None:
        self.min_length = (
            settings.admissibility_min_length if min_length is None else min_length
        )
        self.finance_threshold = (
            settings.admissibility_finance_threshold
            if finance_threshold is None else finance_threshold
        )
        self.ambiguous_threshold = (
            settings.admissibility_ambiguous_threshold
            if ambiguous_threshold is None else ambiguous_threshold
        )

    async def validate(self, question: str, user_id: str) -> AdmissibilityResult:
        result = self.classify(question)
        logger.info(
            "Admissibility for user %s: %s (score=%.2f, valid=%s)",
            user_id, result.category, result.confidence, result.is_valid,
        )
        return result

    def classify(self, question: str) -> AdmissibilityResult:
        text = question.lower().strip()

        if len(text) < self.min_length:
            return AdmissibilityResult(
                is_valid=False,
                category="NON_FINANCE",
                confidence=0.9,
                reasons=["Prompt is too short to be meaningful."],
                suggested_rewrite="Please provide a more detailed financial question.",
            )

        finance_hits = [
            term for terms in FINANCE_TERMS.values() for term in _hits(text, terms)
        ]
        entity_hits = _hits(text, FINANCE_ENTITIES)
        blocked = _hits(text, NON_FINANCE_TERMS)

        if blocked and not finance_hits and not entity_hits:
            return AdmissibilityResult(
                is_valid=False,
                category="NON_FINANCE",
                confidence=min(0.5 + 0.25 * len(blocked), 1.0),
                reasons=["Content appears to be non-financial in nature."],
                suggested_rewrite=_suggest(text),
            )

        intent_hit = any(
            _hits(text, phrases) for phrases in INTENT_PHRASES.values()
        )
        finance_score = min(len(set(finance_hits)) / 2, 1.0)
        entity_score = min(len(set(entity_hits)) / 2, 1.0)
        intent_score = 1.0 if intent_hit else 0.0
        score = round(
            0.60 * finance_score + 0.25 * entity_score + 0.15 * intent_score, 4,
        )

        reasons: list[str] = []
        if score >= self.finance_threshold:
            category, is_valid = "FINANCE", True
            reasons.append("Strong financial content detected.")
        elif score >= self.ambiguous_threshold:
            category, is_valid = "AMBIGUOUS", True
            reasons.append("Some financial content detected, but could be clearer.")
        else:
            category, is_valid = "NON_FINANCE", False
            reasons.append("Insufficient financial content detected.")

        if finance_hits:
            reasons.append("Contains financial terminology.")
        if entity_hits:
            reasons.append("References financial entities.")
        if intent_hit:
            reasons.append("Shows clear question intent.")

        return AdmissibilityResult(
            is_valid=is_valid,
            category=category,
            confidence=score,
            reasons=reasons,
            suggested_rewrite=None if is_valid else _suggest(text),
        )


def _suggest(text: str) -> str:
    return _SUGGESTIONS[zlib.crc32(text.encode("utf-8")) % len(_SUGGESTIONS)]


# ---------------------------------------------------------------------------
# Context Extraction & Prompt Enhancement
# ---------------------------------------------------------------------------


def extract_financial_context(prompt: str) -> FinancialContext:
    """Detect finance topics, named entities and the question's intent."""
    text = prompt.lower()

    topics = [
        category for category, terms in FINANCE_TERMS.items() if _hits(text, terms)
    ]
    entities = _hits(text, FINANCE_ENTITIES)

    intent = "OTHER"
    for name, phrases in INTENT_PHRASES.items():
        if _hits(text, phrases):
            intent = name
            break

    return FinancialContext(topics=topics, entities=entities, intent=intent)


def enhance_prompt(prompt: str, context: FinancialContext) -> str:
    """Frame an admitted prompt for the providers."""
    return ADVISOR_PREFIX + prompt + INTENT_INSTRUCTIONS.get(context.intent, "")


def rejection_message(result: AdmissibilityResult) -> str:
    """Text of the SYSTEM message written when a prompt is rejected."""
    parts = ["I can only help with finance-related questions."]
    parts.extend(result.reasons)
    if result.suggested_rewrite:
        parts.append(result.suggested_rewrite)
    return " ".join(parts)
