# =============================================================================
# Answer Clients — Pluggable Answer/Rating Capability per Provider
# =============================================================================
#
# An answer client is what actually produces a provider's answer to a
# finance question and its correctness rating of a consolidated answer.
# The provider gateway (pipeline/gateway.py) wraps one client per
# registered provider and adds timeouts, timing and failure isolation.
#
# Clients are free to raise: timeouts, SDK errors and malformed output all
# surface as exceptions here and are converted to errored replies by the
# gateway.
#
# ARCHITECTURE:
#   AnswerClient (Protocol)
#   ├── LLMAnswerClient     — JSON-prompted LLM (Anthropic / OpenAI-compatible)
#   ├── CannedAnswerClient  — deterministic topic-keyed answers for local
#   │                          development and demos ("canned/<profile>")
#   └── build_answer_client() — client spec → client instance
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
import zlib
from dataclasses import dataclass, field
from typing import Any, Protocol

from finchat.config import settings
from finchat.services.llm import LLMProvider, create_llm_from_spec, parse_client_spec
from finchat.services.pricing import estimate_cost_cents

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ClientAnswer:
    """Raw answer produced by a client, before gateway bookkeeping."""

    answer: str
    confidence: float
    tokens_used: int = 0
    cost_cents: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ClientRating:
    """Raw correctness rating produced by a client."""

    correctness_percentage: float
    reasoning: str


class MalformedReply(ValueError):
    """Client output could not be interpreted as an answer or rating."""


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class AnswerClient(Protocol):
    """Answer and rating capability of one provider."""

    async def ask(self, question: str, context: str | None) -> ClientAnswer:
        ...

    async def rate(self, answer: str, original_question: str) -> ClientRating:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: LLM-backed client
# ---------------------------------------------------------------------------

ANSWER_SYSTEM_PROMPT = """You are a careful financial advisor answering a user's finance question.

Respond with ONLY a JSON object:
{"answer": "<your answer, plain prose, no markdown>", "confidence": <0.0-1.0>}

"confidence" is your honest probability that the answer is correct and
complete. Use lower values when the question depends on facts you cannot
verify. Never give personalised investment guarantees."""

RATING_SYSTEM_PROMPT = """You are reviewing an answer to a finance question for correctness.

Respond with ONLY a JSON object:
{"correctness_percentage": <0-100>, "reasoning": "<one or two sentences>"}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _parse_json_object(text: str) -> dict[str, Any]:
    """Parse an LLM reply that should be a single JSON object."""
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedReply(f"Reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedReply("Reply JSON is not an object")
    return data


class LLMAnswerClient:
    """
    Asks an LLM for a JSON answer with a self-reported confidence, and for
    a JSON correctness rating of a consolidated answer.
    """

    def __init__(self, llm: LLMProvider, client_type: str, model: str) -> None:
        self._llm = llm
        self._client_type = client_type
        self._model = model

    async def ask(self, question: str, context: str | None) -> ClientAnswer:
        content = question
        if context:
            content = f"Context:\n{context}\n\nQuestion:\n{question}"

        response = await self._llm.complete(
            messages=[{"role": "user", "content": content}],
            system=ANSWER_SYSTEM_PROMPT,
        )
        data = _parse_json_object(response.content)

        try:
            confidence = float(data.get("confidence", settings.llm_default_confidence))
        except (TypeError, ValueError) as e:
            raise MalformedReply(f"Non-numeric confidence: {data.get('confidence')!r}") from e

        return ClientAnswer(
            answer=str(data.get("answer", "")).strip(),
            confidence=confidence,
            tokens_used=response.total_tokens,
            cost_cents=estimate_cost_cents(
                self._client_type,
                response.model,
                response.input_tokens,
                response.output_tokens,
            ),
            metadata={"model": response.model},
        )

    async def rate(self, answer: str, original_question: str) -> ClientRating:
        response = await self._llm.complete(
            messages=[{
                "role": "user",
                "content": f"Question:\n{original_question}\n\nAnswer:\n{answer}",
            }],
            system=RATING_SYSTEM_PROMPT,
            temperature=0.0,
        )
        data = _parse_json_object(response.content)

        try:
            percentage = float(data["correctness_percentage"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedReply("Rating has no numeric correctness_percentage") from e

        return ClientRating(
            correctness_percentage=percentage,
            reasoning=str(data.get("reasoning", "")).strip(),
        )


# ---------------------------------------------------------------------------
# Implementation 2: Canned client
# ---------------------------------------------------------------------------
# Profiles are keyed by topic; "general" is the fallback for every profile.
# Selection within a topic is a stable hash of the question, so the same
# question always gets the same answer.
# ---------------------------------------------------------------------------

_TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "stocks": ("stock", "share", "equity", "equities"),
    "bonds": ("bond", "treasury", "treasuries", "yield"),
    "crypto": ("crypto", "cryptocurrency", "bitcoin", "ethereum"),
    "lending": ("loan", "mortgage", "credit"),
    "tax": ("tax", "irs", "deduction"),
    # "diversification" is left out: the ADVICE framing always contains it
    "portfolio": ("portfolio", "diversify", "diversified", "allocation"),
}

# Whole words only, plural "s"/"es" allowed ("first" must not hit "irs")
_TOPIC_PATTERNS: dict[str, re.Pattern[str]] = {
    topic: re.compile(
        r"\b(?:" + "|".join(re.escape(kw) for kw in keywords) + r")(?:s|es)?\b"
    )
    for topic, keywords in _TOPIC_KEYWORDS.items()
}

CANNED_PROFILES: dict[str, dict[str, Any]] = {
    "yahoo": {
        "model": "yahoo-finance-canned-v2",
        "rating": 82.0,
        "reasonings": (
            "The answer aligns well with current market data and historical trends.",
            "The advice follows sound investment principles supported by market research.",
        ),
        "topics": {
            "stocks": (0.85, (
                "Stock performance depends on earnings, sector trends and economic "
                "indicators. Diversifying across sectors and market caps reduces "
                "single-company risk.",
                "Blue-chip stocks typically offer more stability but lower growth "
                "potential than growth stocks; a balanced mix suits most investors.",
            )),
            "bonds": (0.80, (
                "Rising interest rates typically push bond prices down. Laddering "
                "maturities helps manage interest rate risk.",
                "Government bonds offer safety with lower yields, while corporate "
                "bonds pay more in exchange for credit risk.",
            )),
            "general": (0.75, (
                "Successful investing starts with understanding your risk tolerance, "
                "time horizon and goals. Diversification remains a key principle.",
                "Low-cost index funds give beginners instant diversification and "
                "typically charge less than actively managed funds.",
            )),
        },
    },
    "google": {
        "model": "google-finance-canned-v3",
        "rating": 85.0,
        "reasonings": (
            "The response demonstrates good understanding of financial concepts and risk factors.",
            "The advice is well-balanced and considers both opportunities and risks.",
        ),
        "topics": {
            "stocks": (0.88, (
                "Combine fundamental analysis with a few technical indicators: look "
                "at P/E ratios, revenue growth and competitive position.",
                "Market timing is difficult; dollar-cost averaging into quality "
                "companies tends to produce better results over time.",
            )),
            "crypto": (0.70, (
                "Cryptocurrencies are highly volatile and face regulatory "
                "uncertainty. Keep any allocation small and only invest what you "
                "can afford to lose.",
            )),
            "general": (0.82, (
                "Build an emergency fund of three to six months of expenses before "
                "investing. Compound growth rewards starting early.",
                "Asset allocation should match your age and risk tolerance; "
                "rebalance periodically to stay on target.",
            )),
        },
    },
    "fallback": {
        "model": "fallback-finance-canned-v1",
        "rating": 75.0,
        "reasonings": (
            "The answer provides practical financial guidance suitable for general audiences.",
            "The advice appears reasonable though could benefit from more specific data.",
        ),
        "topics": {
            "general": (0.65, (
                "Financial planning depends on personal circumstances. Common "
                "principles include diversification, regular saving and knowing "
                "your risk tolerance.",
                "Investment success usually comes from consistent, disciplined "
                "habits rather than trying to time the market.",
            )),
        },
    },
}


def _detect_topic(question: str) -> str:
    lowered = question.lower()
    for topic, pattern in _TOPIC_PATTERNS.items():
        if pattern.search(lowered):
            return topic
    return "general"


def _stable_pick(options: tuple[str, ...], key: str) -> str:
    return options[zlib.crc32(key.encode("utf-8")) % len(options)]


class CannedAnswerClient:
    """
    Deterministic finance answers from a named profile.

    Registry `config` keys:
        delay_ms:   simulated network latency (default 0)
        confidence: fixed confidence overriding the profile's topic value
    """

    def __init__(
        self,
        profile: str,
        delay_ms: int = 0,
        confidence: float | None = None,
    ) -> None:
        if profile not in CANNED_PROFILES:
            raise ValueError(
                f"Unknown canned profile '{profile}'. "
                f"Available: {sorted(CANNED_PROFILES)}"
            )
        self._profile = CANNED_PROFILES[profile]
        self._delay_s = max(delay_ms, 0) / 1000
        self._confidence = confidence

    async def ask(self, question: str, context: str | None) -> ClientAnswer:
        if self._delay_s:
            await asyncio.sleep(self._delay_s)

        topics = self._profile["topics"]
        confidence, answers = topics.get(_detect_topic(question), topics["general"])
        answer = _stable_pick(answers, question)
        if context and "portfolio" in context.lower():
            answer += (
                " Given your portfolio context, consider how this applies to "
                "your current holdings and risk profile."
            )

        return ClientAnswer(
            answer=answer,
            confidence=self._confidence if self._confidence is not None else confidence,
            tokens_used=len(answer.split()),
            metadata={"model": self._profile["model"]},
        )

    async def rate(self, answer: str, original_question: str) -> ClientRating:
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        return ClientRating(
            correctness_percentage=self._profile["rating"],
            reasoning=_stable_pick(self._profile["reasonings"], original_question),
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_answer_client(
    client_spec: str,
    config: dict[str, Any] | None = None,
) -> AnswerClient:
    """
    Build the answer client described by a registry client spec.

    Raises:
        ValueError: Invalid spec, unknown canned profile, or missing API key.
    """
    config = config or {}
    client_type, model, _ = parse_client_spec(client_spec)

    if client_type == "canned":
        return CannedAnswerClient(
            profile=model,
            delay_ms=int(config.get("delay_ms", 0)),
            confidence=config.get("confidence"),
        )

    llm = create_llm_from_spec(client_spec)
    return LLMAnswerClient(llm=llm, client_type=client_type, model=model)
